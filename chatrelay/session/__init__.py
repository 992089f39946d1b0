"""Endpoint sessions and conversation storage."""
