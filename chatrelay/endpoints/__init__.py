"""Endpoint definitions."""
