"""Exceptions raised across chatrelay."""


class ChatRelayError(Exception):
    """Base class for chatrelay errors."""


class CompletionError(ChatRelayError):
    """The completion service call failed; fatal for the message being processed."""


class ToolArgumentsError(ChatRelayError):
    """Tool-call arguments could not be parsed, even leniently."""


class ConfigError(ChatRelayError):
    """Invalid or incomplete configuration."""
