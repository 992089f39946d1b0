"""chatrelay - conversational relay between real-time messaging and LLM completions."""

__version__ = "0.1.0"
__logo__ = "💬"
