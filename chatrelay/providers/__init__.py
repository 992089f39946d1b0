"""LLM provider abstraction module."""

from chatrelay.providers.base import (
    FunctionCall,
    LLMProvider,
    LLMResponse,
    Message,
    StreamChunk,
    ToolCallFragment,
    ToolCallRequest,
)
from chatrelay.providers.openai_provider import OpenAIProvider

__all__ = [
    "FunctionCall",
    "LLMProvider",
    "LLMResponse",
    "Message",
    "OpenAIProvider",
    "StreamChunk",
    "ToolCallFragment",
    "ToolCallRequest",
    "make_provider",
]


def make_provider(api_key: str, base_url: str, model: str) -> LLMProvider:
    """Create the completion provider for one endpoint session."""
    return OpenAIProvider(api_key=api_key, api_base=base_url, default_model=model)
