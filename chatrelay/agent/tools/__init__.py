"""Tool dispatch and tool-output caching."""

from chatrelay.agent.tools.cache import ToolResponseCache, ToolResponseCacheEntry
from chatrelay.agent.tools.registry import Tool, ToolFunction, ToolRegistry

__all__ = ["Tool", "ToolFunction", "ToolRegistry", "ToolResponseCache", "ToolResponseCacheEntry"]
