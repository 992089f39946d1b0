"""Agent core module."""

from chatrelay.agent.accumulator import ToolCallAccumulator
from chatrelay.agent.commands import extract_commands
from chatrelay.agent.context import ContextBuilder
from chatrelay.agent.loop import LoopResult, ToolExecutionLoop

__all__ = [
    "ContextBuilder",
    "LoopResult",
    "ToolCallAccumulator",
    "ToolExecutionLoop",
    "extract_commands",
]
