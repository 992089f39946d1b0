"""Base LLM provider interface and the message types exchanged with it."""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Literal

Role = Literal["system", "user", "assistant", "tool"]
Mode = Literal["chat", "voice", "video"]

_ROLES = ("system", "user", "assistant", "tool")
_MODES = ("chat", "voice", "video")


@dataclass
class FunctionCall:
    name: str = ""
    arguments: str = ""  # JSON text, possibly incomplete mid-stream


@dataclass
class ToolCallRequest:
    """A tool call request from the LLM."""

    id: str
    function: FunctionCall
    index: int = 0
    type: str = "function"

    @property
    def name(self) -> str:
        return self.function.name

    def to_wire(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "function": {"name": self.function.name, "arguments": self.function.arguments},
        }

    def to_dict(self) -> dict[str, Any]:
        return {**self.to_wire(), "index": self.index}

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> "ToolCallRequest":
        fn = data.get("function") or {}
        return cls(
            id=data["id"],
            index=data.get("index", 0) or 0,
            type=data.get("type") or "function",
            function=FunctionCall(name=fn.get("name") or "", arguments=fn.get("arguments") or ""),
        )


@dataclass
class ToolCallFragment:
    """A partial tool call as delivered by a stream; any field may be missing."""

    id: str | None = None
    index: int | None = None
    type: str | None = None
    name: str | None = None
    arguments: str | None = None


@dataclass
class Message:
    role: Role
    content: str = ""
    name: str | None = None
    tool_calls: list[ToolCallRequest] = field(default_factory=list)
    tool_call_id: str | None = None
    mode: Mode | None = None
    timestamp: float | None = None

    def __post_init__(self) -> None:
        if self.role not in _ROLES:
            raise ValueError(f"Unknown message role: {self.role!r}")
        if self.mode is not None and self.mode not in _MODES:
            raise ValueError(f"Unknown communication mode: {self.mode!r}")
        if self.role == "tool" and not self.tool_call_id:
            raise ValueError("Tool messages require a tool_call_id")
        if self.tool_calls and self.role != "assistant":
            raise ValueError("Only assistant messages may carry tool calls")

    @classmethod
    def system(cls, content: str, mode: Mode | None = None) -> "Message":
        return cls(role="system", content=content, mode=mode)

    @classmethod
    def user(cls, content: str, mode: Mode | None = None) -> "Message":
        return cls(role="user", content=content, mode=mode)

    @classmethod
    def assistant(
        cls,
        content: str | None = "",
        tool_calls: list[ToolCallRequest] | None = None,
        mode: Mode | None = None,
    ) -> "Message":
        return cls(role="assistant", content=content or "", tool_calls=list(tool_calls or []), mode=mode)

    @classmethod
    def tool(cls, tool_call_id: str, name: str, content: str) -> "Message":
        return cls(role="tool", content=content, name=name, tool_call_id=tool_call_id)

    def stamped(self) -> "Message":
        if self.timestamp is None:
            self.timestamp = time.time()
        return self

    def to_wire(self) -> dict[str, Any]:
        """Protocol fields only; mode and timestamp never travel upstream."""
        msg: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.name:
            msg["name"] = self.name
        if self.tool_calls:
            msg["tool_calls"] = [tc.to_wire() for tc in self.tool_calls]
        if self.tool_call_id:
            msg["tool_call_id"] = self.tool_call_id
        return msg

    def to_dict(self) -> dict[str, Any]:
        data = self.to_wire()
        if self.tool_calls:
            data["tool_calls"] = [tc.to_dict() for tc in self.tool_calls]
        if self.mode:
            data["mode"] = self.mode
        if self.timestamp is not None:
            data["timestamp"] = self.timestamp
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Message":
        return cls(
            role=data["role"],
            content=data.get("content") or "",
            name=data.get("name"),
            tool_calls=[ToolCallRequest.from_wire(tc) for tc in data.get("tool_calls") or []],
            tool_call_id=data.get("tool_call_id"),
            mode=data.get("mode"),
            timestamp=data.get("timestamp"),
        )


@dataclass
class LLMResponse:
    """Response from an LLM provider."""

    content: str | None
    tool_calls: list[ToolCallRequest] = field(default_factory=list)
    finish_reason: str = "stop"
    usage: dict[str, int] = field(default_factory=dict)

    @property
    def has_tool_calls(self) -> bool:
        """Check if response contains tool calls."""
        return len(self.tool_calls) > 0


@dataclass
class StreamChunk:
    content: str | None = None
    tool_calls: list[ToolCallFragment] = field(default_factory=list)
    finish_reason: str | None = None


def normalize_tool_calls(message: Any) -> list[ToolCallRequest]:
    """Extract tool calls from an OpenAI-style message, keeping arguments as raw text."""
    tool_calls: list[ToolCallRequest] = []
    for i, tc in enumerate(getattr(message, "tool_calls", None) or []):
        fn = getattr(tc, "function", None)
        if fn is None:
            continue
        args = fn.arguments
        if not isinstance(args, str):
            args = "" if args is None else str(args)
        tool_calls.append(
            ToolCallRequest(
                id=tc.id,
                index=getattr(tc, "index", None) or i,
                function=FunctionCall(name=fn.name or "", arguments=args),
            )
        )
    return tool_calls


class LLMProvider(ABC):
    def __init__(self, api_key: str | None = None, api_base: str | None = None):
        self.api_key = api_key
        self.api_base = api_base

    @abstractmethod
    async def chat(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        model: str | None = None,
    ) -> LLMResponse | None:
        """One non-streaming completion; None when the service returned no choices."""

    @abstractmethod
    def chat_stream(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        model: str | None = None,
    ) -> AsyncIterator[StreamChunk]:
        pass

    @abstractmethod
    def get_default_model(self) -> str:
        pass
