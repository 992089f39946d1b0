"""Tool dispatch table: tool definitions plus the functions that serve them."""

import inspect
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

ToolFunction = Callable[[str, str, str, dict[str, Any]], "str | Awaitable[str]"]


@dataclass
class Tool:
    name: str
    description: str
    fn: ToolFunction
    parameters: dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}, "required": []}
    )

    def to_schema(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


class ToolRegistry:
    def __init__(self, tools: list[Tool] | None = None):
        self._tools: dict[str, Tool] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        self._tools[tool.name] = tool

    def unregister(self, name: str) -> None:
        self._tools.pop(name, None)

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def has(self, name: str) -> bool:
        return name in self._tools

    @property
    def tool_names(self) -> list[str]:
        return list(self._tools)

    def get_definitions(self) -> list[dict[str, Any]]:
        return [t.to_schema() for t in self._tools.values()]

    async def invoke(
        self, name: str, app_id: str, user_id: str, channel: str, args: dict[str, Any]
    ) -> str:
        """Call the tool; sync and async tool functions are both accepted.

        Raises KeyError for unknown names and lets tool exceptions propagate;
        the execution loop turns those into textual results.
        """
        tool = self._tools[name]
        result = tool.fn(app_id, user_id, channel, args)
        if inspect.isawaitable(result):
            result = await result
        return result if isinstance(result, str) else str(result)

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools
