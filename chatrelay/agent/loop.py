"""Tool execution loop: bounded rounds of completion and tool calls."""

from dataclasses import dataclass, field
from typing import AsyncIterator

from loguru import logger

from chatrelay.agent.accumulator import ToolCallAccumulator
from chatrelay.agent.tools.cache import ToolResponseCache
from chatrelay.agent.tools.registry import ToolRegistry
from chatrelay.errors import ToolArgumentsError
from chatrelay.providers.base import LLMProvider, LLMResponse, Message, StreamChunk, ToolCallRequest
from chatrelay.utils.helpers import preview, safe_json_parse

DEFAULT_MAX_PASSES = 5


@dataclass
class LoopResult:
    response: LLMResponse | None
    messages: list[Message]
    passes: int
    tools_used: list[str] = field(default_factory=list)

    @property
    def content(self) -> str | None:
        return self.response.content if self.response else None


async def collect_stream(chunks: AsyncIterator[StreamChunk]) -> LLMResponse | None:
    """Fold one streamed turn into a response, reassembling its tool calls."""
    accumulator = ToolCallAccumulator()
    parts: list[str] = []
    finish_reason: str | None = None
    received = False

    async for chunk in chunks:
        received = True
        for fragment in chunk.tool_calls:
            accumulator.add(fragment)
        if chunk.content:
            parts.append(chunk.content)
        if chunk.finish_reason:
            finish_reason = chunk.finish_reason

    if not received:
        return None
    calls = accumulator.calls()
    accumulator.reset()
    return LLMResponse(
        content="".join(parts) or None,
        tool_calls=calls,
        finish_reason=finish_reason or ("tool_calls" if calls else "stop"),
    )


class ToolExecutionLoop:
    def __init__(
        self,
        provider: LLMProvider,
        tools: ToolRegistry,
        cache: ToolResponseCache,
        model: str | None = None,
        max_passes: int = DEFAULT_MAX_PASSES,
    ):
        self.provider = provider
        self.tools = tools
        self.cache = cache
        self.model = model or provider.get_default_model()
        self.max_passes = max_passes

    async def run(
        self,
        initial_messages: list[Message],
        app_id: str,
        user_id: str,
        channel: str,
        stream: bool = False,
    ) -> LoopResult:
        """Run until a response carries no tool calls or the pass bound is hit.

        At the bound the last response is returned as-is, unresolved tool
        calls included. Completion-service errors propagate.
        """
        messages = list(initial_messages)
        definitions = self.tools.get_definitions() or None
        response: LLMResponse | None = None
        tools_used: list[str] = []
        passes = 0

        while passes < self.max_passes:
            passes += 1
            wire = [m.to_wire() for m in messages]
            logger.debug("Pass #{}: {} messages, model={}, stream={}", passes, len(wire), self.model, stream)

            if stream:
                response = await collect_stream(
                    self.provider.chat_stream(wire, tools=definitions, model=self.model)
                )
            else:
                response = await self.provider.chat(wire, tools=definitions, model=self.model)

            if response is None:
                logger.warning("No choices returned on pass #{}; stopping", passes)
                break

            logger.debug(
                "LLM response: has_tool_calls={}, tool_count={}, finish_reason={}",
                response.has_tool_calls,
                len(response.tool_calls),
                response.finish_reason,
            )
            if not response.has_tool_calls:
                break

            for call in response.tool_calls:
                result = await self._execute(call, app_id, user_id, channel)
                if result is None:
                    continue
                tools_used.append(call.name)
                messages.append(Message.assistant("", [call]).stamped())
                messages.append(Message.tool(call.id, call.name, result).stamped())
        else:
            if response is not None and response.has_tool_calls:
                logger.warning(
                    "Reached max passes ({}) with {} unresolved tool call(s)",
                    self.max_passes,
                    len(response.tool_calls),
                )

        return LoopResult(response=response, messages=messages, passes=passes, tools_used=tools_used)

    async def _execute(
        self, call: ToolCallRequest, app_id: str, user_id: str, channel: str
    ) -> str | None:
        """Result text for one call, or None when the call has to be skipped."""
        name = call.name
        if not name:
            logger.warning("Tool call {} has no function name, skipping", call.id)
            return None
        if name not in self.tools:
            logger.error("Unknown tool name: {} (available: {})", name, self.tools.tool_names)
            return None
        try:
            args = safe_json_parse(call.function.arguments)
        except ToolArgumentsError as e:
            logger.error("Could not parse arguments for {}: {}", name, e)
            return None

        logger.info("Tool call: {}({}) for {} in {}", name, preview(call.function.arguments, 200), user_id, channel)
        try:
            result = await self.tools.invoke(name, app_id, user_id, channel, args)
        except Exception as e:
            logger.error("Error executing tool {}: {}", name, e)
            result = f"Error executing {name}: {str(e) or type(e).__name__}"
        else:
            logger.debug("Tool result for {}: {}", name, preview(result, 200))

        self.cache.store(call.id, name, result)
        return result
