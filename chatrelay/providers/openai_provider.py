"""OpenAI-compatible completion provider."""

from __future__ import annotations

from typing import Any, AsyncIterator

from loguru import logger
from openai import AsyncOpenAI, OpenAIError

from chatrelay.errors import CompletionError
from chatrelay.providers.base import (
    LLMProvider,
    LLMResponse,
    StreamChunk,
    ToolCallFragment,
    normalize_tool_calls,
)

DEFAULT_BASE_URL = "https://api.openai.com/v1"
DEFAULT_MODEL = "gpt-4o-mini"


class OpenAIProvider(LLMProvider):
    def __init__(
        self,
        api_key: str,
        api_base: str = DEFAULT_BASE_URL,
        default_model: str = DEFAULT_MODEL,
        client: AsyncOpenAI | None = None,
    ):
        super().__init__(api_key, api_base)
        self.default_model = default_model
        self._client = client or AsyncOpenAI(api_key=api_key, base_url=api_base)

    def _kwargs(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None,
        model: str | None,
    ) -> dict[str, Any]:
        kwargs: dict[str, Any] = {"model": model or self.default_model, "messages": messages}
        if tools:
            kwargs.update(tools=tools, tool_choice="auto")
        return kwargs

    async def chat(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        model: str | None = None,
    ) -> LLMResponse | None:
        kwargs = self._kwargs(messages, tools, model)
        try:
            response = await self._client.chat.completions.create(**kwargs)
        except OpenAIError as e:
            logger.error("Completion request failed for model {}: {}", kwargs["model"], e)
            raise CompletionError(str(e)) from e
        return self._parse(response)

    async def chat_stream(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
        model: str | None = None,
    ) -> AsyncIterator[StreamChunk]:
        kwargs = self._kwargs(messages, tools, model)
        try:
            stream = await self._client.chat.completions.create(stream=True, **kwargs)
            async for part in stream:
                if not part.choices:
                    continue
                yield self._parse_chunk(part.choices[0])
        except OpenAIError as e:
            logger.error("Streaming completion failed for model {}: {}", kwargs["model"], e)
            raise CompletionError(str(e)) from e

    @staticmethod
    def _parse(response: Any) -> LLMResponse | None:
        if not response.choices:
            return None
        choice = response.choices[0]
        msg = choice.message
        u = response.usage
        return LLMResponse(
            content=msg.content,
            tool_calls=normalize_tool_calls(msg),
            finish_reason=choice.finish_reason or "stop",
            usage={
                "prompt_tokens": u.prompt_tokens,
                "completion_tokens": u.completion_tokens,
                "total_tokens": u.total_tokens,
            }
            if u
            else {},
        )

    @staticmethod
    def _parse_chunk(choice: Any) -> StreamChunk:
        delta = choice.delta
        fragments = []
        for tc in (delta.tool_calls if delta else None) or []:
            fn = tc.function
            fragments.append(
                ToolCallFragment(
                    id=tc.id,
                    index=tc.index,
                    type=tc.type,
                    name=fn.name if fn else None,
                    arguments=fn.arguments if fn else None,
                )
            )
        return StreamChunk(
            content=delta.content if delta else None,
            tool_calls=fragments,
            finish_reason=choice.finish_reason,
        )

    def get_default_model(self) -> str:
        return self.default_model
