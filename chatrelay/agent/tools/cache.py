"""Short-lived cache of tool outputs, keyed by tool-call id."""

import asyncio
import time
from dataclasses import dataclass
from typing import Callable

from loguru import logger

DEFAULT_TTL_SECONDS = 24 * 60 * 60
DEFAULT_SWEEP_INTERVAL_SECONDS = 60.0


@dataclass
class ToolResponseCacheEntry:
    tool_call_id: str
    tool_name: str
    content: str
    created_at: float


class ToolResponseCache:
    """Entries older than ``ttl`` are treated as absent even before a sweep removes them."""

    def __init__(
        self,
        ttl: float = DEFAULT_TTL_SECONDS,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.ttl = ttl
        self.sweep_interval = sweep_interval
        self._clock = clock
        self._entries: dict[str, ToolResponseCacheEntry] = {}
        self._sweeper: asyncio.Task | None = None

    def store(self, tool_call_id: str, tool_name: str, content: str) -> None:
        self._entries[tool_call_id] = ToolResponseCacheEntry(
            tool_call_id=tool_call_id,
            tool_name=tool_name,
            content=content,
            created_at=self._clock(),
        )

    def get(self, tool_call_id: str) -> ToolResponseCacheEntry | None:
        entry = self._entries.get(tool_call_id)
        if entry is None:
            return None
        if self._expired(entry, self._clock()):
            del self._entries[tool_call_id]
            return None
        return entry

    def sweep(self) -> int:
        now = self._clock()
        expired = [k for k, e in self._entries.items() if self._expired(e, now)]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("Cleaned up {} expired tool response entries from cache", len(expired))
        return len(expired)

    def _expired(self, entry: ToolResponseCacheEntry, now: float) -> bool:
        return now - entry.created_at > self.ttl

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, tool_call_id: object) -> bool:
        return tool_call_id in self._entries

    def start(self) -> None:
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._run_sweeper())

    async def stop(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None

    async def _run_sweeper(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                self.sweep()
            except Exception as e:
                logger.error("Tool response cache sweep failed: {}", e)
