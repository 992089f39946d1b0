"""In-process transport used by the interactive CLI and the tests."""

import inspect
from typing import Awaitable, Callable

from loguru import logger

from chatrelay.bus.events import OutboundMessage
from chatrelay.channels.base import BaseTransport
from chatrelay.utils.helpers import preview

PublishCallback = Callable[[OutboundMessage], "Awaitable[None] | None"]


class LocalTransport(BaseTransport):
    """Records every published message and optionally forwards it to a callback."""

    name = "local"

    def __init__(self, on_publish: PublishCallback | None = None, fail: bool = False):
        super().__init__()
        self.sent: list[OutboundMessage] = []
        self.on_publish = on_publish
        self.fail = fail

    async def publish(
        self,
        target: str,
        payload: str,
        custom_type: str | None = None,
        channel_type: str | None = None,
    ) -> bool:
        if self.fail:
            logger.error("local: publish to {} failed", target)
            return False
        msg = self._outbound(target, payload, custom_type, channel_type)
        self.sent.append(msg)
        logger.debug("local: published to {}: {}", target, preview(payload))
        if self.on_publish:
            result = self.on_publish(msg)
            if inspect.isawaitable(result):
                await result
        return True

    def sent_to(self, target: str) -> list[str]:
        return [m.payload for m in self.sent if m.target == target]
