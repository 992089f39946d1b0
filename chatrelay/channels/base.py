"""Base class for real-time messaging transports."""

import inspect
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable

from loguru import logger

from chatrelay.bus.events import (
    USER_CHANNEL_TYPE,
    USER_CUSTOM_TYPE,
    OutboundMessage,
    command_payload,
)

MessageHandler = Callable[[dict[str, Any]], "Awaitable[None] | None"]


class BaseTransport(ABC):
    """
    Publish/subscribe primitives of a real-time messaging service.

    Subscriptions are keyed by ``(app_id, from_user, channel)``; inbound events
    of the form ``{publisher, message}`` reach every handler of that key via
    ``dispatch``.
    """

    name: str = "base"

    def __init__(self):
        self._handlers: dict[tuple[str, str, str], list[MessageHandler]] = {}

    @abstractmethod
    async def publish(
        self,
        target: str,
        payload: str,
        custom_type: str | None = None,
        channel_type: str | None = None,
    ) -> bool:
        """Publish ``payload`` to a user or channel; False when delivery failed."""

    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        pass

    def subscribe_messages(
        self, app_id: str, from_user: str, channel: str, handler: MessageHandler
    ) -> None:
        self._handlers.setdefault((app_id, from_user, channel), []).append(handler)
        logger.debug("{}: subscribed handler for {}:{}:{}", self.name, app_id, from_user, channel)

    async def dispatch(self, app_id: str, from_user: str, channel: str, event: dict[str, Any]) -> int:
        """Deliver an inbound event to the subscribed handlers; returns how many ran."""
        handlers = self._handlers.get((app_id, from_user, channel), [])
        if not handlers:
            logger.warning("{}: no handler for {}:{}:{}, event dropped", self.name, app_id, from_user, channel)
        for handler in handlers:
            result = handler(event)
            if inspect.isawaitable(result):
                await result
        return len(handlers)

    async def send_to_user(self, user_id: str, text: str) -> bool:
        return await self.publish(user_id, text, USER_CUSTOM_TYPE, USER_CHANNEL_TYPE)

    async def send_command(self, channel: str, command: str) -> bool:
        return await self.publish(channel, command_payload(command))

    def _outbound(
        self, target: str, payload: str, custom_type: str | None, channel_type: str | None
    ) -> OutboundMessage:
        return OutboundMessage(
            target=target, payload=payload, custom_type=custom_type, channel_type=channel_type
        )
