"""Event types exchanged between the transport and the orchestrator."""

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from chatrelay.providers.base import Mode

USER_CUSTOM_TYPE = "user.transcription"
USER_CHANNEL_TYPE = "USER"


@dataclass
class InboundMessage:
    """A chat message received from the real-time transport."""

    user_id: str
    content: str
    mode: Mode = "chat"
    timestamp: datetime = field(default_factory=datetime.now)

    @classmethod
    def from_event(cls, event: Any) -> "InboundMessage | None":
        """Decode a ``{publisher, message}`` event; None when there is no sender."""
        if not isinstance(event, dict) or not event.get("publisher"):
            return None
        content = event.get("message") or ""
        if not isinstance(content, str):
            content = str(content)
        try:
            parsed = json.loads(content)
        except ValueError:
            parsed = None
        if isinstance(parsed, dict) and parsed.get("type") == "text" and parsed.get("message"):
            content = parsed["message"]
        return cls(user_id=str(event["publisher"]), content=content)


@dataclass
class OutboundMessage:
    """A payload published to a user or to an agent channel."""

    target: str
    payload: str
    custom_type: str | None = None
    channel_type: str | None = None

    @property
    def is_direct(self) -> bool:
        return self.channel_type == USER_CHANNEL_TYPE


def typing_payload() -> str:
    return json.dumps({"type": "typing_start"})


def command_payload(command: str) -> str:
    return json.dumps({"type": "command", "message": command})
