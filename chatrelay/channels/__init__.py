"""Real-time messaging transports."""

from chatrelay.channels.base import BaseTransport
from chatrelay.channels.local import LocalTransport
from chatrelay.channels.rtm import RTMRestTransport

__all__ = ["BaseTransport", "LocalTransport", "RTMRestTransport"]
