"""Wire events for transport/orchestrator communication."""

from chatrelay.bus.events import InboundMessage, OutboundMessage, command_payload, typing_payload

__all__ = ["InboundMessage", "OutboundMessage", "command_payload", "typing_payload"]
