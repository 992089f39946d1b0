"""Endpoint configuration: the tool set, prompt builder and supported modes of one endpoint."""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Literal

from chatrelay.agent.tools.registry import ToolRegistry

if TYPE_CHECKING:
    from chatrelay.channels.base import BaseTransport

EndpointMode = Literal["voice", "video"]


@dataclass(frozen=True)
class CommunicationModes:
    supports_chat: bool = False
    endpoint_mode: EndpointMode | None = None

    @property
    def available(self) -> list[str]:
        modes = ["chat"] if self.supports_chat else []
        if self.endpoint_mode:
            modes.append(self.endpoint_mode)
        return modes


@dataclass
class EndpointConfig:
    name: str
    tools: ToolRegistry
    system_prompt_template: Callable[[dict[str, str]], str]
    rag_data: dict[str, str] = field(default_factory=dict)
    modes: CommunicationModes = field(default_factory=CommunicationModes)
    # Called with the session transport once the endpoint is attached
    on_attach: "Callable[[BaseTransport], None] | None" = None

    def default_system_prompt(self) -> str:
        return self.system_prompt_template(self.rag_data)
