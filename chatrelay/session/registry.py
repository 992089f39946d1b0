"""Registry of initialized endpoint sessions."""

import asyncio
import os
from dataclasses import dataclass, field
from typing import Any, Callable, Coroutine, Mapping

from loguru import logger

from chatrelay.agent.context import ContextBuilder
from chatrelay.channels.base import BaseTransport
from chatrelay.channels.rtm import RTMRestTransport
from chatrelay.config.schema import Config, EndpointSettings
from chatrelay.endpoints.base import EndpointConfig
from chatrelay.providers import make_provider
from chatrelay.providers.base import LLMProvider
from chatrelay.utils.helpers import preview

ProviderFactory = Callable[[str, str, str], LLMProvider]
TransportFactory = Callable[[EndpointSettings], BaseTransport]

_ENV_FIELDS = {
    "APP_ID": "rtm_app_id",
    "TOKEN": "rtm_token",
    "FROM_USER": "rtm_from_user",
    "CHANNEL": "rtm_channel",
    "LLM_MODEL": "llm_model",
    "LLM_BASE_URL": "llm_base_url",
    "LLM_API_KEY": "llm_api_key",
    "LLM_PROMPT": "llm_prompt",
}


def env_prefix(name: str) -> str:
    return f"{name.upper()}_RTM"


def resolve_settings(
    name: str, base: EndpointSettings, environ: Mapping[str, str] | None = None
) -> EndpointSettings:
    """Overlay ``<NAME>_RTM_*`` environment variables on the configured settings."""
    environ = os.environ if environ is None else environ
    prefix = env_prefix(name)
    overrides = {
        attr: environ[f"{prefix}_{suffix}"]
        for suffix, attr in _ENV_FIELDS.items()
        if environ.get(f"{prefix}_{suffix}")
    }
    return base.model_copy(update=overrides)


@dataclass
class EndpointSession:
    """One initialized endpoint: its configuration, clients and mutable prompt state."""

    name: str
    config: EndpointConfig
    settings: EndpointSettings
    provider: LLMProvider
    transport: BaseTransport
    system_prompt_override: str | None = None
    pending: dict[str, asyncio.Task] = field(default_factory=dict)

    @property
    def key(self) -> str:
        return self.name.upper()

    @property
    def app_id(self) -> str:
        return self.settings.rtm_app_id

    @property
    def from_user(self) -> str:
        return self.settings.rtm_from_user

    @property
    def channel(self) -> str:
        return self.settings.rtm_channel

    @property
    def model(self) -> str:
        return self.settings.llm_model

    @property
    def base_url(self) -> str:
        return self.settings.llm_base_url

    def system_prompt(self) -> str:
        return ContextBuilder.resolve_system_prompt(
            self.system_prompt_override,
            self.settings.llm_prompt,
            self.config.default_system_prompt(),
        )

    def schedule_delivery(self, user_id: str, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        """Run ``coro`` as the user's pending delivery, cancelling any earlier one."""
        self.cancel_delivery(user_id)
        task = asyncio.create_task(coro)
        self.pending[user_id] = task

        def _forget(t: asyncio.Task) -> None:
            if self.pending.get(user_id) is t:
                del self.pending[user_id]

        task.add_done_callback(_forget)
        return task

    def cancel_delivery(self, user_id: str) -> bool:
        task = self.pending.pop(user_id, None)
        if task is None or task.done():
            return False
        task.cancel()
        logger.debug("Cancelled pending delivery to {} on {}", user_id, self.key)
        return True

    async def drain(self) -> None:
        """Wait for every pending delivery to finish."""
        tasks = list(self.pending.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def info(self) -> dict[str, Any]:
        return {
            "endpoint_name": self.name,
            "supports_chat": self.config.modes.supports_chat,
            "endpoint_mode": self.config.modes.endpoint_mode or "none",
            "environment_prefix": env_prefix(self.name),
            "has_custom_system_message": self.system_prompt_override is not None,
            "model": self.model,
            "base_url": self.base_url,
            "channel": self.channel,
            "pending_deliveries": len(self.pending),
        }


class SessionRegistry:
    """
    Maps endpoint names to their sessions, creating each lazily on first use.

    Names are case-insensitive. A session is created at most once; later
    ``initialize`` calls return the existing one.
    """

    def __init__(
        self,
        config: Config | None = None,
        provider_factory: ProviderFactory = make_provider,
        transport_factory: TransportFactory | None = None,
        environ: Mapping[str, str] | None = None,
    ):
        self.config = config or Config()
        self.provider_factory = provider_factory
        self.transport_factory = transport_factory or self._rest_transport
        self.environ = environ
        self._sessions: dict[str, EndpointSession] = {}

    def _rest_transport(self, settings: EndpointSettings) -> BaseTransport:
        return RTMRestTransport(
            app_id=settings.rtm_app_id,
            from_user=settings.rtm_from_user,
            channel=settings.rtm_channel,
            config=self.config.transport,
        )

    def initialize(self, name: str, endpoint: EndpointConfig) -> EndpointSession | None:
        key = name.upper()
        if key in self._sessions:
            return self._sessions[key]
        if not endpoint.modes.supports_chat:
            logger.info("{} does not support chat mode, skipping initialization", name)
            return None

        settings = resolve_settings(name, self.config.endpoint(name), self.environ)
        missing = [
            f"{env_prefix(name)}_{suffix}"
            for suffix in ("APP_ID", "FROM_USER", "CHANNEL", "LLM_API_KEY")
            if not getattr(settings, _ENV_FIELDS[suffix])
        ]
        if missing:
            logger.warning("{} chat not configured, missing: {}", name, ", ".join(missing))
            return None

        try:
            provider = self.provider_factory(
                settings.llm_api_key, settings.llm_base_url, settings.llm_model
            )
            transport = self.transport_factory(settings)
        except Exception as e:
            logger.error("Error initializing {} chat: {}", name, e)
            return None

        session = EndpointSession(
            name=name,
            config=endpoint,
            settings=settings,
            provider=provider,
            transport=transport,
        )
        self._sessions[key] = session
        logger.info(
            "{} chat initialized (app={}, user={}, channel={}, model={}, base_url={})",
            name,
            settings.rtm_app_id,
            settings.rtm_from_user,
            settings.rtm_channel,
            settings.llm_model,
            settings.llm_base_url,
        )
        return session

    def get(self, name: str) -> EndpointSession | None:
        return self._sessions.get(name.upper())

    def update_system_prompt(self, name: str, prompt: str | None) -> bool:
        session = self.get(name)
        if session is None:
            logger.warning("Cannot update system prompt: {} not initialized", name)
            return False
        session.system_prompt_override = prompt or None
        logger.info("Updated system prompt for {}: {}", name, preview(prompt, 100))
        return True

    def is_active(self, name: str) -> bool:
        return name.upper() in self._sessions

    def active_sessions(self) -> list[str]:
        return list(self._sessions)

    def info(self, name: str) -> dict[str, Any] | None:
        session = self.get(name)
        return session.info() if session else None

    async def close(self) -> None:
        for session in self._sessions.values():
            for user_id in list(session.pending):
                session.cancel_delivery(user_id)
            await session.transport.stop()
