"""Conversation orchestrator: inbound chat message in, delayed reply out."""

import asyncio
import random
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Awaitable, Callable, Mapping

from loguru import logger

from chatrelay.agent.commands import extract_commands
from chatrelay.agent.context import ContextBuilder, chat_mode_context, endpoint_mode_context
from chatrelay.agent.loop import DEFAULT_MAX_PASSES, LoopResult, ToolExecutionLoop
from chatrelay.agent.tools.cache import ToolResponseCache
from chatrelay.bus.events import InboundMessage, typing_payload
from chatrelay.config.schema import Config, DeliveryConfig
from chatrelay.endpoints.base import EndpointConfig
from chatrelay.errors import ConfigError
from chatrelay.providers import make_provider
from chatrelay.providers.base import LLMProvider, Message
from chatrelay.session.conversation import (
    DEFAULT_CHANNEL,
    ConversationStore,
    LanceConversationStore,
)
from chatrelay.session.registry import (
    EndpointSession,
    ProviderFactory,
    SessionRegistry,
    TransportFactory,
)
from chatrelay.utils.helpers import get_data_path, preview

FALLBACK_REPLY = "I apologize, but I was unable to generate a response."


def compute_delay(
    text: str, delivery: DeliveryConfig | None = None, rng: random.Random | None = None
) -> float:
    """Seconds to wait before a reply of this length is published."""
    delivery = delivery or DeliveryConfig()
    typing = min(len(text) * delivery.ms_per_char, delivery.max_typing_ms)
    jitter = (rng or random).random() * delivery.jitter_ms
    return min(delivery.base_delay_ms + typing + jitter, delivery.max_total_ms) / 1000


@dataclass
class RelayContext:
    """Everything the orchestrator shares across messages."""

    registry: SessionRegistry
    cache: ToolResponseCache
    store: ConversationStore
    delivery: DeliveryConfig = field(default_factory=DeliveryConfig)
    max_passes: int = DEFAULT_MAX_PASSES
    stream: bool = False

    @classmethod
    def from_config(
        cls,
        config: Config,
        provider_factory: ProviderFactory = make_provider,
        transport_factory: TransportFactory | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> "RelayContext":
        conv = config.conversations
        store_kwargs = {
            "max_age": conv.max_age_hours * 3600,
            "cleanup_interval": conv.cleanup_interval_seconds,
            "max_memory": conv.max_memory_mb * 1024 * 1024,
        }
        if conv.persist:
            store = LanceConversationStore(get_data_path(), **store_kwargs)
        else:
            store = ConversationStore(**store_kwargs)
        return cls(
            registry=SessionRegistry(config, provider_factory, transport_factory, environ),
            cache=ToolResponseCache(
                ttl=config.cache.ttl_seconds, sweep_interval=config.cache.sweep_interval_seconds
            ),
            store=store,
            delivery=config.delivery,
            max_passes=config.loop.max_passes,
            stream=config.loop.stream,
        )


@dataclass
class ProcessResult:
    text: str
    commands: list[str]
    loop: LoopResult
    delivery: asyncio.Task | None = None


class ConversationOrchestrator:
    """
    Runs one inbound message through the whole pipeline.

    1. Records the user's message and assembles the request
    2. Runs the tool execution loop
    3. Splits commands out of the final text
    4. Persists the reply, then publishes commands, a typing indicator and,
       after a length-based delay, the reply itself
    """

    def __init__(
        self,
        context: RelayContext,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: random.Random | None = None,
    ):
        self.context = context
        self.builder = ContextBuilder(context.cache)
        self._sleep = sleep
        self._rng = rng
        self._attached: set[str] = set()

    @property
    def registry(self) -> SessionRegistry:
        return self.context.registry

    @property
    def store(self) -> ConversationStore:
        return self.context.store

    async def start(self) -> None:
        self.context.cache.start()
        self.context.store.start()

    async def stop(self) -> None:
        await self.registry.close()
        await self.context.cache.stop()
        await self.context.store.stop()

    async def attach(self, name: str, endpoint: EndpointConfig) -> EndpointSession | None:
        """Initialize the endpoint session and subscribe to its chat channel."""
        session = self.registry.initialize(name, endpoint)
        if session is None or session.key in self._attached:
            return session
        await session.transport.start()
        session.transport.subscribe_messages(
            session.app_id,
            session.from_user,
            session.channel,
            partial(self.handle_event, session.key, session.app_id),
        )
        if endpoint.on_attach:
            endpoint.on_attach(session.transport)
        self._attached.add(session.key)
        return session

    async def handle_event(
        self, session_key: str, app_id: str, event: Any
    ) -> ProcessResult | None:
        """Transport callback; failures stop here and are only logged."""
        session = self.registry.get(session_key)
        if session is None:
            logger.error("No session found for {}", session_key)
            return None
        inbound = InboundMessage.from_event(event)
        if inbound is None:
            logger.warning("Dropping event without publisher: {}", preview(str(event)))
            return None
        if app_id != session.app_id:
            logger.warning("Event for app {} reached session {} ({})", app_id, session_key, session.app_id)

        try:
            return await self.process_message(session, inbound.user_id, inbound.content)
        except Exception as e:
            logger.error("Error processing chat message from {}: {}", inbound.user_id, e)
            return None

    async def process_message(
        self, session: EndpointSession, user_id: str, text: str
    ) -> ProcessResult:
        app_id, channel = session.app_id, session.channel
        logger.info("Processing message from {} on {}: {}", user_id, session.key, preview(text))
        session.cancel_delivery(user_id)

        # Assembling, in the conversation shared with voice/video turns
        self.store.append(app_id, user_id, DEFAULT_CHANNEL, Message.user(text, mode="chat"))
        conversation = self.store.get_or_create(app_id, user_id, DEFAULT_CHANNEL)
        system_prompt = session.system_prompt() + chat_mode_context(session.config.modes)
        messages = self.builder.build_messages(system_prompt, conversation.history())

        # Executing
        loop = ToolExecutionLoop(
            provider=session.provider,
            tools=session.config.tools,
            cache=self.context.cache,
            model=session.model,
            max_passes=self.context.max_passes,
        )
        result = await loop.run(messages, app_id, user_id, channel, stream=self.context.stream)

        # Extracting
        reply, commands = extract_commands(result.content or FALLBACK_REPLY)
        if commands:
            logger.info("Extracted {} command(s) from response", len(commands))

        # Persisting
        if reply.strip():
            self.store.append(
                app_id, user_id, DEFAULT_CHANNEL, Message.assistant(reply, mode="chat")
            )

        # Delivering
        transport = session.transport
        for cmd in commands:
            await transport.send_to_user(user_id, cmd)
        if not reply.strip():
            logger.debug("Nothing left to deliver to {} after command extraction", user_id)
            return ProcessResult(text=reply, commands=commands, loop=result)

        await transport.send_to_user(user_id, typing_payload())
        delay = compute_delay(reply, self.context.delivery, self._rng)
        logger.debug("Reply to {}: {} chars, delay {:.0f}ms", user_id, len(reply), delay * 1000)
        task = session.schedule_delivery(user_id, self._deliver_later(session, user_id, reply, delay))
        return ProcessResult(text=reply, commands=commands, loop=result, delivery=task)

    async def _deliver_later(
        self, session: EndpointSession, user_id: str, text: str, delay: float
    ) -> bool:
        await self._sleep(delay)
        try:
            sent = await session.transport.send_to_user(user_id, text)
        except Exception as e:
            logger.error("Error sending delayed response to {}: {}", user_id, e)
            return False
        if sent:
            logger.debug("Delayed response sent to {}", user_id)
        else:
            logger.warning("Delayed response to {} was not delivered", user_id)
        return sent

    async def complete(
        self,
        name: str,
        endpoint: EndpointConfig,
        messages: list[Message],
        app_id: str,
        user_id: str,
        channel: str = DEFAULT_CHANNEL,
        provider: LLMProvider | None = None,
        model: str | None = None,
        stream: bool = False,
        agent_channel: str | None = None,
    ) -> ProcessResult:
        """
        Voice/video request path.

        A leading system message from the caller becomes the endpoint's prompt
        override so later chat messages share it. Commands go to
        ``agent_channel`` (or the session channel) as command payloads.
        """
        session = await self.attach(name, endpoint)
        if messages and messages[0].role == "system":
            self.registry.update_system_prompt(name, messages[0].content)
            system_prompt = messages[0].content
            request = messages[1:]
        else:
            system_prompt = endpoint.default_system_prompt()
            request = list(messages)

        provider = provider or (session.provider if session else None)
        if provider is None:
            raise ConfigError(f"No completion provider available for {name}")

        mode = endpoint.modes.endpoint_mode
        request = [
            Message.from_dict({**m.to_dict(), "mode": mode}) if mode else m for m in request
        ]
        system_prompt += endpoint_mode_context(endpoint.modes)
        self.store.append(app_id, user_id, channel, Message.system(system_prompt, mode=mode))

        history = self.store.get_or_create(app_id, user_id, channel).history()
        outbound = self.builder.build_messages(system_prompt, history + request)
        for m in request:
            if m.role == "user":
                self.store.append(app_id, user_id, channel, Message.user(m.content, mode=mode))

        loop = ToolExecutionLoop(
            provider=provider,
            tools=endpoint.tools,
            cache=self.context.cache,
            model=model or (session.model if session else None),
            max_passes=self.context.max_passes,
        )
        result = await loop.run(outbound, app_id, user_id, channel, stream=stream)

        reply, commands = extract_commands(result.content or FALLBACK_REPLY)
        if reply.strip():
            self.store.append(app_id, user_id, channel, Message.assistant(reply, mode=mode))

        if commands and session:
            target = agent_channel or session.channel
            for cmd in commands:
                logger.info("Sending command to channel {}: {}", target, cmd)
                await session.transport.send_command(target, cmd)
        elif commands:
            logger.warning("Dropping {} command(s): {} has no transport", len(commands), name)

        return ProcessResult(text=reply, commands=commands, loop=result)
