import json

import pytest

from chatrelay.agent.orchestrator import ConversationOrchestrator, RelayContext
from chatrelay.agent.tools.cache import ToolResponseCache
from chatrelay.channels.local import LocalTransport
from chatrelay.config.schema import Config
from chatrelay.providers.base import FunctionCall, LLMProvider, LLMResponse, ToolCallRequest
from chatrelay.session.conversation import ConversationStore
from chatrelay.session.registry import SessionRegistry

ENV = {
    "EXAMPLE_RTM_APP_ID": "app1",
    "EXAMPLE_RTM_FROM_USER": "agent",
    "EXAMPLE_RTM_CHANNEL": "chan",
    "EXAMPLE_RTM_LLM_API_KEY": "sk-test",
}


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ZeroRng:
    def random(self) -> float:
        return 0.0


class FakeProvider(LLMProvider):
    """Scripted completion service; the last scripted turn repeats once the others are used."""

    def __init__(self, responses=None, streams=None, error=None):
        super().__init__(api_key="sk-test")
        self.responses = list(responses or [])
        self.streams = list(streams or [])
        self.error = error
        self.calls: list[dict] = []

    async def chat(self, messages, tools=None, model=None):
        self.calls.append({"messages": messages, "tools": tools, "model": model})
        if self.error:
            raise self.error
        if not self.responses:
            return LLMResponse(content="ok")
        if len(self.responses) > 1:
            return self.responses.pop(0)
        return self.responses[0]

    async def chat_stream(self, messages, tools=None, model=None):
        self.calls.append({"messages": messages, "tools": tools, "model": model})
        if self.error:
            raise self.error
        chunks = self.streams.pop(0) if len(self.streams) > 1 else self.streams[0]
        for chunk in chunks:
            yield chunk

    def get_default_model(self) -> str:
        return "fake-model"


def tool_call(name: str, arguments="{}", call_id: str = "call_abc123", index: int = 0):
    if not isinstance(arguments, str):
        arguments = json.dumps(arguments)
    return ToolCallRequest(id=call_id, index=index, function=FunctionCall(name, arguments))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def transport():
    return LocalTransport()


@pytest.fixture
def relay(provider, transport):
    registry = SessionRegistry(
        Config(),
        provider_factory=lambda *args: provider,
        transport_factory=lambda settings: transport,
        environ=ENV,
    )
    return RelayContext(registry=registry, cache=ToolResponseCache(), store=ConversationStore())


@pytest.fixture
def delays():
    return []


@pytest.fixture
def orchestrator(relay, delays):
    async def fake_sleep(seconds):
        delays.append(seconds)

    return ConversationOrchestrator(relay, sleep=fake_sleep, rng=ZeroRng())
