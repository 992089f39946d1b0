import asyncio
import json

import pytest

from chatrelay.agent.orchestrator import FALLBACK_REPLY, ConversationOrchestrator, compute_delay
from chatrelay.bus.events import typing_payload
from chatrelay.config.schema import DeliveryConfig
from chatrelay.endpoints.example import create_example_endpoint, order_sandwich
from chatrelay.errors import CompletionError
from chatrelay.providers.base import LLMResponse, Message

from .conftest import ZeroRng, tool_call


@pytest.fixture
def sandwich_calls():
    return []


@pytest.fixture
def tool_channels():
    return []


@pytest.fixture
def endpoint(sandwich_calls, tool_channels):
    endpoint = create_example_endpoint()

    def counting(app_id, user_id, channel, args):
        sandwich_calls.append(args)
        tool_channels.append(channel)
        return order_sandwich(app_id, user_id, channel, args)

    endpoint.tools.get("order_sandwich").fn = counting
    return endpoint


@pytest.fixture
async def session(orchestrator, endpoint):
    return await orchestrator.attach("example", endpoint)


def event(text, publisher="u1"):
    return {"publisher": publisher, "message": text}


class TestSandwichOrder:
    async def test_end_to_end(self, orchestrator, session, provider, transport, sandwich_calls):
        provider.responses = [
            LLMResponse(content=None, tool_calls=[tool_call("order_sandwich", {"filling": "Turkey"})]),
            LLMResponse(content="Enjoy!"),
        ]
        result = await orchestrator.handle_event(session.key, session.app_id, event("order a turkey sandwich"))
        await result.delivery

        assert sandwich_calls == [{"filling": "Turkey"}]
        assert result.text == "Enjoy!"
        assert result.commands == []

        added = result.loop.messages[2:]
        assert [m.role for m in added] == ["assistant", "tool"]
        assert added[0].tool_calls[0].name == "order_sandwich"
        assert added[1].content == "Sandwich ordered with Turkey. It will arrive at 3pm. Enjoy!"

        assert transport.sent_to("u1") == [typing_payload(), "Enjoy!"]
        conv = orchestrator.store.get_or_create("app1", "u1")
        assert [(m.role, m.content, m.mode) for m in conv.messages] == [
            ("user", "order a turkey sandwich", "chat"),
            ("assistant", "Enjoy!", "chat"),
        ]

    async def test_tools_see_endpoint_channel_while_history_is_shared(
        self, orchestrator, session, provider, tool_channels
    ):
        provider.responses = [
            LLMResponse(content=None, tool_calls=[tool_call("order_sandwich", {"filling": "Ham"})]),
            LLMResponse(content="Done"),
        ]
        await orchestrator.handle_event(session.key, session.app_id, event("ham please"))

        assert tool_channels == ["chan"]
        assert "app1:u1:default" in orchestrator.store
        assert "app1:u1:chan" not in orchestrator.store

    async def test_delivered_through_transport_subscription(self, session, provider, transport):
        provider.responses = [LLMResponse(content="Hello there")]
        await transport.dispatch("app1", "agent", "chan", event("hi"))
        await session.drain()

        assert transport.sent_to("u1") == [typing_payload(), "Hello there"]


class TestAssembling:
    async def test_system_prompt_carries_chat_mode_context(self, orchestrator, session, provider):
        await orchestrator.handle_event(session.key, session.app_id, event("hi"))

        sent = provider.calls[0]["messages"]
        assert sent[0]["role"] == "system"
        assert sent[0]["content"].endswith(
            "CURRENT COMMUNICATION MODE: CHAT (user is texting you right now)\nAVAILABLE MODES: chat, video"
        )
        assert sent[-1] == {"role": "user", "content": "hi"}
        assert provider.calls[0]["model"] == "gpt-4o-mini"

    async def test_override_prompt_is_used(self, orchestrator, session, provider):
        orchestrator.registry.update_system_prompt("example", "Be a pirate.")
        await orchestrator.handle_event(session.key, session.app_id, event("hi"))

        assert provider.calls[0]["messages"][0]["content"].startswith("Be a pirate.\n\nCURRENT")

    async def test_history_is_sent_on_the_next_message(self, orchestrator, session, provider):
        provider.responses = [LLMResponse(content="first reply")]
        await orchestrator.handle_event(session.key, session.app_id, event("one"))
        await orchestrator.handle_event(session.key, session.app_id, event("two"))

        contents = [m["content"] for m in provider.calls[1]["messages"][1:]]
        assert contents == ["one", "first reply", "two"]

    async def test_text_envelope_is_unwrapped(self, orchestrator, session):
        payload = json.dumps({"type": "text", "message": "hello from the app"})
        await orchestrator.handle_event(session.key, session.app_id, event(payload))

        conv = orchestrator.store.get_or_create("app1", "u1")
        assert conv.messages[0].content == "hello from the app"

    async def test_event_without_publisher_is_dropped(self, orchestrator, session, provider, transport):
        result = await orchestrator.handle_event(session.key, session.app_id, {"message": "hi"})

        assert result is None
        assert provider.calls == []
        assert transport.sent == []


class TestDelivering:
    async def test_commands_go_out_before_typing_and_text(self, orchestrator, session, provider, transport):
        provider.responses = [LLMResponse(content="Sure <wave> thing")]
        result = await orchestrator.handle_event(session.key, session.app_id, event("wave at me"))
        await result.delivery

        assert result.commands == ["<wave>"]
        assert transport.sent_to("u1") == ["<wave>", typing_payload(), "Sure  thing"]
        assert all(m.custom_type == "user.transcription" for m in transport.sent)
        assert all(m.channel_type == "USER" for m in transport.sent)

    async def test_only_commands_sends_no_text(self, orchestrator, session, provider, transport):
        provider.responses = [LLMResponse(content="<hangup>")]
        result = await orchestrator.handle_event(session.key, session.app_id, event("bye"))

        assert result.delivery is None
        assert transport.sent_to("u1") == ["<hangup>"]
        conv = orchestrator.store.get_or_create("app1", "u1")
        assert [m.role for m in conv.messages] == ["user"]

    async def test_reply_is_persisted_before_it_is_delivered(self, relay, endpoint, provider, transport):
        gate = asyncio.Event()

        async def held_sleep(seconds):
            await gate.wait()

        orchestrator = ConversationOrchestrator(relay, sleep=held_sleep, rng=ZeroRng())
        session = await orchestrator.attach("example", endpoint)
        provider.responses = [LLMResponse(content="later")]
        result = await orchestrator.handle_event(session.key, session.app_id, event("hi"))

        conv = orchestrator.store.get_or_create("app1", "u1")
        assert conv.messages[-1].content == "later"
        assert transport.sent_to("u1") == [typing_payload()]

        gate.set()
        assert await result.delivery is True
        assert transport.sent_to("u1")[-1] == "later"

    async def test_new_message_cancels_pending_reply(self, relay, endpoint, provider, transport):
        gate = asyncio.Event()

        async def held_sleep(seconds):
            await gate.wait()

        orchestrator = ConversationOrchestrator(relay, sleep=held_sleep, rng=ZeroRng())
        session = await orchestrator.attach("example", endpoint)
        provider.responses = [LLMResponse(content="first"), LLMResponse(content="second")]

        first = await orchestrator.handle_event(session.key, session.app_id, event("one"))
        second = await orchestrator.handle_event(session.key, session.app_id, event("two"))
        gate.set()
        await second.delivery
        await asyncio.sleep(0)

        assert first.delivery.cancelled()
        assert "first" not in transport.sent_to("u1")
        assert transport.sent_to("u1")[-1] == "second"

    async def test_delay_is_applied(self, orchestrator, session, provider, delays):
        provider.responses = [LLMResponse(content="x" * 10)]
        result = await orchestrator.handle_event(session.key, session.app_id, event("hi"))
        await result.delivery

        assert delays == [pytest.approx(0.7)]

    async def test_publish_failure_is_swallowed(self, orchestrator, session, provider, transport):
        transport.fail = True
        provider.responses = [LLMResponse(content="lost")]
        result = await orchestrator.handle_event(session.key, session.app_id, event("hi"))

        assert await result.delivery is False
        conv = orchestrator.store.get_or_create("app1", "u1")
        assert conv.messages[-1].content == "lost"


class TestFailures:
    async def test_missing_content_uses_fallback(self, orchestrator, session, provider):
        provider.responses = [LLMResponse(content=None)]
        result = await orchestrator.handle_event(session.key, session.app_id, event("hi"))

        assert result.text == FALLBACK_REPLY

    async def test_upstream_failure_is_logged_at_the_boundary(self, orchestrator, session, provider, transport):
        provider.error = CompletionError("503")
        result = await orchestrator.handle_event(session.key, session.app_id, event("hi"))

        assert result is None
        assert transport.sent == []
        conv = orchestrator.store.get_or_create("app1", "u1")
        assert [m.role for m in conv.messages] == ["user"]

    async def test_process_message_propagates_upstream_failure(self, orchestrator, session, provider):
        provider.error = CompletionError("503")
        with pytest.raises(CompletionError):
            await orchestrator.process_message(session, "u1", "hi")

    async def test_unknown_session_is_ignored(self, orchestrator, provider):
        assert await orchestrator.handle_event("NOPE", "app1", event("hi")) is None
        assert provider.calls == []


class TestCompletePath:
    async def test_caller_prompt_becomes_session_override(self, orchestrator, session, provider, transport, endpoint):
        provider.responses = [LLMResponse(content="<dance>On it")]
        result = await orchestrator.complete(
            "example",
            endpoint,
            [Message.system("Video persona"), Message.user("dance for me")],
            app_id="app1",
            user_id="u1",
            channel="call-7",
        )

        assert result.text == "On it"
        assert session.system_prompt_override == "Video persona"

        sent = provider.calls[0]["messages"]
        assert sent[0]["content"].startswith("Video persona\n\nCURRENT COMMUNICATION MODE: VIDEO")
        assert sent[-1] == {"role": "user", "content": "dance for me"}

        assert transport.sent_to("chan") == [json.dumps({"type": "command", "message": "<dance>"})]

        conv = orchestrator.store.get_or_create("app1", "u1", "call-7")
        assert [(m.role, m.mode) for m in conv.messages] == [
            ("system", "video"),
            ("user", "video"),
            ("assistant", "video"),
        ]

    async def test_agent_channel_receives_commands(self, orchestrator, session, provider, transport, endpoint):
        provider.responses = [LLMResponse(content="<wave>")]
        await orchestrator.complete(
            "example", endpoint, [Message.user("hi")], app_id="app1", user_id="u1", agent_channel="agent-chan"
        )

        assert transport.sent_to("agent-chan") == [json.dumps({"type": "command", "message": "<wave>"})]

    async def test_video_turn_is_in_next_chat_request(self, orchestrator, session, provider, endpoint):
        provider.responses = [LLMResponse(content="Nice to meet you, Ada"), LLMResponse(content="Ada")]
        await orchestrator.complete(
            "example", endpoint, [Message.user("my name is Ada")], app_id="app1", user_id="u1"
        )
        await orchestrator.handle_event(session.key, session.app_id, event("what is my name?"))

        chat_request = provider.calls[1]["messages"]
        assert chat_request[0]["role"] == "system"
        assert [m["content"] for m in chat_request[1:]] == [
            "my name is Ada",
            "Nice to meet you, Ada",
            "what is my name?",
        ]

        conv = orchestrator.store.get_or_create("app1", "u1")
        assert [m.mode for m in conv.messages] == ["video", "video", "video", "chat", "chat"]
        assert len(orchestrator.store) == 1


class TestComputeDelay:
    def test_short_text(self):
        assert compute_delay("", rng=ZeroRng()) == pytest.approx(0.3)
        assert compute_delay("x" * 10, rng=ZeroRng()) == pytest.approx(0.7)

    def test_total_is_capped(self):
        assert compute_delay("x" * 5000) == pytest.approx(2.0)

    def test_jitter_stays_below_bound(self):
        class MaxRng:
            def random(self):
                return 0.999

        delay = compute_delay("", DeliveryConfig(), MaxRng())
        assert 0.3 <= delay < 0.6
