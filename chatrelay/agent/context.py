"""Context builder for assembling completion requests."""

from loguru import logger

from chatrelay.agent.tools.cache import ToolResponseCache
from chatrelay.endpoints.base import CommunicationModes
from chatrelay.providers.base import Message


def chat_mode_context(modes: CommunicationModes) -> str:
    """Suffix for requests that arrive over the real-time chat transport."""
    if modes.endpoint_mode == "video":
        return (
            "\n\nCURRENT COMMUNICATION MODE: CHAT (user is texting you right now)"
            "\nAVAILABLE MODES: chat, video"
        )
    if modes.endpoint_mode == "voice":
        return (
            "\n\nCURRENT COMMUNICATION MODE: CHAT (user is texting you right now)"
            "\nAVAILABLE MODES: chat, voice"
        )
    return (
        "\n\nCURRENT COMMUNICATION MODE: CHAT (user is texting you - chat only endpoint)"
        "\nAVAILABLE MODES: chat"
    )


def endpoint_mode_context(modes: CommunicationModes) -> str:
    """Suffix for voice/video API requests; empty when no modes are configured."""
    chat = "chat, " if modes.supports_chat else ""
    if modes.endpoint_mode == "video":
        return (
            "\n\nCURRENT COMMUNICATION MODE: VIDEO (user is on video call with you right now"
            " - they can see and hear you)"
            f"\nAVAILABLE MODES: {chat}video"
        )
    if modes.endpoint_mode == "voice":
        return (
            "\n\nCURRENT COMMUNICATION MODE: VOICE (user is on voice call with you right now"
            " - they can hear you)"
            f"\nAVAILABLE MODES: {chat}voice"
        )
    if modes.supports_chat:
        return (
            '\n\nCURRENT COMMUNICATION MODE: UNKNOWN (check message "mode" field for context)'
            "\nAVAILABLE MODES: chat"
        )
    return ""


class ContextBuilder:
    def __init__(self, cache: ToolResponseCache):
        self.cache = cache

    @staticmethod
    def resolve_system_prompt(
        override: str | None, configured_default: str | None, endpoint_default: str
    ) -> str:
        """Session override, else the configured prompt, else the endpoint's own template."""
        return override or configured_default or endpoint_default

    def build_messages(self, system_prompt: str, history: list[Message]) -> list[Message]:
        """System prompt first, then history with stored system messages dropped."""
        messages = [Message.system(system_prompt)]
        messages.extend(m for m in history if m.role != "system")
        return self.insert_cached_tool_responses(messages)

    def insert_cached_tool_responses(self, messages: list[Message]) -> list[Message]:
        """Give every assistant tool call a tool result, from the cache or a stub."""
        out = list(messages)
        answered = {m.tool_call_id for m in out if m.role == "tool"}
        inserted = 0
        i = 0
        while i < len(out):
            msg = out[i]
            i += 1
            if msg.role != "assistant" or not msg.tool_calls:
                continue
            for call in msg.tool_calls:
                if call.id in answered:
                    continue
                cached = self.cache.get(call.id)
                if cached:
                    logger.debug("Inserting cached tool response for tool call {}", call.id)
                    repair = Message.tool(call.id, cached.tool_name, cached.content)
                elif call.name:
                    logger.warning("No cached response for tool call {}, using fallback", call.id)
                    repair = Message.tool(call.id, call.name, f"{call.name} function executed successfully.")
                else:
                    logger.error("Cannot repair tool call {}: tool name unknown", call.id)
                    continue
                out.insert(i, repair)
                answered.add(call.id)
                inserted += 1
                i += 1
        if inserted:
            logger.info("Inserted {} tool response(s) into the conversation", inserted)
        return out
