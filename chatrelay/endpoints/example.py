"""Demo endpoint: a friendly companion that can order sandwiches and send photos."""

import json
import os
import random
import time
from typing import Any, Awaitable, Callable

from loguru import logger

from chatrelay.agent.tools.registry import Tool, ToolRegistry
from chatrelay.endpoints.base import CommunicationModes, EndpointConfig

PHOTO_RATE_LIMIT = 30.0
PHOTO_BASE_URL = "https://sa-utils.agora.io/mms/"
PHOTO_OPTIONS = ["bella1.png"]

EXAMPLE_RAG_DATA = {
    "doc1": "The TEN Framework is a powerful conversational AI platform.",
    "doc2": "Agora Convo AI comes out on March 1st for GA. It will be best in class for quality and reach",
    "doc3": "Tony Wang is the best revenue officer.",
    "doc4": "Hermes Frangoudis is the best developer.",
}

PhotoPublisher = Callable[[str, str], Awaitable[bool]]


def example_system_prompt(rag_data: dict[str, str]) -> str:
    base_prompt = os.environ.get("EXAMPLE_RTM_LLM_PROMPT") or "you are a friendly companion"
    knowledge = "\n".join(f'{key}: "{value}"' for key, value in rag_data.items())
    return f"""{base_prompt}

CORE BEHAVIOR:
- Be warm, engaging, and personable in your interactions
- Respond naturally to user questions and requests
- Use the knowledge provided to answer questions accurately

PHOTO SENDING RULES:
- ONLY use the send_photo tool when the user EXPLICITLY asks for a photo
- DO NOT send photos for greetings, thanks, confirmations or casual conversation
- If you already sent a photo in this conversation, wait for another explicit request

You have access to the following knowledge:
{knowledge}

When you receive information from tools like order_sandwich or send_photo,
make sure to reference specific details from their responses in your replies.

Answer questions using this data and be confident about its contents."""


def order_sandwich(app_id: str, user_id: str, channel: str, args: dict[str, Any]) -> str:
    filling = args.get("filling") or "Unknown"
    logger.info("Sandwich order placed: {} for {} ({}:{})", filling, user_id, app_id, channel)
    return f"Sandwich ordered with {filling}. It will arrive at 3pm. Enjoy!"


class PhotoSender:
    """The ``send_photo`` tool, rate limited per ``app_id:user_id``."""

    def __init__(
        self,
        publish: PhotoPublisher | None = None,
        rate_limit: float = PHOTO_RATE_LIMIT,
        clock: Callable[[], float] = time.time,
    ):
        self.publish = publish
        self.rate_limit = rate_limit
        self._clock = clock
        self._last_sent: dict[str, float] = {}

    def is_rate_limited(self, app_id: str, user_id: str) -> bool:
        last = self._last_sent.get(f"{app_id}:{user_id}")
        return last is not None and self._clock() - last < self.rate_limit

    def prune(self) -> int:
        cutoff = self._clock() - self.rate_limit * 2
        stale = [k for k, ts in self._last_sent.items() if ts < cutoff]
        for k in stale:
            del self._last_sent[k]
        return len(stale)

    async def __call__(self, app_id: str, user_id: str, channel: str, args: dict[str, Any]) -> str:
        subject = args.get("subject") or "default"
        logger.info("Photo requested by {} (subject={})", user_id, subject)

        if self.is_rate_limited(app_id, user_id):
            logger.debug("Photo rate limited for {}", user_id)
            return "I just sent you a photo recently! Let's chat a bit more before I send another one 😊"
        if self.publish is None:
            logger.error("send_photo has no transport attached")
            return "Failed to send photo: messaging is not configured."

        photo = random.choice(PHOTO_OPTIONS)
        self.prune()
        self._last_sent[f"{app_id}:{user_id}"] = self._clock()

        if await self.publish(user_id, json.dumps({"img": PHOTO_BASE_URL + photo})):
            logger.info("Photo {} sent to {}", photo, user_id)
            return f"Sending you a photo! 📸 ({photo.removesuffix('.png')}) - it'll arrive in a moment!"
        logger.warning("Photo send to {} failed", user_id)
        return "We encountered an issue scheduling the photo. Please try again later."


def create_example_endpoint(photos: PhotoSender | None = None) -> EndpointConfig:
    photos = photos or PhotoSender()
    tools = ToolRegistry(
        [
            Tool(
                name="order_sandwich",
                description="Place a sandwich order with a given filling. Returns delivery details.",
                fn=order_sandwich,
                parameters={
                    "type": "object",
                    "properties": {
                        "filling": {
                            "type": "string",
                            "description": "Type of filling (e.g. 'Turkey', 'Ham', 'Veggie')",
                        }
                    },
                    "required": ["filling"],
                },
            ),
            Tool(
                name="send_photo",
                description="Request a photo be sent to the user.",
                fn=photos,
                parameters={
                    "type": "object",
                    "properties": {
                        "subject": {
                            "type": "string",
                            "description": "Photo subject (optional, e.g. 'face', 'landscape')",
                        }
                    },
                    "required": [],
                },
            ),
        ]
    )

    def _attach(transport) -> None:
        if photos.publish is None:
            photos.publish = transport.send_to_user

    return EndpointConfig(
        name="example",
        tools=tools,
        system_prompt_template=example_system_prompt,
        rag_data=dict(EXAMPLE_RAG_DATA),
        modes=CommunicationModes(supports_chat=True, endpoint_mode="video"),
        on_attach=_attach,
    )


ENDPOINTS: dict[str, Callable[[], EndpointConfig]] = {"example": create_example_endpoint}


def get_endpoint(name: str) -> EndpointConfig | None:
    factory = ENDPOINTS.get(name.lower())
    return factory() if factory else None
