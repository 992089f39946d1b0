"""Agora RTM transport over the REST peer/channel message API."""

import httpx
from loguru import logger

from chatrelay.bus.events import USER_CHANNEL_TYPE
from chatrelay.channels.base import BaseTransport
from chatrelay.config.schema import TransportConfig
from chatrelay.utils.helpers import preview


class RTMRestTransport(BaseTransport):
    """
    Publishes as ``from_user`` of ``app_id``.

    Direct user messages go to the peer-message endpoint, everything else to the
    channel-message endpoint. The REST API has no push subscription, so inbound
    events are handed to ``feed`` by whatever receives them (e.g. a webhook).
    """

    name = "rtm"

    def __init__(
        self,
        app_id: str,
        from_user: str,
        channel: str,
        config: TransportConfig,
        client: httpx.AsyncClient | None = None,
    ):
        super().__init__()
        self.app_id = app_id
        self.from_user = from_user
        self.channel = channel
        self.config = config
        self._client = client
        self._owns_client = client is None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.config.timeout,
                auth=httpx.BasicAuth(self.config.customer_key, self.config.customer_secret),
            )
        return self._client

    def _url(self, kind: str) -> str:
        base = self.config.base_url.rstrip("/")
        return f"{base}/{self.app_id}/rtm/users/{self.from_user}/{kind}"

    async def publish(
        self,
        target: str,
        payload: str,
        custom_type: str | None = None,
        channel_type: str | None = None,
    ) -> bool:
        if channel_type == USER_CHANNEL_TYPE:
            url = self._url("peer_messages")
            body = {
                "destination": str(target),
                "enable_offline_messaging": True,
                "enable_historical_messaging": True,
                "payload": payload,
            }
        else:
            url = self._url("channel_messages")
            body = {
                "channel_name": target,
                "enable_historical_messaging": False,
                "payload": payload,
            }
        if custom_type:
            body["custom_type"] = custom_type

        try:
            resp = await self.client.post(url, json=body)
            resp.raise_for_status()
        except httpx.TimeoutException:
            logger.error("rtm: publish to {} timed out", target)
            return False
        except httpx.HTTPError as e:
            logger.error("rtm: publish to {} failed: {}", target, e)
            return False
        logger.debug("rtm: published to {}: {}", target, preview(payload))
        return True

    async def feed(self, event: dict) -> int:
        return await self.dispatch(self.app_id, self.from_user, self.channel, event)

    async def stop(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
