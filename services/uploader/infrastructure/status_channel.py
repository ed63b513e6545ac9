"""Transports for the job-status channel."""

from __future__ import annotations

import logging
from typing import AsyncGenerator
from urllib.parse import urlsplit, urlunsplit

import redis.asyncio as aioredis
import websockets

from services.uploader.application.interfaces import StatusChannel, StatusChannelFactory

logger = logging.getLogger(__name__)

_WS_SCHEMES = {"ws": "ws", "wss": "wss", "http": "ws", "https": "wss"}
_REDIS_SCHEMES = {"redis", "rediss"}


class WebSocketStatusChannel(StatusChannel):
    def __init__(self, url: str, *, open_timeout: float = 30.0) -> None:
        self._url = url
        self._open_timeout = open_timeout

    async def messages(self) -> AsyncGenerator[str, None]:
        async with websockets.connect(
            self._url, open_timeout=self._open_timeout
        ) as connection:
            logger.info("Status channel connected: %s", urlsplit(self._url).netloc)
            async for message in connection:
                if isinstance(message, bytes):
                    message = message.decode("utf-8", errors="replace")
                yield message


class RedisStatusChannel(StatusChannel):
    """Subscribes to ``stream:<stream_id>:status`` on a Redis pub/sub server."""

    def __init__(self, url: str, stream_id: str) -> None:
        self._url = url
        self._channel = f"stream:{stream_id}:status"

    async def messages(self) -> AsyncGenerator[str, None]:
        redis_client = aioredis.from_url(
            self._url, encoding="utf-8", decode_responses=True
        )
        pubsub = redis_client.pubsub()
        try:
            await pubsub.subscribe(self._channel)
            logger.info("Listening to Redis channel: %s", self._channel)
            async for message in pubsub.listen():
                if message["type"] == "message":
                    yield message["data"]
        finally:
            await pubsub.unsubscribe(self._channel)
            await pubsub.aclose()
            await redis_client.aclose()


def websocket_url(url: str) -> str:
    parts = urlsplit(url)
    scheme = _WS_SCHEMES.get(parts.scheme.lower())
    if scheme is None:
        raise ValueError(f"Unsupported websocket scheme: {parts.scheme!r}")
    return urlunsplit((scheme, *parts[1:]))


def create_status_channel_factory(*, open_timeout: float) -> StatusChannelFactory:
    def factory(url: str, stream_id: str) -> StatusChannel:
        scheme = urlsplit(url).scheme.lower()
        if scheme in _REDIS_SCHEMES:
            return RedisStatusChannel(url, stream_id)
        if scheme in _WS_SCHEMES:
            return WebSocketStatusChannel(websocket_url(url), open_timeout=open_timeout)
        raise ValueError(f"Unsupported status channel scheme: {scheme!r}")

    return factory
