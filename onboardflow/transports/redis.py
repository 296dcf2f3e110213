"""Redis transport for handing integration requests to worker processes."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Optional, Tuple

try:
    import redis.asyncio as redis
except ImportError:
    redis = None

from pydantic import ValidationError

from ..config import RedisConfig
from ..contracts import IntegrationRequest
from .base import BaseTransport

logger = logging.getLogger(__name__)

POLL_TIMEOUT_SECONDS = 1


class RedisTransport(BaseTransport[str]):
    """One Redis list per integration type, consumed oldest first.

    Requests are appended with ``RPUSH`` and taken with ``BLPOP``. A popped
    request is gone from Redis, so ``ack`` has nothing to do and ``nack``
    pushes the payload back to the head of its list.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        queue_prefix: str = "onboardflow",
    ) -> None:
        if redis is None:
            raise ImportError("redis package is required for RedisTransport")

        self.host, self.port, self.db = host, port, db
        self.password = password
        self.queue_prefix = queue_prefix
        self._client: Optional[Any] = None

    @classmethod
    def from_config(cls, settings: RedisConfig) -> "RedisTransport":
        return cls(**settings.model_dump())

    def queue_name(self, topic: str) -> str:
        return f"{self.queue_prefix}:{topic}"

    async def connect(self) -> None:
        client = redis.Redis(
            host=self.host,
            port=self.port,
            db=self.db,
            password=self.password,
            decode_responses=True,
        )
        await client.ping()
        self._client = client

    async def disconnect(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            await client.aclose()

    async def _connection(self) -> Any:
        if self._client is None:
            await self.connect()
        return self._client

    async def publish(self, topic: str, request: IntegrationRequest) -> None:
        client = await self._connection()
        await client.rpush(self.queue_name(topic), request.to_json())
        logger.debug(f"Queued integration {request.integration_id} on {topic}")

    async def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[str, IntegrationRequest]]:
        client = await self._connection()
        key = self.queue_name(topic)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + lifespan if lifespan else None

        while deadline is None or loop.time() < deadline:
            popped = await client.blpop(key, timeout=POLL_TIMEOUT_SECONDS)
            if not popped:
                continue
            payload = popped[1]
            try:
                request = IntegrationRequest.from_json(payload)
            except ValidationError as e:
                logger.warning(f"Dropping malformed request on {key}: {e}")
                continue
            yield payload, request

    async def ack(self, raw_message: str) -> None:
        """Nothing to confirm, BLPOP already removed the message."""

    async def nack(self, raw_message: str, requeue: bool = True) -> None:
        if not requeue:
            return
        topic = IntegrationRequest.from_json(raw_message).integration_type
        client = await self._connection()
        await client.lpush(self.queue_name(topic), raw_message)
