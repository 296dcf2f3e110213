"""In-process transport used by tests and the default configuration."""

from __future__ import annotations

import asyncio
from collections import defaultdict, deque
from typing import AsyncIterator, Deque, Dict, Optional, Tuple

from ..contracts import IntegrationRequest
from .base import BaseTransport

RawRequest = Tuple[str, IntegrationRequest]

IDLE_SLEEP_SECONDS = 0.05
DEFAULT_HISTORY_LIMIT = 1000


class InMemoryTransport(BaseTransport[RawRequest]):
    """Per-topic FIFO queues held in local memory.

    The most recent ``history_limit`` publishes are also kept in ``published``
    so callers can inspect what the engine dispatched without consuming the
    queues.
    """

    def __init__(self, history_limit: int = DEFAULT_HISTORY_LIMIT) -> None:
        self._queues: Dict[str, Deque[RawRequest]] = defaultdict(deque)
        self._lock = asyncio.Lock()
        self.published: Deque[Tuple[str, IntegrationRequest]] = deque(maxlen=history_limit)

    async def publish(self, topic: str, request: IntegrationRequest) -> None:
        async with self._lock:
            self._queues[topic].append((request.to_json(), request))
            self.published.append((topic, request))

    def pending(self, topic: str) -> int:
        """Number of requests waiting on ``topic``."""
        return len(self._queues[topic])

    async def _take(self, topic: str) -> Optional[RawRequest]:
        async with self._lock:
            queue = self._queues[topic]
            return queue.popleft() if queue else None

    async def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[RawRequest, IntegrationRequest]]:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + lifespan if lifespan else None

        while deadline is None or loop.time() < deadline:
            raw = await self._take(topic)
            if raw is None:
                await asyncio.sleep(IDLE_SLEEP_SECONDS)
                continue
            yield raw, raw[1]

    async def ack(self, raw_message: RawRequest) -> None:
        """Messages leave the queue when taken; nothing else to do."""

    async def nack(self, raw_message: RawRequest, requeue: bool = True) -> None:
        if not requeue:
            return
        async with self._lock:
            self._queues[raw_message[1].integration_type].appendleft(raw_message)
