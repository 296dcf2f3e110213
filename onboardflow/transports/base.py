"""Interface every integration transport implements."""

from __future__ import annotations

import abc
from typing import AsyncIterator, Generic, Optional, Tuple, TypeVar

from ..contracts import IntegrationRequest

RawMessageT = TypeVar("RawMessageT")


class BaseTransport(Generic[RawMessageT], metaclass=abc.ABCMeta):
    """Channel between the engine and the external-integration workers.

    The engine publishes one :class:`IntegrationRequest` per dispatch, on a
    topic named after the integration type, once the state change that
    produced it has been committed. Workers consume with :meth:`subscribe`
    and report back through ``OnboardingEngine.record_integration_result``.
    """

    async def connect(self) -> None:
        pass

    async def disconnect(self) -> None:
        pass

    async def __aenter__(self) -> "BaseTransport[RawMessageT]":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.disconnect()

    @abc.abstractmethod
    async def publish(self, topic: str, request: IntegrationRequest) -> None:
        """Queue ``request`` for the workers of ``topic``."""

    @abc.abstractmethod
    def subscribe(
        self, topic: str, lifespan: Optional[float] = None
    ) -> AsyncIterator[Tuple[RawMessageT, IntegrationRequest]]:
        """Yield ``(raw, request)`` pairs from ``topic``.

        ``lifespan`` bounds how long to keep listening, in seconds; ``None``
        listens until the caller stops iterating.
        """

    @abc.abstractmethod
    async def ack(self, raw_message: RawMessageT) -> None:
        """Confirm that ``raw_message`` was handled."""

    async def nack(self, raw_message: RawMessageT, requeue: bool = True) -> None:
        """Hand a message back; transports without redelivery just ack it."""
        await self.ack(raw_message)
