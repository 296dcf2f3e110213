"""Outbound transports for integration requests."""

from __future__ import annotations

import os
from typing import Optional

from ..config import OnboardflowConfig, load_config
from .base import BaseTransport
from .inmemory import InMemoryTransport

TRANSPORT_ENV = "ONBOARDFLOW_TRANSPORT"


def get_transport(
    backend: Optional[str] = None, config: Optional[OnboardflowConfig] = None
) -> BaseTransport:
    """Build the transport that carries integration requests to providers.

    An explicit ``backend`` wins over ``$ONBOARDFLOW_TRANSPORT``, which wins
    over ``transport.backend`` from the loaded configuration.
    """

    config = config or load_config()
    name = (backend or os.getenv(TRANSPORT_ENV) or config.transport.backend).lower()

    if name == "inmemory":
        return InMemoryTransport()
    if name == "redis":
        from .redis import RedisTransport

        return RedisTransport.from_config(config.transport.redis)
    raise ValueError(f"Unsupported transport backend: {name}")


__all__ = ["BaseTransport", "InMemoryTransport", "get_transport"]
