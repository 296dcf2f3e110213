"""Settings for the engine, the integration transport and the database."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal, Optional

import yaml
from pydantic import BaseModel, Field

from .constants import DEFAULT_MAX_RETRIES

CONFIG_ENV = "ONBOARDFLOW_CONFIG"
DEFAULT_CONFIG_FILE = "onboardflow.yaml"
DATABASE_URL_ENVS = ("ONBOARDFLOW_DATABASE_URL", "DATABASE_URL")


class RedisConfig(BaseModel):
    """Connection and queue naming for the Redis transport."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None
    queue_prefix: str = "onboardflow"


class TransportConfig(BaseModel):
    """Where integration requests are published."""

    backend: Literal["inmemory", "redis"] = "inmemory"
    redis: RedisConfig = RedisConfig()


class EngineConfig(BaseModel):
    """Behavioural switches for the workflow engine."""

    default_max_retries: int = Field(default=DEFAULT_MAX_RETRIES, ge=1)
    require_explicit_start: bool = False
    single_active_instance: bool = True


class OnboardflowConfig(BaseModel):
    engine: EngineConfig = EngineConfig()
    transport: TransportConfig = TransportConfig()
    database_url: Optional[str] = None


def _database_url_from_env() -> Optional[str]:
    for name in DATABASE_URL_ENVS:
        value = os.getenv(name)
        if value:
            return value
    return None


def load_config(path: Optional[str] = None) -> OnboardflowConfig:
    """Read settings from YAML, then apply environment overrides.

    Args:
        path: Config file to read. Defaults to ``$ONBOARDFLOW_CONFIG`` or
            ``onboardflow.yaml`` in the working directory; a missing file
            yields the defaults.
    """

    config_file = Path(path or os.getenv(CONFIG_ENV, DEFAULT_CONFIG_FILE))
    data = {}
    if config_file.is_file():
        data = yaml.safe_load(config_file.read_text()) or {}
    config = OnboardflowConfig.model_validate(data)

    database_url = _database_url_from_env()
    if database_url:
        config.database_url = database_url
    return config
