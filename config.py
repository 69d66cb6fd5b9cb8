"""
Runtime settings, read from the environment (and an optional .env file).
"""

from __future__ import annotations

import os
from typing import Mapping, Optional

from dotenv import load_dotenv

from errors import ConfigurationError

UPLOADS_LIMIT = 5
PROGRESS_INTERVAL = 0.1  # 100ms between progress writes
CHUNK_SIZE = 1024 * 1024  # 1MB
TRANSPORTS = ("http", "ws")

ENV_PREFIX = "CAPYUPLOAD_"


def _env_int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(ENV_PREFIX + key)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{ENV_PREFIX}{key} must be an integer, got {raw!r}")


def _env_float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(ENV_PREFIX + key)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{ENV_PREFIX}{key} must be a number, got {raw!r}")


class Config:
    """Validated uploader settings."""

    def __init__(
        self,
        uploads_limit: int = UPLOADS_LIMIT,
        progress_interval: float = PROGRESS_INTERVAL,
        transport: str = "http",
        server: Optional[str] = None,
        token: Optional[str] = None,
        chunk_size: int = CHUNK_SIZE,
        hub_name: str = "CapyUpload",
        log_level: str = "INFO",
    ):
        self.uploads_limit = uploads_limit
        self.progress_interval = progress_interval
        self.transport = transport
        self.server = server
        self.token = token
        self.chunk_size = chunk_size
        self.hub_name = hub_name
        self.log_level = log_level
        self.validate()

    def validate(self) -> None:
        if self.uploads_limit <= 0:
            raise ConfigurationError(
                f"uploads limit must be positive, got {self.uploads_limit}"
            )
        if self.progress_interval < 0:
            raise ConfigurationError(
                f"progress interval must be >= 0, got {self.progress_interval}"
            )
        if self.chunk_size <= 0:
            raise ConfigurationError(f"chunk size must be positive, got {self.chunk_size}")
        if self.transport not in TRANSPORTS:
            raise ConfigurationError(
                f"unknown transport {self.transport!r} (expected one of {', '.join(TRANSPORTS)})"
            )

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None, dotenv: bool = True) -> "Config":
        """Build a Config from CAPYUPLOAD_* variables."""
        if env is None:
            if dotenv:
                load_dotenv()
            env = os.environ

        return cls(
            uploads_limit=_env_int(env, "LIMIT", UPLOADS_LIMIT),
            progress_interval=_env_float(env, "PROGRESS_INTERVAL", PROGRESS_INTERVAL),
            transport=env.get(ENV_PREFIX + "TRANSPORT", "http") or "http",
            server=env.get(ENV_PREFIX + "SERVER") or None,
            token=env.get(ENV_PREFIX + "TOKEN") or None,
            chunk_size=_env_int(env, "CHUNK_SIZE", CHUNK_SIZE),
            hub_name=env.get(ENV_PREFIX + "HUB_NAME", "CapyUpload") or "CapyUpload",
            log_level=env.get(ENV_PREFIX + "LOG_LEVEL", "INFO") or "INFO",
        )

    def replace(self, **overrides) -> "Config":
        """Return a copy with the non-None overrides applied."""
        values = dict(self.__dict__)
        values.update({k: v for k, v in overrides.items() if v is not None})
        return Config(**values)

    def __repr__(self) -> str:
        token = "***" if self.token else None
        return (
            f"Config(limit={self.uploads_limit}, interval={self.progress_interval}, "
            f"transport={self.transport!r}, server={self.server!r}, token={token!r})"
        )
