"""Configuration defaults for the asset warehouse."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

# Default locations and limits; can be overridden via CLI args or env vars.
DEFAULT_DATA_ROOT = Path("data")
DEFAULT_MODEL = "gemini-2.5-flash"
DEFAULT_WORKER_COUNT = 4
DEFAULT_QUEUE_SIZE = 100
DEFAULT_THUMBNAIL_SIZE = 300
DEFAULT_PROVIDER_TIMEOUT = 120.0
DEFAULT_LOCK_TIMEOUT = 10.0


@dataclass
class Config:
    """Simple config container."""

    data_root: Path = DEFAULT_DATA_ROOT
    api_key: Optional[str] = None
    model: str = DEFAULT_MODEL
    worker_count: int = DEFAULT_WORKER_COUNT
    queue_size: int = DEFAULT_QUEUE_SIZE
    thumbnail_size: int = DEFAULT_THUMBNAIL_SIZE
    provider_timeout: float = DEFAULT_PROVIDER_TIMEOUT
    lock_timeout: float = DEFAULT_LOCK_TIMEOUT

    @classmethod
    def from_env(cls, environ=None) -> "Config":
        env = os.environ if environ is None else environ
        return cls(
            data_root=Path(env.get("DATA_DIR") or DEFAULT_DATA_ROOT),
            api_key=env.get("GEMINI_API_KEY") or None,
            model=env.get("GEMINI_MODEL") or DEFAULT_MODEL,
            worker_count=_env_int(env, "WORKER_COUNT", DEFAULT_WORKER_COUNT),
            queue_size=_env_int(env, "QUEUE_SIZE", DEFAULT_QUEUE_SIZE),
            provider_timeout=_env_float(env, "PROVIDER_TIMEOUT", DEFAULT_PROVIDER_TIMEOUT),
            lock_timeout=_env_float(env, "LOCK_TIMEOUT", DEFAULT_LOCK_TIMEOUT),
        )


def _env_int(env, key: str, default: int) -> int:
    try:
        return int(env.get(key, ""))
    except ValueError:
        return default


def _env_float(env, key: str, default: float) -> float:
    try:
        return float(env.get(key, ""))
    except ValueError:
        return default
