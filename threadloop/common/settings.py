"""
Environment-driven settings. Values are read once with os.getenv after
setup() has loaded the .env file.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache


@dataclass(frozen=True)
class Settings:
    env: str = "dev"
    mongodb_uri: str = "mongodb://localhost:27017"
    store_backend: str = "memory"
    model: str = "gpt-4o-mini"
    max_steps: int = 5
    max_iterations: int = 20
    tool_error_mode: str = "text"
    stream_chunking: str = "word"
    stream_throttle_ms: int = 100
    recent_messages: int = 100
    log_level: str = "INFO"


def _int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return int(value)


def load_settings() -> Settings:
    """Build Settings from the current environment (no caching)."""
    return Settings(
        env=os.getenv("ENV", "dev"),
        mongodb_uri=os.getenv("MONGODB_URI", "mongodb://localhost:27017"),
        store_backend=os.getenv("THREADLOOP_STORE", "memory"),
        model=os.getenv("THREADLOOP_MODEL", "gpt-4o-mini"),
        max_steps=_int_env("THREADLOOP_MAX_STEPS", 5),
        max_iterations=_int_env("THREADLOOP_MAX_ITERATIONS", 20),
        tool_error_mode=os.getenv("THREADLOOP_TOOL_ERROR_MODE", "text"),
        stream_chunking=os.getenv("THREADLOOP_STREAM_CHUNKING", "word"),
        stream_throttle_ms=_int_env("THREADLOOP_STREAM_THROTTLE_MS", 100),
        recent_messages=_int_env("THREADLOOP_RECENT_MESSAGES", 100),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()
