"""Process-level configuration read from the environment.

Business tunables (timeouts, templates, server credentials) live in the
``settings`` table; only infrastructure knobs are read here.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()


@dataclass(frozen=True)
class AppConfig:
    database_url: str | None
    dispatch_max_workers: int
    dispatch_queue_size: int


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}") from exc
    if value < 1:
        raise RuntimeError(f"{name} must be positive, got {value}")
    return value


def load_config() -> AppConfig:
    return AppConfig(
        database_url=os.getenv("DATABASE_URL") or None,
        dispatch_max_workers=_int_env("DISPATCH_MAX_WORKERS", 8),
        dispatch_queue_size=_int_env("DISPATCH_QUEUE_SIZE", 100),
    )
