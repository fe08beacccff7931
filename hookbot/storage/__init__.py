"""Persistence collaborators for the dispatch core."""

from .memory import InMemoryDispatchRepository
from .repository import DispatchRepository, PostgresDispatchRepository, TaskNotFoundError
from .schema import ensure_schema
from .settings import SETTING_DEFAULTS, SettingsStore, parse_duration

__all__ = [
    "DispatchRepository",
    "InMemoryDispatchRepository",
    "PostgresDispatchRepository",
    "SETTING_DEFAULTS",
    "SettingsStore",
    "TaskNotFoundError",
    "ensure_schema",
    "parse_duration",
]
