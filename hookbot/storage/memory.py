"""In-memory :class:`DispatchRepository` used by tests and local development."""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Any, Iterable, List, Optional
from uuid import uuid4

from ..models import (
    ChannelConfig,
    Task,
    TaskCreate,
    TaskStatus,
    TriggerKeyword,
    TriggerMode,
    WebhookDelivery,
    ensure_transition,
)
from .repository import TaskNotFoundError


class InMemoryDispatchRepository:
    """Thread-safe in-process store mirroring the PostgreSQL repository."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.channel_configs: dict[str, ChannelConfig] = {}
        self.keywords: dict[str, list[TriggerKeyword]] = {}
        self.tasks: dict[str, Task] = {}
        self.deliveries: dict[str, WebhookDelivery] = {}
        self.settings: dict[str, Any] = {}

    # Seeding helpers ---------------------------------------------------------
    def add_channel_config(self, config: ChannelConfig) -> ChannelConfig:
        with self._lock:
            self.channel_configs[config.id] = config
        return config

    def set_trigger_keywords(
        self, project_id: str, pairs: Iterable[tuple[str, str | TriggerMode]]
    ) -> None:
        """Replace the keywords of ``project_id`` with ``(keyword, mode)`` pairs."""

        now = datetime.now(timezone.utc)
        keywords = [
            TriggerKeyword(
                id=uuid4().hex,
                project_id=project_id,
                keyword=keyword,
                mode=TriggerMode(mode),
                created_at=now,
            )
            for keyword, mode in pairs
        ]
        with self._lock:
            self.keywords[project_id] = keywords

    def set_setting(self, key: str, value: Any) -> None:
        with self._lock:
            self.settings[key] = value

    # DispatchRepository ------------------------------------------------------
    def get_channel_config(self, config_id: str) -> Optional[ChannelConfig]:
        with self._lock:
            return self.channel_configs.get(config_id)

    def get_channel_config_by_path(self, path: str) -> Optional[ChannelConfig]:
        with self._lock:
            for config in self.channel_configs.values():
                if config.webhook_path == path:
                    return config
        return None

    def list_channel_configs(self) -> List[ChannelConfig]:
        with self._lock:
            return list(self.channel_configs.values())

    def get_trigger_keywords(self, project_id: str) -> List[TriggerKeyword]:
        with self._lock:
            keywords = list(self.keywords.get(project_id, []))
        modes = list(TriggerMode)
        return sorted(keywords, key=lambda kw: (modes.index(kw.mode), kw.keyword))

    def create_task(self, payload: TaskCreate) -> Task:
        now = datetime.now(timezone.utc)
        task = Task(
            id=uuid4().hex,
            created_at=now,
            updated_at=now,
            **payload.model_dump(),
        )
        with self._lock:
            self.tasks[task.id] = task
        return task.model_copy()

    def update_task_status(
        self,
        task_id: str,
        status: TaskStatus,
        *,
        result: Optional[str] = None,
        error: Optional[str] = None,
    ) -> Task:
        now = datetime.now(timezone.utc)
        with self._lock:
            task = self.tasks.get(task_id)
            if task is None:
                raise TaskNotFoundError(f"Task {task_id} not found")
            ensure_transition(task.status, status)
            updates: dict[str, Any] = {
                "status": status,
                "result": result,
                "error_message": error,
                "updated_at": now,
            }
            if status is TaskStatus.PROCESSING:
                updates["started_at"] = now
            elif status in (TaskStatus.COMPLETED, TaskStatus.FAILED):
                updates["completed_at"] = now
            updated = task.model_copy(update=updates)
            self.tasks[task_id] = updated
        return updated.model_copy()

    def get_task(self, task_id: str) -> Optional[Task]:
        with self._lock:
            task = self.tasks.get(task_id)
        return task.model_copy() if task else None

    def list_tasks(self, limit: int = 50, offset: int = 0) -> List[Task]:
        with self._lock:
            tasks = sorted(
                self.tasks.values(), key=lambda t: t.created_at, reverse=True
            )
        return [t.model_copy() for t in tasks[offset : offset + limit]]

    def is_webhook_processed(self, event_uuid: str) -> bool:
        with self._lock:
            return event_uuid in self.deliveries

    def record_webhook_delivery(self, delivery: WebhookDelivery) -> None:
        with self._lock:
            self.deliveries.setdefault(delivery.event_uuid, delivery)

    def get_setting(self, key: str) -> Any:
        with self._lock:
            return self.settings.get(key)
