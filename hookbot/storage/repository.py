"""Database repository for channel configs, keywords, tasks and settings."""
from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator, List, Optional, Protocol

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from ..models import (
    ChannelConfig,
    Task,
    TaskCreate,
    TaskStatus,
    TriggerKeyword,
    WebhookDelivery,
    ensure_transition,
)


class TaskNotFoundError(RuntimeError):
    """Raised when a task could not be located."""


class DispatchRepository(Protocol):
    """Persistence operations consumed by the dispatch core."""

    def get_channel_config(self, config_id: str) -> Optional[ChannelConfig]: ...

    def get_channel_config_by_path(self, path: str) -> Optional[ChannelConfig]: ...

    def list_channel_configs(self) -> List[ChannelConfig]: ...

    def get_trigger_keywords(self, project_id: str) -> List[TriggerKeyword]: ...

    def create_task(self, payload: TaskCreate) -> Task: ...

    def update_task_status(
        self,
        task_id: str,
        status: TaskStatus,
        *,
        result: Optional[str] = None,
        error: Optional[str] = None,
    ) -> Task: ...

    def get_task(self, task_id: str) -> Optional[Task]: ...

    def list_tasks(self, limit: int = 50, offset: int = 0) -> List[Task]: ...

    def is_webhook_processed(self, event_uuid: str) -> bool: ...

    def record_webhook_delivery(self, delivery: WebhookDelivery) -> None: ...

    def get_setting(self, key: str) -> Any: ...


_TASK_COLUMNS = """
    id::text AS id, project_id::text AS project_id,
    channel_config_id::text AS channel_config_id, channel_type, trigger_mode,
    trigger_keyword, external_ref, title, message_body, author,
    status::text AS status, result, error_message,
    created_at, updated_at, started_at, completed_at
"""

_CONFIG_COLUMNS = """
    id::text AS id, project_id::text AS project_id, channel_type, config,
    webhook_secret, webhook_path, enabled, created_at, updated_at
"""


class PostgresDispatchRepository:
    """PostgreSQL implementation of :class:`DispatchRepository`.

    A short-lived connection is opened per operation so the repository can be
    shared by the dispatch worker threads without sharing a transaction.
    """

    def __init__(self, dsn: str) -> None:
        self._dsn = dsn

    # Utility -----------------------------------------------------------------
    @contextmanager
    def _cursor(self) -> Iterator[psycopg.Cursor]:
        with psycopg.connect(self._dsn) as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                yield cur

    # Channel configs ---------------------------------------------------------
    def get_channel_config(self, config_id: str) -> Optional[ChannelConfig]:
        with self._cursor() as cur:
            cur.execute(
                f"SELECT {_CONFIG_COLUMNS} FROM channel_configs WHERE id = %s",
                (config_id,),
            )
            row = cur.fetchone()
        return ChannelConfig(**row) if row else None

    def get_channel_config_by_path(self, path: str) -> Optional[ChannelConfig]:
        with self._cursor() as cur:
            cur.execute(
                f"SELECT {_CONFIG_COLUMNS} FROM channel_configs WHERE webhook_path = %s",
                (path,),
            )
            row = cur.fetchone()
        return ChannelConfig(**row) if row else None

    def list_channel_configs(self) -> List[ChannelConfig]:
        with self._cursor() as cur:
            cur.execute(
                f"SELECT {_CONFIG_COLUMNS} FROM channel_configs ORDER BY created_at"
            )
            rows = cur.fetchall()
        return [ChannelConfig(**row) for row in rows]

    # Trigger keywords --------------------------------------------------------
    def get_trigger_keywords(self, project_id: str) -> List[TriggerKeyword]:
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT id::text AS id, project_id::text AS project_id,
                       mode::text AS mode, keyword, created_at
                FROM trigger_keywords
                WHERE project_id = %s
                ORDER BY array_position(ARRAY['ask', 'plan', 'do'], mode::text), keyword
                """,
                (project_id,),
            )
            rows = cur.fetchall()
        return [TriggerKeyword(**row) for row in rows]

    # Tasks -------------------------------------------------------------------
    def create_task(self, payload: TaskCreate) -> Task:
        with self._cursor() as cur:
            cur.execute(
                f"""
                INSERT INTO tasks
                    (project_id, channel_config_id, channel_type, trigger_mode,
                     trigger_keyword, external_ref, title, message_body, author)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING {_TASK_COLUMNS}
                """,
                (
                    payload.project_id or None,
                    payload.channel_config_id or None,
                    payload.channel_type,
                    payload.trigger_mode,
                    payload.trigger_keyword,
                    payload.external_ref,
                    payload.title,
                    payload.message_body,
                    payload.author,
                ),
            )
            row = cur.fetchone()
        return Task(**row)

    def update_task_status(
        self,
        task_id: str,
        status: TaskStatus,
        *,
        result: Optional[str] = None,
        error: Optional[str] = None,
    ) -> Task:
        now = datetime.now(timezone.utc)
        started_at = now if status is TaskStatus.PROCESSING else None
        completed_at = (
            now if status in (TaskStatus.COMPLETED, TaskStatus.FAILED) else None
        )
        # The connection context rolls back when ensure_transition raises.
        with self._cursor() as cur:
            cur.execute(
                "SELECT status::text AS status FROM tasks WHERE id = %s FOR UPDATE",
                (task_id,),
            )
            row = cur.fetchone()
            if not row:
                raise TaskNotFoundError(f"Task {task_id} not found")
            ensure_transition(TaskStatus(row["status"]), status)
            cur.execute(
                f"""
                UPDATE tasks
                SET status = %s, result = %s, error_message = %s,
                    started_at = COALESCE(%s, started_at),
                    completed_at = COALESCE(%s, completed_at),
                    updated_at = NOW()
                WHERE id = %s
                RETURNING {_TASK_COLUMNS}
                """,
                (status.value, result, error, started_at, completed_at, task_id),
            )
            updated = cur.fetchone()
        return Task(**updated)

    def get_task(self, task_id: str) -> Optional[Task]:
        with self._cursor() as cur:
            cur.execute(f"SELECT {_TASK_COLUMNS} FROM tasks WHERE id = %s", (task_id,))
            row = cur.fetchone()
        return Task(**row) if row else None

    def list_tasks(self, limit: int = 50, offset: int = 0) -> List[Task]:
        with self._cursor() as cur:
            cur.execute(
                f"SELECT {_TASK_COLUMNS} FROM tasks ORDER BY created_at DESC LIMIT %s OFFSET %s",
                (limit, offset),
            )
            rows = cur.fetchall()
        return [Task(**row) for row in rows]

    # Webhook deliveries ------------------------------------------------------
    def is_webhook_processed(self, event_uuid: str) -> bool:
        with self._cursor() as cur:
            cur.execute(
                "SELECT EXISTS(SELECT 1 FROM webhook_deliveries WHERE event_uuid = %s) AS seen",
                (event_uuid,),
            )
            row = cur.fetchone()
        return bool(row and row["seen"])

    def record_webhook_delivery(self, delivery: WebhookDelivery) -> None:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO webhook_deliveries (event_uuid, event_type, payload_hash, processed)
                VALUES (%s, %s, %s, %s)
                ON CONFLICT (event_uuid) DO NOTHING
                """,
                (
                    delivery.event_uuid,
                    delivery.event_type,
                    delivery.payload_hash,
                    delivery.processed,
                ),
            )

    # Settings ----------------------------------------------------------------
    def get_setting(self, key: str) -> Any:
        with self._cursor() as cur:
            cur.execute("SELECT value FROM settings WHERE key = %s", (key,))
            row = cur.fetchone()
        return row["value"] if row else None

    def set_setting(self, key: str, value: Any) -> None:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO settings (key, value) VALUES (%s, %s)
                ON CONFLICT (key) DO UPDATE SET value = EXCLUDED.value, updated_at = NOW()
                """,
                (key, Jsonb(value)),
            )
