"""Domain models shared by channel adapters, the dispatcher and storage."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Union

from pydantic import BaseModel, Field


class ChannelType(str, Enum):
    GITLAB = "gitlab"
    SLACK = "slack"
    TELEGRAM = "telegram"


class TriggerMode(str, Enum):
    ASK = "ask"
    PLAN = "plan"
    DO = "do"


class TaskStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


_TASK_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.PROCESSING}),
    TaskStatus.PROCESSING: frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED}),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.FAILED: frozenset(),
}


class InvalidTaskTransition(ValueError):
    """Raised when a task status update would break the task lifecycle."""


def ensure_transition(current: TaskStatus, new: TaskStatus) -> None:
    """Raise :class:`InvalidTaskTransition` unless ``current -> new`` is legal."""

    if new not in _TASK_TRANSITIONS[current]:
        raise InvalidTaskTransition(
            f"illegal task transition {current.value} -> {new.value}"
        )


# ---------------------------------------------------------------------------
# Reply contexts
#
# Each adapter produces exactly one of these and is the only code that reads
# it back when replying.


@dataclass(frozen=True)
class GitLabReplyContext:
    project_id: int
    issue_iid: int


@dataclass(frozen=True)
class SlackReplyContext:
    channel: str
    thread_ts: str


@dataclass(frozen=True)
class TelegramReplyContext:
    chat_id: int
    message_id: int


ReplyContext = Union[GitLabReplyContext, SlackReplyContext, TelegramReplyContext]


@dataclass
class NormalizedMessage:
    """Uniform representation of an inbound channel event."""

    channel: ChannelType
    channel_config_id: str
    external_ref: str
    title: str
    text: str
    author: str
    reply_context: ReplyContext
    project_id: str = ""
    trigger_keyword: str = ""
    trigger_mode: TriggerMode | None = None


# ---------------------------------------------------------------------------
# Persisted records


class ChannelConfig(BaseModel):
    """Per-project channel configuration owned by the administrative layer."""

    id: str
    project_id: str
    channel_type: str
    config: dict[str, Any] = Field(default_factory=dict)
    webhook_secret: str = ""
    webhook_path: str = ""
    enabled: bool = True
    created_at: datetime | None = None
    updated_at: datetime | None = None


class TriggerKeyword(BaseModel):
    id: str | None = None
    project_id: str
    mode: TriggerMode
    keyword: str
    created_at: datetime | None = None


class TaskCreate(BaseModel):
    project_id: str | None = None
    channel_config_id: str | None = None
    channel_type: str
    trigger_mode: str
    trigger_keyword: str
    external_ref: str = ""
    title: str = ""
    message_body: str = ""
    author: str = ""


class Task(TaskCreate):
    id: str
    status: TaskStatus = TaskStatus.PENDING
    result: str | None = None
    error_message: str | None = None
    created_at: datetime
    updated_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None


class WebhookDelivery(BaseModel):
    event_uuid: str
    event_type: str
    payload_hash: str
    processed: bool = False
    id: str | None = None
    created_at: datetime | None = None


__all__ = [
    "ChannelConfig",
    "ChannelType",
    "GitLabReplyContext",
    "InvalidTaskTransition",
    "NormalizedMessage",
    "ReplyContext",
    "SlackReplyContext",
    "Task",
    "TaskCreate",
    "TaskStatus",
    "TelegramReplyContext",
    "TriggerKeyword",
    "TriggerMode",
    "WebhookDelivery",
    "ensure_transition",
]
