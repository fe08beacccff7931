"""Dispatch matched channel messages to the analysis server."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Optional

from ..channels import ChannelAdapter, ChannelRegistry
from ..models import ChannelConfig, NormalizedMessage, Task, TaskCreate, TaskStatus
from ..storage.repository import DispatchRepository
from ..storage.settings import SettingsStore
from .keywords import match_keyword
from .prompts import PromptTemplateStore
from .session_client import AnalysisError, AnalysisSessionClient

logger = logging.getLogger(__name__)


class Dispatcher:
    """Drive one message through task creation, analysis and replies.

    Every step is attempted once. Failures are logged or recorded on the task;
    nothing is raised back to the caller because the caller is a detached
    worker with no request left to answer.
    """

    def __init__(
        self,
        repository: DispatchRepository,
        registry: ChannelRegistry,
        settings: Optional[SettingsStore] = None,
        *,
        client_factory: Optional[Callable[[], AnalysisSessionClient]] = None,
    ) -> None:
        self._repository = repository
        self._registry = registry
        self._settings = settings or SettingsStore(repository)
        self._prompts = PromptTemplateStore(self._settings)
        self._client_factory = client_factory or (
            lambda: AnalysisSessionClient.from_settings(self._settings)
        )

    # ------------------------------------------------------------------
    # Entry point

    def handle_message(self, message: NormalizedMessage) -> Optional[Task]:
        """Process ``message``; return the resulting task, if one was created."""

        config = self._load_config(message.channel_config_id)
        if config is None:
            return None

        try:
            keywords = self._repository.get_trigger_keywords(message.project_id)
        except Exception:
            logger.exception("Failed to load trigger keywords for %s", message.project_id)
            return None
        match = match_keyword(message.text, keywords)
        if match is None:
            return None
        message.trigger_keyword = match.keyword
        message.trigger_mode = match.mode

        adapter = self._registry.get(message.channel)
        if adapter is None:
            logger.error("No channel adapter registered for %s", message.channel.value)
            return None

        try:
            task = self._repository.create_task(
                TaskCreate(
                    project_id=message.project_id or None,
                    channel_config_id=message.channel_config_id or None,
                    channel_type=message.channel.value,
                    trigger_mode=match.mode.value,
                    trigger_keyword=match.keyword,
                    external_ref=message.external_ref,
                    title=message.title,
                    message_body=message.text,
                    author=message.author,
                )
            )
        except Exception:
            logger.exception("Failed to create task for %s", message.external_ref)
            return None
        logger.info(
            "Task %s created (channel=%s mode=%s keyword=%s author=%s)",
            task.id,
            message.channel.value,
            match.mode.value,
            match.keyword,
            message.author,
        )

        self._reply(adapter, config, message, self._prompts.ack(message), "ack")
        task = self._set_status(task, TaskStatus.PROCESSING)

        try:
            prompt = self._prompts.build_prompt(message)
            result = self._client_factory().analyze(prompt, title=_session_title(message))
        except AnalysisError as exc:
            logger.error("Analysis failed for task %s: %s", task.id, exc)
            return self._fail(task, adapter, config, message, str(exc))
        except Exception as exc:
            logger.exception("Unexpected error analysing task %s", task.id)
            return self._fail(
                task, adapter, config, message, f"unexpected error: {exc}"
            )

        task = self._set_status(task, TaskStatus.COMPLETED, result=result)
        self._reply(
            adapter, config, message, self._prompts.result(message, result), "result"
        )
        return task

    # ------------------------------------------------------------------
    # Helpers

    def _load_config(self, config_id: str) -> Optional[ChannelConfig]:
        try:
            config = self._repository.get_channel_config(config_id)
        except Exception:
            logger.exception("Failed to load channel config %s", config_id)
            return None
        if config is None:
            logger.error("Channel config %s not found", config_id)
        return config

    def _fail(
        self,
        task: Task,
        adapter: ChannelAdapter,
        config: ChannelConfig,
        message: NormalizedMessage,
        reason: str,
    ) -> Task:
        task = self._set_status(task, TaskStatus.FAILED, error=reason)
        self._reply(adapter, config, message, self._prompts.error(reason), "error")
        return task

    def _set_status(
        self,
        task: Task,
        status: TaskStatus,
        *,
        result: Optional[str] = None,
        error: Optional[str] = None,
    ) -> Task:
        try:
            return self._repository.update_task_status(
                task.id, status, result=result, error=error
            )
        except Exception:
            logger.exception("Failed to move task %s to %s", task.id, status.value)
            return task

    def _reply(
        self,
        adapter: ChannelAdapter,
        config: ChannelConfig,
        message: NormalizedMessage,
        text: str,
        kind: str,
    ) -> None:
        try:
            adapter.send_reply(config.config, message, text)
        except Exception:
            logger.exception(
                "Failed to send %s reply to %s", kind, message.external_ref
            )


def _session_title(message: NormalizedMessage) -> str:
    mode = message.trigger_mode.value if message.trigger_mode else "analysis"
    return f"[{message.channel.value}/{mode}] {message.title}"[:200]
