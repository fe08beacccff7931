"""Prompt and reply template helpers for the dispatcher."""

from __future__ import annotations

import logging
from collections.abc import Mapping

from ..models import NormalizedMessage, TriggerMode
from ..storage.settings import SettingsStore

logger = logging.getLogger(__name__)

_MODE_PROMPT_KEYS: Mapping[TriggerMode, str] = {
    TriggerMode.ASK: "prompt_ask",
    TriggerMode.PLAN: "prompt_plan",
    TriggerMode.DO: "prompt_do",
}


class PromptTemplateStore:
    """Resolve prompt pieces and reply templates from settings."""

    def __init__(self, settings: SettingsStore):
        self._settings = settings

    def preamble(self, mode: TriggerMode | str | None) -> str:
        try:
            key = _MODE_PROMPT_KEYS.get(TriggerMode(mode), "prompt_default")
        except ValueError:
            key = "prompt_default"
        return self._settings.get_str(key)

    def build_prompt(self, message: NormalizedMessage) -> str:
        """Render the analysis prompt for ``message``."""

        parts = [
            self.preamble(message.trigger_mode),
            f"## Source: {message.channel.value}\n",
            f"## Title: {message.title}\n\n",
            f"### Message from @{message.author}:\n{message.text}\n\n",
        ]
        if message.external_ref:
            parts.append(f"Reference: {message.external_ref}\n\n")
        parts.append(self._settings.get_str("prompt_format_suffix"))
        return "".join(parts)

    def render(self, key: str, **values: str) -> str:
        """Format the template stored under ``key`` with ``values``.

        An override that cannot be formatted falls back to the built-in
        template.
        """

        template = self._settings.get_str(key)
        try:
            return template.format(**values)
        except (KeyError, IndexError, ValueError):
            logger.warning("Template %s is malformed; using the default", key)
        return str(self._settings.default(key)).format(**values)

    def ack(self, message: NormalizedMessage) -> str:
        return self.render(
            "analyzer_ack_template",
            mode=_mode_label(message.trigger_mode),
            keyword=message.trigger_keyword,
            author=message.author,
        )

    def result(self, message: NormalizedMessage, result: str) -> str:
        return self.render(
            "analyzer_result_template",
            result=result,
            mode=_mode_label(message.trigger_mode),
            author=message.author,
        )

    def error(self, error: str) -> str:
        return self.render("analyzer_error_template", error=error)


def _mode_label(mode: TriggerMode | None) -> str:
    return mode.value if mode is not None else ""
