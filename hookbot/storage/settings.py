"""Typed access to runtime settings with built-in defaults.

Every tunable used by the dispatch core has an entry in
:data:`SETTING_DEFAULTS`. Values stored in the ``settings`` table override the
default; absent or malformed values fall back to it.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from datetime import timedelta
from typing import Any

logger = logging.getLogger(__name__)


SETTING_DEFAULTS: Mapping[str, Any] = {
    # Analysis service
    "opencode_server_url": "http://opencode-server:4096",
    "opencode_server_auth_user": "opencode",
    "opencode_server_auth_password": "",
    "analyzer_timeout": "5m",
    "analyzer_cleanup_timeout": "10s",
    # Reply templates
    "analyzer_ack_template": (
        "🔍 **OpenCode** received your request ({mode} mode).\n"
        "> Keyword: `{keyword}` | Author: {author}\n\n_Analyzing..._"
    ),
    "analyzer_result_template": (
        "## 🤖 OpenCode Analysis\n\n{result}\n\n---\n"
        "_{mode} mode | triggered by {author}_"
    ),
    "analyzer_error_template": "⚠️ **OpenCode** error:\n```\n{error}\n```",
    # Prompt pieces
    "prompt_ask": (
        "You are an expert software engineer. Answer the following question "
        "with a detailed, actionable response.\n\n"
    ),
    "prompt_plan": (
        "You are an expert software architect. Create a detailed "
        "implementation plan for the following request.\n\n"
    ),
    "prompt_do": (
        "You are an expert software engineer. Provide the exact code changes "
        "needed to resolve the following issue.\n\n"
    ),
    "prompt_default": (
        "You are an expert software engineer. Analyze the following and "
        "provide a detailed response.\n\n"
    ),
    "prompt_format_suffix": "Format your response in Markdown.",
    # Channels
    "gitlab_http_timeout": "30s",
    "slack_http_timeout": "30s",
    "telegram_http_timeout": "30s",
    "telegram_parse_mode": "Markdown",
    # Webhooks
    "webhook_dedup_enabled": False,
}

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_UNIT_SECONDS = {"h": 3600.0, "m": 60.0, "s": 1.0, "ms": 0.001}


def parse_duration(value: Any) -> timedelta:
    """Parse ``"5m"``, ``"1h30m"``, ``"250ms"`` or plain seconds into a timedelta.

    Raises ``ValueError`` for anything else.
    """

    if isinstance(value, bool):
        raise ValueError(f"invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return timedelta(seconds=float(value))
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"invalid duration: {value!r}")
    text = value.strip()
    try:
        return timedelta(seconds=float(text))
    except ValueError:
        pass
    total = 0.0
    position = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != position:
            raise ValueError(f"invalid duration: {value!r}")
        total += float(match.group(1)) * _UNIT_SECONDS[match.group(2)]
        position = match.end()
    if position != len(text):
        raise ValueError(f"invalid duration: {value!r}")
    return timedelta(seconds=total)


class SettingsStore:
    """Resolve settings from a repository exposing ``get_setting(key)``."""

    def __init__(self, repository: Any, defaults: Mapping[str, Any] | None = None):
        self._repository = repository
        self._defaults = dict(SETTING_DEFAULTS)
        if defaults:
            self._defaults.update(defaults)

    def default(self, key: str) -> Any:
        return self._defaults.get(key)

    def get(self, key: str, fallback: Any = None) -> Any:
        """Return the stored value for ``key`` or its default."""

        if fallback is None:
            fallback = self._defaults.get(key)
        try:
            value = self._repository.get_setting(key)
        except Exception:
            logger.warning("Failed to read setting %s; using default", key, exc_info=True)
            return fallback
        return fallback if value is None else value

    def get_str(self, key: str, fallback: str | None = None) -> str:
        value = self.get(key, fallback)
        if isinstance(value, str):
            return value
        default = fallback if fallback is not None else self._defaults.get(key)
        return default if isinstance(default, str) else ""

    def get_bool(self, key: str, fallback: bool | None = None) -> bool:
        value = self.get(key, fallback)
        if isinstance(value, bool):
            return value
        default = fallback if fallback is not None else self._defaults.get(key)
        return bool(default)

    def get_int(self, key: str, fallback: int | None = None) -> int:
        value = self.get(key, fallback)
        if isinstance(value, int) and not isinstance(value, bool):
            return value
        default = fallback if fallback is not None else self._defaults.get(key)
        return int(default or 0)

    def get_duration(self, key: str, fallback: timedelta | None = None) -> timedelta:
        value = self.get(key)
        if value is None:
            return fallback if fallback is not None else timedelta(0)
        try:
            return parse_duration(value)
        except ValueError:
            logger.warning("Invalid duration for setting %s: %r", key, value)
        if fallback is not None:
            return fallback
        return parse_duration(self._defaults[key])
