"""Channel adapters and the registry used to route webhooks to them."""

from __future__ import annotations

import requests

from ..storage.settings import SettingsStore
from .base import (
    ChannelAdapter,
    ChannelReplyError,
    ConfigValidationError,
    OnMessage,
    RequestHandler,
    WebhookResult,
)
from .gitlab import GitLabAdapter
from .registry import ChannelRegistry
from .slack import SlackAdapter
from .telegram import TelegramAdapter

BUILTIN_ADAPTERS: tuple[type[ChannelAdapter], ...] = (
    GitLabAdapter,
    SlackAdapter,
    TelegramAdapter,
)


def build_default_registry(
    settings: SettingsStore | None = None,
    session: requests.Session | None = None,
) -> ChannelRegistry:
    """Return a registry with the built-in adapters registered."""

    registry = ChannelRegistry()
    for adapter_cls in BUILTIN_ADAPTERS:
        registry.register(adapter_cls(settings=settings, session=session))
    return registry


__all__ = [
    "BUILTIN_ADAPTERS",
    "ChannelAdapter",
    "ChannelRegistry",
    "ChannelReplyError",
    "ConfigValidationError",
    "GitLabAdapter",
    "OnMessage",
    "RequestHandler",
    "SlackAdapter",
    "TelegramAdapter",
    "WebhookResult",
    "build_default_registry",
]
