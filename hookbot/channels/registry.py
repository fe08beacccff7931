"""Thread-safe lookup table of channel adapters."""

from __future__ import annotations

import logging
import threading

from ..models import ChannelType
from .base import ChannelAdapter

logger = logging.getLogger(__name__)


class ChannelRegistry:
    """Map channel types to adapter instances.

    Registration normally happens once at startup while lookups happen on
    every inbound request. Registering a type twice replaces the earlier
    adapter. A single mutex guards both paths in place of a reader-writer
    lock; lookups hold it only for one dict read.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._adapters: dict[ChannelType, ChannelAdapter] = {}

    def register(self, adapter: ChannelAdapter) -> None:
        with self._lock:
            self._adapters[adapter.channel_type] = adapter
        logger.info("channel adapter registered: %s", adapter.channel_type.value)

    def get(self, channel_type: ChannelType | str) -> ChannelAdapter | None:
        try:
            key = ChannelType(channel_type)
        except ValueError:
            return None
        with self._lock:
            return self._adapters.get(key)

    def all(self) -> dict[ChannelType, ChannelAdapter]:
        """Return a copy of the registered adapters."""

        with self._lock:
            return dict(self._adapters)
