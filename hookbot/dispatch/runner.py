"""Bounded thread pool that runs dispatches detached from webhook requests."""

from __future__ import annotations

import logging
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from threading import BoundedSemaphore

from ..models import NormalizedMessage

logger = logging.getLogger(__name__)


class DispatchRunner:
    """Wrapper around :class:`ThreadPoolExecutor` with admission control.

    At most ``max_workers`` messages are processed at once and at most
    ``queue_size`` more wait for a worker. Submissions beyond that are
    rejected instead of piling up behind a slow analysis server.
    """

    # Worker function signature
    Worker = Callable[[NormalizedMessage], None]

    def __init__(self, handler: Worker, max_workers: int = 8, queue_size: int = 100):
        self._handler = handler
        self.executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="dispatch"
        )
        self._slots = BoundedSemaphore(max_workers + queue_size)

    def submit(self, message: NormalizedMessage) -> Future | None:
        """Queue ``message`` for dispatch; return ``None`` when saturated."""

        if not self._slots.acquire(blocking=False):
            logger.warning(
                "Dispatch queue full; dropping %s message from %s",
                message.channel.value,
                message.external_ref,
            )
            return None
        try:
            future = self.executor.submit(self._run, message)
        except RuntimeError:
            self._slots.release()
            logger.warning("Dispatch runner is shut down; dropping message")
            return None
        return future

    def _run(self, message: NormalizedMessage) -> None:
        try:
            self._handler(message)
        except Exception:
            logger.exception(
                "Unhandled error while dispatching %s", message.external_ref
            )
        finally:
            self._slots.release()

    def shutdown(self, wait: bool = True) -> None:
        self.executor.shutdown(wait=wait)
