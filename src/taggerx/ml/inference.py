"""Request-side concurrency for the HTTP service.

Architecture:
    FastAPI (async) -> asyncio.Semaphore(N) -> ThreadPoolExecutor(N) -> Tagger.tag_image

Uploads beyond the semaphore limit wait up to ``ACQUIRE_TIMEOUT_SECONDS``
for a slot and are then rejected with 503.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

T = TypeVar("T")

ACQUIRE_TIMEOUT_SECONDS: float = 5.0


class InferencePool:
    """Bounds concurrent tagging requests and runs them off the event loop."""

    def __init__(self, max_concurrent: int) -> None:
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._executor = ThreadPoolExecutor(
            max_workers=max_concurrent,
            thread_name_prefix="tagger-inference",
        )
        self._counter_lock = threading.Lock()
        self._active = 0
        self._waiting = 0
        self._completed = 0

    async def run(self, func: Callable[..., T], *args: object) -> T:
        """Run a blocking function in the pool once a slot is free.

        Raises:
            TimeoutError: If no slot frees up within the acquire timeout.
        """
        self._bump("_waiting", 1)
        try:
            await asyncio.wait_for(self._semaphore.acquire(), timeout=ACQUIRE_TIMEOUT_SECONDS)
        finally:
            self._bump("_waiting", -1)

        self._bump("_active", 1)
        try:
            loop = asyncio.get_running_loop()
            result = await loop.run_in_executor(self._executor, func, *args)
        finally:
            self._semaphore.release()
            self._bump("_active", -1)
        self._bump("_completed", 1)
        return result

    @property
    def active_count(self) -> int:
        """Requests currently being tagged."""
        with self._counter_lock:
            return self._active

    @property
    def queue_depth(self) -> int:
        """Requests waiting for a slot."""
        with self._counter_lock:
            return self._waiting

    @property
    def completed_count(self) -> int:
        """Requests tagged successfully since startup."""
        with self._counter_lock:
            return self._completed

    def shutdown(self) -> None:
        """Wait for running requests and stop the worker threads."""
        self._executor.shutdown(wait=True)
        logger.info("Inference pool stopped after %d requests", self.completed_count)

    def _bump(self, counter: str, delta: int) -> None:
        with self._counter_lock:
            setattr(self, counter, getattr(self, counter) + delta)
