"""Windowed prefetch cache.

A single background thread keeps prepared samples warm around the index
the consumer asked for last. Each refill pass snapshots that index, fills
every missing slot of ``[current - half, current + half)`` one decode at a
time, then evicts everything outside the window. Because the window is
recomputed every pass, a consumer that jumps around only pays cache misses
until the next pass catches up.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import TYPE_CHECKING

from taggerx.errors import DecodeFailure, InvalidDimension

if TYPE_CHECKING:
    from collections.abc import Callable

    import numpy as np
    from numpy.typing import NDArray

    from taggerx.ml.sources import ImageSource

logger = logging.getLogger(__name__)

REFILL_INTERVAL_SECONDS: float = 0.002
WARM_POLL_SECONDS: float = 0.01

SampleError = DecodeFailure | InvalidDimension


class WindowedPrefetchCache:
    """Bounded index -> prepared sample map refilled by a background thread."""

    def __init__(
        self,
        source: ImageSource,
        capacity: int,
        transform: Callable[[NDArray[np.uint8]], NDArray[np.floating]],
    ) -> None:
        if capacity < 2:
            raise ValueError(f"Cache capacity must be at least 2, got {capacity}")
        self._source = source
        self._capacity = capacity
        self._transform = transform

        self._lock = threading.Lock()
        self._entries: dict[int, NDArray[np.floating]] = {}
        self._failures: dict[int, SampleError] = {}
        self._current_index: int = 0

        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    # -- Public API ---------------------------------------------------------

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def current_index(self) -> int:
        return self._current_index

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def cached_indices(self) -> list[int]:
        """Return the cached indices in ascending order."""
        with self._lock:
            return sorted(self._entries)

    def notify_accessed(self, index: int) -> None:
        """Record the index the consumer is about to read."""
        self._current_index = index

    def get(self, index: int) -> NDArray[np.floating] | None:
        """Return the cached sample for ``index``, or None if it is not ready."""
        with self._lock:
            return self._entries.get(index)

    def failure(self, index: int) -> SampleError | None:
        """Return the error recorded for an index the refill thread could not prepare."""
        with self._lock:
            return self._failures.get(index)

    def start_background(self) -> None:
        """Launch the refill thread. Only one may run per cache."""
        if self._thread is not None:
            raise RuntimeError("Background refill already started")
        if self._stop.is_set():
            raise RuntimeError("Cache is closed")
        self._thread = threading.Thread(target=self._run, name="prefetch-refill", daemon=True)
        self._thread.start()
        logger.debug("Prefetch refill thread started (capacity=%d)", self._capacity)

    def await_warm(
        self,
        min_fraction: float = 0.5,
        timeout: float | None = None,
        cancel: threading.Event | None = None,
    ) -> bool:
        """Block until the cache holds ``capacity * min_fraction`` samples.

        The target is capped at the size of the current window clipped to the
        source. Samples that failed to decode count as settled. Returns False
        if ``cancel`` or the cache's own stop signal fires first.

        Raises:
            TimeoutError: If the cache is not warm within ``timeout`` seconds.
        """
        wanted = int(self._capacity * min_fraction)
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            low, high = self._window(self._current_index)
            target = min(wanted, max(high - low, 0))
            with self._lock:
                settled = len(self._entries) + len(self._failures)
            if settled >= target:
                logger.info("Prefetch cache warm with %d samples", settled)
                return True
            if self._stop.is_set() or (cancel is not None and cancel.is_set()):
                return False
            if deadline is not None and time.monotonic() >= deadline:
                raise TimeoutError(f"Prefetch cache held {settled}/{target} samples after {timeout}s")
            self._stop.wait(WARM_POLL_SECONDS)

    def refill(self) -> None:
        """Run one refill pass: fill the current window, then evict outside it."""
        low, high = self._window(self._current_index)

        for index in range(low, high):
            if self._stop.is_set():
                return
            with self._lock:
                if index in self._entries or index in self._failures:
                    continue
            try:
                sample = self._transform(self._source.load(index))
            except (DecodeFailure, InvalidDimension) as exc:
                logger.warning("Skipping %s: %s", self._source.name_of(index), exc)
                with self._lock:
                    self._failures[index] = exc.with_traceback(None)
                continue
            with self._lock:
                self._entries[index] = sample

        with self._lock:
            stale = [i for i in self._entries if not low <= i < high]
            for index in stale:
                del self._entries[index]

    def close(self) -> None:
        """Stop the refill thread and drop all cached samples."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None
        with self._lock:
            self._entries.clear()

    def __enter__(self) -> WindowedPrefetchCache:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # -- Internal -----------------------------------------------------------

    def _window(self, current: int) -> tuple[int, int]:
        half = self._capacity // 2
        return max(current - half, 0), min(current + half, len(self._source))

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self.refill()
            except Exception:
                logger.exception("Prefetch refill pass failed")
            self._stop.wait(REFILL_INTERVAL_SECONDS)
