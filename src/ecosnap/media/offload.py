"""Offload layer for blocking camera and codec work.

Architecture:
    FastAPI (async) -> asyncio.Semaphore(N) -> ThreadPoolExecutor(N) -> cv2 / Pillow

Work beyond the semaphore limit queues with a 5s timeout, then raises TimeoutError.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

logger = logging.getLogger(__name__)

T = TypeVar("T")

SEMAPHORE_TIMEOUT_SECONDS: float = 5.0


class OffloadPool:
    """Bounded executor shared by the capture manager and the image encoder."""

    def __init__(self, max_concurrent: int) -> None:
        self._slots = asyncio.Semaphore(max_concurrent)
        self._executor = ThreadPoolExecutor(max_workers=max_concurrent, thread_name_prefix="ecosnap-offload")
        self._lock = threading.Lock()
        self._running = 0
        self._waiting = 0

    @contextmanager
    def _tracking(self, counter: str) -> Iterator[None]:
        with self._lock:
            setattr(self, counter, getattr(self, counter) + 1)
        try:
            yield
        finally:
            with self._lock:
                setattr(self, counter, getattr(self, counter) - 1)

    async def run(self, func: Callable[..., T], *args: object) -> T:
        """Run ``func(*args)`` on a worker thread once a slot is free.

        Raises:
            TimeoutError: If no slot frees up within ``SEMAPHORE_TIMEOUT_SECONDS``.
        """
        with self._tracking("_waiting"):
            try:
                await asyncio.wait_for(self._slots.acquire(), timeout=SEMAPHORE_TIMEOUT_SECONDS)
            except TimeoutError:
                logger.warning("Offload queue saturated; gave up waiting for %s", getattr(func, "__name__", func))
                raise

        try:
            with self._tracking("_running"):
                loop = asyncio.get_running_loop()
                return await loop.run_in_executor(self._executor, functools.partial(func, *args))
        finally:
            self._slots.release()

    @property
    def active_count(self) -> int:
        with self._lock:
            return self._running

    @property
    def queue_depth(self) -> int:
        with self._lock:
            return self._waiting

    def shutdown(self) -> None:
        """Wait for in-flight work, then stop the worker threads."""
        self._executor.shutdown(wait=True)
