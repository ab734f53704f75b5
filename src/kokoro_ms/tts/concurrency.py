"""
Admission Control for Synthesis Requests.

The core pipeline places no limit on concurrent sessions; this
controller is the serving layer's backpressure. It bounds how many
sessions run inference at once and how many may wait for a slot.

Backpressure Strategy:
    1. If a slot is free: acquire immediately
    2. If the queue has space: wait (up to timeout) for a slot
    3. If the queue is full: reject immediately (QueueFullError -> 429)

A streaming session holds its slot until the stream ends, because
inference keeps running while chunks are delivered.

Usage:
    controller = ConcurrencyController(max_concurrent=4, max_queue=16)

    with controller.acquire_sync(timeout=30.0):
        result = session.collect()

    stats = controller.stats()

Configuration:
    settings.yaml:
        concurrency:
          enabled: true
          max_concurrent: 4
          max_queue: 16
          timeout_s: 30

See Also:
    - services/tts_service.py: wraps every session in acquire_sync
"""
from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional

from kokoro_ms.core.errors import QueueFullError, TimeoutError
from kokoro_ms.core.logging import get_logger, info, verbose

_LOG = get_logger("kokoro-ms.concurrency")


@dataclass
class ConcurrencyStats:
    max_concurrent: int
    current_active: int
    current_waiting: int
    total_processed: int
    total_rejected: int


class ConcurrencyController:
    """
    Counting gate with a bounded wait queue.

    One Condition guards the counters; waiters sleep on it and are
    woken by release().
    """

    def __init__(self, max_concurrent: int = 4, max_queue: int = 16):
        self.max_concurrent = max_concurrent
        self.max_queue = max_queue

        self._lock = threading.Lock()
        self._condition = threading.Condition(self._lock)

        self._active = 0
        self._waiting = 0
        self._total_processed = 0
        self._total_rejected = 0

    @property
    def active_count(self) -> int:
        with self._lock:
            return self._active

    @property
    def queue_depth(self) -> int:
        with self._lock:
            return self._waiting

    def stats(self) -> ConcurrencyStats:
        with self._lock:
            return ConcurrencyStats(
                max_concurrent=self.max_concurrent,
                current_active=self._active,
                current_waiting=self._waiting,
                total_processed=self._total_processed,
                total_rejected=self._total_rejected,
            )

    def try_acquire(self) -> bool:
        """Take a slot without waiting; False if none is free."""
        with self._lock:
            if self._active < self.max_concurrent:
                self._active += 1
                return True
            return False

    def release(self) -> None:
        with self._condition:
            self._active = max(0, self._active - 1)
            self._total_processed += 1
            self._condition.notify()

    def _acquire(self, timeout: float) -> None:
        with self._condition:
            if self._active < self.max_concurrent:
                self._active += 1
                return

            if self._waiting >= self.max_queue:
                self._total_rejected += 1
                raise QueueFullError(
                    f"Queue full ({self._waiting} waiting)",
                    details={"max_queue": self.max_queue},
                )

            self._waiting += 1
            deadline = time.monotonic() + timeout
            try:
                while self._active >= self.max_concurrent:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        self._total_rejected += 1
                        raise TimeoutError(
                            f"Timeout after {timeout}s waiting for a synthesis slot",
                            details={"timeout_s": timeout},
                        )
                    self._condition.wait(timeout=remaining)
                self._active += 1
            finally:
                self._waiting -= 1

    @contextmanager
    def acquire_sync(self, timeout: float = 30.0) -> Iterator[None]:
        """
        Hold a slot for the duration of the block.

        Raises:
            QueueFullError: If max_queue requests are already waiting.
            TimeoutError: If no slot frees up within ``timeout`` seconds.
        """
        t0 = time.monotonic()
        self._acquire(timeout)
        waited = time.monotonic() - t0
        if waited > 0.001:
            verbose(_LOG, "slot_acquired", waited=round(waited, 4))
        try:
            yield
        finally:
            self.release()


_controller: Optional[ConcurrencyController] = None
_controller_lock = threading.Lock()


def get_controller(max_concurrent: int = 4, max_queue: int = 16) -> ConcurrencyController:
    """Process-wide controller; the first call's limits win."""
    global _controller
    if _controller is None:
        with _controller_lock:
            if _controller is None:
                _controller = ConcurrencyController(max_concurrent=max_concurrent, max_queue=max_queue)
                info(_LOG, "concurrency_init", max_concurrent=max_concurrent, max_queue=max_queue)
    return _controller


def reset_controller() -> None:
    """Reset the global controller (for testing)."""
    global _controller
    with _controller_lock:
        _controller = None
