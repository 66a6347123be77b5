"""Shared/exclusive latch guarding one collection.

Readers take the latch in SHARED mode just long enough to capture a scan
snapshot. Mutations take it in EXCLUSIVE mode for their whole duration, so
a reader observes a collection and its indexes either entirely before or
entirely after a mutation.

Compatibility matrix:

            S     X
        S   yes   no
        X   no    no

Waiting writers block new readers, so a steady stream of readers cannot
starve a mutation. The thread holding EXCLUSIVE may re-enter in either mode.
"""

from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from enum import Enum
from typing import Iterator

from dualdb.domain.errors import LockTimeout


class LatchMode(Enum):
    """Latch modes."""

    SHARED = "S"
    EXCLUSIVE = "X"

    @staticmethod
    def is_compatible(held: LatchMode, requested: LatchMode) -> bool:
        """Check if a requested mode can be granted alongside a held one."""
        return held == LatchMode.SHARED and requested == LatchMode.SHARED


class CollectionLatch:
    """A writer-preferring readers/writer latch with bounded waits.

    Attributes:
        name: Name of the guarded collection (used in timeout messages).
        timeout: Default seconds to wait before raising ``LockTimeout``.
    """

    def __init__(self, name: str, timeout: float = 5.0) -> None:
        self.name = name
        self.timeout = timeout
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer: int | None = None
        self._writer_depth = 0
        self._waiting_writers = 0

    @property
    def readers(self) -> int:
        return self._readers

    @property
    def is_exclusive(self) -> bool:
        return self._writer is not None

    def _deadline(self, timeout: float | None) -> float:
        return time.monotonic() + (self.timeout if timeout is None else timeout)

    def _wait(self, deadline: float, mode: LatchMode) -> None:
        remaining = deadline - time.monotonic()
        if remaining <= 0 or not self._cond.wait(remaining):
            raise LockTimeout(
                f"Timed out acquiring {mode.name.lower()} latch on '{self.name}'"
            )

    def acquire(self, mode: LatchMode, timeout: float | None = None) -> None:
        """Acquire the latch.

        Args:
            mode: SHARED or EXCLUSIVE.
            timeout: Seconds to wait (defaults to the latch timeout).

        Raises:
            LockTimeout: If the latch is not granted in time.
        """
        me = threading.get_ident()
        deadline = self._deadline(timeout)
        with self._cond:
            if self._writer == me:
                self._writer_depth += 1
                return

            if mode == LatchMode.SHARED:
                while self._writer is not None or self._waiting_writers:
                    self._wait(deadline, mode)
                self._readers += 1
                return

            self._waiting_writers += 1
            try:
                while self._writer is not None or self._readers:
                    self._wait(deadline, mode)
            finally:
                self._waiting_writers -= 1
                # a timed-out writer may have been holding back readers
                self._cond.notify_all()
            self._writer = me
            self._writer_depth = 1

    def release(self) -> None:
        """Release one hold of the latch taken by the calling thread.

        Raises:
            RuntimeError: If the latch is not held.
        """
        me = threading.get_ident()
        with self._cond:
            if self._writer == me:
                self._writer_depth -= 1
                if self._writer_depth == 0:
                    self._writer = None
                    self._cond.notify_all()
                return
            if self._readers <= 0:
                raise RuntimeError(f"Latch on '{self.name}' released while not held")
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    @contextmanager
    def shared(self, timeout: float | None = None) -> Iterator[None]:
        """Hold the latch in SHARED mode for the duration of the block."""
        self.acquire(LatchMode.SHARED, timeout)
        try:
            yield
        finally:
            self.release()

    @contextmanager
    def exclusive(self, timeout: float | None = None) -> Iterator[None]:
        """Hold the latch in EXCLUSIVE mode for the duration of the block."""
        self.acquire(LatchMode.EXCLUSIVE, timeout)
        try:
            yield
        finally:
            self.release()
