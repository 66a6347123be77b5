"""Unit tests for the collection latch."""

from __future__ import annotations

import threading

import pytest

from dualdb.domain.errors import LockTimeout
from dualdb.domain.services.collection_latch import CollectionLatch, LatchMode


def _in_thread(target) -> list:
    """Run a callable in another thread and return what it produced."""
    outcome: list = []

    def run() -> None:
        try:
            outcome.append(target())
        except Exception as e:  # noqa: BLE001
            outcome.append(e)

    thread = threading.Thread(target=run)
    thread.start()
    thread.join(timeout=5)
    return outcome


@pytest.mark.unit
class TestLatchMode:
    """Tests for mode compatibility."""

    def test_compatibility(self) -> None:
        """Only shared holds are compatible with each other."""
        assert LatchMode.is_compatible(LatchMode.SHARED, LatchMode.SHARED)
        assert not LatchMode.is_compatible(LatchMode.SHARED, LatchMode.EXCLUSIVE)
        assert not LatchMode.is_compatible(LatchMode.EXCLUSIVE, LatchMode.SHARED)
        assert not LatchMode.is_compatible(LatchMode.EXCLUSIVE, LatchMode.EXCLUSIVE)


@pytest.mark.unit
class TestCollectionLatch:
    """Tests for CollectionLatch."""

    def test_shared_holders_coexist(self) -> None:
        """Readers in different threads do not block each other."""
        latch = CollectionLatch("users", timeout=0.5)
        with latch.shared():
            def read() -> int:
                with latch.shared():
                    return latch.readers
            assert _in_thread(read) == [2]
        assert latch.readers == 0

    def test_exclusive_blocks_other_threads(self) -> None:
        """A writer makes other threads time out."""
        latch = CollectionLatch("users", timeout=0.05)
        with latch.exclusive():
            assert latch.is_exclusive
            outcome = _in_thread(lambda: latch.acquire(LatchMode.SHARED))
            assert len(outcome) == 1
            assert isinstance(outcome[0], LockTimeout)
            assert "users" in str(outcome[0])
        assert not latch.is_exclusive

    def test_reader_blocks_writer(self) -> None:
        """A writer waits for readers and times out."""
        latch = CollectionLatch("users", timeout=0.05)
        with latch.shared():
            outcome = _in_thread(lambda: latch.acquire(LatchMode.EXCLUSIVE))
            assert isinstance(outcome[0], LockTimeout)
        # the failed writer no longer holds back readers
        with latch.shared(timeout=0.05):
            assert latch.readers == 1

    def test_exclusive_reentry(self) -> None:
        """The exclusive holder may re-acquire in either mode."""
        latch = CollectionLatch("users", timeout=0.05)
        with latch.exclusive():
            with latch.exclusive():
                with latch.shared():
                    assert latch.is_exclusive
            assert latch.is_exclusive
        assert not latch.is_exclusive

    def test_released_latch_can_be_taken(self) -> None:
        """After release another thread acquires without waiting."""
        latch = CollectionLatch("users", timeout=0.5)
        with latch.exclusive():
            pass

        def write() -> bool:
            with latch.exclusive():
                return latch.is_exclusive

        assert _in_thread(write) == [True]

    def test_release_without_hold(self) -> None:
        """Releasing an unheld latch is an error."""
        latch = CollectionLatch("users")
        with pytest.raises(RuntimeError):
            latch.release()
