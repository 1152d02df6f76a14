"""Unit tests for the in-memory counting store."""

import threading
from unittest.mock import Mock

import pytest

from app.adapters.rate_limit.in_memory import InMemoryCountingStore


def _add(store: InMemoryCountingStore, key: str, now: float, *, limit: int = 3, window: float = 60.0):
    return store.prune_count_add(
        key, cutoff=now - window, limit=limit, now=now, ttl_seconds=window
    )


def test_records_until_limit() -> None:
    store = InMemoryCountingStore()

    results = [_add(store, "k", 100.0) for _ in range(4)]

    assert [r.allowed for r in results] == [True, True, True, False]
    assert [r.count for r in results] == [1, 2, 3, 3]
    assert results[-1].oldest == 100.0


def test_prunes_entries_older_than_cutoff() -> None:
    store = InMemoryCountingStore()
    _add(store, "k", 100.0, limit=2, window=10.0)
    _add(store, "k", 105.0, limit=2, window=10.0)

    # cutoff 101.0 drops the entry at 100.0 only
    result = _add(store, "k", 111.0, limit=2, window=10.0)

    assert result.allowed is True
    assert result.count == 2
    assert result.oldest == 105.0


def test_entry_exactly_at_cutoff_is_still_counted() -> None:
    store = InMemoryCountingStore()
    _add(store, "k", 100.0, limit=1, window=10.0)

    assert _add(store, "k", 110.0, limit=1, window=10.0).allowed is False
    assert _add(store, "k", 110.001, limit=1, window=10.0).allowed is True


def test_denial_does_not_record() -> None:
    store = InMemoryCountingStore()
    _add(store, "k", 0.0, limit=1, window=10.0)

    for t in (1.0, 2.0, 3.0):
        assert _add(store, "k", t, limit=1, window=10.0).allowed is False

    # Only the t=0 entry was ever stored, so the window frees up right after t=10
    assert _add(store, "k", 10.5, limit=1, window=10.0).allowed is True


def test_key_expires_after_ttl_of_inactivity() -> None:
    clock = Mock(return_value=0.0)
    store = InMemoryCountingStore(clock=clock)
    _add(store, "a", 0.0, window=5.0)
    _add(store, "b", 0.0, window=50.0)
    assert len(store) == 2

    clock.return_value = 10.0
    _add(store, "b", 10.0, window=50.0)

    assert len(store) == 2  # "a" is only dropped when touched
    result = _add(store, "a", 10.0, window=5.0)
    assert result.allowed is True
    assert result.count == 1


def test_expiry_follows_store_clock_not_request_time() -> None:
    clock = Mock(return_value=500.0)
    store = InMemoryCountingStore(clock=clock)
    _add(store, "k", 1000.0, limit=2, window=60.0)

    # An old request timestamp must not pull the key's expiry backwards
    _add(store, "k", 940.0, limit=2, window=60.0)
    clock.return_value = 501.0

    outcomes = [_add(store, "k", 1000.5, limit=2, window=60.0).allowed for _ in range(3)]

    # 940.0 left the window, 1000.0 is still in it: one slot frees up
    assert outcomes == [True, False, False]


def test_clock_stepping_back_never_shortens_expiry() -> None:
    clock = Mock(return_value=100.0)
    store = InMemoryCountingStore(clock=clock)
    _add(store, "k", 100.0, limit=2, window=60.0)

    clock.return_value = 40.0
    _add(store, "k", 100.0, limit=2, window=60.0)

    clock.return_value = 120.0
    assert _add(store, "k", 101.0, limit=2, window=60.0).allowed is False


def test_sweep_drops_idle_keys_without_touching_them() -> None:
    clock = Mock(return_value=0.0)
    store = InMemoryCountingStore(clock=clock, sweep_every=3)
    _add(store, "ip:1", 0.0, window=5.0)
    _add(store, "ip:2", 0.0, window=5.0)
    assert len(store) == 2

    clock.return_value = 10.0
    _add(store, "ip:3", 10.0, window=5.0)

    assert store.keys() == ["ip:3"]


def test_sweep_keeps_live_keys() -> None:
    clock = Mock(return_value=0.0)
    store = InMemoryCountingStore(clock=clock, sweep_every=2)
    _add(store, "long", 0.0, window=100.0)

    clock.return_value = 10.0
    _add(store, "short", 10.0, window=5.0)

    assert sorted(store.keys()) == ["long", "short"]


def test_rejects_invalid_sweep_interval() -> None:
    with pytest.raises(ValueError):
        InMemoryCountingStore(sweep_every=0)


def test_keys_are_isolated() -> None:
    store = InMemoryCountingStore()
    assert _add(store, "k1", 0.0, limit=1).allowed is True
    assert _add(store, "k1", 0.0, limit=1).allowed is False
    assert _add(store, "k2", 0.0, limit=1).allowed is True


def test_out_of_order_timestamps_stay_sorted() -> None:
    store = InMemoryCountingStore()
    _add(store, "k", 50.0, limit=5, window=100.0)
    result = _add(store, "k", 40.0, limit=5, window=100.0)

    assert result.oldest == 40.0


def test_reset_and_ping() -> None:
    store = InMemoryCountingStore()
    _add(store, "k", 0.0, limit=1)

    store.ping()
    store.reset("k")
    store.reset("missing")

    assert len(store) == 0
    assert _add(store, "k", 0.0, limit=1).allowed is True


def test_concurrent_adds_never_overshoot() -> None:
    store = InMemoryCountingStore()
    limit = 25
    barrier = threading.Barrier(50)
    outcomes: list[bool] = []
    outcomes_lock = threading.Lock()

    def worker() -> None:
        barrier.wait()
        allowed = _add(store, "hot", 1000.0, limit=limit).allowed
        with outcomes_lock:
            outcomes.append(allowed)

    threads = [threading.Thread(target=worker) for _ in range(50)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert outcomes.count(True) == limit
    assert outcomes.count(False) == limit
