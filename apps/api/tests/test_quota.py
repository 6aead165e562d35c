from __future__ import annotations

import threading
from datetime import timedelta

import pytest

from babycare_ai.quota import QUOTA_STATE_KEY, QuotaTracker
from babycare_ai.secure_store import MemorySecureStore

from conftest import START, FakeClock


def test_reserve_does_not_count_until_commit(quota: QuotaTracker) -> None:
    assert quota.try_reserve()
    assert quota.remaining() == (10, 30)
    quota.commit()
    assert quota.remaining() == (9, 29)


def test_release_returns_reservation(store: MemorySecureStore, clock: FakeClock) -> None:
    tracker = QuotaTracker(store, hourly_max=1, daily_max=5, now=clock)
    assert tracker.try_reserve()
    assert not tracker.try_reserve()
    tracker.release()
    assert tracker.try_reserve()
    assert tracker.remaining() == (1, 5)


def test_hourly_limit_blocks(store: MemorySecureStore, clock: FakeClock) -> None:
    tracker = QuotaTracker(store, hourly_max=2, daily_max=30, now=clock)
    for _ in range(2):
        assert tracker.try_reserve()
        tracker.commit()
    assert not tracker.try_reserve()
    assert tracker.remaining() == (0, 28)


def test_daily_limit_blocks_even_with_hourly_room(store: MemorySecureStore, clock: FakeClock) -> None:
    tracker = QuotaTracker(store, hourly_max=10, daily_max=3, now=clock)
    for _ in range(3):
        assert tracker.try_reserve()
        tracker.commit()
        clock.advance(hours=1)
    assert tracker.remaining() == (10, 0)
    assert not tracker.try_reserve()


def test_hourly_window_resets_exactly_at_duration(store: MemorySecureStore, clock: FakeClock) -> None:
    tracker = QuotaTracker(store, hourly_max=10, daily_max=30, now=clock)
    assert tracker.try_reserve()
    tracker.commit()

    clock.advance(seconds=3599)
    assert tracker.remaining() == (9, 29)

    clock.advance(seconds=1)
    assert tracker.remaining() == (10, 29)


def test_daily_window_resets_after_a_day(store: MemorySecureStore, clock: FakeClock) -> None:
    tracker = QuotaTracker(store, hourly_max=10, daily_max=30, now=clock)
    tracker.try_reserve()
    tracker.commit()
    clock.advance(hours=23, minutes=59)
    assert tracker.remaining()[1] == 29
    clock.advance(minutes=1)
    assert tracker.remaining()[1] == 30


def test_counters_survive_restart(store: MemorySecureStore, clock: FakeClock) -> None:
    tracker = QuotaTracker(store, hourly_max=10, daily_max=30, now=clock)
    for _ in range(4):
        tracker.try_reserve()
        tracker.commit()

    restarted = QuotaTracker(store, hourly_max=10, daily_max=30, now=clock)
    assert restarted.remaining() == (6, 26)


def test_concurrent_reservations_never_exceed_limit(store: MemorySecureStore, clock: FakeClock) -> None:
    tracker = QuotaTracker(store, hourly_max=5, daily_max=30, now=clock)
    granted = []
    barrier = threading.Barrier(20)

    def worker() -> None:
        barrier.wait()
        if tracker.try_reserve():
            granted.append(True)
            tracker.commit()

    threads = [threading.Thread(target=worker) for _ in range(20)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(granted) == 5
    assert tracker.status().hourly_used == 5


def test_status_reports_next_allowed_time(store: MemorySecureStore, clock: FakeClock) -> None:
    tracker = QuotaTracker(store, hourly_max=1, daily_max=30, now=clock)
    assert tracker.status().next_allowed_at is None
    tracker.try_reserve()
    tracker.commit()
    status = tracker.status()
    assert status.hourly_remaining == 0
    assert status.next_allowed_at == START + timedelta(hours=1)


def test_reset_all(quota: QuotaTracker, clock: FakeClock) -> None:
    quota.try_reserve()
    quota.commit()
    quota.try_reserve()
    quota.reset_all()
    assert quota.remaining() == (10, 30)
    assert quota.try_reserve()


def test_remote_throttle_backs_off_exponentially(quota: QuotaTracker, clock: FakeClock) -> None:
    until = quota.record_remote_throttle("sk-test-alpha")
    assert until == START + timedelta(minutes=5)
    assert quota.is_throttled("sk-test-alpha")
    assert not quota.is_throttled("sk-test-bravo")

    until = quota.record_remote_throttle("sk-test-alpha")
    assert until == START + timedelta(minutes=10)

    clock.advance(minutes=10)
    assert not quota.is_throttled("sk-test-alpha")


@pytest.mark.parametrize("stored", ['["hourly", 3]', "7", '"daily"', '{"hourly": [1, 2], "daily": "x"}'])
def test_unreadable_persisted_state_starts_fresh(store: MemorySecureStore, clock: FakeClock, stored: str) -> None:
    store.set(QUOTA_STATE_KEY, stored)
    tracker = QuotaTracker(store, hourly_max=10, daily_max=30, now=clock)
    assert tracker.remaining() == (10, 30)
    assert tracker.try_reserve()
