"""Hourly and daily request quotas for the cloud analysis endpoint."""
from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional, Tuple

from pydantic import ValidationError

from .credentials import credential_fingerprint
from .errors import SecureStoreError
from .schemas import QuotaStatus, QuotaWindow, QuotaWindowKind
from .secure_store import SecureStore, get_json, set_json

logger = logging.getLogger(__name__)

QUOTA_STATE_KEY = "quota.windows"

WINDOW_DURATIONS = {
    QuotaWindowKind.HOURLY: timedelta(hours=1),
    QuotaWindowKind.DAILY: timedelta(days=1),
}

THROTTLE_INITIAL_BACKOFF = timedelta(minutes=5)
THROTTLE_MAX_BACKOFF = timedelta(hours=1)


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class QuotaTracker:
    """Fixed-window request counters shared by every analysis request.

    ``try_reserve`` hands out in-flight reservations and ``commit`` turns one
    into a counted request, so committed plus in-flight never exceeds a
    window's maximum. Counters are persisted after every mutation.
    """

    def __init__(
        self,
        store: SecureStore,
        *,
        hourly_max: int,
        daily_max: int,
        now: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._now = now
        self._limits = {
            QuotaWindowKind.HOURLY: hourly_max,
            QuotaWindowKind.DAILY: daily_max,
        }
        self._lock = threading.Lock()
        self._in_flight = 0
        self._throttled: Dict[str, Tuple[datetime, timedelta]] = {}
        self._windows = self._load()

    def try_reserve(self) -> bool:
        with self._lock:
            self._roll_windows()
            for kind, window in self._windows.items():
                if window.count + self._in_flight >= self._limits[kind]:
                    logger.info(
                        "quota exhausted",
                        extra={"window": kind.value, "count": window.count, "in_flight": self._in_flight},
                    )
                    return False
            self._in_flight += 1
            return True

    def commit(self) -> None:
        with self._lock:
            self._roll_windows()
            self._in_flight = max(0, self._in_flight - 1)
            for window in self._windows.values():
                window.count += 1
            self._persist()

    def release(self) -> None:
        with self._lock:
            self._in_flight = max(0, self._in_flight - 1)

    def remaining(self) -> Tuple[int, int]:
        with self._lock:
            self._roll_windows()
            return (
                self._remaining_for(QuotaWindowKind.HOURLY),
                self._remaining_for(QuotaWindowKind.DAILY),
            )

    def status(self) -> QuotaStatus:
        with self._lock:
            self._roll_windows()
            hourly = self._windows[QuotaWindowKind.HOURLY]
            daily = self._windows[QuotaWindowKind.DAILY]
            next_allowed_at: Optional[datetime] = None
            for kind, window in self._windows.items():
                if window.count >= self._limits[kind]:
                    window_end = window.window_start + WINDOW_DURATIONS[kind]
                    if next_allowed_at is None or window_end > next_allowed_at:
                        next_allowed_at = window_end
            return QuotaStatus(
                hourly_used=hourly.count,
                daily_used=daily.count,
                hourly_remaining=self._remaining_for(QuotaWindowKind.HOURLY),
                daily_remaining=self._remaining_for(QuotaWindowKind.DAILY),
                next_allowed_at=next_allowed_at,
            )

    def reset_all(self) -> None:
        with self._lock:
            now = self._now()
            self._windows = {kind: QuotaWindow(window_kind=kind, window_start=now) for kind in WINDOW_DURATIONS}
            self._in_flight = 0
            self._persist()

    def record_remote_throttle(self, credential: str) -> datetime:
        """Back off a credential the remote service throttled; returns when it frees up."""
        with self._lock:
            now = self._now()
            key = credential_fingerprint(credential)
            previous = self._throttled.get(key)
            if previous and previous[0] > now:
                backoff = min(previous[1] * 2, THROTTLE_MAX_BACKOFF)
            else:
                backoff = THROTTLE_INITIAL_BACKOFF
            until = now + backoff
            self._throttled[key] = (until, backoff)
            logger.warning(
                "credential throttled by remote service",
                extra={"credential": key, "backoff_seconds": backoff.total_seconds()},
            )
            return until

    def is_throttled(self, credential: str) -> bool:
        with self._lock:
            now = self._now()
            self._throttled = {key: value for key, value in self._throttled.items() if value[0] > now}
            return credential_fingerprint(credential) in self._throttled

    def _remaining_for(self, kind: QuotaWindowKind) -> int:
        return max(0, self._limits[kind] - self._windows[kind].count)

    def _roll_windows(self) -> None:
        now = self._now()
        changed = False
        for kind, window in self._windows.items():
            if now - window.window_start >= WINDOW_DURATIONS[kind]:
                window.count = 0
                window.window_start = now
                changed = True
        if changed:
            self._persist()

    def _load(self) -> Dict[QuotaWindowKind, QuotaWindow]:
        now = self._now()
        windows = {kind: QuotaWindow(window_kind=kind, window_start=now) for kind in WINDOW_DURATIONS}
        try:
            stored = get_json(self._store, QUOTA_STATE_KEY) or {}
        except SecureStoreError as exc:
            logger.warning("quota store unavailable, counting in memory", extra={"error": str(exc)})
            return windows
        if not isinstance(stored, dict):
            logger.warning("discarding unreadable quota state", extra={"type": type(stored).__name__})
            return windows
        for kind in WINDOW_DURATIONS:
            raw = stored.get(kind.value)
            if not raw:
                continue
            try:
                windows[kind] = QuotaWindow(**raw)
            except (TypeError, ValidationError):
                logger.warning("discarding unreadable quota window", extra={"window": kind.value})
        return windows

    def _persist(self) -> None:
        state = {kind.value: window.model_dump(mode="json") for kind, window in self._windows.items()}
        try:
            set_json(self._store, QUOTA_STATE_KEY, state)
        except SecureStoreError as exc:
            logger.warning("quota state not persisted", extra={"error": str(exc)})
