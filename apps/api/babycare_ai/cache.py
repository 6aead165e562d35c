"""Time-bounded cache of analysis results keyed by request fingerprint."""
from __future__ import annotations

import hashlib
import json
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from .schemas import AnalysisKind, AnalysisResult, CacheStats

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def canonical_json(payload: Any) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


@dataclass
class CacheEntry:
    fingerprint: str
    result: AnalysisResult
    created_at: datetime


class ResultCache:
    def __init__(self, validity: timedelta, *, now: Callable[[], datetime] = _utcnow) -> None:
        self._validity = validity
        self._now = now
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    @staticmethod
    def fingerprint(kind: AnalysisKind, payload: Dict[str, Any]) -> str:
        digest = hashlib.sha256()
        digest.update(AnalysisKind(kind).value.encode("utf-8"))
        digest.update(b"\x00")
        digest.update(canonical_json(payload).encode("utf-8"))
        return digest.hexdigest()

    def get(self, fingerprint: str) -> Optional[AnalysisResult]:
        with self._lock:
            entry = self._entries.get(fingerprint)
            if entry is None:
                return None
            if self._now() - entry.created_at >= self._validity:
                del self._entries[fingerprint]
                return None
            return entry.result

    def put(self, fingerprint: str, result: AnalysisResult) -> None:
        with self._lock:
            self._entries[fingerprint] = CacheEntry(fingerprint, result, self._now())

    def clear(self) -> None:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        logger.info("analysis cache cleared", extra={"entries": count})

    def cleanup_expired(self) -> int:
        with self._lock:
            now = self._now()
            expired = [key for key, entry in self._entries.items() if now - entry.created_at >= self._validity]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def stats(self) -> CacheStats:
        with self._lock:
            now = self._now()
            valid = sum(1 for entry in self._entries.values() if now - entry.created_at < self._validity)
            return CacheStats(entries=len(self._entries), valid_entries=valid)
