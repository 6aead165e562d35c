"""Encrypted key/value persistence for credentials, quota windows and settings."""
from __future__ import annotations

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Protocol

from cryptography.fernet import Fernet, InvalidToken

from .errors import SecureStoreError

logger = logging.getLogger(__name__)


class SecureStore(Protocol):
    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        ...

    def delete(self, key: str) -> None:
        ...


def get_json(store: SecureStore, key: str) -> Optional[Any]:
    raw = store.get(key)
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("discarding unreadable stored value", extra={"key": key})
        return None


def set_json(store: SecureStore, key: str, value: Any) -> None:
    store.set(key, json.dumps(value, sort_keys=True, default=str))


def ensure_key(path: Path) -> bytes:
    """Return the Fernet key stored at ``path``, creating it on first use."""
    if not path.exists():
        path.parent.mkdir(parents=True, exist_ok=True)
        key = Fernet.generate_key()
        path.write_bytes(key)
        path.chmod(0o600)
        return key
    return path.read_bytes().strip()


class MemorySecureStore:
    """Dict-backed store for tests and process-local use."""

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._values: Dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        with self._lock:
            self._values[key] = value

    def delete(self, key: str) -> None:
        with self._lock:
            self._values.pop(key, None)

    def keys(self) -> list:
        with self._lock:
            return sorted(self._values)


class SQLiteSecureStore:
    """SQLite table of Fernet-encrypted values."""

    def __init__(self, path: Path, encryption_key: bytes) -> None:
        self._path = path
        self._fernet = Fernet(encryption_key)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self.initialize()

    @contextmanager
    def get_connection(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(self._path)
        except sqlite3.Error as exc:
            raise SecureStoreError(f"cannot open {self._path}") from exc
        try:
            yield conn
        except sqlite3.Error as exc:
            raise SecureStoreError(str(exc)) from exc
        finally:
            conn.close()

    def initialize(self) -> None:
        with self.get_connection() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS secure_values (
                    key TEXT PRIMARY KEY,
                    value BLOB NOT NULL,
                    updated_at TEXT NOT NULL
                );
                """
            )
            conn.commit()

    def get(self, key: str) -> Optional[str]:
        with self.get_connection() as conn:
            row = conn.execute("SELECT value FROM secure_values WHERE key = ?", (key,)).fetchone()
        if row is None:
            return None
        try:
            return self._fernet.decrypt(row[0]).decode("utf-8")
        except InvalidToken:
            # Written under a different key; treat as absent so callers re-derive.
            logger.warning("stored value could not be decrypted", extra={"key": key})
            return None

    def set(self, key: str, value: str) -> None:
        token = self._fernet.encrypt(value.encode("utf-8"))
        now = datetime.now(tz=timezone.utc).isoformat()
        with self.get_connection() as conn:
            conn.execute(
                """
                INSERT INTO secure_values (key, value, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
                """,
                (key, token, now),
            )
            conn.commit()

    def delete(self, key: str) -> None:
        with self.get_connection() as conn:
            conn.execute("DELETE FROM secure_values WHERE key = ?", (key,))
            conn.commit()
