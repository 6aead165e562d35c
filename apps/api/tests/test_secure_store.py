from __future__ import annotations

import sqlite3
from pathlib import Path

from cryptography.fernet import Fernet

from babycare_ai.secure_store import SQLiteSecureStore, ensure_key, get_json, set_json


def test_round_trip_and_delete(tmp_path: Path) -> None:
    store = SQLiteSecureStore(tmp_path / "secure.db", Fernet.generate_key())
    assert store.get("missing") is None

    store.set("credentials.selected", "sk-test-alpha")
    store.set("credentials.selected", "sk-test-bravo")
    assert store.get("credentials.selected") == "sk-test-bravo"

    store.delete("credentials.selected")
    assert store.get("credentials.selected") is None


def test_values_are_encrypted_at_rest(tmp_path: Path) -> None:
    path = tmp_path / "secure.db"
    SQLiteSecureStore(path, Fernet.generate_key()).set("credentials.selected", "sk-test-alpha")

    conn = sqlite3.connect(path)
    try:
        (raw,) = conn.execute("SELECT value FROM secure_values").fetchone()
    finally:
        conn.close()
    assert b"sk-test-alpha" not in bytes(raw)


def test_value_written_under_other_key_reads_as_absent(tmp_path: Path) -> None:
    path = tmp_path / "secure.db"
    SQLiteSecureStore(path, Fernet.generate_key()).set("device.id", "abc")
    assert SQLiteSecureStore(path, Fernet.generate_key()).get("device.id") is None


def test_values_survive_reopen(tmp_path: Path) -> None:
    path = tmp_path / "secure.db"
    key = Fernet.generate_key()
    set_json(SQLiteSecureStore(path, key), "quota.windows", {"hourly": {"count": 3}})
    assert get_json(SQLiteSecureStore(path, key), "quota.windows") == {"hourly": {"count": 3}}


def test_ensure_key_is_created_once(tmp_path: Path) -> None:
    key_path = tmp_path / "keys" / "store.key"
    first = ensure_key(key_path)
    assert key_path.exists()
    assert ensure_key(key_path) == first
    Fernet(first)
