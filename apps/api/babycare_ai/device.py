"""Per-installation device identity."""
from __future__ import annotations

import logging
import secrets
import threading
from typing import Dict, Optional
from uuid import uuid4

from .errors import SecureStoreError
from .secure_store import SecureStore

logger = logging.getLogger(__name__)

DEVICE_ID_KEY = "device.id"
DEVICE_SECRET_KEY = "device.secret"


class DeviceIdentity:
    """Stable device id and device secret, generated once and persisted."""

    def __init__(self, store: SecureStore) -> None:
        self._store = store
        self._lock = threading.Lock()
        self._known: Dict[str, str] = {}

    def device_id(self) -> str:
        return self._get_or_create(DEVICE_ID_KEY, lambda: str(uuid4()))

    def device_secret(self) -> str:
        return self._get_or_create(DEVICE_SECRET_KEY, lambda: secrets.token_hex(32))

    def _get_or_create(self, key: str, factory) -> str:
        with self._lock:
            if key in self._known:
                return self._known[key]
            try:
                value: Optional[str] = self._store.get(key)
                if not value:
                    value = factory()
                    self._store.set(key, value)
            except SecureStoreError as exc:
                logger.warning(
                    "device identity store unavailable, using process-local value",
                    extra={"key": key, "error": str(exc)},
                )
                value = factory()
            self._known[key] = value
            return value
