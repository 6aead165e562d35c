"""Per-installation API credential selection."""
from __future__ import annotations

import hashlib
import logging
import threading
from typing import Optional, Sequence

from .device import DeviceIdentity
from .errors import NoCredentialsError, SecureStoreError
from .secure_store import SecureStore

logger = logging.getLogger(__name__)

SELECTED_CREDENTIAL_KEY = "credentials.selected"
ROTATION_OFFSET_KEY = "credentials.rotation_offset"


def stable_digest(value: str) -> int:
    """Process-independent integer digest (``hash()`` is salted per interpreter)."""
    return int.from_bytes(hashlib.sha256(value.encode("utf-8")).digest()[:8], "big")


def credential_fingerprint(credential: str) -> str:
    """Short non-reversible label for logs and throttle bookkeeping."""
    return hashlib.sha256(credential.encode("utf-8")).hexdigest()[:12]


class CredentialSelector:
    """Pins one of the provisioned credentials to this installation.

    The index is derived from the device id, so every restart picks the same
    credential. ``reset`` advances a persisted rotation offset so a rejected
    credential is not chosen again when another one is available.
    """

    def __init__(self, credentials: Sequence[str], store: SecureStore, device: DeviceIdentity) -> None:
        self._credentials = [item for item in credentials if item]
        self._store = store
        self._device = device
        self._lock = threading.Lock()
        self._memory_offset = 0

    @property
    def available(self) -> bool:
        return bool(self._credentials)

    def current(self) -> str:
        with self._lock:
            self._require_credentials()
            try:
                # Degraded mode keeps deriving from the last offset seen in the store.
                self._memory_offset = self._load_offset()
                persisted = self._store.get(SELECTED_CREDENTIAL_KEY)
                if persisted and persisted in self._credentials:
                    return persisted
                if persisted:
                    logger.info("persisted credential no longer provisioned, re-deriving")
                selected = self._derive(self._memory_offset)
                self._store.set(SELECTED_CREDENTIAL_KEY, selected)
            except SecureStoreError as exc:
                logger.warning("credential store unavailable, deriving without persistence", extra={"error": str(exc)})
                return self._derive(self._memory_offset)
            logger.info("credential selected", extra={"credential": credential_fingerprint(selected)})
            return selected

    def reset(self) -> str:
        with self._lock:
            self._require_credentials()
            try:
                self._store.delete(SELECTED_CREDENTIAL_KEY)
                offset = self._load_offset() + 1
                self._store.set(ROTATION_OFFSET_KEY, str(offset))
                self._memory_offset = offset
                selected = self._derive(offset)
                self._store.set(SELECTED_CREDENTIAL_KEY, selected)
            except SecureStoreError as exc:
                logger.warning("credential store unavailable during reset", extra={"error": str(exc)})
                self._memory_offset += 1
                return self._derive(self._memory_offset)
            logger.info("credential reset", extra={"credential": credential_fingerprint(selected)})
            return selected

    def _require_credentials(self) -> None:
        if not self._credentials:
            raise NoCredentialsError("no AI credentials provisioned")

    def _load_offset(self) -> int:
        raw: Optional[str] = self._store.get(ROTATION_OFFSET_KEY)
        try:
            return int(raw) if raw is not None else 0
        except ValueError:
            return 0

    def _derive(self, offset: int) -> str:
        index = (stable_digest(self._device.device_id()) + offset) % len(self._credentials)
        return self._credentials[index]
