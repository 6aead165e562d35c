"""User-controlled switches for the cloud analysis path."""
from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, List, Protocol

from .errors import SecureStoreError
from .schemas import AnalysisSettings
from .secure_store import SecureStore

logger = logging.getLogger(__name__)

CLOUD_AI_ENABLED = "isCloudAIEnabled"
DATA_ANONYMIZATION_ENABLED = "isDataAnonymizationEnabled"
CLOUD_ONLY_ON_WIFI = "useCloudAnalysisOnlyOnWiFi"

DEFAULTS: Dict[str, bool] = {
    CLOUD_AI_ENABLED: False,
    DATA_ANONYMIZATION_ENABLED: True,
    CLOUD_ONLY_ON_WIFI: True,
}

SettingsListener = Callable[[str, bool], None]


class UserSettingsProvider(Protocol):
    def is_cloud_ai_enabled(self) -> bool:
        ...

    def is_data_anonymization_enabled(self) -> bool:
        ...

    def is_cloud_only_on_wifi(self) -> bool:
        ...


class UserSettings:
    """Boolean settings persisted in the settings store, with change listeners."""

    def __init__(self, store: SecureStore, prefix: str = "settings.") -> None:
        self._store = store
        self._prefix = prefix
        self._listeners: List[SettingsListener] = []
        self._lock = threading.Lock()
        self._memory: Dict[str, bool] = {}

    def is_cloud_ai_enabled(self) -> bool:
        return self._get(CLOUD_AI_ENABLED)

    def is_data_anonymization_enabled(self) -> bool:
        return self._get(DATA_ANONYMIZATION_ENABLED)

    def is_cloud_only_on_wifi(self) -> bool:
        return self._get(CLOUD_ONLY_ON_WIFI)

    def set_cloud_ai_enabled(self, value: bool) -> None:
        self._set(CLOUD_AI_ENABLED, value)

    def set_data_anonymization_enabled(self, value: bool) -> None:
        self._set(DATA_ANONYMIZATION_ENABLED, value)

    def set_cloud_only_on_wifi(self, value: bool) -> None:
        self._set(CLOUD_ONLY_ON_WIFI, value)

    def snapshot(self) -> AnalysisSettings:
        return AnalysisSettings(
            cloud_ai_enabled=self.is_cloud_ai_enabled(),
            data_anonymization_enabled=self.is_data_anonymization_enabled(),
            cloud_only_on_wifi=self.is_cloud_only_on_wifi(),
        )

    def subscribe(self, listener: SettingsListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _get(self, name: str) -> bool:
        if name in self._memory:
            return self._memory[name]
        try:
            raw = self._store.get(self._prefix + name)
        except SecureStoreError as exc:
            logger.warning("settings store unavailable, using default", extra={"setting": name, "error": str(exc)})
            return DEFAULTS[name]
        if raw is None:
            return DEFAULTS[name]
        return raw == "1"

    def _set(self, name: str, value: bool) -> None:
        previous = self._get(name)
        try:
            self._store.set(self._prefix + name, "1" if value else "0")
            self._memory.pop(name, None)
        except SecureStoreError as exc:
            logger.warning("setting not persisted", extra={"setting": name, "error": str(exc)})
            self._memory[name] = value
        if previous == value:
            return
        logger.info("analysis setting changed", extra={"setting": name, "value": value})
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            listener(name, value)
