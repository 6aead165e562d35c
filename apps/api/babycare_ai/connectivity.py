"""Network reachability as seen by the analysis layer."""
from __future__ import annotations

import logging
import threading
import time
from enum import Enum
from typing import Callable, List, Optional, Protocol

import httpx

logger = logging.getLogger(__name__)


class ConnectionType(str, Enum):
    WIFI = "wifi"
    CELLULAR = "cellular"
    ETHERNET = "ethernet"
    UNKNOWN = "unknown"


ConnectivityListener = Callable[[bool, ConnectionType], None]


class ConnectivityProvider(Protocol):
    def is_reachable(self) -> bool:
        ...

    def connection_type(self) -> ConnectionType:
        ...

    def subscribe(self, listener: ConnectivityListener) -> Callable[[], None]:
        ...


class ConnectivityMonitor:
    """Holds the last known path status and notifies listeners on change.

    Platform code pushes updates through ``update``; ``probe`` checks the
    analysis endpoint directly when no platform signal is available, and
    ``refresh`` re-probes once the last result is older than the interval.
    """

    def __init__(
        self,
        *,
        reachable: bool = False,
        connection_type: ConnectionType = ConnectionType.UNKNOWN,
        probe_url: Optional[str] = None,
        probe_timeout_seconds: float = 3.0,
        probe_interval_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._reachable = reachable
        self._connection_type = connection_type
        self._probe_url = probe_url
        self._probe_timeout = probe_timeout_seconds
        self._probe_interval = probe_interval_seconds
        self._clock = clock
        self._last_probe: Optional[float] = None
        self._last_known_type = connection_type
        self._listeners: List[ConnectivityListener] = []
        self._lock = threading.Lock()

    def is_reachable(self) -> bool:
        return self._reachable

    def connection_type(self) -> ConnectionType:
        return self._connection_type

    def subscribe(self, listener: ConnectivityListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def update(self, reachable: bool, connection_type: ConnectionType = ConnectionType.UNKNOWN) -> None:
        with self._lock:
            changed = reachable != self._reachable or connection_type != self._connection_type
            self._reachable = reachable
            self._connection_type = connection_type
            if connection_type != ConnectionType.UNKNOWN:
                self._last_known_type = connection_type
            listeners = list(self._listeners)
        if not changed:
            return
        logger.info(
            "network status changed",
            extra={"reachable": reachable, "connection_type": connection_type.value},
        )
        for listener in listeners:
            listener(reachable, connection_type)

    async def probe(self) -> bool:
        """Reach the endpoint once; any HTTP response counts as reachable."""
        if not self._probe_url:
            return self._reachable
        try:
            async with httpx.AsyncClient(timeout=self._probe_timeout) as client:
                await client.head(self._probe_url)
            reachable = True
        except httpx.HTTPError as exc:
            logger.info("connectivity probe failed", extra={"error": type(exc).__name__})
            reachable = False
        self._last_probe = self._clock()
        connection_type = self._last_known_type if reachable else ConnectionType.UNKNOWN
        self.update(reachable, connection_type)
        return reachable

    async def refresh(self) -> bool:
        """Probe again once the last result is older than the probe interval."""
        if not self._probe_url:
            return self._reachable
        if self._last_probe is not None and self._clock() - self._last_probe < self._probe_interval:
            return self._reachable
        return await self.probe()
