"""Builds the analysis component graph from configuration."""
from __future__ import annotations

import logging
from datetime import timedelta
from typing import Optional

from .anonymizer import PayloadAnonymizer
from .cache import ResultCache
from .cloud_client import CloudAnalysisClient
from .config import AppConfig
from .connectivity import ConnectionType, ConnectivityMonitor
from .credentials import CredentialSelector
from .device import DeviceIdentity
from .local_analyzer import LocalAnalyzer
from .orchestrator import AnalysisOrchestrator
from .quota import QuotaTracker
from .secure_store import SQLiteSecureStore, SecureStore, ensure_key
from .settings import UserSettings

logger = logging.getLogger(__name__)


def build_store(config: AppConfig) -> SQLiteSecureStore:
    if config.store_encryption_key:
        key = config.store_encryption_key.encode("utf-8")
    else:
        key = ensure_key(config.resolved_key_path)
    return SQLiteSecureStore(config.resolved_database_path, key)


def build_orchestrator(
    config: AppConfig,
    *,
    store: Optional[SecureStore] = None,
    connectivity: Optional[ConnectivityMonitor] = None,
    cloud_client: Optional[CloudAnalysisClient] = None,
) -> AnalysisOrchestrator:
    store = store if store is not None else build_store(config)
    device = DeviceIdentity(store)
    settings = UserSettings(store)
    if connectivity is None:
        # The API host is wired; platform monitors replace this with live path updates.
        connectivity = ConnectivityMonitor(
            reachable=True,
            connection_type=ConnectionType.ETHERNET,
            probe_url=config.ai_base_url,
            probe_timeout_seconds=config.connectivity_probe_timeout_seconds,
            probe_interval_seconds=config.connectivity_probe_interval_seconds,
        )
    orchestrator = AnalysisOrchestrator(
        settings=settings,
        connectivity=connectivity,
        credentials=CredentialSelector(config.ai_credentials, store, device),
        quota=QuotaTracker(
            store,
            hourly_max=config.max_requests_per_hour,
            daily_max=config.max_requests_per_day,
        ),
        anonymizer=PayloadAnonymizer(device),
        cache=ResultCache(timedelta(seconds=config.cache_validity_seconds)),
        cloud_client=cloud_client
        or CloudAnalysisClient(
            base_url=config.ai_base_url,
            model=config.ai_model,
            timeout_seconds=config.request_timeout_seconds,
        ),
        local_analyzer=LocalAnalyzer(),
        max_retry_count=config.max_retry_count,
        retry_interval_seconds=config.retry_interval_seconds,
    )
    logger.info(
        "analysis orchestrator ready",
        extra={"credentials": len(config.ai_credentials), "model": config.ai_model},
    )
    return orchestrator
