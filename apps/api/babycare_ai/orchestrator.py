"""Cloud-or-local analysis façade consumed by the UI layer."""
from __future__ import annotations

import asyncio
import inspect
import logging
import weakref
from typing import Any, Awaitable, Callable, Optional, Protocol, Tuple, Union

from .cache import ResultCache
from .cloud_client import CloudAnalysisClient
from .connectivity import ConnectionType, ConnectivityProvider
from .credentials import CredentialSelector, credential_fingerprint
from .errors import (
    AnalysisErrorKind,
    CloudAnalysisError,
    FailureKind,
    InsufficientDataError,
    NoCredentialsError,
    RETRYABLE_FAILURES,
)
from .anonymizer import PayloadAnonymizer
from .quota import QuotaTracker
from .schemas import (
    AnalysisKind,
    AnalysisOutcome,
    AnalysisRequest,
    AnalysisResult,
    AnalysisSource,
    CacheStats,
    QuotaStatus,
    RecordBundle,
)
from .settings import DATA_ANONYMIZATION_ENABLED, UserSettingsProvider

logger = logging.getLogger(__name__)

UNMETERED_CONNECTIONS = {ConnectionType.WIFI, ConnectionType.ETHERNET}

OutcomeCallback = Callable[[AnalysisOutcome], Any]


class LocalAnalyzerProtocol(Protocol):
    def analyze(
        self, kind: AnalysisKind, records: RecordBundle
    ) -> Union[Optional[AnalysisResult], Awaitable[Optional[AnalysisResult]]]:
        ...


def _callback_ref(callback: OutcomeCallback) -> Callable[[], Optional[OutcomeCallback]]:
    # Bound methods track their requester; closures and functions have no other owner.
    if inspect.ismethod(callback):
        return weakref.WeakMethod(callback)
    return lambda: callback


class AnalysisTicket:
    """Handle on a submitted request; cancelling only suppresses delivery."""

    def __init__(self, task: "asyncio.Task[AnalysisOutcome]") -> None:
        self._task = task
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True

    def done(self) -> bool:
        return self._task.done()

    async def wait(self) -> AnalysisOutcome:
        return await asyncio.shield(self._task)


class AnalysisOrchestrator:
    """Decides between the cloud and local analysis paths for each request.

    Start -> eligibility -> cache -> quota -> cloud call -> store, with every
    failing gate falling back to the local analyzer. ``request_analysis``
    never raises; callers always get an ``AnalysisOutcome``.
    """

    def __init__(
        self,
        *,
        settings: UserSettingsProvider,
        connectivity: ConnectivityProvider,
        credentials: CredentialSelector,
        quota: QuotaTracker,
        anonymizer: PayloadAnonymizer,
        cache: ResultCache,
        cloud_client: CloudAnalysisClient,
        local_analyzer: Optional[LocalAnalyzerProtocol],
        max_retry_count: int = 3,
        retry_interval_seconds: float = 2.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._settings = settings
        self._connectivity = connectivity
        self._credentials = credentials
        self._quota = quota
        self._anonymizer = anonymizer
        self._cache = cache
        self._cloud = cloud_client
        self._local = local_analyzer
        self._max_retry_count = max_retry_count
        self._retry_interval = retry_interval_seconds
        self._sleep = sleep
        subscribe = getattr(settings, "subscribe", None)
        self._unsubscribe = subscribe(self._on_setting_changed) if subscribe else None

    @property
    def settings(self) -> UserSettingsProvider:
        return self._settings

    @property
    def connectivity(self) -> ConnectivityProvider:
        return self._connectivity

    async def request_analysis(self, kind: AnalysisKind, records: RecordBundle) -> AnalysisOutcome:
        kind = AnalysisKind(kind)
        try:
            result, reason = await self._cloud_path(kind, records)
        except Exception as exc:
            logger.exception("cloud analysis path failed unexpectedly", exc_info=exc)
            result, reason = None, FailureKind.UNKNOWN
        if result is not None:
            return AnalysisOutcome(result=result)
        logger.info("falling back to local analysis", extra={"kind": kind.value, "reason": reason.value})
        return await self._fallback(kind, records, reason)

    def submit(
        self,
        kind: AnalysisKind,
        records: RecordBundle,
        callback: OutcomeCallback,
        *,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> AnalysisTicket:
        """Run a request in the background and hand the outcome to ``callback``.

        A bound method is held through a weak reference to its object; if that
        requester is gone by completion the outcome is dropped, but the request
        itself still runs to the end. Plain functions and closures are kept
        until delivery.
        """
        callback_ref = _callback_ref(callback)
        task = asyncio.get_running_loop().create_task(self.request_analysis(kind, records))
        ticket = AnalysisTicket(task)

        def deliver(finished: "asyncio.Task[AnalysisOutcome]") -> None:
            if ticket.cancelled or finished.cancelled():
                return
            target = callback_ref()
            if target is None:
                logger.info("requester released before analysis finished", extra={"kind": AnalysisKind(kind).value})
                return
            outcome = finished.result()
            if loop is not None:
                loop.call_soon_threadsafe(target, outcome)
            else:
                target(outcome)

        task.add_done_callback(deliver)
        return ticket

    def remaining_quota(self) -> Tuple[int, int]:
        return self._quota.remaining()

    def quota_status(self) -> QuotaStatus:
        return self._quota.status()

    def reset_credential(self) -> None:
        self._credentials.reset()

    def clear_cache(self) -> None:
        self._cache.clear()

    def cache_stats(self) -> CacheStats:
        return self._cache.stats()

    async def aclose(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        await self._cloud.aclose()

    async def _refresh_connectivity(self) -> None:
        refresh = getattr(self._connectivity, "refresh", None)
        if refresh is not None:
            await refresh()

    def _check_eligibility(self, kind: AnalysisKind, records: RecordBundle) -> Optional[FailureKind]:
        if not self._settings.is_cloud_ai_enabled():
            return FailureKind.CLOUD_DISABLED_BY_SETTING
        if not self._connectivity.is_reachable():
            return FailureKind.NETWORK_UNAVAILABLE
        if (
            self._settings.is_cloud_only_on_wifi()
            and self._connectivity.connection_type() not in UNMETERED_CONNECTIONS
        ):
            return FailureKind.CLOUD_DISABLED_BY_SETTING
        if records.for_kind(kind).is_empty():
            return FailureKind.INSUFFICIENT_DATA
        if not self._credentials.available:
            logger.warning("cloud analysis skipped: no credentials provisioned")
            return FailureKind.CLOUD_DISABLED_BY_SETTING
        return None

    async def _cloud_path(
        self, kind: AnalysisKind, records: RecordBundle
    ) -> Tuple[Optional[AnalysisResult], Optional[FailureKind]]:
        if self._settings.is_cloud_ai_enabled():
            await self._refresh_connectivity()
        reason = self._check_eligibility(kind, records)
        if reason is not None:
            return None, reason

        anonymize = self._settings.is_data_anonymization_enabled()
        scrubbed = self._anonymizer.transform_bundle(records.for_kind(kind), anonymize)
        payload = scrubbed.model_dump(mode="json")
        fingerprint = ResultCache.fingerprint(kind, payload)

        cached = self._cache.get(fingerprint)
        if cached is not None:
            logger.info("analysis served from cache", extra={"kind": kind.value})
            return cached, None

        if not self._quota.try_reserve():
            return None, FailureKind.LOCAL_QUOTA_EXHAUSTED

        committed = False
        try:
            try:
                credential = self._credentials.current()
            except NoCredentialsError:
                return None, FailureKind.CLOUD_DISABLED_BY_SETTING
            if self._quota.is_throttled(credential):
                return None, FailureKind.REMOTE_RATE_LIMIT_EXCEEDED

            request = AnalysisRequest(
                kind=kind,
                subject_id=scrubbed.subject_id,
                anonymize=anonymize,
                payload=payload,
            )
            text, failure = await self._call_with_retries(request, credential)
            if text is None:
                return None, failure
            self._quota.commit()
            committed = True
        finally:
            if not committed:
                self._quota.release()

        result = AnalysisResult(text=text, source=AnalysisSource.CLOUD, kind=kind)
        self._cache.put(fingerprint, result)
        logger.info("cloud analysis completed", extra={"kind": kind.value})
        return result, None

    async def _call_with_retries(
        self, request: AnalysisRequest, credential: str
    ) -> Tuple[Optional[str], Optional[FailureKind]]:
        attempt = 0
        while True:
            try:
                return await self._cloud.call(request, credential), None
            except CloudAnalysisError as exc:
                failure = exc.kind

            if failure == FailureKind.AUTHENTICATION_FAILED:
                logger.warning(
                    "credential rejected, rotating",
                    extra={"credential": credential_fingerprint(credential)},
                )
                self._credentials.reset()
                return None, failure
            if failure not in RETRYABLE_FAILURES or attempt >= self._max_retry_count:
                if failure == FailureKind.REMOTE_RATE_LIMIT_EXCEEDED:
                    self._quota.record_remote_throttle(credential)
                return None, failure

            attempt += 1
            logger.info(
                "retrying cloud analysis",
                extra={"kind": request.kind.value, "failure": failure.value, "attempt": attempt},
            )
            await self._sleep(self._retry_interval)

    async def _fallback(
        self, kind: AnalysisKind, records: RecordBundle, reason: Optional[FailureKind]
    ) -> AnalysisOutcome:
        if self._local is None:
            return AnalysisOutcome(error=AnalysisErrorKind.ANALYZER_NOT_AVAILABLE, fallback_reason=reason)
        try:
            result = self._local.analyze(kind, records)
            if inspect.isawaitable(result):
                result = await result
        except InsufficientDataError as exc:
            logger.info("local analysis had too little data", extra={"kind": kind.value, "detail": str(exc)})
            return AnalysisOutcome(error=AnalysisErrorKind.INSUFFICIENT_DATA, fallback_reason=reason)
        except Exception as exc:
            logger.exception("local analyzer failed", exc_info=exc)
            return AnalysisOutcome(error=AnalysisErrorKind.ANALYZER_NOT_AVAILABLE, fallback_reason=reason)
        if result is None:
            return AnalysisOutcome(error=AnalysisErrorKind.INSUFFICIENT_DATA, fallback_reason=reason)
        return AnalysisOutcome(result=result, fallback_reason=reason)

    def _on_setting_changed(self, name: str, _value: bool) -> None:
        # Fingerprints taken under the other anonymization mode are not comparable.
        if name == DATA_ANONYMIZATION_ENABLED:
            self._cache.clear()
