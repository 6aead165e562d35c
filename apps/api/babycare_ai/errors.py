"""Failure taxonomy for the analysis layer."""
from __future__ import annotations

from enum import Enum
from typing import Optional


class FailureKind(str, Enum):
    NETWORK_UNAVAILABLE = "network_unavailable"
    AUTHENTICATION_FAILED = "authentication_failed"
    REMOTE_RATE_LIMIT_EXCEEDED = "remote_rate_limit_exceeded"
    LOCAL_QUOTA_EXHAUSTED = "local_quota_exhausted"
    MALFORMED_RESPONSE = "malformed_response"
    TIMEOUT = "timeout"
    INSUFFICIENT_DATA = "insufficient_data"
    CLOUD_DISABLED_BY_SETTING = "cloud_disabled_by_setting"
    UNKNOWN = "unknown"


# Cloud failures worth another attempt before falling back.
RETRYABLE_FAILURES = frozenset(
    {
        FailureKind.TIMEOUT,
        FailureKind.UNKNOWN,
        FailureKind.REMOTE_RATE_LIMIT_EXCEEDED,
    }
)


class AnalysisErrorKind(str, Enum):
    """Errors surfaced to callers when even the local fallback produces nothing."""

    INSUFFICIENT_DATA = "insufficient_data"
    ANALYZER_NOT_AVAILABLE = "analyzer_not_available"


class CloudAnalysisError(Exception):
    def __init__(self, kind: FailureKind, detail: Optional[str] = None) -> None:
        self.kind = kind
        self.detail = detail
        super().__init__(f"{kind.value}: {detail}" if detail else kind.value)

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_FAILURES


class InsufficientDataError(Exception):
    """Raised by local analyzers when the records are too sparse to analyze."""


class NoCredentialsError(RuntimeError):
    """No API credentials were provisioned for this build."""


class SecureStoreError(RuntimeError):
    """The persistent store could not be read or written."""
