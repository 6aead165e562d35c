"""OpenAI-compatible client for the cloud analysis endpoint."""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable, Dict, List, Optional

from openai import (
    APIConnectionError,
    APIError,
    APIStatusError,
    APITimeoutError,
    AsyncOpenAI,
    AuthenticationError,
    PermissionDeniedError,
    RateLimitError,
)

from .cache import canonical_json
from .credentials import credential_fingerprint
from .errors import CloudAnalysisError, FailureKind
from .schemas import ANALYSIS_KIND_DESCRIPTIONS, AnalysisKind, AnalysisRequest

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """
You are a pediatric sleep and feeding analyst supporting caregivers of infants.
You receive structured care records (sleep, feeding, activities, growth) that may be anonymized.
Identify patterns, note anything outside typical ranges for the child's age, and suggest at most three
practical next steps. Never diagnose; recommend contacting a pediatrician for medical concerns.

Return ONLY a JSON object of the form {"analysis": "<plain text analysis>"}. Do not wrap it in markdown fences.
"""

ClientFactory = Callable[[str], Any]


def _build_messages(request: AnalysisRequest) -> List[Dict[str, str]]:
    focus = ANALYSIS_KIND_DESCRIPTIONS[AnalysisKind(request.kind)]
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {
            "role": "user",
            "content": (
                f"Analysis requested: {request.kind.value} ({focus}).\n"
                f"Records:\n{canonical_json(request.payload)}"
            ),
        },
    ]


def _extract_content(response: Any) -> str:
    try:
        raw_content = response.choices[0].message.content or ""
        content = raw_content.strip().strip("`").strip()
    except (AttributeError, IndexError, KeyError, TypeError) as exc:
        raise CloudAnalysisError(FailureKind.MALFORMED_RESPONSE, "unexpected completion shape") from exc
    if content.lower().startswith("json"):
        content = content[4:].strip()
    return content


def parse_analysis(content: str) -> str:
    try:
        payload = json.loads(content)
    except json.JSONDecodeError as exc:
        raise CloudAnalysisError(FailureKind.MALFORMED_RESPONSE, "response is not JSON") from exc
    if not isinstance(payload, dict):
        raise CloudAnalysisError(FailureKind.MALFORMED_RESPONSE, "response is not a JSON object")
    analysis = payload.get("analysis")
    if not isinstance(analysis, str) or not analysis.strip():
        raise CloudAnalysisError(FailureKind.MALFORMED_RESPONSE, "missing analysis text")
    return analysis.strip()


def _translate(exc: Exception) -> CloudAnalysisError:
    # APITimeoutError subclasses APIConnectionError, so it is checked first.
    if isinstance(exc, (APITimeoutError, asyncio.TimeoutError)):
        return CloudAnalysisError(FailureKind.TIMEOUT, "request deadline exceeded")
    if isinstance(exc, APIConnectionError):
        return CloudAnalysisError(FailureKind.NETWORK_UNAVAILABLE, str(exc))
    if isinstance(exc, (AuthenticationError, PermissionDeniedError)):
        return CloudAnalysisError(FailureKind.AUTHENTICATION_FAILED, f"status={exc.status_code}")
    if isinstance(exc, RateLimitError):
        return CloudAnalysisError(FailureKind.REMOTE_RATE_LIMIT_EXCEEDED, f"status={exc.status_code}")
    if isinstance(exc, APIStatusError):
        return CloudAnalysisError(FailureKind.UNKNOWN, f"status={exc.status_code}")
    return CloudAnalysisError(FailureKind.UNKNOWN, str(exc) or type(exc).__name__)


class CloudAnalysisClient:
    """Single round trip to the analysis model; no retries, no quota or cache side effects."""

    def __init__(
        self,
        *,
        base_url: str,
        model: str,
        timeout_seconds: float = 30,
        client_factory: Optional[ClientFactory] = None,
    ) -> None:
        self._base_url = base_url
        self._model = model
        self._timeout = timeout_seconds
        self._client_factory = client_factory or self._default_factory
        self._clients: Dict[str, Any] = {}

    def _default_factory(self, credential: str) -> AsyncOpenAI:
        return AsyncOpenAI(
            api_key=credential,
            base_url=self._base_url,
            timeout=self._timeout,
            max_retries=0,
        )

    def _client_for(self, credential: str) -> Any:
        client = self._clients.get(credential)
        if client is None:
            client = self._client_factory(credential)
            self._clients[credential] = client
        return client

    async def call(self, request: AnalysisRequest, credential: str) -> str:
        client = self._client_for(credential)
        try:
            response = await asyncio.wait_for(
                client.chat.completions.create(
                    model=self._model,
                    messages=_build_messages(request),
                    temperature=0.3,
                    response_format={"type": "json_object"},
                ),
                timeout=self._timeout,
            )
        except (APIError, asyncio.TimeoutError) as exc:
            error = _translate(exc)
            logger.warning(
                "cloud analysis call failed",
                extra={
                    "kind": request.kind.value,
                    "failure": error.kind.value,
                    "credential": credential_fingerprint(credential),
                },
            )
            raise error from exc
        except Exception as exc:
            logger.exception("unexpected error from cloud analysis call", exc_info=exc)
            raise CloudAnalysisError(FailureKind.UNKNOWN, type(exc).__name__) from exc
        return parse_analysis(_extract_content(response))

    async def aclose(self) -> None:
        clients, self._clients = list(self._clients.values()), {}
        for client in clients:
            close = getattr(client, "close", None)
            if close is not None:
                await close()
