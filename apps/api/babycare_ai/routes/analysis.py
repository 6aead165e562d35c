import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from ..orchestrator import AnalysisOrchestrator
from ..schemas import (
    AnalysisKind,
    AnalysisOutcome,
    AnalysisSettings,
    AnalysisSettingsPayload,
    CacheStats,
    QuotaStatus,
    RecordBundle,
)

router = APIRouter(prefix="/api/v1/analysis", tags=["analysis"])
logger = logging.getLogger(__name__)


def get_orchestrator(request: Request) -> AnalysisOrchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="analysis service is not initialized")
    return orchestrator


@router.get("/quota", response_model=QuotaStatus)
async def get_quota(orchestrator: AnalysisOrchestrator = Depends(get_orchestrator)) -> QuotaStatus:
    return orchestrator.quota_status()


@router.post("/credential/reset")
async def reset_credential(orchestrator: AnalysisOrchestrator = Depends(get_orchestrator)) -> dict:
    orchestrator.reset_credential()
    return {"status": "ok"}


@router.delete("/cache")
async def clear_cache(orchestrator: AnalysisOrchestrator = Depends(get_orchestrator)) -> dict:
    orchestrator.clear_cache()
    return {"status": "ok"}


@router.get("/cache/stats", response_model=CacheStats)
async def cache_stats(orchestrator: AnalysisOrchestrator = Depends(get_orchestrator)) -> CacheStats:
    return orchestrator.cache_stats()


@router.get("/settings", response_model=AnalysisSettings)
async def get_settings(orchestrator: AnalysisOrchestrator = Depends(get_orchestrator)) -> AnalysisSettings:
    return orchestrator.settings.snapshot()


@router.put("/settings", response_model=AnalysisSettings)
async def update_settings(
    payload: AnalysisSettingsPayload,
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator),
) -> AnalysisSettings:
    settings = orchestrator.settings
    if payload.cloud_ai_enabled is not None:
        settings.set_cloud_ai_enabled(payload.cloud_ai_enabled)
    if payload.data_anonymization_enabled is not None:
        settings.set_data_anonymization_enabled(payload.data_anonymization_enabled)
    if payload.cloud_only_on_wifi is not None:
        settings.set_cloud_only_on_wifi(payload.cloud_only_on_wifi)
    return settings.snapshot()


@router.post("/{kind}", response_model=AnalysisOutcome)
async def request_analysis(
    kind: AnalysisKind,
    records: RecordBundle,
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator),
) -> AnalysisOutcome:
    """Analyze the supplied records, through the cloud model when allowed."""

    logger.info(
        "analysis request",
        extra={"method": "POST", "kind": kind.value, "records": records.record_count()},
    )
    outcome = await orchestrator.request_analysis(kind, records)
    logger.info(
        "analysis outcome",
        extra={
            "kind": kind.value,
            "source": outcome.result.source.value if outcome.result else None,
            "error": outcome.error.value if outcome.error else None,
            "fallback_reason": outcome.fallback_reason.value if outcome.fallback_reason else None,
        },
    )
    return outcome
