"""On-device analysis used whenever the cloud path is unavailable."""
from __future__ import annotations

from collections import Counter, defaultdict
from datetime import date, datetime, timezone
from typing import Dict, List, Optional

from .errors import InsufficientDataError
from .schemas import AnalysisKind, AnalysisResult, AnalysisSource, BabyProfile, RecordBundle


STAGE_GUIDANCE = {
    "newborn": {
        "sleep_hours": (14, 18),
        "feed_per_day": (8, 12),
        "notes": "Newborns sleep in short stretches around the clock and feed every 2-3 hours.",
    },
    "month_3": {
        "sleep_hours": (14, 17),
        "feed_per_day": (5, 8),
        "notes": "Around three months, night stretches often lengthen while naps stay irregular.",
    },
    "month_6": {
        "sleep_hours": (12, 16),
        "feed_per_day": (4, 6),
        "notes": "From six months, solids start and most babies settle into two to three naps.",
    },
}

MIN_GROWTH_POINTS = 2


def stage_for(baby: Optional[BabyProfile], today: Optional[date] = None) -> Optional[str]:
    if baby is None or baby.birth_date is None:
        return None
    today = today or datetime.now(tz=timezone.utc).date()
    months = (today.year - baby.birth_date.year) * 12 + (today.month - baby.birth_date.month)
    if months < 1:
        return "newborn"
    if months < 6:
        return "month_3"
    return "month_6"


def _span_days(timestamps: List[datetime]) -> float:
    if not timestamps:
        return 1.0
    span = (max(timestamps) - min(timestamps)).total_seconds() / 86400
    return max(1.0, span)


def summaries_from_records(bundle: RecordBundle) -> Dict[str, float]:
    totals: Dict[str, float] = defaultdict(float)

    completed = [record for record in bundle.sleep if record.duration_minutes is not None]
    totals["count_sleep"] = len(bundle.sleep)
    if completed:
        minutes = [record.duration_minutes for record in completed]
        days = _span_days([record.start_time for record in completed])
        totals["sleep_minutes"] = sum(minutes)
        totals["sleep_hours_per_day"] = sum(minutes) / 60 / days
        totals["longest_sleep_minutes"] = max(minutes)
        totals["average_sleep_minutes"] = sum(minutes) / len(minutes)
        totals["interruptions"] = sum(len(record.interruptions) for record in completed)

    totals["count_feeding"] = len(bundle.feeding)
    if bundle.feeding:
        starts = sorted(record.start_time for record in bundle.feeding)
        totals["feed_per_day"] = len(starts) / _span_days(starts)
        totals["feed_ml"] = sum(
            record.amount * (29.5735 if (record.unit or "").lower() == "oz" else 1.0)
            for record in bundle.feeding
            if record.amount is not None and (record.unit or "ml").lower() in {"ml", "oz"}
        )
        if len(starts) > 1:
            gaps = [(later - earlier).total_seconds() / 60 for earlier, later in zip(starts, starts[1:])]
            totals["average_feed_gap_minutes"] = sum(gaps) / len(gaps)

    activity_counts = Counter(record.activity_type for record in bundle.activities)
    for activity_type, count in activity_counts.items():
        totals[f"count_{activity_type}"] = count

    measured = sorted(bundle.growth, key=lambda record: record.measured_at)
    totals["count_growth"] = len(measured)
    if len(measured) >= MIN_GROWTH_POINTS:
        first, last = measured[0], measured[-1]
        weeks = max((last.measured_at - first.measured_at).days / 7, 1 / 7)
        if first.weight_kg is not None and last.weight_kg is not None:
            totals["weight_gain_g_per_week"] = (last.weight_kg - first.weight_kg) * 1000 / weeks
        if first.height_cm is not None and last.height_cm is not None:
            totals["height_gain_cm_per_week"] = (last.height_cm - first.height_cm) / weeks
    return totals


def expected_ranges(stage: Optional[str], observed: Dict[str, float]) -> Dict[str, List[str]]:
    stage_data = STAGE_GUIDANCE.get(stage or "", {})
    guidance: Dict[str, List[str]] = {"risks": [], "options": []}
    if not stage_data:
        return guidance

    if "sleep_hours_per_day" in observed:
        low, high = stage_data["sleep_hours"]
        if observed["sleep_hours_per_day"] < low:
            guidance["risks"].append("Sleep is trending short for this age; watch wake windows and bedtime routine.")
        elif observed["sleep_hours_per_day"] > high:
            guidance["options"].append("Sleep is above the usual range; mention it at the next check-up if it persists.")
    if "feed_per_day" in observed:
        low, _ = stage_data["feed_per_day"]
        if observed["feed_per_day"] < low:
            guidance["options"].append("Consider offering an extra daytime feed.")
    return guidance


def _sleep_lines(observed: Dict[str, float]) -> List[str]:
    if "sleep_minutes" not in observed:
        return []
    return [
        f"Sleep: {observed['sleep_hours_per_day']:.1f} hours per day across {int(observed['count_sleep'])} sessions, "
        f"average {observed['average_sleep_minutes']:.0f} min, longest {observed['longest_sleep_minutes']:.0f} min, "
        f"{int(observed['interruptions'])} interruptions."
    ]


def _feeding_lines(observed: Dict[str, float]) -> List[str]:
    if not observed.get("count_feeding"):
        return []
    line = f"Feeding: {observed['feed_per_day']:.1f} feeds per day"
    if "average_feed_gap_minutes" in observed:
        line += f", about {observed['average_feed_gap_minutes'] / 60:.1f} h apart"
    if observed.get("feed_ml"):
        line += f", {observed['feed_ml']:.0f} ml recorded in total"
    return [line + "."]


def _activity_lines(observed: Dict[str, float]) -> List[str]:
    counts = {
        key[len("count_"):]: int(value)
        for key, value in observed.items()
        if key.startswith("count_") and key not in {"count_sleep", "count_feeding", "count_growth"}
    }
    if not counts:
        return []
    parts = ", ".join(f"{name.replace('_', ' ')} x{count}" for name, count in sorted(counts.items()))
    return [f"Activities: {parts}."]


def _growth_lines(observed: Dict[str, float]) -> List[str]:
    lines = []
    if "weight_gain_g_per_week" in observed:
        lines.append(f"Weight change: {observed['weight_gain_g_per_week']:+.0f} g per week.")
    if "height_gain_cm_per_week" in observed:
        lines.append(f"Length change: {observed['height_gain_cm_per_week']:+.2f} cm per week.")
    return lines


class LocalAnalyzer:
    """Rule-based summaries computed from the raw records."""

    def analyze(self, kind: AnalysisKind, records: RecordBundle) -> Optional[AnalysisResult]:
        relevant = records.for_kind(kind)
        if relevant.is_empty():
            raise InsufficientDataError(f"no records for {kind.value}")
        if kind == AnalysisKind.GROWTH_TREND and len(relevant.growth) < MIN_GROWTH_POINTS:
            raise InsufficientDataError("growth trend needs at least two measurements")

        observed = summaries_from_records(relevant)
        lines: List[str] = []
        if kind in (AnalysisKind.SLEEP_PATTERN, AnalysisKind.DAILY_SUMMARY, AnalysisKind.COMPREHENSIVE):
            lines.extend(_sleep_lines(observed))
        if kind in (AnalysisKind.FEEDING_PATTERN, AnalysisKind.DAILY_SUMMARY, AnalysisKind.COMPREHENSIVE):
            lines.extend(_feeding_lines(observed))
        if kind in (AnalysisKind.DAILY_SUMMARY, AnalysisKind.COMPREHENSIVE):
            lines.extend(_activity_lines(observed))
        if kind in (AnalysisKind.GROWTH_TREND, AnalysisKind.COMPREHENSIVE):
            lines.extend(_growth_lines(observed))
        if not lines:
            raise InsufficientDataError(f"records too sparse for {kind.value}")

        stage = stage_for(records.baby)
        guidance = expected_ranges(stage, observed)
        lines.extend(guidance["risks"])
        lines.extend(guidance["options"])
        if stage:
            lines.append(STAGE_GUIDANCE[stage]["notes"])
        return AnalysisResult(text="\n".join(lines), source=AnalysisSource.LOCAL, kind=kind)
