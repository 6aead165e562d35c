import unittest
from datetime import date, datetime, timedelta, timezone

from babycare_ai.errors import InsufficientDataError
from babycare_ai.local_analyzer import LocalAnalyzer, expected_ranges, stage_for, summaries_from_records
from babycare_ai.schemas import (
    AnalysisKind,
    AnalysisSource,
    BabyProfile,
    FeedingRecord,
    GrowthRecord,
    RecordBundle,
    SleepRecord,
)

START = datetime(2024, 6, 2, 8, 0, tzinfo=timezone.utc)


def _bundle(**sections) -> RecordBundle:
    return RecordBundle(baby=BabyProfile(id="baby-1", name="Lily", birth_date=date(2024, 3, 1)), **sections)


SLEEP = [
    SleepRecord(
        id="sleep-1",
        baby_id="baby-1",
        start_time=START,
        end_time=START + timedelta(hours=2),
        interruptions=[{"reason": "hungry"}],
    ),
    SleepRecord(id="sleep-2", baby_id="baby-1", start_time=START + timedelta(hours=12), end_time=START + timedelta(hours=20)),
]
FEEDING = [
    FeedingRecord(id="feed-1", baby_id="baby-1", start_time=START, amount=120, unit="ml"),
    FeedingRecord(id="feed-2", baby_id="baby-1", start_time=START + timedelta(hours=3), amount=4, unit="oz"),
]


class LocalAnalyzerTests(unittest.TestCase):
    def test_summaries_with_sleep_and_feed(self):
        summary = summaries_from_records(_bundle(sleep=SLEEP, feeding=FEEDING))
        self.assertEqual(summary["count_sleep"], 2)
        self.assertEqual(summary["sleep_minutes"], 600)
        self.assertEqual(summary["longest_sleep_minutes"], 480)
        self.assertEqual(summary["interruptions"], 1)
        self.assertEqual(summary["feed_per_day"], 2)
        self.assertEqual(summary["average_feed_gap_minutes"], 180)
        self.assertAlmostEqual(summary["feed_ml"], 238.294, places=2)

    def test_open_sleep_sessions_are_counted_but_not_measured(self):
        ongoing = SleepRecord(id="sleep-3", baby_id="baby-1", start_time=START)
        summary = summaries_from_records(_bundle(sleep=[ongoing]))
        self.assertEqual(summary["count_sleep"], 1)
        self.assertNotIn("sleep_minutes", summary)

    def test_expected_ranges_flags_low_sleep(self):
        result = expected_ranges("month_3", {"sleep_hours_per_day": 10, "feed_per_day": 3})
        self.assertIn("sleep", " ".join(result["risks"]).lower())
        self.assertTrue(result["options"])

    def test_expected_ranges_without_stage(self):
        self.assertEqual(expected_ranges(None, {"sleep_hours_per_day": 2}), {"risks": [], "options": []})

    def test_stage_for_age(self):
        baby = BabyProfile(id="baby-1", birth_date=date(2024, 3, 1))
        self.assertEqual(stage_for(baby, date(2024, 3, 20)), "newborn")
        self.assertEqual(stage_for(baby, date(2024, 6, 2)), "month_3")
        self.assertEqual(stage_for(baby, date(2024, 9, 1)), "month_6")
        self.assertIsNone(stage_for(BabyProfile(id="baby-2")))

    def test_sleep_pattern(self):
        result = LocalAnalyzer().analyze(AnalysisKind.SLEEP_PATTERN, _bundle(sleep=SLEEP, feeding=FEEDING))
        self.assertEqual(result.source, AnalysisSource.LOCAL)
        self.assertEqual(result.kind, AnalysisKind.SLEEP_PATTERN)
        self.assertIn("10.0 hours per day", result.text)
        self.assertNotIn("Feeding", result.text)

    def test_daily_summary_covers_every_section(self):
        result = LocalAnalyzer().analyze(AnalysisKind.DAILY_SUMMARY, _bundle(sleep=SLEEP, feeding=FEEDING))
        self.assertIn("Sleep:", result.text)
        self.assertIn("Feeding: 2.0 feeds per day, about 3.0 h apart", result.text)

    def test_growth_trend(self):
        growth = [
            GrowthRecord(id="g-2", baby_id="baby-1", measured_at=START, weight_kg=5.5, height_cm=59.5),
            GrowthRecord(id="g-1", baby_id="baby-1", measured_at=START - timedelta(days=14), weight_kg=5.1, height_cm=58.0),
        ]
        result = LocalAnalyzer().analyze(AnalysisKind.GROWTH_TREND, _bundle(growth=growth))
        self.assertIn("Weight change: +200 g per week.", result.text)
        self.assertIn("Length change: +0.75 cm per week.", result.text)

    def test_growth_trend_needs_two_points(self):
        growth = [GrowthRecord(id="g-1", baby_id="baby-1", measured_at=START, weight_kg=5.1)]
        with self.assertRaises(InsufficientDataError):
            LocalAnalyzer().analyze(AnalysisKind.GROWTH_TREND, _bundle(growth=growth))

    def test_missing_records_are_insufficient(self):
        with self.assertRaises(InsufficientDataError):
            LocalAnalyzer().analyze(AnalysisKind.FEEDING_PATTERN, _bundle(sleep=SLEEP))

    def test_only_open_sessions_are_insufficient(self):
        ongoing = SleepRecord(id="sleep-3", baby_id="baby-1", start_time=START)
        with self.assertRaises(InsufficientDataError):
            LocalAnalyzer().analyze(AnalysisKind.SLEEP_PATTERN, _bundle(sleep=[ongoing]))


if __name__ == "__main__":
    unittest.main()
