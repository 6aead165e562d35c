from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import List, Optional

import pytest

from babycare_ai.anonymizer import PayloadAnonymizer
from babycare_ai.cache import ResultCache
from babycare_ai.connectivity import ConnectionType, ConnectivityMonitor
from babycare_ai.credentials import CredentialSelector
from babycare_ai.device import DeviceIdentity
from babycare_ai.local_analyzer import LocalAnalyzer
from babycare_ai.orchestrator import AnalysisOrchestrator
from babycare_ai.quota import QuotaTracker
from babycare_ai.schemas import (
    ActivityRecord,
    BabyProfile,
    FeedingRecord,
    GrowthRecord,
    RecordBundle,
    SleepRecord,
)
from babycare_ai.secure_store import MemorySecureStore
from babycare_ai.settings import UserSettings

CREDENTIALS = ["sk-test-alpha", "sk-test-bravo", "sk-test-charlie"]
START = datetime(2024, 6, 2, 8, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = START) -> None:
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


class FakeCloudClient:
    """Stands in for CloudAnalysisClient; scripted responses or exceptions, in order."""

    def __init__(self, responses: Optional[list] = None) -> None:
        self.responses = list(responses or [])
        self.calls: List[tuple] = []

    async def call(self, request, credential):
        self.calls.append((request, credential))
        item = self.responses.pop(0) if self.responses else "Cloud analysis: sleep looks steady."
        if isinstance(item, Exception):
            raise item
        return item

    async def aclose(self) -> None:
        return None


async def no_sleep(_seconds: float) -> None:
    return None


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> MemorySecureStore:
    return MemorySecureStore()


@pytest.fixture
def device(store: MemorySecureStore) -> DeviceIdentity:
    return DeviceIdentity(store)


@pytest.fixture
def records() -> RecordBundle:
    return RecordBundle(
        baby=BabyProfile(id="baby-1", name="Lily", birth_date=date(2024, 3, 1), photo_url="file:///lily.jpg"),
        sleep=[
            SleepRecord(
                id="sleep-1",
                baby_id="baby-1",
                start_time=START,
                end_time=START + timedelta(hours=2),
                quality=7,
                interruptions=[{"reason": "hungry", "notes": "cried at 9"}],
                notes="Fell asleep on the walk",
            ),
            SleepRecord(
                id="sleep-2",
                baby_id="baby-1",
                start_time=START + timedelta(hours=12),
                end_time=START + timedelta(hours=20),
                quality=8,
            ),
        ],
        feeding=[
            FeedingRecord(id="feed-1", baby_id="baby-1", start_time=START, amount=120, unit="ml", notes="Fussy"),
            FeedingRecord(id="feed-2", baby_id="baby-1", start_time=START + timedelta(hours=3), amount=4, unit="oz"),
        ],
        activities=[
            ActivityRecord(
                id="act-1",
                baby_id="baby-1",
                start_time=START + timedelta(hours=1),
                activity_type="diaper",
                notes="Blowout",
                photo_url="file:///diaper.jpg",
            ),
        ],
        growth=[
            GrowthRecord(id="growth-1", baby_id="baby-1", measured_at=START - timedelta(days=14), weight_kg=5.1, height_cm=58.0),
            GrowthRecord(id="growth-2", baby_id="baby-1", measured_at=START, weight_kg=5.5, height_cm=59.5, notes="Clinic visit"),
        ],
    )


@pytest.fixture
def settings(store: MemorySecureStore) -> UserSettings:
    user_settings = UserSettings(store)
    user_settings.set_cloud_ai_enabled(True)
    return user_settings


@pytest.fixture
def connectivity() -> ConnectivityMonitor:
    return ConnectivityMonitor(reachable=True, connection_type=ConnectionType.WIFI)


@pytest.fixture
def cloud() -> FakeCloudClient:
    return FakeCloudClient()


@pytest.fixture
def quota(store: MemorySecureStore, clock: FakeClock) -> QuotaTracker:
    return QuotaTracker(store, hourly_max=10, daily_max=30, now=clock)


@pytest.fixture
def cache(clock: FakeClock) -> ResultCache:
    return ResultCache(timedelta(hours=1), now=clock)


@pytest.fixture
def selector(store: MemorySecureStore, device: DeviceIdentity) -> CredentialSelector:
    return CredentialSelector(CREDENTIALS, store, device)


@pytest.fixture
def orchestrator(settings, connectivity, selector, quota, device, cache, cloud) -> AnalysisOrchestrator:
    return AnalysisOrchestrator(
        settings=settings,
        connectivity=connectivity,
        credentials=selector,
        quota=quota,
        anonymizer=PayloadAnonymizer(device),
        cache=cache,
        cloud_client=cloud,
        local_analyzer=LocalAnalyzer(),
        max_retry_count=2,
        retry_interval_seconds=0,
        sleep=no_sleep,
    )
