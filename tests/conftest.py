"""
Pytest Configuration and Shared Fixtures

Provides an in-memory Redis double, a controllable clock, a recording
notifier and a loaded client store.
"""

import asyncio
import os
from datetime import datetime, timedelta, timezone

import pytest

# Set test environment before importing application modules
os.environ["LOG_FILE"] = "logs/test.log"
os.environ["NOTIFICATIONS_ENABLED"] = "true"

from crm.core.followups import FollowUpService
from crm.core.scheduler import FollowUpScheduler, NotifiedSet
from crm.db.client_store import ClientStore
from tests.mocks.fake_redis import FakeRedis


# --- Time Fixtures ---


class MutableClock:
    """Callable clock whose current time tests move explicitly."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def wednesday() -> datetime:
    """Wednesday 2025-01-15 10:30 UTC."""
    return datetime(2025, 1, 15, 10, 30, tzinfo=timezone.utc)


@pytest.fixture
def clock(wednesday: datetime) -> MutableClock:
    return MutableClock(wednesday)


# --- Storage Fixtures ---


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def store(fake_redis: FakeRedis) -> ClientStore:
    """Client store backed by the in-memory Redis double, already loaded."""
    client_store = ClientStore(redis_client=fake_redis, storage_key="test_clients")
    asyncio.run(client_store.load())
    return client_store


@pytest.fixture
def notified(fake_redis: FakeRedis) -> NotifiedSet:
    return NotifiedSet(fake_redis, key="test_notified")


# --- Collaborator Fixtures ---


class RecordingNotifier:
    """Notifier double that records deliveries and can simulate failures."""

    def __init__(self):
        self.delivered: list[str] = []
        self.raise_for: set[str] = set()
        self.refuse_for: set[str] = set()

    async def notify_due(self, client) -> bool:
        if client.id in self.raise_for:
            raise RuntimeError("notification permission denied")
        if client.id in self.refuse_for:
            return False
        self.delivered.append(client.id)
        return True


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def followups(store: ClientStore, clock: MutableClock) -> FollowUpService:
    return FollowUpService(store, clock=clock, business_days=7)


@pytest.fixture
def scheduler(store, notifier, notified, clock) -> FollowUpScheduler:
    return FollowUpScheduler(
        store=store,
        notifier=notifier,
        notified=notified,
        clock=clock,
        interval_seconds=60,
        warmup_delay_seconds=3,
        grace_hours=24
    )


@pytest.fixture
def create_client(store: ClientStore):
    """Factory creating a client synchronously."""

    def _create(**fields):
        fields.setdefault("company_name", "Acme SA")
        return asyncio.run(store.create(**fields))

    return _create
