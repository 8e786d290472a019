"""Shared fixtures: a controllable clock and stores rooted in tmp_path."""

from datetime import datetime, timedelta, timezone

import pytest

from testerqueue.api.events import EventBus
from testerqueue.config import Settings
from testerqueue.infra.persistence import SnapshotFile
from testerqueue.service import QueueService
from testerqueue.store.queues import QueueStore
from testerqueue.store.tickets import TicketRegistry
from testerqueue.store.waitlist import WaitlistRegistry

REGIONS = ["EU", "NA", "AS"]
CHANNELS = {"EU": "chan-eu", "NA": "chan-na", "AS": "chan-as"}


class FakeClock:
    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def events():
    return EventBus()


@pytest.fixture
def settings(tmp_path):
    return Settings(queue_channels=CHANNELS, data_dir=tmp_path, scheduler_enabled=False)


@pytest.fixture
def make_queue_store(tmp_path, clock, events):
    def factory(max_queue_size: int = 20) -> QueueStore:
        return QueueStore(
            REGIONS,
            SnapshotFile(tmp_path / QueueStore.FILENAME),
            max_queue_size=max_queue_size,
            clock=clock,
            events=events,
        )

    return factory


@pytest.fixture
def queue_store(make_queue_store):
    return make_queue_store()


@pytest.fixture
def tickets(tmp_path, clock, events):
    return TicketRegistry(SnapshotFile(tmp_path / TicketRegistry.FILENAME), clock=clock, events=events)


@pytest.fixture
def waitlist(tmp_path, clock):
    return WaitlistRegistry(SnapshotFile(tmp_path / WaitlistRegistry.FILENAME), clock=clock)


@pytest.fixture
def service(settings, clock):
    return QueueService(settings, clock=clock)


def positions(queue_store: QueueStore, region: str) -> list[tuple[str, int]]:
    return [(entry.requester_id, entry.position) for entry in queue_store.get_queue(region).entries]
