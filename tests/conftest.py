"""Shared pytest fixtures for workout-sync tests."""

import threading
from datetime import datetime, timedelta, timezone

import pytest

from workout_sync.config import Config
from workout_sync.sync.coordinator import SyncCoordinator
from workout_sync.sync.ports import StaticSession
from workout_sync.sync.state import InMemoryBaselineStore
from workout_sync.sync.stores.memory import (
    InMemoryLocalStore,
    InMemoryRemoteStore,
)

OWNER = "user-1"
INSTALLATION = "install-a"
T0 = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def pytest_addoption(parser):
    """Add custom CLI options for test filtering."""
    parser.addoption(
        "--run-live",
        action="store_true",
        default=False,
        help="Run tests that require a live remote document store",
    )


def pytest_collection_modifyitems(config, items):
    """Skip live tests unless --run-live is passed."""
    if config.getoption("--run-live"):
        return
    skip_live = pytest.mark.skip(reason="need --run-live option to run")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class RecordingLocalStore(InMemoryLocalStore):
    """Local store that logs every row it actually writes.

    ``writes`` holds ``(collection, record_id)`` in call order; an
    ``insert_if_absent`` that finds an existing row is not a write.
    """

    def __init__(self):
        super().__init__()
        self.writes: list[tuple[str, str]] = []
        self._writes_lock = threading.Lock()

    def _log(self, collection, record):
        with self._writes_lock:
            self.writes.append(
                (getattr(collection, "value", collection), record.id)
            )

    def upsert(self, collection, record):
        super().upsert(collection, record)
        self._log(collection, record)

    def insert_if_absent(self, collection, record):
        inserted = super().insert_if_absent(collection, record)
        if inserted:
            self._log(collection, record)
        return inserted


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def local():
    return InMemoryLocalStore()


@pytest.fixture
def remote(clock):
    return InMemoryRemoteStore(clock=clock)


@pytest.fixture
def baselines():
    return InMemoryBaselineStore()


@pytest.fixture
def make_coordinator(local, remote, baselines, clock):
    """Factory fixture building a coordinator over the in-memory stores."""

    def _make(
        owner_id=OWNER,
        *,
        cooldown=None,
        local_store=None,
        installation_id=INSTALLATION,
    ):
        return SyncCoordinator(
            local=local_store or local,
            remote=remote,
            baseline_store=baselines,
            session=StaticSession(owner_id),
            installation_id=installation_id,
            cooldown=cooldown,
            clock=clock,
        )

    return _make


@pytest.fixture
def mock_config():
    """Create a Config instance for client tests."""
    return Config(
        remote_url="https://sync.example.com/api",
        api_token="test-token",
        owner_id=OWNER,
        insecure=False,
    )
