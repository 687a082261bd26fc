import os
from datetime import datetime, timedelta, timezone

import pytest

os.environ.setdefault("ENVIRONMENT", "test")

from auth import SessionManager
from database import MemoryDocumentStore
from meetings import MeetingRegistry
from storage import MemoryStorage


class FakeClock:
    """Settable clock so expiry can be tested without waiting."""

    def __init__(self, now=None):
        self.now = now or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return MemoryDocumentStore()


@pytest.fixture
def sessions(store, clock):
    return SessionManager(store, secret_key="test-secret", clock=clock)


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def registry(storage, clock):
    return MeetingRegistry(storage, clock=clock)
