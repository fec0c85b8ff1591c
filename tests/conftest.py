"""Shared fixtures: a controllable clock, an in-memory store, the packaged graph."""

import os
from datetime import datetime, timedelta, timezone

import pytest

# The API module builds its store from the environment at import time
os.environ.setdefault("STORAGE_BACKEND", "memory")
os.environ.setdefault("CLEANUP_INTERVAL_SECONDS", "0")

from analytics.knowledge_graph import get_default_graph
from analytics.storage import MemoryStore


class FakeClock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock(datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def graph():
    return get_default_graph()
