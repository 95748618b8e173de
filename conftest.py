"""
Pytest configuration and shared fixtures.

Tests run against an in-memory SQLite database. The environment is set here,
before any petmedia import reads settings, and the settings cache is cleared
so the test values win.
"""

import os
from datetime import datetime, timedelta, timezone

import pytest

os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("LOG_LEVEL", "WARNING")

from petmedia.config import get_settings  # noqa: E402
get_settings.cache_clear()

from petmedia.livesync import LiveSync  # noqa: E402
from petmedia.map_spots import MapSpotStore  # noqa: E402
from petmedia.messages import MessageStore  # noqa: E402
from petmedia.storage import Backend  # noqa: E402
from petmedia.threads import ThreadStore  # noqa: E402
from petmedia.users import UserDirectory  # noqa: E402
from petmedia.utils import format_timestamp  # noqa: E402


class StepClock:
    """Deterministic clock: every call is one second after the previous one."""

    def __init__(self, start: datetime = datetime(2025, 1, 15, 10, 0, tzinfo=timezone.utc)):
        self.current = start

    def __call__(self) -> str:
        self.current += timedelta(seconds=1)
        return format_timestamp(self.current)


@pytest.fixture
def clock():
    return StepClock()


@pytest.fixture
def backend():
    """Fresh in-memory store per test."""
    backend = Backend("sqlite://")
    backend.init_db()
    yield backend
    backend.close()


@pytest.fixture
def users(backend):
    return UserDirectory(backend)


@pytest.fixture
def threads(backend, users, clock):
    return ThreadStore(backend, users, placeholder_name="Kullanıcı", clock=clock)


@pytest.fixture
def messages(backend, threads, clock):
    return MessageStore(backend, threads, max_length=1000, clock=clock)


@pytest.fixture
def map_spots(backend, clock):
    return MapSpotStore(backend, clock=clock)


@pytest.fixture
def livesync(backend, threads, messages, map_spots):
    return LiveSync(backend, threads, messages, map_spots)


@pytest.fixture
def people(users):
    """Two registered users, u1 (Ayşe) and u2 (Mehmet)."""
    users.ensure_user("u1", email="ayse@example.com", display_name="Ayşe", photo_url="https://img/u1.png")
    users.ensure_user("u2", email="mehmet@example.com", display_name="Mehmet")
    return ("u1", "u2")
