"""
Pytest configuration and fixtures for the QueueRank test suite.

Every test gets its own SQLite file under tmp_path so concurrent sessions
see the same data, plus a controllable clock for staleness checks.
"""

import json
import os
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio

# Keep test runs from writing daily log files
os.environ.setdefault("LOG_TO_FILE", "False")

from queuerank.constants import QueueMode, SongStatus
from queuerank.database.database import Database
from queuerank.database.models import Event
from queuerank.services.ranked_choice import RankedChoiceService

BASE_TIME = datetime(2026, 3, 1, 20, 0, 0)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = BASE_TIME):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float):
        self.now += timedelta(seconds=seconds)


def ranked_choice_settings(**rc_overrides) -> Dict[str, Any]:
    """Settings blob for a ranked-choice event, camelCase keys as stored."""
    gem = rc_overrides.pop('hiddenGemThreshold', None)
    rc = dict(rc_overrides)
    if gem is not None:
        rc['hiddenGemThreshold'] = gem
    return {'queueMode': QueueMode.RANKED_CHOICE, 'rankedChoiceSettings': rc}


# ============================================================================
# DATABASE FIXTURES
# ============================================================================


@pytest_asyncio.fixture
async def database(tmp_path):
    """Fresh, initialized database per test."""
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'queuerank_test.db'}")
    await db.initialize()
    yield db
    await db.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def service(database, clock) -> RankedChoiceService:
    return RankedChoiceService(database, clock=clock)


# ============================================================================
# DATA FACTORIES
# ============================================================================


@pytest.fixture
def make_event(database):
    """Create an event; ranked-choice with default settings unless overridden."""

    async def _make_event(settings: Optional[Any] = None, name: str = "Friday Night") -> str:
        if settings is None:
            settings = ranked_choice_settings()
        event = await database.create_event(name, settings)
        return event.id

    return _make_event


@pytest.fixture
def make_songs(database):
    """Add songs with strictly increasing created_at so ties resolve by submission order."""

    async def _make_songs(event_id: str, count: int, status: str = SongStatus.QUEUED,
                          prefix: str = "Song") -> List[str]:
        song_ids = []
        for i in range(count):
            song = await database.add_song_request(
                event_id,
                title=f"{prefix} {i + 1}",
                artist=f"Artist {i + 1}",
                status=status,
                created_at=BASE_TIME - timedelta(hours=1) + timedelta(seconds=i)
            )
            song_ids.append(song.id)
        return song_ids

    return _make_songs


@pytest.fixture
def set_event_settings(database):
    """Overwrite an event's raw settings text."""

    async def _set(event_id: str, raw: str):
        async with database.transaction() as session:
            event = await session.get(Event, event_id)
            event.settings = raw

    return _set


def double_encoded(settings: Dict[str, Any]) -> str:
    return json.dumps(json.dumps(settings))
