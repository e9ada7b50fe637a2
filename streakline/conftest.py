# streakline/conftest.py
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Add project root to PYTHONPATH
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from streakline.core.database import create_all_tables, drop_all_tables  # noqa: E402
from streakline.core.metrics import METRICS  # noqa: E402
from streakline.features.streaks.events import InMemoryEventSource  # noqa: E402
from streakline.features.streaks.service import StreakService  # noqa: E402
from streakline.features.streaks.store import InMemoryStreakStore, SqlStreakStore  # noqa: E402


class FixedClock:
    """Deterministic clock; call it for "now", move it with advance()."""

    def __init__(self, moment: datetime):
        self.moment = moment

    def __call__(self) -> datetime:
        return self.moment

    def advance(self, **delta) -> datetime:
        self.moment = self.moment + timedelta(**delta)
        return self.moment


@pytest.fixture
def clock():
    return FixedClock(datetime(2024, 1, 10, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def sqlite_engine():
    """
    SQLite in-memory engine with StaticPool so every session shares one
    connection (and therefore one database).
    """
    engine = create_engine(
        "sqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    create_all_tables(engine)
    yield engine
    drop_all_tables(engine)
    engine.dispose()


@pytest.fixture
def session_factory(sqlite_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=sqlite_engine)


@pytest.fixture
def sql_store(session_factory):
    return SqlStreakStore(session_factory=session_factory)


@pytest.fixture
def memory_store():
    return InMemoryStreakStore()


@pytest.fixture(params=["memory", "sql"])
def store(request):
    """Run a test against both store implementations."""
    if request.param == "memory":
        return InMemoryStreakStore()
    return request.getfixturevalue("sql_store")


@pytest.fixture
def service(store, clock):
    return StreakService(store, clock=clock)


@pytest.fixture
def memory_service(memory_store, clock):
    return StreakService(memory_store, clock=clock)


@pytest.fixture
def event_source():
    return InMemoryEventSource()


@pytest.fixture(autouse=True)
def reset_metrics():
    """Counters are process-wide; start every test from zero."""
    METRICS.reset()
    yield
