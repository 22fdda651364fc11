import pytest

from cleaning_sync.config import Settings
from cleaning_sync.core.ical_parser import FeedFetcher
from cleaning_sync.core.orchestrator import SyncOrchestrator
from cleaning_sync.db.database import build_engine, build_session_maker, init_db
from cleaning_sync.db.stores import JobStore, PropertyStore

from feeds import FakeFeedServer


@pytest.fixture
async def session_maker(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(engine)
    yield build_session_maker(engine)
    await engine.dispose()


@pytest.fixture
def job_store(session_maker):
    return JobStore(session_maker)


@pytest.fixture
def property_store(session_maker):
    return PropertyStore(session_maker)


@pytest.fixture
def feed_server():
    return FakeFeedServer()


@pytest.fixture
def settings():
    # Feeds in these tests use fixed 2024 dates
    return Settings(feed_fetch_retries=0, past_checkout_days=None, _env_file=None)


@pytest.fixture
async def orchestrator(settings, job_store, property_store, feed_server):
    fetcher = FeedFetcher(max_retries=0, transport=feed_server.transport())
    orch = SyncOrchestrator(settings, job_store, property_store, fetcher)
    yield orch
    await orch.close()
