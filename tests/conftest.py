"""Pytest configuration and shared fixtures."""

import os
import tempfile
from pathlib import Path
from typing import Generator
from uuid import uuid4

# Environment must be in place before family_stars builds its config and engine
_TEST_ROOT = Path(tempfile.mkdtemp(prefix="family_stars_tests_"))
os.environ.setdefault("FAMILY_STARS_LOG_TO_FILE", "0")
os.environ.setdefault("FAMILY_STARS_CONFIG_DIR", str(_TEST_ROOT / "config"))
os.environ.setdefault("FAMILY_STARS_DATABASE_URL", f"sqlite:///{_TEST_ROOT / 'default.db'}")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from family_stars.db.database import Base, create_database_engine
from family_stars.db import models  # noqa: F401
from family_stars.events.bus import ChangeNotificationBus
from family_stars.repositories.dependencies import build_memory_container, build_sqlalchemy_container
from family_stars.services.celebrations import CelebrationQueue


@pytest.fixture
def test_db(tmp_path):
    """Session factory over a fresh SQLite file with the schema created."""
    engine = create_database_engine(f"sqlite:///{tmp_path / 'family_stars_test.db'}")
    Base.metadata.create_all(bind=engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    yield TestingSessionLocal

    engine.dispose()


@pytest.fixture
def db_session(test_db):
    """A database session, closed after the test."""
    session = test_db()

    yield session

    session.close()


@pytest.fixture
def sql_repos(db_session):
    return build_sqlalchemy_container(db_session)


@pytest.fixture
def memory_repos():
    return build_memory_container()


@pytest.fixture
def bus():
    """A private bus so tests never share subscribers."""
    return ChangeNotificationBus()


@pytest.fixture
def instant_queue():
    """Celebration queue whose timers complete immediately."""
    sleeps = []

    async def fake_sleep(seconds: float) -> None:
        sleeps.append(seconds)

    queue = CelebrationQueue(visible_seconds=2.0, fade_seconds=0.3, poll_interval=0.01, sleep=fake_sleep)
    queue.recorded_sleeps = sleeps
    return queue


@pytest.fixture
def user_id():
    return uuid4()


@pytest.fixture
def group_id():
    return uuid4()


@pytest.fixture
def client(test_db) -> Generator[TestClient, None, None]:
    """Create a test client with database dependency override."""
    from family_stars.main import app
    from family_stars.db.database import get_db

    def override_get_db():
        # Use a fresh session per request in tests
        db = test_db()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as test_client:
        yield test_client

    # Clear overrides to avoid affecting other tests
    app.dependency_overrides.clear()
