import os
import tempfile

_TMP_DIR = tempfile.mkdtemp(prefix="leaderboard-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'test.db')}"

import pytest

from leaderboard import services
from leaderboard.db import Base, SessionLocal, get_engine, init_db


@pytest.fixture
def db():
    """Fresh schema per test on a throwaway SQLite file."""
    init_db()
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=get_engine())
        services.result_cache.invalidate()


@pytest.fixture
def client(db):
    from fastapi.testclient import TestClient

    from leaderboard.main import app

    with TestClient(app) as test_client:
        yield test_client
