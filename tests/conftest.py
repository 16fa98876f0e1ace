"""Root conftest for all tests.

Every test that touches the database gets its own in-memory SQLite engine,
patched in behind enduro_ingest.db.session so production code paths
(get_session, commits, rollbacks) run unchanged.
"""

from __future__ import annotations

from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from enduro_ingest.config.settings import settings
from enduro_ingest.core.errors import StorageWriteError
from enduro_ingest.ingestion.storage import LocalBlobStore

FIXTURES_DIR = Path(__file__).parent / "fixtures"

ATHLETE_ID = "00000000-0000-0000-0000-000000000001"
OTHER_ATHLETE_ID = "00000000-0000-0000-0000-000000000002"


def load_fixture(name: str) -> bytes:
    return (FIXTURES_DIR / name).read_bytes()


class FailingBlobStore(LocalBlobStore):
    """Blob store whose writes always fail."""

    def put(self, path: str, data: bytes, content_type: str) -> str:
        raise StorageWriteError("bucket unavailable")


class UnreachableBlobStore(LocalBlobStore):
    """Blob store whose backend fails with its own exception type."""

    def put(self, path: str, data: bytes, content_type: str) -> str:
        raise ConnectionError("connection reset by peer")


class UndeletableBlobStore(LocalBlobStore):
    """Blob store that records delete attempts and refuses them."""

    def __init__(self, root: Path):
        super().__init__(root)
        self.delete_attempts: list[str] = []

    def delete(self, path: str) -> None:
        self.delete_attempts.append(path)
        raise OSError("delete not permitted")


@pytest.fixture(scope="function")
def db_engine(monkeypatch):
    """Isolated in-memory SQLite database per test.

    StaticPool keeps a single connection so every session sees the same
    in-memory database, including sessions opened from TestClient threads.
    """
    import enduro_ingest.db.session as session_module
    from enduro_ingest.db.models import Base

    engine = create_engine(
        "sqlite:///:memory:",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)

    monkeypatch.setattr(session_module, "_get_engine", lambda: engine)
    monkeypatch.setattr(session_module, "_SessionLocal", None)

    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def blob_store(tmp_path) -> LocalBlobStore:
    return LocalBlobStore(tmp_path / "blobs")


@pytest.fixture
def auth_settings(monkeypatch):
    """Dev auth with X-Athlete-Id override and a known signing key."""
    monkeypatch.setattr(settings, "auth_mode", "dev")
    monkeypatch.setattr(settings, "allow_header_override", True)
    monkeypatch.setattr(settings, "auth_secret_key", "test-secret-key")
    return settings


@pytest.fixture
def client(db_engine, blob_store, auth_settings):
    from enduro_ingest.api.dependencies.ingest import get_blob_store
    from enduro_ingest.main import app

    app.dependency_overrides[get_blob_store] = lambda: blob_store
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def athlete_headers() -> dict[str, str]:
    return {"X-Athlete-Id": ATHLETE_ID}
