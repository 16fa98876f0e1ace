"""HTTP tests for the ingest endpoints, auth dependency and error envelope."""

import pytest
from sqlalchemy import select

from enduro_ingest.config.settings import settings
from enduro_ingest.core.auth_jwt import create_access_token
from enduro_ingest.db.models import IngestStaging, TrainingSession
from enduro_ingest.db.session import get_session
from tests.conftest import ATHLETE_ID, OTHER_ATHLETE_ID, load_fixture
from tests.ingestion.fit_builder import build_activity_fit

OCTET = "application/octet-stream"


def _upload(client, headers, filename="run_42min.tcx", payload=None, content_type=OCTET, data=None):
    if payload is None:
        payload = load_fixture("run_42min.tcx")
    return client.post(
        "/ingest/workout",
        files={"file": (filename, payload, content_type)},
        data=data or {},
        headers=headers,
    )


def _count(model) -> int:
    with get_session() as session:
        return len(session.execute(select(model)).scalars().all())


class TestUpload:
    def test_created(self, client, athlete_headers):
        response = _upload(client, athlete_headers, data={"source": "watch", "notes": "easy"})

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "normalized"
        assert body["file_type"] == "tcx"
        assert body["filename"] == "run_42min.tcx"
        assert body["message"] == "Workout uploaded and processed successfully"
        assert body["session_id"]
        assert response.headers["Cache-Control"] == "no-store, no-cache, must-revalidate"
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Request-Id"]

        with get_session() as session:
            stored = session.execute(select(TrainingSession)).scalar_one()
            assert stored.session_id == body["session_id"]
            assert stored.athlete_id == ATHLETE_ID
            assert stored.actual_duration_min == 42

    def test_fit_upload(self, client, athlete_headers):
        response = _upload(client, athlete_headers, filename="ride.fit", payload=build_activity_fit())
        assert response.status_code == 201
        assert response.json()["file_type"] == "fit"

    def test_too_large(self, client, athlete_headers, monkeypatch):
        monkeypatch.setattr(settings, "max_upload_bytes", 100)
        response = _upload(client, athlete_headers)

        assert response.status_code == 413
        assert response.json()["error"] == "FileTooLarge"
        assert _count(IngestStaging) == 0

    def test_unsupported_type(self, client, athlete_headers):
        response = _upload(client, athlete_headers, filename="notes.txt", payload=b"hello", content_type="text/plain")

        assert response.status_code == 415
        assert response.json()["error"] == "UnsupportedFileType"
        assert _count(IngestStaging) == 0

    def test_mismatched_content_type(self, client, athlete_headers):
        response = _upload(client, athlete_headers, content_type="application/gpx+xml")
        assert response.status_code == 415

    def test_missing_file(self, client, athlete_headers):
        response = client.post("/ingest/workout", data={"notes": "no file"}, headers=athlete_headers)

        assert response.status_code == 400
        assert response.json() == {"error": "MissingFile", "detail": "File is required"}

    def test_empty_file(self, client, athlete_headers):
        response = _upload(client, athlete_headers, payload=b"")

        assert response.status_code == 400
        assert response.json()["error"] == "EmptyFile"

    def test_corrupt_file(self, client, athlete_headers):
        response = _upload(client, athlete_headers, filename="corrupt.tcx", payload=load_fixture("corrupt.tcx"))

        assert response.status_code == 422
        assert response.json()["error"] == "DecodeError"
        with get_session() as session:
            record = session.execute(select(IngestStaging)).scalar_one()
            assert record.status == "error"
            assert record.error_message.startswith("Parse error: ")
            assert record.storage_path is not None
        assert _count(TrainingSession) == 0

    def test_bad_fit_signature(self, client, athlete_headers):
        response = _upload(client, athlete_headers, filename="x.fit", payload=build_activity_fit(signature=b"ABCD"))

        assert response.status_code == 422
        assert response.json()["error"] == "NotSupportedFormat"


class TestAuth:
    def test_no_credentials(self, client):
        response = _upload(client, {})

        assert response.status_code == 401
        assert response.json()["error"] == "Unauthenticated"
        assert response.headers["WWW-Authenticate"] == "Bearer"
        assert _count(IngestStaging) == 0

    def test_header_override_disabled(self, client, athlete_headers, monkeypatch):
        monkeypatch.setattr(settings, "allow_header_override", False)
        assert _upload(client, athlete_headers).status_code == 401

    def test_header_override_ignored_in_prod(self, client, athlete_headers, monkeypatch):
        monkeypatch.setattr(settings, "auth_mode", "prod")
        assert _upload(client, athlete_headers).status_code == 401

    def test_bearer_token(self, client):
        token = create_access_token(ATHLETE_ID)
        response = _upload(client, {"Authorization": f"Bearer {token}"})

        assert response.status_code == 201
        ingest_id = response.json()["ingest_id"]
        status = client.get(f"/ingest/workout/{ingest_id}", headers={"X-Athlete-Id": ATHLETE_ID})
        assert status.status_code == 200

    def test_invalid_token(self, client):
        response = _upload(client, {"Authorization": "Bearer not-a-token"})

        assert response.status_code == 401
        assert response.json()["detail"] == "Invalid authentication credentials"


class TestStatus:
    @pytest.fixture
    def ingest_id(self, client, athlete_headers) -> str:
        return _upload(client, athlete_headers).json()["ingest_id"]

    def test_read(self, client, athlete_headers, ingest_id):
        response = client.get(f"/ingest/workout/{ingest_id}", headers=athlete_headers)

        assert response.status_code == 200
        body = response.json()
        assert body["ingest_id"] == ingest_id
        assert body["status"] == "normalized"
        assert body["error_message"] is None
        assert "storage_path" not in body
        assert response.headers["ETag"].startswith('"')
        assert response.headers["Cache-Control"] == settings.status_cache_hint

    def test_not_modified(self, client, athlete_headers, ingest_id):
        etag = client.get(f"/ingest/workout/{ingest_id}", headers=athlete_headers).headers["ETag"]
        response = client.get(
            f"/ingest/workout/{ingest_id}",
            headers={**athlete_headers, "If-None-Match": f"W/{etag}"},
        )

        assert response.status_code == 304
        assert response.content == b""
        assert response.headers["ETag"] == etag

    def test_other_athlete_gets_not_found(self, client, ingest_id):
        response = client.get(f"/ingest/workout/{ingest_id}", headers={"X-Athlete-Id": OTHER_ATHLETE_ID})

        assert response.status_code == 404
        assert response.json() == {"error": "IngestNotFound", "detail": "Ingest record not found"}

    def test_invalid_id(self, client, athlete_headers):
        response = client.get("/ingest/workout/not-a-uuid", headers=athlete_headers)

        assert response.status_code == 400
        assert response.json()["error"] == "InvalidIngestId"

    def test_requires_auth(self, client, ingest_id):
        assert client.get(f"/ingest/workout/{ingest_id}").status_code == 401


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "storage": True}


def test_request_id_is_echoed(client):
    response = client.get("/health", headers={"X-Request-Id": "req-123"})
    assert response.headers["X-Request-Id"] == "req-123"
