"""Tests for access token creation and verification."""

from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from enduro_ingest.core.auth_jwt import create_access_token, decode_access_token
from tests.conftest import ATHLETE_ID


def test_round_trip(auth_settings):
    token = create_access_token(ATHLETE_ID)
    assert decode_access_token(token) == ATHLETE_ID


def test_expired_token_rejected(auth_settings):
    now = datetime.now(timezone.utc)
    token = jwt.encode(
        {"sub": ATHLETE_ID, "exp": now - timedelta(minutes=1), "iat": now - timedelta(days=1)},
        auth_settings.auth_secret_key,
        algorithm=auth_settings.auth_algorithm,
    )
    with pytest.raises(ValueError, match="Invalid or expired token"):
        decode_access_token(token)


def test_token_signed_with_other_key_rejected(auth_settings):
    token = jwt.encode({"sub": ATHLETE_ID}, "some-other-key", algorithm="HS256")
    with pytest.raises(ValueError):
        decode_access_token(token)


def test_missing_subject_rejected(auth_settings):
    token = jwt.encode({"iss": "enduro-ingest"}, auth_settings.auth_secret_key, algorithm="HS256")
    with pytest.raises(ValueError, match="missing athlete ID"):
        decode_access_token(token)


def test_no_secret_configured(auth_settings, monkeypatch):
    monkeypatch.setattr(auth_settings, "auth_secret_key", "")
    with pytest.raises(ValueError):
        create_access_token(ATHLETE_ID)
    with pytest.raises(ValueError, match="not configured"):
        decode_access_token("anything")
