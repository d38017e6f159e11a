"""Tests for SessionManager - reading auth-service sessions from Valkey."""

from datetime import timedelta
from unittest.mock import Mock

import pytest

from auth.exceptions import SessionExpiredError
from auth.session import SessionManager
from clients.valkey_client import ValkeyClient
from utils.timezone import now_utc


@pytest.fixture
def valkey():
    """ValkeyClient stand-in; sessions are written by the auth service, not us."""
    return Mock(spec=ValkeyClient)


@pytest.fixture
def session_manager(valkey):
    return SessionManager(valkey)


@pytest.fixture
def payload(test_org_id, test_actor_id) -> dict:
    return {
        "org_id": str(test_org_id),
        "user_id": str(test_actor_id),
        "role": "admin",
        "expires_at": (now_utc() + timedelta(hours=1)).isoformat(),
    }


class TestValidateSession:
    """Test session validation."""

    def test_valid_session_returns_session(self, session_manager, valkey, payload, test_org_id, test_actor_id):
        """Stored payload becomes a Session with org and user."""
        valkey.get_json.return_value = payload

        session = session_manager.validate_session("tok-1")

        assert session.token == "tok-1"
        assert session.org_id == test_org_id
        assert session.user_id == test_actor_id
        assert session.role == "admin"

    def test_reads_prefixed_key(self, session_manager, valkey, payload):
        valkey.get_json.return_value = payload

        session_manager.validate_session("abc")

        valkey.get_json.assert_called_once_with("session:abc")

    def test_unknown_token_raises(self, session_manager, valkey):
        """Missing key raises SessionExpiredError."""
        valkey.get_json.return_value = None

        with pytest.raises(SessionExpiredError):
            session_manager.validate_session("nonexistent-token")

    def test_expired_session_raises(self, session_manager, valkey, payload):
        """A payload past its expiry is rejected even if Valkey still has it."""
        payload["expires_at"] = (now_utc() - timedelta(minutes=1)).isoformat()
        valkey.get_json.return_value = payload

        with pytest.raises(SessionExpiredError):
            session_manager.validate_session("tok")

    def test_payload_without_org_raises(self, session_manager, valkey, payload):
        del payload["org_id"]
        valkey.get_json.return_value = payload

        with pytest.raises(SessionExpiredError):
            session_manager.validate_session("tok")

    def test_naive_expiry_raises(self, session_manager, valkey, payload):
        """expires_at without an offset is treated as malformed."""
        payload["expires_at"] = "2030-01-01T00:00:00"
        valkey.get_json.return_value = payload

        with pytest.raises(SessionExpiredError):
            session_manager.validate_session("tok")

    def test_non_uuid_org_raises(self, session_manager, valkey, payload):
        payload["org_id"] = "not-a-uuid"
        valkey.get_json.return_value = payload

        with pytest.raises(SessionExpiredError):
            session_manager.validate_session("tok")

    def test_invalid_json_raises(self, session_manager, valkey):
        valkey.get_json.side_effect = ValueError("Invalid JSON in key 'session:tok'")

        with pytest.raises(SessionExpiredError):
            session_manager.validate_session("tok")
