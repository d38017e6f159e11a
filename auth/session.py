"""Session lookup.

Sessions are created, extended and revoked by the platform auth service
and stored in Valkey under session:{token}. Billing only reads them.
"""

import logging

from pydantic import ValidationError

from clients.valkey_client import ValkeyClient
from auth.types import Session
from auth.exceptions import SessionExpiredError
from utils.timezone import now_utc, parse_iso

logger = logging.getLogger(__name__)


class SessionManager:
    """Read-only view of auth-service sessions."""

    KEY_PREFIX = "session:"

    def __init__(self, valkey: ValkeyClient):
        self._valkey = valkey

    def _key(self, token: str) -> str:
        """Generate Valkey key for session token."""
        return f"{self.KEY_PREFIX}{token}"

    def validate_session(self, token: str) -> Session:
        """Validate session token and return session.

        Raises SessionExpiredError if the token is unknown, malformed,
        expired, or carries no org.
        """
        try:
            data = self._valkey.get_json(self._key(token))
        except ValueError as e:
            logger.warning(f"Unreadable session payload: {e}")
            raise SessionExpiredError("Session is invalid") from e

        if data is None:
            raise SessionExpiredError("Session not found or expired")

        try:
            session = Session(
                token=token,
                org_id=data["org_id"],
                user_id=data["user_id"],
                role=data.get("role"),
                expires_at=parse_iso(data["expires_at"]),
            )
        except (KeyError, TypeError, ValueError, ValidationError) as e:
            logger.warning(f"Malformed session payload: {e}")
            raise SessionExpiredError("Session is invalid") from e

        # Valkey TTL should already have dropped it
        if now_utc() > session.expires_at:
            raise SessionExpiredError("Session expired")

        return session
