"""Authentication boundary: sessions issued elsewhere, validated here."""

from auth.exceptions import AuthError, SessionExpiredError
from auth.types import Session
from auth.session import SessionManager
from auth.security_middleware import AuthMiddleware
