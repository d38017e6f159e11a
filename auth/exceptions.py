"""Typed exceptions for auth failures."""


class AuthError(Exception):
    """Base class for authentication/authorization errors."""


class SessionExpiredError(AuthError):
    """Session is missing, expired or unreadable; the user must sign in again."""
