"""Security middleware for FastAPI - session validation and org context."""

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from auth.session import SessionManager
from auth.exceptions import SessionExpiredError
from api.base import error_response, ErrorCodes
from utils.org_context import set_current_org_id, set_current_actor_id, clear_current_org_id


class AuthMiddleware(BaseHTTPMiddleware):
    """Middleware that validates session and sets org context.

    For protected routes:
    1. Extracts session token from 'session_token' cookie or a Bearer header
    2. Validates session via SessionManager
    3. Sets org and actor context (for RLS and audit) and request.state
    4. Clears context after request completes

    Public paths bypass authentication entirely. The gateway webhook is
    public here and authenticated by its signature instead.
    """

    PUBLIC_PATHS = [
        "/health",
        "/api/health",
        "/api/webhooks/",
        "/docs",
        "/openapi.json",
    ]

    def __init__(self, app, session_manager: SessionManager):
        super().__init__(app)
        self._session_manager = session_manager

    def _is_public_path(self, path: str) -> bool:
        """Check if path is in public paths list."""
        for public_path in self.PUBLIC_PATHS:
            if path == public_path or path.startswith(public_path):
                return True
        return False

    @staticmethod
    def _extract_token(request: Request) -> str | None:
        token = request.cookies.get("session_token")
        if token:
            return token
        header = request.headers.get("authorization", "")
        if header.lower().startswith("bearer "):
            return header[7:].strip() or None
        return None

    async def dispatch(self, request: Request, call_next):
        """Process request through middleware."""
        path = request.url.path

        # Skip auth for public paths
        if self._is_public_path(path):
            return await call_next(request)

        session_token = self._extract_token(request)

        if not session_token:
            return JSONResponse(
                status_code=401,
                content=error_response(
                    ErrorCodes.NOT_AUTHENTICATED,
                    "Authentication required",
                ).model_dump(mode="json"),
            )

        # Validate session
        try:
            session = self._session_manager.validate_session(session_token)
        except SessionExpiredError:
            return JSONResponse(
                status_code=401,
                content=error_response(
                    ErrorCodes.SESSION_EXPIRED,
                    "Session has expired",
                ).model_dump(mode="json"),
            )

        # Set org context for RLS and actor for audit
        set_current_org_id(session.org_id)
        set_current_actor_id(session.user_id)
        request.state.org_id = session.org_id
        request.state.user_id = session.user_id
        request.state.session = session

        try:
            response = await call_next(request)
            return response
        finally:
            # Always clear context
            clear_current_org_id()
