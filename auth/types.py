"""Pydantic models for the auth boundary."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field


class Session(BaseModel):
    """A staff session issued by the platform auth service."""

    token: str = Field(..., description="Session token (opaque string)")
    org_id: UUID
    user_id: UUID
    role: str | None = None
    expires_at: datetime
