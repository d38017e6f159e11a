"""Liveness and dependency health."""

import logging

from fastapi import APIRouter, Request
from starlette.responses import JSONResponse

from api.base import envelope, error_response, request_id_of, ErrorCodes

logger = logging.getLogger(__name__)


def create_health_router(postgres, valkey) -> APIRouter:
    router = APIRouter()

    @router.get("/health")
    async def health(request: Request):
        checks = {}
        try:
            postgres.execute_scalar("SELECT 1")
            checks["postgres"] = "ok"
        except Exception as e:
            logger.error(f"Health check: postgres unavailable: {e}")
            checks["postgres"] = "unavailable"
        try:
            valkey.ping()
            checks["valkey"] = "ok"
        except Exception as e:
            logger.error(f"Health check: valkey unavailable: {e}")
            checks["valkey"] = "unavailable"

        if all(value == "ok" for value in checks.values()):
            return envelope(request, {"status": "ok", "checks": checks})

        body = error_response(
            ErrorCodes.SERVICE_UNAVAILABLE,
            f"Unhealthy dependencies: {checks}",
            request_id_of(request),
        )
        return JSONResponse(status_code=503, content=body.model_dump(mode="json"))

    return router
