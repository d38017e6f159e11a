"""Payment gateway webhook.

Public route: authenticated by the HMAC signature over the raw body, not
by a session. Every verified delivery is acknowledged with 200 unless the
invoice it names does not exist, so the gateway stops retrying duplicates
and events we do not act on.
"""

import json
import logging

from fastapi import APIRouter, Request
from pydantic import ValidationError

from api.base import envelope
from core.exceptions import ValidationFailedError
from core.models import GatewayEvent, GatewayEventResult
from core.services.payment_service import CHARGE_SUCCESS

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-paystack-signature"


def create_webhooks_router(services: dict) -> APIRouter:
    router = APIRouter()

    payment_svc = services["payment"]

    @router.post("/webhooks/payment-gateway")
    async def payment_gateway_webhook(request: Request):
        raw_body = await request.body()
        payment_svc.verify_signature(raw_body, request.headers.get(SIGNATURE_HEADER))

        try:
            payload = json.loads(raw_body)
        except ValueError as e:
            raise ValidationFailedError("Webhook body is not valid JSON") from e

        event_type = payload.get("event") if isinstance(payload, dict) else None
        if event_type != CHARGE_SUCCESS:
            logger.info(f"Acknowledging unhandled gateway event {event_type}")
            result = GatewayEventResult(processed=False, message=f"Event {event_type} ignored")
        else:
            try:
                event = GatewayEvent.model_validate(payload)
            except ValidationError as e:
                raise ValidationFailedError(f"Malformed charge event: {e.errors()}") from e
            result = payment_svc.apply_gateway_event(event)

        return envelope(request, {
            "ok": True,
            "processed": result.processed,
            "duplicate": result.duplicate,
            "message": result.message,
        })

    return router
