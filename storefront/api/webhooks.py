import json
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.orm import Session

from storefront.config import get_settings
from storefront.core.exceptions import UnauthorizedError, ValidationError
from storefront.core.responses import success_response
from storefront.core.security import signatures_match
from storefront.models.database import get_db
from storefront.services.gateway import RazorpayClient, get_payment_gateway
from storefront.services.payments import PaymentService
from storefront.services.webhooks import Msg91Event, Msg91WebhookService

logger = logging.getLogger(__name__)

router = APIRouter()

async def _json_body(request: Request) -> dict:
    raw = await request.body()
    try:
        body = json.loads(raw)
    except ValueError:
        raise ValidationError("Invalid JSON payload")
    if not isinstance(body, dict):
        raise ValidationError("Invalid webhook payload format")
    return body

@router.post("/msg91")
async def msg91_webhook(
    request: Request,
    x_api_key: Optional[str] = Header(None),
    db: Session = Depends(get_db)
):
    """
    Phone verification events from MSG91.

    Requires an ``x-api-key`` header matching WEBHOOK_API_KEY.
    """
    expected = get_settings().WEBHOOK_API_KEY
    if not expected:
        logger.warning("WEBHOOK_API_KEY is not set; rejecting MSG91 webhook")
        raise UnauthorizedError("Invalid or missing x-api-key header")
    if not signatures_match(expected, x_api_key):
        logger.warning("MSG91 webhook with invalid x-api-key")
        raise UnauthorizedError("Invalid or missing x-api-key header")

    event = Msg91Event.from_payload(await _json_body(request))
    Msg91WebhookService(db).handle(event)
    return success_response({
        "received": True,
        "event_type": event.type,
        "timestamp": datetime.utcnow(),
    })

@router.get("/msg91")
def msg91_webhook_status():
    return success_response({
        "status": "active",
        "endpoint": "/api/webhooks/msg91",
        "method": "POST",
        "requires_auth": True,
        "auth_header": "x-api-key",
    })

@router.post("/razorpay")
async def razorpay_webhook(
    request: Request,
    x_razorpay_signature: Optional[str] = Header(None),
    gateway: RazorpayClient = Depends(get_payment_gateway),
    db: Session = Depends(get_db)
):
    raw = await request.body()
    if not gateway.verify_webhook_signature(raw, x_razorpay_signature):
        logger.warning("Razorpay webhook with invalid signature")
        raise UnauthorizedError("Invalid webhook signature")

    event = await _json_body(request)
    handled = PaymentService(db, gateway).handle_webhook_event(event)
    return success_response({"received": True, "event": event.get("event"), "handled": handled})
