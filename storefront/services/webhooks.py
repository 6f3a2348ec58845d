import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from storefront.core.exceptions import ValidationError
from storefront.models.users import User

logger = logging.getLogger(__name__)

VERIFIED_EVENTS = ("otp_verified", "verification_complete")
FAILED_EVENTS = ("otp_failed", "verification_failed")


def mask_phone(phone: str) -> str:
    return f"{phone[:5]}***"


def _text(value: Any, field: str) -> Optional[str]:
    """Payload scalars as text; MSG91 sends numbers for some fields."""
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise ValidationError("Invalid webhook payload format", {field: "Must be a string or number"})
    return str(value).strip() or None


def normalize_phone(phone: Optional[str], identifier: Optional[str]) -> Optional[str]:
    """E.164 phone as sent, or ``+<digits>`` from a bare number like ``919999999999``."""
    if phone and phone.startswith("+"):
        return phone
    for candidate in (phone, identifier):
        if candidate:
            digits = re.sub(r"\D", "", candidate)
            if len(digits) >= 10:
                return f"+{digits}"
    return None


@dataclass
class Msg91Event:
    type: str
    status: str
    phone: Optional[str]
    error: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Msg91Event":
        event_type = _text(payload.get("type"), "type") or _text(payload.get("event"), "event") or "otp_sent"
        status = _text(payload.get("status"), "status") or (
            "success" if event_type in VERIFIED_EVENTS else "pending"
        )
        return cls(
            type=event_type,
            status=status,
            phone=normalize_phone(_text(payload.get("phone"), "phone"), _text(payload.get("identifier"), "identifier")),
            error=payload.get("error") or payload.get("message"),
        )


class Msg91WebhookService:
    def __init__(self, db: Session):
        self.db = db

    def handle(self, event: Msg91Event) -> int:
        """Apply a verification event; returns the number of users marked verified."""
        if not event.phone:
            logger.warning(f"MSG91 {event.type} event without a phone number")
            return 0

        logger.info(f"MSG91 event {event.type} for {mask_phone(event.phone)} ({event.status})")
        if event.type in VERIFIED_EVENTS:
            if event.status != "success":
                return 0
            updated = self.db.query(User).filter(User.phone == event.phone).update({
                User.is_phone_verified: True,
                User.phone_verified_at: datetime.utcnow(),
            }, synchronize_session=False)
            self.db.commit()
            logger.info(f"Phone {mask_phone(event.phone)} verified for {updated} user(s)")
            return updated
        if event.type in FAILED_EVENTS:
            logger.warning(f"Verification failed for {mask_phone(event.phone)}: {event.error}")
        elif event.type != "otp_sent":
            logger.info(f"Unhandled MSG91 event type {event.type}")
        return 0
