import hashlib
import json
import time
from typing import Iterable, Mapping, Optional

PRODUCT_CREATE_SCOPE = "product_create"


def generate_order_idempotency_key(
    user_id: int,
    items: Iterable[Mapping],
    address_id: int,
    payment_mode: Optional[str] = None,
    coupon_code: Optional[str] = None,
    now: Optional[float] = None,
) -> str:
    """Derive a key for an order submission, stable within a one-minute window."""
    if now is None:
        now = time.time()
    normalized = sorted(
        ({"variant_id": int(i["variant_id"]), "quantity": int(i["quantity"])} for i in items),
        key=lambda i: i["variant_id"],
    )
    payload = json.dumps(
        {
            "user_id": user_id,
            "items": normalized,
            "address_id": address_id,
            "payment_mode": payment_mode,
            "coupon_code": coupon_code.strip().upper() if coupon_code else None,
            "window": int(now // 60),
        },
        sort_keys=True,
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()
