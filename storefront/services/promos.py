import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storefront.core.exceptions import ConflictError, ResourceNotFoundError, ValidationError
from storefront.models.orders import Order, OrderStatus
from storefront.models.payments import PaymentStatus
from storefront.models.promos import Coupon, CouponType, PromoUsageLog
from storefront.schemas.promos import (
    CouponCreate, CouponUpdate, PromoApplyResponse, PromoValidation,
)
from storefront.services.audit import record_audit

logger = logging.getLogger(__name__)


def calculate_discount(coupon: Coupon, cart_total: float) -> float:
    """Discount for a cart total; never negative and never more than the total."""
    if coupon.type == CouponType.PERCENT:
        discount = cart_total * coupon.value / 100
    else:
        discount = min(coupon.value, cart_total)
    if coupon.max_discount is not None:
        discount = min(discount, coupon.max_discount)
    return round(max(0.0, min(discount, cart_total)), 2)


def order_total(subtotal: float, discount: float, tax: float, shipping: float) -> float:
    return round(max(0.0, subtotal - discount) + tax + shipping, 2)


class PromoService:
    def __init__(self, db: Session):
        self.db = db

    def _find(self, code: str) -> Optional[Coupon]:
        return self.db.query(Coupon).filter(Coupon.code == code.strip().upper()).first()

    def check_coupon(self, coupon: Optional[Coupon], cart_total: float, now: Optional[datetime] = None) -> Optional[str]:
        """Return the reason a coupon cannot be used, or None when it can."""
        now = now or datetime.utcnow()
        if coupon is None:
            return "Invalid promo code"
        if not coupon.is_active:
            return "This promo code is no longer active"
        if coupon.valid_from and now < coupon.valid_from:
            return "This promo code is not valid yet"
        if coupon.valid_till and now > coupon.valid_till:
            return "This promo code has expired"
        if coupon.usage_limit is not None and coupon.used_count >= coupon.usage_limit:
            return "This promo code has reached its usage limit"
        if cart_total < (coupon.min_order_amount or 0):
            return f"Minimum order amount of {coupon.min_order_amount:.2f} required for this promo code"
        return None

    def validate(self, code: str, cart_total: float) -> PromoValidation:
        coupon = self._find(code)
        reason = self.check_coupon(coupon, cart_total)
        if reason:
            return PromoValidation(valid=False, code=code, message=reason)
        discount = calculate_discount(coupon, cart_total)
        return PromoValidation(
            valid=True,
            code=coupon.code,
            discount=discount,
            final_total=round(cart_total - discount, 2),
            message=f"Promo code applied. You save {discount:.2f}",
        )

    def get_usable_coupon(self, code: str, cart_total: float) -> Coupon:
        coupon = self._find(code)
        reason = self.check_coupon(coupon, cart_total)
        if reason:
            raise ValidationError(reason, {"coupon_code": reason})
        return coupon

    def record_usage(self, coupon: Coupon, order: Order, user_id: Optional[int], discount: float) -> None:
        """Stage the usage counter bump and log row; the caller commits."""
        coupon.used_count = (coupon.used_count or 0) + 1
        self.db.add(PromoUsageLog(
            order_id=order.id,
            user_id=user_id,
            promo_code=coupon.code,
            discount_amount=discount,
        ))

    def apply(self, code: str, order_id: int, user_id: int) -> PromoApplyResponse:
        code = code.strip().upper()
        order = self.db.query(Order).filter(Order.id == order_id, Order.user_id == user_id).first()
        if not order:
            raise ResourceNotFoundError("Order", order_id)

        if order.coupon_code == code:
            return PromoApplyResponse(
                code=code, order_id=order.id, discount=order.discount,
                final_total=order.total, already_applied=True,
            )
        if order.coupon_code:
            raise ConflictError("A promo code has already been applied to this order")
        if order.status != OrderStatus.PENDING:
            raise ConflictError("Promo codes can only be applied to pending orders")
        # The gateway order was created for the undiscounted amount
        if any(p.status == PaymentStatus.PENDING for p in order.payments):
            raise ConflictError("A payment is already in progress for this order")

        coupon = self.get_usable_coupon(code, order.subtotal)
        discount = calculate_discount(coupon, order.subtotal)
        order.coupon_code = coupon.code
        order.discount = discount
        order.total = order_total(order.subtotal, discount, order.tax, order.shipping)
        self.record_usage(coupon, order, user_id, discount)
        self.db.commit()
        logger.info(f"Promo {coupon.code} applied to order {order.order_number}: -{discount:.2f}")
        return PromoApplyResponse(
            code=coupon.code, order_id=order.id, discount=discount, final_total=order.total,
        )

    # Admin

    def list_coupons(self) -> List[Coupon]:
        return self.db.query(Coupon).order_by(Coupon.created_at.desc(), Coupon.id.desc()).all()

    def get_coupon(self, coupon_id: int) -> Coupon:
        coupon = self.db.query(Coupon).filter(Coupon.id == coupon_id).first()
        if not coupon:
            raise ResourceNotFoundError("Promo code", coupon_id)
        return coupon

    def create_coupon(self, data: CouponCreate, actor_id: Optional[int] = None) -> Coupon:
        if self._find(data.code):
            raise ConflictError(f"Promo code {data.code} already exists")
        coupon = Coupon(**data.model_dump())
        try:
            self.db.add(coupon)
            self.db.flush()
            record_audit(self.db, actor_id, "create", "coupon", coupon.id, {"code": coupon.code})
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ConflictError(f"Promo code {data.code} already exists")
        self.db.refresh(coupon)
        return coupon

    def update_coupon(self, coupon_id: int, data: CouponUpdate, actor_id: Optional[int] = None) -> Coupon:
        coupon = self.get_coupon(coupon_id)
        changes = data.model_dump(exclude_unset=True)
        for key, value in changes.items():
            setattr(coupon, key, value)
        if coupon.type == CouponType.PERCENT and coupon.value > 100:
            self.db.rollback()
            raise ValidationError("Validation failed", {"value": "Percent discount cannot exceed 100"})
        record_audit(self.db, actor_id, "update", "coupon", coupon.id, {"fields": sorted(changes)})
        self.db.commit()
        self.db.refresh(coupon)
        return coupon

    def delete_coupon(self, coupon_id: int, actor_id: Optional[int] = None) -> None:
        coupon = self.get_coupon(coupon_id)
        record_audit(self.db, actor_id, "delete", "coupon", coupon.id, {"code": coupon.code})
        self.db.delete(coupon)
        self.db.commit()
