import logging
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storefront.config import get_settings
from storefront.core.exceptions import ConflictError, ResourceNotFoundError, ValidationError
from storefront.models.orders import Order, OrderStatus, PaymentMode
from storefront.models.payments import Payment, PaymentStatus
from storefront.models.users import User
from storefront.schemas.payments import (
    CreatePaymentResponse, VerifyPaymentRequest, VerifyPaymentResponse,
)
from storefront.services.gateway import RazorpayClient
from storefront.services.orders import OrderService

logger = logging.getLogger(__name__)

CAPTURED = "captured"


def amount_due(order: Order) -> float:
    if order.payment_mode == PaymentMode.PARTIAL_COD:
        advance = order.advance_payment_amount
        if advance is None:
            advance = get_settings().PARTIAL_COD_ADVANCE
        return min(advance, order.total)
    return order.total


def to_minor_units(amount: float) -> int:
    return int(round(amount * 100))


class PaymentService:
    def __init__(self, db: Session, gateway: RazorpayClient):
        self.db = db
        self.gateway = gateway
        self.orders = OrderService(db)

    def get_payment(self, payment_id: int, user: User) -> Payment:
        payment = self.db.query(Payment).filter(Payment.id == payment_id).first()
        if not payment or (payment.order.user_id != user.id and not user.is_staff):
            raise ResourceNotFoundError("Payment", payment_id)
        return payment

    def create_payment(self, order_id: int, user_id: int) -> CreatePaymentResponse:
        order = self.orders.get_order(order_id, user_id)
        if order.status != OrderStatus.PENDING:
            raise ConflictError(f"Order {order.order_number} is not awaiting payment")
        if order.payment_mode == PaymentMode.COD:
            raise ValidationError(
                "Cash on delivery orders are paid on delivery",
                {"order_id": "Order does not need an online payment"},
            )
        if any(p.status == PaymentStatus.PENDING for p in order.payments):
            raise ConflictError("A payment is already in progress for this order")

        settings = get_settings()
        amount = amount_due(order)
        gateway_order = self.gateway.create_order(
            amount=to_minor_units(amount),
            currency=settings.STORE_CURRENCY,
            receipt=order.order_number,
            notes={"order_id": str(order.id), "order_number": order.order_number},
        )

        payment = Payment(
            order_id=order.id,
            method="razorpay",
            amount=amount,
            currency=settings.STORE_CURRENCY,
            status=PaymentStatus.PENDING,
            gateway_order_id=gateway_order["id"],
            raw_response={"order": gateway_order},
        )
        self.db.add(payment)
        self.db.commit()
        self.db.refresh(payment)
        logger.info(f"Payment {payment.id} created for order {order.order_number}: {gateway_order['id']}")

        return CreatePaymentResponse(
            payment_id=payment.id,
            gateway_order_id=payment.gateway_order_id,
            amount=to_minor_units(amount),
            currency=payment.currency,
            key_id=self.gateway.key_id,
            order_number=order.order_number,
        )

    def _mark_completed(self, payment: Payment, gateway_payment_id: str, raw: Dict[str, Any]) -> None:
        payment.status = PaymentStatus.COMPLETED
        payment.gateway_payment_id = gateway_payment_id
        payment.raw_response = raw
        order = payment.order
        if order.status == OrderStatus.PENDING:
            self.orders.set_status(order, OrderStatus.PAID, f"Payment {gateway_payment_id} captured")

    def _mark_failed(self, payment: Payment, gateway_payment_id: Optional[str], raw: Dict[str, Any]) -> None:
        payment.status = PaymentStatus.FAILED
        if gateway_payment_id:
            payment.gateway_payment_id = gateway_payment_id
        payment.raw_response = raw

    def _result(self, payment: Payment, verified: bool, message: str) -> VerifyPaymentResponse:
        return VerifyPaymentResponse(
            payment_id=payment.id,
            order_id=payment.order.id,
            order_number=payment.order.order_number,
            payment_status=payment.status,
            order_status=payment.order.status,
            verified=verified,
            message=message,
        )

    def verify_payment(self, request: VerifyPaymentRequest, user_id: int) -> VerifyPaymentResponse:
        payment = self.db.query(Payment).filter(
            Payment.gateway_order_id == request.razorpay_order_id
        ).order_by(Payment.id.desc()).first()
        if not payment or payment.order.user_id != user_id:
            raise ResourceNotFoundError("Payment")

        if payment.status == PaymentStatus.COMPLETED:
            return self._result(payment, True, "Payment already verified")

        if not self.gateway.verify_payment_signature(
            request.razorpay_order_id, request.razorpay_payment_id, request.razorpay_signature
        ):
            logger.warning(f"Invalid signature for payment {payment.id} ({request.razorpay_order_id})")
            raise ValidationError("Invalid payment signature", {"razorpay_signature": "Signature mismatch"})

        gateway_payment = self.gateway.fetch_payment(request.razorpay_payment_id)
        gateway_order = self.gateway.fetch_order(request.razorpay_order_id)
        if gateway_payment.get("order_id") != request.razorpay_order_id:
            raise ValidationError(
                "Payment does not belong to this order",
                {"razorpay_payment_id": "Payment and order do not match"},
            )

        raw = {"payment": gateway_payment, "order": gateway_order}
        try:
            if gateway_payment.get("status") == CAPTURED:
                self._mark_completed(payment, request.razorpay_payment_id, raw)
                message = "Payment verified"
            else:
                self._mark_failed(payment, request.razorpay_payment_id, raw)
                message = f"Payment not captured (status: {gateway_payment.get('status')})"
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ConflictError("Payment has already been recorded")

        self.db.refresh(payment)
        logger.info(f"Payment {payment.id} verified as {payment.status.value} for order {payment.order.order_number}")
        return self._result(payment, payment.status == PaymentStatus.COMPLETED, message)

    def handle_webhook_event(self, event: Dict[str, Any]) -> bool:
        """Apply a Razorpay webhook event; returns False for events that change nothing."""
        event_type = event.get("event")
        payload = event.get("payload") or {}
        payment_entity = (payload.get("payment") or {}).get("entity") or {}
        order_entity = (payload.get("order") or {}).get("entity") or {}

        if event_type not in ("payment.captured", "payment.failed", "order.paid"):
            logger.warning(f"Ignoring unhandled Razorpay webhook event {event_type}")
            return False

        gateway_order_id = payment_entity.get("order_id") or order_entity.get("id")
        if not gateway_order_id:
            logger.warning(f"Razorpay webhook {event_type} without an order id")
            return False

        payment = self.db.query(Payment).filter(
            Payment.gateway_order_id == gateway_order_id
        ).order_by(Payment.id.desc()).first()
        if not payment:
            logger.warning(f"Razorpay webhook {event_type} for unknown order {gateway_order_id}")
            return False

        if payment.status == PaymentStatus.COMPLETED:
            return False

        raw = {"webhook": event_type, "payment": payment_entity, "order": order_entity}
        if event_type == "payment.failed":
            self._mark_failed(payment, payment_entity.get("id"), raw)
        else:
            self._mark_completed(payment, payment_entity.get("id") or payment.gateway_payment_id, raw)

        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise ConflictError("Payment has already been recorded")
        logger.info(f"Razorpay webhook {event_type} applied to payment {payment.id}")
        return True
