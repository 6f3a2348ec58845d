import csv
import io
import logging
import math
import secrets
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from storefront.config import get_settings
from storefront.core.exceptions import (
    AppError, ConflictError, ResourceNotFoundError, ValidationError, wrap_db_error,
)
from storefront.core.idempotency import generate_order_idempotency_key
from storefront.models.orders import Order, OrderItem, OrderStatus, OrderStatusHistory, PaymentMode
from storefront.models.payments import Payment, PaymentStatus
from storefront.models.products import CartItem, Inventory, ProductStatus, ProductVariant
from storefront.models.users import Address, User
from storefront.schemas.orders import (
    ADMIN_ORDER_SORTS, AdminOrderDetail, AdminOrderListItem, AdminOrderListResponse, CustomerInfo,
    OrderCreate, OrderItemResponse, OrderResponse, PaymentSummary, StatusHistoryEntry,
)
from storefront.schemas.products import Pagination
from storefront.schemas.users import AddressResponse
from storefront.services.audit import record_audit
from storefront.services.promos import PromoService, calculate_discount, order_total
from storefront.services.settings import SettingsService

logger = logging.getLogger(__name__)

VALID_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.PAID, OrderStatus.CANCELLED},
    OrderStatus.PAID: {OrderStatus.SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED},
    OrderStatus.DELIVERED: set(),
    OrderStatus.CANCELLED: set(),
}

CSV_HEADERS = ["Order ID", "Date", "Customer", "Email", "Total", "Status", "Shipping"]

SORT_COLUMNS = {
    "created_at": Order.created_at,
    "total": Order.total,
}


def generate_order_number(now: Optional[datetime] = None) -> str:
    now = now or datetime.utcnow()
    return f"ORD-{now.strftime('%Y%m%d')}-{secrets.token_hex(3).upper()}"


def to_order_response(order: Order) -> OrderResponse:
    return OrderResponse(**_order_fields(order))


def _order_fields(order: Order) -> Dict:
    return {
        "id": order.id,
        "order_number": order.order_number,
        "user_id": order.user_id,
        "status": order.status,
        "payment_mode": order.payment_mode,
        "advance_payment_amount": order.advance_payment_amount,
        "subtotal": order.subtotal,
        "discount": order.discount,
        "tax": order.tax,
        "shipping": order.shipping,
        "total": order.total,
        "coupon_code": order.coupon_code,
        "notes": order.notes,
        "address": AddressResponse.model_validate(order.address) if order.address else None,
        "items": [
            OrderItemResponse(
                id=item.id,
                variant_id=item.variant_id,
                product_name=item.product_name_snapshot,
                sku=item.sku_snapshot,
                price=item.price_snapshot,
                quantity=item.quantity,
                line_total=item.line_total,
            )
            for item in order.items
        ],
        "created_at": order.created_at,
        "updated_at": order.updated_at or order.created_at,
    }


class OrderService:
    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Stock bookkeeping
    # ------------------------------------------------------------------

    def _inventories(self, order: Order) -> List[tuple]:
        pairs = []
        for item in order.items:
            if item.variant_id is None:
                continue
            inventory = self.db.query(Inventory).filter(
                Inventory.variant_id == item.variant_id
            ).with_for_update().first()
            if inventory is not None:
                pairs.append((inventory, item.quantity))
        return pairs

    def release_reservation(self, order: Order) -> None:
        for inventory, quantity in self._inventories(order):
            inventory.reserved_stock = max(0, (inventory.reserved_stock or 0) - quantity)

    def commit_reservation(self, order: Order) -> None:
        """Turn a pending order's reservation into a stock deduction."""
        for inventory, quantity in self._inventories(order):
            inventory.reserved_stock = max(0, (inventory.reserved_stock or 0) - quantity)
            inventory.stock = max(0, (inventory.stock or 0) - quantity)

    def restock(self, order: Order) -> None:
        for inventory, quantity in self._inventories(order):
            inventory.stock = (inventory.stock or 0) + quantity

    def _apply_stock_transition(self, order: Order, new_status: OrderStatus) -> None:
        if order.status == OrderStatus.PENDING and new_status == OrderStatus.PAID:
            self.commit_reservation(order)
        elif order.status == OrderStatus.PENDING and new_status == OrderStatus.CANCELLED:
            self.release_reservation(order)
        elif order.status == OrderStatus.PAID and new_status == OrderStatus.CANCELLED:
            self.restock(order)

    def set_status(self, order: Order, new_status: OrderStatus, notes: Optional[str] = None) -> None:
        """Move an order to a new status with stock and history side effects; the caller commits."""
        self._apply_stock_transition(order, new_status)
        order.status = new_status
        order.updated_at = datetime.utcnow()
        self.db.add(OrderStatusHistory(order_id=order.id, status=new_status, notes=notes))

    # ------------------------------------------------------------------
    # Customer operations
    # ------------------------------------------------------------------

    def _find_by_idempotency_key(self, key: str) -> Optional[Order]:
        return self.db.query(Order).filter(Order.idempotency_key == key).first()

    def _payment_mode_enabled(self, payment_mode: PaymentMode, store_settings) -> bool:
        methods = store_settings.payment_methods
        if payment_mode == PaymentMode.COD:
            return methods.cod.enabled
        if payment_mode == PaymentMode.PARTIAL_COD:
            return methods.partial_cod.enabled
        return methods.razorpay.enabled

    def create_order(self, user_id: int, order_data: OrderCreate, idempotency_key: Optional[str] = None) -> Order:
        """Create a pending order, reserving stock for every line."""
        key = idempotency_key or generate_order_idempotency_key(
            user_id,
            [item.model_dump() for item in order_data.items],
            order_data.address_id,
            payment_mode=order_data.payment_mode.value,
            coupon_code=order_data.coupon_code,
        )
        stale = None
        existing = self._find_by_idempotency_key(key)
        if existing is not None:
            if existing.user_id != user_id:
                raise ConflictError("Idempotency key has already been used")
            # A derived key only dedupes while the earlier order can still be paid
            if idempotency_key or existing.status == OrderStatus.PENDING:
                logger.info(f"Duplicate order submission; returning order {existing.order_number}")
                return existing
            stale = existing

        address = self.db.query(Address).filter(
            Address.id == order_data.address_id, Address.user_id == user_id
        ).first()
        if not address:
            raise ResourceNotFoundError("Address", order_data.address_id)

        store_settings = SettingsService(self.db).get_settings()
        if not self._payment_mode_enabled(order_data.payment_mode, store_settings):
            raise ValidationError(
                "Validation failed",
                {"payment_mode": f"{order_data.payment_mode.value} is not available"},
            )

        try:
            lines = []
            subtotal = 0.0
            for item_data in order_data.items:
                variant = self.db.query(ProductVariant).filter(ProductVariant.id == item_data.variant_id).first()
                if not variant:
                    raise ResourceNotFoundError("Variant", item_data.variant_id)
                if not variant.is_active or variant.product.status != ProductStatus.LIVE:
                    raise ValidationError(
                        "Validation failed", {"items": f"{variant.sku} is not available for purchase"}
                    )

                inventory = self.db.query(Inventory).filter(
                    Inventory.variant_id == variant.id
                ).with_for_update().first()
                available = inventory.available_stock if inventory else 0
                if available < item_data.quantity:
                    raise ConflictError(f"Insufficient stock for {variant.sku}. Available: {max(available, 0)}")

                price = variant.effective_price
                subtotal += price * item_data.quantity
                lines.append((variant, inventory, item_data.quantity, price))

            subtotal = round(subtotal, 2)
            promo_service = PromoService(self.db)
            coupon = None
            discount = 0.0
            if order_data.coupon_code:
                coupon = promo_service.get_usable_coupon(order_data.coupon_code, subtotal)
                discount = calculate_discount(coupon, subtotal)

            free_threshold = store_settings.shipping.free_shipping_threshold
            if free_threshold is not None and subtotal >= free_threshold:
                shipping = 0.0
            else:
                shipping = store_settings.shipping.standard_rate
            tax = round(subtotal * store_settings.tax.rate / 100, 2)
            total = order_total(subtotal, discount, tax, shipping)

            advance = None
            if order_data.payment_mode == PaymentMode.PARTIAL_COD:
                advance = min(get_settings().PARTIAL_COD_ADVANCE, total)

            order_number = generate_order_number()
            while self.db.query(Order.id).filter(Order.order_number == order_number).first():
                order_number = generate_order_number()

            if stale is not None:
                stale.idempotency_key = None
                self.db.flush()

            order = Order(
                order_number=order_number,
                user_id=user_id,
                address_id=address.id,
                status=OrderStatus.PENDING,
                payment_mode=order_data.payment_mode,
                advance_payment_amount=advance,
                subtotal=subtotal,
                discount=discount,
                tax=tax,
                shipping=shipping,
                total=total,
                coupon_code=coupon.code if coupon else None,
                idempotency_key=key,
                notes=order_data.notes,
            )
            for variant, inventory, quantity, price in lines:
                order.items.append(OrderItem(
                    variant_id=variant.id,
                    product_name_snapshot=variant.product.name,
                    sku_snapshot=variant.sku,
                    price_snapshot=price,
                    quantity=quantity,
                ))
                inventory.reserved_stock = (inventory.reserved_stock or 0) + quantity
            order.status_history.append(OrderStatusHistory(status=OrderStatus.PENDING, notes="Order placed"))
            self.db.add(order)
            self.db.flush()

            if coupon is not None:
                promo_service.record_usage(coupon, order, user_id, discount)

            # Purchased lines leave the cart
            self.db.query(CartItem).filter(
                CartItem.user_id == user_id,
                CartItem.variant_id.in_([variant.id for variant, _, _, _ in lines]),
            ).delete(synchronize_session=False)
            self.db.commit()
        except AppError:
            self.db.rollback()
            raise
        except IntegrityError as e:
            self.db.rollback()
            duplicate = self._find_by_idempotency_key(key)
            if duplicate is not None and duplicate.user_id == user_id:
                return duplicate
            raise wrap_db_error(e, "Failed to create order")
        except SQLAlchemyError as e:
            self.db.rollback()
            raise wrap_db_error(e, "Failed to create order")

        self.db.refresh(order)
        logger.info(f"Created order {order.order_number} for user {user_id}: total {order.total:.2f}")
        return order

    def get_order(self, order_id: int, user_id: Optional[int] = None) -> Order:
        """Get order by ID, optionally restricted to the owner"""
        query = self.db.query(Order).filter(Order.id == order_id)
        if user_id is not None:
            query = query.filter(Order.user_id == user_id)
        order = query.first()
        if not order:
            raise ResourceNotFoundError("Order", order_id)
        return order

    def get_user_orders(self, user_id: int, skip: int = 0, limit: int = 100) -> List[Order]:
        return self.db.query(Order)\
            .options(selectinload(Order.items))\
            .filter(Order.user_id == user_id)\
            .order_by(Order.created_at.desc(), Order.id.desc())\
            .offset(skip)\
            .limit(limit)\
            .all()

    def cancel_order(self, order_id: int, user_id: int) -> Order:
        order = self.get_order(order_id, user_id)
        if order.status == OrderStatus.CANCELLED:
            return order
        if order.status != OrderStatus.PENDING:
            raise ConflictError("Only pending orders can be cancelled")

        self.set_status(order, OrderStatus.CANCELLED, "Cancelled by customer")
        for payment in order.payments:
            if payment.status == PaymentStatus.PENDING:
                payment.status = PaymentStatus.FAILED
        self.db.commit()
        self.db.refresh(order)
        logger.info(f"Order {order.order_number} cancelled by customer {user_id}")
        return order

    # ------------------------------------------------------------------
    # Admin operations
    # ------------------------------------------------------------------

    def _admin_query(
        self,
        status: Optional[OrderStatus] = None,
        search: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ):
        query = self.db.query(Order).join(User, Order.user_id == User.id)
        if status is not None:
            query = query.filter(Order.status == status)
        if search:
            term = f"%{search}%"
            query = query.filter(or_(
                Order.order_number.ilike(term), User.name.ilike(term), User.email.ilike(term)
            ))
        if date_from is not None:
            query = query.filter(Order.created_at >= date_from)
        if date_to is not None:
            query = query.filter(Order.created_at <= date_to)
        return query

    def list_orders_admin(
        self,
        page: int = 1,
        limit: int = 20,
        status: Optional[OrderStatus] = None,
        search: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        sort: str = "created_at:desc",
    ) -> AdminOrderListResponse:
        if sort not in ADMIN_ORDER_SORTS:
            raise ValidationError("Validation failed", {"sort": f"Sort must be one of: {', '.join(ADMIN_ORDER_SORTS)}"})
        field, _, direction = sort.partition(":")
        column = SORT_COLUMNS[field]

        query = self._admin_query(status, search, date_from, date_to)
        total = query.count()
        orders = query.options(selectinload(Order.items), selectinload(Order.user)).order_by(
            column.asc() if direction == "asc" else column.desc(), Order.id.desc()
        ).offset((page - 1) * limit).limit(limit).all()

        return AdminOrderListResponse(
            orders=[
                AdminOrderListItem(
                    id=order.id,
                    order_number=order.order_number,
                    customer_name=order.user.name,
                    customer_email=order.user.email,
                    status=order.status,
                    payment_mode=order.payment_mode,
                    total=order.total,
                    item_count=sum(item.quantity for item in order.items),
                    created_at=order.created_at,
                )
                for order in orders
            ],
            pagination=Pagination(page=page, limit=limit, total=total, total_pages=math.ceil(total / limit)),
        )

    def get_order_admin(self, order_id: int) -> AdminOrderDetail:
        order = self.get_order(order_id)
        payment = order.payments[-1] if order.payments else None
        return AdminOrderDetail(
            **_order_fields(order),
            customer=CustomerInfo(
                id=order.user.id, name=order.user.name, email=order.user.email, phone=order.user.phone
            ),
            payment=PaymentSummary.model_validate(payment) if payment else None,
            status_history=[StatusHistoryEntry.model_validate(h) for h in order.status_history],
        )

    def _is_valid_status_transition(self, current: OrderStatus, new: OrderStatus) -> bool:
        return new in VALID_TRANSITIONS.get(current, set())

    def update_order_status(
        self,
        order_id: int,
        new_status: OrderStatus,
        notes: Optional[str] = None,
        actor_id: Optional[int] = None,
    ) -> AdminOrderDetail:
        order = self.get_order(order_id)
        if not self._is_valid_status_transition(order.status, new_status):
            raise ValidationError(
                f"Invalid status transition from {order.status.value} to {new_status.value}",
                {"status": f"Cannot move a {order.status.value} order to {new_status.value}"},
            )

        previous = order.status
        try:
            self.set_status(order, new_status, notes)
            record_audit(self.db, actor_id, "update_status", "order", order.id, {
                "from": previous.value, "to": new_status.value,
            })
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise wrap_db_error(e, "Failed to update order status")

        logger.info(f"Order {order.order_number}: {previous.value} -> {new_status.value}")
        self.db.refresh(order)
        return self.get_order_admin(order.id)

    def export_orders_csv(
        self,
        status: Optional[OrderStatus] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> str:
        orders = self._admin_query(status, None, date_from, date_to).options(
            selectinload(Order.user)
        ).order_by(Order.created_at.desc(), Order.id.desc()).all()

        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(CSV_HEADERS)
        for order in orders:
            writer.writerow([
                order.order_number,
                order.created_at.strftime("%Y-%m-%d"),
                order.user.name,
                order.user.email,
                f"{order.total:.2f}",
                order.status.value,
                f"{order.shipping:.2f}",
            ])
        return buffer.getvalue()
