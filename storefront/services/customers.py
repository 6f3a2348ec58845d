import math
from typing import Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from storefront.core.exceptions import ResourceNotFoundError
from storefront.models.orders import Order, OrderStatus
from storefront.models.users import Address, User, UserRole
from storefront.schemas.products import Pagination
from storefront.schemas.users import (
    AddressResponse, CustomerDetail, CustomerListItem, CustomerListResponse, CustomerOrderSummary,
)

# Cancelled orders do not count towards spend
SPEND_STATUSES = (OrderStatus.PAID, OrderStatus.SHIPPED, OrderStatus.DELIVERED)


class CustomerService:
    def __init__(self, db: Session):
        self.db = db

    def list_customers(self, page: int = 1, limit: int = 20, search: Optional[str] = None) -> CustomerListResponse:
        stats = self.db.query(
            Order.user_id.label("user_id"),
            func.count(Order.id).label("order_count"),
            func.max(Order.created_at).label("last_order_at"),
        ).group_by(Order.user_id).subquery()
        spend = self.db.query(
            Order.user_id.label("user_id"),
            func.sum(Order.total).label("total_spent"),
        ).filter(Order.status.in_(SPEND_STATUSES)).group_by(Order.user_id).subquery()

        query = self.db.query(
            User,
            func.coalesce(stats.c.order_count, 0),
            func.coalesce(spend.c.total_spent, 0),
            stats.c.last_order_at,
        ).outerjoin(stats, stats.c.user_id == User.id).outerjoin(
            spend, spend.c.user_id == User.id
        ).filter(User.role == UserRole.CUSTOMER)

        if search:
            term = f"%{search}%"
            query = query.filter(or_(User.name.ilike(term), User.email.ilike(term), User.phone.ilike(term)))

        total = query.count()
        rows = query.order_by(User.created_at.desc(), User.id.desc()).offset((page - 1) * limit).limit(limit).all()

        customers = [
            CustomerListItem(
                id=user.id,
                name=user.name,
                email=user.email,
                phone=user.phone,
                is_active=user.is_active,
                order_count=order_count,
                total_spent=round(float(total_spent), 2),
                last_order_at=last_order_at,
                created_at=user.created_at,
            )
            for user, order_count, total_spent, last_order_at in rows
        ]
        return CustomerListResponse(
            customers=customers,
            pagination=Pagination(page=page, limit=limit, total=total, total_pages=math.ceil(total / limit)),
        )

    def get_customer(self, user_id: int) -> CustomerDetail:
        user = self.db.query(User).filter(User.id == user_id, User.role == UserRole.CUSTOMER).first()
        if not user:
            raise ResourceNotFoundError("Customer", user_id)

        orders = self.db.query(Order).filter(Order.user_id == user.id).order_by(Order.created_at.desc()).all()
        addresses = self.db.query(Address).filter(Address.user_id == user.id).order_by(Address.id).all()
        return CustomerDetail(
            id=user.id,
            name=user.name,
            email=user.email,
            phone=user.phone,
            is_active=user.is_active,
            order_count=len(orders),
            total_spent=round(sum(o.total for o in orders if o.status in SPEND_STATUSES), 2),
            last_order_at=orders[0].created_at if orders else None,
            created_at=user.created_at,
            addresses=[AddressResponse.model_validate(a) for a in addresses],
            orders=[
                CustomerOrderSummary(
                    id=o.id,
                    order_number=o.order_number,
                    status=o.status.value,
                    total=o.total,
                    created_at=o.created_at,
                )
                for o in orders
            ],
        )
