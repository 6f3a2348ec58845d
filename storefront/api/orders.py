from fastapi import APIRouter, Depends, Header, Query, status
from sqlalchemy.orm import Session
from typing import Optional

from storefront.api.deps import get_current_user
from storefront.core.responses import success_response
from storefront.models.database import get_db
from storefront.models.users import User
from storefront.schemas.orders import OrderCreate
from storefront.services.orders import OrderService, to_order_response

router = APIRouter()

@router.post("", status_code=status.HTTP_201_CREATED)
def create_order(
    order: OrderCreate,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key", max_length=128),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """
    Create a pending order and reserve stock for it.

    Requirements:
    - At least one item, each quantity between 1 and 100
    - An address owned by the caller
    - Enough available stock for every variant

    Repeating the same submission (or the same Idempotency-Key) returns the
    existing order instead of creating a second one.
    """
    db_order = OrderService(db).create_order(current_user.id, order, idempotency_key)
    return success_response(to_order_response(db_order))

@router.get("")
def get_my_orders(
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Orders of the caller, newest first."""
    orders = OrderService(db).get_user_orders(current_user.id, skip, limit)
    return success_response([to_order_response(o) for o in orders])

@router.get("/{order_id}")
def get_order(order_id: int, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    db_order = OrderService(db).get_order(order_id, current_user.id)
    return success_response(to_order_response(db_order))

@router.post("/{order_id}/cancel")
def cancel_order(order_id: int, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Cancel one of the caller's pending orders and release its stock reservation."""
    db_order = OrderService(db).cancel_order(order_id, current_user.id)
    return success_response(to_order_response(db_order))
