"""Back-office endpoints other than the catalogue."""
from datetime import date, datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query, status
from fastapi.responses import Response
from sqlalchemy.orm import Session

from storefront.api.deps import require_admin, require_staff
from storefront.core.responses import success_response
from storefront.models.database import get_db
from storefront.models.orders import OrderStatus
from storefront.models.users import User
from storefront.schemas.dashboard import DashboardPeriod, Granularity
from storefront.schemas.orders import OrderStatusUpdate
from storefront.schemas.promos import CouponCreate, CouponResponse, CouponUpdate
from storefront.schemas.users import (
    LoginRequest, SessionResponse, TeamInvite, TeamInviteResponse, TeamMember, TeamRoleUpdate, UserResponse,
)
from storefront.services.customers import CustomerService
from storefront.services.dashboard import DashboardService
from storefront.services.orders import OrderService
from storefront.services.promos import PromoService
from storefront.services.settings import SettingsService
from storefront.services.team import TeamService
from storefront.services.users import UserService

router = APIRouter()

@router.post("/login")
def admin_login(credentials: LoginRequest, db: Session = Depends(get_db)):
    """Back-office login for admin and ops accounts."""
    token, user = UserService(db).admin_login(credentials.email, credentials.password)
    return success_response(SessionResponse(access_token=token, user=UserResponse.model_validate(user)))

# Orders

@router.get("/orders")
def list_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: Optional[OrderStatus] = None,
    search: Optional[str] = Query(None, max_length=200),
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    sort: str = "created_at:desc",
    staff: User = Depends(require_staff),
    db: Session = Depends(get_db)
):
    result = OrderService(db).list_orders_admin(page, limit, status, search, date_from, date_to, sort)
    return success_response(result.orders, meta={"pagination": result.pagination})

@router.get("/orders/export")
def export_orders(
    status: Optional[OrderStatus] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    staff: User = Depends(require_staff),
    db: Session = Depends(get_db)
):
    content = OrderService(db).export_orders_csv(status, date_from, date_to)
    filename = f"orders-{date.today().isoformat()}.csv"
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )

@router.get("/orders/{order_id}")
def get_order(order_id: int, staff: User = Depends(require_staff), db: Session = Depends(get_db)):
    return success_response(OrderService(db).get_order_admin(order_id))

@router.patch("/orders/{order_id}/status")
def update_order_status(
    order_id: int,
    status_update: OrderStatusUpdate,
    staff: User = Depends(require_staff),
    db: Session = Depends(get_db)
):
    """
    Move an order along pending -> paid -> shipped -> delivered.
    Pending and paid orders may also be cancelled.
    """
    order = OrderService(db).update_order_status(order_id, status_update.status, status_update.notes, staff.id)
    return success_response(order)

# Customers

@router.get("/customers")
def list_customers(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: Optional[str] = Query(None, max_length=200),
    staff: User = Depends(require_staff),
    db: Session = Depends(get_db)
):
    result = CustomerService(db).list_customers(page, limit, search)
    return success_response(result.customers, meta={"pagination": result.pagination})

@router.get("/customers/{user_id}")
def get_customer(user_id: int, staff: User = Depends(require_staff), db: Session = Depends(get_db)):
    return success_response(CustomerService(db).get_customer(user_id))

# Team

@router.get("/team")
def list_team(admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    members = TeamService(db).list_members()
    return success_response([TeamMember.model_validate(m) for m in members])

@router.post("/team", status_code=status.HTTP_201_CREATED)
def invite_member(invite: TeamInvite, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    member, temporary_password = TeamService(db).invite(invite, admin.id)
    return success_response(TeamInviteResponse(
        member=TeamMember.model_validate(member), temporary_password=temporary_password
    ))

@router.patch("/team/{user_id}/role")
def change_member_role(
    user_id: int,
    update: TeamRoleUpdate,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    member = TeamService(db).change_role(user_id, update.role, admin.id)
    return success_response(TeamMember.model_validate(member))

@router.delete("/team/{user_id}")
def remove_member(user_id: int, admin: User = Depends(require_admin), db: Session = Depends(get_db)):
    TeamService(db).remove(user_id, admin.id)
    return success_response({"removed": True, "id": user_id})

# Settings

@router.get("/settings")
def get_store_settings(staff: User = Depends(require_staff), db: Session = Depends(get_db)):
    return success_response(SettingsService(db).get_settings())

@router.put("/settings")
def update_store_settings(
    updates: Dict[str, Any] = Body(...),
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Deep-merge the given sections into the stored settings."""
    return success_response(SettingsService(db).update_settings(updates, admin.id))

# Dashboard

@router.get("/dashboard/stats")
def dashboard_stats(
    period: DashboardPeriod = DashboardPeriod.MONTH,
    staff: User = Depends(require_staff),
    db: Session = Depends(get_db)
):
    return success_response(DashboardService(db).get_stats(period))

@router.get("/dashboard/sales-chart")
def dashboard_sales_chart(
    period: DashboardPeriod = DashboardPeriod.MONTH,
    granularity: Granularity = Granularity.DAY,
    staff: User = Depends(require_staff),
    db: Session = Depends(get_db)
):
    return success_response(DashboardService(db).get_sales_chart(period, granularity))

@router.get("/dashboard/inventory-alerts")
def dashboard_inventory_alerts(
    limit: int = Query(10, ge=1, le=100),
    staff: User = Depends(require_staff),
    db: Session = Depends(get_db)
):
    return success_response(DashboardService(db).get_inventory_alerts(limit))

# Promo codes

@router.get("/promos")
def list_promos(staff: User = Depends(require_staff), db: Session = Depends(get_db)):
    return success_response([CouponResponse.model_validate(c) for c in PromoService(db).list_coupons()])

@router.post("/promos", status_code=status.HTTP_201_CREATED)
def create_promo(coupon: CouponCreate, staff: User = Depends(require_staff), db: Session = Depends(get_db)):
    created = PromoService(db).create_coupon(coupon, staff.id)
    return success_response(CouponResponse.model_validate(created))

@router.get("/promos/{coupon_id}")
def get_promo(coupon_id: int, staff: User = Depends(require_staff), db: Session = Depends(get_db)):
    return success_response(CouponResponse.model_validate(PromoService(db).get_coupon(coupon_id)))

@router.put("/promos/{coupon_id}")
def update_promo(
    coupon_id: int,
    coupon: CouponUpdate,
    staff: User = Depends(require_staff),
    db: Session = Depends(get_db)
):
    updated = PromoService(db).update_coupon(coupon_id, coupon, staff.id)
    return success_response(CouponResponse.model_validate(updated))

@router.delete("/promos/{coupon_id}")
def delete_promo(coupon_id: int, staff: User = Depends(require_staff), db: Session = Depends(get_db)):
    PromoService(db).delete_coupon(coupon_id, staff.id)
    return success_response({"deleted": True, "id": coupon_id})
