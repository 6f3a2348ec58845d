from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from storefront.api.deps import get_current_user
from storefront.core.responses import success_response
from storefront.models.database import get_db
from storefront.models.users import User
from storefront.schemas.orders import PaymentSummary
from storefront.schemas.payments import CreatePaymentRequest, VerifyPaymentRequest
from storefront.schemas.promos import PromoApplyRequest, PromoValidateRequest
from storefront.schemas.stylist import StylistRequest
from storefront.services.gateway import RazorpayClient, get_payment_gateway
from storefront.services.payments import PaymentService
from storefront.services.promos import PromoService
from storefront.services.stylist import StylistService

router = APIRouter()
promo_router = APIRouter()
stylist_router = APIRouter()

@router.post("/create")
def create_payment(
    request: CreatePaymentRequest,
    current_user: User = Depends(get_current_user),
    gateway: RazorpayClient = Depends(get_payment_gateway),
    db: Session = Depends(get_db)
):
    """
    Create a gateway order for the amount due on a pending order.

    PREPAID orders pay the full total; PARTIAL_COD orders pay the advance.
    """
    payment = PaymentService(db, gateway).create_payment(request.order_id, current_user.id)
    return success_response(payment)

@router.post("/verify")
def verify_payment(
    request: VerifyPaymentRequest,
    current_user: User = Depends(get_current_user),
    gateway: RazorpayClient = Depends(get_payment_gateway),
    db: Session = Depends(get_db)
):
    result = PaymentService(db, gateway).verify_payment(request, current_user.id)
    return success_response(result)

@router.get("/{payment_id}")
def get_payment(
    payment_id: int,
    current_user: User = Depends(get_current_user),
    gateway: RazorpayClient = Depends(get_payment_gateway),
    db: Session = Depends(get_db)
):
    payment = PaymentService(db, gateway).get_payment(payment_id, current_user)
    return success_response(PaymentSummary.model_validate(payment))

@promo_router.post("/validate")
def validate_promo(
    request: PromoValidateRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return success_response(PromoService(db).validate(request.code, request.cart_total))

@promo_router.post("/apply")
def apply_promo(
    request: PromoApplyRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Apply a promo code to one of the caller's pending orders (one code per order)."""
    return success_response(PromoService(db).apply(request.code, request.order_id, current_user.id))

@stylist_router.post("")
def ask_stylist(request: StylistRequest, db: Session = Depends(get_db)):
    return success_response(StylistService(db).ask(request.query, request.history))
