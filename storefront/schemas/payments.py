from pydantic import BaseModel, Field
from typing import Optional

from storefront.models.orders import OrderStatus
from storefront.models.payments import PaymentStatus

class CreatePaymentRequest(BaseModel):
    order_id: int = Field(..., gt=0)

class CreatePaymentResponse(BaseModel):
    payment_id: int
    gateway_order_id: str
    amount: int = Field(..., description="Amount in the smallest currency unit (paise)")
    currency: str
    key_id: str
    order_number: str

class VerifyPaymentRequest(BaseModel):
    razorpay_order_id: str = Field(..., min_length=1)
    razorpay_payment_id: str = Field(..., min_length=1)
    razorpay_signature: str = Field(..., min_length=1)

class VerifyPaymentResponse(BaseModel):
    payment_id: int
    order_id: int
    order_number: str
    payment_status: PaymentStatus
    order_status: OrderStatus
    verified: bool
    message: Optional[str] = None
