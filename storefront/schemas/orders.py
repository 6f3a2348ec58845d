from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import List, Optional
from datetime import datetime

from storefront.models.orders import OrderStatus, PaymentMode
from storefront.models.payments import PaymentStatus
from storefront.schemas.products import Pagination
from storefront.schemas.users import AddressResponse

ADMIN_ORDER_SORTS = ("created_at:asc", "created_at:desc", "total:asc", "total:desc")

class OrderItemCreate(BaseModel):
    variant_id: int = Field(..., gt=0)
    quantity: int = Field(..., ge=1, le=100)

class OrderCreate(BaseModel):
    items: List[OrderItemCreate] = Field(..., min_length=1, max_length=50)
    address_id: int = Field(..., gt=0)
    payment_mode: PaymentMode = PaymentMode.PREPAID
    coupon_code: Optional[str] = Field(None, max_length=50)
    notes: Optional[str] = Field(None, max_length=1000)

    @field_validator('items')
    @classmethod
    def validate_unique_variants(cls, v):
        seen = set()
        for item in v:
            if item.variant_id in seen:
                raise ValueError('Each variant may only appear once per order')
            seen.add(item.variant_id)
        return v

    @field_validator('coupon_code')
    @classmethod
    def normalize_coupon(cls, v):
        if v is None or not v.strip():
            return None
        return v.strip().upper()

class OrderItemResponse(BaseModel):
    id: int
    variant_id: Optional[int] = None
    product_name: str
    sku: str
    price: float
    quantity: int
    line_total: float

class StatusHistoryEntry(BaseModel):
    status: OrderStatus
    notes: Optional[str] = None
    changed_at: datetime

    model_config = ConfigDict(from_attributes=True)

class PaymentSummary(BaseModel):
    id: int
    method: str
    amount: float
    currency: str
    status: PaymentStatus
    gateway_order_id: Optional[str] = None
    gateway_payment_id: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

class OrderResponse(BaseModel):
    id: int
    order_number: str
    user_id: int
    status: OrderStatus
    payment_mode: PaymentMode
    advance_payment_amount: Optional[float] = None
    subtotal: float
    discount: float
    tax: float
    shipping: float
    total: float
    coupon_code: Optional[str] = None
    notes: Optional[str] = None
    address: Optional[AddressResponse] = None
    items: List[OrderItemResponse]
    created_at: datetime
    updated_at: datetime

class CustomerInfo(BaseModel):
    id: int
    name: str
    email: str
    phone: Optional[str] = None

class AdminOrderDetail(OrderResponse):
    customer: CustomerInfo
    payment: Optional[PaymentSummary] = None
    status_history: List[StatusHistoryEntry] = []

class AdminOrderListItem(BaseModel):
    id: int
    order_number: str
    customer_name: str
    customer_email: str
    status: OrderStatus
    payment_mode: PaymentMode
    total: float
    item_count: int
    created_at: datetime

class AdminOrderListResponse(BaseModel):
    orders: List[AdminOrderListItem]
    pagination: Pagination

class OrderStatusUpdate(BaseModel):
    status: OrderStatus = Field(..., description="New status for the order")
    notes: Optional[str] = Field(None, max_length=500)
