from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from typing import Optional
from datetime import datetime

from storefront.models.promos import CouponType

def _normalize_code(v: str) -> str:
    v = v.strip().upper()
    if not v:
        raise ValueError('Promo code is required')
    return v

class PromoValidateRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)
    cart_total: float = Field(..., ge=0)

    @field_validator('code')
    @classmethod
    def validate_code(cls, v):
        return _normalize_code(v)

class PromoApplyRequest(PromoValidateRequest):
    order_id: int = Field(..., gt=0)

class PromoValidation(BaseModel):
    valid: bool
    code: str
    discount: float = 0
    final_total: Optional[float] = None
    message: Optional[str] = None

class PromoApplyResponse(BaseModel):
    code: str
    order_id: int
    discount: float
    final_total: float
    already_applied: bool = False

class CouponCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)
    type: CouponType
    value: float = Field(..., gt=0)
    max_discount: Optional[float] = Field(None, ge=0)
    min_order_amount: float = Field(0, ge=0)
    usage_limit: Optional[int] = Field(None, ge=1)
    valid_from: Optional[datetime] = None
    valid_till: Optional[datetime] = None
    is_active: bool = True

    @field_validator('code')
    @classmethod
    def validate_code(cls, v):
        return _normalize_code(v)

    @model_validator(mode='after')
    def validate_window(self):
        if self.type == CouponType.PERCENT and self.value > 100:
            raise ValueError('Percent discount cannot exceed 100')
        if self.valid_from and self.valid_till and self.valid_till <= self.valid_from:
            raise ValueError('valid_till must be after valid_from')
        return self

class CouponUpdate(BaseModel):
    type: Optional[CouponType] = None
    value: Optional[float] = Field(None, gt=0)
    max_discount: Optional[float] = Field(None, ge=0)
    min_order_amount: Optional[float] = Field(None, ge=0)
    usage_limit: Optional[int] = Field(None, ge=1)
    valid_from: Optional[datetime] = None
    valid_till: Optional[datetime] = None
    is_active: Optional[bool] = None

class CouponResponse(BaseModel):
    id: int
    code: str
    type: CouponType
    value: float
    max_discount: Optional[float] = None
    min_order_amount: float
    usage_limit: Optional[int] = None
    used_count: int
    valid_from: Optional[datetime] = None
    valid_till: Optional[datetime] = None
    is_active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
