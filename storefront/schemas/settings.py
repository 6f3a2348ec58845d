from pydantic import BaseModel, EmailStr, Field
from typing import Optional, Literal

class GeneralSettings(BaseModel):
    store_name: str = "All in cloth"
    support_email: EmailStr = "support@allincloth.com"
    store_description: str = "Redefining modern luxury through architectural silhouettes and ethical craftsmanship."

class ShippingSettings(BaseModel):
    standard_rate: float = Field(15.0, ge=0)
    express_rate: float = Field(25.0, ge=0)
    free_shipping_threshold: Optional[float] = Field(100.0, ge=0)

class TaxSettings(BaseModel):
    rate: float = Field(8.0, ge=0, le=100, description="Percent of the subtotal")
    type: Literal["vat", "sales_tax"] = "vat"

class PaymentMethodToggle(BaseModel):
    enabled: bool = True

class PaymentMethodSettings(BaseModel):
    razorpay: PaymentMethodToggle = PaymentMethodToggle()
    cod: PaymentMethodToggle = PaymentMethodToggle()
    partial_cod: PaymentMethodToggle = PaymentMethodToggle()

class StoreSettings(BaseModel):
    general: GeneralSettings = GeneralSettings()
    shipping: ShippingSettings = ShippingSettings()
    tax: TaxSettings = TaxSettings()
    payment_methods: PaymentMethodSettings = PaymentMethodSettings()
