from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime

class CartItemAdd(BaseModel):
    variant_id: int = Field(..., gt=0)
    quantity: int = Field(1, ge=1, le=100)

class CartItemUpdate(BaseModel):
    quantity: int = Field(..., ge=1, le=100)

class CartLine(BaseModel):
    variant_id: int
    product_id: int
    product_name: str
    sku: str
    color: str
    size: str
    image: Optional[str] = None
    price: float
    quantity: int
    line_total: float
    available_stock: int

class CartResponse(BaseModel):
    items: List[CartLine]
    item_count: int
    subtotal: float

class WishlistAdd(BaseModel):
    product_id: int = Field(..., gt=0)

class WishlistEntry(BaseModel):
    product_id: int
    name: str
    base_price: float
    image: Optional[str] = None
    added_at: datetime
