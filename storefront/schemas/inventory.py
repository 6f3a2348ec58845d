import enum
from pydantic import BaseModel, Field
from typing import Optional, List

from storefront.models.products import InventoryStatus
from storefront.schemas.products import Pagination

class StockAction(enum.Enum):
    SET = "set"
    ADD = "add"
    SUBTRACT = "subtract"

class UpdateStockRequest(BaseModel):
    action: StockAction = Field(..., description="set, add or subtract")
    quantity: int = Field(..., ge=0, description="Non-negative quantity")
    notes: Optional[str] = Field(None, max_length=500)

class InventoryListItem(BaseModel):
    variant_id: int
    product_id: int
    product_name: str
    sku: str
    color: str
    size: str
    stock: int
    reserved_stock: int
    low_stock_threshold: int
    available_stock: int
    status: InventoryStatus

class InventoryListResponse(BaseModel):
    items: List[InventoryListItem]
    pagination: Pagination

class InventoryStatsResponse(BaseModel):
    total_skus: int
    low_stock_count: int
    out_of_stock_count: int
    in_stock_healthy_count: int
    total_stock_value: float
