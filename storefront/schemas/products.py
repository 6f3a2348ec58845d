from pydantic import BaseModel, ConfigDict, Field, AliasChoices, field_validator
from typing import Optional, List
from datetime import datetime

from storefront.models.products import ProductStatus, InventoryStatus, DEFAULT_LOW_STOCK_THRESHOLD

ADMIN_SORTS = ("name:asc", "name:desc", "created_at:asc", "created_at:desc", "price:asc", "price:desc")

def _strip_required(v: str) -> str:
    if not v.strip():
        raise ValueError("Cannot be empty or just whitespace")
    return v.strip()

class CategoryResponse(BaseModel):
    id: int
    name: str
    slug: str
    parent_id: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)

class VariantInput(BaseModel):
    id: Optional[int] = Field(None, description="Existing variant id; omitted for new variants")
    sku: Optional[str] = Field(None, max_length=100)
    color: str = Field(..., min_length=1, max_length=50)
    size: str = Field(..., min_length=1, max_length=20)
    price_override: Optional[float] = Field(None, ge=0)
    is_active: bool = True
    stock: int = Field(0, ge=0)
    low_stock_threshold: int = Field(DEFAULT_LOW_STOCK_THRESHOLD, ge=0)
    images: List[str] = Field(default_factory=list)

    @field_validator("color", "size")
    @classmethod
    def validate_required_text(cls, v):
        return _strip_required(v)

class ProductCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1, max_length=5000)
    base_price: float = Field(..., ge=0)
    status: ProductStatus = ProductStatus.DRAFT
    featured: bool = False
    category_ids: List[int] = Field(
        default_factory=list, validation_alias=AliasChoices("category_ids", "categoryIds")
    )
    images: List[str] = Field(default_factory=list, validate_default=True)
    primary_image_index: int = Field(
        0, ge=0, validation_alias=AliasChoices("primary_image_index", "primaryImageIndex")
    )
    variants: List[VariantInput] = Field(default_factory=list)

    @field_validator("name", "description")
    @classmethod
    def validate_text(cls, v):
        return _strip_required(v)

    @field_validator("images")
    @classmethod
    def validate_images(cls, v):
        if not v:
            raise ValueError("Add at least one image")
        return v

class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    description: Optional[str] = Field(None, min_length=1, max_length=5000)
    base_price: Optional[float] = Field(None, ge=0)
    status: Optional[ProductStatus] = None
    featured: Optional[bool] = None
    category_ids: Optional[List[int]] = Field(
        None, validation_alias=AliasChoices("category_ids", "categoryIds")
    )
    images: Optional[List[str]] = None
    primary_image_index: Optional[int] = Field(
        None, ge=0, validation_alias=AliasChoices("primary_image_index", "primaryImageIndex")
    )
    variants: Optional[List[VariantInput]] = None

    @field_validator("name", "description")
    @classmethod
    def validate_text(cls, v):
        if v is None:
            return v
        return _strip_required(v)

class InventorySnapshot(BaseModel):
    stock: int
    reserved_stock: int
    available_stock: int
    low_stock_threshold: int
    status: InventoryStatus

class VariantImageResponse(BaseModel):
    id: int
    image_url: str
    display_order: int
    variant_id: int

class VariantResponse(BaseModel):
    id: int
    product_id: int
    sku: str
    color: str
    size: str
    price_override: Optional[float] = None
    price: float
    is_active: bool
    inventory: Optional[InventorySnapshot] = None
    images: List[VariantImageResponse] = []

class ProductResponse(BaseModel):
    id: int
    name: str
    description: str
    base_price: float
    status: ProductStatus
    featured: bool
    created_at: datetime
    updated_at: datetime
    categories: List[CategoryResponse] = []
    variants: List[VariantResponse] = []
    images: List[str] = []
    image: Optional[str] = None
    primary_image_index: Optional[int] = None
    avg_rating: Optional[float] = None
    review_count: int = 0

class ProductListFilters(BaseModel):
    status: Optional[ProductStatus] = None
    category_id: Optional[int] = None
    featured: Optional[bool] = None

class ProductPage(BaseModel):
    products: List[ProductResponse]
    next_cursor: Optional[str] = None
    prev_cursor: Optional[str] = None
    has_more: bool = False

class AdminProductListItem(BaseModel):
    id: int
    name: str
    description: str
    base_price: float
    status: ProductStatus
    featured: bool
    image: Optional[str] = None
    categories: List[CategoryResponse] = []
    variant_count: int
    total_stock: int
    created_at: datetime
    updated_at: datetime

class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int

class AdminProductListResponse(BaseModel):
    products: List[AdminProductListItem]
    pagination: Pagination

class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    slug: Optional[str] = Field(None, max_length=120)
    description: Optional[str] = None
    parent_id: Optional[int] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        return _strip_required(v)
