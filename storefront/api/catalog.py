"""Back-office catalogue endpoints: products, inventory and categories."""
from fastapi import APIRouter, Depends, Header, Query, status
from sqlalchemy.orm import Session
from typing import Optional

from storefront.api.deps import require_staff
from storefront.core.responses import success_response
from storefront.models.database import get_db
from storefront.models.products import InventoryStatus, ProductStatus
from storefront.models.users import User
from storefront.schemas.inventory import UpdateStockRequest
from storefront.schemas.products import CategoryCreate, CategoryResponse, ProductCreate, ProductUpdate
from storefront.services.inventory import InventoryService
from storefront.services.products import CategoryService, ProductService

router = APIRouter()

@router.get("/products")
def list_products_admin(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: Optional[str] = Query(None, max_length=200),
    category: Optional[str] = None,
    status: Optional[ProductStatus] = None,
    sort: str = "created_at:desc",
    staff: User = Depends(require_staff),
    db: Session = Depends(get_db)
):
    """
    Paginated product table for the back-office.

    - search matches name or description (case-insensitive)
    - category matches a category name
    - sort is one of name, created_at or price with :asc or :desc
    """
    result = ProductService(db).list_products_admin(page, limit, search, category, status, sort)
    return success_response(result.products, meta={"pagination": result.pagination})

@router.post("/products", status_code=status.HTTP_201_CREATED)
def create_product(
    product: ProductCreate,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key", max_length=128),
    staff: User = Depends(require_staff),
    db: Session = Depends(get_db)
):
    """
    Create a product with its categories, images and variants in one transaction.

    Requirements:
    - At least one image; primary_image_index picks the primary
    - Variants need color and size; SKUs are generated when omitted
    """
    created = ProductService(db).create_product(product, idempotency_key, staff.id)
    return success_response(created)

@router.get("/products/{product_id}")
def get_product_admin(product_id: int, staff: User = Depends(require_staff), db: Session = Depends(get_db)):
    return success_response(ProductService(db).get_product(product_id))

@router.put("/products/{product_id}")
def update_product_admin(
    product_id: int,
    product: ProductUpdate,
    staff: User = Depends(require_staff),
    db: Session = Depends(get_db)
):
    return success_response(ProductService(db).update_product_admin(product_id, product, staff.id))

@router.delete("/products/{product_id}")
def delete_product_admin(product_id: int, staff: User = Depends(require_staff), db: Session = Depends(get_db)):
    """Delete a product unless one of its variants is in a cart or an open order."""
    ProductService(db).delete_product_admin(product_id, staff.id)
    return success_response({"deleted": True, "id": product_id})

@router.get("/inventory")
def list_inventory(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    search: Optional[str] = Query(None, max_length=200),
    status: Optional[InventoryStatus] = None,
    staff: User = Depends(require_staff),
    db: Session = Depends(get_db)
):
    result = InventoryService(db).list_inventory(page, limit, search, status)
    return success_response(result.items, meta={"pagination": result.pagination})

@router.get("/inventory/stats")
def inventory_stats(staff: User = Depends(require_staff), db: Session = Depends(get_db)):
    return success_response(InventoryService(db).get_inventory_stats())

@router.patch("/inventory/{variant_id}/stock")
def update_stock(
    variant_id: int,
    request: UpdateStockRequest,
    staff: User = Depends(require_staff),
    db: Session = Depends(get_db)
):
    """Set, add to or subtract from a variant's stock; stock never drops below zero."""
    return success_response(InventoryService(db).update_stock(variant_id, request))

@router.get("/categories")
def list_categories_admin(staff: User = Depends(require_staff), db: Session = Depends(get_db)):
    categories = CategoryService(db).list_categories()
    return success_response([CategoryResponse.model_validate(c) for c in categories])

@router.post("/categories", status_code=status.HTTP_201_CREATED)
def create_category(category: CategoryCreate, staff: User = Depends(require_staff), db: Session = Depends(get_db)):
    created = CategoryService(db).create_category(category)
    return success_response(CategoryResponse.model_validate(created))
