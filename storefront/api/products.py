from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import Literal, Optional

from storefront.core.exceptions import ResourceNotFoundError
from storefront.core.responses import success_response
from storefront.models.database import get_db
from storefront.models.products import ProductStatus
from storefront.schemas.products import CategoryResponse, ProductListFilters
from storefront.services.products import CategoryService, ProductService

router = APIRouter()
categories_router = APIRouter()

@router.get("")
def list_products(
    cursor: Optional[str] = Query(None, description="Cursor from a previous page"),
    limit: int = Query(20, ge=1, le=100),
    direction: Literal["next", "prev"] = "next",
    category_id: Optional[int] = None,
    featured: Optional[bool] = None,
    db: Session = Depends(get_db)
):
    """
    Storefront listing of live products, newest first, with cursor pagination.
    """
    filters = ProductListFilters(status=ProductStatus.LIVE, category_id=category_id, featured=featured)
    page = ProductService(db).list_products(cursor, limit, direction, filters)
    return success_response(page.products, meta={
        "next_cursor": page.next_cursor,
        "prev_cursor": page.prev_cursor,
        "has_more": page.has_more,
    })

@router.get("/{product_id}")
def get_product(product_id: int, db: Session = Depends(get_db)):
    product = ProductService(db).get_product(product_id)
    if product.status != ProductStatus.LIVE:
        raise ResourceNotFoundError("Product", product_id)
    return success_response(product)

@categories_router.get("")
def list_categories(db: Session = Depends(get_db)):
    categories = CategoryService(db).list_categories()
    return success_response([CategoryResponse.model_validate(c) for c in categories])
