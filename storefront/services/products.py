import logging
import math
import re
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storefront.core.exceptions import ConflictError, ResourceNotFoundError, ValidationError
from storefront.models.products import Category, ProductStatus
from storefront.repositories.products import ProductRepository
from storefront.schemas.products import (
    ADMIN_SORTS, AdminProductListResponse, CategoryCreate, Pagination, ProductCreate,
    ProductListFilters, ProductPage, ProductResponse, ProductUpdate,
)

logger = logging.getLogger(__name__)


class ProductService:
    def __init__(self, db: Session):
        self.db = db
        self.repository = ProductRepository(db)

    def list_products(
        self,
        cursor: Optional[str] = None,
        limit: int = 20,
        direction: str = "next",
        filters: Optional[ProductListFilters] = None,
    ) -> ProductPage:
        page = self.repository.find_products_by_cursor(
            cursor, limit, direction, filters or ProductListFilters()
        )
        return ProductPage(**page)

    def get_product(self, product_id: int) -> ProductResponse:
        product = self.repository.find_product_by_id(product_id)
        if product is None:
            raise ResourceNotFoundError("Product", product_id)
        return product

    def create_product(
        self,
        product_data: ProductCreate,
        idempotency_key: Optional[str] = None,
        actor_id: Optional[int] = None,
    ) -> ProductResponse:
        return self.repository.create_product(product_data, idempotency_key, actor_id)

    def list_products_admin(
        self,
        page: int = 1,
        limit: int = 10,
        search: Optional[str] = None,
        category: Optional[str] = None,
        status: Optional[ProductStatus] = None,
        sort: str = "created_at:desc",
    ) -> AdminProductListResponse:
        if sort not in ADMIN_SORTS:
            raise ValidationError("Validation failed", {"sort": f"Sort must be one of: {', '.join(ADMIN_SORTS)}"})
        result = self.repository.find_products_admin(page, limit, search, category, status, sort)
        total = result["total"]
        return AdminProductListResponse(
            products=result["products"],
            pagination=Pagination(
                page=page, limit=limit, total=total, total_pages=math.ceil(total / limit) if limit else 0
            ),
        )

    def update_product_admin(
        self,
        product_id: int,
        product_data: ProductUpdate,
        actor_id: Optional[int] = None,
    ) -> ProductResponse:
        product = self.repository.update_product_admin(product_id, product_data, actor_id)
        if product is None:
            raise ResourceNotFoundError("Product", product_id)
        return product

    def delete_product_admin(self, product_id: int, actor_id: Optional[int] = None) -> None:
        if not self.repository.delete_product_admin(product_id, actor_id):
            raise ResourceNotFoundError("Product", product_id)


def slugify(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")


class CategoryService:
    def __init__(self, db: Session):
        self.db = db

    def list_categories(self) -> List[Category]:
        return self.db.query(Category).order_by(Category.name).all()

    def create_category(self, category_data: CategoryCreate) -> Category:
        slug = slugify(category_data.slug or category_data.name)
        if not slug:
            raise ValidationError("Validation failed", {"slug": "Slug must contain letters or numbers"})

        existing = self.db.query(Category).filter(
            (Category.name == category_data.name) | (Category.slug == slug)
        ).first()
        if existing:
            raise ConflictError(f"Category {category_data.name} already exists")

        if category_data.parent_id is not None:
            parent = self.db.query(Category).filter(Category.id == category_data.parent_id).first()
            if not parent:
                raise ResourceNotFoundError("Category", category_data.parent_id)

        category = Category(
            name=category_data.name,
            slug=slug,
            description=category_data.description,
            parent_id=category_data.parent_id,
        )
        try:
            self.db.add(category)
            self.db.commit()
            self.db.refresh(category)
        except IntegrityError:
            self.db.rollback()
            raise ConflictError(f"Category {category_data.name} already exists")
        logger.info(f"Created category {category.id} ({category.name})")
        return category
