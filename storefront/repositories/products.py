"""Product data access: listing, detail, nested create/update and guarded delete.

Reads join categories, variants (with inventory and images) and the optional
``product_images`` table; when that table does not exist the read is retried
without it and writes skip image storage.
"""
import logging
import time
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from sqlalchemy import and_, func, inspect, or_
from sqlalchemy.exc import IntegrityError, OperationalError, ProgrammingError, SQLAlchemyError
from sqlalchemy.orm import Session, noload, selectinload

from storefront.core.exceptions import AppError, ConflictError, ValidationError, wrap_db_error
from storefront.core.idempotency import PRODUCT_CREATE_SCOPE
from storefront.core.sku import DEFAULT_CATEGORY, generate_product_code, generate_sku
from storefront.models.orders import Order, OrderItem, OrderStatus
from storefront.models.products import (
    CartItem, Category, Inventory, Product, ProductImage, ProductVariant, Review,
    VariantImage, WishlistItem, product_categories,
)
from storefront.models.system import IdempotencyRecord
from storefront.schemas.products import (
    AdminProductListItem, CategoryResponse, InventorySnapshot, ProductCreate,
    ProductListFilters, ProductResponse, ProductUpdate, VariantImageResponse,
    VariantInput, VariantResponse,
)
from storefront.services.audit import record_audit

logger = logging.getLogger(__name__)

MAX_SKU_ATTEMPTS = 100

SORT_COLUMNS = {
    "name": Product.name,
    "created_at": Product.created_at,
    "price": Product.base_price,
}


def _is_missing_image_table(exc: Exception) -> bool:
    message = str(getattr(exc, "orig", exc)).lower()
    return "product_images" in message and (
        "no such table" in message or "does not exist" in message or "relation" in message
    )


def encode_cursor(product: Product) -> str:
    return f"{product.created_at.isoformat()}|{product.id}"


def decode_cursor(cursor: str) -> Tuple[datetime, Optional[int]]:
    """Parse ``<iso timestamp>|<id>``; a bare timestamp is accepted too."""
    created, _, raw_id = cursor.partition("|")
    try:
        created_at = datetime.fromisoformat(created)
        product_id = int(raw_id) if raw_id else None
    except ValueError:
        raise ValidationError("Invalid cursor", {"cursor": "Invalid cursor value"})
    return created_at, product_id


def primary_image_order(images: list, primary_index: int) -> list:
    """Return images with the primary first; the rest keep their relative order."""
    if not images:
        return []
    primary_index = max(0, min(primary_index or 0, len(images) - 1))
    return [images[primary_index]] + [img for i, img in enumerate(images) if i != primary_index]


def to_product_response(
    product: Product,
    include_images: bool = True,
    rating: Optional[Tuple[float, int]] = None,
) -> ProductResponse:
    """Flatten an ORM product (with eager-loaded relations) into the view model."""
    sorted_images = sorted(product.images, key=lambda img: img.display_order or 0) if include_images else []
    image_urls = [img.image_url for img in sorted_images]
    primary_index = next(
        (i for i, img in enumerate(sorted_images) if (img.display_order or 0) == 0), 0
    )

    variants = []
    for v in product.variants:
        inventory = None
        if v.inventory is not None:
            inventory = InventorySnapshot(
                stock=v.inventory.stock or 0,
                reserved_stock=v.inventory.reserved_stock or 0,
                available_stock=v.inventory.available_stock,
                low_stock_threshold=v.inventory.low_stock_threshold,
                status=v.inventory.status,
            )
        variants.append(VariantResponse(
            id=v.id,
            product_id=v.product_id,
            sku=v.sku,
            color=v.color,
            size=v.size,
            price_override=v.price_override,
            price=v.price_override if v.price_override is not None else product.base_price,
            is_active=v.is_active,
            inventory=inventory,
            images=[
                VariantImageResponse(
                    id=img.id, image_url=img.image_url,
                    display_order=img.display_order or 0, variant_id=v.id,
                )
                for img in v.images
            ],
        ))

    if image_urls:
        primary_image = image_urls[primary_index]
    else:
        primary_image = next((v.images[0].image_url for v in variants if v.images), None)

    avg_rating, review_count = rating if rating else (None, 0)
    return ProductResponse(
        id=product.id,
        name=product.name,
        description=product.description,
        base_price=product.base_price,
        status=product.status,
        featured=bool(product.featured),
        created_at=product.created_at,
        updated_at=product.updated_at or product.created_at,
        categories=[CategoryResponse.model_validate(c) for c in product.categories],
        variants=variants,
        images=image_urls,
        image=primary_image,
        primary_image_index=primary_index if image_urls else None,
        avg_rating=avg_rating,
        review_count=review_count,
    )


class ProductRepository:
    def __init__(self, db: Session):
        self.db = db
        self._image_table: Optional[bool] = None

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _detail_options(self, include_images: bool = True) -> list:
        options = [
            selectinload(Product.categories),
            selectinload(Product.variants).selectinload(ProductVariant.inventory),
            selectinload(Product.variants).selectinload(ProductVariant.images),
        ]
        options.append(selectinload(Product.images) if include_images else noload(Product.images))
        return options

    def _with_image_fallback(self, run, context: str):
        """Run ``run(include_images)``; retry without product images if that table is absent."""
        try:
            return run(True), True
        except (OperationalError, ProgrammingError) as e:
            self.db.rollback()
            if not _is_missing_image_table(e):
                raise wrap_db_error(e, context)
            logger.warning("product_images table is missing; retrying without product images")
            self._image_table = False
        try:
            return run(False), False
        except SQLAlchemyError as e:
            self.db.rollback()
            raise wrap_db_error(e, context)

    def _image_table_available(self) -> bool:
        if self._image_table is None:
            self._image_table = inspect(self.db.connection()).has_table(ProductImage.__tablename__)
        return self._image_table

    def _rating_stats(self, product_ids: List[int]) -> Dict[int, Tuple[float, int]]:
        if not product_ids:
            return {}
        rows = self.db.query(
            Review.product_id, func.avg(Review.rating), func.count(Review.id)
        ).filter(
            Review.product_id.in_(product_ids)
        ).group_by(Review.product_id).all()
        return {pid: (round(float(avg), 2), count) for pid, avg, count in rows}

    def find_products_by_cursor(
        self,
        cursor: Optional[str],
        limit: int,
        direction: str,
        filters: ProductListFilters,
    ) -> Dict:
        """Keyset page over ``(created_at, id)``, newest first."""
        bound = decode_cursor(cursor) if cursor else None

        def run(include_images: bool) -> List[Product]:
            query = self.db.query(Product).options(*self._detail_options(include_images))
            if filters.status is not None:
                query = query.filter(Product.status == filters.status)
            if filters.featured is not None:
                query = query.filter(Product.featured == filters.featured)
            if filters.category_id is not None:
                query = query.filter(Product.categories.any(Category.id == filters.category_id))

            if direction == "prev":
                if bound:
                    created_at, product_id = bound
                    newer = Product.created_at > created_at
                    if product_id is not None:
                        newer = or_(newer, and_(Product.created_at == created_at, Product.id > product_id))
                    query = query.filter(newer)
                query = query.order_by(Product.created_at.asc(), Product.id.asc())
            else:
                if bound:
                    created_at, product_id = bound
                    older = Product.created_at < created_at
                    if product_id is not None:
                        older = or_(older, and_(Product.created_at == created_at, Product.id < product_id))
                    query = query.filter(older)
                query = query.order_by(Product.created_at.desc(), Product.id.desc())
            return query.limit(limit + 1).all()

        rows, include_images = self._with_image_fallback(run, "Failed to fetch products")

        has_more = len(rows) > limit
        rows = rows[:limit]
        if direction == "prev":
            rows.reverse()

        ratings = self._rating_stats([p.id for p in rows])
        products = [to_product_response(p, include_images, ratings.get(p.id)) for p in rows]

        next_cursor = None
        if rows and (has_more or direction == "prev"):
            next_cursor = encode_cursor(rows[-1])

        return {
            "products": products,
            "next_cursor": next_cursor,
            "prev_cursor": cursor or None,
            "has_more": has_more,
        }

    def find_product_by_id(self, product_id: int) -> Optional[ProductResponse]:
        def run(include_images: bool) -> Optional[Product]:
            return self.db.query(Product).options(
                *self._detail_options(include_images)
            ).filter(Product.id == product_id).first()

        product, include_images = self._with_image_fallback(run, "Failed to fetch product")
        if product is None:
            return None
        return to_product_response(product, include_images, self._rating_stats([product.id]).get(product.id))

    def find_products_admin(
        self,
        page: int = 1,
        limit: int = 10,
        search: Optional[str] = None,
        category: Optional[str] = None,
        status=None,
        sort: str = "created_at:desc",
    ) -> Dict:
        offset = (page - 1) * limit
        sort_field, _, sort_order = sort.partition(":")
        column = SORT_COLUMNS.get(sort_field, Product.created_at)
        ordering = column.asc() if sort_order == "asc" else column.desc()

        def base_query():
            query = self.db.query(Product)
            if status is not None:
                query = query.filter(Product.status == status)
            if search:
                term = f"%{search}%"
                query = query.filter(or_(Product.name.ilike(term), Product.description.ilike(term)))
            if category:
                query = query.filter(Product.categories.any(func.lower(Category.name) == category.lower()))
            return query

        try:
            total = base_query().count()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise wrap_db_error(e, "Failed to count products")

        def run(include_images: bool) -> List[Product]:
            return base_query().options(*self._detail_options(include_images)).order_by(
                ordering, Product.id.desc()
            ).offset(offset).limit(limit).all()

        rows, include_images = self._with_image_fallback(run, "Failed to fetch products")

        items = []
        for product in rows:
            view = to_product_response(product, include_images)
            items.append(AdminProductListItem(
                id=view.id,
                name=view.name,
                description=view.description,
                base_price=view.base_price,
                status=view.status,
                featured=view.featured,
                image=view.image,
                categories=view.categories,
                variant_count=len(view.variants),
                total_stock=sum(v.inventory.stock for v in view.variants if v.inventory),
                created_at=view.created_at,
                updated_at=view.updated_at,
            ))
        return {"products": items, "total": total}

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _load_categories(self, category_ids: List[int]) -> List[Category]:
        if not category_ids:
            return []
        unique_ids = list(dict.fromkeys(category_ids))
        categories = self.db.query(Category).filter(Category.id.in_(unique_ids)).all()
        missing = set(unique_ids) - {c.id for c in categories}
        if missing:
            raise ValidationError(
                "Validation failed",
                {"category_ids": f"Unknown category ids: {', '.join(str(i) for i in sorted(missing))}"},
            )
        by_id = {c.id: c for c in categories}
        return [by_id[i] for i in unique_ids]

    def _store_images(self, product_id: int, urls: List[str], primary_index: int) -> None:
        """Insert product images with the primary at display_order 0, then 1..n-1."""
        if not urls:
            return
        if not self._image_table_available():
            logger.warning(f"product_images table is missing; skipping {len(urls)} image(s) for product {product_id}")
            return
        for order, url in enumerate(primary_image_order(urls, primary_index)):
            self.db.add(ProductImage(product_id=product_id, image_url=url, display_order=order))

    def _sku_taken(self, sku: str, exclude_variant_id: Optional[int] = None) -> bool:
        query = self.db.query(ProductVariant.id).filter(ProductVariant.sku == sku)
        if exclude_variant_id is not None:
            query = query.filter(ProductVariant.id != exclude_variant_id)
        return query.first() is not None

    def _unique_sku(self, base_sku: str, exclude_variant_id: Optional[int] = None) -> str:
        sku = base_sku
        for attempt in range(1, MAX_SKU_ATTEMPTS + 1):
            if not self._sku_taken(sku, exclude_variant_id):
                return sku
            sku = f"{base_sku}-{attempt}"
        return f"{base_sku}-{str(int(time.time() * 1000))[-6:]}"

    def _resolve_sku(self, product: Product, data: VariantInput, exclude_variant_id: Optional[int] = None) -> str:
        if data.sku:
            if self._sku_taken(data.sku, exclude_variant_id):
                raise ConflictError(f"SKU {data.sku} already exists")
            return data.sku
        category_name = product.categories[0].name if product.categories else DEFAULT_CATEGORY
        base = generate_sku(category_name, generate_product_code(product.name), data.size, data.color)
        return self._unique_sku(base, exclude_variant_id)

    def _replace_variant_images(self, variant_id: int, urls: List[str]) -> None:
        self.db.query(VariantImage).filter(VariantImage.variant_id == variant_id).delete(synchronize_session=False)
        for order, url in enumerate(urls):
            self.db.add(VariantImage(variant_id=variant_id, image_url=url, display_order=order))

    def _create_variant(self, product: Product, data: VariantInput) -> ProductVariant:
        variant = ProductVariant(
            product_id=product.id,
            sku=self._resolve_sku(product, data),
            color=data.color,
            size=data.size,
            price_override=data.price_override,
            is_active=data.is_active,
        )
        self.db.add(variant)
        # Flush so the next SKU lookup in this transaction sees it
        self.db.flush()
        self.db.add(Inventory(
            variant_id=variant.id,
            stock=data.stock,
            reserved_stock=0,
            low_stock_threshold=data.low_stock_threshold,
        ))
        for order, url in enumerate(data.images):
            self.db.add(VariantImage(variant_id=variant.id, image_url=url, display_order=order))
        self.db.flush()
        return variant

    def _update_variant(self, product: Product, variant: ProductVariant, data: VariantInput) -> None:
        provided = data.model_fields_set
        # Existing variants keep their SKU unless a new one is given
        if data.sku and data.sku != variant.sku:
            variant.sku = self._resolve_sku(product, data, exclude_variant_id=variant.id)
        variant.color = data.color
        variant.size = data.size
        variant.price_override = data.price_override
        variant.is_active = data.is_active

        inventory = variant.inventory
        if inventory is None:
            self.db.add(Inventory(
                variant_id=variant.id,
                stock=data.stock,
                reserved_stock=0,
                low_stock_threshold=data.low_stock_threshold,
            ))
        else:
            if "stock" in provided:
                inventory.stock = data.stock
            if "low_stock_threshold" in provided:
                inventory.low_stock_threshold = data.low_stock_threshold

        if "images" in provided:
            self._replace_variant_images(variant.id, data.images)
        self.db.flush()

    def _variant_references(self, variant_ids: List[int]) -> Tuple[int, bool]:
        """Return (cart item count, referenced by a non-cancelled order)."""
        cart_refs = self.db.query(func.count(CartItem.id)).filter(
            CartItem.variant_id.in_(variant_ids)
        ).scalar() or 0
        ordered = self.db.query(OrderItem.id).join(Order, OrderItem.order_id == Order.id).filter(
            OrderItem.variant_id.in_(variant_ids),
            Order.status != OrderStatus.CANCELLED,
        ).first() is not None
        return cart_refs, ordered

    def _delete_variants(self, variant_ids: List[int]) -> None:
        if not variant_ids:
            return
        # Cancelled orders keep their snapshots but lose the link
        self.db.query(OrderItem).filter(OrderItem.variant_id.in_(variant_ids)).update(
            {OrderItem.variant_id: None}, synchronize_session=False
        )
        self.db.query(VariantImage).filter(VariantImage.variant_id.in_(variant_ids)).delete(synchronize_session=False)
        self.db.query(Inventory).filter(Inventory.variant_id.in_(variant_ids)).delete(synchronize_session=False)
        self.db.query(ProductVariant).filter(ProductVariant.id.in_(variant_ids)).delete(synchronize_session=False)

    def _find_idempotent_product_id(self, key: str) -> Optional[int]:
        record = self.db.query(IdempotencyRecord).filter(
            IdempotencyRecord.key == key,
            IdempotencyRecord.scope == PRODUCT_CREATE_SCOPE,
        ).first()
        return record.resource_id if record else None

    def create_product(
        self,
        data: ProductCreate,
        idempotency_key: Optional[str] = None,
        actor_id: Optional[int] = None,
    ) -> ProductResponse:
        if idempotency_key:
            existing_id = self._find_idempotent_product_id(idempotency_key)
            if existing_id is not None:
                existing = self.find_product_by_id(existing_id)
                if existing is not None:
                    logger.info(f"Duplicate product creation for idempotency key; returning product {existing_id}")
                    return existing

        try:
            product = Product(
                name=data.name,
                description=data.description,
                base_price=data.base_price,
                status=data.status,
                featured=data.featured,
            )
            product.categories = self._load_categories(data.category_ids)
            self.db.add(product)
            self.db.flush()

            self._store_images(product.id, data.images, data.primary_image_index)
            for variant in data.variants:
                self._create_variant(product, variant)

            if idempotency_key:
                self.db.add(IdempotencyRecord(
                    key=idempotency_key, scope=PRODUCT_CREATE_SCOPE, resource_id=product.id
                ))
            record_audit(self.db, actor_id, "create", "product", product.id, {
                "name": product.name,
                "variants": len(data.variants),
                "images": len(data.images),
            })
            self.db.commit()
        except AppError:
            self.db.rollback()
            raise
        except IntegrityError as e:
            self.db.rollback()
            if idempotency_key:
                existing_id = self._find_idempotent_product_id(idempotency_key)
                if existing_id is not None:
                    existing = self.find_product_by_id(existing_id)
                    if existing is not None:
                        return existing
            raise wrap_db_error(e, "Failed to create product")
        except SQLAlchemyError as e:
            self.db.rollback()
            raise wrap_db_error(e, "Failed to create product")

        logger.info(f"Created product {product.id} ({data.name}) with {len(data.variants)} variant(s)")
        created = self.find_product_by_id(product.id)
        if created is None:
            raise wrap_db_error(RuntimeError("product vanished after commit"), "Failed to retrieve created product")
        return created

    def update_product_admin(
        self,
        product_id: int,
        data: ProductUpdate,
        actor_id: Optional[int] = None,
    ) -> Optional[ProductResponse]:
        product = self.db.query(Product).filter(Product.id == product_id).first()
        if product is None:
            return None

        changes = {
            key: value
            for key, value in data.model_dump(
                exclude_unset=True, include={"name", "description", "base_price", "status", "featured"}
            ).items()
            if value is not None
        }
        try:
            for key, value in changes.items():
                setattr(product, key, value)

            if data.category_ids is not None:
                product.categories = self._load_categories(data.category_ids)

            if data.images is not None and self._image_table_available():
                self.db.query(ProductImage).filter(ProductImage.product_id == product.id).delete(
                    synchronize_session=False
                )
                self._store_images(product.id, data.images, data.primary_image_index or 0)
            elif data.primary_image_index is not None and self._image_table_available():
                self._move_primary_image(product.id, data.primary_image_index)

            if data.variants is not None:
                self._reconcile_variants(product, data.variants)

            record_audit(self.db, actor_id, "update", "product", product.id, {
                "fields": sorted(data.model_fields_set),
            })
            self.db.commit()
        except AppError:
            self.db.rollback()
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            raise wrap_db_error(e, "Failed to update product")

        logger.info(f"Updated product {product_id}: {sorted(data.model_fields_set)}")
        return self.find_product_by_id(product_id)

    def _move_primary_image(self, product_id: int, primary_index: int) -> None:
        images = self.db.query(ProductImage).filter(
            ProductImage.product_id == product_id
        ).order_by(ProductImage.display_order, ProductImage.id).all()
        if not images:
            return
        reordered = primary_image_order(images, primary_index)
        for order, image in enumerate(reordered):
            image.display_order = order

    def _reconcile_variants(self, product: Product, incoming: List[VariantInput]) -> None:
        """Update known variants, create new ones, delete the ones left out."""
        existing = {v.id: v for v in product.variants}
        incoming_ids = {v.id for v in incoming if v.id is not None}

        removed = [vid for vid in existing if vid not in incoming_ids]
        if removed:
            cart_refs, ordered = self._variant_references(removed)
            if cart_refs:
                raise ConflictError("Cannot remove a variant that is in an active cart")
            if ordered:
                raise ConflictError("Cannot remove a variant that has been ordered")
            self._delete_variants(removed)
            for vid in removed:
                self.db.expire(existing[vid])

        for data in incoming:
            if data.id is not None and data.id in existing:
                self._update_variant(product, existing[data.id], data)
            else:
                self._create_variant(product, data)

    def delete_product_admin(self, product_id: int, actor_id: Optional[int] = None) -> bool:
        product = self.db.query(Product).filter(Product.id == product_id).first()
        if product is None:
            return False

        variant_ids = [v.id for v in product.variants]
        if variant_ids:
            cart_refs, ordered = self._variant_references(variant_ids)
            if cart_refs:
                raise ConflictError(
                    f"Cannot delete product: its variants are in {cart_refs} active cart item(s)"
                )
            if ordered:
                raise ConflictError("Cannot delete product that has been ordered")

        name = product.name
        try:
            self._delete_variants(variant_ids)
            self.db.execute(product_categories.delete().where(product_categories.c.product_id == product_id))
            if self._image_table_available():
                self.db.query(ProductImage).filter(ProductImage.product_id == product_id).delete(
                    synchronize_session=False
                )
            self.db.query(Review).filter(Review.product_id == product_id).delete(synchronize_session=False)
            self.db.query(WishlistItem).filter(WishlistItem.product_id == product_id).delete(
                synchronize_session=False
            )
            self.db.query(Product).filter(Product.id == product_id).delete(synchronize_session=False)
            record_audit(self.db, actor_id, "delete", "product", product_id, {
                "name": name,
                "variants": len(variant_ids),
            })
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise wrap_db_error(e, "Failed to delete product")

        self.db.expunge_all()
        logger.info(f"Deleted product {product_id} ({name}) and {len(variant_ids)} variant(s)")
        return True
