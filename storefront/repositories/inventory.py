import logging
from typing import Dict, Optional

from sqlalchemy import and_, case, func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from storefront.core.exceptions import wrap_db_error
from storefront.models.products import Inventory, InventoryStatus, Product, ProductVariant
from storefront.schemas.inventory import InventoryListItem, InventoryStatsResponse, StockAction

logger = logging.getLogger(__name__)


def apply_stock_action(current: int, action: StockAction, quantity: int) -> int:
    """New stock level for an action; never below zero."""
    if action == StockAction.SET:
        return max(0, quantity)
    if action == StockAction.ADD:
        return max(0, current + quantity)
    return max(0, current - quantity)


def status_condition(status: InventoryStatus):
    if status == InventoryStatus.OUT_OF_STOCK:
        return Inventory.stock <= 0
    if status == InventoryStatus.LOW_STOCK:
        return and_(Inventory.stock > 0, Inventory.stock <= Inventory.low_stock_threshold)
    return Inventory.stock > Inventory.low_stock_threshold


def _to_item(inventory: Inventory, variant: ProductVariant, product: Product) -> InventoryListItem:
    return InventoryListItem(
        variant_id=variant.id,
        product_id=product.id,
        product_name=product.name,
        sku=variant.sku,
        color=variant.color,
        size=variant.size,
        stock=inventory.stock,
        reserved_stock=inventory.reserved_stock,
        low_stock_threshold=inventory.low_stock_threshold,
        available_stock=inventory.available_stock,
        status=inventory.status,
    )


class InventoryRepository:
    def __init__(self, db: Session):
        self.db = db

    def _base_query(self):
        return self.db.query(Inventory, ProductVariant, Product).join(
            ProductVariant, Inventory.variant_id == ProductVariant.id
        ).join(
            Product, ProductVariant.product_id == Product.id
        )

    def get_inventory_item(self, variant_id: int) -> Optional[InventoryListItem]:
        row = self._base_query().filter(ProductVariant.id == variant_id).first()
        if row is None:
            return None
        return _to_item(*row)

    def update_stock(self, variant_id: int, action: StockAction, quantity: int) -> Optional[InventoryListItem]:
        inventory = self.db.query(Inventory).filter(Inventory.variant_id == variant_id).first()
        if inventory is None:
            variant = self.db.query(ProductVariant).filter(ProductVariant.id == variant_id).first()
            if variant is None:
                return None
            # Variants created before inventory tracking get a row on first update
            inventory = Inventory(variant_id=variant_id, stock=0, reserved_stock=0)
            self.db.add(inventory)

        previous = inventory.stock or 0
        inventory.stock = apply_stock_action(previous, action, quantity)
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise wrap_db_error(e, "Failed to update stock")

        logger.info(f"Stock for variant {variant_id}: {previous} -> {inventory.stock} ({action.value} {quantity})")
        return self.get_inventory_item(variant_id)

    def find_inventory_items(
        self,
        page: int = 1,
        limit: int = 50,
        search: Optional[str] = None,
        status: Optional[InventoryStatus] = None,
    ) -> Dict:
        query = self._base_query()
        if search:
            term = f"%{search}%"
            query = query.filter(or_(
                ProductVariant.sku.ilike(term),
                Product.name.ilike(term),
                ProductVariant.color.ilike(term),
                ProductVariant.size.ilike(term),
            ))
        if status is not None:
            query = query.filter(status_condition(status))

        try:
            total = query.count()
            rows = query.order_by(Product.name.asc(), ProductVariant.id.asc()).offset(
                (page - 1) * limit
            ).limit(limit).all()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise wrap_db_error(e, "Failed to fetch inventory")

        return {"items": [_to_item(*row) for row in rows], "total": total}

    def get_inventory_stats(self) -> InventoryStatsResponse:
        out_of_stock = Inventory.stock <= 0
        low_stock = and_(Inventory.stock > 0, Inventory.stock <= Inventory.low_stock_threshold)
        price = func.coalesce(ProductVariant.price_override, Product.base_price)
        try:
            total, low, out, value = self.db.query(
                func.count(Inventory.id),
                func.sum(case((low_stock, 1), else_=0)),
                func.sum(case((out_of_stock, 1), else_=0)),
                func.sum(Inventory.stock * price),
            ).select_from(Inventory).join(
                ProductVariant, Inventory.variant_id == ProductVariant.id
            ).join(
                Product, ProductVariant.product_id == Product.id
            ).one()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise wrap_db_error(e, "Failed to compute inventory stats")

        total = total or 0
        low = int(low or 0)
        out = int(out or 0)
        return InventoryStatsResponse(
            total_skus=total,
            low_stock_count=low,
            out_of_stock_count=out,
            in_stock_healthy_count=total - low - out,
            total_stock_value=round(float(value or 0), 2),
        )

    def find_alerts(self, limit: int = 20) -> list:
        """Variants at or below their low-stock threshold, emptiest first."""
        rows = self._base_query().filter(
            Inventory.stock <= Inventory.low_stock_threshold
        ).order_by(Inventory.stock.asc(), Product.name.asc()).limit(limit).all()
        return [_to_item(*row) for row in rows]
