import math
from typing import Optional

from sqlalchemy.orm import Session

from storefront.core.exceptions import ResourceNotFoundError
from storefront.models.products import InventoryStatus
from storefront.repositories.inventory import InventoryRepository
from storefront.schemas.inventory import (
    InventoryListItem, InventoryListResponse, InventoryStatsResponse, UpdateStockRequest,
)
from storefront.schemas.products import Pagination


class InventoryService:
    def __init__(self, db: Session):
        self.db = db
        self.repository = InventoryRepository(db)

    def update_stock(self, variant_id: int, request: UpdateStockRequest) -> InventoryListItem:
        item = self.repository.update_stock(variant_id, request.action, request.quantity)
        if item is None:
            raise ResourceNotFoundError("Variant", variant_id)
        return item

    def list_inventory(
        self,
        page: int = 1,
        limit: int = 50,
        search: Optional[str] = None,
        status: Optional[InventoryStatus] = None,
    ) -> InventoryListResponse:
        result = self.repository.find_inventory_items(page, limit, search, status)
        total = result["total"]
        return InventoryListResponse(
            items=result["items"],
            pagination=Pagination(page=page, limit=limit, total=total, total_pages=math.ceil(total / limit)),
        )

    def get_inventory_stats(self) -> InventoryStatsResponse:
        return self.repository.get_inventory_stats()
