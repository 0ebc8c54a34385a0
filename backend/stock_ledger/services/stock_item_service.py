"""Stock item registry - create, look up, describe and (de)activate items.

Quantities are never written here except for the opening stock of a new
item, which goes through the ledger like every other change.
"""

import logging
import math
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from stock_ledger.models.stock import (
    StockCategory,
    StockItem,
    StockStatus,
    TransactionReason,
    TransactionType,
)
from stock_ledger.schemas.stock import (
    StockItemCreate,
    StockItemPage,
    StockItemResponse,
    StockItemUpdate,
)
from stock_ledger.services.concurrency import stock_unit_of_work
from stock_ledger.services.ledger_service import LedgerService, quantize
from stock_ledger.services.stock_errors import StockItemNotFoundError

logger = logging.getLogger(__name__)

SORTABLE_FIELDS = {
    "name": StockItem.name,
    "category": StockItem.category,
    "quantity": StockItem.quantity,
    "cost_per_unit": StockItem.cost_per_unit,
    "expiration_date": StockItem.expiration_date,
    "created_at": StockItem.created_at,
}

REQUIRED_FIELDS = {"name", "category", "cost_per_unit", "min_threshold", "deduction_type"}


class StockItemService:
    """Registry of stock items."""

    def __init__(self, db: Session):
        self.db = db
        self.ledger = LedgerService(db)

    def create_stock_item(self, data: StockItemCreate, user_id: Optional[int] = None) -> StockItem:
        """Create an item; opening quantity is posted as initial_stock."""
        with stock_unit_of_work(self.db):
            item = StockItem(
                name=data.name.strip(),
                category=data.category.value,
                unit=data.unit.value,
                quantity=Decimal("0"),
                cost_per_unit=quantize(data.cost_per_unit),
                min_threshold=quantize(data.min_threshold),
                expiration_date=data.expiration_date,
                deduction_type=data.deduction_type.value,
                status=StockStatus.ACTIVE.value,
                sku=data.sku,
                description=data.description,
            )
            self.db.add(item)
            self.db.flush()

            if data.quantity > 0:
                self.ledger.apply(
                    item,
                    data.quantity,
                    TransactionType.INFLOW,
                    TransactionReason.INITIAL_STOCK,
                    cost_per_unit=item.cost_per_unit,
                    user_id=user_id,
                    notes="Opening stock",
                )

        logger.info(
            f"Created stock item {item.id} '{item.name}' with {item.quantity} {item.unit}"
        )
        return item

    def get_stock_item(self, stock_item_id: int) -> StockItem:
        item = self.db.get(StockItem, stock_item_id)
        if item is None:
            raise StockItemNotFoundError(stock_item_id)
        return item

    def list_stock_items(
        self,
        search: Optional[str] = None,
        category: Optional[StockCategory] = None,
        low_stock_only: bool = False,
        include_inactive: bool = False,
        page: int = 1,
        page_size: int = 50,
        sort_by: str = "name",
        sort_desc: bool = False,
    ) -> StockItemPage:
        """Paginated item listing with search, category and low-stock filters."""
        page = max(page, 1)
        page_size = max(min(page_size, 500), 1)

        stmt = select(StockItem)
        if not include_inactive:
            stmt = stmt.where(StockItem.status == StockStatus.ACTIVE.value)
        if search:
            pattern = f"%{search.strip()}%"
            stmt = stmt.where(or_(
                StockItem.name.ilike(pattern),
                StockItem.sku.ilike(pattern),
                StockItem.description.ilike(pattern),
            ))
        if category is not None:
            stmt = stmt.where(StockItem.category == category.value)
        if low_stock_only:
            stmt = stmt.where(StockItem.quantity <= StockItem.min_threshold)

        total = self.db.scalar(select(func.count()).select_from(stmt.subquery())) or 0

        column = SORTABLE_FIELDS.get(sort_by, StockItem.name)
        stmt = stmt.order_by(column.desc() if sort_desc else column.asc(), StockItem.id)
        stmt = stmt.offset((page - 1) * page_size).limit(page_size)

        items = [StockItemResponse.model_validate(i) for i in self.db.scalars(stmt)]
        return StockItemPage(
            items=items,
            page=page,
            page_size=page_size,
            total=total,
            total_pages=math.ceil(total / page_size) if total else 0,
        )

    def update_stock_item(self, stock_item_id: int, data: StockItemUpdate) -> StockItem:
        """Update descriptive fields. Quantity is not accepted here."""
        changes = data.model_dump(exclude_unset=True)
        with stock_unit_of_work(self.db):
            item = self.get_stock_item(stock_item_id)
            for field, value in changes.items():
                if value is None and field in REQUIRED_FIELDS:
                    continue
                if hasattr(value, "value"):
                    value = value.value
                if field in ("cost_per_unit", "min_threshold") and value is not None:
                    value = quantize(value)
                setattr(item, field, value)

        logger.info(f"Updated stock item {stock_item_id}: {sorted(changes)}")
        return item

    def deactivate_stock_item(self, stock_item_id: int) -> StockItem:
        """Soft delete; history stays untouched and the item leaves analytics."""
        return self._set_status(stock_item_id, StockStatus.INACTIVE)

    def reactivate_stock_item(self, stock_item_id: int) -> StockItem:
        return self._set_status(stock_item_id, StockStatus.ACTIVE)

    def _set_status(self, stock_item_id: int, status: StockStatus) -> StockItem:
        with stock_unit_of_work(self.db):
            item = self.get_stock_item(stock_item_id)
            item.status = status.value
        logger.info(f"Stock item {stock_item_id} is now {status.value}")
        return item
