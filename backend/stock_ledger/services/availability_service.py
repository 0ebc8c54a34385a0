"""Availability checks ahead of stock deduction.

Everything here is read-only and advisory: the deduction orchestrator always
re-verifies under row locks and never trusts an earlier check.
"""

import logging
from decimal import Decimal
from typing import Dict, Iterable, List, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from stock_ledger.models.menu import MenuItem
from stock_ledger.models.stock import DeductionType, StockItem
from stock_ledger.schemas.stock import (
    AvailabilityResult,
    MissingStockItem,
    OrderLineInput,
    Shortfall,
    StockRequest,
)
from stock_ledger.services.ledger_service import quantize
from stock_ledger.services.stock_errors import MenuItemNotFoundError
from stock_ledger.services.unit_converter import convert

logger = logging.getLogger(__name__)


class AvailabilityService:
    """Compare requested quantities with stock on hand."""

    def __init__(self, db: Session):
        self.db = db

    def check_availability(self, requests: Iterable[StockRequest]) -> AvailabilityResult:
        """Aggregate requests per stock item and report shortfalls.

        Missing or inactive items are reported under ``missing``, separately
        from ordinary shortfalls.
        """
        requirements: Dict[int, Decimal] = {}
        for request in (StockRequest.model_validate(r) for r in requests):
            requirements[request.stock_item_id] = (
                requirements.get(request.stock_item_id, Decimal("0")) + quantize(request.quantity)
            )
        if not requirements:
            return AvailabilityResult(available=True)

        items = {
            item.id: item
            for item in self.db.scalars(
                select(StockItem).where(StockItem.id.in_(requirements.keys()))
            )
        }

        shortfalls: List[Shortfall] = []
        missing: List[MissingStockItem] = []
        for stock_item_id, required in sorted(requirements.items()):
            item = items.get(stock_item_id)
            if item is None:
                missing.append(MissingStockItem(stock_item_id=stock_item_id, reason="not_found"))
            elif not item.is_active:
                missing.append(MissingStockItem(stock_item_id=stock_item_id, reason="inactive"))
            elif required > item.quantity:
                shortfalls.append(Shortfall(
                    stock_item_id=item.id,
                    name=item.name,
                    unit=item.unit,
                    required=required,
                    available=item.quantity,
                ))

        if missing:
            logger.warning(f"Availability check references unusable stock items: {missing}")

        return AvailabilityResult(
            available=not shortfalls and not missing,
            shortfalls=shortfalls,
            missing=missing,
            requirements=requirements,
        )

    def check_order_availability(self, order_lines: Sequence[OrderLineInput]) -> AvailabilityResult:
        """Pre-check an order's automatic recipe consumption.

        Lines are resolved the same way automatic deduction resolves them.
        Raises MenuItemNotFoundError for an unknown menu item.
        """
        order_lines = [OrderLineInput.model_validate(line) for line in order_lines]
        active = [line for line in order_lines if line.status != "cancelled"]
        menu_ids = {line.menu_item_id for line in active}
        menu_items = {
            m.id: m
            for m in self.db.scalars(
                select(MenuItem)
                .where(MenuItem.id.in_(menu_ids))
                .options(selectinload(MenuItem.recipe))
            )
        } if menu_ids else {}

        requests: List[StockRequest] = []
        for line in active:
            menu_item = menu_items.get(line.menu_item_id)
            if menu_item is None:
                raise MenuItemNotFoundError(line.menu_item_id)
            if not menu_item.track_stock:
                continue
            for recipe_item in menu_item.recipe:
                stock_item = recipe_item.stock_item
                if stock_item is not None and stock_item.deduction_type != DeductionType.AUTOMATIC.value:
                    continue
                quantity = recipe_item.quantity * line.quantity
                if stock_item is not None and recipe_item.unit:
                    quantity = convert(quantity, recipe_item.unit, stock_item.unit)
                requests.append(StockRequest(stock_item_id=recipe_item.stock_item_id, quantity=quantity))

        return self.check_availability(requests)

    @staticmethod
    def validate_manual_quantities(order_lines: Sequence[OrderLineInput]) -> Dict[str, object]:
        """List manual usages on active lines that have no positive quantity."""
        missing_items = []
        for line in (OrderLineInput.model_validate(l) for l in order_lines):
            if line.status == "cancelled":
                continue
            for usage in line.stock_items_used:
                if usage.deduction_type != DeductionType.MANUAL:
                    continue
                if usage.quantity_used is None or usage.quantity_used <= 0:
                    missing_items.append(
                        f"Missing quantity for manual stock item {usage.stock_item_id}"
                    )
        return {"valid": not missing_items, "missing_items": missing_items}
