"""Stock Deduction Service - Deducts inventory for orders and bills.

Three deduction policies share one atomic shape:

- automatic: recipe-driven, run when an order is created. Each order line
  resolves through its menu item's recipe; only stock items whose
  deduction_type is ``automatic`` are consumed.
- manual: run when the bill of an order is finalized. Quantities were
  captured on the order lines (``stock_items_used``) at serving time; only
  ``manual`` usages are consumed, at the captured cost.
- direct_manual: reception-entered consumption keyed by bill.

Flow:
1. Resolve the input into consumption lines (stock item, quantity, unit, cost)
2. Lock every stock item touched, in ascending id order
3. Re-verify under the lock:
   - item exists and is active
   - quantity is valid, converted to the item's unit (g -> kg, ml -> liter)
   - aggregated requirement per item does not exceed quantity on hand
4. Post one outflow per consumption line through the ledger
5. Commit, or roll back the whole batch on the first failing check

A batch never partially succeeds: any failing line aborts it and the result
lists one error per failing line.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from stock_ledger.models.menu import MenuItem
from stock_ledger.models.stock import (
    DeductionPolicy,
    DeductionType,
    StockItem,
    TransactionReason,
    TransactionType,
)
from stock_ledger.schemas.stock import (
    DeductionLine,
    DeductionResult,
    LineError,
    ManualStockEntry,
    OrderLineInput,
    StockAdjustmentRequest,
    StockMutationResult,
    StockItemResponse,
    StockPurchaseRequest,
    StockTransactionResponse,
)
from stock_ledger.services.concurrency import lock_stock_items, stock_unit_of_work
from stock_ledger.services.ledger_service import LedgerService, quantize
from stock_ledger.services.stock_alert_service import build_stock_event
from stock_ledger.services.stock_errors import (
    ConcurrencyConflictError,
    InvalidAdjustmentError,
    StockError,
    StockItemInactiveError,
    StockItemNotFoundError,
)
from stock_ledger.services.unit_converter import convert_with_rule

logger = logging.getLogger(__name__)

ADJUSTMENT_REASONS = {
    TransactionReason.WASTE,
    TransactionReason.SPOILAGE,
    TransactionReason.THEFT,
    TransactionReason.EXPIRED,
    TransactionReason.DAMAGED,
    TransactionReason.MANUAL_ADJUSTMENT,
}


@dataclass
class Consumption:
    """One stock item consumed by one input line, before verification."""

    line: int
    stock_item_id: int
    quantity: Optional[Decimal]
    unit: Optional[str] = None  # None = already in the stock item's unit
    cost_per_unit: Optional[Decimal] = None  # None = current item cost
    menu_item_id: Optional[int] = None
    only_automatic: bool = False


class BatchAborted(Exception):
    """Internal signal: verification failed, roll the batch back."""

    def __init__(self, errors: List[LineError]):
        self.errors = errors
        super().__init__(f"{len(errors)} line(s) failed")


def line_error(exc: StockError, line: Optional[int] = None) -> LineError:
    return LineError(
        code=exc.code,
        message=str(exc),
        line=line,
        stock_item_id=getattr(exc, "stock_item_id", None),
        required=getattr(exc, "required", None),
        available=getattr(exc, "available", None),
    )


class StockDeductionService:
    """Service for deducting stock for orders and bills."""

    def __init__(self, db: Session):
        self.db = db
        self.ledger = LedgerService(db)

    # ===== CORE: BATCH DEDUCTION (ATOMIC) =====

    def deduct_automatic_for_order(
        self,
        order_id: str,
        order_lines: Sequence[OrderLineInput],
        user_id: Optional[int] = None,
    ) -> DeductionResult:
        """Deduct recipe ingredients for every active line of a new order."""
        order_lines = [OrderLineInput.model_validate(line) for line in order_lines]
        return self._run_batch(
            DeductionPolicy.AUTOMATIC,
            str(order_id),
            lambda: self._resolve_recipes(order_lines),
            user_id,
            note=f"Auto deduction on order creation for order {order_id}",
        )

    def deduct_manual_for_billing(
        self,
        order_id: str,
        order_lines: Sequence[OrderLineInput],
        user_id: Optional[int] = None,
    ) -> DeductionResult:
        """Deduct the manual stock usages captured on an order when it is billed."""
        order_lines = [OrderLineInput.model_validate(line) for line in order_lines]
        return self._run_batch(
            DeductionPolicy.MANUAL,
            str(order_id),
            lambda: (self._resolve_manual_usages(order_lines), []),
            user_id,
            note=f"Manual deduction on billing for order {order_id}",
        )

    def deduct_direct_manual_for_bill(
        self,
        bill_id: str,
        entries: Sequence[ManualStockEntry],
        user_id: Optional[int] = None,
    ) -> DeductionResult:
        """Deduct reception-entered consumption for a bill."""
        entries = [ManualStockEntry.model_validate(entry) for entry in entries]
        return self._run_batch(
            DeductionPolicy.DIRECT_MANUAL,
            str(bill_id),
            lambda: (self._resolve_direct_entries(entries), []),
            user_id,
            note=f"Direct manual deduction for bill {bill_id}",
        )

    def _run_batch(
        self,
        policy: DeductionPolicy,
        origin_id: str,
        resolve: Callable[[], Tuple[List[Consumption], List[LineError]]],
        user_id: Optional[int],
        note: str,
    ) -> DeductionResult:
        try:
            with stock_unit_of_work(self.db):
                consumptions, errors = resolve()
                if errors:
                    raise BatchAborted(errors)

                items = lock_stock_items(self.db, [c.stock_item_id for c in consumptions])
                planned = self._verify(consumptions, items)

                before = {item_id: items[item_id].quantity for item_id in {c.stock_item_id for c, _ in planned}}
                deductions: List[DeductionLine] = []
                transactions = []
                for consumption, quantity in planned:
                    item = items[consumption.stock_item_id]
                    cost = consumption.cost_per_unit
                    if cost is None:
                        cost = item.cost_per_unit
                    tx = self.ledger.apply(
                        item,
                        -quantity,
                        TransactionType.OUTFLOW,
                        TransactionReason.ORDER_DEDUCTION,
                        cost_per_unit=cost,
                        user_id=user_id,
                        order_id=origin_id if policy is not DeductionPolicy.DIRECT_MANUAL else None,
                        origin_type=policy.origin_type,
                        origin_id=origin_id,
                        deduction_policy=policy,
                        notes=note,
                    )
                    deductions.append(DeductionLine(
                        stock_item_id=item.id,
                        stock_name=item.name,
                        quantity=quantity,
                        unit=item.unit,
                        cost_per_unit=tx.cost_per_unit,
                        cost_of_goods_sold=tx.total_cost,
                        balance_after=tx.balance_after,
                        menu_item_id=consumption.menu_item_id,
                    ))
                    transactions.append(tx)

                self.db.flush()
                for line, tx in zip(deductions, transactions):
                    line.transaction_id = tx.id
                events = [build_stock_event(items[i], qty) for i, qty in sorted(before.items())]

        except BatchAborted as exc:
            logger.warning(
                f"{policy.value} stock deduction for {origin_id} aborted: "
                f"{[e.message for e in exc.errors]}"
            )
            return DeductionResult(
                success=False,
                message=f"Failed to deduct stock for {origin_id}; nothing was deducted",
                policy=policy,
                origin_id=origin_id,
                errors=exc.errors,
            )
        except ConcurrencyConflictError as exc:
            return DeductionResult(
                success=False,
                message=str(exc),
                policy=policy,
                origin_id=origin_id,
                errors=[line_error(exc)],
                retryable=True,
            )
        except StockError as exc:
            logger.warning(f"{policy.value} stock deduction for {origin_id} aborted: {exc}")
            return DeductionResult(
                success=False,
                message=str(exc),
                policy=policy,
                origin_id=origin_id,
                errors=[line_error(exc)],
            )
        except Exception as e:
            logger.error(f"Stock deduction failed for {origin_id}: {e}", exc_info=True)
            return DeductionResult(
                success=False,
                message=f"Error deducting stock: {e}",
                policy=policy,
                origin_id=origin_id,
                errors=[LineError(code="internal_error", message=str(e))],
            )

        total_cogs = sum((d.cost_of_goods_sold for d in deductions), Decimal("0"))
        logger.info(
            f"{policy.value} stock deduction for {origin_id}: "
            f"{len(deductions)} line(s), COGS {total_cogs}"
        )
        return DeductionResult(
            success=True,
            message=f"Successfully deducted {len(deductions)} stock item(s)",
            policy=policy,
            origin_id=origin_id,
            deductions=deductions,
            total_cogs=total_cogs,
            events=events,
        )

    def _verify(
        self,
        consumptions: List[Consumption],
        items: Dict[int, StockItem],
    ) -> List[Tuple[Consumption, Decimal]]:
        """Check every consumption against the locked rows.

        Returns the consumptions that will be posted with their quantity in
        the item's unit. Raises BatchAborted with one error per failing line.
        """
        errors: List[LineError] = []
        planned: List[Tuple[Consumption, Decimal]] = []
        required: Dict[int, Decimal] = {}
        first_line: Dict[int, int] = {}

        for c in consumptions:
            item = items.get(c.stock_item_id)
            if item is None:
                errors.append(line_error(StockItemNotFoundError(c.stock_item_id), c.line))
                continue
            if c.only_automatic and item.deduction_type != DeductionType.AUTOMATIC.value:
                continue
            if not item.is_active:
                errors.append(line_error(StockItemInactiveError(item.id, item.name), c.line))
                continue
            if c.quantity is None or c.quantity < 0:
                errors.append(LineError(
                    code="invalid_quantity",
                    message=f"Invalid quantity {c.quantity} for '{item.name}'",
                    line=c.line,
                    stock_item_id=item.id,
                ))
                continue

            converted, _ = convert_with_rule(c.quantity, c.unit or item.unit, item.unit)
            quantity = quantize(converted)
            if quantity == 0:
                if c.quantity > 0:
                    errors.append(LineError(
                        code="invalid_quantity",
                        message=(
                            f"Quantity {c.quantity} {c.unit or item.unit} of '{item.name}' "
                            f"is below the stored precision in {item.unit}"
                        ),
                        line=c.line,
                        stock_item_id=item.id,
                    ))
                continue

            planned.append((c, quantity))
            required[item.id] = required.get(item.id, Decimal("0")) + quantity
            first_line.setdefault(item.id, c.line)

        for item_id, total in sorted(required.items()):
            item = items[item_id]
            if total > item.quantity:
                errors.append(LineError(
                    code="insufficient_stock",
                    message=(
                        f"Insufficient stock for {item.name}. Required: {total} {item.unit}, "
                        f"Available: {item.quantity} {item.unit}"
                    ),
                    line=first_line[item_id],
                    stock_item_id=item_id,
                    required=total,
                    available=item.quantity,
                ))

        if errors:
            raise BatchAborted(errors)
        return planned

    # ===== INPUT RESOLUTION =====

    def _resolve_recipes(
        self, order_lines: Sequence[OrderLineInput]
    ) -> Tuple[List[Consumption], List[LineError]]:
        """Expand active order lines through menu item recipes."""
        active = [(i, line) for i, line in enumerate(order_lines) if line.status != "cancelled"]
        menu_ids = {line.menu_item_id for _, line in active}
        menu_items = {}
        if menu_ids:
            menu_items = {
                m.id: m
                for m in self.db.scalars(
                    select(MenuItem)
                    .where(MenuItem.id.in_(menu_ids))
                    .options(selectinload(MenuItem.recipe))
                )
            }

        consumptions: List[Consumption] = []
        errors: List[LineError] = []
        for index, line in active:
            menu_item = menu_items.get(line.menu_item_id)
            if menu_item is None:
                errors.append(LineError(
                    code="not_found",
                    message=f"Menu item {line.menu_item_id} not found",
                    line=index,
                ))
                continue
            if not menu_item.track_stock or not menu_item.recipe:
                continue
            for recipe_item in menu_item.recipe:
                consumptions.append(Consumption(
                    line=index,
                    stock_item_id=recipe_item.stock_item_id,
                    quantity=recipe_item.quantity * line.quantity,
                    unit=recipe_item.unit,
                    menu_item_id=menu_item.id,
                    only_automatic=True,
                ))
        return consumptions, errors

    @staticmethod
    def _resolve_manual_usages(order_lines: Sequence[OrderLineInput]) -> List[Consumption]:
        consumptions = []
        for index, line in enumerate(order_lines):
            if line.status == "cancelled":
                continue
            for usage in line.stock_items_used:
                # Automatic items were deducted when the order was created
                if usage.deduction_type != DeductionType.MANUAL:
                    continue
                consumptions.append(Consumption(
                    line=index,
                    stock_item_id=usage.stock_item_id,
                    quantity=usage.quantity_used,
                    unit=usage.unit,
                    cost_per_unit=usage.cost_per_unit,
                    menu_item_id=line.menu_item_id,
                ))
        return consumptions

    @staticmethod
    def _resolve_direct_entries(entries: Sequence[ManualStockEntry]) -> List[Consumption]:
        consumptions = []
        for index, entry in enumerate(entries):
            if entry.stock_item_id is None or entry.quantity_used is None or entry.quantity_used <= 0:
                logger.debug(f"Skipping incomplete manual stock entry {index}: {entry}")
                continue
            consumptions.append(Consumption(
                line=index,
                stock_item_id=entry.stock_item_id,
                quantity=entry.quantity_used,
                unit=entry.unit,
            ))
        return consumptions

    # ===== SINGLE-ITEM MUTATIONS =====

    def add_stock(
        self,
        request: StockPurchaseRequest,
        user_id: Optional[int] = None,
    ) -> StockMutationResult:
        """Receive a purchase. The item's cost becomes the latest purchase cost."""
        with stock_unit_of_work(self.db):
            item, before = self._lock_one(request.stock_item_id, require_active=False)
            item.cost_per_unit = quantize(request.cost_per_unit)
            tx = self.ledger.apply(
                item,
                request.quantity,
                TransactionType.INFLOW,
                TransactionReason.PURCHASE,
                cost_per_unit=request.cost_per_unit,
                user_id=user_id,
                expense_id=request.expense_id,
                notes=request.notes or "Stock purchase",
            )
            result = self._mutation_result(item, tx, before)

        logger.info(
            f"Added {request.quantity} {item.unit} of {item.name} "
            f"at {request.cost_per_unit}/{item.unit}"
        )
        return result

    def adjust_stock(
        self,
        request: StockAdjustmentRequest,
        user_id: Optional[int] = None,
    ) -> StockMutationResult:
        """Signed correction (waste, spoilage, theft, count corrections)."""
        if request.reason not in ADJUSTMENT_REASONS:
            raise InvalidAdjustmentError(
                f"'{request.reason.value}' is not an adjustment reason",
                stock_item_id=request.stock_item_id,
            )
        if request.quantity_change == 0:
            raise InvalidAdjustmentError(
                "Adjustment quantity must not be zero", stock_item_id=request.stock_item_id
            )

        with stock_unit_of_work(self.db):
            item, before = self._lock_one(request.stock_item_id, require_active=False)
            tx = self.ledger.apply(
                item,
                request.quantity_change,
                TransactionType.ADJUSTMENT,
                request.reason,
                cost_per_unit=item.cost_per_unit,
                user_id=user_id,
                notes=request.notes,
            )
            result = self._mutation_result(item, tx, before)

        logger.info(
            f"Adjusted {item.name} by {request.quantity_change} {item.unit} "
            f"({request.reason.value}), new balance {result.stock_item.quantity}"
        )
        return result

    def set_stock_level(
        self,
        stock_item_id: int,
        counted_quantity: Decimal,
        user_id: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> Optional[StockMutationResult]:
        """Record a physical count as a signed manual adjustment.

        Returns None when the count matches the current quantity.
        """
        if counted_quantity < 0:
            raise InvalidAdjustmentError(
                f"Counted quantity cannot be negative: {counted_quantity}",
                stock_item_id=stock_item_id,
            )

        with stock_unit_of_work(self.db):
            item, before = self._lock_one(stock_item_id, require_active=False)
            delta = quantize(counted_quantity) - quantize(item.quantity)
            if delta == 0:
                return None
            tx = self.ledger.apply(
                item,
                delta,
                TransactionType.ADJUSTMENT,
                TransactionReason.MANUAL_ADJUSTMENT,
                cost_per_unit=item.cost_per_unit,
                user_id=user_id,
                notes=notes or f"Stock count: {counted_quantity} {item.unit}",
            )
            result = self._mutation_result(item, tx, before)

        logger.info(f"Stock count for {item.name}: {before} -> {counted_quantity} {item.unit}")
        return result

    def deduct_stock(
        self,
        stock_item_id: int,
        quantity: Decimal,
        user_id: Optional[int] = None,
        order_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> StockMutationResult:
        """Single outflow; raises InsufficientStockError instead of going negative."""
        if quantity <= 0:
            raise InvalidAdjustmentError(
                f"Deduction quantity must be positive, got {quantity}",
                stock_item_id=stock_item_id,
            )

        with stock_unit_of_work(self.db):
            item, before = self._lock_one(stock_item_id, require_active=True)
            tx = self.ledger.apply(
                item,
                -quantity,
                TransactionType.OUTFLOW,
                TransactionReason.ORDER_DEDUCTION,
                cost_per_unit=item.cost_per_unit,
                user_id=user_id,
                order_id=order_id,
                notes=notes,
            )
            result = self._mutation_result(item, tx, before)

        logger.info(f"Deducted {quantity} {item.unit} of {item.name}")
        return result

    def _lock_one(self, stock_item_id: int, require_active: bool) -> Tuple[StockItem, Decimal]:
        item = lock_stock_items(self.db, [stock_item_id]).get(stock_item_id)
        if item is None:
            raise StockItemNotFoundError(stock_item_id)
        if require_active and not item.is_active:
            raise StockItemInactiveError(item.id, item.name)
        return item, item.quantity

    def _mutation_result(self, item: StockItem, tx, quantity_before: Decimal) -> StockMutationResult:
        self.db.flush()
        return StockMutationResult(
            stock_item=StockItemResponse.model_validate(item),
            transaction=StockTransactionResponse.model_validate(tx),
            event=build_stock_event(item, quantity_before),
        )


def get_stock_deduction_service(db: Session) -> StockDeductionService:
    """Factory function to get stock deduction service."""
    return StockDeductionService(db)
