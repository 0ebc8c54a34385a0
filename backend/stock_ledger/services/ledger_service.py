"""Stock transaction ledger.

Ledger invariants:
- Append-only: rows are inserted, never updated or deleted.
- ``apply()`` is the only place a StockItem quantity changes; it writes the
  new quantity and the matching row together, so ``balance_after`` always
  equals the post-mutation quantity.
- Opening stock is itself a row, so a StockItem's quantity equals the sum of
  the signed quantities of its rows (``replay_balance``).
- Callers run ``apply()`` inside an ``atomic()`` unit; the ledger never
  commits.
"""

import logging
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional, Union

from sqlalchemy import select
from sqlalchemy.orm import Session

from stock_ledger.core.config import settings
from stock_ledger.models.stock import (
    DeductionPolicy,
    OriginType,
    StockItem,
    StockTransaction,
    TransactionReason,
    TransactionType,
)
from stock_ledger.schemas.stock import ReconciliationLine, ReconciliationReport
from stock_ledger.services.stock_errors import (
    InsufficientStockError,
    InvalidAdjustmentError,
    StockItemNotFoundError,
)

logger = logging.getLogger(__name__)


def quantize(value: Union[Decimal, int, float, str]) -> Decimal:
    """Round to the stored precision of quantity and cost columns."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    exponent = Decimal(1).scaleb(-settings.quantity_decimal_places)
    return value.quantize(exponent, rounding=ROUND_HALF_UP)


class LedgerService:
    """Append and query stock transactions."""

    def __init__(self, db: Session):
        self.db = db

    def apply(
        self,
        item: StockItem,
        quantity_change: Decimal,
        tx_type: TransactionType,
        reason: TransactionReason,
        *,
        cost_per_unit: Optional[Decimal] = None,
        user_id: Optional[int] = None,
        order_id: Optional[str] = None,
        expense_id: Optional[str] = None,
        origin_type: Optional[OriginType] = None,
        origin_id: Optional[str] = None,
        deduction_policy: Optional[DeductionPolicy] = None,
        reversal_of_id: Optional[int] = None,
        notes: Optional[str] = None,
        date: Optional[datetime] = None,
    ) -> StockTransaction:
        """Change ``item.quantity`` by a signed amount and post the matching row.

        Raises InsufficientStockError (outflows) or InvalidAdjustmentError
        (everything else) if the result would be negative; nothing is changed
        in that case.
        """
        delta = quantize(quantity_change)
        current = quantize(item.quantity or 0)
        new_quantity = current + delta

        if new_quantity < 0:
            if tx_type is TransactionType.OUTFLOW:
                raise InsufficientStockError(
                    item.id, item.name, -delta, current, item.unit
                )
            raise InvalidAdjustmentError(
                f"Adjustment of {delta} {item.unit} would leave '{item.name}' at {new_quantity}",
                stock_item_id=item.id,
            )

        item.quantity = new_quantity

        cost = quantize(cost_per_unit) if cost_per_unit is not None else None
        total_cost = quantize(abs(delta) * cost) if cost is not None else None

        tx = StockTransaction(
            stock_item_id=item.id,
            type=tx_type.value,
            quantity=delta,
            reason=reason.value,
            cost_per_unit=cost,
            total_cost=total_cost,
            balance_after=new_quantity,
            user_id=user_id,
            order_id=order_id,
            expense_id=expense_id,
            origin_type=origin_type.value if origin_type else None,
            origin_id=origin_id,
            deduction_policy=deduction_policy.value if deduction_policy else None,
            reversal_of_id=reversal_of_id,
            notes=notes,
        )
        if date is not None:
            tx.date = date
        self.db.add(tx)
        return tx

    # ===== QUERIES =====

    def get_transaction_history(
        self,
        stock_item_id: Optional[int] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        tx_type: Optional[TransactionType] = None,
        limit: Optional[int] = None,
    ) -> List[StockTransaction]:
        """Newest-first ledger rows, optionally filtered."""
        stmt = select(StockTransaction)
        if stock_item_id is not None:
            stmt = stmt.where(StockTransaction.stock_item_id == stock_item_id)
        if start_date is not None:
            stmt = stmt.where(StockTransaction.date >= start_date)
        if end_date is not None:
            stmt = stmt.where(StockTransaction.date <= end_date)
        if tx_type is not None:
            stmt = stmt.where(StockTransaction.type == tx_type.value)

        stmt = stmt.order_by(StockTransaction.date.desc(), StockTransaction.id.desc())
        stmt = stmt.limit(limit or settings.transaction_history_limit)
        return list(self.db.scalars(stmt))

    def replay_balance(self, stock_item_id: int) -> Decimal:
        """Sum of the signed quantities of every row for an item."""
        quantities = self.db.scalars(
            select(StockTransaction.quantity).where(
                StockTransaction.stock_item_id == stock_item_id
            )
        )
        return sum((quantize(q) for q in quantities), Decimal("0"))

    def reconcile(self, stock_item_id: Optional[int] = None) -> ReconciliationReport:
        """Replay the ledger and compare it with live quantities."""
        item_stmt = select(StockItem).order_by(StockItem.id)
        if stock_item_id is not None:
            item_stmt = item_stmt.where(StockItem.id == stock_item_id)
        items = list(self.db.scalars(item_stmt))
        if stock_item_id is not None and not items:
            raise StockItemNotFoundError(stock_item_id)

        tx_stmt = select(
            StockTransaction.stock_item_id,
            StockTransaction.quantity,
            StockTransaction.balance_after,
        ).order_by(StockTransaction.id)
        if stock_item_id is not None:
            tx_stmt = tx_stmt.where(StockTransaction.stock_item_id == stock_item_id)

        sums: Dict[int, Decimal] = {}
        counts: Dict[int, int] = {}
        last_balance: Dict[int, Decimal] = {}
        for row in self.db.execute(tx_stmt):
            sums[row.stock_item_id] = sums.get(row.stock_item_id, Decimal("0")) + quantize(row.quantity)
            counts[row.stock_item_id] = counts.get(row.stock_item_id, 0) + 1
            last_balance[row.stock_item_id] = quantize(row.balance_after)

        lines = []
        for item in items:
            live = quantize(item.quantity)
            ledger_balance = sums.get(item.id, Decimal("0"))
            last = last_balance.get(item.id)
            consistent = live == ledger_balance and (last is None or last == live)
            if not consistent:
                logger.error(
                    f"Ledger mismatch for stock item {item.id} '{item.name}': "
                    f"live={live}, replayed={ledger_balance}, last balance_after={last}"
                )
            lines.append(ReconciliationLine(
                stock_item_id=item.id,
                name=item.name,
                live_quantity=live,
                ledger_balance=ledger_balance,
                last_balance_after=last,
                transaction_count=counts.get(item.id, 0),
                consistent=consistent,
            ))

        mismatches = sum(1 for line in lines if not line.consistent)
        return ReconciliationReport(items=lines, consistent=mismatches == 0, mismatches=mismatches)
