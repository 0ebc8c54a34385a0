"""Stock Reversal Service - Compensates earlier deductions.

Reversal never edits or deletes ledger rows. For every un-reversed outflow
posted under an origin key ``(origin_type, origin_id, deduction_policy)`` it
adds the quantity back and posts an inflow/return row pointing at the
outflow through ``reversal_of_id``. A second reversal of the same origin
therefore finds nothing and fails without writing.
"""

import logging
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import exists, select
from sqlalchemy.orm import Session, aliased

from stock_ledger.models.stock import (
    DeductionPolicy,
    StockTransaction,
    TransactionReason,
    TransactionType,
)
from stock_ledger.schemas.stock import DeductionLine, LineError, ReversalResult
from stock_ledger.services.concurrency import lock_stock_items, stock_unit_of_work
from stock_ledger.services.ledger_service import LedgerService
from stock_ledger.services.stock_alert_service import build_stock_event
from stock_ledger.services.stock_errors import (
    ConcurrencyConflictError,
    NoMatchingLedgerEntriesError,
    StockError,
    StockItemNotFoundError,
)

logger = logging.getLogger(__name__)

REVERSAL_NOTES = {
    DeductionPolicy.AUTOMATIC: "Reversed auto deduction for order {origin_id}",
    DeductionPolicy.MANUAL: "Reversed manual deduction for order {origin_id}",
    DeductionPolicy.DIRECT_MANUAL: "Reversed direct manual deduction for bill {origin_id}",
}


class StockReversalService:
    """Reverse all deductions of one policy for one order or bill."""

    def __init__(self, db: Session):
        self.db = db
        self.ledger = LedgerService(db)

    def find_reversible(self, origin_id: str, policy: DeductionPolicy) -> List[StockTransaction]:
        """Outflows posted under the origin key that no return row compensates yet."""
        compensation = aliased(StockTransaction)
        already_reversed = exists().where(compensation.reversal_of_id == StockTransaction.id)
        stmt = (
            select(StockTransaction)
            .where(
                StockTransaction.origin_type == policy.origin_type.value,
                StockTransaction.origin_id == str(origin_id),
                StockTransaction.deduction_policy == policy.value,
                StockTransaction.type == TransactionType.OUTFLOW.value,
                StockTransaction.reason == TransactionReason.ORDER_DEDUCTION.value,
                ~already_reversed,
            )
            .order_by(StockTransaction.id)
        )
        return list(self.db.scalars(stmt))

    def reverse(
        self,
        origin_id: str,
        policy: DeductionPolicy,
        user_id: Optional[int] = None,
    ) -> ReversalResult:
        origin_id = str(origin_id)
        try:
            with stock_unit_of_work(self.db):
                candidates = self.find_reversible(origin_id, policy)
                if not candidates:
                    raise NoMatchingLedgerEntriesError(origin_id, policy.value)

                items = lock_stock_items(self.db, [tx.stock_item_id for tx in candidates])
                # Re-read under the lock so a concurrent reversal cannot double-compensate
                rows = self.find_reversible(origin_id, policy)
                if not rows:
                    raise NoMatchingLedgerEntriesError(origin_id, policy.value)

                before = {}
                reversed_lines: List[DeductionLine] = []
                returns = []
                for row in rows:
                    item = items.get(row.stock_item_id)
                    if item is None:
                        raise StockItemNotFoundError(row.stock_item_id)
                    before.setdefault(item.id, item.quantity)

                    quantity = abs(row.quantity)
                    cost = row.cost_per_unit if row.cost_per_unit is not None else item.cost_per_unit
                    tx = self.ledger.apply(
                        item,
                        quantity,
                        TransactionType.INFLOW,
                        TransactionReason.RETURN,
                        cost_per_unit=cost,
                        user_id=user_id,
                        order_id=row.order_id,
                        origin_type=policy.origin_type,
                        origin_id=origin_id,
                        deduction_policy=policy,
                        reversal_of_id=row.id,
                        notes=REVERSAL_NOTES[policy].format(origin_id=origin_id),
                    )
                    returns.append(tx)
                    reversed_lines.append(DeductionLine(
                        stock_item_id=item.id,
                        stock_name=item.name,
                        quantity=quantity,
                        unit=item.unit,
                        cost_per_unit=tx.cost_per_unit,
                        cost_of_goods_sold=tx.total_cost,
                        balance_after=tx.balance_after,
                    ))

                self.db.flush()
                for line, tx in zip(reversed_lines, returns):
                    line.transaction_id = tx.id
                events = [build_stock_event(items[i], qty) for i, qty in sorted(before.items())]

        except ConcurrencyConflictError as exc:
            return ReversalResult(
                success=False,
                message=str(exc),
                policy=policy,
                origin_id=origin_id,
                errors=[LineError(code=exc.code, message=str(exc))],
                retryable=True,
            )
        except StockError as exc:
            logger.warning(f"{policy.value} stock reversal for {origin_id} aborted: {exc}")
            return ReversalResult(
                success=False,
                message=str(exc),
                policy=policy,
                origin_id=origin_id,
                errors=[LineError(
                    code=exc.code,
                    message=str(exc),
                    stock_item_id=getattr(exc, "stock_item_id", None),
                )],
            )
        except Exception as e:
            logger.error(f"Stock reversal failed for {origin_id}: {e}", exc_info=True)
            return ReversalResult(
                success=False,
                message=f"Error reversing stock deduction: {e}",
                policy=policy,
                origin_id=origin_id,
                errors=[LineError(code="internal_error", message=str(e))],
            )

        total_cogs = sum((line.cost_of_goods_sold for line in reversed_lines), Decimal("0"))
        logger.info(
            f"Reversed {len(reversed_lines)} {policy.value} stock deduction(s) for {origin_id}"
        )
        return ReversalResult(
            success=True,
            message=f"Successfully reversed {len(reversed_lines)} {policy.value} stock deduction(s)",
            policy=policy,
            origin_id=origin_id,
            reversed=reversed_lines,
            total_cogs=total_cogs,
            events=events,
        )

    def reverse_automatic_for_order(self, order_id: str, user_id: Optional[int] = None) -> ReversalResult:
        return self.reverse(order_id, DeductionPolicy.AUTOMATIC, user_id)

    def reverse_manual_for_order(self, order_id: str, user_id: Optional[int] = None) -> ReversalResult:
        return self.reverse(order_id, DeductionPolicy.MANUAL, user_id)

    def reverse_direct_manual_for_bill(self, bill_id: str, user_id: Optional[int] = None) -> ReversalResult:
        return self.reverse(bill_id, DeductionPolicy.DIRECT_MANUAL, user_id)
