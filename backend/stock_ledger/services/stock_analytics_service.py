"""Stock analytics - valuation, low stock, expiry, usage and reorder suggestions.

All methods are read-only. Usage figures come from ledger rows only, never
from current quantities.
"""

import logging
import math
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import exists, func, select
from sqlalchemy.orm import Session, aliased

from stock_ledger.core.config import settings
from stock_ledger.models.stock import (
    StockItem,
    StockStatus,
    StockTransaction,
    TransactionReason,
    TransactionType,
)
from stock_ledger.schemas.stock import (
    DashboardSummary,
    ExpiringItem,
    LowStockItem,
    ReorderSuggestion,
    UsageReport,
    UsageStat,
    ValuationReport,
)
from stock_ledger.services.ledger_service import quantize

logger = logging.getLogger(__name__)


class StockAnalyticsService:
    """Reporting over the stock registry and ledger."""

    def __init__(self, db: Session):
        self.db = db

    def _active_items(self) -> List[StockItem]:
        return list(self.db.scalars(
            select(StockItem)
            .where(StockItem.status == StockStatus.ACTIVE.value)
            .order_by(StockItem.name)
        ))

    # ===== VALUATION =====

    def get_valuation(self) -> ValuationReport:
        """Total quantity x cost over active items, with per-category breakdown."""
        items = self._active_items()
        breakdown: Dict[str, Decimal] = {}
        for item in items:
            breakdown[item.category] = breakdown.get(item.category, Decimal("0")) + item.total_value

        breakdown = {category: quantize(value) for category, value in sorted(breakdown.items())}
        return ValuationReport(
            total_value=quantize(sum(breakdown.values(), Decimal("0"))),
            total_items=len(items),
            category_breakdown=breakdown,
        )

    # ===== LOW STOCK / EXPIRY =====

    def get_low_stock_items(self) -> List[LowStockItem]:
        return [
            LowStockItem(
                stock_item_id=item.id,
                name=item.name,
                category=item.category,
                unit=item.unit,
                quantity=item.quantity,
                min_threshold=item.min_threshold,
                deficit=item.min_threshold - item.quantity,
            )
            for item in self._active_items()
            if item.is_low_stock
        ]

    def get_expiring_items(
        self,
        days_ahead: Optional[int] = None,
        today: Optional[date] = None,
    ) -> List[ExpiringItem]:
        """Active items expiring within the horizon; already-expired items are included."""
        today = today or date.today()
        horizon = today + timedelta(days=settings.expiring_soon_days if days_ahead is None else days_ahead)

        items = self.db.scalars(
            select(StockItem)
            .where(
                StockItem.status == StockStatus.ACTIVE.value,
                StockItem.expiration_date.is_not(None),
                StockItem.expiration_date <= horizon,
            )
            .order_by(StockItem.expiration_date, StockItem.name)
        )
        return [
            ExpiringItem(
                stock_item_id=item.id,
                name=item.name,
                unit=item.unit,
                quantity=item.quantity,
                expiration_date=item.expiration_date,
                days_until_expiry=(item.expiration_date - today).days,
                is_expired=item.is_expired(today),
            )
            for item in items
        ]

    # ===== USAGE =====

    def get_usage_statistics(self, start: datetime, end: datetime) -> UsageReport:
        """Per-item outflow and returns between two instants, from ledger rows."""
        stmt = (
            select(
                StockTransaction.stock_item_id,
                StockTransaction.type,
                StockTransaction.reason,
                func.sum(StockTransaction.quantity).label("quantity"),
                func.sum(StockTransaction.total_cost).label("cost"),
                func.count(StockTransaction.id).label("count"),
            )
            .where(
                StockTransaction.date >= start,
                StockTransaction.date <= end,
                (StockTransaction.type == TransactionType.OUTFLOW.value)
                | (StockTransaction.reason == TransactionReason.RETURN.value),
            )
            .group_by(StockTransaction.stock_item_id, StockTransaction.type, StockTransaction.reason)
        )
        rows = self.db.execute(stmt).all()

        item_ids = {row.stock_item_id for row in rows}
        items = {
            item.id: item
            for item in self.db.scalars(select(StockItem).where(StockItem.id.in_(item_ids)))
        } if item_ids else {}

        stats: Dict[int, Dict[str, Decimal]] = {}
        for row in rows:
            if row.stock_item_id not in items:
                logger.debug(f"Skipping usage for vanished stock item {row.stock_item_id}")
                continue
            entry = stats.setdefault(row.stock_item_id, {
                "outflow": Decimal("0"), "cost": Decimal("0"), "returned": Decimal("0"), "count": 0,
            })
            quantity = quantize(abs(row.quantity or 0))
            if row.type == TransactionType.OUTFLOW.value:
                entry["outflow"] += quantity
                entry["cost"] += quantize(row.cost or 0)
            else:
                entry["returned"] += quantity
            entry["count"] += row.count

        usage = []
        for stock_item_id, entry in stats.items():
            item = items[stock_item_id]
            usage.append(UsageStat(
                stock_item_id=stock_item_id,
                name=item.name,
                unit=item.unit,
                total_outflow=entry["outflow"],
                total_outflow_cost=entry["cost"],
                total_returned=entry["returned"],
                net_usage=entry["outflow"] - entry["returned"],
                transaction_count=entry["count"],
            ))
        usage.sort(key=lambda s: s.total_outflow, reverse=True)

        return UsageReport(
            start=start,
            end=end,
            items=usage,
            total_cost=sum((s.total_outflow_cost for s in usage), Decimal("0")),
        )

    # ===== REORDER =====

    def get_reorder_suggestions(
        self,
        days_back: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> List[ReorderSuggestion]:
        """
        Suggest purchases from trailing average daily usage.

        - avg_daily_usage = un-reversed outflow over the window / days_back
        - suggest when days remaining < reorder_min_days_of_stock, or at/below threshold
        - suggested quantity = ceil(avg_daily_usage x reorder_supply_days)
        - priority high when at/below threshold, else medium
        """
        days_back = days_back or settings.reorder_lookback_days
        now = now or datetime.now(timezone.utc)
        start = now - timedelta(days=days_back)

        compensation = aliased(StockTransaction)
        usage_rows = self.db.execute(
            select(
                StockTransaction.stock_item_id,
                func.sum(StockTransaction.quantity).label("quantity"),
            )
            .where(
                StockTransaction.type == TransactionType.OUTFLOW.value,
                StockTransaction.date >= start,
                ~exists().where(compensation.reversal_of_id == StockTransaction.id),
            )
            .group_by(StockTransaction.stock_item_id)
        ).all()
        used = {row.stock_item_id: quantize(abs(row.quantity or 0)) for row in usage_rows}

        suggestions = []
        for item in self._active_items():
            avg_daily = used.get(item.id, Decimal("0")) / Decimal(days_back)
            days_remaining = quantize(item.quantity / avg_daily) if avg_daily > 0 else None
            at_threshold = item.quantity <= item.min_threshold

            running_out = days_remaining is not None and days_remaining < settings.reorder_min_days_of_stock
            if not (running_out or at_threshold):
                continue

            suggested = Decimal(math.ceil(avg_daily * settings.reorder_supply_days))
            if suggested == 0 and at_threshold:
                # No recent usage: bring the item back up to its threshold
                suggested = max(item.min_threshold - item.quantity, Decimal("0"))

            suggestions.append(ReorderSuggestion(
                stock_item_id=item.id,
                name=item.name,
                unit=item.unit,
                current_quantity=item.quantity,
                min_threshold=item.min_threshold,
                avg_daily_usage=quantize(avg_daily),
                days_remaining=days_remaining,
                suggested_order_quantity=suggested,
                priority="high" if at_threshold else "medium",
            ))

        suggestions.sort(key=lambda s: (
            s.priority != "high",
            s.days_remaining is None,
            s.days_remaining or Decimal("0"),
        ))
        return suggestions

    # ===== DASHBOARD =====

    def get_dashboard_summary(self, today: Optional[date] = None) -> DashboardSummary:
        items = self._active_items()
        valuation = self.get_valuation()

        category_counts: Dict[str, int] = {}
        for item in items:
            category_counts[item.category] = category_counts.get(item.category, 0) + 1

        return DashboardSummary(
            total_items=len(items),
            low_stock_count=sum(1 for item in items if item.is_low_stock),
            expiring_count=len(self.get_expiring_items(today=today)),
            total_valuation=valuation.total_value,
            category_breakdown=valuation.category_breakdown,
            category_counts=dict(sorted(category_counts.items())),
        )
