"""Stock Alert Service - Stock events and dashboard alerts.

Two concerns live here:
- ``build_stock_event`` turns a committed mutation into the StockEvent a
  notification channel consumes (the engine itself performs no I/O).
- ``StockAlertService.get_alerts`` scans active items for out-of-stock, low
  stock, expiring soon and expired conditions.

Usage:
    from stock_ledger.services.stock_alert_service import StockAlertService

    summary = StockAlertService.get_alerts(db, severity="critical")
"""

import logging
from datetime import date, timedelta
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from stock_ledger.core.config import settings
from stock_ledger.models.stock import StockItem, StockStatus
from stock_ledger.schemas.stock import StockAlert, StockAlertSummary, StockEvent

logger = logging.getLogger(__name__)

SEVERITY_ORDER = {"critical": 0, "warning": 1, "info": 2}


def crossed_low_stock_threshold(before: Decimal, after: Decimal, threshold: Decimal) -> bool:
    """True when a quantity moved from above the threshold to at or below it."""
    return before > threshold and after <= threshold


def build_stock_event(item: StockItem, quantity_before: Decimal) -> StockEvent:
    event = StockEvent(
        stock_item_id=item.id,
        name=item.name,
        new_quantity=item.quantity,
        min_threshold=item.min_threshold,
        is_low_stock=item.is_low_stock,
        crossed_low_stock_threshold=crossed_low_stock_threshold(
            quantity_before, item.quantity, item.min_threshold
        ),
    )
    if event.crossed_low_stock_threshold:
        logger.info(
            f"LOW STOCK: {item.name} at {item.quantity} {item.unit} "
            f"(threshold: {item.min_threshold} {item.unit})"
        )
    return event


class StockAlertService:
    """Generates stock alerts: out-of-stock, low stock, expiring soon and expired."""

    @staticmethod
    def get_alerts(
        db: Session,
        severity: Optional[str] = None,
        limit: int = 100,
        days_ahead: Optional[int] = None,
        today: Optional[date] = None,
    ) -> StockAlertSummary:
        """
        Scan active stock items and generate alerts.

        Args:
            db: SQLAlchemy database session.
            severity: Filter by severity level (critical, warning, info). If None, return all.
            limit: Maximum number of alerts to return.
            days_ahead: Expiry horizon, defaults to settings.expiring_soon_days.
            today: Reference date, defaults to the current date.

        Returns:
            StockAlertSummary with the alerts and per-severity counts.
        """
        today = today or date.today()
        if days_ahead is None:
            days_ahead = settings.expiring_soon_days
        horizon = today + timedelta(days=days_ahead)
        alerts: List[StockAlert] = []

        items = db.scalars(
            select(StockItem)
            .where(StockItem.status == StockStatus.ACTIVE.value)
            .order_by(StockItem.name)
        ).all()

        for item in items:
            if item.quantity <= 0:
                alerts.append(StockAlert(
                    type="out_of_stock",
                    severity="critical",
                    stock_item_id=item.id,
                    name=item.name,
                    unit=item.unit,
                    current_qty=item.quantity,
                    min_threshold=item.min_threshold,
                    message=f"{item.name} is out of stock",
                ))
            elif item.is_low_stock:
                alerts.append(StockAlert(
                    type="low_stock",
                    severity="warning",
                    stock_item_id=item.id,
                    name=item.name,
                    unit=item.unit,
                    current_qty=item.quantity,
                    min_threshold=item.min_threshold,
                    message=f"{item.name} is low on stock ({item.quantity}/{item.min_threshold} {item.unit})",
                ))

            if item.expiration_date is None or item.expiration_date > horizon:
                continue
            days_left = (item.expiration_date - today).days
            if days_left < 0:
                alerts.append(StockAlert(
                    type="expired",
                    severity="critical",
                    stock_item_id=item.id,
                    name=item.name,
                    unit=item.unit,
                    current_qty=item.quantity,
                    expiration_date=item.expiration_date,
                    days_remaining=days_left,
                    message=f"{item.name} has expired",
                ))
            else:
                alerts.append(StockAlert(
                    type="expiring_soon",
                    severity="warning" if days_left <= 2 else "info",
                    stock_item_id=item.id,
                    name=item.name,
                    unit=item.unit,
                    current_qty=item.quantity,
                    expiration_date=item.expiration_date,
                    days_remaining=days_left,
                    message=f"{item.name} expires in {days_left} days",
                ))

        # Filter by severity if requested
        if severity is not None:
            alerts = [a for a in alerts if a.severity == severity]

        # Sort by severity (critical first, then warning, then info)
        alerts.sort(key=lambda a: SEVERITY_ORDER.get(a.severity, 99))

        alerts = alerts[:limit]

        return StockAlertSummary(
            alerts=alerts,
            total=len(alerts),
            critical=len([a for a in alerts if a.severity == "critical"]),
            warnings=len([a for a in alerts if a.severity == "warning"]),
        )
