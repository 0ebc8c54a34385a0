# Services module

from stock_ledger.services.ledger_service import LedgerService
from stock_ledger.services.stock_item_service import StockItemService
from stock_ledger.services.availability_service import AvailabilityService
from stock_ledger.services.stock_deduction_service import (
    StockDeductionService,
    get_stock_deduction_service,
)
from stock_ledger.services.stock_reversal_service import StockReversalService
from stock_ledger.services.stock_analytics_service import StockAnalyticsService
from stock_ledger.services.stock_alert_service import StockAlertService
from stock_ledger.services.concurrency import run_with_retry
from stock_ledger.services.stock_errors import (
    StockError,
    StockItemNotFoundError,
    MenuItemNotFoundError,
    StockItemInactiveError,
    InsufficientStockError,
    InvalidAdjustmentError,
    NoMatchingLedgerEntriesError,
    ConcurrencyConflictError,
)

__all__ = [
    "LedgerService",
    "StockItemService",
    "AvailabilityService",
    "StockDeductionService",
    "get_stock_deduction_service",
    "StockReversalService",
    "StockAnalyticsService",
    "StockAlertService",
    "run_with_retry",
    "StockError",
    "StockItemNotFoundError",
    "MenuItemNotFoundError",
    "StockItemInactiveError",
    "InsufficientStockError",
    "InvalidAdjustmentError",
    "NoMatchingLedgerEntriesError",
    "ConcurrencyConflictError",
]
