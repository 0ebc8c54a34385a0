"""Stock engine exceptions.

Every error carries a stable ``code`` so batch operations can report it as a
structured per-line failure instead of raising.
"""

from decimal import Decimal
from typing import Optional


class StockError(Exception):
    """Base class for stock engine errors."""

    code = "stock_error"
    retryable = False


class StockItemNotFoundError(StockError):
    """Raised when a referenced stock item does not exist."""

    code = "not_found"

    def __init__(self, stock_item_id):
        self.stock_item_id = stock_item_id
        super().__init__(f"Stock item {stock_item_id} not found")


class MenuItemNotFoundError(StockError):
    code = "not_found"

    def __init__(self, menu_item_id):
        self.menu_item_id = menu_item_id
        super().__init__(f"Menu item {menu_item_id} not found")


class StockItemInactiveError(StockError):
    """Raised when consumption targets a deactivated stock item."""

    code = "inactive"

    def __init__(self, stock_item_id, name: str = ""):
        self.stock_item_id = stock_item_id
        self.name = name
        super().__init__(f"Stock item '{name or stock_item_id}' is inactive")


class InsufficientStockError(StockError):
    """Raised when there's not enough stock for a deduction."""

    code = "insufficient_stock"

    def __init__(
        self,
        stock_item_id: int,
        name: str,
        required: Decimal,
        available: Decimal,
        unit: str,
    ):
        self.stock_item_id = stock_item_id
        self.name = name
        self.required = required
        self.available = available
        self.unit = unit
        super().__init__(
            f"Insufficient stock for '{name}': required {required} {unit}, available {available} {unit}"
        )


class InvalidAdjustmentError(StockError):
    """Raised when an adjustment would drive quantity negative or is malformed."""

    code = "invalid_adjustment"

    def __init__(self, message: str, stock_item_id: Optional[int] = None):
        self.stock_item_id = stock_item_id
        super().__init__(message)


class NoMatchingLedgerEntriesError(StockError):
    """Raised when a reversal finds nothing to reverse."""

    code = "no_matching_entries"

    def __init__(self, origin_id: str, policy: str):
        self.origin_id = origin_id
        self.policy = policy
        super().__init__(
            f"No un-reversed {policy} stock deductions found for {origin_id}"
        )


class ConcurrencyConflictError(StockError):
    """The atomic unit could not commit (lock timeout, deadlock, stale version).

    No partial state exists; callers may retry after a backoff.
    """

    code = "concurrency_conflict"
    retryable = True

    def __init__(self, message: str = "Stock update conflicted with a concurrent change", original: Optional[Exception] = None):
        self.original = original
        super().__init__(message)
