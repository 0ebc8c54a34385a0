"""SQLAlchemy models."""

from stock_ledger.models.stock import (
    StockItem,
    StockTransaction,
    StockCategory,
    StockUnit,
    StockStatus,
    DeductionType,
    DeductionPolicy,
    OriginType,
    TransactionType,
    TransactionReason,
)
from stock_ledger.models.menu import MenuItem, RecipeItem

__all__ = [
    "StockItem",
    "StockTransaction",
    "StockCategory",
    "StockUnit",
    "StockStatus",
    "DeductionType",
    "DeductionPolicy",
    "OriginType",
    "TransactionType",
    "TransactionReason",
    "MenuItem",
    "RecipeItem",
]
