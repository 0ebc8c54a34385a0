"""Stock models: StockItem (registry) and StockTransaction (ledger)."""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import Date, DateTime, ForeignKey, Index, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from stock_ledger.db.base import Base, TimestampMixin
from stock_ledger.models.validators import non_negative


class StockCategory(str, Enum):
    """Closed set of ingredient categories."""

    VEGETABLES = "vegetables"
    FRUITS = "fruits"
    MEAT = "meat"
    SEAFOOD = "seafood"
    DAIRY = "dairy"
    GRAINS = "grains"
    SPICES = "spices"
    BEVERAGES = "beverages"
    OILS = "oils"
    CONDIMENTS = "condiments"
    BAKERY = "bakery"
    FROZEN = "frozen"
    OTHER = "other"


class StockUnit(str, Enum):
    """Units a stock item can be counted in."""

    KG = "kg"
    G = "g"
    LITER = "liter"
    ML = "ml"
    PIECES = "pieces"
    PACKETS = "packets"
    BOXES = "boxes"
    CANS = "cans"
    BOTTLES = "bottles"


class DeductionType(str, Enum):
    """Who owns consumption of an item."""

    AUTOMATIC = "automatic"  # Fixed recipe ratio, deducted at order creation
    MANUAL = "manual"  # Quantity entered by staff, deducted at billing


class StockStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class TransactionType(str, Enum):
    INFLOW = "inflow"
    OUTFLOW = "outflow"
    ADJUSTMENT = "adjustment"


class TransactionReason(str, Enum):
    """Reasons for stock transactions."""

    PURCHASE = "purchase"  # Goods received
    ORDER_DEDUCTION = "order_deduction"  # Consumed by an order or bill
    WASTE = "waste"
    SPOILAGE = "spoilage"
    THEFT = "theft"
    RETURN = "return"  # Compensation of an earlier deduction
    MANUAL_ADJUSTMENT = "manual_adjustment"
    INITIAL_STOCK = "initial_stock"  # Opening quantity of a new item
    EXPIRED = "expired"
    DAMAGED = "damaged"


class OriginType(str, Enum):
    """Business document a posting is correlated with."""

    ORDER = "order"
    BILL = "bill"


class DeductionPolicy(str, Enum):
    """Which deduction path produced a posting.

    The three policies can coexist for the same order and each is reversed
    independently.
    """

    AUTOMATIC = "automatic"  # Recipe-driven, at order creation
    MANUAL = "manual"  # Quantities captured on the order, at billing
    DIRECT_MANUAL = "direct_manual"  # Reception-entered, keyed by bill

    @property
    def origin_type(self) -> OriginType:
        return OriginType.BILL if self is DeductionPolicy.DIRECT_MANUAL else OriginType.ORDER


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StockItem(Base, TimestampMixin):
    """An ingredient or consumable with its current on-hand quantity."""

    __tablename__ = "stock_items"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    category: Mapped[str] = mapped_column(
        String(20), default=StockCategory.OTHER.value, nullable=False, index=True
    )
    unit: Mapped[str] = mapped_column(String(20), default=StockUnit.KG.value, nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(14, 4), default=0, nullable=False)
    cost_per_unit: Mapped[Decimal] = mapped_column(Numeric(12, 4), default=0, nullable=False)
    min_threshold: Mapped[Decimal] = mapped_column(Numeric(14, 4), default=0, nullable=False)
    expiration_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True, index=True)
    deduction_type: Mapped[str] = mapped_column(
        String(20), default=DeductionType.AUTOMATIC.value, nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(20), default=StockStatus.ACTIVE.value, nullable=False, index=True
    )
    sku: Mapped[Optional[str]] = mapped_column(String(50), unique=True, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    # Concurrent writers that lose the race get StaleDataError on flush
    __mapper_args__ = {"version_id_col": version}

    # Relationships
    transactions: Mapped[list["StockTransaction"]] = relationship(
        "StockTransaction",
        back_populates="stock_item",
        foreign_keys="StockTransaction.stock_item_id",
        order_by="StockTransaction.id",
    )

    @validates("quantity", "cost_per_unit", "min_threshold")
    def _validate_non_negative(self, key, value):
        return non_negative(key, value)

    @property
    def is_active(self) -> bool:
        return self.status == StockStatus.ACTIVE.value

    @property
    def is_low_stock(self) -> bool:
        return self.quantity <= self.min_threshold

    @property
    def total_value(self) -> Decimal:
        return (self.quantity or Decimal("0")) * (self.cost_per_unit or Decimal("0"))

    def is_expired(self, today: Optional[date] = None) -> bool:
        if self.expiration_date is None:
            return False
        return (today or date.today()) > self.expiration_date


class StockTransaction(Base):
    """Append-only ledger of every stock change (single source of truth)."""

    __tablename__ = "stock_transactions"
    __table_args__ = (
        Index("ix_stock_tx_item_date", "stock_item_id", "date"),
        Index("ix_stock_tx_origin", "origin_type", "origin_id", "deduction_policy"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    stock_item_id: Mapped[int] = mapped_column(
        ForeignKey("stock_items.id"), nullable=False, index=True
    )
    type: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    quantity: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)  # signed
    reason: Mapped[str] = mapped_column(String(30), nullable=False)
    cost_per_unit: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 4), nullable=True)
    total_cost: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 4), nullable=True)
    balance_after: Mapped[Decimal] = mapped_column(Numeric(14, 4), nullable=False)
    user_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)

    # Correlation with the originating business event
    order_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    expense_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    origin_type: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    origin_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    deduction_policy: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    reversal_of_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("stock_transactions.id"), nullable=True, index=True
    )

    notes: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False, index=True
    )

    # Relationships
    stock_item: Mapped["StockItem"] = relationship(
        "StockItem", back_populates="transactions", foreign_keys=[stock_item_id]
    )
    reversal_of: Mapped[Optional["StockTransaction"]] = relationship(
        "StockTransaction", remote_side=[id]
    )

    @validates("balance_after", "cost_per_unit", "total_cost")
    def _validate_non_negative(self, key, value):
        return non_negative(key, value)
