"""Stock schemas."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from stock_ledger.models.stock import (
    DeductionPolicy,
    DeductionType,
    StockCategory,
    StockUnit,
    TransactionReason,
)


# ============== Registry ==============

class StockItemCreate(BaseModel):
    """New stock item. A non-zero quantity is posted as opening stock."""

    name: str = Field(..., min_length=1, max_length=100)
    category: StockCategory = StockCategory.OTHER
    unit: StockUnit = StockUnit.KG
    quantity: Decimal = Field(Decimal("0"), ge=0)
    cost_per_unit: Decimal = Field(Decimal("0"), ge=0)
    min_threshold: Decimal = Field(Decimal("0"), ge=0)
    expiration_date: Optional[date] = None
    deduction_type: DeductionType = DeductionType.AUTOMATIC
    sku: Optional[str] = Field(None, max_length=50)
    description: Optional[str] = Field(None, max_length=500)


class StockItemUpdate(BaseModel):
    """Descriptive fields only.

    Quantity changes go through the ledger; the unit is fixed at creation
    because existing ledger rows are expressed in it.
    """

    name: Optional[str] = Field(None, min_length=1, max_length=100)
    category: Optional[StockCategory] = None
    cost_per_unit: Optional[Decimal] = Field(None, ge=0)
    min_threshold: Optional[Decimal] = Field(None, ge=0)
    expiration_date: Optional[date] = None
    deduction_type: Optional[DeductionType] = None
    sku: Optional[str] = Field(None, max_length=50)
    description: Optional[str] = Field(None, max_length=500)


class StockItemResponse(BaseModel):
    id: int
    name: str
    category: str
    unit: str
    quantity: Decimal
    cost_per_unit: Decimal
    min_threshold: Decimal
    expiration_date: Optional[date] = None
    deduction_type: str
    status: str
    sku: Optional[str] = None
    description: Optional[str] = None
    is_low_stock: bool
    total_value: Decimal

    model_config = {"from_attributes": True}


class StockItemPage(BaseModel):
    items: List[StockItemResponse]
    page: int
    page_size: int
    total: int
    total_pages: int


class StockTransactionResponse(BaseModel):
    id: int
    stock_item_id: int
    type: str
    quantity: Decimal
    reason: str
    cost_per_unit: Optional[Decimal] = None
    total_cost: Optional[Decimal] = None
    balance_after: Decimal
    user_id: Optional[int] = None
    order_id: Optional[str] = None
    expense_id: Optional[str] = None
    origin_type: Optional[str] = None
    origin_id: Optional[str] = None
    deduction_policy: Optional[str] = None
    reversal_of_id: Optional[int] = None
    notes: Optional[str] = None
    date: datetime

    model_config = {"from_attributes": True}


class StockAdjustmentRequest(BaseModel):
    """Signed stock correction (waste, spoilage, count corrections)."""

    stock_item_id: int
    quantity_change: Decimal
    reason: TransactionReason = TransactionReason.MANUAL_ADJUSTMENT
    notes: Optional[str] = Field(None, max_length=500)


class StockPurchaseRequest(BaseModel):
    stock_item_id: int
    quantity: Decimal = Field(..., gt=0)
    cost_per_unit: Decimal = Field(..., ge=0)
    expense_id: Optional[str] = None
    notes: Optional[str] = Field(None, max_length=500)


# ============== Availability ==============

class StockRequest(BaseModel):
    stock_item_id: int
    quantity: Decimal = Field(..., ge=0)


class Shortfall(BaseModel):
    stock_item_id: int
    name: str
    unit: str
    required: Decimal
    available: Decimal

    @property
    def missing_quantity(self) -> Decimal:
        return self.required - self.available


class MissingStockItem(BaseModel):
    stock_item_id: int
    reason: Literal["not_found", "inactive"]


class AvailabilityResult(BaseModel):
    available: bool
    shortfalls: List[Shortfall] = []
    missing: List[MissingStockItem] = []
    requirements: Dict[int, Decimal] = {}


# ============== Deduction inputs ==============

class StockUsageInput(BaseModel):
    """Stock consumption captured on an order line (entered at serving)."""

    stock_item_id: int
    quantity_used: Optional[Decimal] = None
    unit: Optional[str] = None
    cost_per_unit: Optional[Decimal] = Field(None, ge=0)
    deduction_type: DeductionType = DeductionType.MANUAL


class OrderLineInput(BaseModel):
    menu_item_id: int
    quantity: Decimal = Field(Decimal("1"), gt=0)
    status: Literal["active", "cancelled"] = "active"
    stock_items_used: List[StockUsageInput] = []


class ManualStockEntry(BaseModel):
    """Reception-entered consumption line on a bill."""

    stock_item_id: Optional[int] = None
    stock_item_name: Optional[str] = None
    quantity_used: Optional[Decimal] = None
    unit: Optional[str] = None


# ============== Results ==============

class StockEvent(BaseModel):
    """Emitted after a committed mutation for the notification channel."""

    stock_item_id: int
    name: str
    new_quantity: Decimal
    min_threshold: Decimal
    is_low_stock: bool
    crossed_low_stock_threshold: bool


class DeductionLine(BaseModel):
    stock_item_id: int
    stock_name: str
    quantity: Decimal
    unit: str
    cost_per_unit: Decimal
    cost_of_goods_sold: Decimal
    balance_after: Decimal
    transaction_id: Optional[int] = None
    menu_item_id: Optional[int] = None


class LineError(BaseModel):
    code: str
    message: str
    line: Optional[int] = None
    stock_item_id: Optional[int] = None
    required: Optional[Decimal] = None
    available: Optional[Decimal] = None


class DeductionResult(BaseModel):
    success: bool
    message: str
    policy: Optional[DeductionPolicy] = None
    origin_id: Optional[str] = None
    deductions: List[DeductionLine] = []
    total_cogs: Decimal = Decimal("0")
    errors: List[LineError] = []
    events: List[StockEvent] = []
    retryable: bool = False


class ReversalResult(BaseModel):
    success: bool
    message: str
    policy: DeductionPolicy
    origin_id: str
    reversed: List[DeductionLine] = []
    total_cogs: Decimal = Decimal("0")
    errors: List[LineError] = []
    events: List[StockEvent] = []
    retryable: bool = False


class StockMutationResult(BaseModel):
    stock_item: StockItemResponse
    transaction: StockTransactionResponse
    event: StockEvent


# ============== Analytics ==============

class ValuationReport(BaseModel):
    total_value: Decimal
    total_items: int
    category_breakdown: Dict[str, Decimal]


class LowStockItem(BaseModel):
    stock_item_id: int
    name: str
    category: str
    unit: str
    quantity: Decimal
    min_threshold: Decimal
    deficit: Decimal


class ExpiringItem(BaseModel):
    stock_item_id: int
    name: str
    unit: str
    quantity: Decimal
    expiration_date: date
    days_until_expiry: int
    is_expired: bool


class UsageStat(BaseModel):
    stock_item_id: int
    name: str
    unit: str
    total_outflow: Decimal
    total_outflow_cost: Decimal
    total_returned: Decimal
    net_usage: Decimal
    transaction_count: int


class UsageReport(BaseModel):
    start: datetime
    end: datetime
    items: List[UsageStat]
    total_cost: Decimal


class ReorderSuggestion(BaseModel):
    stock_item_id: int
    name: str
    unit: str
    current_quantity: Decimal
    min_threshold: Decimal
    avg_daily_usage: Decimal
    days_remaining: Optional[Decimal] = None  # None = no recent usage
    suggested_order_quantity: Decimal
    priority: Literal["high", "medium"]


class DashboardSummary(BaseModel):
    total_items: int
    low_stock_count: int
    expiring_count: int
    total_valuation: Decimal
    category_breakdown: Dict[str, Decimal]
    category_counts: Dict[str, int]


class ReconciliationLine(BaseModel):
    stock_item_id: int
    name: str
    live_quantity: Decimal
    ledger_balance: Decimal
    last_balance_after: Optional[Decimal] = None
    transaction_count: int
    consistent: bool


class ReconciliationReport(BaseModel):
    items: List[ReconciliationLine]
    consistent: bool
    mismatches: int


class StockAlert(BaseModel):
    type: Literal["out_of_stock", "low_stock", "expiring_soon", "expired"]
    severity: Literal["critical", "warning", "info"]
    stock_item_id: int
    name: str
    unit: str
    current_qty: Decimal
    min_threshold: Optional[Decimal] = None
    expiration_date: Optional[date] = None
    days_remaining: Optional[int] = None
    message: str


class StockAlertSummary(BaseModel):
    alerts: List[StockAlert]
    total: int
    critical: int
    warnings: int
