"""Tests for stock analytics: valuation, low stock, expiry, usage and reorder."""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from stock_ledger.models.stock import StockCategory
from stock_ledger.services.stock_analytics_service import StockAnalyticsService
from stock_ledger.services.stock_deduction_service import StockDeductionService
from stock_ledger.services.stock_item_service import StockItemService
from stock_ledger.services.stock_reversal_service import StockReversalService


class TestValuation:
    def test_totals_and_breakdown(self, stock_setup):
        report = StockAnalyticsService(stock_setup["db"]).get_valuation()
        assert report.total_items == 4
        assert report.total_value == Decimal("204.4")
        assert report.category_breakdown == {
            "beverages": Decimal("38.4"),
            "grains": Decimal("50"),
            "meat": Decimal("96"),
            "oils": Decimal("20"),
        }

    def test_inactive_items_excluded(self, stock_setup):
        db = stock_setup["db"]
        StockItemService(db).deactivate_stock_item(stock_setup["beef"].id)
        report = StockAnalyticsService(db).get_valuation()
        assert report.total_items == 3
        assert "meat" not in report.category_breakdown


class TestLowStockAndExpiry:
    def test_low_stock_includes_exact_threshold(self, db_session, chicken):
        StockDeductionService(db_session).deduct_stock(chicken.id, Decimal("8"))
        low = StockAnalyticsService(db_session).get_low_stock_items()
        assert [item.name for item in low] == ["Chicken"]
        assert low[0].deficit == Decimal("0")

    def test_expiring_items_sorted_and_flagged(self, stock_setup, make_stock_item):
        today = date.today()
        make_stock_item("Cream", category=StockCategory.DAIRY, quantity=Decimal("2"),
                        expiration_date=today - timedelta(days=1))
        make_stock_item("Cheese", category=StockCategory.DAIRY, quantity=Decimal("2"),
                        expiration_date=today + timedelta(days=30))

        expiring = StockAnalyticsService(stock_setup["db"]).get_expiring_items(days_ahead=7, today=today)
        assert [item.name for item in expiring] == ["Cream", "Beef"]
        assert expiring[0].is_expired
        assert expiring[0].days_until_expiry == -1
        assert not expiring[1].is_expired
        assert expiring[1].days_until_expiry == 3


class TestUsageStatistics:
    def test_outflow_returns_and_net(self, stock_setup):
        db = stock_setup["db"]
        deductions = StockDeductionService(db)
        deductions.deduct_automatic_for_order("U1", [{"menu_item_id": stock_setup["fried_rice"].id, "quantity": 2}])
        StockReversalService(db).reverse_automatic_for_order("U1")
        deductions.deduct_automatic_for_order("U2", [{"menu_item_id": stock_setup["soda"].id, "quantity": 3}])

        now = datetime.now(timezone.utc)
        report = StockAnalyticsService(db).get_usage_statistics(now - timedelta(days=1), now + timedelta(days=1))

        assert [s.name for s in report.items] == ["Cola", "Rice", "Cooking Oil"]
        cola, rice, _ = report.items
        assert cola.total_outflow == Decimal("3")
        assert cola.total_outflow_cost == Decimal("2.4")
        assert cola.net_usage == Decimal("3")
        assert rice.total_outflow == Decimal("0.5")
        assert rice.total_returned == Decimal("0.5")
        assert rice.net_usage == Decimal("0")
        assert rice.transaction_count == 2
        assert report.total_cost == Decimal("3.81")

    def test_window_excludes_other_periods(self, stock_setup):
        db = stock_setup["db"]
        StockDeductionService(db).deduct_stock(stock_setup["cola"].id, Decimal("1"))
        past = datetime.now(timezone.utc) - timedelta(days=10)
        report = StockAnalyticsService(db).get_usage_statistics(past - timedelta(days=1), past)
        assert report.items == []
        assert report.total_cost == Decimal("0")


class TestReorderSuggestions:
    @pytest.fixture
    def usage(self, stock_setup, make_stock_item):
        db = stock_setup["db"]
        lemons = make_stock_item("Lemons", category=StockCategory.FRUITS, unit="pieces", quantity=Decimal("100"))
        saffron = make_stock_item("Saffron", category=StockCategory.SPICES, unit="g", min_threshold=Decimal("1"))

        svc = StockDeductionService(db)
        svc.deduct_automatic_for_order("R1", [{"menu_item_id": stock_setup["soda"].id, "quantity": 45}])
        svc.deduct_direct_manual_for_bill("R2", [
            {"stock_item_id": stock_setup["rice"].id, "quantity_used": "18"},
            {"stock_item_id": lemons.id, "quantity_used": "90"},
        ])
        return {**stock_setup, "lemons": lemons, "saffron": saffron}

    def test_priorities_and_quantities(self, usage):
        suggestions = StockAnalyticsService(usage["db"]).get_reorder_suggestions(days_back=30)
        assert [s.name for s in suggestions] == ["Cola", "Rice", "Saffron", "Lemons"]

        cola, rice, saffron, lemons = suggestions
        assert cola.priority == "high"
        assert cola.avg_daily_usage == Decimal("1.5")
        assert cola.days_remaining == Decimal("2")
        assert cola.suggested_order_quantity == Decimal("21")

        assert rice.priority == "high"
        assert rice.suggested_order_quantity == Decimal("9")

        assert saffron.days_remaining is None
        assert saffron.suggested_order_quantity == Decimal("1")

        assert lemons.priority == "medium"
        assert lemons.suggested_order_quantity == Decimal("42")

    def test_reversed_outflows_do_not_count(self, usage):
        db = usage["db"]
        StockReversalService(db).reverse_automatic_for_order("R1")
        names = [s.name for s in StockAnalyticsService(db).get_reorder_suggestions(days_back=30)]
        assert "Cola" not in names


class TestDashboardSummary:
    def test_summary(self, stock_setup):
        summary = StockAnalyticsService(stock_setup["db"]).get_dashboard_summary()
        assert summary.total_items == 4
        assert summary.low_stock_count == 0
        assert summary.expiring_count == 1
        assert summary.total_valuation == Decimal("204.4")
        assert summary.category_counts == {"beverages": 1, "grains": 1, "meat": 1, "oils": 1}
