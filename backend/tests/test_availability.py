"""Tests for availability pre-checks."""

from decimal import Decimal

import pytest

from stock_ledger.services.availability_service import AvailabilityService
from stock_ledger.services.stock_errors import MenuItemNotFoundError
from stock_ledger.services.stock_item_service import StockItemService


class TestCheckAvailability:
    def test_all_available(self, db_session, chicken):
        result = AvailabilityService(db_session).check_availability(
            [{"stock_item_id": chicken.id, "quantity": Decimal("4")}]
        )
        assert result.available
        assert result.shortfalls == []
        assert result.missing == []

    def test_requests_are_aggregated_per_item(self, db_session, chicken):
        result = AvailabilityService(db_session).check_availability([
            {"stock_item_id": chicken.id, "quantity": Decimal("6")},
            {"stock_item_id": chicken.id, "quantity": Decimal("6")},
        ])
        assert not result.available
        assert result.requirements[chicken.id] == Decimal("12")
        shortfall = result.shortfalls[0]
        assert shortfall.name == "Chicken"
        assert shortfall.required == Decimal("12")
        assert shortfall.available == Decimal("10")
        assert shortfall.missing_quantity == Decimal("2")

    def test_missing_and_inactive_are_not_shortfalls(self, db_session, chicken, make_stock_item):
        lamb = make_stock_item("Lamb", quantity=Decimal("3"))
        StockItemService(db_session).deactivate_stock_item(lamb.id)

        result = AvailabilityService(db_session).check_availability([
            {"stock_item_id": 999, "quantity": Decimal("1")},
            {"stock_item_id": lamb.id, "quantity": Decimal("1")},
        ])
        assert not result.available
        assert result.shortfalls == []
        assert {(m.stock_item_id, m.reason) for m in result.missing} == {
            (999, "not_found"),
            (lamb.id, "inactive"),
        }

    def test_empty_request(self, db_session):
        assert AvailabilityService(db_session).check_availability([]).available

    def test_is_read_only(self, db_session, chicken):
        svc = AvailabilityService(db_session)
        for _ in range(3):
            svc.check_availability([{"stock_item_id": chicken.id, "quantity": Decimal("100")}])
        db_session.refresh(chicken)
        assert chicken.quantity == Decimal("10")


class TestOrderAvailability:
    def test_resolves_recipes_with_conversion(self, stock_setup):
        svc = AvailabilityService(stock_setup["db"])
        result = svc.check_order_availability([
            {"menu_item_id": stock_setup["fried_rice"].id, "quantity": 10},
            {"menu_item_id": stock_setup["steak"].id, "quantity": 100},
        ])
        assert result.available
        assert result.requirements[stock_setup["rice"].id] == Decimal("2.5")
        assert result.requirements[stock_setup["oil"].id] == Decimal("0.2")
        # Steak's beef is manual and deducted at billing
        assert stock_setup["beef"].id not in result.requirements

    def test_shortfall_for_large_order(self, stock_setup):
        svc = AvailabilityService(stock_setup["db"])
        result = svc.check_order_availability([{"menu_item_id": stock_setup["soda"].id, "quantity": 50}])
        assert not result.available
        assert result.shortfalls[0].stock_item_id == stock_setup["cola"].id

    def test_unknown_menu_item(self, stock_setup):
        with pytest.raises(MenuItemNotFoundError):
            AvailabilityService(stock_setup["db"]).check_order_availability([{"menu_item_id": 777}])


class TestValidateManualQuantities:
    def test_reports_missing_quantities(self):
        result = AvailabilityService.validate_manual_quantities([
            {"menu_item_id": 1, "stock_items_used": [
                {"stock_item_id": 10, "deduction_type": "manual"},
                {"stock_item_id": 11, "quantity_used": "0.4", "deduction_type": "manual"},
                {"stock_item_id": 12, "deduction_type": "automatic"},
            ]},
            {"menu_item_id": 2, "status": "cancelled", "stock_items_used": [
                {"stock_item_id": 13, "deduction_type": "manual"},
            ]},
        ])
        assert not result["valid"]
        assert result["missing_items"] == ["Missing quantity for manual stock item 10"]

    def test_valid_when_all_entered(self):
        result = AvailabilityService.validate_manual_quantities([
            {"menu_item_id": 1, "stock_items_used": [
                {"stock_item_id": 10, "quantity_used": "1", "deduction_type": "manual"},
            ]},
        ])
        assert result == {"valid": True, "missing_items": []}
