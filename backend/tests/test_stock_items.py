"""Tests for the stock item registry."""

from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from stock_ledger.models.stock import StockCategory, StockStatus, StockUnit
from stock_ledger.schemas.stock import StockItemCreate, StockItemUpdate
from stock_ledger.services.stock_errors import StockItemNotFoundError
from stock_ledger.services.stock_item_service import StockItemService


class TestStockItemRegistry:
    def test_create_defaults(self, db_session):
        item = StockItemService(db_session).create_stock_item(StockItemCreate(name="  Flour "))
        assert item.id is not None
        assert item.name == "Flour"
        assert item.category == StockCategory.OTHER.value
        assert item.unit == StockUnit.KG.value
        assert item.deduction_type == "automatic"
        assert item.status == StockStatus.ACTIVE.value
        assert item.version >= 1

    def test_create_rejects_negative_quantity(self):
        with pytest.raises(ValueError):
            StockItemCreate(name="Bad", quantity=Decimal("-1"))

    def test_duplicate_sku(self, db_session, make_stock_item):
        make_stock_item("Milk", sku="MLK-1")
        with pytest.raises(IntegrityError):
            make_stock_item("Milk 2", sku="MLK-1")

    def test_get_unknown(self, db_session):
        with pytest.raises(StockItemNotFoundError):
            StockItemService(db_session).get_stock_item(404)

    def test_update_descriptive_fields(self, db_session, chicken):
        svc = StockItemService(db_session)
        item = svc.update_stock_item(chicken.id, StockItemUpdate(
            name="Chicken Breast",
            min_threshold=Decimal("3"),
            category=StockCategory.FROZEN,
        ))
        assert item.name == "Chicken Breast"
        assert item.min_threshold == Decimal("3")
        assert item.category == "frozen"
        assert item.quantity == Decimal("10")

    def test_update_ignores_null_for_required_fields(self, db_session, chicken):
        item = StockItemService(db_session).update_stock_item(chicken.id, StockItemUpdate(name=None))
        assert item.name == "Chicken"

    def test_deactivate_and_reactivate(self, db_session, chicken):
        svc = StockItemService(db_session)
        assert svc.deactivate_stock_item(chicken.id).status == "inactive"
        assert svc.list_stock_items().total == 0
        assert svc.list_stock_items(include_inactive=True).total == 1
        assert svc.reactivate_stock_item(chicken.id).is_active


class TestListStockItems:
    @pytest.fixture
    def pantry(self, make_stock_item):
        make_stock_item("Tomatoes", category=StockCategory.VEGETABLES, quantity=Decimal("1"), min_threshold=Decimal("2"))
        make_stock_item("Onions", category=StockCategory.VEGETABLES, quantity=Decimal("9"), min_threshold=Decimal("2"))
        make_stock_item("Cumin", category=StockCategory.SPICES, unit=StockUnit.G, quantity=Decimal("500"), sku="SP-CUMIN")
        make_stock_item("Ghee", category=StockCategory.OILS, quantity=Decimal("4"), description="clarified butter")

    def test_search(self, db_session, pantry):
        svc = StockItemService(db_session)
        assert [i.name for i in svc.list_stock_items(search="tom").items] == ["Tomatoes"]
        assert [i.name for i in svc.list_stock_items(search="sp-cum").items] == ["Cumin"]
        assert [i.name for i in svc.list_stock_items(search="butter").items] == ["Ghee"]

    def test_category_and_low_stock_filters(self, db_session, pantry):
        svc = StockItemService(db_session)
        vegetables = svc.list_stock_items(category=StockCategory.VEGETABLES)
        assert {i.name for i in vegetables.items} == {"Tomatoes", "Onions"}
        low = svc.list_stock_items(low_stock_only=True)
        assert [i.name for i in low.items] == ["Tomatoes"]
        assert low.items[0].is_low_stock

    def test_pagination_and_sort(self, db_session, pantry):
        svc = StockItemService(db_session)
        page = svc.list_stock_items(page=2, page_size=3)
        assert page.total == 4
        assert page.total_pages == 2
        assert [i.name for i in page.items] == ["Tomatoes"]

        by_quantity = svc.list_stock_items(sort_by="quantity", sort_desc=True)
        assert by_quantity.items[0].name == "Cumin"
