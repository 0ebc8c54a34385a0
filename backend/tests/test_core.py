"""Tests for settings, logging setup and schema creation."""

import json
import logging
from decimal import Decimal

import pytest
from pydantic import ValidationError
from sqlalchemy import create_engine, inspect
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from stock_ledger.core.config import Settings
from stock_ledger.core.logging_config import JSONFormatter, configure_logging
from stock_ledger.db.session import get_db, init_db
from stock_ledger.models import RecipeItem, StockItem


class TestSettings:
    def test_defaults(self):
        settings = Settings(database_url="sqlite:///:memory:")
        assert settings.is_sqlite
        assert settings.expiring_soon_days == 7
        assert settings.reorder_lookback_days == 30
        assert settings.reorder_supply_days == 14
        assert settings.transaction_history_limit == 100

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("STOCK_RETRY_ATTEMPTS", "5")
        monkeypatch.setenv("DATABASE_URL", "postgresql://pos@localhost/pos")
        settings = Settings()
        assert settings.stock_retry_attempts == 5
        assert not settings.is_sqlite

    def test_rejects_non_positive(self):
        with pytest.raises(ValidationError):
            Settings(reorder_lookback_days=0)

    def test_rejects_excessive_precision(self):
        with pytest.raises(ValidationError):
            Settings(quantity_decimal_places=9)


class TestLogging:
    def test_json_formatter(self):
        record = logging.LogRecord(
            "stock_ledger.services.ledger_service", logging.ERROR, __file__, 10,
            "Ledger mismatch for stock item %s", (3,), None,
        )
        payload = json.loads(JSONFormatter().format(record))
        assert payload["level"] == "ERROR"
        assert payload["logger"] == "stock_ledger.services.ledger_service"
        assert payload["msg"] == "Ledger mismatch for stock item 3"

    def test_configure_logging_modes(self):
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            configure_logging(Settings(debug=False, log_level="WARNING"))
            assert root.level == logging.WARNING
            assert isinstance(root.handlers[0].formatter, JSONFormatter)

            configure_logging(Settings(debug=True, log_level="DEBUG"))
            assert root.level == logging.DEBUG
            assert not isinstance(root.handlers[0].formatter, JSONFormatter)
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)


class TestInitDb:
    def test_creates_tables_idempotently(self):
        engine = create_engine(
            "sqlite:///:memory:", connect_args={"check_same_thread": False}, poolclass=StaticPool
        )
        init_db(engine)
        init_db(engine)
        tables = set(inspect(engine).get_table_names())
        assert {"stock_items", "stock_transactions", "menu_items", "recipe_items"} <= tables

    def test_get_db_yields_session(self):
        gen = get_db()
        session = next(gen)
        try:
            assert isinstance(session, Session)
        finally:
            gen.close()


class TestModelValidators:
    def test_stock_quantity_cannot_go_negative(self):
        with pytest.raises(ValueError):
            StockItem(name="Salt", quantity=Decimal("-1"))

    def test_recipe_quantity_must_be_positive(self):
        with pytest.raises(ValueError):
            RecipeItem(stock_item_id=1, quantity=Decimal("0"))
