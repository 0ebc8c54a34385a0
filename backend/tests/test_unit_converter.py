"""Tests for unit conversion between stock units."""

import logging
from decimal import Decimal

import pytest

from stock_ledger.services.unit_converter import (
    convert,
    convert_with_rule,
    has_conversion_rule,
    normalize_unit,
)


class TestConvert:
    def test_liter_to_ml(self):
        assert convert(2, "liter", "ml") == Decimal("2000")

    def test_g_to_kg(self):
        assert convert(250, "g", "kg") == Decimal("0.25")

    def test_same_unit_is_identity(self):
        assert convert(Decimal("3.5"), "kg", "kg") == Decimal("3.5")

    def test_pieces_to_kg_passes_through(self):
        assert convert(5, "pieces", "kg") == Decimal("5")

    @pytest.mark.parametrize("a,b", [("kg", "g"), ("liter", "ml")])
    def test_round_trip(self, a, b):
        x = Decimal("1.2345")
        assert convert(convert(x, a, b), b, a) == x

    def test_cross_family_has_no_rule(self):
        assert convert(3, "kg", "ml") == Decimal("3")
        assert has_conversion_rule("kg", "ml") is False

    def test_aliases_and_case(self):
        assert normalize_unit(" L ") == "liter"
        assert normalize_unit("Litre") == "liter"
        assert convert(1, "L", "ml") == Decimal("1000")


class TestConvertWithRule:
    def test_reports_rule_applied(self):
        qty, applied = convert_with_rule(500, "ml", "liter")
        assert qty == Decimal("0.5")
        assert applied is True

    def test_missing_rule_logs_warning(self, caplog):
        with caplog.at_level(logging.WARNING, logger="stock_ledger.services.unit_converter"):
            qty, applied = convert_with_rule(5, "pieces", "kg")
        assert qty == Decimal("5")
        assert applied is False
        assert "No conversion rule for pieces to kg" in caplog.text

    def test_same_unit_does_not_warn(self, caplog):
        with caplog.at_level(logging.WARNING):
            convert_with_rule(2, "cans", "cans")
        assert caplog.text == ""
