"""Unit conversion between compatible stock units.

Only weight (kg <-> g) and volume (liter <-> ml) pairs have rules. Count-like
units (pieces, boxes, cans...) are not convertible: asking for a conversion
without a rule returns the quantity unchanged and logs a warning, because
callers routinely pass the same quantity through for such units.
"""

import logging
from decimal import Decimal
from typing import Optional, Tuple, Union

logger = logging.getLogger(__name__)

Number = Union[Decimal, int, float, str]

# Factor to multiply by to go from the key unit to its family's base unit
UNIT_CONVERSIONS = {
    # Weight: base unit = g
    "kg": Decimal("1000"),
    "g": Decimal("1"),
    # Volume: base unit = ml
    "liter": Decimal("1000"),
    "ml": Decimal("1"),
}

UNIT_FAMILIES = {
    "kg": "weight",
    "g": "weight",
    "liter": "volume",
    "ml": "volume",
}

UNIT_ALIASES = {
    "l": "liter",
    "litre": "liter",
    "liters": "liter",
    "litres": "liter",
    "kgs": "kg",
    "gram": "g",
    "grams": "g",
}


def normalize_unit(unit: Optional[str]) -> str:
    """Lower-case and de-alias a unit name ('L' -> 'liter')."""
    if unit is None:
        return ""
    unit = unit.strip().lower()
    return UNIT_ALIASES.get(unit, unit)


def to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def has_conversion_rule(from_unit: Optional[str], to_unit: Optional[str]) -> bool:
    """True when the pair is identical or shares a convertible family."""
    source = normalize_unit(from_unit)
    target = normalize_unit(to_unit)
    if source == target:
        return True
    family = UNIT_FAMILIES.get(source)
    return family is not None and family == UNIT_FAMILIES.get(target)


def convert_with_rule(
    quantity: Number,
    from_unit: Optional[str],
    to_unit: Optional[str],
) -> Tuple[Decimal, bool]:
    """Convert and report whether a rule applied.

    Returns ``(converted, True)`` for identical or convertible units and
    ``(quantity, False)`` when there is no rule for the pair.
    """
    qty = to_decimal(quantity)
    source = normalize_unit(from_unit)
    target = normalize_unit(to_unit)

    if source == target:
        return qty, True

    if not has_conversion_rule(source, target):
        logger.warning(
            f"No conversion rule for {from_unit} to {to_unit}, using quantity as-is"
        )
        return qty, False

    base_qty = qty * UNIT_CONVERSIONS[source]
    return base_qty / UNIT_CONVERSIONS[target], True


def convert(quantity: Number, from_unit: Optional[str], to_unit: Optional[str]) -> Decimal:
    """Convert a quantity between units (pass-through when no rule exists).

    >>> convert(2, "liter", "ml")
    Decimal('2000')
    >>> convert(250, "g", "kg")
    Decimal('0.25')
    """
    converted, _ = convert_with_rule(quantity, from_unit, to_unit)
    return converted
