"""
CostKitchen - Canonical Money & Quantity Types
===============================================

RULE: Money and quantities are Decimal, never binary floats.

Money:    Decimal currency amount (e.g. Decimal("44.64"))
          - Serialized as string in JSON
          - Rounded only for display, never mid-calculation

Quantity: Decimal (for partial units like 2.5 kg)

Float input is accepted at the edges (JSON numbers from the remote service,
form values) but is converted through its shortest repr, so 0.1 becomes
Decimal("0.1") and not Decimal(0.1000000000000000055511151231257827...).

All models MUST import their numeric types from here.
"""

import math
from decimal import ROUND_CEILING, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Annotated, Any

from pydantic import BeforeValidator, PlainSerializer, WithJsonSchema


ZERO = Decimal("0")
CENTS = Decimal("0.01")


def to_decimal(v: Any) -> Decimal:
    """
    Convert a value to Decimal.

    Accepts:
        - Decimal: Pass through
        - int/str: Parse as Decimal
        - float: Converted via str (NaN and infinity rejected)
        - None / "": Zero
    """
    if v is None or v == "":
        return ZERO

    if isinstance(v, bool):
        raise ValueError(f"Boolean is not a number: {v}")

    if isinstance(v, Decimal):
        return v

    if isinstance(v, float):
        if math.isnan(v) or math.isinf(v):
            raise ValueError(f"Non-finite number not allowed: {v}")
        return Decimal(repr(v))

    if isinstance(v, (int, str)):
        try:
            dec = Decimal(str(v).strip())
        except InvalidOperation:
            raise ValueError(f"Invalid number: {v}")
        if not dec.is_finite():
            raise ValueError(f"Non-finite number not allowed: {v}")
        return dec

    raise ValueError(f"Invalid number type: {type(v)}")


def _serialize_decimal(v: Decimal) -> str:
    """Serialize as string (prevents JSON float issues)."""
    return str(v)


# =============================================================================
# MONEY
# =============================================================================

Money = Annotated[
    Decimal,
    BeforeValidator(to_decimal),
    PlainSerializer(_serialize_decimal, when_used="json"),
    WithJsonSchema({"type": "string", "description": "Currency amount as decimal string"}),
]


def round_money(v: Decimal, places: int = 2) -> Decimal:
    """Round a currency amount half-up for display."""
    return v.quantize(Decimal(10) ** -places, rounding=ROUND_HALF_UP)


def ceil_money(v: Decimal) -> Decimal:
    """Round up to the next whole currency unit."""
    return v.to_integral_value(rounding=ROUND_CEILING)


# =============================================================================
# QUANTITY
# =============================================================================

Quantity = Annotated[
    Decimal,
    BeforeValidator(to_decimal),
    PlainSerializer(_serialize_decimal, when_used="json"),
    WithJsonSchema({"type": "string", "description": "Decimal quantity as string"}),
]


# =============================================================================
# PERCENTAGE (Decimal, 0-100)
# =============================================================================

def _validate_percentage(v: Any) -> Decimal:
    """Validate percentage as Decimal 0-100."""
    dec = to_decimal(v)

    if dec < 0 or dec > 100:
        raise ValueError(f"Percentage must be 0-100, got: {dec}")

    return dec


Percentage = Annotated[
    Decimal,
    BeforeValidator(_validate_percentage),
    PlainSerializer(_serialize_decimal, when_used="json"),
    WithJsonSchema({"type": "string", "description": "Percentage 0-100"}),
]


__all__ = [
    "ZERO",
    "CENTS",
    "to_decimal",
    "Money",
    "round_money",
    "ceil_money",
    "Quantity",
    "Percentage",
]
