"""
CostKitchen - Input Validation

Field rules checked before any optimistic change is applied. Partial field
sets (updates) are checked field by field; only the given fields are
validated.
"""

from decimal import Decimal
from typing import Any, Callable, Optional

from pydantic import ValidationError

from costkitchen.core.errors import ValidationFailure
from costkitchen.core.types import to_decimal
from costkitchen.models.dataset import Collection, IngredientType


Rule = tuple[Callable[[Any], bool], str]


def _text(min_len: int, max_len: int) -> Callable[[Any], bool]:
    def check(v: Any) -> bool:
        if v is None:
            v = ""
        if not isinstance(v, str):
            return False
        return min_len <= len(v.strip()) <= max_len
    return check


def _optional_text(max_len: int) -> Callable[[Any], bool]:
    def check(v: Any) -> bool:
        return not v or (isinstance(v, str) and len(v) <= max_len)
    return check


def _number(
    minimum: Optional[Decimal] = None,
    maximum: Optional[Decimal] = None,
    exclusive_minimum: bool = False,
    optional: bool = False,
) -> Callable[[Any], bool]:
    def check(v: Any) -> bool:
        if v is None:
            return optional
        try:
            dec = to_decimal(v)
        except ValueError:
            return False
        if minimum is not None:
            if exclusive_minimum and dec <= minimum:
                return False
            if dec < minimum:
                return False
        if maximum is not None and dec > maximum:
            return False
        return True
    return check


def _ingredient_type(v: Any) -> bool:
    return v is None or v in {t.value for t in IngredientType} or isinstance(v, IngredientType)


def _lines(v: Any) -> bool:
    if not isinstance(v, list):
        return False
    for line in v:
        qty = line.get("qty") if isinstance(line, dict) else getattr(line, "qty", None)
        if not _number(minimum=Decimal(0))(qty):
            return False
    return True


# =============================================================================
# RULES
# =============================================================================

INGREDIENT_RULES: dict[str, Rule] = {
    "name": (_text(1, 100), "Name must be 1-100 characters"),
    "unit": (_text(1, 20), "Unit must be 1-20 characters"),
    "cost": (_number(Decimal(0), Decimal(1_000_000)), "Cost must be 0 or positive (max 1,000,000)"),
    "stock_qty": (_number(Decimal(0)), "Stock quantity cannot be negative"),
    "min_stock": (_number(Decimal(0), optional=True), "Minimum stock cannot be negative"),
    "package_cost": (_number(Decimal(0), optional=True), "Package cost cannot be negative"),
    "package_qty": (_number(Decimal(0), exclusive_minimum=True, optional=True), "Package quantity must be positive"),
    "shipping_fee": (_number(Decimal(0), optional=True), "Shipping fee cannot be negative"),
    "price_buffer": (_number(Decimal(0), Decimal(100), optional=True), "Price buffer must be 0-100%"),
    "supplier": (_optional_text(100), "Supplier must be 100 characters or less"),
    "type": (_ingredient_type, "Type must be 'ingredient' or 'other'"),
}

RECIPE_RULES: dict[str, Rule] = {
    "name": (_text(1, 100), "Name must be 1-100 characters"),
    "category": (_optional_text(50), "Category must be 50 characters or less"),
    "margin": (_number(Decimal(0), Decimal(100)), "Margin must be 0-100%"),
    "price": (_number(Decimal(0), Decimal(100_000)), "Price must be 0 or positive (max 100,000)"),
    "batch_size": (_number(Decimal(1), Decimal(1000)), "Batch size must be 1-1000"),
    "daily_volume": (_number(Decimal(0), Decimal(10_000)), "Daily volume must be 0-10000"),
    "ingredients": (_lines, "Ingredient quantities cannot be negative"),
}

EXPENSE_RULES: dict[str, Rule] = {
    "category": (_text(1, 50), "Category must be 1-50 characters"),
    "amount": (_number(Decimal(0), Decimal(10_000_000)), "Amount must be 0 or positive"),
}

SETTINGS_RULES: dict[str, Rule] = {
    "other_discount_rate": (_number(Decimal(0), Decimal(50)), "Other discount must be 0-50%"),
    "daily_sales_target": (_number(Decimal(0), optional=True), "Daily sales target cannot be negative"),
}

RULES: dict[Collection, dict[str, Rule]] = {
    Collection.INGREDIENTS: INGREDIENT_RULES,
    Collection.RECIPES: RECIPE_RULES,
    Collection.EXPENSES: EXPENSE_RULES,
}


# =============================================================================
# API
# =============================================================================

def check_fields(rules: dict[str, Rule], fields: dict) -> list[str]:
    """Return error messages for the given fields (empty when valid)."""
    errors = []
    for field, value in fields.items():
        rule = rules.get(field)
        if rule is None:
            continue
        check, message = rule
        if not check(value):
            errors.append(message)
    return errors


def validate_fields(collection: Collection, fields: dict) -> None:
    errors = check_fields(RULES[collection], fields)
    if errors:
        raise ValidationFailure(errors)


def validate_settings(fields: dict) -> None:
    errors = check_fields(SETTINGS_RULES, fields)
    if errors:
        raise ValidationFailure(errors)


def validation_failure_from(exc: ValidationError) -> ValidationFailure:
    """Translate a pydantic error into the domain error."""
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"])
        messages.append(f"{location}: {error['msg']}" if location else error["msg"])
    return ValidationFailure(messages)
