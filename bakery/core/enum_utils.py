"""
Enum Utilities for VARCHAR-based Status Fields

• Database: VARCHAR(50), never a native ENUM type
• SQLAlchemy: String(50) with Mapped[str]
• Pydantic: Python Enum for API validation
• Case: All enum values stored in UPPERCASE

Schemas call normalize_to_uppercase() from a field_validator to accept
case-insensitive input from the mobile client.
"""

from enum import Enum
from typing import Any, Set, Type


def get_enum_value(value: Any) -> str:
    """
    Safely get string value from an enum or string.

    Examples:
        >>> get_enum_value(OrderStatus.CONFIRMED)
        'CONFIRMED'
        >>> get_enum_value("CONFIRMED")
        'CONFIRMED'
    """
    if value is None:
        return None
    if isinstance(value, Enum):
        return value.value
    return str(value)


def enum_values(enum_class: Type[Enum]) -> list:
    return [e.value for e in enum_class]


def enum_comment(enum_class: Type[Enum]) -> str:
    """
    Generate a comment string for a VARCHAR column.

    Examples:
        >>> enum_comment(OrderType)
        'DELIVERY, PICKUP'
    """
    return ", ".join(enum_values(enum_class))


def status_in(db_value: str, *statuses: Any) -> bool:
    """Check if a database value matches any of the given enums or strings."""
    if db_value is None:
        return False
    return db_value in {get_enum_value(s) for s in statuses}


def normalize_to_uppercase(value: Any, valid_values: Set[str]) -> Any:
    """
    Normalize a string value to UPPERCASE if it's a valid enum value.

    Anything else is returned unchanged so Pydantic raises the validation error.

    Examples:
        >>> normalize_to_uppercase('cash', {'CASH', 'CARD'})
        'CASH'
        >>> normalize_to_uppercase('bitcoin', {'CASH', 'CARD'})
        'bitcoin'
    """
    if value is None:
        return value
    if isinstance(value, str):
        upper_v = value.strip().upper()
        if upper_v in valid_values:
            return upper_v
    return value


# =============================================================================
# PRE-DEFINED VALID VALUE SETS
# =============================================================================

VALID_ORDER_TYPES = {"DELIVERY", "PICKUP"}

VALID_PAYMENT_METHODS = {"CASH", "CARD"}

VALID_DISCOUNT_TYPES = {"PERCENTAGE", "FIXED_AMOUNT", "FREE_SHIPPING"}

VALID_TOGGLE_ACTIONS = {"DISABLE", "ENABLE"}
