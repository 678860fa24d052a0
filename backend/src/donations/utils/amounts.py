"""Amount parsing and formatting for gateway charges."""
import re
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

MINIMUM_AMOUNT = Decimal("1")

# Whole dollars with at most two decimal places, as the gateway accepts them
AMOUNT_PATTERN = re.compile(r"^\d+(\.\d{1,2})?$")


def is_valid_amount(amount: Any) -> bool:
    """
    Whether a submitted amount is a plain decimal of at least the minimum.

    Exponents, separators, signs and more than two decimal places are
    rejected before anything is charged.

    Example:
        >>> is_valid_amount("25.50")
        True
        >>> is_valid_amount("1e3")
        False
    """
    if amount is None or isinstance(amount, bool):
        return False

    text = str(amount).strip()
    if not AMOUNT_PATTERN.match(text):
        return False
    return Decimal(text) >= MINIMUM_AMOUNT


def normalize_amount(amount: str) -> str:
    """
    Normalize a submitted amount into the gateway's decimal string.

    Amounts without a decimal point get ".00" appended; amounts that
    already have one are passed through unchanged.

    Args:
        amount: Amount as submitted (e.g., "25" or "25.5")

    Returns:
        Normalized amount string

    Examples:
        >>> normalize_amount("25")
        '25.00'
        >>> normalize_amount("25.5")
        '25.5'
    """
    amount = str(amount).strip()
    if "." not in amount:
        amount = f"{amount}.00"
    return amount


def parse_amount(amount: Optional[str]) -> Optional[Decimal]:
    """
    Parse an amount string, returning None when it is not a number.

    Example:
        >>> parse_amount("10.50")
        Decimal('10.50')
        >>> parse_amount("ten") is None
        True
    """
    if amount is None:
        return None

    try:
        value = Decimal(str(amount).strip())
    except InvalidOperation:
        return None

    if not value.is_finite():
        return None
    return value


def format_amount(amount: Decimal | str | None) -> str:
    """
    Format an amount with two decimal places for receipts.

    Example:
        >>> format_amount(Decimal("100"))
        '100.00'
    """
    value = parse_amount(amount) if amount is not None else None
    if value is None:
        return "0.00"
    return f"{value:.2f}"
