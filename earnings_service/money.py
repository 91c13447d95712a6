"""Conversion between major-unit Decimals at the API edge and integer cents in the ledger."""
from decimal import Decimal, InvalidOperation

from common.error_handling import ValidationError

CENT = Decimal("0.01")

def to_cents(amount, field: str = "amount") -> int:
    """Exact conversion of a major-unit amount to integer cents.

    Sub-cent precision is rejected rather than rounded; rounding belongs to
    the commission calculator, not to the transport layer.
    """
    try:
        value = Decimal(str(amount))
        if not value.is_finite():
            raise ValidationError(f"{field} is not a valid amount", field=field)
        cents = value.quantize(CENT)
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} is not a valid amount", field=field)
    if value != cents:
        raise ValidationError(f"{field} has more than two decimal places", field=field)
    return int(cents * 100)

def from_cents(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(CENT)

def format_amount(cents: int, symbol: str = "R") -> str:
    return f"{symbol}{from_cents(cents)}"
