"""
Commission calculation for delivered orders.

Two paths exist because the storefront's pricing changed over time:

* orders placed under the current pricing carry a platform pre-computed
  commission, which is taken verbatim;
* older orders only carry a total, and the commission is computed from the
  group's rate (or the default rate).

``resolve_commission`` always prefers the pre-computed value when one is
present, so re-pricing never alters what an old order already promised.
"""
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Optional, Union

from common.error_handling import InvalidRateError
from common.settings import settings

Rate = Union[Decimal, str, float]

def _as_rate(rate: Rate) -> Decimal:
    try:
        value = rate if isinstance(rate, Decimal) else Decimal(str(rate))
    except (InvalidOperation, ValueError):
        raise InvalidRateError(f"Commission rate {rate!r} is not a number", field="rate")
    if not value.is_finite() or value <= 0 or value > 1:
        raise InvalidRateError(f"Commission rate must be in (0, 1], got {rate}", field="rate",
                               context={"rate": str(rate)})
    return value

def compute_commission(order_total_cents: int, rate: Rate) -> int:
    """Commission in cents for an order total in cents, rounded half-up to the cent."""
    value = _as_rate(rate)
    return int((Decimal(order_total_cents) * value).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

def resolve_commission(
    order_total_cents: int,
    pre_computed_cents: Optional[int] = None,
    rate: Optional[Rate] = None,
) -> int:
    """Commission for an order; a pre-computed amount takes precedence over the rate."""
    if pre_computed_cents is not None:
        return pre_computed_cents
    return compute_commission(order_total_cents, rate if rate is not None else settings.default_commission_rate)
