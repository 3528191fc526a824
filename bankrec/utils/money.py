"""
Money and date helpers.

Amounts are handled as integer cents; tolerance checks multiply by exact
Decimal ratios so percentage boundaries do not drift with float rounding.
"""

from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional, Tuple

from ..exceptions import ValidationError


def to_cents(value: Any, field_name: str = "amount") -> int:
    """
    Convert a monetary value (str, int, float, Decimal) to integer cents.

    Raises:
        ValidationError: If the value is not numeric
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"Missing or non-numeric {field_name}: {value!r}")
    if isinstance(value, int):
        return value * 100
    try:
        if isinstance(value, float):
            amount = Decimal(str(value))
        else:
            amount = Decimal(str(value).strip().replace(",", ""))
    except InvalidOperation:
        raise ValidationError(f"Non-numeric {field_name}: {value!r}")
    if not amount.is_finite():
        raise ValidationError(f"Non-numeric {field_name}: {value!r}")
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def optional_cents(value: Any, field_name: str = "amount") -> Optional[int]:
    """Like to_cents but maps None/blank to None."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return to_cents(value, field_name)


def cents_to_decimal(cents: int) -> Decimal:
    return Decimal(cents) / 100


def format_amount(cents: int, currency: str = "EUR") -> str:
    symbol = "$" if (currency or "").upper() == "USD" else "€"
    return f"{symbol}{cents_to_decimal(cents):,.2f}"


def tolerance_cents(base_cents: int, ratio: Decimal) -> Decimal:
    """ratio of base_cents, exact."""
    return Decimal(abs(base_cents)) * ratio


def within_ratio(diff_cents: int, base_cents: int, ratio: Decimal, inclusive: bool = False) -> bool:
    """True if diff is below (or at, when inclusive) ratio of base."""
    limit = tolerance_cents(base_cents, ratio)
    if inclusive:
        return Decimal(diff_cents) <= limit
    return Decimal(diff_cents) < limit


def delta_percent(diff_cents: int, base_cents: int) -> Decimal:
    """diff as a percentage of base, rounded to two decimals."""
    if base_cents == 0:
        return Decimal("0")
    pct = Decimal(diff_cents) * 100 / Decimal(abs(base_cents))
    return pct.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def parse_date(value: Any, field_name: str = "date") -> Optional[date]:
    """Parse ISO dates and timestamps ("2025-03-10", "2025-03-10T08:00:00Z")."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise ValidationError(f"Invalid {field_name}: {value!r}")


def date_window(center: date, days_before: int, days_after: int) -> Tuple[date, date]:
    """Inclusive [center - before, center + after] range."""
    return center - timedelta(days=days_before), center + timedelta(days=days_after)


def in_window(value: Optional[date], start: date, end: date) -> bool:
    if value is None:
        return False
    return start <= value <= end
