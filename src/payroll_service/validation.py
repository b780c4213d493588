"""Input coercion shared by services.

Services accept already-typed values from the API layer as well as raw
strings from scripts and batch jobs. Everything is checked before a lock or
transaction is opened.
"""

from __future__ import annotations

import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

from payroll_service.errors import ValidationError

ISO_DATE = re.compile(r"\d{4}-\d{2}-\d{2}")
ISO_MONTH = re.compile(r"\d{4}-\d{2}")
CENT = Decimal("0.01")


def parse_date(value: date | str, field_name: str = "date") -> date:
    """Coerce a date or ISO ``YYYY-MM-DD`` string."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str) and ISO_DATE.fullmatch(value.strip()):
        try:
            return date.fromisoformat(value.strip())
        except ValueError:
            pass
    raise ValidationError(
        f"Invalid {field_name}: {value!r} (expected YYYY-MM-DD)",
        {"field": field_name, "value": str(value)},
    )


def parse_month(value: date | str, field_name: str = "month") -> date:
    """Coerce a month to its first day. Accepts any date in the month or ``YYYY-MM``."""
    if isinstance(value, str) and ISO_MONTH.fullmatch(value.strip()):
        value = f"{value.strip()}-01"
    return parse_date(value, field_name).replace(day=1)


def parse_money(value: Decimal | int | float | str, field_name: str) -> Decimal:
    """Coerce a non-negative currency amount with at most two decimal places."""
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(
            f"Invalid {field_name}: {value!r}",
            {"field": field_name, "value": str(value)},
        ) from None

    if not amount.is_finite() or amount < 0:
        raise ValidationError(
            f"{field_name} must be a non-negative amount, got {value!r}",
            {"field": field_name, "value": str(value)},
        )
    if amount != amount.quantize(CENT):
        raise ValidationError(
            f"{field_name} must be a whole number of cents, got {value!r}",
            {"field": field_name, "value": str(value)},
        )
    return amount
