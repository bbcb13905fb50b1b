"""Validation helpers shared across bookkeeping services."""

from __future__ import annotations

import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterable, Optional

from .exceptions import ValidationError

PERIOD_PATTERN = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _quantize_two_decimals(amount: Decimal) -> Decimal:
    """Round the amount to two decimal places using HALF_UP rounding."""
    return amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def _to_decimal(raw: object, field: str) -> Decimal:
    if isinstance(raw, bool):
        raise ValidationError(f"{field} must be a numeric value")
    try:
        amount = Decimal(str(raw).strip().replace(",", "")) if raw is not None else None
    except (InvalidOperation, TypeError) as exc:  # type: ignore[arg-type]
        raise ValidationError(f"{field} must be a numeric value") from exc
    if amount is None or not amount.is_finite():
        raise ValidationError(f"{field} must be a numeric value")
    return amount


def parse_amount(raw: object, field: str) -> Decimal:
    """Convert raw input to a positive Decimal with exactly two fraction digits."""
    amount = _to_decimal(raw, field)
    if amount <= 0:
        raise ValidationError(f"{field} must be greater than zero")
    return _quantize_two_decimals(amount)


def parse_value(raw: object, field: str) -> Decimal:
    """Like ``parse_amount`` but allows zero, for estimates."""
    amount = _to_decimal(raw, field)
    if amount < 0:
        raise ValidationError(f"{field} must not be negative")
    return _quantize_two_decimals(amount)


def validate_required_str(value: object, field: str, max_length: Optional[int] = None) -> str:
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    trimmed = value.strip()
    if not trimmed:
        raise ValidationError(f"{field} cannot be empty")
    if max_length is not None and len(trimmed) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters")
    return trimmed


def validate_optional_str(value: object, field: str, max_length: Optional[int] = None) -> str:
    """Optional text fields are stored as empty strings rather than ``None``."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return ""
    return validate_required_str(value, field, max_length)


def validate_email(value: object, field: str = "email") -> str:
    email = validate_optional_str(value, field, 254)
    if email and not EMAIL_PATTERN.fullmatch(email):
        raise ValidationError(f"{field} must be a valid email address")
    return email


def validate_date(value: object, field: str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a date or YYYY-MM-DD string")
    try:
        return date.fromisoformat(value.strip())
    except ValueError as exc:
        raise ValidationError(f"{field} must be a valid YYYY-MM-DD date") from exc


def validate_period(value: object, field: str = "period") -> str:
    """Validate a calendar-month key such as ``2024-05``."""
    if not isinstance(value, str) or not PERIOD_PATTERN.fullmatch(value.strip()):
        raise ValidationError(f"{field} must be a YYYY-MM month")
    return value.strip()


def validate_enum(value: object, field: str, allowed: Iterable[str]) -> str:
    """Match ``value`` against ``allowed`` case-insensitively, returning the canonical spelling."""
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    lookup = {option.lower(): option for option in allowed}
    canonical = lookup.get(value.strip().lower())
    if canonical is None:
        raise ValidationError(f"{field} must be one of: {', '.join(lookup.values())}")
    return canonical


def ensure_date_range(start: date, end: date) -> None:
    if end < start:
        raise ValidationError("end must not be earlier than start")
