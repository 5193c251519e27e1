"""
Input validators for the ledger, user and ranking surfaces.

Validators accept the raw argument, raise `ValidationError` on failure and
return the normalized value on success.
"""

from __future__ import annotations

from typing import Any

from chipledger.modules.shared.exceptions import ValidationError


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def validate_identifier(value: Any, field: str = "user_id") -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(field, f"{field} must be a non-empty string")
    return value.strip()


def validate_amount(amount: Any) -> int:
    if not _is_int(amount) or amount <= 0:
        raise ValidationError("amount", f"amount must be a positive integer, got {amount!r}")
    return amount


def validate_text(value: Any, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(field, f"{field} must not be empty")
    return value.strip()


def validate_year(year: Any) -> int:
    if not _is_int(year) or not (1970 <= year <= 9999):
        raise ValidationError("year", f"year must be between 1970 and 9999, got {year!r}")
    return year


def validate_month(month: Any) -> int:
    if not _is_int(month) or not (1 <= month <= 12):
        raise ValidationError("month", f"month must be between 1 and 12, got {month!r}")
    return month


def validate_limit(limit: Any, field: str = "limit") -> int:
    if not _is_int(limit) or limit <= 0:
        raise ValidationError(field, f"{field} must be a positive integer, got {limit!r}")
    return limit


def validate_non_negative(value: Any, field: str) -> int:
    if not _is_int(value) or value < 0:
        raise ValidationError(field, f"{field} must be a non-negative integer, got {value!r}")
    return value
