"""
Shared helpers for ChipLedger domain records.

Purpose
-------
Documents come back from the store as untyped string-keyed maps. Each record
type owns one ``from_document`` normalizer built on these helpers, so the
rest of the system only ever sees fully typed values.

Responsibilities
----------------
- `DomainValidationError` for business-rule violations inside records
- Lenient numeric/text coercion for stored fields (missing -> default)
- `validate_range` for values constructed in code

Non-Responsibilities
--------------------
- Persistence (handled by services through the DocumentStore)
- Timestamp parsing (``chipledger.core.time_utils.coerce_to_datetime``)
"""

from __future__ import annotations

import re
from typing import Any, Dict, Mapping, Optional

PERIOD_PATTERN = re.compile(r"^(\d{4})-(\d{2})$")


class DomainValidationError(Exception):
    """Raised when a domain record violates one of its invariants."""

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field


# ============================================================================
# COERCION (stored values)
# ============================================================================


def coerce_int(value: Any, default: int = 0) -> int:
    """Stored numbers may arrive as int, float or numeric strings."""
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        try:
            return int(float(value.strip()))
        except ValueError:
            return default
    return default


def coerce_text(value: Any, default: str = "") -> str:
    if isinstance(value, str):
        return value
    return default


def coerce_period_totals(value: Any) -> Dict[str, int]:
    """Keep only well-formed ``YYYY-MM`` keys from a stored totals map."""
    if not isinstance(value, Mapping):
        return {}
    return {
        key: coerce_int(amount)
        for key, amount in value.items()
        if isinstance(key, str) and PERIOD_PATTERN.match(key)
    }


# ============================================================================
# VALIDATION (constructed values)
# ============================================================================


def validate_range(value: int, low: int, high: int, field_name: str) -> None:
    if not low <= value <= high:
        raise DomainValidationError(f"{field_name} out of range [{low}, {high}]: {value}", field=field_name)
