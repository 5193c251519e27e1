"""
Time helpers shared by the store, cache, ledger and ranking layers.

Purpose
-------
- Normalize every timestamp shape a document store may hand back into an
  aware UTC `datetime` (`coerce_to_datetime`).
- Derive the `"YYYY-MM"` period key and `"YYYY-MM-DD"` date key used by
  monthly totals, history entries and daily summaries.
- Provide an injectable clock so cache expiry and snapshot staleness can be
  driven explicitly in tests.

Accepted timestamp shapes
-------------------------
- objects exposing `to_datetime()` (store-native timestamps)
- mappings with `seconds` (and optional `nanoseconds`)
- `datetime` (naive values are treated as UTC) and `date`
- int/float epoch milliseconds
- ISO-8601 strings (a trailing ``Z`` is accepted)
- `None` -> now
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Any, Mapping, Optional, Protocol
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from chipledger.core.logging.logger import get_logger

logger = get_logger(__name__)


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class ManualClock:
    """
    Clock whose time only moves when told to.

    >>> clock = ManualClock(datetime(2025, 6, 1, tzinfo=timezone.utc))
    >>> clock.advance(hours=9)
    """

    def __init__(self, start: Optional[datetime] = None) -> None:
        self._now = _as_utc(start) if start else datetime.now(timezone.utc)

    def now(self) -> datetime:
        return self._now

    def set(self, value: datetime) -> None:
        self._now = _as_utc(value)

    def advance(self, **delta: float) -> datetime:
        self._now = self._now + timedelta(**delta)
        return self._now


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def coerce_to_datetime(
    value: Any,
    *,
    strict: bool = False,
    clock: Optional[Clock] = None,
) -> datetime:
    """
    Convert a store timestamp of any supported shape to an aware UTC datetime.

    Parameters
    ----------
    value:
        The raw timestamp value read from a document.
    strict:
        When True, unrecognized or malformed input raises `ValueError`
        instead of falling back to the current time. `None` still maps to now.
    clock:
        Source of "now" for the fallback. Defaults to the system clock.

    Examples
    --------
    >>> coerce_to_datetime(1717200000000).isoformat()
    '2024-06-01T00:00:00+00:00'
    >>> coerce_to_datetime({"seconds": 1717200000, "nanoseconds": 0}).year
    2024
    """
    now = (clock or SystemClock()).now

    if value is None:
        return now()

    to_datetime = getattr(value, "to_datetime", None)
    if callable(to_datetime):
        return _as_utc(to_datetime())

    if isinstance(value, datetime):
        return _as_utc(value)

    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)

    # bool is an int subclass but never a timestamp
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
        except (OverflowError, OSError, ValueError) as exc:
            return _fallback(value, now, strict, exc)

    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return _as_utc(datetime.fromisoformat(text))
        except ValueError as exc:
            return _fallback(value, now, strict, exc)

    if isinstance(value, Mapping) and "seconds" in value:
        try:
            seconds = float(value["seconds"])
            nanos = float(value.get("nanoseconds", 0) or 0)
            return datetime.fromtimestamp(seconds + nanos / 1e9, tz=timezone.utc)
        except (TypeError, ValueError, OverflowError, OSError) as exc:
            return _fallback(value, now, strict, exc)

    return _fallback(value, now, strict, None)


def _fallback(value: Any, now, strict: bool, exc: Optional[Exception]) -> datetime:
    if strict:
        raise ValueError(
            f"Unrecognized timestamp value of type {type(value).__name__}: {value!r}"
        ) from exc
    logger.debug(
        "Unrecognized timestamp value; using current time",
        extra={"value_type": type(value).__name__},
    )
    return now()


def resolve_timezone(name: Optional[str]) -> tzinfo:
    """Return the named IANA zone, or UTC when unset or unknown."""
    if not name or name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except ZoneInfoNotFoundError:
        logger.warning("Unknown ledger timezone; using UTC", extra={"timezone": name})
        return timezone.utc


def period_key(moment: datetime, tz: tzinfo = timezone.utc) -> str:
    """`"YYYY-MM"` bucket for ``moment`` in ``tz``."""
    local = _as_utc(moment).astimezone(tz)
    return f"{local.year:04d}-{local.month:02d}"


def date_key(moment: datetime, tz: tzinfo = timezone.utc) -> str:
    """`"YYYY-MM-DD"` day for ``moment`` in ``tz``."""
    return _as_utc(moment).astimezone(tz).strftime("%Y-%m-%d")


def format_period(year: int, month: int) -> str:
    return f"{year:04d}-{month:02d}"
