"""Lenient converters for values read from forms, workbooks, and mappings."""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Optional
import re


ZERO = Decimal("0")
_EPOCH_PATTERN = re.compile(r"-?\d+(\.\d+)?")


def to_decimal(value: object, default: Decimal = ZERO) -> Decimal:
    """Convert loosely typed numeric input into a :class:`Decimal`.

    ``None``, empty strings, booleans, and values that cannot be parsed fall
    back to ``default``. Floats go through ``str`` so ``0.1`` stays
    ``Decimal("0.1")``.
    """

    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return default
    if isinstance(value, Decimal):
        return value if value.is_finite() else default
    try:
        result = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return default
    if not result.is_finite():
        return default
    return result


def normalize_date(value: object) -> Optional[str]:
    """Return ``value`` as an ISO ``YYYY-MM-DD`` string, or ``None``.

    Accepts :class:`date` and :class:`datetime` objects and strings whose first
    ten characters form an ISO date (``"2025-01-02T10:00:00"`` works).
    Anything else is treated as a missing date.
    """

    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    text = str(value).strip()
    if len(text) < 10:
        return None
    try:
        return date.fromisoformat(text[:10]).isoformat()
    except ValueError:
        return None


def parse_date(value: object) -> Optional[date]:
    normalized = normalize_date(value)
    return date.fromisoformat(normalized) if normalized else None


def normalize_timestamp(value: object) -> str:
    """Render a creation timestamp as text (empty when missing)."""

    if value is None:
        return ""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value).strip()


def parse_timestamp(value: object) -> Optional[datetime]:
    """Parse a creation timestamp into an aware UTC :class:`datetime`.

    ISO strings may end in ``Z`` or carry any UTC offset; naive values are
    taken as UTC. Bare numbers, as stored by older documents, are epoch
    milliseconds. Returns ``None`` for missing or unreadable values.
    """

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, date):
        moment = datetime(value.year, value.month, value.day)
    elif isinstance(value, (int, float, Decimal)) or _EPOCH_PATTERN.fullmatch(str(value).strip()):
        millis = to_decimal(value, default=Decimal("NaN"))
        if not millis.is_finite():
            return None
        try:
            return datetime.fromtimestamp(float(millis) / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    else:
        text = str(value).strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            moment = datetime.fromisoformat(text)
        except ValueError:
            return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


__all__ = ["ZERO", "normalize_date", "normalize_timestamp", "parse_date", "parse_timestamp", "to_decimal"]
