from __future__ import annotations

import math
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation


def utcnow() -> datetime:
    """Naive UTC timestamp (columns are stored without tz)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def clean_str(value) -> str | None:
    if value is None:
        return None
    v = str(value).strip()
    return v or None


def text_value(value) -> str:
    """Stripped JSON string value. Anything that is not a string reads as blank."""
    return value.strip() if isinstance(value, str) else ""


def parse_date(value) -> date | None:
    """Parse YYYY-MM-DD (or a full ISO timestamp) into a date."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    raw = str(value).strip()
    if not raw:
        return None
    return date.fromisoformat(raw[:10])


def parse_int(value, default: int | None = None) -> int | None:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        raise ValueError("boolean is not an integer")
    return int(value)


def parse_decimal(value) -> Decimal | None:
    if value is None or value == "":
        return None
    try:
        d = Decimal(str(value))
    except InvalidOperation as e:
        raise ValueError(f"not a number: {value!r}") from e
    if not d.is_finite():
        raise ValueError(f"not a finite number: {value!r}")
    return d


def parse_bool(value, default: bool = False) -> bool:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def iso(value) -> str | None:
    return value.isoformat() if value is not None else None


def as_float(value) -> float | None:
    return float(value) if value is not None else None


def next_sequence_number(existing: list[str], prefix: str, width: int = 3) -> str:
    """
    Next human-readable number in a prefixed series.

    ["R-001", "R-007"] with prefix "R-" -> "R-008". Values that do not parse are ignored.
    """
    highest = 0
    for raw in existing:
        if not raw or not raw.startswith(prefix):
            continue
        tail = raw[len(prefix):]
        if tail.isdigit():
            highest = max(highest, int(tail))
    return f"{prefix}{highest + 1:0{width}d}"
