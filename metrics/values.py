"""
metrics/values.py

Cell-level parsing and bucketing helpers shared by the column sniffer and the
aggregation code. All functions are pure and return None for values they
cannot interpret.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

DATE_FORMATS: tuple[str, ...] = (
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%m/%d/%Y",
    "%d.%m.%Y",
    "%Y-%m-%d %H:%M:%S",
    "%Y/%m/%d %H:%M:%S",
    "%Y/%m/%d %H:%M",
    "%m/%d/%Y %H:%M:%S",
    "%b %d, %Y",
    "%d %b %Y",
)

_CURRENCY_SYMBOLS = "$€£¥"

_MALE_TOKENS = frozenset({"m", "male", "man", "boy", "男"})
_FEMALE_TOKENS = frozenset({"f", "female", "woman", "girl", "女"})

GENDER_MALE = "male"
GENDER_FEMALE = "female"
GENDER_OTHER = "other"

_MAX_AGE = 120

MAX_ABS_AMOUNT = Decimal("1e14")


def is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def parse_decimal(value: Any) -> Decimal | None:
    """
    Parse a finite decimal, tolerating thousands separators and a leading
    currency symbol (``"$1,234.50"``).
    """

    if is_blank(value):
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, Decimal)):
        return Decimal(value)
    if isinstance(value, float):
        value = repr(value)

    raw = str(value).strip()
    if raw and raw[0] in _CURRENCY_SYMBOLS:
        raw = raw[1:].strip()
    elif raw[:1] in "+-" and raw[1:2] in tuple(_CURRENCY_SYMBOLS):
        raw = raw[0] + raw[2:].strip()
    raw = raw.replace(",", "")
    try:
        parsed = Decimal(raw)
    except (InvalidOperation, ValueError):
        return None
    if not parsed.is_finite():
        return None
    return parsed


def parse_amount(value: Any) -> Decimal | None:
    """
    Parse a monetary cell for aggregation. Values at or beyond
    ``MAX_ABS_AMOUNT`` are treated as unparseable so aggregate sums stay
    within the stored ``Numeric(38, 6)`` range.
    """

    parsed = parse_decimal(value)
    if parsed is None or abs(parsed) >= MAX_ABS_AMOUNT:
        return None
    return parsed


def parse_datetime(value: Any) -> datetime | None:
    """
    Parse ISO-8601 or one of ``DATE_FORMATS`` into a timezone-aware datetime.
    """

    if is_blank(value):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)

    raw = str(value).strip()
    normalized = raw[:-1] + "+00:00" if raw.endswith("Z") else raw
    try:
        parsed = datetime.fromisoformat(normalized)
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    except ValueError:
        pass

    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(raw, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    return None


def parse_date(value: Any) -> date | None:
    parsed = parse_datetime(value)
    return parsed.date() if parsed is not None else None


def month_start(value: date) -> date:
    return value.replace(day=1)


def add_months(value: date, months: int) -> date:
    """Shift a first-of-month date by ``months`` (may be negative)."""

    index = value.year * 12 + (value.month - 1) + months
    return date(index // 12, index % 12 + 1, 1)


def normalize_text(value: Any) -> str | None:
    if is_blank(value):
        return None
    return " ".join(str(value).split())


def normalize_key(value: Any) -> str | None:
    """Identity used for distinct counting: whitespace-collapsed, case-folded."""

    text = normalize_text(value)
    return text.casefold() if text is not None else None


def normalize_gender(value: Any) -> str | None:
    text = normalize_text(value)
    if text is None:
        return None
    token = text.casefold()
    if token in _MALE_TOKENS:
        return GENDER_MALE
    if token in _FEMALE_TOKENS:
        return GENDER_FEMALE
    return GENDER_OTHER


def age_from_birth_date(birth_date: date, today: date) -> int:
    years = today.year - birth_date.year
    if (today.month, today.day) < (birth_date.month, birth_date.day):
        years -= 1
    return years


def age_band(age: int) -> str | None:
    """Ten-year band label, e.g. ``"20-29"``; ``"100+"`` at the top end."""

    if age < 0 or age > _MAX_AGE:
        return None
    if age >= 100:
        return "100+"
    lower = (age // 10) * 10
    return f"{lower}-{lower + 9}"


def age_band_sort_key(label: str) -> int:
    digits = label.split("-", 1)[0].rstrip("+")
    try:
        return int(digits)
    except ValueError:
        return _MAX_AGE + 1
