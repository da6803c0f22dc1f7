"""Value parsers — currency, dates and identifier normalizers.

Every function here is total: malformed input degrades to ``0``, ``None`` or
``""`` and never raises.
"""

from __future__ import annotations

import math
import re
import warnings
from datetime import date, datetime, timedelta, timezone
from typing import Any

import pandas as pd

# Spreadsheet serial day 0. Using 1899-12-30 rather than 1900-01-01 absorbs
# the fictitious 1900-02-29 that the format counts.
SERIAL_EPOCH = date(1899, 12, 30)
SERIAL_MIN = 25000  # 1968-06-11
SERIAL_MAX = 60000  # 2064-04-08
UNIX_SECONDS_MIN = 1_000_000_000
UNIX_SECONDS_MAX = 2_000_000_000

_NUMBER_PREFIX_RE = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)")
_SERIAL_STR_RE = re.compile(r"^\d{5,}(\.\d+)?$")
_ISO_RE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})(?:[T ]\d{1,2}:\d{2}(?::\d{2})?.*)?$")
_DMY_RE = re.compile(r"^(\d{1,2})[/-](\d{1,2})[/-](\d{2,4})(?:\s.*)?$")
_MY_RE = re.compile(r"^(\d{1,2})[/-](\d{4})$")
_NAMED_MONTH_RE = re.compile(r"^([a-zç]+)[/\-\s.]+(\d{2}|\d{4})$")

_MONTHS_PT: dict[str, int] = {
    "jan": 1, "janeiro": 1,
    "fev": 2, "fevereiro": 2,
    "mar": 3, "março": 3, "marco": 3,
    "abr": 4, "abril": 4,
    "mai": 5, "maio": 5,
    "jun": 6, "junho": 6,
    "jul": 7, "julho": 7,
    "ago": 8, "agosto": 8,
    "set": 9, "setembro": 9,
    "out": 10, "outubro": 10,
    "nov": 11, "novembro": 11,
    "dez": 12, "dezembro": 12,
}


def is_blank(value: Any) -> bool:
    """True for ``None``, NaN/NaT and empty or whitespace-only strings."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


# ── Currency ─────────────────────────────────────────────────────


def _normalize_currency_token(token: str) -> str:
    token = token.replace("R$", "")
    token = re.sub(r"[\s ]+", "", token)
    token = re.sub(r"^\((.*)\)$", r"-\1", token)

    has_comma = "," in token
    has_dot = "." in token
    if has_comma and has_dot:
        # 1.234,56: dot groups thousands, comma is the decimal mark.
        return token.replace(".", "").replace(",", ".", 1)
    if has_comma:
        return token.replace(",", ".", 1)
    return token


def parse_currency(value: Any) -> float:
    """Parse a monetary cell into a float; ``0.0`` when it cannot be read."""
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        number = float(value)
        return 0.0 if math.isnan(number) or math.isinf(number) else number
    if is_blank(value):
        return 0.0

    token = _normalize_currency_token(str(value))
    match = _NUMBER_PREFIX_RE.match(token)
    if not match:
        return 0.0
    try:
        return float(match.group(0))
    except ValueError:
        return 0.0


# ── Dates ────────────────────────────────────────────────────────


def _safe_date(year: int, month: int, day: int) -> date | None:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def serial_to_date(serial: float) -> date | None:
    """Convert a spreadsheet serial day count into a calendar date."""
    if not SERIAL_MIN < serial < SERIAL_MAX:
        return None
    return SERIAL_EPOCH + timedelta(days=int(serial))


def _from_number(number: float) -> date | None:
    if math.isnan(number) or math.isinf(number):
        return None
    if SERIAL_MIN < number < SERIAL_MAX:
        return serial_to_date(number)
    if UNIX_SECONDS_MIN < number < UNIX_SECONDS_MAX:
        return datetime.fromtimestamp(number, tz=timezone.utc).date()
    return None


def _expand_year(year: int) -> int:
    return year + 2000 if year < 100 else year


def _from_text(text: str) -> date | None:
    if _SERIAL_STR_RE.match(text):
        return serial_to_date(float(text))

    m = _ISO_RE.match(text)
    if m:
        return _safe_date(int(m.group(1)), int(m.group(2)), int(m.group(3)))

    m = _DMY_RE.match(text)
    if m:
        day, month, year = int(m.group(1)), int(m.group(2)), int(m.group(3))
        return _safe_date(_expand_year(year), month, day)

    m = _MY_RE.match(text)
    if m:
        return _safe_date(int(m.group(2)), int(m.group(1)), 1)

    m = _NAMED_MONTH_RE.match(text.lower())
    if m and m.group(1) in _MONTHS_PT:
        return _safe_date(_expand_year(int(m.group(2))), _MONTHS_PT[m.group(1)], 1)

    return _fallback_parse(text)


def _fallback_parse(text: str) -> date | None:
    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        try:
            parsed = pd.to_datetime(text, errors="coerce", dayfirst=True)
        except (ValueError, TypeError, OverflowError):
            return None
    if pd.isna(parsed):
        return None
    return parsed.date()


def parse_date(value: Any) -> date | None:
    """Parse a date cell in any of the encodings seen in billing exports.

    Accepts native dates, spreadsheet serial numbers (as numbers or digit
    strings), Unix timestamps in seconds, ISO ``YYYY-MM-DD[THH:MM:SS]``,
    ``DD/MM/YYYY`` / ``DD-MM-YY``, ``MM/YYYY`` and Portuguese month names
    (``jan/2025``). Month-only values resolve to day 1.
    """
    if isinstance(value, bool) or is_blank(value):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)):
        return _from_number(float(value))
    return _from_text(str(value).strip())


def format_date(value: date | None) -> str:
    """Render *value* as ``DD-MM-YYYY``; empty string when missing."""
    if not isinstance(value, date):
        return ""
    if isinstance(value, datetime):
        if pd.isna(value):
            return ""
        value = value.date()
    return f"{value.day:02d}-{value.month:02d}-{value.year:04d}"


# ── Identifiers ──────────────────────────────────────────────────


def normalize_installation_id(value: Any) -> str:
    """Keep only the digits of an installation code (``10/530195-7`` -> ``105301957``)."""
    if is_blank(value):
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return re.sub(r"\D", "", str(value))


def normalize_distributor_name(value: Any) -> str:
    """Upper-case a distributor name and turn underscores into spaces."""
    if is_blank(value):
        return ""
    return str(value).upper().replace("_", " ").strip()
