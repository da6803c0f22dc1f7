"""Business rules — delay, risk, cutoff/cancellation and economy."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any

from billing_consolidator.config import CANCELLATION_MARKERS
from billing_consolidator.parsers import parse_date


class Risk(str, Enum):
    """Delinquency risk tier derived from days late."""

    NONE = "Nenhum"
    LOW = "Baixo"
    MEDIUM = "Médio"
    HIGH = "Alto"


class SkipReason(str, Enum):
    CANCELLED = "cancelled"
    OLD_DATE = "old_date"


@dataclass(frozen=True)
class SkipDecision:
    skip: bool = False
    reason: SkipReason | None = None


KEEP = SkipDecision()


def _as_day(value: date | datetime) -> date:
    return value.date() if isinstance(value, datetime) else value


def compute_days_late(due_date: date | None, today: date | None = None) -> int:
    """Whole days between *due_date* and *today*, floored at zero."""
    if due_date is None:
        return 0
    today = _as_day(today) if today is not None else date.today()
    diff = (today - _as_day(due_date)).days
    return diff if diff > 0 else 0


def classify_risk(days_late: int) -> Risk:
    """Bucket *days_late* into a risk tier: 0 / 1-30 / 31-90 / 90+."""
    if days_late <= 0:
        return Risk.NONE
    if days_late <= 30:
        return Risk.LOW
    if days_late <= 90:
        return Risk.MEDIUM
    return Risk.HIGH


def is_cancelled(status_text: Any) -> bool:
    status = str(status_text or "").lower()
    return any(marker in status for marker in CANCELLATION_MARKERS)


def should_skip_row(
    reference_date: date | None,
    cutoff_date: date | str | None,
    status_text: Any,
) -> SkipDecision:
    """Decide whether a row is excluded before it is transformed.

    Cancellation wins over dates. Otherwise a row is old when its reference
    month precedes the cutoff month; day-of-month is ignored on both sides.
    """
    if is_cancelled(status_text):
        return SkipDecision(True, SkipReason.CANCELLED)

    cutoff = parse_date(cutoff_date) if cutoff_date else None
    if reference_date is not None and cutoff is not None:
        if (reference_date.year, reference_date.month) < (cutoff.year, cutoff.month):
            return SkipDecision(True, SkipReason.OLD_DATE)
    return KEEP


def to_cents(amount: float) -> int:
    return int(math.floor(amount * 100 + 0.5))


def format_cents(cents: int) -> str:
    sign = "-" if cents < 0 else ""
    cents = abs(cents)
    return f"{sign}{cents // 100}.{cents % 100:02d}"


def compute_economy(cost_with_benefit: float, cost_without_benefit: float) -> str:
    """Savings as a 2-decimal string, computed in whole cents.

    A negative result is suppressed to ``""``.
    """
    cents = to_cents(cost_without_benefit) - to_cents(cost_with_benefit)
    if cents < 0:
        return ""
    return format_cents(cents)
