"""Header-row detection for sheets whose table does not start at row 1."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any

from billing_consolidator.config import (
    FINANCIAL_KEYWORDS,
    HEADER_SCAN_LIMIT,
    HEADER_SCAN_ROWS,
    IDENTITY_KEYWORDS,
)
from billing_consolidator.parsers import is_blank

logger = logging.getLogger(__name__)


def _cell_texts(cells: Sequence[Any]) -> list[str]:
    return [str(cell).strip().lower() for cell in cells if not is_blank(cell)]


def has_identity_column(cells: Sequence[Any]) -> bool:
    return any(
        keyword in text for text in _cell_texts(cells) for keyword in IDENTITY_KEYWORDS
    )


def score_header_row(cells: Sequence[Any]) -> int:
    """Number of cells that mention a financial/term keyword."""
    return sum(
        1 for text in _cell_texts(cells) if any(term in text for term in FINANCIAL_KEYWORDS)
    )


def detect_header_row(
    rows: Sequence[Sequence[Any]], max_scan: int = HEADER_SCAN_ROWS
) -> int | None:
    """Return the index of the most header-like row, or ``None``.

    Only rows naming an installation column are candidates; among those the
    row with the most financial keywords wins and ties keep the earliest row.
    """
    limit = max(1, min(max_scan, HEADER_SCAN_LIMIT))
    best_index: int | None = None
    best_score = -1
    for idx, cells in enumerate(rows[:limit]):
        if not cells or not has_identity_column(cells):
            continue
        score = score_header_row(cells)
        if score > best_score:
            best_index, best_score = idx, score

    if best_index is None:
        logger.debug("No header candidate within the first %d rows", limit)
    else:
        logger.debug("Header detected at row %d (score=%d)", best_index + 1, best_score)
    return best_index
