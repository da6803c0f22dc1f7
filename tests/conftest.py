from __future__ import annotations

import io
from collections.abc import Callable, Sequence
from typing import Any

import pytest
from openpyxl import Workbook


@pytest.fixture
def make_xlsx() -> Callable[..., bytes]:
    """Build an in-memory workbook from ``{sheet name: rows}``."""

    def _make(sheets: dict[str, Sequence[Sequence[Any]]]) -> bytes:
        wb = Workbook()
        wb.remove(wb.active)
        for name, rows in sheets.items():
            ws = wb.create_sheet(title=name)
            for row in rows:
                ws.append(list(row))
        buf = io.BytesIO()
        wb.save(buf)
        return buf.getvalue()

    return _make
