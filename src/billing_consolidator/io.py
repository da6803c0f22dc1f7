"""I/O helpers — decode workbooks into sheets, write JSON artifacts."""

from __future__ import annotations

import csv
import io
import json
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Any, BinaryIO, Callable, Union, cast

import pandas as pd

from billing_consolidator.models import WorkbookReadError
from billing_consolidator.rows import Sheet

Source = Union[Path, str, bytes, BinaryIO]

EXCEL_SUFFIXES = (".xlsx", ".xlsm", ".xltx", ".xltm")
_ZIP_MAGIC = b"PK\x03\x04"
_OLE_MAGIC = b"\xd0\xcf\x11\xe0"

# ── Loading ──────────────────────────────────────────────────────


def _frame_to_rows(df: pd.DataFrame) -> list[list[Any]]:
    df = df.astype(object).where(df.notna(), "")
    return [list(row) for row in df.itertuples(index=False, name=None)]


def _sniff_suffix(payload: bytes) -> str:
    if payload.startswith(_ZIP_MAGIC):
        return ".xlsx"
    if payload.startswith(_OLE_MAGIC):
        return ".xls"
    return ".csv"


def _read_csv(payload: bytes, name: str) -> list[Sheet]:
    if not payload.strip():
        return [Sheet(name=name, rows=[])]
    last_exc: Exception | None = None
    for encoding in ("utf-8-sig", "utf-8", "latin-1"):
        try:
            df = pd.read_csv(
                io.BytesIO(payload),
                header=None,
                dtype=str,
                sep=None,
                engine="python",
                encoding=encoding,
                encoding_errors="strict",
                keep_default_na=False,
            )
        except (UnicodeDecodeError, csv.Error, pd.errors.ParserError) as exc:
            last_exc = exc
            continue
        except pd.errors.EmptyDataError:
            return [Sheet(name=name, rows=[])]
        return [Sheet(name=name, rows=_frame_to_rows(df))]
    raise WorkbookReadError(f"Could not read CSV {name} (decode or parse failed)") from last_exc


def _read_excel(payload: bytes, engine: str) -> list[Sheet]:
    read_excel = cast(Callable[..., dict[str, pd.DataFrame]], getattr(pd, "read_excel"))
    frames = read_excel(
        io.BytesIO(payload), sheet_name=None, header=None, dtype=object, engine=engine
    )
    return [Sheet(name=str(name), rows=_frame_to_rows(df)) for name, df in frames.items()]


def read_workbook(source: Source, *, suffix: str | None = None) -> list[Sheet]:
    """Decode *source* into an ordered list of :class:`Sheet`.

    *source* may be a path or an in-memory buffer. For buffers the format is
    taken from *suffix* or sniffed from the leading bytes.

    Raises
    ------
    FileNotFoundError
        If *source* is a path that does not exist.
    WorkbookReadError
        If the format is unsupported or decoding fails.
    """
    name = "<buffer>"
    if isinstance(source, (str, Path)):
        path = Path(source)
        if not path.exists():
            raise FileNotFoundError(f"Input file not found: {path}")
        payload = path.read_bytes()
        suffix = suffix or path.suffix
        name = path.name
    elif isinstance(source, bytes):
        payload = source
    else:
        payload = source.read()

    suffix = (suffix or _sniff_suffix(payload)).lower()
    if suffix == ".csv":
        return _read_csv(payload, name)

    if suffix in EXCEL_SUFFIXES:
        engine = "openpyxl"
    elif suffix == ".xls":
        engine = "xlrd"
    else:
        raise WorkbookReadError(f"Unsupported file type: {suffix!r}. Use .csv, .xlsx, or .xls")

    try:
        return _read_excel(payload, engine)
    except ImportError as exc:
        raise WorkbookReadError(
            "Unsupported .xls input unless 'xlrd' is installed. "
            "Either convert to .xlsx or add dependency: pip install xlrd"
        ) from exc
    except Exception as exc:
        # Engines raise their own types (xlrd.XLRDError, openpyxl InvalidFileException, BadZipFile).
        raise WorkbookReadError(f"Could not read workbook {name}: {exc}") from exc


# ── Writing ──────────────────────────────────────────────────────


def _json_default(obj: Any) -> Any:
    if isinstance(obj, Path):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    item = getattr(obj, "item", None)
    if callable(item):
        converted = item()
        if isinstance(converted, (str, int, float, bool)) or converted is None:
            return converted
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def write_json(path: Path, data: Any, *, sort_keys: bool = True) -> Path:
    """Write *data* as pretty-printed JSON to *path* (atomic + deterministic)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    payload = json.dumps(
        data,
        indent=2,
        sort_keys=sort_keys,
        ensure_ascii=False,
        default=_json_default,
    ) + "\n"
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(payload, encoding="utf-8")
    tmp_path.replace(path)
    return path
