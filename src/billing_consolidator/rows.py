"""Schema-less row access for sheets read from arbitrary spreadsheets."""

from __future__ import annotations

import re
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from billing_consolidator.parsers import is_blank

_WS_RE = re.compile(r"\s+")


def normalize_label(label: object) -> str:
    """Lower-case *label* and collapse inner whitespace."""
    return _WS_RE.sub(" ", str(label).strip().lower())


class RawRow(Mapping[str, Any]):
    """Read-only label -> value mapping with case-insensitive lookup.

    Column labels coming from different back-offices disagree on casing and
    stray whitespace, so ``row.get("instalação")`` also finds ``" Instalação "``.
    An exact label always wins over a normalized one.
    """

    __slots__ = ("_data", "_index")

    def __init__(self, data: Mapping[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = dict(data or {})
        self._index: dict[str, str] = {}
        for label in self._data:
            self._index.setdefault(normalize_label(label), label)

    def __getitem__(self, key: str) -> Any:
        if key in self._data:
            return self._data[key]
        actual = self._index.get(normalize_label(key))
        if actual is None:
            raise KeyError(key)
        return self._data[actual]

    def __contains__(self, key: object) -> bool:
        if key in self._data:
            return True
        return normalize_label(key) in self._index

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"RawRow({self._data!r})"

    def first(self, *keys: str) -> Any:
        """Return the first non-blank value among *keys*, else ``None``."""
        for key in keys:
            value = self.get(key)
            if not is_blank(value):
                return value
        return None

    def text(self, *keys: str) -> str:
        """Like :meth:`first` but always a stripped string."""
        value = self.first(*keys)
        return "" if value is None else str(value).strip()

    def has_any(self, *keys: str) -> bool:
        return any(key in self for key in keys)


def _unique_labels(header: Sequence[Any]) -> list[str]:
    labels: list[str] = []
    seen: dict[str, int] = {}
    for idx, cell in enumerate(header):
        label = "" if is_blank(cell) else str(cell).strip()
        if not label:
            label = f"__EMPTY_{idx}"
        if label in seen:
            seen[label] += 1
            label = f"{label}_{seen[label]}"
        else:
            seen[label] = 0
        labels.append(label)
    return labels


@dataclass
class Sheet:
    """One worksheet as a raw grid of cell values."""

    name: str
    rows: list[list[Any]] = field(default_factory=list)

    def records(self, header_index: int) -> list[RawRow]:
        """Re-materialize the rows beneath *header_index* as :class:`RawRow`.

        Missing trailing cells default to ``""`` and fully blank rows are
        dropped.
        """
        if header_index < 0 or header_index >= len(self.rows):
            return []
        labels = _unique_labels(self.rows[header_index])
        records: list[RawRow] = []
        for raw in self.rows[header_index + 1:]:
            if all(is_blank(cell) for cell in raw):
                continue
            values = list(raw) + [""] * (len(labels) - len(raw))
            records.append(
                RawRow({label: ("" if is_blank(v) else v) for label, v in zip(labels, values)})
            )
        return records
