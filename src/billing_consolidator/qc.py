"""Processing-stats aggregation and persistence."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from pathlib import Path

from billing_consolidator.io import write_json
from billing_consolidator.models import ProcessingStats


def combine_stats(stats: Iterable[ProcessingStats]) -> ProcessingStats:
    """Sum per-file counters into one run-level :class:`ProcessingStats`."""
    combined = ProcessingStats()
    for file_stats in stats:
        for name in ProcessingStats._counter_names():
            setattr(combined, name, getattr(combined, name) + getattr(file_stats, name))
    return combined


def write_stats_report(out_dir: Path, stats: Mapping[str, ProcessingStats]) -> Path:
    """Write ``stats.json`` into *out_dir*.

    Layout: ``{"files": {label: counters}, "total": counters}``.
    """
    payload = {
        "files": {label: file_stats.to_dict() for label, file_stats in stats.items()},
        "total": combine_stats(stats.values()).to_dict(),
    }
    return write_json(out_dir / "stats.json", payload)
