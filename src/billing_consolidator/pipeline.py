"""Pipeline orchestrator — sheets -> header detection -> dispatch -> aggregate.

Row-level problems never raise; they are folded into :class:`ProcessingStats`.
Only structural problems with a whole file raise :class:`ProcessingError`.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Iterable, Sequence
from concurrent.futures import ProcessPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import date
from pathlib import Path

from billing_consolidator.classifiers import Classifier, default_classifiers, dispatch
from billing_consolidator.config import HEADER_SCAN_LIMIT, HEADER_SCAN_ROWS
from billing_consolidator.headers import detect_header_row
from billing_consolidator.io import Source, read_workbook
from billing_consolidator.models import (
    AnalysisResult,
    CanonicalRow,
    ManualCodeRequiredError,
    NoHeaderError,
    ProcessingContext,
    ProcessingError,
    ProcessResult,
    RejectReason,
    Rejection,
)
from billing_consolidator.rows import RawRow, Sheet

logger = logging.getLogger(__name__)


def _clean_code(code: str | None) -> str | None:
    code = (code or "").strip().upper()
    return code or None


def _sheet_records(sheet: Sheet, max_scan: int) -> list[RawRow] | None:
    header_index = detect_header_row(sheet.rows, max_scan)
    if header_index is None:
        logger.info("Skipping sheet %r: no header row found", sheet.name)
        return None
    return sheet.records(header_index)


# ── Full pass ───────────────────────────────────────────────────


def process_sheets(
    sheets: Iterable[Sheet],
    file_name: str = "",
    manual_code: str | None = None,
    cutoff_date: date | str | None = None,
    target_project: str | None = None,
    *,
    classifiers: Sequence[Classifier] | None = None,
    today: date | None = None,
    max_scan: int = HEADER_SCAN_ROWS,
) -> ProcessResult:
    """Classify and normalize every row of every sheet.

    *target_project* keeps only rows resolved to that code; the others are
    counted as skipped. Raises :class:`NoHeaderError` when no sheet has a
    header and :class:`ManualCodeRequiredError` when no row could be routed
    and no manual code was given.
    """
    chain = list(classifiers) if classifiers is not None else default_classifiers()
    context = ProcessingContext(
        manual_code=_clean_code(manual_code),
        cutoff_date=cutoff_date or None,
        file_name=file_name,
        today=today,
    )
    target = _clean_code(target_project)
    result = ProcessResult()
    stats = result.stats
    sheets_with_header = 0
    unmatched = 0

    for sheet in sheets:
        records = _sheet_records(sheet, max_scan)
        if records is None:
            continue
        sheets_with_header += 1
        for row in records:
            _, outcome = dispatch(row, context, chain)
            if isinstance(outcome, CanonicalRow) and target and outcome.project != target:
                outcome = Rejection(RejectReason.FILTERED, f"project {outcome.project} is not {target}")
            stats.record(outcome)
            if isinstance(outcome, Rejection):
                if outcome.reason is RejectReason.UNMATCHED:
                    unmatched += 1
                logger.debug("%s [%s]: row skipped (%s) %s", file_name, sheet.name,
                             outcome.reason.value, outcome.detail)
                continue
            result.rows.append(outcome)

    if not sheets_with_header:
        raise NoHeaderError(f"No billing header row found in {file_name or 'workbook'}")
    if stats.total and unmatched == stats.total and context.manual_code is None:
        raise ManualCodeRequiredError(
            f"No project code could be resolved in {file_name or 'workbook'}; "
            "supply a manual project code"
        )

    logger.info("%s: %s", file_name or "workbook", stats.to_dict())
    return result


# ── Analysis pass ───────────────────────────────────────────────


def analyze_sheets(
    sheets: Iterable[Sheet],
    manual_code: str | None = None,
    *,
    classifiers: Sequence[Classifier] | None = None,
    max_scan: int = HEADER_SCAN_LIMIT,
) -> AnalysisResult:
    """Count rows per resolved project without cutoff filtering.

    Rows whose project cannot be resolved are counted under ``"TBD"``.
    """
    chain = list(classifiers) if classifiers is not None else default_classifiers()
    context = ProcessingContext(manual_code=_clean_code(manual_code), preview=True)
    counts: Counter[str] = Counter()
    for sheet in sheets:
        records = _sheet_records(sheet, max_scan)
        if records is None:
            continue
        for row in records:
            _, outcome = dispatch(row, context, chain)
            if isinstance(outcome, CanonicalRow):
                counts[outcome.project] += 1
    return AnalysisResult(project_counts=dict(counts))


# ── Buffer / path entry points ──────────────────────────────────


def _default_name(source: Source) -> str:
    if isinstance(source, (str, Path)):
        return Path(source).name
    return ""


def process(
    source: Source,
    file_name: str | None = None,
    manual_code: str | None = None,
    cutoff_date: date | str | None = None,
    target_project: str | None = None,
    *,
    suffix: str | None = None,
    today: date | None = None,
) -> ProcessResult:
    """Decode *source* and run the full pass over it."""
    sheets = read_workbook(source, suffix=suffix)
    return process_sheets(
        sheets,
        file_name if file_name is not None else _default_name(source),
        manual_code,
        cutoff_date,
        target_project,
        today=today,
    )


def analyze(
    source: Source, manual_code: str | None = None, *, suffix: str | None = None
) -> AnalysisResult:
    """Decode *source* and report which projects it holds."""
    return analyze_sheets(read_workbook(source, suffix=suffix), manual_code)


# ── Multi-file batches ──────────────────────────────────────────


@dataclass(frozen=True)
class FileJob:
    """One logical work item: a file, optionally narrowed to one project."""

    source: Path
    manual_code: str | None = None
    cutoff_date: date | str | None = None
    target_project: str | None = None
    today: date | None = None

    @property
    def label(self) -> str:
        name = self.source.name
        return f"{name} [{self.target_project}]" if self.target_project else name


@dataclass(frozen=True)
class FileOutcome:
    job: FileJob
    result: ProcessResult | None = None
    error: str = ""

    @property
    def ok(self) -> bool:
        return self.result is not None


def run_job(job: FileJob) -> FileOutcome:
    """Process one job, turning file-level failures into an error outcome."""
    try:
        result = process(
            job.source,
            job.source.name,
            job.manual_code,
            job.cutoff_date,
            job.target_project,
            today=job.today,
        )
    except (ProcessingError, OSError) as exc:
        logger.warning("%s: %s", job.label, exc)
        return FileOutcome(job=job, error=str(exc))
    return FileOutcome(job=job, result=result)


def process_many(jobs: Iterable[FileJob], max_workers: int | None = None) -> list[FileOutcome]:
    """Run *jobs* in separate processes; outcomes keep submission order.

    A failing file yields an error outcome and does not stop the others.
    ``max_workers=1`` runs everything in-process.
    """
    jobs = list(jobs)
    if max_workers == 1 or len(jobs) <= 1:
        return [run_job(job) for job in jobs]

    outcomes: list[FileOutcome | None] = [None] * len(jobs)
    with ProcessPoolExecutor(max_workers=max_workers) as executor:
        future_to_idx = {executor.submit(run_job, job): idx for idx, job in enumerate(jobs)}
        for future in as_completed(future_to_idx):
            outcomes[future_to_idx[future]] = future.result()
    return [outcome for outcome in outcomes if outcome is not None]


def merge_rows(outcomes: Iterable[FileOutcome]) -> list[CanonicalRow]:
    """Concatenate the rows of successful outcomes, in order."""
    rows: list[CanonicalRow] = []
    for outcome in outcomes:
        if outcome.result is not None:
            rows.extend(outcome.result.rows)
    return rows
