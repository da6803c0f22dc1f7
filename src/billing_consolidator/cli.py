"""CLI entry point for billing-consolidator."""

from __future__ import annotations

import hashlib
import json
import logging
from collections.abc import Callable
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table as RichTable

from billing_consolidator import __version__
from billing_consolidator.config import DEFAULT_CUTOFF_KEY, default_cutoff_for
from billing_consolidator.io import write_json
from billing_consolidator.models import (
    UNRESOLVED_PROJECT,
    ProcessingError,
    ProcessingStats,
    RunManifest,
)
from billing_consolidator.pipeline import FileJob, FileOutcome, analyze, merge_rows, process_many
from billing_consolidator.qc import write_stats_report

app = typer.Typer(
    name="bconsol",
    help="billing-consolidator — Normalize energy-billing spreadsheets into one canonical table.",
    add_completion=False,
    no_args_is_help=True,
)
console = Console()
logger = logging.getLogger(__name__)


def _noop(*_args: object, **_kwargs: object) -> None:
    return None


def _printer(quiet: bool) -> Callable[..., None]:
    return _noop if quiet else console.print


def _err(msg: str) -> None:
    console.print(f"[red]x[/red] {msg}")


def _configure_logging(*, verbose: bool, quiet: bool) -> None:
    level = logging.DEBUG if verbose else logging.WARNING if quiet else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


# ── Helpers ──────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"billing-consolidator v{__version__}")
        raise typer.Exit()


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _sha256_file(path: Path) -> str:
    h = hashlib.sha256()
    with open(path, "rb") as fh:
        for chunk in iter(lambda: fh.read(8192), b""):
            h.update(chunk)
    return h.hexdigest()


def _parse_cutoff(raw: str | None, *, source: str = "--cutoff") -> date | None:
    if raw is None or not raw.strip():
        return None
    try:
        return date.fromisoformat(raw.strip())
    except ValueError as exc:
        raise ValueError(f"Invalid {source} value: {raw!r} (expected YYYY-MM-DD)") from exc


def _load_cutoff_profile(profile: Path | None) -> dict[str, date]:
    """Return ``{PROJECT: cutoff}`` from a profile file of ``PROJECT=YYYY-MM-DD`` lines."""
    if not profile:
        return {}
    if not profile.exists():
        raise ValueError(f"Cutoff profile not found: {profile} (expected lines like LNV=2025-01-01)")
    if profile.is_dir():
        raise ValueError(f"Cutoff profile is a directory, not a file: {profile}")
    try:
        text = profile.read_text(encoding="utf-8")
    except OSError as exc:
        raise ValueError(f"Cannot read cutoff profile {profile}: {exc}") from exc

    cutoffs: dict[str, date] = {}
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        if "=" not in stripped:
            raise ValueError(f"Invalid cutoff profile line: {stripped!r}  (expected PROJECT=YYYY-MM-DD)")
        project, raw = stripped.split("=", 1)
        project = project.strip().upper()
        if not project:
            raise ValueError(f"Invalid cutoff profile line: {stripped!r}  (empty project)")
        cutoff = _parse_cutoff(raw, source=f"cutoff for {project}")
        if cutoff is not None:
            cutoffs[project] = cutoff
    return cutoffs


def _resolve_cutoff(
    project: str | None,
    *,
    explicit: date | None,
    profile: dict[str, date],
    use_defaults: bool,
) -> date | None:
    if explicit is not None:
        return explicit
    key = (project or DEFAULT_CUTOFF_KEY).upper()
    if key in profile:
        return profile[key]
    if DEFAULT_CUTOFF_KEY in profile:
        return profile[DEFAULT_CUTOFF_KEY]
    if use_defaults:
        return date.fromisoformat(default_cutoff_for(project))
    return None


def _detect_projects(path: Path, manual_code: str | None) -> list[str]:
    try:
        projects = analyze(path, manual_code).projects
    except (ProcessingError, OSError) as exc:
        logger.debug("Project detection failed for %s: %s", path.name, exc)
        return []
    return [p for p in projects if p != UNRESOLVED_PROJECT]


def _plan_jobs(
    input_files: list[Path],
    *,
    manual_code: str | None,
    target_project: str | None,
    split_projects: bool,
    explicit_cutoff: date | None,
    profile: dict[str, date],
    use_defaults: bool,
) -> list[FileJob]:
    """One job per file, or per (file, project) when splitting mixed files.

    Files are analyzed up front only when the split or a per-project cutoff
    needs to know which projects they hold.
    """
    cutoff_by_project = explicit_cutoff is None and (bool(profile) or use_defaults)
    jobs: list[FileJob] = []
    for path in input_files:
        detected: list[str] = []
        if not target_project and (split_projects or (cutoff_by_project and not manual_code)):
            detected = _detect_projects(path, manual_code)

        targets: list[str | None] = [target_project]
        if split_projects and len(detected) > 1:
            targets = list(detected)
        for target in targets:
            project = target or manual_code or (detected[0] if len(detected) == 1 else None)
            jobs.append(
                FileJob(
                    source=path,
                    manual_code=manual_code,
                    cutoff_date=_resolve_cutoff(
                        project, explicit=explicit_cutoff, profile=profile, use_defaults=use_defaults
                    ),
                    target_project=target,
                )
            )
    return jobs


def _write_manifest(
    out_dir: Path,
    input_files: list[Path],
    created_at: str,
    *,
    outcomes: list[FileOutcome] | None = None,
    rows_out: int = 0,
    status: str = "success",
    errors: dict[str, str] | None = None,
) -> Path:
    sha256: dict[str, str] = {}
    for path in input_files:
        try:
            sha256[path.name] = _sha256_file(path)
        except OSError:
            pass

    outcomes = outcomes or []
    errors = dict(errors or {})
    errors.update({o.job.label: o.error for o in outcomes if not o.ok})
    manifest = RunManifest(
        version=__version__,
        input_paths=[str(p.resolve()) for p in input_files],
        output_dir=str(out_dir.resolve()),
        created_at_utc=created_at,
        files_ok=sum(1 for o in outcomes if o.ok),
        files_failed=sum(1 for o in outcomes if not o.ok),
        rows_out=rows_out,
        sha256=sha256,
        status=status,
        errors=errors,
    )
    return write_json(out_dir / "run_manifest.json", manifest.to_dict())


def _write_failure_artifacts(
    out_dir: Path,
    input_files: list[Path],
    created_at: str,
    *,
    message: str,
) -> tuple[Path, Path]:
    stats_path = write_stats_report(out_dir, {})
    manifest_path = _write_manifest(
        out_dir, input_files, created_at, status="failed", errors={"run": message}
    )
    return stats_path, manifest_path


def _stats_table(outcomes: list[FileOutcome]) -> RichTable:
    tbl = RichTable(title="Processing Summary", show_lines=True)
    tbl.add_column("File", style="bold")
    for heading in ("Total", "Processed", "Old", "Cancelled", "Empty", "Status", "Result"):
        tbl.add_column(heading, justify="right")
    for outcome in outcomes:
        if outcome.result is None:
            tbl.add_row(outcome.job.label, *[""] * 6, f"[red]{outcome.error}[/red]")
            continue
        s = outcome.result.stats
        tbl.add_row(
            outcome.job.label,
            str(s.total), str(s.processed), str(s.skipped_old),
            str(s.skipped_cancelled), str(s.skipped_empty), str(s.skipped_status),
            "[green]OK[/green]",
        )
    return tbl


# ── Callbacks ────────────────────────────────────────────────────


@app.callback()
def main(
    version: bool | None = typer.Option(
        None, "--version", "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """billing-consolidator CLI."""


# ── analyze command ──────────────────────────────────────────────


@app.command("analyze")
def analyze_command(
    input_files: list[Path] = typer.Option(
        ..., "--input", "-i",
        help="Spreadsheet(s) to inspect (.xlsx, .xls or .csv).",
        exists=True, readable=True,
    ),
    manual_code: str | None = typer.Option(
        None, "--manual-code", "-c",
        help="Project code to assume for rows without a project column.",
    ),
    as_json: bool = typer.Option(False, "--json", help="Print the result as JSON."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging."),
) -> None:
    """Report which project codes each file contains, with row counts."""
    _configure_logging(verbose=verbose, quiet=as_json)
    payload: dict[str, dict[str, Any]] = {}
    failed = False
    for path in input_files:
        try:
            payload[path.name] = analyze(path, manual_code).to_dict()
        except (ProcessingError, OSError) as exc:
            failed = True
            payload[path.name] = {"error": str(exc)}
            if not as_json:
                _err(f"{path.name}: {exc}")

    if as_json:
        typer.echo(json.dumps(payload, indent=2, ensure_ascii=False, sort_keys=True))
    else:
        tbl = RichTable(title="Detected Projects", show_lines=True)
        tbl.add_column("File", style="bold")
        tbl.add_column("Project")
        tbl.add_column("Rows", justify="right")
        for name, info in payload.items():
            counts = info.get("projectCounts") or {}
            if not counts:
                tbl.add_row(name, "[yellow]none[/yellow]", "0")
            for project, count in counts.items():
                label = f"[yellow]{project}[/yellow]" if project == UNRESOLVED_PROJECT else project
                tbl.add_row(name, label, str(count))
        console.print(tbl)

    if failed:
        raise typer.Exit(code=2)


# ── run command ──────────────────────────────────────────────────


@app.command()
def run(
    input_files: list[Path] = typer.Option(
        ..., "--input", "-i",
        help="Spreadsheet(s) to process (.xlsx, .xls or .csv).",
        exists=True, readable=True,
    ),
    out_dir: Path = typer.Option(
        Path("output"), "--out-dir", "-o",
        help="Output directory for canonical rows + stats + manifest.",
    ),
    manual_code: str | None = typer.Option(
        None, "--manual-code", "-c",
        help="Project code to assume for rows without a project column.",
    ),
    cutoff: str | None = typer.Option(
        None, "--cutoff",
        help="Skip rows whose reference month precedes this date (YYYY-MM-DD).",
    ),
    cutoff_profile: Path | None = typer.Option(
        None, "--cutoff-profile",
        help="File with PROJECT=YYYY-MM-DD lines (DEFAULT=... as fallback).",
    ),
    default_cutoff: bool = typer.Option(
        False, "--default-cutoff/--no-default-cutoff",
        help="Fall back to the built-in per-project cutoff dates.",
    ),
    target_project: str | None = typer.Option(
        None, "--target-project", "-t",
        help="Keep only rows resolved to this project code.",
    ),
    split_projects: bool = typer.Option(
        False, "--split-projects",
        help="Process each project of a mixed file as its own item.",
    ),
    jobs: int = typer.Option(
        1, "--jobs", "-j", min=1,
        help="Number of files processed in parallel (separate processes).",
    ),
    quiet: bool = typer.Option(
        False, "--quiet", "-q",
        help="Suppress informational output; still writes all artifacts.",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging."),
) -> None:
    """Classify, normalize and consolidate billing rows from spreadsheets."""
    _configure_logging(verbose=verbose, quiet=quiet)
    echo = _printer(quiet)
    created_at = _utcnow_iso()
    out_dir.mkdir(parents=True, exist_ok=True)

    try:
        explicit_cutoff = _parse_cutoff(cutoff)
        profile = _load_cutoff_profile(cutoff_profile)
    except ValueError as exc:
        stats_path, manifest_path = _write_failure_artifacts(
            out_dir, input_files, created_at, message=str(exc)
        )
        _err(str(exc))
        console.print(f"  Stats    -> {stats_path}")
        console.print(f"  Manifest -> {manifest_path}")
        raise typer.Exit(code=2)

    if not quiet:
        console.print(Panel(
            f"[bold]billing-consolidator[/bold] v{__version__}\n"
            f"Inputs: {', '.join(p.name for p in input_files)}\nOutput: {out_dir}",
            title="Pipeline Start", border_style="blue",
        ))
        if manual_code:
            console.print(f"  Manual project code: {manual_code.upper()}")
        if target_project:
            console.print(f"  Target project: {target_project.upper()}")

    try:
        echo("[blue]>[/blue] Planning …")
        plan = _plan_jobs(
            input_files,
            manual_code=manual_code,
            target_project=target_project,
            split_projects=split_projects,
            explicit_cutoff=explicit_cutoff,
            profile=profile,
            use_defaults=default_cutoff,
        )
        for job in plan:
            echo(f"  {job.label}: cutoff={job.cutoff_date.isoformat() if job.cutoff_date else 'none'}")

        echo(f"[blue]>[/blue] Processing {len(plan)} item(s) …")
        outcomes = process_many(plan, max_workers=jobs)
        rows = merge_rows(outcomes)

        rows_path = write_json(
            out_dir / "canonical_rows.json", [row.to_record() for row in rows], sort_keys=False
        )
        stats: dict[str, ProcessingStats] = {
            o.job.label: o.result.stats for o in outcomes if o.result is not None
        }
        stats_path = write_stats_report(out_dir, stats)
        failed = [o for o in outcomes if not o.ok]
        manifest_path = _write_manifest(
            out_dir,
            input_files,
            created_at,
            outcomes=outcomes,
            rows_out=len(rows),
            status="failed" if failed else "success",
        )

        if not quiet:
            console.print(_stats_table(outcomes))
        echo(f"  Rows     -> {rows_path}")
        echo(f"  Stats    -> {stats_path}")
        echo(f"  Manifest -> {manifest_path}")

        if failed:
            for outcome in failed:
                _err(f"{outcome.job.label}: {outcome.error}")
            raise typer.Exit(code=2)

        if not quiet:
            console.print(Panel(
                f"[green]Done[/green] — {len(rows)} rows -> {rows_path}",
                title="Pipeline Complete", border_style="green",
            ))
    except typer.Exit:
        raise
    except Exception as exc:
        message = f"Unexpected internal error: {exc}"
        stats_path, manifest_path = _write_failure_artifacts(
            out_dir, input_files, created_at, message=message
        )
        _err(message)
        console.print(f"  Stats    -> {stats_path}")
        console.print(f"  Manifest -> {manifest_path}")
        raise typer.Exit(code=1)
