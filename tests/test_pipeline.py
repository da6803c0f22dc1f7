"""Orchestrator behaviour over whole workbooks."""

from __future__ import annotations

from collections.abc import Callable
from datetime import date
from pathlib import Path

import pytest

from billing_consolidator import pipeline as pipeline_mod
from billing_consolidator.config import CANONICAL_COLUMNS
from billing_consolidator.headers import detect_header_row
from billing_consolidator.io import read_workbook
from billing_consolidator.models import ManualCodeRequiredError, NoHeaderError
from billing_consolidator.pipeline import (
    FileJob,
    analyze,
    analyze_sheets,
    merge_rows,
    process,
    process_many,
    process_sheets,
)
from billing_consolidator.rows import Sheet


TODAY = date(2025, 4, 14)

BILLING_HEADER = [
    "Projeto", "Instalação", "Nome", "CNPJ/CPF", "Distribuidora",
    "Mês de Referência", "Data de Emissão", "Vencimento",
    "Custo com GD R$", "Custo sem GD R$", "Status",
]


def _billing_sheet(*rows: list[object], name: str = "Faturas") -> Sheet:
    return Sheet(name=name, rows=[["Relatório de faturamento"], BILLING_HEADER, *[list(r) for r in rows]])


VALID = ["LNV", "10/530195-7", "Maria", "", "cemig_d", "03/2025", "05/03/2025", "15/03/2025", "100,00", "150,00", "Atrasado"]
OLD = ["LNV", "2002", "João", "", "cemig_d", "12/2024", "05/12/2024", "15/12/2024", "10", "20", "Pago"]
CANCELLED = ["LNV", "3003", "Ana", "", "cemig_d", "03/2025", "05/03/2025", "15/03/2025", "10", "20", "Cancelado"]


def test_two_sheet_workbook_end_to_end(make_xlsx: Callable[..., bytes]) -> None:
    payload = make_xlsx({
        "Capa": [["Resumo do mês"], ["Total", "R$ 1.000,00"]],
        "Faturas": [
            ["Relatório de faturamento"],
            ["Cliente: Lua Nova Energia"],
            ["Período: março/2025"],
            ["Gerado em 14/04/2025"],
            BILLING_HEADER,
            VALID,
            OLD,
            CANCELLED,
        ],
    })
    faturas = read_workbook(payload)[1]
    assert detect_header_row(faturas.rows) == 4

    result = process(payload, "jan.xlsx", cutoff_date="2025-01-01", today=TODAY)

    assert result.stats.to_dict() == {
        "total": 3,
        "processed": 1,
        "skippedOld": 1,
        "skippedCancelled": 1,
        "skippedEmpty": 0,
        "skippedStatus": 0,
    }
    [row] = result.rows
    assert row.project == "LNV"
    assert row.installation == "105301957"
    assert row.economy == "50.00"
    assert row.days_late == 30
    assert row.origin_file == "jan.xlsx"
    assert list(result.records()[0]) == list(CANONICAL_COLUMNS)


def test_blank_rows_beneath_the_header_are_not_counted() -> None:
    sheet = _billing_sheet(VALID, [""] * len(BILLING_HEADER), OLD)

    stats = process_sheets([sheet], "x.xlsx", cutoff_date="2025-01-01", today=TODAY).stats

    assert stats.total == 2


def test_overflowing_reported_days_do_not_abort_the_file() -> None:
    header = BILLING_HEADER + ["Dias Atrasados"]
    sheet = Sheet(name="Faturas", rows=[header, VALID + ["1e400"], OLD + ["3"]])

    result = process_sheets([sheet], "jan.xlsx", cutoff_date="2025-01-01", today=TODAY)

    assert result.stats.total == 2
    assert result.stats.processed == 1
    assert result.rows[0].days_late == 30


def test_stats_buckets_always_add_up() -> None:
    invalid = list(VALID)
    invalid[1] = ""
    unmatched = list(VALID)
    unmatched[0] = "XYZ"
    sheet = _billing_sheet(VALID, OLD, CANCELLED, invalid, unmatched)

    stats = process_sheets([sheet], "x.xlsx", cutoff_date="2025-01-01", today=TODAY).stats

    assert stats.total == 5
    assert stats.skipped_empty == 2
    assert stats.total == (
        stats.processed + stats.skipped_old + stats.skipped_cancelled
        + stats.skipped_empty + stats.skipped_status
    )


def test_alias_and_green_resolution_through_pipeline() -> None:
    lua_nova = list(VALID)
    lua_nova[0] = "Lua Nova Energia"
    cemig = list(VALID)
    cemig[0], cemig[4] = "Era Verde", "CEMIG"
    cpfl = list(VALID)
    cpfl[0], cpfl[4] = "ERA VERDE", "CPFL Paulista"

    rows = process_sheets([_billing_sheet(lua_nova, cemig, cpfl)], today=TODAY).rows

    assert [r.project for r in rows] == ["LNV", "EMG", "ESP"]


def test_processing_is_deterministic() -> None:
    sheets = [_billing_sheet(VALID, OLD, CANCELLED)]

    first = process_sheets(sheets, "a.xlsx", cutoff_date="2025-01-01", today=TODAY)
    second = process_sheets(sheets, "a.xlsx", cutoff_date="2025-01-01", today=TODAY)

    assert first.records() == second.records()
    assert first.stats == second.stats


def test_target_project_filters_other_projects() -> None:
    ala = list(VALID)
    ala[0] = "ALA"

    result = process_sheets([_billing_sheet(VALID, ala)], target_project="ala", today=TODAY)

    assert [r.project for r in result.rows] == ["ALA"]
    assert result.stats.skipped_empty == 1
    assert result.stats.total == 2


def test_workbook_without_header_raises() -> None:
    sheet = Sheet(name="Plan1", rows=[["Nome", "Valor"], ["Maria", "10"]])

    with pytest.raises(NoHeaderError, match="No billing header"):
        process_sheets([sheet], "bad.xlsx")


def test_unroutable_workbook_requires_manual_code() -> None:
    anonymous = [""] + VALID[1:]
    sheet = _billing_sheet(anonymous, anonymous)

    with pytest.raises(ManualCodeRequiredError, match="manual project code"):
        process_sheets([sheet], "anon.xlsx", today=TODAY)

    result = process_sheets([sheet], "anon.xlsx", manual_code="mtx", today=TODAY)
    assert [r.project for r in result.rows] == ["MTX", "MTX"]


def test_analyze_counts_projects_without_cutoff() -> None:
    anonymous = [""] + VALID[1:]
    egs = list(VALID)
    egs[0] = "E3"
    header = BILLING_HEADER + ["Valor Final R$"]
    sheet = Sheet(
        name="Mix",
        rows=[header, VALID + ["1"], OLD + ["1"], egs + ["1"], anonymous + ["1"], CANCELLED + ["1"]],
    )

    result = analyze_sheets([sheet])

    assert result.project_counts == {"LNV": 2, "EGS": 1, "TBD": 1}
    assert result.to_dict()["projects"] == ["EGS", "LNV", "TBD"]


def test_process_and_analyze_accept_xlsx_bytes(make_xlsx: Callable[..., bytes]) -> None:
    payload = make_xlsx({
        "Capa": [["Resumo"]],
        "Faturas": [["Relatório"], BILLING_HEADER, VALID, OLD, CANCELLED],
    })

    result = process(payload, "jan.xlsx", cutoff_date=date(2025, 1, 1), today=TODAY)
    analysis = analyze(payload)

    assert result.stats.processed == 1
    assert result.rows[0].installation == "105301957"
    assert analysis.project_counts == {"LNV": 2}


def test_process_names_origin_after_path(tmp_path: Path, make_xlsx: Callable[..., bytes]) -> None:
    path = tmp_path / "fev.xlsx"
    path.write_bytes(make_xlsx({"Faturas": [BILLING_HEADER, VALID]}))

    result = process(path, today=TODAY)

    assert result.rows[0].origin_file == "fev.xlsx"


def test_process_many_isolates_failures(tmp_path: Path, make_xlsx: Callable[..., bytes]) -> None:
    good = tmp_path / "good.xlsx"
    good.write_bytes(make_xlsx({"Faturas": [BILLING_HEADER, VALID]}))
    headerless = tmp_path / "headerless.xlsx"
    headerless.write_bytes(make_xlsx({"Plan1": [["Nome"], ["Maria"]]}))
    jobs = [
        FileJob(source=good, today=TODAY),
        FileJob(source=tmp_path / "missing.xlsx"),
        FileJob(source=headerless),
    ]

    outcomes = process_many(jobs, max_workers=1)

    assert [o.ok for o in outcomes] == [True, False, False]
    assert "not found" in outcomes[1].error
    assert "No billing header" in outcomes[2].error
    assert [r.installation for r in merge_rows(outcomes)] == ["105301957"]


def test_process_many_survives_a_corrupt_xls(tmp_path: Path, make_xlsx: Callable[..., bytes]) -> None:
    good = tmp_path / "good.xlsx"
    good.write_bytes(make_xlsx({"Faturas": [BILLING_HEADER, VALID]}))
    corrupt = tmp_path / "legacy.xls"
    corrupt.write_bytes(b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1" + b"\x00" * 1024)

    outcomes = process_many([FileJob(source=corrupt), FileJob(source=good, today=TODAY)], max_workers=1)

    assert [o.ok for o in outcomes] == [False, True]
    assert "xls" in outcomes[0].error
    assert len(merge_rows(outcomes)) == 1


def test_process_many_keeps_submission_order(monkeypatch: pytest.MonkeyPatch) -> None:
    seen: list[str] = []

    def _fake_run_job(job: FileJob) -> pipeline_mod.FileOutcome:
        seen.append(job.label)
        return pipeline_mod.FileOutcome(job=job, error="boom")

    monkeypatch.setattr(pipeline_mod, "run_job", _fake_run_job)
    jobs = [FileJob(source=Path(f"{n}.xlsx"), target_project="LNV") for n in ("a", "b", "c")]

    outcomes = process_many(jobs, max_workers=1)

    assert seen == ["a.xlsx [LNV]", "b.xlsx [LNV]", "c.xlsx [LNV]"]
    assert [o.job.label for o in outcomes] == seen
