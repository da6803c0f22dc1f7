"""Per-family recognition and transformation rules."""

from __future__ import annotations

from datetime import date
from typing import Any

import pytest

from billing_consolidator.classifiers import (
    RegionalUtilityClassifier,
    StandardClassifier,
    VendorClassifier,
    default_classifiers,
    dispatch,
)
from billing_consolidator.config import RuleTables
from billing_consolidator.models import (
    CanonicalRow,
    PaymentStatus,
    ProcessingContext,
    RejectReason,
    Rejection,
)
from billing_consolidator.rows import RawRow

TODAY = date(2025, 4, 14)

LNV_ROW: dict[str, Any] = {
    "Projeto": "Lua Nova Energia",
    "Instalação": "10/530195-7",
    "Nome": "Maria Souza",
    "CNPJ/CPF": "123.456.789-00",
    "Distribuidora": "cemig_d",
    "Mês de Referência": "03/2025",
    "Data de Emissão": "2025-03-05",
    "Vencimento": "15/03/2025",
    "Custo com GD R$": "R$ 100,00",
    "Custo sem GD R$": "R$ 150,00",
    "Status": "Atrasado",
}

EGS_ROW: dict[str, Any] = {
    "Instalação": 3012345,
    "Razão Social": "Padaria Sol",
    "CNPJ": "12.345.678/0001-90",
    "Distribuidora": "CEMIG",
    "Referência": "06/2025",
    "Data emissão": "02/06/2025",
    "Data Vencimento": "10/06/2025",
    "CUSTO_C_GD": "1.000,00",
    "CUSTO_S_GD": "1.250,50",
    "Status Pagamento": "Pago",
    "Multa/Juros": "-",
}

GREEN_ROW: dict[str, Any] = {
    "Projeto": "Era Verde",
    "Instalação": "555",
    "Nome": "Sítio Boa Vista",
    "Distribuidora": "CEMIG-D",
    "Mês de Referência": "05/2025",
    "Status": "",
}


def _ctx(**kwargs: Any) -> ProcessingContext:
    kwargs.setdefault("file_name", "jan.xlsx")
    kwargs.setdefault("today", TODAY)
    return ProcessingContext(**kwargs)


def _run(data: dict[str, Any], **ctx: Any) -> tuple[Any, Any]:
    return dispatch(RawRow(data), _ctx(**ctx), default_classifiers())


# ── Standard ────────────────────────────────────────────────────


def test_standard_row_is_fully_normalized() -> None:
    classifier, row = _run(LNV_ROW)

    assert isinstance(classifier, StandardClassifier)
    assert isinstance(row, CanonicalRow)
    assert row.project == "LNV"
    assert row.installation == "105301957"
    assert row.name == "Maria Souza"
    assert row.distributor == "CEMIG D"
    assert row.reference_month == "01-03-2025"
    assert row.issue_date == "05-03-2025"
    assert row.due_date == "15-03-2025"
    assert row.cost_with_benefit == 100.0
    assert row.cost_without_benefit == 150.0
    assert row.economy == "50.00"
    assert row.contract_discount == 0.0
    assert row.final_amount == 0.0
    assert row.status == "Atrasado"
    assert row.days_late == 30
    assert row.risk == "Baixo"
    assert row.origin_file == "jan.xlsx"


def test_standard_final_amount_falls_back_to_consolidated_value() -> None:
    _, row = _run({**LNV_ROW, "Valor Consolidado": "R$ 80,10"})

    assert isinstance(row, CanonicalRow)
    assert row.final_amount == pytest.approx(80.10)


def test_paid_rows_are_never_late() -> None:
    _, row = _run({**LNV_ROW, "Status": "Pago", "Dias Atrasados": "12"})

    assert isinstance(row, CanonicalRow)
    assert row.status == "Pago"
    assert row.days_late == 0
    assert row.risk == "Nenhum"


def test_reported_days_late_is_honoured() -> None:
    _, row = _run({**LNV_ROW, "Dias Atrasados": "120"})

    assert isinstance(row, CanonicalRow)
    assert row.days_late == 120
    assert row.risk == "Alto"


@pytest.mark.parametrize("reported", ["1e400", "inf", "-Infinity", "nan", "muitos"])
def test_unreadable_reported_days_fall_back_to_due_date(reported: str) -> None:
    _, row = _run({**LNV_ROW, "Dias Atrasados": reported})

    assert isinstance(row, CanonicalRow)
    assert row.days_late == 30
    assert row.risk == "Baixo"


def test_unknown_standard_status_defaults_to_open() -> None:
    _, row = _run({**LNV_ROW, "Status": "Em análise"})

    assert isinstance(row, CanonicalRow)
    assert row.status == PaymentStatus.OPEN.value


def test_standard_requires_issue_date() -> None:
    _, outcome = _run({**LNV_ROW, "Data de Emissão": "sem data"})

    assert outcome == Rejection(RejectReason.INVALID, "missing or unparseable issue date")


def test_row_without_installation_or_tax_id_is_rejected() -> None:
    _, outcome = _run({**LNV_ROW, "Instalação": "", "CNPJ/CPF": ""})

    assert isinstance(outcome, Rejection)
    assert outcome.reason is RejectReason.INVALID


def test_tax_id_alone_satisfies_identity() -> None:
    _, row = _run({**LNV_ROW, "Instalação": "n/a"})

    assert isinstance(row, CanonicalRow)
    assert row.installation == ""
    assert row.tax_id == "123.456.789-00"


def test_manual_code_applies_when_row_has_no_project() -> None:
    data = {k: v for k, v in LNV_ROW.items() if k != "Projeto"}

    _, row = _run(data, manual_code="MTX")

    assert isinstance(row, CanonicalRow)
    assert row.project == "MTX"


def test_row_project_wins_over_manual_code() -> None:
    _, row = _run({**LNV_ROW, "Projeto": "Alagoas"}, manual_code="MTX")

    assert isinstance(row, CanonicalRow)
    assert row.project == "ALA"


def test_cutoff_rejects_old_rows_but_not_in_preview() -> None:
    _, outcome = _run(LNV_ROW, cutoff_date="2025-04-01")
    _, preview = _run(LNV_ROW, cutoff_date="2025-04-01", preview=True)

    assert outcome == Rejection(RejectReason.OLD_DATE)
    assert isinstance(preview, CanonicalRow)


def test_cancelled_status_is_rejected() -> None:
    _, outcome = _run({**LNV_ROW, "Status": "Cancelado"})

    assert outcome == Rejection(RejectReason.CANCELLED)


def test_unrouted_row_is_unmatched() -> None:
    data = {k: v for k, v in LNV_ROW.items() if k != "Projeto"}

    classifier, outcome = _run(data)

    assert classifier is None
    assert isinstance(outcome, Rejection)
    assert outcome.reason is RejectReason.UNMATCHED


def test_preview_routes_unlabelled_rows_to_tbd() -> None:
    data = {k: v for k, v in LNV_ROW.items() if k != "Projeto"}
    data["Valor Final R$"] = "10,00"

    classifier, row = _run(data, preview=True)

    assert isinstance(classifier, StandardClassifier)
    assert isinstance(row, CanonicalRow)
    assert row.project == "TBD"


# ── Vendor (EGS) ────────────────────────────────────────────────


def test_vendor_row_is_recognized_by_exclusive_columns() -> None:
    classifier, row = _run(EGS_ROW)

    assert isinstance(classifier, VendorClassifier)
    assert isinstance(row, CanonicalRow)
    assert row.project == "EGS"
    assert row.installation == "3012345"
    assert row.name == "Padaria Sol"
    assert row.tax_id == "12.345.678/0001-90"
    assert row.reference_month == "01-06-2025"
    assert row.issue_date == "02-06-2025"
    assert row.due_date == "10-06-2025"
    assert row.economy == "250.50"
    assert row.contract_discount == 0.25
    assert row.status == "Pago"
    assert row.cancelled == "Não"
    assert row.fees_and_fines == ""
    assert row.days_late == 0


def test_vendor_status_vocabulary() -> None:
    _, negotiated = _run({**EGS_ROW, "Status Pagamento": "Quitado parcialmente"})
    _, late = _run({**EGS_ROW, "Status Pagamento": "Atrasado"})

    assert isinstance(negotiated, CanonicalRow)
    assert negotiated.status == "Negociado"
    assert isinstance(late, CanonicalRow)
    assert late.status == "Atrasado"
    assert late.risk == "Nenhum"


@pytest.mark.parametrize("status", ["Em aberto", ""])
def test_vendor_rejects_statuses_outside_vocabulary(status: str) -> None:
    _, outcome = _run({**EGS_ROW, "Status Pagamento": status})

    assert isinstance(outcome, Rejection)
    assert outcome.reason is RejectReason.STATUS


def test_vendor_requires_issue_date() -> None:
    _, outcome = _run({**EGS_ROW, "Data emissão": ""})

    assert isinstance(outcome, Rejection)
    assert outcome.reason is RejectReason.INVALID


def test_vendor_matches_by_code() -> None:
    assert VendorClassifier().matches(RawRow({"Projeto": "E3 Energia"}))
    assert VendorClassifier().matches(RawRow({}), "egs")
    assert not VendorClassifier().matches(RawRow({"Projeto": "LNV"}))


# ── Regional utility (Era Verde) ───────────────────────────────


def test_green_row_resolves_through_distributor() -> None:
    classifier, row = _run(GREEN_ROW)

    assert isinstance(classifier, RegionalUtilityClassifier)
    assert isinstance(row, CanonicalRow)
    assert row.project == "EMG"
    assert row.status == "Aberto"
    assert row.issue_date == ""
    assert row.risk == "Nenhum"


@pytest.mark.parametrize(
    ("overrides", "expected"),
    [
        ({"Distribuidora": "CPFL Paulista"}, "ESP"),
        ({"Distribuidora": "Neoenergia", "UF": "mg"}, "EMG"),
        ({"Distribuidora": "", "Estado": "SP"}, "ESP"),
        ({"Distribuidora": "", "UF": ""}, "ESP"),
        ({"Projeto": "EMG", "Distribuidora": "CPFL"}, "EMG"),
        ({"Projeto": "Era Verde Energia - SP", "Distribuidora": "CEMIG"}, "ESP"),
    ],
)
def test_green_project_resolution(overrides: dict[str, Any], expected: str) -> None:
    _, row = _run({**GREEN_ROW, **overrides})

    assert isinstance(row, CanonicalRow)
    assert row.project == expected


def test_green_contract_marker_routes_unlabelled_rows() -> None:
    data = {k: v for k, v in GREEN_ROW.items() if k != "Projeto"}
    data["Tipo Contrato"] = "Contrato EraVerde 2025"

    classifier, row = _run(data)

    assert isinstance(classifier, RegionalUtilityClassifier)
    assert isinstance(row, CanonicalRow)


# ── Dispatch order / tables ─────────────────────────────────────


def test_vendor_fingerprint_takes_priority_over_project_column() -> None:
    classifier, _ = _run({**LNV_ROW, "CUSTO_S_GD": "10,00"})

    assert isinstance(classifier, VendorClassifier)


def test_custom_alias_table_is_honoured() -> None:
    tables = RuleTables(project_aliases={"LUNAR": "LNV"})
    row = RawRow({**LNV_ROW, "Projeto": "lunar"})

    _, outcome = dispatch(row, _ctx(), default_classifiers(tables))

    assert isinstance(outcome, CanonicalRow)
    assert outcome.project == "LNV"
