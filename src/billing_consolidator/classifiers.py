"""Project classifiers — one strategy per back-office family.

Each classifier answers two questions about a raw row: *is this mine?*
(:meth:`Classifier.matches`) and *what does it become?*
(:meth:`Classifier.process`). Rows are offered to the classifiers in a fixed
priority order and the first match owns the row.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any

from billing_consolidator.config import (
    ANCILLARY_MONEY_COLUMNS,
    DEFAULT_TABLES,
    GENERIC_GREEN_CODE,
    ORIGIN_COLUMN,
    PROJECT_COLUMN,
    RuleTables,
)
from billing_consolidator.headers import has_identity_column
from billing_consolidator.models import (
    UNRESOLVED_PROJECT,
    CanonicalRow,
    Outcome,
    PaymentStatus,
    ProcessingContext,
    ProjectCode,
    RejectReason,
    Rejection,
)
from billing_consolidator.parsers import (
    format_date,
    is_blank,
    normalize_distributor_name,
    normalize_installation_id,
    parse_currency,
    parse_date,
)
from billing_consolidator.rows import RawRow
from billing_consolidator.rules import (
    classify_risk,
    compute_days_late,
    compute_economy,
    format_cents,
    should_skip_row,
    to_cents,
)

PROJECT_KEYS = ("Projeto", "PROJETO")
STATUS_KEYS = ("Status", "Status Faturamento", "Status Pagamento")
TOTAL_COLUMNS = ("Valor Final R$", "Valor Consolidado", "Valor Consolidado R$", "Valor emitido")

StatusVocabulary = Sequence[tuple[PaymentStatus, Sequence[str]]]

_NEGOTIATED_MARKERS = ("quitado parc", "negociado", "acordo", "partially settled", "negotiated")
_PAID_MARKERS = ("pago", "quitado", "settled")
_LATE_MARKERS = ("atrasad", "atraso", "overdue")

VENDOR_STATUSES: StatusVocabulary = (
    (PaymentStatus.NEGOTIATED, _NEGOTIATED_MARKERS),
    (PaymentStatus.PAID, _PAID_MARKERS),
    (PaymentStatus.LATE, _LATE_MARKERS),
)
STANDARD_STATUSES: StatusVocabulary = (
    (PaymentStatus.NEGOTIATED, _NEGOTIATED_MARKERS),
    (PaymentStatus.PAID, _PAID_MARKERS + ("liquidado", "baixado")),
    (PaymentStatus.LATE, _LATE_MARKERS + ("expirado", "pendente")),
)


def _text(value: Any) -> str:
    if is_blank(value):
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def _as_days(value: Any) -> int | None:
    if is_blank(value) or isinstance(value, bool):
        return None
    try:
        number = float(str(value).strip().replace(",", "."))
    except ValueError:
        return None
    return int(number) if math.isfinite(number) else None


class Classifier(ABC):
    """Shared recognition helpers and the common derivation sequence."""

    name: str = ""
    requires_issue_date: bool = True
    statuses: StatusVocabulary = STANDARD_STATUSES
    default_status: PaymentStatus | None = PaymentStatus.OPEN

    def __init__(self, tables: RuleTables = DEFAULT_TABLES) -> None:
        self.tables = tables

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"

    # ── Recognition ──────────────────────────────────────────────

    def requested_code(self, row: RawRow, manual_code: str | None) -> str:
        """Project code named by the row, falling back to the manual code."""
        return self.tables.resolve_alias(row.text(*PROJECT_KEYS) or manual_code or "")

    @abstractmethod
    def matches(self, row: RawRow, manual_code: str | None = None, *, preview: bool = False) -> bool:
        ...

    @abstractmethod
    def resolve_project(self, row: RawRow, context: ProcessingContext) -> str | None:
        ...

    # ── Family hooks ─────────────────────────────────────────────

    def map_status(self, status_text: str) -> PaymentStatus | None:
        text = status_text.lower().strip()
        if not text:
            return self.default_status
        for status, markers in self.statuses:
            if any(marker in text for marker in markers):
                return status
        return self.default_status

    def contract_discount(self, record: dict[str, Any]) -> float:
        return parse_currency(record.get("Desconto contrato (%)"))

    def adjust(self, record: dict[str, Any], fields: RawRow) -> None:
        """Family-specific tweaks applied to the record before numeric parsing."""

    # ── Transformation ───────────────────────────────────────────

    def map_fields(self, row: RawRow) -> RawRow:
        """Copy *row* and overlay the vendor column renames onto canonical labels."""
        data: dict[str, Any] = {}
        for label in self.tables.canonical_columns:
            if label in row:
                data[label] = row[label]
        for label, value in row.items():
            data.setdefault(label, value)
        for source, target in self.tables.vendor_field_map.items():
            value = row.get(source)
            if not is_blank(value):
                data[target] = value
        return RawRow(data)

    def process(self, row: RawRow, context: ProcessingContext) -> Outcome:
        project = self.resolve_project(row, context)
        if project is None:
            return Rejection(RejectReason.INVALID, "unresolved project code")

        fields = self.map_fields(row)
        raw_status = fields.text(*STATUS_KEYS)
        reference = parse_date(fields.get("Mês de Referência"))
        cutoff = None if context.preview else context.cutoff_date
        decision = should_skip_row(reference, cutoff, raw_status)
        if decision.skip and decision.reason is not None:
            return Rejection(RejectReason(decision.reason.value))

        status = self.map_status(raw_status)
        if status is None:
            return Rejection(RejectReason.STATUS, f"unrecognized status {raw_status!r}")

        issue_date = parse_date(fields.get("Data de Emissão"))
        if self.requires_issue_date and issue_date is None:
            return Rejection(RejectReason.INVALID, "missing or unparseable issue date")

        record: dict[str, Any] = {
            label: ("" if is_blank(fields.get(label)) else fields.get(label))
            for label in self.tables.canonical_columns
        }
        record[PROJECT_COLUMN] = project
        record["Status"] = status.value
        self.adjust(record, fields)

        record["Instalação"] = normalize_installation_id(record["Instalação"])
        record["CNPJ/CPF"] = _text(record["CNPJ/CPF"])
        record["Nome"] = _text(record["Nome"])
        if not record["Instalação"] and not record["CNPJ/CPF"]:
            return Rejection(RejectReason.INVALID, "no installation or tax id")

        return CanonicalRow.from_record(
            self._derive(record, status, reference, issue_date, context)
        )

    def _derive(
        self,
        record: dict[str, Any],
        status: PaymentStatus,
        reference: Any,
        issue_date: Any,
        context: ProcessingContext,
    ) -> dict[str, Any]:
        record["Distribuidora"] = normalize_distributor_name(record["Distribuidora"])
        record["ID Boleto/Pix"] = _text(record["ID Boleto/Pix"])
        if record["Crédito kWh"] != "":
            record["Crédito kWh"] = parse_currency(record["Crédito kWh"])

        record["Mês de Referência"] = format_date(reference) if reference else _text(record["Mês de Referência"])
        record["Data de Emissão"] = format_date(issue_date) if issue_date else _text(record["Data de Emissão"])
        due_date = parse_date(record["Vencimento"])
        record["Vencimento"] = format_date(due_date) if due_date else _text(record["Vencimento"])

        record["Desconto contrato (%)"] = self.contract_discount(record)

        cost_with = parse_currency(record["Custo com GD R$"])
        cost_without = parse_currency(record["Custo sem GD R$"])
        record["Custo com GD R$"] = cost_with
        record["Custo sem GD R$"] = cost_without
        if record["Valor Final R$"] != "":
            record["Valor Final R$"] = parse_currency(record["Valor Final R$"])
        for column in ANCILLARY_MONEY_COLUMNS:
            if record[column] != "":
                record[column] = parse_currency(record[column])

        sourced = record["Economia R$"]
        sourced_value = parse_currency(sourced) if sourced != "" else -1.0
        if sourced != "" and sourced_value >= 0:
            record["Economia R$"] = format_cents(to_cents(sourced_value))
        else:
            record["Economia R$"] = compute_economy(cost_with, cost_without)

        days = 0
        if status is not PaymentStatus.PAID:
            reported = _as_days(record["Dias Atrasados"])
            days = reported if reported is not None else compute_days_late(due_date, context.today)
        record["Dias Atrasados"] = max(days, 0)
        record["Risco"] = classify_risk(record["Dias Atrasados"]).value
        record[ORIGIN_COLUMN] = context.file_name
        return record


class VendorClassifier(Classifier):
    """E3 (EGS) exports: exclusive cost columns, closed status vocabulary."""

    name = "EGS"
    code = ProjectCode.EGS.value
    fingerprint_columns = ("CUSTO_S_GD", "CUSTO_C_GD", "Obs Planilha Rubia")
    statuses = VENDOR_STATUSES
    default_status = None
    fixed_discount = 0.25

    def matches(self, row: RawRow, manual_code: str | None = None, *, preview: bool = False) -> bool:
        if self.requested_code(row, manual_code) == self.code:
            return True
        return row.has_any(*self.fingerprint_columns)

    def resolve_project(self, row: RawRow, context: ProcessingContext) -> str | None:
        return self.code

    def contract_discount(self, record: dict[str, Any]) -> float:
        return self.fixed_discount

    def adjust(self, record: dict[str, Any], fields: RawRow) -> None:
        record["Cancelada"] = "Não"
        if _text(record["Juros e Multa"]) == "-":
            record["Juros e Multa"] = ""


class RegionalUtilityClassifier(Classifier):
    """Era Verde rows, split between the MG and SP sibling projects."""

    name = "ERA VERDE (EMG/ESP)"
    requires_issue_date = False
    statuses = VENDOR_STATUSES
    family = frozenset({GENERIC_GREEN_CODE, ProjectCode.EMG.value, ProjectCode.ESP.value})
    contract_markers = ("eraverde", "era verde")
    default_code = ProjectCode.ESP.value

    def matches(self, row: RawRow, manual_code: str | None = None, *, preview: bool = False) -> bool:
        code = self.requested_code(row, manual_code)
        if code in self.family or code.startswith("ERA VERDE"):
            return True
        contract = row.text("Tipo Contrato").lower()
        return any(marker in contract for marker in self.contract_markers)

    def resolve_project(self, row: RawRow, context: ProcessingContext) -> str | None:
        code = self.requested_code(row, context.manual_code)
        if code in (ProjectCode.EMG.value, ProjectCode.ESP.value):
            return code

        distributor = row.text("Distribuidora").lower()
        if "cemig" in distributor:
            return ProjectCode.EMG.value
        if "cpfl" in distributor or "paulista" in distributor:
            return ProjectCode.ESP.value

        state = row.text("UF", "Estado").upper()
        if state == "MG":
            return ProjectCode.EMG.value
        if state == "SP":
            return ProjectCode.ESP.value
        return self.default_code


class StandardClassifier(Classifier):
    """Catch-all for the named non-specialized projects (LNV, ALA, MTX)."""

    name = "STANDARD (LNV/ALA/MTX)"
    codes = frozenset({ProjectCode.LNV.value, ProjectCode.ALA.value, ProjectCode.MTX.value})

    def matches(self, row: RawRow, manual_code: str | None = None, *, preview: bool = False) -> bool:
        if self.requested_code(row, manual_code) in self.codes:
            return True
        return preview and has_identity_column(list(row)) and row.has_any(*TOTAL_COLUMNS)

    def resolve_project(self, row: RawRow, context: ProcessingContext) -> str | None:
        code = self.requested_code(row, context.manual_code)
        if code in self.codes:
            return code
        return UNRESOLVED_PROJECT if context.preview else None

    def contract_discount(self, record: dict[str, Any]) -> float:
        return 0.0

    def adjust(self, record: dict[str, Any], fields: RawRow) -> None:
        if record["Valor Final R$"] == "":
            consolidated = fields.first("Valor Consolidado", "Valor Consolidado R$")
            record["Valor Final R$"] = consolidated if consolidated is not None else 0.0


def default_classifiers(tables: RuleTables = DEFAULT_TABLES) -> list[Classifier]:
    """Classifiers in dispatch priority order."""
    return [
        VendorClassifier(tables),
        RegionalUtilityClassifier(tables),
        StandardClassifier(tables),
    ]


def dispatch(
    row: RawRow,
    context: ProcessingContext,
    classifiers: Sequence[Classifier],
) -> tuple[Classifier | None, Outcome]:
    """Hand *row* to the first classifier that recognizes it."""
    for classifier in classifiers:
        if classifier.matches(row, context.manual_code, preview=context.preview):
            return classifier, classifier.process(row, context)
    return None, Rejection(RejectReason.UNMATCHED, "no classifier recognized the row")
