"""Data models shared across the package."""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import date
from enum import Enum
from numbers import Integral
from typing import Any, Union

from billing_consolidator.config import CANONICAL_COLUMNS


class ProjectCode(str, Enum):
    LNV = "LNV"
    ALA = "ALA"
    EGS = "EGS"
    MTX = "MTX"
    EMG = "EMG"
    ESP = "ESP"


VALID_PROJECT_CODES: frozenset[str] = frozenset(code.value for code in ProjectCode)
UNRESOLVED_PROJECT = "TBD"


def _to_non_negative_int(value: Any, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, Integral):
        raise TypeError(f"{field_name} must be an integer")
    result = int(value)
    if result < 0:
        raise ValueError(f"{field_name} must be >= 0")
    return result


def _column(label: str, default: Any = "") -> Any:
    return field(default=default, metadata={"label": label})


# ── Processing inputs ───────────────────────────────────────────


@dataclass(frozen=True)
class ProcessingContext:
    """Per-file invariants handed to every classifier call."""

    manual_code: str | None = None
    cutoff_date: date | str | None = None
    file_name: str = ""
    preview: bool = False
    today: date | None = None


# ── Row outcomes ────────────────────────────────────────────────


class RejectReason(str, Enum):
    OLD_DATE = "old_date"
    CANCELLED = "cancelled"
    INVALID = "invalid"
    STATUS = "status"
    UNMATCHED = "unmatched"
    FILTERED = "filtered"


class PaymentStatus(str, Enum):
    OPEN = "Aberto"
    NEGOTIATED = "Negociado"
    PAID = "Pago"
    LATE = "Atrasado"


@dataclass(frozen=True)
class Rejection:
    """A raw row that is not admissible into the report."""

    reason: RejectReason
    detail: str = ""


@dataclass(frozen=True)
class CanonicalRow:
    """Fixed-schema output record, one attribute per canonical column.

    Field order matches :data:`~billing_consolidator.config.CANONICAL_COLUMNS`;
    each field carries its column label in ``metadata["label"]``.
    """

    project: str = _column("PROJETO")
    installation: str = _column("Instalação")
    name: str = _column("Nome")
    tax_id: str = _column("CNPJ/CPF")
    distributor: str = _column("Distribuidora")
    postal_code: Any = _column("Cep")
    address: Any = _column("Endereço")
    city: Any = _column("Cidade")
    state: Any = _column("UF")
    payment_type: Any = _column("Tipo de Pagamento")
    contract_type: Any = _column("Tipo Contrato")
    contract_discount: float = _column("Desconto contrato (%)", 0.0)
    commercial_terms: Any = _column("Condição Comercial")
    contract_due_day: Any = _column("Data de Vencimento")
    reference_month: str = _column("Mês de Referência")
    calculation_base: Any = _column("Base para cálculo")
    charge_type: Any = _column("Tipo Cobrança")
    calculation_origin: Any = _column("Origem do cálculo")
    approval: Any = _column("Aprovação")
    issue_date: str = _column("Data de Emissão")
    due_date: str = _column("Vencimento")
    credit_kwh: Any = _column("Crédito kWh")
    applied_tariff: Any = _column("Tarifa aplicada R$")
    gross_amount: Any = _column("Valor Bruto R$")
    extra_discount: Any = _column("Desconto extra")
    retroactive_adjustment: Any = _column("Ajuste retroativo R$")
    final_amount: Any = _column("Valor Final R$")
    cost_with_benefit: float = _column("Custo com GD R$", 0.0)
    cost_without_benefit: float = _column("Custo sem GD R$", 0.0)
    economy: str = _column("Economia R$")
    account_number: Any = _column("Número da conta")
    charge_number: Any = _column("Nº da cobrança")
    payment_date: Any = _column("Data de Pagamento")
    payment_channel: Any = _column("Pagamento via")
    overdue_days_reported: Any = _column("Dias de Atraso")
    fees_and_fines: Any = _column("Juros e Multa")
    charge_amount: Any = _column("Valor da cobrança R$")
    amount_paid: Any = _column("Valor Pago")
    amount_credited: Any = _column("Valor creditado R$")
    payment_id: Any = _column("ID Boleto/Pix")
    bank: Any = _column("Instituição bancária")
    linked_account: Any = _column("Conta vinculada")
    status: str = _column("Status")
    cancelled: Any = _column("Cancelada")
    cancellation_date: Any = _column("Data de Cancelamento")
    cancellation_reason: Any = _column("Motivo do Cancelamento")
    cancellation: Any = _column("Cancelamento")
    days_late: int = _column("Dias Atrasados", 0)
    risk: str = _column("Risco")
    origin_file: str = _column("Arquivo Origem")

    def __post_init__(self) -> None:
        if self.project not in VALID_PROJECT_CODES and self.project != UNRESOLVED_PROJECT:
            raise ValueError(f"project must be one of {sorted(VALID_PROJECT_CODES)}, got {self.project!r}")
        if isinstance(self.days_late, bool) or not isinstance(self.days_late, Integral):
            raise TypeError("days_late must be an integer")
        if self.days_late < 0:
            raise ValueError("days_late must be >= 0")

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> CanonicalRow:
        """Build a row from a ``{column label: value}`` mapping; unknown labels are ignored."""
        kwargs = {
            f.name: record[f.metadata["label"]]
            for f in fields(cls)
            if f.metadata["label"] in record
        }
        return cls(**kwargs)

    def to_record(self) -> dict[str, Any]:
        """Return ``{column label: value}`` in canonical column order."""
        return {f.metadata["label"]: getattr(self, f.name) for f in fields(self)}


COLUMN_FIELDS: dict[str, str] = {f.metadata["label"]: f.name for f in fields(CanonicalRow)}
if tuple(COLUMN_FIELDS) != CANONICAL_COLUMNS:
    raise RuntimeError("CanonicalRow fields are out of sync with CANONICAL_COLUMNS")

Outcome = Union[CanonicalRow, Rejection]


# ── Aggregates ──────────────────────────────────────────────────


_STAT_BUCKETS: dict[RejectReason, str] = {
    RejectReason.OLD_DATE: "skipped_old",
    RejectReason.CANCELLED: "skipped_cancelled",
    RejectReason.INVALID: "skipped_empty",
    RejectReason.UNMATCHED: "skipped_empty",
    RejectReason.FILTERED: "skipped_empty",
    RejectReason.STATUS: "skipped_status",
}


@dataclass
class ProcessingStats:
    """Per-file counters; every row lands in exactly one bucket.

    Contract invariant: ``total == processed + sum(skipped_*)``.
    """

    total: int = 0
    processed: int = 0
    skipped_old: int = 0
    skipped_cancelled: int = 0
    skipped_empty: int = 0
    skipped_status: int = 0

    def __post_init__(self) -> None:
        for name in self._counter_names():
            setattr(self, name, _to_non_negative_int(getattr(self, name), name))

    @staticmethod
    def _counter_names() -> tuple[str, ...]:
        return (
            "total", "processed", "skipped_old",
            "skipped_cancelled", "skipped_empty", "skipped_status",
        )

    def record(self, outcome: Outcome) -> None:
        self.total += 1
        if isinstance(outcome, Rejection):
            bucket = _STAT_BUCKETS[outcome.reason]
            setattr(self, bucket, getattr(self, bucket) + 1)
        else:
            self.processed += 1

    @property
    def skipped(self) -> int:
        return self.total - self.processed

    def to_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "processed": self.processed,
            "skippedOld": self.skipped_old,
            "skippedCancelled": self.skipped_cancelled,
            "skippedEmpty": self.skipped_empty,
            "skippedStatus": self.skipped_status,
        }


@dataclass
class ProcessResult:
    rows: list[CanonicalRow] = field(default_factory=list)
    stats: ProcessingStats = field(default_factory=ProcessingStats)

    def records(self) -> list[dict[str, Any]]:
        return [row.to_record() for row in self.rows]


@dataclass
class AnalysisResult:
    """Which project codes a file holds, and how many rows each."""

    project_counts: dict[str, int] = field(default_factory=dict)

    @property
    def projects(self) -> list[str]:
        return sorted(self.project_counts)

    def to_dict(self) -> dict[str, Any]:
        return {"projects": self.projects, "projectCounts": dict(sorted(self.project_counts.items()))}


@dataclass
class RunManifest:
    """Audit-trail manifest for a single CLI run."""

    tool: str = "billing-consolidator"
    version: str = ""
    input_paths: list[str] = field(default_factory=list)
    output_dir: str = ""
    created_at_utc: str = ""
    files_ok: int = 0
    files_failed: int = 0
    rows_out: int = 0
    sha256: dict[str, str] = field(default_factory=dict)
    status: str = "success"
    errors: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.files_ok = _to_non_negative_int(self.files_ok, "files_ok")
        self.files_failed = _to_non_negative_int(self.files_failed, "files_failed")
        self.rows_out = _to_non_negative_int(self.rows_out, "rows_out")

    def to_dict(self) -> dict[str, Any]:
        return {
            "tool": self.tool,
            "version": self.version,
            "input_paths": list(self.input_paths),
            "output_dir": self.output_dir,
            "created_at_utc": self.created_at_utc,
            "files_ok": self.files_ok,
            "files_failed": self.files_failed,
            "rows_out": self.rows_out,
            "sha256": dict(self.sha256),
            "status": self.status,
            "errors": dict(self.errors),
        }


# ── File-level errors ───────────────────────────────────────────


class ProcessingError(ValueError):
    """A whole file could not be processed (structural problem, not row data)."""


class WorkbookReadError(ProcessingError):
    """The input could not be decoded as a spreadsheet."""


class NoHeaderError(ProcessingError):
    """No sheet in the workbook has a recognizable header row."""


class ManualCodeRequiredError(ProcessingError):
    """No row names a project and no manual code was supplied."""
