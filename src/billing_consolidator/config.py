"""Static rule tables shared by classifiers and the orchestrator.

Everything here is loaded once and exposed read-only. Classifiers receive a
:class:`RuleTables` bundle through their constructor instead of importing the
module-level names directly.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

# ── Canonical output schema ─────────────────────────────────────

PROJECT_COLUMN = "PROJETO"
ORIGIN_COLUMN = "Arquivo Origem"

CANONICAL_COLUMNS: tuple[str, ...] = (
    PROJECT_COLUMN,
    "Instalação", "Nome", "CNPJ/CPF", "Distribuidora",
    "Cep", "Endereço", "Cidade", "UF",
    "Tipo de Pagamento", "Tipo Contrato", "Desconto contrato (%)", "Condição Comercial",
    "Data de Vencimento", "Mês de Referência", "Base para cálculo", "Tipo Cobrança",
    "Origem do cálculo", "Aprovação", "Data de Emissão", "Vencimento", "Crédito kWh",
    "Tarifa aplicada R$", "Valor Bruto R$", "Desconto extra", "Ajuste retroativo R$",
    "Valor Final R$", "Custo com GD R$", "Custo sem GD R$", "Economia R$",
    "Número da conta", "Nº da cobrança", "Data de Pagamento", "Pagamento via",
    "Dias de Atraso", "Juros e Multa", "Valor da cobrança R$", "Valor Pago",
    "Valor creditado R$", "ID Boleto/Pix", "Instituição bancária", "Conta vinculada",
    "Status", "Cancelada", "Data de Cancelamento", "Motivo do Cancelamento",
    "Cancelamento", "Dias Atrasados", "Risco",
    ORIGIN_COLUMN,
)

# Money columns parsed with parse_currency besides the cost/final/economy trio.
ANCILLARY_MONEY_COLUMNS: tuple[str, ...] = (
    "Valor Bruto R$",
    "Tarifa aplicada R$",
    "Ajuste retroativo R$",
    "Desconto extra",
    "Valor da cobrança R$",
    "Valor Pago",
    "Valor creditado R$",
)

# ── Project aliases ─────────────────────────────────────────────

GENERIC_GREEN_CODE = "EVD"

_PROJECT_ALIASES: dict[str, str] = {
    # Lua Nova
    "LN": "LNV", "LNV": "LNV", "LUA NOVA": "LNV", "LUA NOVA ENERGIA": "LNV",
    # Alagoas
    "ALA": "ALA", "ALAGOAS": "ALA", "ALAGOAS ENERGIA": "ALA",
    # E3
    "EGS": "EGS", "E3": "EGS", "E3 ENERGIA": "EGS",
    # Matrix
    "MX": "MTX", "MTX": "MTX", "MATRIX": "MTX",
    # Era Verde, direct
    "EMG": "EMG", "ERA VERDE ENERGIA - MG": "EMG",
    "ESP": "ESP", "ERA VERDE ENERGIA - SP": "ESP",
    # Era Verde, generic (resolved through distributor / state)
    GENERIC_GREEN_CODE: GENERIC_GREEN_CODE, "ERA VERDE": GENERIC_GREEN_CODE,
}

# ── Vendor column renames ───────────────────────────────────────

# Source label -> canonical label. Lookups are case/whitespace-insensitive so
# trailing-space variants ("CUSTO_S_GD ") collapse onto the same entry.
_VENDOR_FIELD_MAP: dict[str, str] = {
    "Região": "Região",
    "Instalação": "Instalação",
    "CNPJ": "CNPJ/CPF",
    "Distribuidora": "Distribuidora",
    "Razão Social": "Nome",
    "Referência": "Mês de Referência",
    "CUSTO_S_GD": "Custo sem GD R$",
    "CUSTO_C_GD": "Custo com GD R$",
    "Data emissão": "Data de Emissão",
    "Data Vencimento": "Vencimento",
    "Valor emitido": "Valor Final R$",
    "Status Pagamento": "Status",
    "Valor Pago": "Valor Pago",
    "Multa/Juros": "Juros e Multa",
    "Data Pagamento": "Data de Pagamento",
    "Créd. Consumido": "Crédito kWh",
    "Credito kWh": "Crédito kWh",
    "Telefone": "Telefone",
    "E-MAIL DO PAGADOR": "E-mail",
    "COD": "ID Boleto/Pix",
    "COD BOLETO": "ID Boleto/Pix",
}

# ── Per-project cutoff defaults ─────────────────────────────────

DEFAULT_CUTOFF_KEY = "DEFAULT"

_DEFAULT_CUTOFFS: dict[str, str] = {
    "LNV": "2025-01-01",
    "ALA": "2025-01-01",
    "ESP": "2025-05-01",
    "EMG": "2025-05-01",
    "EGS": "2025-06-01",
    "MTX": "2025-01-01",
    DEFAULT_CUTOFF_KEY: "2025-01-01",
}

# ── Header detection keywords ───────────────────────────────────

IDENTITY_KEYWORDS: tuple[str, ...] = ("instalação", "instalacao", "installation")
FINANCIAL_KEYWORDS: tuple[str, ...] = (
    "valor", "value",
    "custo", "cost",
    "tarifa", "tariff",
    "total",
    "referência", "referencia", "reference",
    "vencimento", "due",
)
HEADER_SCAN_ROWS = 50
HEADER_SCAN_LIMIT = 100

CANCELLATION_MARKERS: tuple[str, ...] = ("cancelad", "cancelled", "canceled")


@dataclass(frozen=True)
class RuleTables:
    """Immutable bundle of the lookup tables classifiers depend on."""

    project_aliases: Mapping[str, str] = field(
        default_factory=lambda: MappingProxyType(dict(_PROJECT_ALIASES))
    )
    vendor_field_map: Mapping[str, str] = field(
        default_factory=lambda: MappingProxyType(dict(_VENDOR_FIELD_MAP))
    )
    canonical_columns: tuple[str, ...] = CANONICAL_COLUMNS

    def resolve_alias(self, value: object) -> str:
        """Map free text onto a project code; unknown text is returned upper-cased."""
        text = str(value or "").strip().upper()
        return self.project_aliases.get(text, text)


DEFAULT_TABLES = RuleTables()
PROJECT_ALIASES: Mapping[str, str] = DEFAULT_TABLES.project_aliases
VENDOR_FIELD_MAP: Mapping[str, str] = DEFAULT_TABLES.vendor_field_map
DEFAULT_CUTOFFS: Mapping[str, str] = MappingProxyType(dict(_DEFAULT_CUTOFFS))


def default_cutoff_for(project: str | None) -> str:
    """Return the default cutoff (``YYYY-MM-DD``) for *project*."""
    key = (project or DEFAULT_CUTOFF_KEY).strip().upper()
    return DEFAULT_CUTOFFS.get(key, DEFAULT_CUTOFFS[DEFAULT_CUTOFF_KEY])
