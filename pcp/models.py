"""Tipos do domínio de produção e conversão para o formato persistido."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from dateutil import parser as date_parser

from pcp.errors import ValidationError
from pcp.utils.normalization import (
    ZERO,
    parse_decimal,
    parse_optional_decimal,
    to_float,
)

PROCESSADO_SIM = "sim"
PROCESSADO_NAO = "não"

SHIFTS = ("1", "2")
SHIFT_KEYS = {"1": "1_turno", "2": "2_turno"}
SHIFT_LABELS = {"1": "1 Turno", "2": "2 Turno"}

# Documentos antigos gravavam os turnos como "1 Turno"/"2 Turno".
SHIFT_ALIASES = {
    "1": ["1_turno", "1 Turno", "1_Turno", "turno1"],
    "2": ["2_turno", "2 Turno", "2_Turno", "turno2"],
}

PRODUCT_TEXT_MAX = 30


def shift_number(value: Any) -> str:
    """Normaliza identificadores de turno ("1", 1, "1_turno", "1 Turno") para "1"/"2"."""
    text = str(value or "").strip().lower()
    for number in SHIFTS:
        if text == number or text in (alias.lower() for alias in SHIFT_ALIASES[number]):
            return number
    raise ValidationError(f"turno inválido: {value!r}")


def _non_negative(value: Any, field_name: str, code: str) -> Decimal:
    try:
        number = parse_decimal(value)
    except ValueError as exc:
        raise ValidationError(f"{field_name} inválido para {code}: {value!r}") from exc
    if number < 0:
        raise ValidationError(f"{field_name} negativo para {code}: {value!r}")
    return number


@dataclass(frozen=True)
class ShiftEntry:
    """Uma linha de produção de um turno (produto, kg, caixas, planejado)."""

    code: str
    product_text: str = ""
    kg_produced: Decimal = ZERO
    boxes_produced: Decimal = ZERO
    kg_planned: Optional[Decimal] = None

    @property
    def planned(self) -> Decimal:
        return self.kg_planned if self.kg_planned is not None else ZERO

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "ShiftEntry":
        if not isinstance(payload, dict):
            raise ValidationError(f"lançamento inválido: {payload!r}")
        code = str(payload.get("codigo") or payload.get("code") or "").strip()
        if not code:
            raise ValidationError("codigo obrigatório no lançamento")
        text = str(payload.get("texto_breve") or payload.get("product_text") or "").strip()
        planned_raw = payload.get("planejamento", payload.get("kg_planned"))
        try:
            planned = parse_optional_decimal(planned_raw)
        except ValueError as exc:
            raise ValidationError(f"planejamento inválido para {code}: {planned_raw!r}") from exc
        if planned is not None and planned < 0:
            raise ValidationError(f"planejamento negativo para {code}: {planned_raw!r}")
        return cls(
            code=code,
            product_text=text[:PRODUCT_TEXT_MAX],
            kg_produced=_non_negative(payload.get("kg", payload.get("kg_produced")), "kg", code),
            boxes_produced=_non_negative(payload.get("cx", payload.get("boxes_produced")), "cx", code),
            kg_planned=planned,
        )

    def to_payload(self) -> Dict[str, Any]:
        return {
            "codigo": self.code,
            "texto_breve": self.product_text,
            "kg": to_float(self.kg_produced),
            "cx": to_float(self.boxes_produced),
            "planejamento": to_float(self.kg_planned) if self.kg_planned is not None else None,
        }


def parse_entries(raw: Any) -> List[ShiftEntry]:
    """Aceita a lista de lançamentos ou o mapa indexado {"0": {...}, "1": {...}}."""
    if not raw:
        return []
    if isinstance(raw, dict):
        def _order(key: Any) -> Tuple[int, str]:
            text = str(key)
            return (int(text), text) if text.isdigit() else (10**9, text)

        items: Iterable[Any] = [raw[key] for key in sorted(raw, key=_order)]
    elif isinstance(raw, list):
        items = raw
    else:
        raise ValidationError(f"turno em formato inesperado: {type(raw).__name__}")
    return [ShiftEntry.from_payload(item) for item in items]


def _parse_timestamp(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    parsed = date_parser.isoparse(str(value))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class ProcessamentoResult:
    """Agregado diário.

    ctp1/ctp2/ctptd são as eficiências (produzido / planejado * 100) por turno e
    total; plano_diario e kg_total os totais planejado e produzido; diferenca_pr
    a variação produzido - planejado.
    """

    date_key: str
    ctp1: Decimal
    ctp2: Decimal
    ctptd: Decimal
    plano_diario: Decimal
    batch_receita: Decimal
    kg_total: Decimal
    cx_total: Decimal
    diferenca_pr: Decimal
    kg_turno1: Decimal
    kg_turno2: Decimal
    planejado_turno1: Decimal
    planejado_turno2: Decimal
    shifts_included: Tuple[str, ...]
    timestamp: datetime

    def metrics(self) -> Dict[str, Any]:
        """Valores derivados sem o carimbo de data/hora."""
        payload = self.to_payload()
        payload.pop("timestamp")
        return payload

    def to_payload(self) -> Dict[str, Any]:
        return {
            "ctp1": float(self.ctp1),
            "ctp2": float(self.ctp2),
            "ctptd": float(self.ctptd),
            "planoDiario": float(self.plano_diario),
            "batchReceita": float(self.batch_receita),
            "kgTotal": float(self.kg_total),
            "cxTotal": float(self.cx_total),
            "diferencaPR": float(self.diferenca_pr),
            "timestamp": self.timestamp.isoformat(),
            "turnosProcessados": [SHIFT_LABELS[number] for number in self.shifts_included],
            "dataProcessamento": self.date_key,
            "kgTurno1": float(self.kg_turno1),
            "kgTurno2": float(self.kg_turno2),
            "planejadoTurno1": float(self.planejado_turno1),
            "planejadoTurno2": float(self.planejado_turno2),
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any], *, date_key: Optional[str] = None) -> "ProcessamentoResult":
        turnos = payload.get("turnosProcessados") or []
        shifts = tuple(sorted({shift_number(label) for label in turnos}))

        def _num(key: str) -> Decimal:
            return parse_decimal(payload.get(key))

        return cls(
            date_key=str(payload.get("dataProcessamento") or date_key or ""),
            ctp1=_num("ctp1"),
            ctp2=_num("ctp2"),
            ctptd=_num("ctptd"),
            plano_diario=_num("planoDiario"),
            batch_receita=_num("batchReceita"),
            kg_total=_num("kgTotal"),
            cx_total=_num("cxTotal"),
            diferenca_pr=_num("diferencaPR"),
            kg_turno1=_num("kgTurno1"),
            kg_turno2=_num("kgTurno2"),
            planejado_turno1=_num("planejadoTurno1"),
            planejado_turno2=_num("planejadoTurno2"),
            shifts_included=shifts,
            timestamp=_parse_timestamp(payload.get("timestamp") or datetime.now(timezone.utc)),
        )


@dataclass
class DailyProductionDocument:
    """Documento diário: lançamentos dos dois turnos e status de processamento."""

    date_key: str
    shift1: List[ShiftEntry] = field(default_factory=list)
    shift2: List[ShiftEntry] = field(default_factory=list)
    processed: bool = False
    aggregate: Optional[ProcessamentoResult] = None
    version: int = 0

    def shift(self, number: str) -> List[ShiftEntry]:
        return self.shift1 if shift_number(number) == "1" else self.shift2

    @property
    def shifts_present(self) -> Tuple[str, ...]:
        return tuple(number for number in SHIFTS if self.shift(number))

    @property
    def has_data(self) -> bool:
        return bool(self.shifts_present)

    @classmethod
    def from_payload(cls, date_key: str, payload: Dict[str, Any], *, version: int = 0) -> "DailyProductionDocument":
        shifts: Dict[str, List[ShiftEntry]] = {}
        for number, aliases in SHIFT_ALIASES.items():
            raw = None
            for alias in aliases:
                if payload.get(alias):
                    raw = payload[alias]
                    break
            shifts[number] = parse_entries(raw)

        aggregate_raw = payload.get("Processamento")
        processed = str(payload.get("processado") or "").strip().lower() == PROCESSADO_SIM
        aggregate = (
            ProcessamentoResult.from_payload(aggregate_raw, date_key=date_key)
            if processed and isinstance(aggregate_raw, dict)
            else None
        )
        return cls(
            date_key=date_key,
            shift1=shifts["1"],
            shift2=shifts["2"],
            processed=processed and aggregate is not None,
            aggregate=aggregate,
            version=version,
        )

    def to_payload(self) -> Dict[str, Any]:
        return {
            SHIFT_KEYS["1"]: [entry.to_payload() for entry in self.shift1],
            SHIFT_KEYS["2"]: [entry.to_payload() for entry in self.shift2],
            "processado": PROCESSADO_SIM if self.processed else PROCESSADO_NAO,
            "Processamento": self.aggregate.to_payload() if self.aggregate else None,
        }


@dataclass(frozen=True)
class MonthlyGoalConfig:
    meta_minima_mensal: Decimal = ZERO
    dias_uteis_mes: int = 0
    meta_diaria_global: Decimal = Decimal("125000")

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "MonthlyGoalConfig":
        try:
            meta = parse_decimal(payload.get("meta_minima_mensal"))
            dias = parse_decimal(payload.get("dias_uteis_mes"))
            diaria_raw = payload.get("meta_diaria_global")
            diaria = parse_decimal(diaria_raw) if diaria_raw not in (None, "") else Decimal("125000")
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        if meta < 0 or dias < 0 or diaria < 0:
            raise ValidationError("parâmetros de produção não podem ser negativos")
        if dias != dias.to_integral_value():
            raise ValidationError(f"dias_uteis_mes deve ser inteiro: {dias}")
        return cls(meta_minima_mensal=meta, dias_uteis_mes=int(dias), meta_diaria_global=diaria)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "meta_minima_mensal": float(self.meta_minima_mensal),
            "dias_uteis_mes": self.dias_uteis_mes,
            "meta_diaria_global": float(self.meta_diaria_global),
        }


@dataclass(frozen=True)
class ClassificationGoalProgress:
    classificacao: str
    meta: Decimal
    realizado: Decimal
    percentual: Decimal
    override: bool = False

    def to_payload(self) -> Dict[str, Any]:
        return {
            "classificacao": self.classificacao,
            "meta": float(self.meta),
            "realizado": float(self.realizado),
            "percentual": float(self.percentual),
            "override": self.override,
        }


@dataclass(frozen=True)
class BacklogEntry:
    """Data pendente. ``error`` vem preenchido quando o documento não pôde ser lido."""

    date_key: str
    shifts_present: Tuple[str, ...]
    error: Optional[str] = None
    error_kind: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "date_key": self.date_key,
            "turnos": [SHIFT_LABELS[number] for number in self.shifts_present],
        }
        if self.error:
            payload["erro"] = self.error
        return payload
