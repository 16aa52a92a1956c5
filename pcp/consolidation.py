"""Consolidação dos turnos de um dia no agregado de Processamento.

Funções puras: nada aqui acessa o banco. A gravação do agregado fica com
``pcp.processamento.ProcessamentoSession``.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, Optional, Sequence, Tuple

from pcp.errors import NoDataError
from pcp.models import (
    SHIFT_LABELS,
    SHIFTS,
    DailyProductionDocument,
    ProcessamentoResult,
    ShiftEntry,
)
from pcp.utils.date_helpers import now_utc
from pcp.utils.normalization import ONE_PLACE, TWO_PLACES, ZERO, quantize

HUNDRED = Decimal("100")


@dataclass(frozen=True)
class ShiftTotals:
    kg: Decimal = ZERO
    cx: Decimal = ZERO
    planned: Decimal = ZERO


@dataclass(frozen=True)
class ConsolidationProposal:
    """Primeira fase do processamento: o que existe e se é preciso confirmar."""

    date_key: str
    shifts_present: Tuple[str, ...]
    needs_confirmation: bool
    missing_shift: Optional[str]

    def to_payload(self) -> Dict[str, object]:
        return {
            "date_key": self.date_key,
            "turnos": [SHIFT_LABELS[number] for number in self.shifts_present],
            "precisa_confirmacao": self.needs_confirmation,
            "turno_ausente": SHIFT_LABELS[self.missing_shift] if self.missing_shift else None,
        }


def sum_shift(entries: Iterable[ShiftEntry]) -> ShiftTotals:
    kg = cx = planned = ZERO
    for entry in entries:
        kg += entry.kg_produced
        cx += entry.boxes_produced
        planned += entry.planned
    return ShiftTotals(kg=kg, cx=cx, planned=planned)


def efficiency(produced: Decimal, planned: Decimal) -> Decimal:
    """produced / planned * 100 com uma casa; 0 quando não há planejado."""
    if planned <= 0:
        return quantize(ZERO, ONE_PLACE)
    return quantize(produced / planned * HUNDRED, ONE_PLACE)


def propose(document: DailyProductionDocument) -> ConsolidationProposal:
    present = document.shifts_present
    if not present:
        raise NoDataError("nenhum dado de produção para esta data", date_key=document.date_key)
    missing = next((number for number in SHIFTS if number not in present), None)
    return ConsolidationProposal(
        date_key=document.date_key,
        shifts_present=present,
        needs_confirmation=missing is not None,
        missing_shift=missing,
    )


def consolidate(
    document: DailyProductionDocument,
    *,
    shifts: Optional[Sequence[str]] = None,
    now: Optional[datetime] = None,
) -> ProcessamentoResult:
    """Calcula o agregado do dia a partir dos turnos presentes.

    ``shifts`` restringe o cálculo a um subconjunto dos turnos presentes.
    Levanta ``NoDataError`` se nenhum turno considerado tiver lançamentos.
    """

    present = document.shifts_present
    if shifts is not None:
        present = tuple(number for number in present if number in set(shifts))
    if not present:
        raise NoDataError("nenhum dado de produção para esta data", date_key=document.date_key)

    totals = {number: ShiftTotals() for number in SHIFTS}
    for number in present:
        totals[number] = sum_shift(document.shift(number))

    kg_turno1 = quantize(totals["1"].kg, TWO_PLACES)
    kg_turno2 = quantize(totals["2"].kg, TWO_PLACES)
    planejado_turno1 = quantize(totals["1"].planned, TWO_PLACES)
    planejado_turno2 = quantize(totals["2"].planned, TWO_PLACES)

    # Totais a partir dos valores por turno já arredondados: kgTotal == kgTurno1 + kgTurno2.
    kg_total = kg_turno1 + kg_turno2
    plano_diario = planejado_turno1 + planejado_turno2
    cx_total = quantize(totals["1"].cx + totals["2"].cx, TWO_PLACES)

    raw_kg = totals["1"].kg + totals["2"].kg
    raw_planned = totals["1"].planned + totals["2"].planned
    batch_receita = quantize(raw_planned / raw_kg, TWO_PLACES) if raw_kg > 0 else quantize(ZERO, TWO_PLACES)

    return ProcessamentoResult(
        date_key=document.date_key,
        ctp1=efficiency(totals["1"].kg, totals["1"].planned),
        ctp2=efficiency(totals["2"].kg, totals["2"].planned),
        ctptd=efficiency(raw_kg, raw_planned),
        plano_diario=plano_diario,
        batch_receita=batch_receita,
        kg_total=kg_total,
        cx_total=cx_total,
        diferenca_pr=kg_total - plano_diario,
        kg_turno1=kg_turno1,
        kg_turno2=kg_turno2,
        planejado_turno1=planejado_turno1,
        planejado_turno2=planejado_turno2,
        shifts_included=present,
        timestamp=now or now_utc(),
    )
