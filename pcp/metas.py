"""Projeção de metas mensais a partir dos processamentos consolidados."""
from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from sqlalchemy.orm import Session

from pcp.db import (
    get_classification_overrides,
    get_config,
    list_processed,
    product_classifications,
)
from pcp.errors import ValidationError
from pcp.models import (
    ClassificationGoalProgress,
    DailyProductionDocument,
    MonthlyGoalConfig,
)
from pcp.utils.date_helpers import month_bounds, parse_date_key, to_date_key, week_bounds
from pcp.utils.logger import log
from pcp.utils.normalization import TWO_PLACES, ZERO, normalize_code, quantize

HUNDRED = Decimal("100")

# Distribuição padrão (kg) usada quando ainda não há histórico de produção.
DEFAULT_DISTRIBUICAO: Dict[str, Decimal] = {
    "FRESCAIS GROSSAS": Decimal("50000"),
    "FRESCAIS FINAS": Decimal("18000"),
    "FRESCAIS BANDEJAS": Decimal("3000"),
    "BACON": Decimal("5000"),
    "CALABRESA": Decimal("22000"),
    "MORTADELA": Decimal("8000"),
    "PRESUNTARIA": Decimal("16000"),
    "FATIADOS": Decimal("3000"),
}


def default_targets(monthly_target: Decimal = ZERO) -> Dict[str, Decimal]:
    """Metas da tabela padrão, escaladas para a meta mensal quando ela existe."""
    if monthly_target <= 0:
        return dict(DEFAULT_DISTRIBUICAO)
    total = sum(DEFAULT_DISTRIBUICAO.values())
    return {
        classificacao: quantize(monthly_target * peso / total, TWO_PLACES)
        for classificacao, peso in DEFAULT_DISTRIBUICAO.items()
    }


def proportional_targets(monthly_target: Decimal, kg_by_class: Mapping[str, Decimal]) -> Dict[str, Decimal]:
    total = sum(kg_by_class.values(), ZERO)
    if total <= 0:
        return {}
    return {
        classificacao: quantize(monthly_target * kg / total, TWO_PLACES)
        for classificacao, kg in kg_by_class.items()
        if kg > 0
    }


def percent(value: Decimal, total: Decimal) -> Decimal:
    if total <= 0:
        return quantize(ZERO, TWO_PLACES)
    return quantize(value / total * HUNDRED, TWO_PLACES)


def kg_by_classification(
    documents: Iterable[DailyProductionDocument],
    catalog: Mapping[str, str],
) -> Tuple[Dict[str, Decimal], Decimal]:
    """Soma kg por classificação dos turnos incluídos em cada processamento.

    Devolve também os kg de códigos fora do catálogo.
    """
    totals: Dict[str, Decimal] = defaultdict(lambda: ZERO)
    unclassified = ZERO
    for document in documents:
        if document.aggregate is None:
            continue
        for number in document.aggregate.shifts_included:
            for entry in document.shift(number):
                classificacao = catalog.get(normalize_code(entry.code))
                if classificacao:
                    totals[classificacao] += entry.kg_produced
                else:
                    unclassified += entry.kg_produced
    return dict(totals), unclassified


@dataclass(frozen=True)
class Periodo:
    inicio: date
    fim: date

    def __post_init__(self) -> None:
        if self.inicio > self.fim:
            raise ValidationError("início do período posterior ao fim")

    @classmethod
    def diario(cls, ref: date) -> "Periodo":
        return cls(ref, ref)

    @classmethod
    def semanal(cls, ref: date) -> "Periodo":
        return cls(*week_bounds(ref))

    @classmethod
    def mensal(cls, ref: date) -> "Periodo":
        return cls(*month_bounds(ref))

    @classmethod
    def from_keys(cls, inicio: str, fim: str) -> "Periodo":
        try:
            return cls(parse_date_key(inicio), parse_date_key(fim))
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

    @classmethod
    def from_tipo(cls, tipo: str, ref: date) -> "Periodo":
        builders = {"diario": cls.diario, "semanal": cls.semanal, "mensal": cls.mensal}
        try:
            return builders[tipo](ref)
        except KeyError as exc:
            raise ValidationError(f"tipo de período inválido: {tipo!r}") from exc

    @property
    def inicio_key(self) -> str:
        return to_date_key(self.inicio)

    @property
    def fim_key(self) -> str:
        return to_date_key(self.fim)


@dataclass
class GoalProjection:
    periodo: Periodo
    meta_minima_mensal: Decimal
    produzido_kg: Decimal
    progresso_pct: Decimal
    restante_kg: Decimal
    dias_uteis_restantes: int
    dias_com_producao: int
    kg_diario_necessario: Decimal
    ultimo_kg_diario: Decimal
    nao_classificado_kg: Decimal
    fonte_metas: str
    por_classificacao: List[ClassificationGoalProgress] = field(default_factory=list)

    @property
    def total_meta(self) -> Decimal:
        return sum((item.meta for item in self.por_classificacao), ZERO)

    @property
    def total_realizado(self) -> Decimal:
        return sum((item.realizado for item in self.por_classificacao), ZERO)

    @property
    def percentual_geral(self) -> Decimal:
        return percent(self.total_realizado, self.total_meta)

    @property
    def total_restante(self) -> Decimal:
        """Quanto falta somando as metas por classificação (overrides inclusos)."""
        return max(ZERO, self.total_meta - self.total_realizado)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "periodo": {"inicio": self.periodo.inicio_key, "fim": self.periodo.fim_key},
            "meta_minima_mensal": float(self.meta_minima_mensal),
            "produzido_kg": float(self.produzido_kg),
            "progresso_pct": float(self.progresso_pct),
            "restante_kg": float(self.restante_kg),
            "dias_uteis_restantes": self.dias_uteis_restantes,
            "dias_com_producao": self.dias_com_producao,
            "kg_diario_necessario": float(self.kg_diario_necessario),
            "ultimo_kg_diario": float(self.ultimo_kg_diario),
            "nao_classificado_kg": float(self.nao_classificado_kg),
            "fonte_metas": self.fonte_metas,
            "por_classificacao": [item.to_payload() for item in self.por_classificacao],
            "total_meta": float(self.total_meta),
            "total_realizado": float(self.total_realizado),
            "percentual_geral": float(self.percentual_geral),
            "total_restante": float(self.total_restante),
        }


class GoalProjector:
    """Lê processamentos consolidados e calcula o progresso das metas. Nunca grava."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def project(
        self,
        periodo: Periodo,
        config: Optional[MonthlyGoalConfig] = None,
        overrides: Optional[Mapping[str, Decimal]] = None,
    ) -> GoalProjection:
        config = config or get_config(self.session)
        if overrides is None:
            overrides = get_classification_overrides(self.session)
        target = config.meta_minima_mensal

        documentos = list_processed(self.session, start=periodo.inicio_key, end=periodo.fim_key)
        produzido = sum((doc.aggregate.kg_total for doc in documentos if doc.aggregate), ZERO)
        dias_com_producao = len(
            {doc.date_key for doc in documentos if doc.aggregate and doc.aggregate.kg_total > 0}
        )
        restante = max(ZERO, target - produzido)
        dias_restantes = max(0, config.dias_uteis_mes - dias_com_producao)
        kg_diario = quantize(restante / dias_restantes, TWO_PLACES) if dias_restantes > 0 else quantize(ZERO, TWO_PLACES)

        historico = list_processed(self.session, end=periodo.fim_key)
        ultimo = next((doc.aggregate.kg_total for doc in reversed(historico) if doc.aggregate), ZERO)

        catalog = product_classifications(self.session)
        realizado, nao_classificado = kg_by_classification(documentos, catalog)
        historico_kg, _ = kg_by_classification(historico, catalog)

        # meta zerada usa a tabela padrão
        metas = proportional_targets(target, historico_kg) if target > 0 else {}
        fonte = "historico"
        if not metas:
            metas = default_targets(target)
            fonte = "padrao"

        classificacoes = sorted(set(metas) | set(realizado) | set(overrides) | set(catalog.values()))
        progresso: List[ClassificationGoalProgress] = []
        for classificacao in classificacoes:
            override = classificacao in overrides
            meta = overrides[classificacao] if override else metas.get(classificacao, ZERO)
            feito = realizado.get(classificacao, ZERO)
            progresso.append(
                ClassificationGoalProgress(
                    classificacao=classificacao,
                    meta=meta,
                    realizado=feito,
                    percentual=percent(feito, meta),
                    override=override,
                )
            )

        projection = GoalProjection(
            periodo=periodo,
            meta_minima_mensal=target,
            produzido_kg=produzido,
            progresso_pct=percent(produzido, target),
            restante_kg=restante,
            dias_uteis_restantes=dias_restantes,
            dias_com_producao=dias_com_producao,
            kg_diario_necessario=kg_diario,
            ultimo_kg_diario=ultimo,
            nao_classificado_kg=nao_classificado,
            fonte_metas=fonte,
            por_classificacao=progresso,
        )
        log(
            "metas",
            "INFO",
            "projected",
            inicio=periodo.inicio_key,
            fim=periodo.fim_key,
            produzido=produzido,
            progresso=projection.progresso_pct,
            fonte=fonte,
        )
        return projection
