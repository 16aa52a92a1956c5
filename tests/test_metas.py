from datetime import date
from decimal import Decimal

import pytest

from pcp import db
from pcp.errors import ValidationError
from pcp.metas import (
    DEFAULT_DISTRIBUICAO,
    GoalProjector,
    Periodo,
    default_targets,
    percent,
    proportional_targets,
)
from pcp.models import MonthlyGoalConfig
from pcp.pipeline import projetar_metas
from pcp.processamento import ProcessamentoSession

from tests.factories import lancamento

JANEIRO = Periodo.mensal(date(2024, 1, 15))


@pytest.fixture
def producao(session, seed):
    db.save_config(session, {"meta_minima_mensal": "100.000,00", "dias_uteis_mes": 20})
    db.bulk_upsert_produtos(
        session,
        [
            {"codigo": "P1", "descricao_produto": "Bacon manta", "classificacao": "BACON"},
            {"codigo": "P2", "descricao_produto": "Calabresa", "classificacao": "CALABRESA"},
        ],
    )
    session.commit()
    seed("2024-01-10", turno1=[lancamento("P1", 600, 600)], turno2=[lancamento("P2", 400, 400)])
    seed("2024-01-11", turno1=[lancamento("P3", 500, 500)], turno2=[lancamento("P1", 500, 500)])
    with ProcessamentoSession(session) as processing:
        processing.run("2024-01-10")
        processing.run("2024-01-11")
    return session


def test_default_targets_without_monthly_target():
    assert default_targets() == DEFAULT_DISTRIBUICAO


def test_default_targets_scale_to_monthly_target():
    targets = default_targets(Decimal("250000"))

    assert targets["FRESCAIS GROSSAS"] == Decimal("100000.00")
    assert targets["FATIADOS"] == Decimal("6000.00")


def test_proportional_targets_follow_share():
    targets = proportional_targets(Decimal("1000"), {"A": Decimal("30"), "B": Decimal("10"), "C": Decimal("0")})

    assert targets == {"A": Decimal("750.00"), "B": Decimal("250.00")}
    assert proportional_targets(Decimal("1000"), {}) == {}


def test_percent_without_total_is_zero():
    assert percent(Decimal("10"), Decimal("0")) == 0
    assert percent(Decimal("1"), Decimal("3")) == Decimal("33.33")


def test_projection_progress(producao):
    projection = GoalProjector(producao).project(JANEIRO)

    assert projection.produzido_kg == Decimal("2000")
    assert projection.progresso_pct == Decimal("2.00")
    assert projection.restante_kg == Decimal("98000")
    assert projection.dias_com_producao == 2
    assert projection.dias_uteis_restantes == 18
    assert projection.kg_diario_necessario == Decimal("5444.44")
    assert projection.ultimo_kg_diario == Decimal("1000")
    assert projection.nao_classificado_kg == Decimal("500")


def test_projection_targets_from_history(producao):
    projection = GoalProjector(producao).project(JANEIRO)
    by_class = {item.classificacao: item for item in projection.por_classificacao}

    assert projection.fonte_metas == "historico"
    assert list(by_class) == ["BACON", "CALABRESA"]
    assert by_class["BACON"].meta == Decimal("73333.33")
    assert by_class["BACON"].realizado == Decimal("1100")
    assert by_class["BACON"].percentual == Decimal("1.50")
    assert by_class["CALABRESA"].meta == Decimal("26666.67")


def test_override_replaces_only_its_classification(producao):
    db.save_classification_override(producao, "CALABRESA", "10.000,00")
    producao.commit()

    projection = GoalProjector(producao).project(JANEIRO)
    by_class = {item.classificacao: item for item in projection.por_classificacao}

    assert by_class["CALABRESA"].meta == Decimal("10000")
    assert by_class["CALABRESA"].override is True
    assert by_class["CALABRESA"].percentual == Decimal("4.00")
    assert by_class["BACON"].meta == Decimal("73333.33")
    assert by_class["BACON"].override is False


def test_projection_without_history_uses_default_table(session):
    config = MonthlyGoalConfig(meta_minima_mensal=Decimal("125000"), dias_uteis_mes=22)
    projection = GoalProjector(session).project(JANEIRO, config=config, overrides={})

    assert projection.fonte_metas == "padrao"
    assert projection.produzido_kg == 0
    assert projection.kg_diario_necessario == Decimal("5681.82")
    metas = {item.classificacao: item.meta for item in projection.por_classificacao}
    assert metas == DEFAULT_DISTRIBUICAO


def test_days_remaining_never_negative(session):
    config = MonthlyGoalConfig(meta_minima_mensal=Decimal("1000"), dias_uteis_mes=0)
    projection = GoalProjector(session).project(JANEIRO, config=config, overrides={})

    assert projection.dias_uteis_restantes == 0
    assert projection.kg_diario_necessario == 0


def test_periodos():
    assert Periodo.semanal(date(2024, 1, 10)) == Periodo(date(2024, 1, 7), date(2024, 1, 13))
    assert Periodo.mensal(date(2024, 2, 10)).fim_key == "2024-02-29"
    assert Periodo.diario(date(2024, 2, 10)).inicio_key == "2024-02-10"
    with pytest.raises(ValidationError):
        Periodo.from_keys("2024-02-10", "2024-02-01")
    with pytest.raises(ValidationError):
        Periodo.from_tipo("anual", date(2024, 1, 1))


def test_config_rejects_negative_values(session):
    with pytest.raises(ValidationError):
        db.save_config(session, {"meta_minima_mensal": -1})
    with pytest.raises(ValidationError):
        db.save_config(session, {"dias_uteis_mes": "2,5"})


def test_projetar_metas_action(producao):
    outcome = projetar_metas("2024-01-01", "2024-01-31")

    assert outcome.ok
    payload = outcome.value.to_payload()
    assert payload["periodo"] == {"inicio": "2024-01-01", "fim": "2024-01-31"}
    assert payload["produzido_kg"] == 2000.0

    assert projetar_metas("2024-01-31", "2024-01-01").kind == "entrada_invalida"


def test_projection_totals_over_classifications(producao):
    projection = GoalProjector(producao).project(JANEIRO)

    assert projection.total_meta == Decimal("100000.00")
    assert projection.total_realizado == Decimal("1500")
    assert projection.percentual_geral == Decimal("1.50")
    assert projection.total_restante == Decimal("98500.00")

    payload = projection.to_payload()
    assert payload["total_meta"] == 100000.0
    assert payload["total_restante"] == 98500.0


def test_totals_follow_overrides(producao):
    db.save_classification_override(producao, "CALABRESA", "10.000,00")
    producao.commit()

    projection = GoalProjector(producao).project(JANEIRO)

    assert projection.total_meta == Decimal("83333.33")
    assert projection.total_restante == Decimal("81833.33")


def test_zero_target_with_history_uses_default_table(producao):
    config = MonthlyGoalConfig(meta_minima_mensal=Decimal("0"), dias_uteis_mes=20)
    projection = GoalProjector(producao).project(JANEIRO, config=config, overrides={})

    assert projection.fonte_metas == "padrao"
    metas = {item.classificacao: item.meta for item in projection.por_classificacao}
    assert metas == DEFAULT_DISTRIBUICAO
    by_class = {item.classificacao: item for item in projection.por_classificacao}
    assert by_class["BACON"].realizado == Decimal("1100")
    assert by_class["BACON"].percentual == Decimal("22.00")
