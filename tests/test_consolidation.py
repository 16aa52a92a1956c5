from datetime import datetime, timezone
from decimal import Decimal

import pytest

from pcp.consolidation import consolidate, efficiency, propose
from pcp.errors import NoDataError
from pcp.models import DailyProductionDocument, ShiftEntry

FIXED_NOW = datetime(2024, 1, 10, 23, 30, tzinfo=timezone.utc)


def entry(code, kg, planned=None, cx=0):
    return ShiftEntry.from_payload({"codigo": code, "kg": kg, "cx": cx, "planejamento": planned})


def doc(shift1=(), shift2=(), date_key="2024-01-10"):
    return DailyProductionDocument(date_key=date_key, shift1=list(shift1), shift2=list(shift2))


def test_single_shift_after_confirmation():
    result = consolidate(doc(shift1=[entry("P1", 100, 80)]), now=FIXED_NOW)

    assert result.ctp1 == Decimal("125.0")
    assert result.ctp2 == 0
    assert result.ctptd == Decimal("125.0")
    assert result.kg_total == Decimal("100")
    assert result.plano_diario == Decimal("80")
    assert result.diferenca_pr == Decimal("20")
    assert result.kg_turno2 == 0
    assert result.shifts_included == ("1",)


def test_shift_without_planned_has_zero_efficiency():
    result = consolidate(doc(shift1=[entry("P1", 50, 100)], shift2=[entry("P2", 50, 0)]), now=FIXED_NOW)

    assert result.plano_diario == Decimal("100")
    assert result.kg_total == Decimal("100")
    assert result.ctptd == Decimal("100.0")
    assert result.ctp1 == Decimal("50.0")
    assert result.ctp2 == 0
    assert result.shifts_included == ("1", "2")


@pytest.mark.parametrize("produced", [Decimal("0"), Decimal("10"), Decimal("999.99")])
def test_efficiency_zero_when_nothing_planned(produced):
    assert efficiency(produced, Decimal("0")) == 0


def test_total_is_exact_sum_of_shifts():
    shift1 = [entry("P1", "10,005"), entry("P2", "0,004")]
    shift2 = [entry("P3", "1.234,555")]
    result = consolidate(doc(shift1=shift1, shift2=shift2), now=FIXED_NOW)

    assert result.kg_total == result.kg_turno1 + result.kg_turno2
    assert result.kg_turno1 == Decimal("10.01")
    assert result.kg_turno2 == Decimal("1234.56")


def test_boxes_and_batch_receita():
    result = consolidate(
        doc(shift1=[entry("P1", 200, 100, cx=10)], shift2=[entry("P2", 200, 300, cx=5)]),
        now=FIXED_NOW,
    )

    assert result.cx_total == Decimal("15")
    assert result.batch_receita == Decimal("1.00")
    assert result.planejado_turno1 == Decimal("100")
    assert result.planejado_turno2 == Decimal("300")


def test_consolidation_is_idempotent():
    document = doc(shift1=[entry("P1", "12,3", 10)], shift2=[entry("P2", 7, 9)])

    first = consolidate(document, now=FIXED_NOW)
    second = consolidate(document, now=FIXED_NOW)

    assert first == second
    assert first.to_payload() == second.to_payload()


def test_no_data_raises():
    with pytest.raises(NoDataError) as info:
        consolidate(doc())
    assert info.value.kind == "sem_dados"


def test_shift_subset_restricts_calculation():
    document = doc(shift1=[entry("P1", 100, 100)], shift2=[entry("P2", 50, 100)])
    result = consolidate(document, shifts=["2"], now=FIXED_NOW)

    assert result.kg_turno1 == 0
    assert result.kg_total == Decimal("50")
    assert result.shifts_included == ("2",)


def test_propose_flags_missing_shift():
    proposal = propose(doc(shift2=[entry("P1", 10)]))

    assert proposal.needs_confirmation is True
    assert proposal.missing_shift == "1"
    assert proposal.to_payload()["turno_ausente"] == "1 Turno"


def test_propose_both_shifts_needs_no_confirmation():
    proposal = propose(doc(shift1=[entry("P1", 1)], shift2=[entry("P2", 1)]))

    assert proposal.needs_confirmation is False
    assert proposal.missing_shift is None


def test_propose_without_data_raises():
    with pytest.raises(NoDataError):
        propose(doc())
