from pcp.backfill import BackfillProcessor
from pcp.backlog import BacklogScanner
from pcp.db import ProducaoDiaria, load_document
from pcp.models import PROCESSADO_SIM
from pcp.pipeline import calcular_processamento, listar_pendentes, processar_pendentes
from pcp.processamento import ProcessamentoSession

from tests.factories import lancamento


def test_scan_lists_unprocessed_dates_in_order(session, seed):
    seed("2024-01-11", turno1=[lancamento("P1", 10, 10)])
    seed("2024-01-09", turno2=[lancamento("P2", 5, 5)])
    seed("2024-01-12", turno1=[lancamento("P3", 1, 1)])

    backlog = BacklogScanner(session).scan("2024-01-12")

    assert [entry.date_key for entry in backlog] == ["2024-01-09", "2024-01-11"]
    assert backlog[0].shifts_present == ("2",)
    assert backlog[0].to_payload()["turnos"] == ["2 Turno"]


def test_scan_never_contains_excluded_date(session, seed):
    for key in ("2024-01-08", "2024-01-09", "2024-01-10"):
        seed(key, turno1=[lancamento("P1", 1)])

    for excluded in ("2024-01-08", "2024-01-09", "2024-01-10", "2024-02-01"):
        keys = [entry.date_key for entry in BacklogScanner(session).scan(excluded)]
        assert excluded not in keys


def test_scan_skips_processed_and_empty_documents(session, seed):
    seed("2024-01-05", turno1=[lancamento("P1", 10, 10)], turno2=[lancamento("P2", 10, 10)])
    seed("2024-01-06", turno1=[])
    with ProcessamentoSession(session) as processing:
        processing.run("2024-01-05")

    assert BacklogScanner(session).scan("2024-01-31") == []


def test_scan_primes_session_cache(session, seed):
    seed("2024-01-10", turno1=[lancamento("P1", 10, 10)])
    with ProcessamentoSession(session) as processing:
        BacklogScanner(session, processing.cache).scan("2024-01-31")
        assert "2024-01-10" in processing.cache


def test_backfill_ignores_unrelated_dates_without_data(session, seed):
    seed("2024-01-10", turno1=[lancamento("P1", 100, 80)])
    seed("2024-01-11", turno1=[lancamento("P1", 50, 50)], turno2=[lancamento("P2", 50, 50)])
    seed("2024-01-12", turno1=[])

    with ProcessamentoSession(session) as processing:
        report = BackfillProcessor(processing).process_all(["2024-01-10", "2024-01-11"])

    assert report.ok
    assert report.succeeded == ["2024-01-10", "2024-01-11"]
    for key in ("2024-01-10", "2024-01-11"):
        document = load_document(session, key)
        assert document.processed
        assert document.to_payload()["processado"] == PROCESSADO_SIM
    assert not load_document(session, "2024-01-12").processed


def test_backfill_collects_failures_and_continues(session, seed):
    seed("2024-01-10", turno1=[lancamento("P1", 100, 80)])
    seed("2024-01-12", turno2=[lancamento("P2", 10, 20)])

    with ProcessamentoSession(session) as processing:
        report = BackfillProcessor(processing).process_all(["2024-01-10", "2024-01-11", "2024-01-12"])

    assert report.succeeded == ["2024-01-10", "2024-01-12"]
    assert len(report.failed) == 1
    failure = report.failed[0]
    assert failure.date_key == "2024-01-11"
    assert failure.kind == "sem_dados"
    assert report.to_dict()["total"] == 3


def test_backfill_processes_single_shift_without_confirmation(session, seed):
    seed("2024-01-10", turno2=[lancamento("P1", 30, 60)])

    with ProcessamentoSession(session) as processing:
        backlog = BacklogScanner(session, processing.cache).scan("2024-01-31")
        report = BackfillProcessor(processing).process_all(backlog)

    assert report.succeeded == ["2024-01-10"]
    aggregate = load_document(session, "2024-01-10").aggregate
    assert aggregate.shifts_included == ("2",)
    assert float(aggregate.ctp2) == 50.0


def _seed_unreadable(session, date_key):
    session.add(ProducaoDiaria(date_key=date_key, turno_1=[{"codigo": "X", "kg": "abc"}], processado="não"))
    session.commit()


def test_scan_keeps_going_past_unreadable_document(session, seed):
    _seed_unreadable(session, "2024-01-08")
    seed("2024-01-09", turno1=[lancamento("P1", 10, 10)])

    backlog = BacklogScanner(session).scan("2024-01-31")

    assert [entry.date_key for entry in backlog] == ["2024-01-08", "2024-01-09"]
    assert backlog[0].error_kind == "entrada_invalida"
    assert "kg" in backlog[0].to_payload()["erro"]
    assert backlog[1].error is None


def test_backfill_reports_unreadable_date_and_processes_the_rest(session, seed):
    _seed_unreadable(session, "2024-01-08")
    seed("2024-01-09", turno1=[lancamento("P1", 10, 10)])

    outcome = processar_pendentes("2024-01-31")

    assert outcome.ok
    assert outcome.value.succeeded == ["2024-01-09"]
    assert [(item.date_key, item.kind) for item in outcome.value.failed] == [("2024-01-08", "entrada_invalida")]
    assert load_document(session, "2024-01-09").processed

    pending = listar_pendentes("2024-01-31")
    assert pending.ok
    assert [entry.date_key for entry in pending.value] == ["2024-01-08"]

    blocked = calcular_processamento("2024-01-10")
    assert blocked.kind == "datas_pendentes"
    assert blocked.details["datas_nao_processadas"] == ["2024-01-08"]
