from datetime import datetime, timezone
from decimal import Decimal

import pytest

from pcp import db
from pcp.consolidation import consolidate
from pcp.errors import ConcurrentWriteError, ValidationError
from pcp.models import PROCESSADO_NAO

from tests.factories import lancamento


def test_replace_shift_replaces_instead_of_merging(session, seed):
    seed("2024-01-10", turno1=[lancamento("P1", 1), lancamento("P2", 2)])
    seed("2024-01-10", turno1=[lancamento("P3", 3)])

    document = db.load_document(session, "2024-01-10")
    assert [entry.code for entry in document.shift1] == ["P3"]
    assert document.version == 2


def test_save_processamento_checks_version(session, seed):
    seed("2024-01-10", turno1=[lancamento("P1", 10, 10)])
    document = db.load_document(session, "2024-01-10")
    result = consolidate(document, now=datetime(2024, 1, 10, tzinfo=timezone.utc))

    with pytest.raises(ConcurrentWriteError):
        db.save_processamento(session, "2024-01-10", result, expected_version=document.version + 5)
    session.rollback()

    new_version = db.save_processamento(session, "2024-01-10", result, expected_version=document.version)
    session.commit()

    stored = db.load_document(session, "2024-01-10")
    assert new_version == document.version + 1
    assert stored.version == new_version
    assert stored.processed
    assert stored.aggregate.kg_total == 10


def test_unprocessed_includes_missing_flag(session, seed):
    seed("2024-01-11", turno1=[lancamento("P1", 1)])
    session.add(db.ProducaoDiaria(date_key="2024-01-09", turno_1=[lancamento("P1", 1)], processado=None))
    session.commit()

    keys = [row.date_key for row in db.list_unprocessed_rows(session)]

    assert keys == ["2024-01-09", "2024-01-11"]
    assert db.load_document(session, "2024-01-11").to_payload()["processado"] == PROCESSADO_NAO


def test_invalid_date_key(session):
    with pytest.raises(ValidationError):
        db.load_document(session, "10-01-2024")


def test_config_defaults_from_env(store, monkeypatch):
    monkeypatch.setenv("PCP_META_MINIMA_MENSAL", "1.500.000")
    monkeypatch.setenv("PCP_DIAS_UTEIS_MES", "22")

    with store.session_scope() as sess:
        config = store.get_config(sess)

    assert float(config.meta_minima_mensal) == 1500000.0
    assert config.dias_uteis_mes == 22


def test_session_scope_rolls_back_on_error(store):
    with pytest.raises(ValidationError):
        with store.session_scope() as sess:
            store.replace_shift(sess, "2024-01-10", "1", [lancamento("P1", 1)])
            store.upsert_produto(sess, {"descricao_produto": "sem código"})

    with store.session_scope() as sess:
        assert store.count_documents(sess) == 0


def test_config_accepts_form_formatted_target(session):
    config = db.save_config(session, {"meta_minima_mensal": "100.000", "dias_uteis_mes": "22"})
    session.commit()

    assert config.meta_minima_mensal == Decimal("100000")
    assert db.get_config(session).meta_minima_mensal == Decimal("100000")
