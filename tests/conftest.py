"""Fixtures de teste.

Cada teste que usa ``store`` recebe um SQLite próprio em tmp_path; o engine
global de ``pcp.db`` é descartado antes e depois para não vazar conexões
entre testes.
"""
import pytest

from pcp import db


@pytest.fixture
def store(tmp_path, monkeypatch):
    monkeypatch.setenv("DB_URL", f"sqlite:///{tmp_path / 'pcp-test.db'}")
    for name in ("PCP_META_MINIMA_MENSAL", "PCP_DIAS_UTEIS_MES", "PCP_META_DIARIA_GLOBAL"):
        monkeypatch.delenv(name, raising=False)
    db.reset_engine()
    db.init_db()
    yield db
    db.reset_engine()


@pytest.fixture
def session(store):
    sess = store.get_session()
    try:
        yield sess
    finally:
        sess.close()


@pytest.fixture
def seed(session):
    """Grava turnos: seed("2024-01-10", turno1=[...], turno2=[...])."""

    def _seed(date_key, turno1=None, turno2=None):
        if turno1 is not None:
            db.replace_shift(session, date_key, "1", turno1)
        if turno2 is not None:
            db.replace_shift(session, date_key, "2", turno2)
        session.commit()

    return _seed
