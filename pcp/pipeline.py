"""Ações do processamento: ponto de entrada da tela, da API e do job agendado.

Todas as funções públicas devolvem ``Ok(valor)`` ou ``Err(kind, message)``;
nenhum erro do processamento escapa daqui.
"""
from __future__ import annotations

import threading
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pcp.backfill import BackfillProcessor, BackfillReport
from pcp.backlog import BacklogScanner
from pcp.consolidation import ConsolidationProposal
from pcp.db import DATA_DIR, ensure_database, get_session
from pcp.errors import (
    BacklogPendingError,
    Err,
    Ok,
    PersistenceError,
    ProcessamentoError,
    Result,
    ValidationError,
)
from pcp.metas import GoalProjection, GoalProjector, Periodo
from pcp.models import BacklogEntry, ProcessamentoResult
from pcp.processamento import ProcessamentoSession
from pcp.utils.date_helpers import coerce_date_key, now_utc, today_key
from pcp.utils.logger import get_logger, log

LOGS_DIR = DATA_DIR / "logs"

PIPELINE_LOG = get_logger("pipeline")
PIPELINE_LOCK = threading.Lock()

T = TypeVar("T")


def ensure_environment() -> None:
    DATA_DIR.mkdir(parents=True, exist_ok=True)
    LOGS_DIR.mkdir(parents=True, exist_ok=True)
    ensure_database()


def _date_key(value: Any) -> str:
    if value in (None, ""):
        return today_key()
    try:
        return coerce_date_key(value)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc


def _action(name: str, body: Callable[[Session], T], **context: Any) -> Result[T]:
    ensure_environment()
    session = get_session()
    try:
        return Ok(body(session))
    except ProcessamentoError as exc:
        session.rollback()
        log("pipeline", "WARNING", f"{name}_refused", kind=exc.kind, reason=exc.message, **context)
        return Err.from_exception(exc)
    except SQLAlchemyError as exc:
        session.rollback()
        log("pipeline", "ERROR", f"{name}_db_error", error=str(exc), **context)
        return Err(kind=PersistenceError.kind, message="falha de acesso ao banco de dados")
    finally:
        session.close()


def _gate(processing: ProcessamentoSession, date_key: str) -> None:
    backlog = BacklogScanner(processing.session, processing.cache).scan(date_key)
    if backlog:
        raise BacklogPendingError(
            f"{len(backlog)} data(s) anteriores não processadas; execute o processamento pendente primeiro",
            date_key=date_key,
            pending=[entry.date_key for entry in backlog],
        )


def propor_processamento(date_key: Any = None) -> Result[ConsolidationProposal]:
    """Primeira fase: verifica pendências e informa se é preciso confirmar."""

    def _body(session: Session) -> ConsolidationProposal:
        key = _date_key(date_key)
        with ProcessamentoSession(session) as processing:
            _gate(processing, key)
            return processing.propose(key)

    return _action("propose", _body, date_key=date_key or "hoje")


def calcular_processamento(
    date_key: Any = None,
    *,
    confirm: bool = False,
    clock: Optional[Callable[[], datetime]] = None,
) -> Result[ProcessamentoResult]:
    """Ação "Calcular Processamento" para a data (padrão: hoje)."""

    def _body(session: Session) -> ProcessamentoResult:
        key = _date_key(date_key)
        with ProcessamentoSession(session, clock=clock or now_utc) as processing:
            _gate(processing, key)
            return processing.run(key, confirm=confirm)

    return _action("calculate", _body, date_key=date_key or "hoje", confirm=confirm)


def listar_pendentes(exclude: Any = None) -> Result[List[BacklogEntry]]:
    def _body(session: Session) -> List[BacklogEntry]:
        return BacklogScanner(session).scan(_date_key(exclude))

    return _action("backlog", _body)


def processar_pendentes(
    exclude: Any = None,
    *,
    clock: Optional[Callable[[], datetime]] = None,
) -> Result[BackfillReport]:
    """Processa todas as datas pendentes, exceto ``exclude`` (padrão: hoje)."""

    def _body(session: Session) -> BackfillReport:
        key = _date_key(exclude)
        with ProcessamentoSession(session, clock=clock or now_utc) as processing:
            backlog = BacklogScanner(session, processing.cache).scan(key)
            return BackfillProcessor(processing).process_all(backlog)

    return _action("backfill", _body)


def projetar_metas(
    inicio: Optional[str] = None,
    fim: Optional[str] = None,
    *,
    tipo: str = "mensal",
    ref: Optional[date] = None,
) -> Result[GoalProjection]:
    def _body(session: Session) -> GoalProjection:
        if inicio and fim:
            periodo = Periodo.from_keys(inicio, fim)
        else:
            periodo = Periodo.from_tipo(tipo, ref or date.today())
        return GoalProjector(session).project(periodo)

    return _action("goals", _body)


def run_scheduled(date_key: Any = None) -> Dict[str, Any]:
    """Job diário: processa as pendências e depois a data corrente, sem confirmação.

    Dias com um só turno continuam pendentes e entram no próximo backfill.
    """

    if not PIPELINE_LOCK.acquire(blocking=False):
        log("pipeline", "WARNING", "scheduled_skipped", reason="already_running")
        return {"skipped": True}

    try:
        key = date_key or today_key()
        log("pipeline", "INFO", "scheduled_start", date_key=key)
        backfill = processar_pendentes(exclude=key)
        current = calcular_processamento(key, confirm=False)
        summary: Dict[str, Any] = {
            "skipped": False,
            "date_key": key,
            "backfill": backfill.value.to_dict() if backfill.ok else {"error": backfill.kind},
            "current": current.value.metrics() if current.ok else {"error": current.kind},
        }
        log(
            "pipeline",
            "INFO",
            "scheduled_complete",
            date_key=key,
            backfill_ok=backfill.ok,
            current_ok=current.ok,
        )
        return summary
    finally:
        PIPELINE_LOCK.release()


def trigger_scheduled(date_key: Any = None) -> bool:
    """Dispara o job em segundo plano; False se já houver um em execução."""
    if PIPELINE_LOCK.locked():
        return False

    def _runner() -> None:
        try:
            run_scheduled(date_key)
        except Exception as exc:  # pragma: no cover - apenas logging
            PIPELINE_LOG.exception("Falha ao executar processamento agendado", exc_info=exc)

    thread = threading.Thread(target=_runner, name="pcp-scheduled", daemon=True)
    thread.start()
    return True
