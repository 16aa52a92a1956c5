"""Sessão de processamento: leitura via cache, confirmação e gravação do agregado."""
from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from typing import Callable, Iterator, Optional, Set

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pcp.cache import DocumentCache
from pcp.consolidation import ConsolidationProposal, consolidate, propose
from pcp.db import load_document, save_processamento
from pcp.errors import (
    ConcurrentRunError,
    ConfirmationRequiredError,
    NoDataError,
    PersistenceError,
    ProcessamentoError,
)
from pcp.models import SHIFT_LABELS, DailyProductionDocument, ProcessamentoResult
from pcp.utils.date_helpers import now_utc
from pcp.utils.logger import log

_LOCKS_GUARD = threading.Lock()
_DATE_LOCKS: Set[str] = set()


@contextmanager
def date_lock(date_key: str) -> Iterator[None]:
    """Mutex por data; uma segunda execução para a mesma data falha na hora.

    A data só fica registrada enquanto a execução dura.
    """
    with _LOCKS_GUARD:
        if date_key in _DATE_LOCKS:
            raise ConcurrentRunError("processamento desta data já está em andamento", date_key=date_key)
        _DATE_LOCKS.add(date_key)
    try:
        yield
    finally:
        with _LOCKS_GUARD:
            _DATE_LOCKS.discard(date_key)


class ProcessamentoSession:
    """Uma execução de processamento (ação do usuário ou job agendado).

    O cache pertence à sessão e é descartado em ``close``.
    """

    def __init__(
        self,
        session: Session,
        *,
        cache: Optional[DocumentCache] = None,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self.session = session
        if cache is None:
            cache = DocumentCache(lambda key: load_document(self.session, key))
        self.cache = cache
        self.clock = clock

    def __enter__(self) -> "ProcessamentoSession":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        self.cache.clear()

    def load(self, date_key: str) -> DailyProductionDocument:
        document = self.cache.get(date_key)
        if document is None or not document.has_data:
            raise NoDataError("nenhum dado de produção para esta data", date_key=date_key)
        return document

    def propose(self, date_key: str) -> ConsolidationProposal:
        return propose(self.load(date_key))

    def run(self, date_key: str, *, confirm: bool = False, require_confirmation: bool = True) -> ProcessamentoResult:
        """Consolida a data e grava o agregado.

        Com apenas um turno lançado, exige ``confirm=True`` a menos que
        ``require_confirmation`` seja falso (backfill).
        """

        document = self.load(date_key)
        proposal = propose(document)
        if proposal.needs_confirmation and require_confirmation and not confirm:
            missing = proposal.missing_shift or ""
            raise ConfirmationRequiredError(
                f"{SHIFT_LABELS.get(missing, missing)} sem lançamentos; confirme para processar apenas "
                + ", ".join(SHIFT_LABELS[number] for number in proposal.shifts_present),
                date_key=date_key,
                missing_shift=missing,
            )

        result = consolidate(document, now=self.clock())
        with date_lock(date_key):
            self._persist(document, result)
        log(
            "processamento",
            "INFO",
            "consolidated",
            date_key=date_key,
            turnos=result.shifts_included,
            kg_total=result.kg_total,
            ctptd=result.ctptd,
        )
        return result

    def _persist(self, document: DailyProductionDocument, result: ProcessamentoResult) -> None:
        try:
            new_version = save_processamento(
                self.session,
                document.date_key,
                result,
                expected_version=document.version,
            )
            self.session.commit()
        except ProcessamentoError:
            self.session.rollback()
            self.cache.invalidate(document.date_key)
            raise
        except SQLAlchemyError as exc:
            self.session.rollback()
            self.cache.invalidate(document.date_key)
            log("processamento", "ERROR", "persist_failed", date_key=document.date_key, error=str(exc))
            raise PersistenceError(
                "não foi possível gravar o processamento", date_key=document.date_key
            ) from exc

        self.cache.put(replace(document, processed=True, aggregate=result, version=new_version))
