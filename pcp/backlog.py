"""Busca de datas com produção lançada que nunca foram processadas."""
from __future__ import annotations

from typing import List, Optional

from sqlalchemy.orm import Session

from pcp.cache import DocumentCache
from pcp.db import list_unprocessed_rows, row_to_document
from pcp.errors import ValidationError
from pcp.models import BacklogEntry
from pcp.utils.logger import log


class BacklogScanner:
    """Lista as datas com ``processado != sim``, exceto a data em trabalho.

    Documentos sem lançamentos em nenhum turno ficam de fora. Um documento com
    lançamentos ilegíveis continua na lista, marcado com o erro, para não
    esconder as demais datas. Quando recebe o cache da sessão, os documentos
    lidos já ficam disponíveis para o backfill.
    """

    def __init__(self, session: Session, cache: Optional[DocumentCache] = None) -> None:
        self.session = session
        self.cache = cache

    def scan(self, exclude_date_key: Optional[str] = None) -> List[BacklogEntry]:
        backlog: List[BacklogEntry] = []
        invalid = 0
        for row in list_unprocessed_rows(self.session, exclude=exclude_date_key):
            if row.date_key == exclude_date_key:
                continue
            try:
                document = row_to_document(row)
            except ValidationError as exc:
                invalid += 1
                log("backlog", "WARNING", "invalid_document", date_key=row.date_key, reason=exc.message)
                backlog.append(BacklogEntry(row.date_key, (), error=exc.message, error_kind=exc.kind))
                continue
            if not document.has_data:
                continue
            if self.cache is not None:
                self.cache.put(document)
            backlog.append(BacklogEntry(date_key=document.date_key, shifts_present=document.shifts_present))

        log("backlog", "INFO", "scan", exclude=exclude_date_key or "-", pending=len(backlog), invalid=invalid)
        return backlog
