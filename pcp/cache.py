"""Cache de leitura de documentos diários, válido por uma sessão de processamento."""
from __future__ import annotations

from typing import Callable, Dict, Optional

from pcp.models import DailyProductionDocument
from pcp.utils.logger import get_logger

LOG = get_logger("cache")

Loader = Callable[[str], Optional[DailyProductionDocument]]


class DocumentCache:
    """Read-through: no miss busca no store e memoriza; no hit não acessa o store.

    Documentos inexistentes não são memorizados. Não há write-through: quem
    grava no store é responsável por chamar ``put`` ou ``invalidate``.
    """

    def __init__(self, loader: Loader) -> None:
        self._loader = loader
        self._entries: Dict[str, DailyProductionDocument] = {}
        self.hits = 0
        self.misses = 0

    def get(self, date_key: str) -> Optional[DailyProductionDocument]:
        cached = self._entries.get(date_key)
        if cached is not None:
            self.hits += 1
            return cached

        self.misses += 1
        document = self._loader(date_key)
        if document is not None:
            self._entries[date_key] = document
        return document

    def put(self, document: DailyProductionDocument) -> None:
        self._entries[document.date_key] = document

    def invalidate(self, date_key: str) -> None:
        self._entries.pop(date_key, None)

    def clear(self) -> None:
        LOG.debug("cache descartado: %s entradas, %s hits, %s misses", len(self._entries), self.hits, self.misses)
        self._entries.clear()
        self.hits = 0
        self.misses = 0

    def __contains__(self, date_key: object) -> bool:
        return date_key in self._entries

    def __len__(self) -> int:
        return len(self._entries)
