"""Erros do processamento e resultados tipados devolvidos pelas ações."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Generic, List, Optional, TypeVar, Union

T = TypeVar("T")


class ProcessamentoError(Exception):
    """Base de todos os erros do processamento."""

    kind = "erro"

    def __init__(self, message: str, *, date_key: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.date_key = date_key

    def details(self) -> Dict[str, Any]:
        return {"date_key": self.date_key} if self.date_key else {}


class ValidationError(ProcessamentoError):
    kind = "entrada_invalida"


class NoDataError(ProcessamentoError):
    """Nenhum turno possui lançamentos para a data. Terminal, sem retry."""

    kind = "sem_dados"


class ConfirmationRequiredError(ProcessamentoError):
    """Apenas um turno possui lançamentos e a confirmação não foi dada."""

    kind = "confirmacao_necessaria"

    def __init__(self, message: str, *, date_key: str, missing_shift: str) -> None:
        super().__init__(message, date_key=date_key)
        self.missing_shift = missing_shift

    def details(self) -> Dict[str, Any]:
        return {"date_key": self.date_key, "turno_ausente": self.missing_shift}


class BacklogPendingError(ProcessamentoError):
    """Existem datas anteriores não processadas; o backfill deve rodar antes."""

    kind = "datas_pendentes"

    def __init__(self, message: str, *, date_key: str, pending: List[str]) -> None:
        super().__init__(message, date_key=date_key)
        self.pending = list(pending)

    def details(self) -> Dict[str, Any]:
        return {"date_key": self.date_key, "datas_nao_processadas": self.pending}


class PersistenceError(ProcessamentoError):
    kind = "falha_persistencia"


class ConcurrentWriteError(PersistenceError):
    """O documento mudou (version) entre a leitura e a gravação."""

    kind = "conflito_versao"


class ConcurrentRunError(ProcessamentoError):
    """Outro processamento para a mesma data está em andamento."""

    kind = "em_andamento"


@dataclass
class BackfillItemError:
    date_key: str
    reason: str
    kind: str = "erro"

    def to_dict(self) -> Dict[str, Any]:
        return {"date_key": self.date_key, "reason": self.reason, "kind": self.kind}


@dataclass
class Ok(Generic[T]):
    value: T
    ok: bool = field(default=True, init=False)


@dataclass
class Err:
    kind: str
    message: str
    details: Dict[str, Any] = field(default_factory=dict)
    ok: bool = field(default=False, init=False)

    @classmethod
    def from_exception(cls, exc: ProcessamentoError) -> "Err":
        return cls(kind=exc.kind, message=exc.message, details=exc.details())


Result = Union[Ok[T], Err]
