"""Processamento em lote das datas pendentes (backfill)."""
from __future__ import annotations

import argparse
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Union

from pcp.errors import BackfillItemError, ProcessamentoError
from pcp.models import BacklogEntry
from pcp.processamento import ProcessamentoSession
from pcp.utils.logger import log


@dataclass
class BackfillReport:
    succeeded: List[str] = field(default_factory=list)
    failed: List[BackfillItemError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "succeeded": list(self.succeeded),
            "failed": [item.to_dict() for item in self.failed],
            "total": len(self.succeeded) + len(self.failed),
        }


class BackfillProcessor:
    """Consolida cada data do backlog, na ordem recebida.

    Datas com um único turno são processadas sem nova confirmação. A falha de
    uma data é registrada no relatório e não interrompe as demais; cada data
    é gravada na sua própria transação.
    """

    def __init__(self, processing: ProcessamentoSession) -> None:
        self.processing = processing

    def process_all(self, backlog: Iterable[Union[str, BacklogEntry]]) -> BackfillReport:
        report = BackfillReport()
        for item in backlog:
            date_key = item.date_key if isinstance(item, BacklogEntry) else str(item)
            if isinstance(item, BacklogEntry) and item.error:
                report.failed.append(BackfillItemError(date_key, reason=item.error, kind=item.error_kind or "erro"))
                log("backfill", "WARNING", "date_skipped", date_key=date_key, kind=item.error_kind, reason=item.error)
                continue
            try:
                self.processing.run(date_key, require_confirmation=False)
            except ProcessamentoError as exc:
                report.failed.append(BackfillItemError(date_key=date_key, reason=exc.message, kind=exc.kind))
                log("backfill", "WARNING", "date_failed", date_key=date_key, kind=exc.kind, reason=exc.message)
                continue
            except Exception as exc:
                # erro inesperado fica restrito à data
                self.processing.session.rollback()
                report.failed.append(BackfillItemError(date_key=date_key, reason=str(exc)))
                log("backfill", "ERROR", "date_crashed", date_key=date_key, error=repr(exc))
                continue
            report.succeeded.append(date_key)

        log(
            "backfill",
            "INFO",
            "finished",
            succeeded=len(report.succeeded),
            failed=len(report.failed),
        )
        return report


def main() -> None:
    from pcp.pipeline import processar_pendentes

    parser = argparse.ArgumentParser(description="Processa as datas de produção pendentes")
    parser.add_argument(
        "--exclude",
        dest="exclude",
        default=None,
        help="Data (YYYY-MM-DD) a manter fora do lote; padrão: hoje",
    )
    args = parser.parse_args()

    log("backfill", "INFO", "starting", exclude=args.exclude or "hoje")
    outcome = processar_pendentes(exclude=args.exclude)
    if outcome.ok:
        log("backfill", "INFO", "report", **outcome.value.to_dict())
    else:
        log("backfill", "ERROR", "aborted", kind=outcome.kind, reason=outcome.message)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
