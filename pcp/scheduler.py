#!/usr/bin/env python3
"""
Scheduler do processamento diário.
Usa APScheduler para disparar o mesmo ponto de entrada da ação
"Calcular Processamento" (pendências primeiro, depois a data corrente).

Uso:
    python -m pcp.scheduler
    python -m pcp.scheduler --now
"""
from __future__ import annotations

import argparse
import os
import time
from datetime import datetime, timedelta
from pathlib import Path

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from dotenv import load_dotenv

from pcp.pipeline import ensure_environment, run_scheduled
from pcp.utils.logger import log

ROOT = Path(__file__).resolve().parents[1]
ENV_PATH = ROOT / ".env"

DEFAULT_CRON = "30 23 * * *"
JOB_ID = "processamento_diario"


def schedule_jobs(scheduler: BackgroundScheduler) -> str:
    """Registra o job diário; devolve o modo usado ("cron" ou "interval")."""
    cron_expr = os.getenv("SCHEDULE_CRON") or DEFAULT_CRON
    try:
        trigger = CronTrigger.from_crontab(cron_expr)
        scheduler.add_job(
            run_scheduled,
            trigger=trigger,
            id=JOB_ID,
            name="processamento-cron",
            coalesce=True,
            max_instances=1,
            replace_existing=True,
        )
        log("scheduler", "INFO", "scheduler_registered", mode="cron", expression=cron_expr)
        return "cron"
    except ValueError as exc:
        log("scheduler", "WARNING", "invalid_cron", expression=cron_expr, error=str(exc))

    try:
        every_hours = max(1, int(os.getenv("SCHEDULE_EVERY_HOURS", "24")))
    except ValueError:
        every_hours = 24

    trigger = IntervalTrigger(hours=every_hours, start_date=datetime.now() + timedelta(hours=every_hours))
    scheduler.add_job(
        run_scheduled,
        trigger=trigger,
        id=JOB_ID,
        name="processamento-interval",
        coalesce=True,
        max_instances=1,
        replace_existing=True,
    )
    log("scheduler", "INFO", "scheduler_registered", mode="interval", hours=every_hours)
    return "interval"


def main() -> None:
    parser = argparse.ArgumentParser(description="Agenda o processamento diário de produção")
    parser.add_argument("--now", action="store_true", help="Executa uma vez antes de agendar")
    args = parser.parse_args()

    load_dotenv(dotenv_path=ENV_PATH, override=False)
    ensure_environment()

    if args.now:
        log("scheduler", "INFO", "initial_run")
        run_scheduled()

    scheduler = BackgroundScheduler()
    schedule_jobs(scheduler)
    scheduler.start()
    log("scheduler", "INFO", "started", root=ROOT)

    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        log("scheduler", "INFO", "stopping")
        scheduler.shutdown()


if __name__ == "__main__":
    main()
