#!/usr/bin/env python3
"""Orchestrator for Gestor PCP."""
from __future__ import annotations

import argparse
from pathlib import Path

from apscheduler.schedulers.background import BackgroundScheduler
from dotenv import load_dotenv
import uvicorn

from pcp.pipeline import ensure_environment, run_scheduled
from pcp.scheduler import schedule_jobs
from pcp.utils.logger import get_logger, log

ROOT = Path(__file__).resolve().parent

LOG = get_logger("run_all")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Executa o processamento pendente e sobe a API")
    parser.add_argument("--serve-only", action="store_true", help="Não processa antes de iniciar o servidor")
    parser.add_argument("--date", default=None, help="Data corrente (YYYY-MM-DD) do processamento inicial")
    parser.add_argument("--host", default="0.0.0.0", help="Host do servidor uvicorn")
    parser.add_argument("--port", type=int, default=8088, help="Porta do servidor uvicorn")
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    load_dotenv(dotenv_path=ROOT / ".env", override=False)
    ensure_environment()

    if not args.serve_only:
        log("run_all", "INFO", "initial_run", date_key=args.date or "hoje")
        summary = run_scheduled(args.date)
        log("run_all", "INFO", "initial_run_done", skipped=summary.get("skipped"))

    scheduler = BackgroundScheduler()
    mode = schedule_jobs(scheduler)
    scheduler.start()
    LOG.info("Scheduler iniciado (%s)", mode)

    config = uvicorn.Config(
        "app.api:app",
        host=args.host,
        port=args.port,
        reload=False,
        access_log=False,
    )
    server = uvicorn.Server(config)

    try:
        server.run()
    except KeyboardInterrupt:
        log("run_all", "INFO", "interrupted")
    finally:
        scheduler.shutdown()


if __name__ == "__main__":
    main()
