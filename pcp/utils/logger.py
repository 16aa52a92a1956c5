"""Logging helpers with rotating file handler and key=value extras."""
from __future__ import annotations

from pathlib import Path
import logging
import os
import sys
from decimal import Decimal
from logging.handlers import RotatingFileHandler
from typing import Any, Dict

_BASE = Path(__file__).resolve().parents[2]
_LOGGER_NAME = "pcp"


def _log_dir() -> Path:
    custom = os.getenv("PCP_LOG_DIR")
    if custom:
        return Path(custom)
    return _BASE / "data" / "logs"


def _ensure_logger() -> logging.Logger:
    """Configura o logger base se ainda não estiver configurado."""
    logger = logging.getLogger(_LOGGER_NAME)
    if logger.handlers:
        return logger

    log_dir = _log_dir()
    log_dir.mkdir(parents=True, exist_ok=True)

    logger.setLevel(logging.INFO)

    formatter = logging.Formatter(
        fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    file_handler = RotatingFileHandler(
        log_dir / "pcp.log",
        maxBytes=5 * 1024 * 1024,
        backupCount=5,
        encoding="utf-8",
    )
    file_handler.setFormatter(formatter)

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(formatter)

    logger.addHandler(file_handler)
    logger.addHandler(stream_handler)
    logger.propagate = False
    return logger


def _render(value: Any) -> str:
    if isinstance(value, Decimal):
        return format(value, "f")
    if isinstance(value, (list, tuple, set)):
        return ",".join(_render(item) for item in value)
    return str(value)


def _stringify_extra(extra: Dict[str, Any]) -> str:
    safe_pairs = []
    for key, value in extra.items():
        try:
            text = _render(value)
        except Exception:
            text = "<unprintable>"
        safe_pairs.append(f"{key}={text}")
    return " ".join(safe_pairs)


def get_logger(component: str) -> logging.Logger:
    base = _ensure_logger()
    if component and component != _LOGGER_NAME:
        return base.getChild(component)
    return base


def log(component: str, level: str, message: str, **extra: Any) -> None:
    logger = get_logger(component)
    lvl = getattr(logging, (level or "INFO").upper(), logging.INFO)
    msg = message
    if extra:
        msg = f"{msg} | {_stringify_extra(extra)}"
    logger.log(lvl, msg)
