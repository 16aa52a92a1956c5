"""
date_helpers.py
Funções auxiliares para chaves de data (YYYY-MM-DD) e períodos
"""
from __future__ import annotations

import re
from datetime import date, datetime, timedelta, timezone
from typing import Any, Tuple

from dateutil import parser
from dateutil.relativedelta import relativedelta

_DATE_KEY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_BR_DATE_RE = re.compile(r"^\d{2}/\d{2}/\d{4}$")


def to_date_key(value: date) -> str:
    return value.strftime("%Y-%m-%d")


def today_key() -> str:
    return to_date_key(date.today())


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def parse_date_key(value: str) -> date:
    """Valida e converte uma chave YYYY-MM-DD."""
    text = (value or "").strip()
    if not _DATE_KEY_RE.match(text):
        raise ValueError(f"chave de data inválida: {value!r}")
    return datetime.strptime(text, "%Y-%m-%d").date()


def coerce_date_key(value: Any) -> str:
    """Aceita date/datetime, YYYY-MM-DD ou dd/mm/aaaa e devolve a chave canônica."""
    if isinstance(value, datetime):
        return to_date_key(value.date())
    if isinstance(value, date):
        return to_date_key(value)
    text = str(value or "").strip()
    if _DATE_KEY_RE.match(text):
        return to_date_key(parse_date_key(text))
    if _BR_DATE_RE.match(text):
        return to_date_key(datetime.strptime(text, "%d/%m/%Y").date())
    try:
        return to_date_key(parser.parse(text, dayfirst=True).date())
    except (ValueError, OverflowError) as exc:
        raise ValueError(f"data inválida: {value!r}") from exc


def month_bounds(ref: date) -> Tuple[date, date]:
    inicio = ref.replace(day=1)
    fim = inicio + relativedelta(months=1) - timedelta(days=1)
    return inicio, fim


def week_bounds(ref: date) -> Tuple[date, date]:
    """Semana de domingo a sábado, como no filtro semanal da tela de metas."""
    offset = (ref.weekday() + 1) % 7
    inicio = ref - timedelta(days=offset)
    return inicio, inicio + timedelta(days=6)
