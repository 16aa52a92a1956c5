"""Helpers to normalize numbers and product codes at the UI/import boundary."""
from __future__ import annotations

import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional

_BR_THOUSANDS_RE = re.compile(r"^-?[1-9]\d{0,2}(\.\d{3})+(,\d+)?$")
_PLAIN_COMMA_RE = re.compile(r"^-?\d+,\d+$")

ZERO = Decimal("0")
TWO_PLACES = Decimal("0.01")
ONE_PLACE = Decimal("0.1")


def parse_decimal(value: Any) -> Decimal:
    """Converte números no formato brasileiro ("1.234,56") ou nativos em Decimal.

    Pontos em grupos de três dígitos são separadores de milhar ("100.000",
    "1.234.567"); fora desse padrão o ponto é decimal ("12.5", "0.125").
    """
    if value is None:
        return ZERO
    if isinstance(value, bool):
        raise ValueError(f"valor numérico inválido: {value!r}")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        if value != value or value in (float("inf"), float("-inf")):
            raise ValueError(f"valor numérico inválido: {value!r}")
        return Decimal(repr(value))

    raw = str(value).strip().replace(" ", "")
    if not raw:
        return ZERO
    if _BR_THOUSANDS_RE.match(raw):
        raw = raw.replace(".", "").replace(",", ".")
    elif _PLAIN_COMMA_RE.match(raw):
        raw = raw.replace(",", ".")
    try:
        parsed = Decimal(raw)
    except InvalidOperation as exc:
        raise ValueError(f"valor numérico inválido: {value!r}") from exc
    if not parsed.is_finite():
        raise ValueError(f"valor numérico inválido: {value!r}")
    return parsed


def parse_optional_decimal(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    if isinstance(value, str) and not value.strip():
        return None
    return parse_decimal(value)


def quantize(value: Decimal, places: Decimal = TWO_PLACES) -> Decimal:
    return value.quantize(places, rounding=ROUND_HALF_UP)


def format_br(value: Any, decimals: int = 2) -> str:
    """Formata um número no padrão pt-BR: milhar com ponto, decimal com vírgula."""
    number = parse_decimal(value)
    places = Decimal(1).scaleb(-decimals) if decimals > 0 else Decimal(1)
    text = f"{quantize(number, places):,.{decimals}f}"
    return text.replace(",", "_").replace(".", ",").replace("_", ".")


def normalize_code(code: Optional[str]) -> str:
    return (code or "").strip().lower()


def to_float(value: Optional[Decimal]) -> float:
    if value is None:
        return 0.0
    return float(value)
