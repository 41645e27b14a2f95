"""
Helpers de montos, tasas y fechas usados por todo el módulo de facturación.

Los montos se manejan como ``Decimal`` y se redondean a 2 decimales con
ROUND_HALF_UP, igual que los importes de un comprobante electrónico.
"""
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Optional, Union

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
DECIMAL_EPSILON = Decimal("0.000001")
# Mayor importe que cabe en una columna Numeric(15, 2)
MAX_AMOUNT = Decimal("9999999999999.99")

Number = Union[Decimal, int, float, str, None]


def to_decimal(value: Number) -> Decimal:
    if value is None:
        return Decimal(0)
    if isinstance(value, Decimal):
        return value
    # str() evita arrastrar el error binario de los float
    return Decimal(str(value))


def round2(value: Number) -> Decimal:
    """Redondear a 2 decimales (half-up)."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def parse_decimal(value: Any) -> Optional[Decimal]:
    """
    Interpretar un número enviado por el cliente.

    Acepta coma como separador decimal. Un valor vacío equivale a 0.
    Devuelve None si el valor no es un número finito.
    """
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    text = "" if value is None else str(value).strip().replace(",", ".", 1)
    if not text:
        return Decimal(0)
    try:
        parsed = Decimal(text)
    except InvalidOperation:
        return None
    if not parsed.is_finite():
        return None
    return parsed


def parse_tax_rate(value: Any) -> Optional[Decimal]:
    """
    Normalizar la tasa de impuesto a una fracción entre 0 y 1.

    Valores mayores a 1 se interpretan como porcentaje (18 -> 0.18).
    Negativos o mayores a 100 son inválidos.
    """
    parsed = parse_decimal(value)
    if parsed is None or parsed < 0:
        return None
    if parsed > 100:
        return None
    return parsed / 100 if parsed > 1 else parsed


def _parse_iso_datetime(text: str) -> Optional[datetime]:
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def parse_datetime_input(value: Any) -> Optional[datetime]:
    """Parsear una fecha/hora; fechas sin zona se asumen UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, (int, float)):
        # epoch en milisegundos
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    else:
        parsed = _parse_iso_datetime(str(value).strip())
        if parsed is None:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_date_input(value: Any) -> Optional[date]:
    """Parsear una fecha de calendario (se descarta la hora si viene)."""
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    parsed = parse_datetime_input(value)
    return parsed.date() if parsed else None


def to_iso_or_null(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
    if isinstance(value, date):
        return value.isoformat()
    return None


def to_money(value: Number) -> float:
    """Monto para la respuesta JSON (número con 2 decimales)."""
    return float(round2(value))
