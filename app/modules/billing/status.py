"""
Estado de cobranza de una factura.

El estado se vuelve a derivar en cada lectura, de modo que VENCIDO refleja
la fecha actual aunque la factura no haya cambiado desde su creación.
"""
from datetime import date, datetime
from decimal import Decimal
from typing import Optional
from zoneinfo import ZoneInfo

from app.modules.billing.models import PaymentStatus
from app.modules.billing.money import DECIMAL_EPSILON, to_decimal

VALID_PAYMENT_STATUSES = frozenset(status.value for status in PaymentStatus)


def business_today(tz_name: str) -> date:
    """Fecha actual en la zona horaria del negocio."""
    return datetime.now(ZoneInfo(tz_name)).date()


def normalize_payment_status(
    balance: Decimal,
    stored_status: Optional[str],
    due_date: Optional[date],
    today: Optional[date] = None,
) -> PaymentStatus:
    """
    Orden de precedencia:
    1. saldo <= epsilon -> PAGADO
    2. PARCIAL guardado se mantiene
    3. vencimiento anterior a hoy -> VENCIDO
    4. estado guardado válido
    5. PENDIENTE
    """
    if to_decimal(balance) <= DECIMAL_EPSILON:
        return PaymentStatus.PAGADO
    if stored_status == PaymentStatus.PARCIAL.value:
        return PaymentStatus.PARCIAL
    if due_date is not None:
        # vence al final del día de due_date
        current = today or date.today()
        if due_date < current:
            return PaymentStatus.VENCIDO
    if stored_status in VALID_PAYMENT_STATUSES:
        return PaymentStatus(stored_status)
    return PaymentStatus.PENDIENTE


def status_after_payment(balance: Decimal) -> PaymentStatus:
    """Estado que se guarda después de aplicar un pago."""
    if to_decimal(balance) <= DECIMAL_EPSILON:
        return PaymentStatus.PAGADO
    return PaymentStatus.PARCIAL
