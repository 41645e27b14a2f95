"""
Validación de payloads de facturación.

Convierte el cuerpo (no confiable) de un request en un borrador completo y
consistente, o falla con un ValidationError concreto. No toca la base de datos.
"""
from decimal import Decimal
from typing import Any, List, Mapping, Optional

from app.common.exceptions import ValidationError
from app.modules.billing.models import DocumentType, CustomerDocumentType, PaymentStatus
from app.modules.billing.money import (
    MAX_AMOUNT, ZERO, round2, parse_decimal, parse_tax_rate, parse_date_input, parse_datetime_input,
)
from app.modules.billing.schemas import (
    InvoiceDraft, InvoiceItemDraft, PaymentDraft, MarkPaidDraft, InvoiceFilters,
)

DEFAULT_LIST_LIMIT = 100
MAX_LIST_LIMIT = 300
MARK_PAID_DEFAULT_NOTE = "Pago total"

# Largo de las columnas donde se guardan
SERIE_MAX_LENGTH = 10
NUMERO_MAX_LENGTH = 20
CUSTOMER_NAME_MAX_LENGTH = 200
CUSTOMER_DOCUMENT_MAX_LENGTH = 20


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def require_business_id(value: Any) -> str:
    business_id = _text(value)
    if not business_id:
        raise ValidationError("Missing businessId")
    return business_id


def _parse_items(raw_items: Any) -> List[InvoiceItemDraft]:
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("Missing items")

    items = []
    for raw in raw_items:
        item = raw if isinstance(raw, Mapping) else {}
        description = _text(item.get("description"))
        quantity = parse_decimal(item.get("quantity"))
        unit_price = parse_decimal(item.get("unitPrice"))
        tax_rate = parse_tax_rate(item.get("taxRate"))
        if not description or quantity is None or unit_price is None or tax_rate is None:
            raise ValidationError("Invalid item fields")
        if quantity <= 0 or unit_price < 0:
            raise ValidationError("Invalid item values")
        if quantity > MAX_AMOUNT or unit_price > MAX_AMOUNT or quantity * unit_price * (1 + tax_rate) > MAX_AMOUNT:
            raise ValidationError("Invalid item values")

        # Cada importe se redondea por línea; los totales suman lo redondeado
        subtotal = round2(quantity * unit_price)
        igv = round2(subtotal * tax_rate)
        items.append(InvoiceItemDraft(
            description=description,
            quantity=quantity,
            unit_price=unit_price,
            tax_rate=tax_rate,
            subtotal=subtotal,
            igv=igv,
            total=round2(subtotal + igv),
        ))
    return items


def parse_invoice_payload(body: Optional[Mapping[str, Any]]) -> InvoiceDraft:
    """
    Validar el payload de creación de factura.

    Reglas:
    - FACTURA sólo para clientes con RUC
    - dueDate, si viene, no puede ser anterior a issueDate
    - al menos un item; cantidad > 0, precio >= 0, tasa entre 0 y 1 (o 0-100 %)

    Raises:
        ValidationError: con el primer problema encontrado
    """
    body = body or {}
    business_id = require_business_id(body.get("businessId"))

    document_type = _text(body.get("documentType")).upper()
    if document_type not in DocumentType.__members__:
        raise ValidationError("Invalid documentType")

    serie = _text(body.get("serie")).upper()
    numero = _text(body.get("numero")).upper()
    if not serie or not numero:
        raise ValidationError("Missing serie or numero")
    if len(serie) > SERIE_MAX_LENGTH or len(numero) > NUMERO_MAX_LENGTH:
        raise ValidationError("Invalid serie or numero")

    customer_name = _text(body.get("customerName"))
    customer_document_type = (_text(body.get("customerDocumentType")) or CustomerDocumentType.OTRO.value).upper()
    customer_document_number = _text(body.get("customerDocumentNumber"))
    if not customer_name or not customer_document_number:
        raise ValidationError("Missing customer fields")
    if len(customer_name) > CUSTOMER_NAME_MAX_LENGTH or len(customer_document_number) > CUSTOMER_DOCUMENT_MAX_LENGTH:
        raise ValidationError("Invalid customer fields")
    if customer_document_type not in CustomerDocumentType.__members__:
        raise ValidationError("Invalid customerDocumentType")
    if document_type == DocumentType.FACTURA.value and customer_document_type != CustomerDocumentType.RUC.value:
        raise ValidationError("Factura requires customerDocumentType RUC")

    issue_date = parse_date_input(body.get("issueDate"))
    if issue_date is None:
        raise ValidationError("Invalid issueDate")

    raw_due_date = body.get("dueDate")
    due_date = parse_date_input(raw_due_date)
    if raw_due_date not in (None, "") and due_date is None:
        raise ValidationError("Invalid dueDate")
    if due_date is not None and due_date < issue_date:
        raise ValidationError("dueDate cannot be before issueDate")

    items = _parse_items(body.get("items"))
    total = round2(sum((item.total for item in items), ZERO))
    if total > MAX_AMOUNT:
        raise ValidationError("Invalid item values")

    return InvoiceDraft(
        business_id=business_id,
        document_type=DocumentType(document_type),
        serie=serie,
        numero=numero,
        customer_name=customer_name,
        customer_document_type=CustomerDocumentType(customer_document_type),
        customer_document_number=customer_document_number,
        issue_date=issue_date,
        due_date=due_date,
        items=items,
        subtotal=round2(sum((item.subtotal for item in items), ZERO)),
        igv=round2(sum((item.igv for item in items), ZERO)),
        total=total,
    )


def _parse_payment_date(body: Mapping[str, Any]):
    raw = body.get("paymentDate")
    payment_date = parse_datetime_input(raw)
    if raw not in (None, "") and payment_date is None:
        raise ValidationError("Invalid paymentDate")
    return payment_date


def parse_payment_payload(body: Optional[Mapping[str, Any]]) -> PaymentDraft:
    """Validar el payload de registro de pago."""
    body = body or {}
    business_id = require_business_id(body.get("businessId"))

    amount = parse_decimal(body.get("amount"))
    if amount is None or amount <= 0 or amount > MAX_AMOUNT:
        raise ValidationError("Invalid amount")
    amount = round2(amount)
    if amount <= 0:
        # menos de medio céntimo
        raise ValidationError("Invalid amount")

    return PaymentDraft(
        business_id=business_id,
        amount=amount,
        payment_date=_parse_payment_date(body),
        note=_text(body.get("note")),
    )


def parse_mark_paid_payload(body: Optional[Mapping[str, Any]]) -> MarkPaidDraft:
    """Validar el payload de pago total."""
    body = body or {}
    business_id = require_business_id(body.get("businessId"))
    return MarkPaidDraft(
        business_id=business_id,
        payment_date=_parse_payment_date(body),
        note=_text(body.get("note")) or MARK_PAID_DEFAULT_NOTE,
    )


def parse_invoice_filters(query: Mapping[str, Any]) -> InvoiceFilters:
    """Validar los filtros del listado; limit se acota a [1, 300]."""
    business_id = require_business_id(query.get("businessId"))

    document_type = _text(query.get("documentType")).upper()
    if document_type and document_type not in DocumentType.__members__:
        raise ValidationError("Invalid documentType")

    payment_status = _text(query.get("paymentStatus")).upper()
    if payment_status and payment_status not in PaymentStatus.__members__:
        raise ValidationError("Invalid paymentStatus")

    requested = parse_decimal(query.get("limit") or DEFAULT_LIST_LIMIT)
    if requested is None:
        limit = DEFAULT_LIST_LIMIT
    else:
        limit = int(min(Decimal(MAX_LIST_LIMIT), max(Decimal(1), requested)))

    return InvoiceFilters(
        business_id=business_id,
        document_type=DocumentType(document_type) if document_type else None,
        payment_status=PaymentStatus(payment_status) if payment_status else None,
        limit=limit,
    )


def require_invoice_id(value: Any) -> str:
    invoice_id = _text(value)
    if not invoice_id:
        raise ValidationError("Missing invoiceId")
    return invoice_id
