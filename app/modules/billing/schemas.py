from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from decimal import Decimal
from typing import Optional, List, Dict, Any
from datetime import date, datetime

from app.modules.billing.models import DocumentType, CustomerDocumentType, PaymentStatus
from app.modules.billing.money import to_money


class CamelModel(BaseModel):
    """Modelos de respuesta: claves camelCase en el JSON."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ===== Borradores validados (entrada ya normalizada) =====

class InvoiceItemDraft(BaseModel):
    description: str
    quantity: Decimal
    unit_price: Decimal
    tax_rate: Decimal  # fracción 0..1
    subtotal: Decimal
    igv: Decimal
    total: Decimal

    def as_record(self) -> Dict[str, Any]:
        """Item tal como se guarda en la factura."""
        return {
            "description": self.description,
            "quantity": to_money(self.quantity),
            "unitPrice": to_money(self.unit_price),
            "taxRate": float(self.tax_rate.quantize(Decimal("0.0001"))),
            "subtotal": to_money(self.subtotal),
            "igv": to_money(self.igv),
            "total": to_money(self.total),
        }


class InvoiceDraft(BaseModel):
    business_id: str
    document_type: DocumentType
    serie: str
    numero: str
    customer_name: str
    customer_document_type: CustomerDocumentType
    customer_document_number: str
    issue_date: date
    due_date: Optional[date] = None
    items: List[InvoiceItemDraft] = Field(..., min_length=1)
    subtotal: Decimal
    igv: Decimal
    total: Decimal


class PaymentDraft(BaseModel):
    business_id: str
    amount: Decimal
    payment_date: Optional[datetime] = None
    note: str = ""


class MarkPaidDraft(BaseModel):
    business_id: str
    payment_date: Optional[datetime] = None
    note: str


class InvoiceFilters(BaseModel):
    """Filtros del listado de facturas"""
    business_id: str
    document_type: Optional[DocumentType] = None
    payment_status: Optional[PaymentStatus] = None
    limit: int = 100


# ===== Respuestas =====

class InvoiceItemOut(CamelModel):
    description: str = ""
    quantity: float = 0
    unit_price: float = 0
    tax_rate: float = 0
    subtotal: float = 0
    igv: float = 0
    total: float = 0


class InvoiceOut(CamelModel):
    id: str
    document_type: str
    serie: str
    numero: str
    customer_name: str
    customer_document_type: str
    customer_document_number: str
    issue_date: Optional[str]
    due_date: Optional[str]
    currency: str
    subtotal: float
    igv: float
    total: float
    paid_amount: float
    balance: float
    payment_status: PaymentStatus
    status: str
    source: str
    items: List[InvoiceItemOut] = []

    cpe_status: Optional[str] = None
    cpe_provider: Optional[str] = None
    cpe_ticket: Optional[str] = None
    cpe_code: Optional[str] = None
    cpe_description: Optional[str] = None
    cpe_error: Optional[str] = None
    cpe_last_attempt_at: Optional[str] = None
    cpe_accepted_at: Optional[str] = None

    cpe_beta_status: Optional[str] = None
    cpe_beta_provider: Optional[str] = None
    cpe_beta_ticket: Optional[str] = None
    cpe_beta_code: Optional[str] = None
    cpe_beta_description: Optional[str] = None
    cpe_beta_error: Optional[str] = None
    cpe_beta_last_attempt_at: Optional[str] = None
    cpe_beta_accepted_at: Optional[str] = None

    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class PaymentOut(CamelModel):
    id: str
    amount: float
    payment_date: Optional[str]
    note: str
    created_at: Optional[str]
    created_by: str


class InvoiceResponse(CamelModel):
    ok: bool = True
    invoice: InvoiceOut


class InvoiceListResponse(CamelModel):
    ok: bool = True
    invoices: List[InvoiceOut]


class PaymentListResponse(CamelModel):
    ok: bool = True
    payments: List[PaymentOut]


class PaymentResult(CamelModel):
    """Resultado de un pago o de marcar como pagada"""
    ok: bool = True
    payment_id: Optional[str]
    paid_amount: float
    balance: float
    payment_status: PaymentStatus


class CpeEmitResponse(CamelModel):
    ok: bool = True
    result: Optional[Any] = None
    invoice: InvoiceOut
