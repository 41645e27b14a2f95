"""
Router para el módulo de Facturación

Endpoints REST del libro de facturas:
- Emisión de facturas y boletas (con su comprobante espejo)
- Listado con filtros y consulta individual
- Registro de pagos parciales y pago total
- Emisión de CPE a través del worker SUNAT (BETA y PROD)

Todos los endpoints requieren autenticación y están scoped por usuario y businessId.
"""
from functools import lru_cache
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, Path, Request, status
from sqlalchemy.orm import Session

from app.core.config import Settings, get_settings
from app.database.database import get_db
from app.modules.auth.dependencies import get_auth_context
from app.modules.auth.schemas import AuthContext
from app.modules.billing.cpe import CpeRelay
from app.modules.billing.models import CpeEnvironment
from app.modules.billing.schemas import (
    CpeEmitResponse, InvoiceListResponse, InvoiceResponse, PaymentListResponse, PaymentResult,
)
from app.modules.billing.service import InvoiceService
from app.modules.billing.validator import (
    parse_invoice_filters, parse_invoice_payload, parse_mark_paid_payload, parse_payment_payload,
    require_business_id, require_invoice_id,
)

router = APIRouter(
    prefix="/billing/invoices",
    tags=["Billing"],
    responses={404: {"description": "Not found"}}
)


def get_invoice_service(
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings)
) -> InvoiceService:
    return InvoiceService(db, settings)


@lru_cache
def _relay_for(settings: Settings) -> CpeRelay:
    return CpeRelay(settings)


def get_cpe_relay(settings: Settings = Depends(get_settings)) -> CpeRelay:
    return _relay_for(settings)


# ===== FACTURAS =====

@router.post("", response_model=InvoiceResponse, response_model_by_alias=True, status_code=status.HTTP_201_CREATED)
def create_invoice(
    body: Dict[str, Any] = Body(default={}),
    service: InvoiceService = Depends(get_invoice_service),
    auth: AuthContext = Depends(get_auth_context)
):
    """
    Emitir una factura o boleta.

    - **documentType**: FACTURA (cliente con RUC) o BOLETA
    - **serie** / **numero**: identifican el documento; repetirlos devuelve 409
    - **items**: cantidad > 0, precio >= 0, taxRate como fracción o porcentaje
    """
    draft = parse_invoice_payload(body)
    invoice = service.create_invoice(draft, auth.uid)
    return InvoiceResponse(invoice=invoice)


@router.get("", response_model=InvoiceListResponse, response_model_by_alias=True)
def list_invoices(
    request: Request,
    service: InvoiceService = Depends(get_invoice_service),
    auth: AuthContext = Depends(get_auth_context)
):
    """
    Listar facturas del negocio.

    Query: businessId (requerido), documentType, paymentStatus, limit (1-300, por defecto 100)
    """
    filters = parse_invoice_filters(request.query_params)
    return InvoiceListResponse(invoices=service.list_invoices(auth.uid, filters))


@router.get("/{invoice_id}", response_model=InvoiceResponse, response_model_by_alias=True)
def get_invoice(
    request: Request,
    invoice_id: str = Path(..., description="ID de la factura"),
    service: InvoiceService = Depends(get_invoice_service),
    auth: AuthContext = Depends(get_auth_context)
):
    """Obtener una factura con su estado de cobranza actual"""
    invoice_id = require_invoice_id(invoice_id)
    business_id = require_business_id(request.query_params.get("businessId"))
    return InvoiceResponse(invoice=service.get_invoice(auth.uid, business_id, invoice_id))


# ===== PAGOS =====

@router.get("/{invoice_id}/payments", response_model=PaymentListResponse, response_model_by_alias=True)
def list_invoice_payments(
    request: Request,
    invoice_id: str = Path(..., description="ID de la factura"),
    service: InvoiceService = Depends(get_invoice_service),
    auth: AuthContext = Depends(get_auth_context)
):
    """Pagos registrados, del más reciente al más antiguo (máximo 500)"""
    invoice_id = require_invoice_id(invoice_id)
    business_id = require_business_id(request.query_params.get("businessId"))
    return PaymentListResponse(payments=service.list_payments(auth.uid, business_id, invoice_id))


@router.post("/{invoice_id}/payments", response_model=PaymentResult, response_model_by_alias=True)
def register_payment(
    invoice_id: str = Path(..., description="ID de la factura"),
    body: Dict[str, Any] = Body(default={}),
    service: InvoiceService = Depends(get_invoice_service),
    auth: AuthContext = Depends(get_auth_context)
):
    """
    Registrar un pago.

    - **amount**: mayor a 0 y no mayor al saldo pendiente
    - **paymentDate**: opcional, por defecto ahora
    """
    invoice_id = require_invoice_id(invoice_id)
    draft = parse_payment_payload(body)
    return service.apply_payment(auth.uid, invoice_id, draft)


@router.post("/{invoice_id}/mark-paid", response_model=PaymentResult, response_model_by_alias=True)
def mark_invoice_paid(
    invoice_id: str = Path(..., description="ID de la factura"),
    body: Dict[str, Any] = Body(default={}),
    service: InvoiceService = Depends(get_invoice_service),
    auth: AuthContext = Depends(get_auth_context)
):
    """Saldar la factura con un pago por el saldo pendiente"""
    invoice_id = require_invoice_id(invoice_id)
    draft = parse_mark_paid_payload(body)
    return service.mark_fully_paid(auth.uid, invoice_id, draft)


# ===== CPE =====

def _emit(env: CpeEnvironment, invoice_id: str, body: Dict[str, Any], service, relay, auth) -> CpeEmitResponse:
    invoice_id = require_invoice_id(invoice_id)
    business_id = require_business_id((body or {}).get("businessId"))
    return relay.emit(service, env, auth.uid, business_id, invoice_id, auth.authorization)


@router.post("/{invoice_id}/emit-cpe", response_model=CpeEmitResponse, response_model_by_alias=True)
def emit_cpe_beta(
    invoice_id: str = Path(..., description="ID de la factura"),
    body: Dict[str, Any] = Body(default={}),
    service: InvoiceService = Depends(get_invoice_service),
    relay: CpeRelay = Depends(get_cpe_relay),
    auth: AuthContext = Depends(get_auth_context)
):
    """Emitir el CPE en el ambiente BETA de SUNAT"""
    return _emit(CpeEnvironment.BETA, invoice_id, body, service, relay, auth)


@router.post("/{invoice_id}/emit-cpe-prod", response_model=CpeEmitResponse, response_model_by_alias=True)
def emit_cpe_prod(
    invoice_id: str = Path(..., description="ID de la factura"),
    body: Dict[str, Any] = Body(default={}),
    service: InvoiceService = Depends(get_invoice_service),
    relay: CpeRelay = Depends(get_cpe_relay),
    auth: AuthContext = Depends(get_auth_context)
):
    """Emitir el CPE en producción"""
    return _emit(CpeEnvironment.PROD, invoice_id, body, service, relay, auth)
