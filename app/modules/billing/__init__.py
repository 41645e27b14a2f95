"""
Módulo de Facturación (Billing) - ContApp Perú

Libro de facturas y boletas de cada negocio:

- Emisión de FACTURA (clientes con RUC) y BOLETA con items inmutables
- ID determinístico por tipo|serie|numero (no se repiten documentos)
- Registro de pagos parciales y pago total con control de saldo
- Estado de cobranza: PENDIENTE, PARCIAL, PAGADO, VENCIDO (derivado al leer)
- Emisión de CPE delegada al worker SUNAT (BETA y PROD)

Tablas principales:
- invoices: Facturas con totales, saldo y estado CPE
- invoice_payments: Pagos (sólo se agregan)
- comprobantes: Proyección para los dashboards de comprobantes
"""

from .models import (
    Invoice, InvoicePayment, Comprobante,
    DocumentType, CustomerDocumentType, PaymentStatus, CpeEnvironment,
)
from .schemas import InvoiceOut, PaymentOut, PaymentResult
from .service import InvoiceService

__all__ = [
    # Models
    "Invoice",
    "InvoicePayment",
    "Comprobante",
    "DocumentType",
    "CustomerDocumentType",
    "PaymentStatus",
    "CpeEnvironment",

    # Schemas
    "InvoiceOut",
    "PaymentOut",
    "PaymentResult",

    # Services
    "InvoiceService",
]
