from app.database.database import Base
from sqlalchemy import Column, String, DateTime, Numeric, Date, Text, JSON, ForeignKeyConstraint, Index
from uuid import uuid4
from app.common.mixins import OwnerMixin, TimestampMixin, utc_now
import enum


class DocumentType(str, enum.Enum):
    FACTURA = "FACTURA"
    BOLETA = "BOLETA"


class CustomerDocumentType(str, enum.Enum):
    RUC = "RUC"
    DNI = "DNI"
    OTRO = "OTRO"


class PaymentStatus(str, enum.Enum):
    PENDIENTE = "PENDIENTE"    # Sin pagos
    PARCIAL = "PARCIAL"        # Con pagos parciales
    PAGADO = "PAGADO"          # Saldo cero
    VENCIDO = "VENCIDO"        # Pendiente y fuera de plazo (derivado al leer)


class InvoiceStatus(str, enum.Enum):
    EMITIDO = "EMITIDO"


class CpeEnvironment(str, enum.Enum):
    """Ambiente destino de la emisión de CPE."""
    BETA = "BETA"
    PROD = "PROD"

    @property
    def record_prefix(self) -> str:
        """Prefijo de las columnas CPE que el worker actualiza en este ambiente."""
        return "cpe_beta_" if self is CpeEnvironment.BETA else "cpe_"


CPE_FIELDS = (
    "status", "provider", "ticket", "code", "description", "error",
    "last_attempt_at", "accepted_at",
)
CPE_TIMESTAMP_FIELDS = ("last_attempt_at", "accepted_at")

DEFAULT_CURRENCY = "PEN"
INVOICE_SOURCE = "BACKEND"
COMPROBANTE_SOURCE = "FACTURACION_BACKEND"


def new_record_id() -> str:
    return uuid4().hex


class Invoice(Base, TimestampMixin):
    __tablename__ = "invoices"

    # La clave es (usuario, negocio, hash de tipo|serie|numero)
    owner_uid = Column(String(128), primary_key=True)
    business_id = Column(String(128), primary_key=True)
    id = Column(String(40), primary_key=True)
    created_by = Column(String(128), nullable=False)

    # Documento
    document_type = Column(String(10), nullable=False)
    serie = Column(String(10), nullable=False)
    numero = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False, default=InvoiceStatus.EMITIDO.value)
    source = Column(String(30), nullable=False, default=INVOICE_SOURCE)

    # Cliente
    customer_name = Column(String(200), nullable=False)
    customer_document_type = Column(String(10), nullable=False)
    customer_document_number = Column(String(20), nullable=False)

    # Fechas
    issue_date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=True)

    # Contenido (items inmutables, en orden)
    currency = Column(String(3), nullable=False, default=DEFAULT_CURRENCY)
    items = Column(JSON, nullable=False, default=list)

    # Totales
    subtotal = Column(Numeric(15, 2), nullable=False, default=0)
    igv = Column(Numeric(15, 2), nullable=False, default=0)
    total = Column(Numeric(15, 2), nullable=False, default=0)

    # Cobranza (sólo la escribe InvoiceService)
    paid_amount = Column(Numeric(15, 2), nullable=False, default=0)
    balance = Column(Numeric(15, 2), nullable=False, default=0)
    payment_status = Column(String(10), nullable=False, default=PaymentStatus.PENDIENTE.value)

    # CPE producción (lo actualiza el worker SUNAT)
    cpe_status = Column(String(30), nullable=True)
    cpe_provider = Column(String(50), nullable=True)
    cpe_ticket = Column(String(100), nullable=True)
    cpe_code = Column(String(20), nullable=True)
    cpe_description = Column(Text, nullable=True)
    cpe_error = Column(Text, nullable=True)
    cpe_last_attempt_at = Column(DateTime(timezone=True), nullable=True)
    cpe_accepted_at = Column(DateTime(timezone=True), nullable=True)

    # CPE beta
    cpe_beta_status = Column(String(30), nullable=True)
    cpe_beta_provider = Column(String(50), nullable=True)
    cpe_beta_ticket = Column(String(100), nullable=True)
    cpe_beta_code = Column(String(20), nullable=True)
    cpe_beta_description = Column(Text, nullable=True)
    cpe_beta_error = Column(Text, nullable=True)
    cpe_beta_last_attempt_at = Column(DateTime(timezone=True), nullable=True)
    cpe_beta_accepted_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        ForeignKeyConstraint(
            ["owner_uid", "business_id"],
            ["businesses.owner_uid", "businesses.id"],
        ),
        Index("ix_invoices_business_issue_date", "owner_uid", "business_id", "issue_date"),
    )


class InvoicePayment(Base, OwnerMixin):
    """Pago registrado contra una factura. Solo se agregan, nunca se editan."""
    __tablename__ = "invoice_payments"

    id = Column(String(32), primary_key=True, default=new_record_id)
    business_id = Column(String(128), nullable=False)
    invoice_id = Column(String(40), nullable=False)

    amount = Column(Numeric(15, 2), nullable=False)
    payment_date = Column(DateTime(timezone=True), nullable=False, default=utc_now)
    note = Column(Text, nullable=False, default="")
    created_by = Column(String(128), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utc_now)

    __table_args__ = (
        ForeignKeyConstraint(
            ["owner_uid", "business_id", "invoice_id"],
            ["invoices.owner_uid", "invoices.business_id", "invoices.id"],
        ),
        Index("ix_invoice_payments_invoice_date", "owner_uid", "business_id", "invoice_id", "payment_date"),
    )


class Comprobante(Base, OwnerMixin, TimestampMixin):
    """
    Proyección de la factura para los dashboards antiguos basados en comprobantes.
    Se escribe una sola vez junto con la factura.
    """
    __tablename__ = "comprobantes"

    id = Column(String(32), primary_key=True, default=new_record_id)
    business_id = Column(String(128), nullable=False)
    invoice_id = Column(String(40), nullable=False)

    type = Column(String(20), nullable=False, default="VENTA")
    serie = Column(String(10), nullable=False)
    numero = Column(String(20), nullable=False)
    fecha = Column(Date, nullable=False)
    cliente = Column(String(200), nullable=False)
    monto = Column(Numeric(15, 2), nullable=False)
    igv = Column(Numeric(15, 2), nullable=False)
    source = Column(String(30), nullable=False, default=COMPROBANTE_SOURCE)

    __table_args__ = (
        ForeignKeyConstraint(
            ["owner_uid", "business_id"],
            ["businesses.owner_uid", "businesses.id"],
        ),
        Index("ix_comprobantes_business", "owner_uid", "business_id"),
    )
