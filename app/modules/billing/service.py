import logging
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.common.exceptions import BillingError, ConflictError, InternalError, NotFoundError, ValidationError
from app.common.mixins import utc_now
from app.core.config import Settings, settings as default_settings
from app.modules.billing.identity import build_invoice_id
from app.modules.billing.models import (
    Invoice, InvoicePayment, Comprobante, CpeEnvironment, CPE_FIELDS, CPE_TIMESTAMP_FIELDS,
    PaymentStatus, InvoiceStatus, DEFAULT_CURRENCY, INVOICE_SOURCE, COMPROBANTE_SOURCE, new_record_id,
)
from app.modules.billing.money import DECIMAL_EPSILON, ZERO, round2, to_iso_or_null, to_money
from app.modules.billing.schemas import (
    InvoiceDraft, InvoiceFilters, InvoiceOut, MarkPaidDraft, PaymentDraft, PaymentOut, PaymentResult,
)
from app.modules.billing.status import business_today, normalize_payment_status, status_after_payment
from app.modules.businesses.models import Business

logger = logging.getLogger(__name__)

MAX_PAYMENTS_LISTED = 500
# El estado VENCIDO se deriva al leer; se traen más filas antes de filtrar
LIST_OVERFETCH_FACTOR = 3


class InvoiceService:
    """
    Libro de facturas y pagos de un negocio.

    Es el único que escribe paid_amount, balance y payment_status. Cada
    operación que cambia el saldo corre en una transacción que bloquea la
    fila de la factura (SELECT ... FOR UPDATE) y lee el saldo justo antes de
    escribir; dos pagos concurrentes se serializan y el segundo ve el saldo
    que dejó el primero.
    """

    def __init__(self, db: Session, settings: Settings = default_settings):
        self.db = db
        self.timezone = settings.BUSINESS_TIMEZONE

    # ===== Consultas base =====

    def _get_business(self, uid: str, business_id: str) -> Optional[Business]:
        return self.db.query(Business).filter(
            Business.owner_uid == uid,
            Business.id == business_id
        ).first()

    def _invoice_query(self, uid: str, business_id: str, invoice_id: str):
        return self.db.query(Invoice).filter(
            Invoice.owner_uid == uid,
            Invoice.business_id == business_id,
            Invoice.id == invoice_id
        )

    def _require_invoice(self, uid: str, business_id: str, invoice_id: str, lock: bool = False) -> Invoice:
        query = self._invoice_query(uid, business_id, invoice_id)
        if lock:
            # Bloquea la fila y descarta lo que la sesión tuviera en memoria
            query = query.with_for_update().populate_existing()
        invoice = query.first()
        if not invoice:
            raise NotFoundError("Invoice not found")
        return invoice

    @staticmethod
    def _current_amounts(invoice: Invoice):
        total = round2(invoice.total)
        paid_amount = round2(invoice.paid_amount)
        balance = round2(invoice.balance if invoice.balance is not None else total - paid_amount)
        return total, paid_amount, balance

    # ===== Proyecciones =====

    def to_out(self, invoice: Invoice) -> InvoiceOut:
        """Proyección de lectura; el estado de cobranza se recalcula con la fecha de hoy."""
        total, paid_amount, balance = self._current_amounts(invoice)
        payment_status = normalize_payment_status(
            balance, invoice.payment_status, invoice.due_date, business_today(self.timezone)
        )

        cpe = {}
        for env in CpeEnvironment:
            for field in CPE_FIELDS:
                column = f"{env.record_prefix}{field}"
                value = getattr(invoice, column)
                if field in CPE_TIMESTAMP_FIELDS:
                    value = to_iso_or_null(value)
                elif value is not None:
                    value = str(value)
                cpe[column] = value

        return InvoiceOut(
            id=invoice.id,
            document_type=invoice.document_type,
            serie=invoice.serie or "",
            numero=invoice.numero or "",
            customer_name=invoice.customer_name or "",
            customer_document_type=invoice.customer_document_type or "OTRO",
            customer_document_number=invoice.customer_document_number or "",
            issue_date=to_iso_or_null(invoice.issue_date),
            due_date=to_iso_or_null(invoice.due_date),
            currency=invoice.currency or DEFAULT_CURRENCY,
            subtotal=to_money(invoice.subtotal),
            igv=to_money(invoice.igv),
            total=to_money(total),
            paid_amount=to_money(paid_amount),
            balance=to_money(balance),
            payment_status=payment_status,
            status=invoice.status or InvoiceStatus.EMITIDO.value,
            source=invoice.source or INVOICE_SOURCE,
            items=list(invoice.items or []),
            created_at=to_iso_or_null(invoice.created_at),
            updated_at=to_iso_or_null(invoice.updated_at),
            **cpe
        )

    @staticmethod
    def payment_to_out(payment: InvoicePayment) -> PaymentOut:
        return PaymentOut(
            id=payment.id,
            amount=to_money(payment.amount),
            payment_date=to_iso_or_null(payment.payment_date),
            note=payment.note or "",
            created_at=to_iso_or_null(payment.created_at),
            created_by=payment.created_by or "",
        )

    # ===== Lecturas =====

    def get_invoice(self, uid: str, business_id: str, invoice_id: str) -> InvoiceOut:
        """Obtener la proyección actual de una factura"""
        invoice = self._require_invoice(uid, business_id, invoice_id)
        # Los campos CPE pueden cambiar fuera de esta sesión
        self.db.refresh(invoice)
        return self.to_out(invoice)

    def list_invoices(self, uid: str, filters: InvoiceFilters) -> List[InvoiceOut]:
        """Listar facturas del negocio, más recientes primero"""
        if not self._get_business(uid, filters.business_id):
            raise NotFoundError("Business not found")

        query = self.db.query(Invoice).filter(
            Invoice.owner_uid == uid,
            Invoice.business_id == filters.business_id
        )
        if filters.document_type:
            query = query.filter(Invoice.document_type == filters.document_type.value)

        rows = query.order_by(
            Invoice.issue_date.desc(), Invoice.created_at.desc()
        ).limit(filters.limit * LIST_OVERFETCH_FACTOR).all()

        invoices = [self.to_out(row) for row in rows]
        if filters.payment_status:
            invoices = [inv for inv in invoices if inv.payment_status == filters.payment_status]
        return invoices[:filters.limit]

    def list_payments(self, uid: str, business_id: str, invoice_id: str) -> List[PaymentOut]:
        """Pagos de la factura, del más reciente al más antiguo"""
        self._require_invoice(uid, business_id, invoice_id)
        payments = self.db.query(InvoicePayment).filter(
            InvoicePayment.owner_uid == uid,
            InvoicePayment.business_id == business_id,
            InvoicePayment.invoice_id == invoice_id
        ).order_by(
            InvoicePayment.payment_date.desc()
        ).limit(MAX_PAYMENTS_LISTED).all()
        return [self.payment_to_out(payment) for payment in payments]

    # ===== Escrituras =====

    def create_invoice(self, draft: InvoiceDraft, uid: str) -> InvoiceOut:
        """
        Crear factura y su comprobante espejo en una sola transacción.

        Raises:
            NotFoundError: el negocio no existe para este usuario
            ConflictError: ya existe una factura con el mismo tipo, serie y número
        """
        invoice_id = build_invoice_id(draft.document_type.value, draft.serie, draft.numero)
        try:
            if not self._get_business(uid, draft.business_id):
                raise NotFoundError("Business not found")

            if self._invoice_query(uid, draft.business_id, invoice_id).first() is not None:
                raise ConflictError("Invoice already exists")

            now = utc_now()
            invoice = Invoice(
                owner_uid=uid,
                business_id=draft.business_id,
                id=invoice_id,
                created_by=uid,
                document_type=draft.document_type.value,
                serie=draft.serie,
                numero=draft.numero,
                status=InvoiceStatus.EMITIDO.value,
                source=INVOICE_SOURCE,
                customer_name=draft.customer_name,
                customer_document_type=draft.customer_document_type.value,
                customer_document_number=draft.customer_document_number,
                issue_date=draft.issue_date,
                due_date=draft.due_date,
                currency=DEFAULT_CURRENCY,
                items=[item.as_record() for item in draft.items],
                subtotal=draft.subtotal,
                igv=draft.igv,
                total=draft.total,
                paid_amount=ZERO,
                balance=draft.total,
                payment_status=PaymentStatus.PENDIENTE.value,
                created_at=now,
                updated_at=now,
            )
            comprobante = Comprobante(
                id=new_record_id(),
                owner_uid=uid,
                business_id=draft.business_id,
                invoice_id=invoice_id,
                type="VENTA",
                serie=draft.serie,
                numero=draft.numero,
                fecha=draft.issue_date,
                cliente=draft.customer_name,
                monto=draft.total,
                igv=draft.igv,
                source=COMPROBANTE_SOURCE,
                created_at=now,
                updated_at=now,
            )
            self.db.add_all([invoice, comprobante])
            self.db.flush()
            self.db.commit()

        except BillingError:
            self.db.rollback()
            raise
        except IntegrityError:
            # Otra transacción creó la misma clave entre la lectura y el insert
            self.db.rollback()
            logger.info(f"Duplicate invoice {invoice_id} in business {draft.business_id}")
            raise ConflictError("Invoice already exists")
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error creating invoice {invoice_id}: {e}", exc_info=True)
            raise InternalError("Error creating invoice")

        logger.info(
            f"Invoice {draft.document_type.value} {draft.serie}-{draft.numero} ({invoice_id}) "
            f"created in business {draft.business_id}, total {draft.total}"
        )
        return self.to_out(invoice)

    def apply_payment(self, uid: str, invoice_id: str, draft: PaymentDraft) -> PaymentResult:
        """
        Registrar un pago parcial o total.

        Raises:
            NotFoundError: la factura no existe
            ValidationError: el monto supera el saldo pendiente
        """
        amount = round2(draft.amount)
        try:
            invoice = self._require_invoice(uid, draft.business_id, invoice_id, lock=True)
            total, paid_amount, balance = self._current_amounts(invoice)

            if amount > balance + DECIMAL_EPSILON:
                logger.info(f"Payment of {amount} rejected for invoice {invoice_id}: balance is {balance}")
                raise ValidationError("Amount exceeds balance")

            next_paid_amount = round2(paid_amount + amount)
            next_balance = round2(max(ZERO, total - next_paid_amount))
            next_status = status_after_payment(next_balance)

            payment = InvoicePayment(
                id=new_record_id(),
                owner_uid=uid,
                business_id=draft.business_id,
                invoice_id=invoice_id,
                amount=amount,
                payment_date=draft.payment_date or utc_now(),
                note=draft.note,
                created_by=uid,
                created_at=utc_now(),
            )
            self.db.add(payment)

            invoice.paid_amount = next_paid_amount
            invoice.balance = next_balance
            invoice.payment_status = next_status.value
            invoice.updated_at = utc_now()

            self.db.commit()

        except BillingError:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error applying payment to invoice {invoice_id}: {e}", exc_info=True)
            raise InternalError("Error applying payment")

        logger.info(
            f"Payment {payment.id} of {amount} applied to invoice {invoice_id}: "
            f"paid {next_paid_amount}, balance {next_balance}, {next_status.value}"
        )
        return PaymentResult(
            payment_id=payment.id,
            paid_amount=to_money(next_paid_amount),
            balance=to_money(next_balance),
            payment_status=next_status,
        )

    def mark_fully_paid(self, uid: str, invoice_id: str, draft: MarkPaidDraft) -> PaymentResult:
        """
        Saldar la factura con un único pago por todo el saldo pendiente.

        Si ya no hay saldo, sólo normaliza los campos (no crea pago).
        """
        payment_id: Optional[str] = None
        try:
            invoice = self._require_invoice(uid, draft.business_id, invoice_id, lock=True)
            total, _, balance = self._current_amounts(invoice)

            if balance > DECIMAL_EPSILON:
                payment_id = new_record_id()
                self.db.add(InvoicePayment(
                    id=payment_id,
                    owner_uid=uid,
                    business_id=draft.business_id,
                    invoice_id=invoice_id,
                    amount=balance,
                    payment_date=draft.payment_date or utc_now(),
                    note=draft.note,
                    created_by=uid,
                    created_at=utc_now(),
                ))

            changed = (
                round2(invoice.paid_amount) != total
                or round2(invoice.balance) != ZERO
                or invoice.payment_status != PaymentStatus.PAGADO.value
            )
            if changed:
                invoice.paid_amount = total
                invoice.balance = ZERO
                invoice.payment_status = PaymentStatus.PAGADO.value
                invoice.updated_at = utc_now()

            self.db.commit()

        except BillingError:
            self.db.rollback()
            raise
        except Exception as e:
            self.db.rollback()
            logger.error(f"Error settling invoice {invoice_id}: {e}", exc_info=True)
            raise InternalError("Error settling invoice")

        if payment_id:
            logger.info(f"Invoice {invoice_id} settled with payment {payment_id} of {balance}")
        else:
            logger.info(f"Invoice {invoice_id} already settled; fields normalized")
        return PaymentResult(
            payment_id=payment_id,
            paid_amount=to_money(total),
            balance=0.0,
            payment_status=PaymentStatus.PAGADO,
        )
