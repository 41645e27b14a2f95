"""
Tests para el módulo de Facturación

Cubren:
- Helpers de montos y tasas
- Validación de payloads (mensajes exactos)
- ID determinístico y estado de cobranza
- Libro de facturas: creación, pagos, pago total
- Relay CPE contra un worker simulado (httpx.MockTransport)
- Endpoints HTTP con autenticación

Todos los tests validan que los datos estén scoped por usuario y businessId.
"""
import inspect
import json
from datetime import date, datetime, timezone
from decimal import Decimal

import httpx
import pytest

from app.common.exceptions import ConflictError, NotFoundError, ValidationError
from app.core.config import Settings
from app.database.database import SessionLocal, engine
from app.main import app
from app.modules.billing.cpe import CpeRelay
from app.modules.billing.identity import build_invoice_id
from app.modules.billing.models import Comprobante, Invoice, InvoicePayment, PaymentStatus
from app.modules.billing.money import MAX_AMOUNT, parse_decimal, parse_tax_rate, round2, to_iso_or_null
from app.modules.billing import router as billing_router
from app.modules.billing.router import get_cpe_relay
from app.modules.billing.service import InvoiceService
from app.modules.billing.status import normalize_payment_status, status_after_payment
from app.modules.billing.validator import (
    parse_invoice_filters, parse_invoice_payload, parse_mark_paid_payload, parse_payment_payload,
)
from app.modules.businesses.models import Business


# ===== FIXTURES =====

@pytest.fixture
def invoice_payload():
    """Factura con dos items: 21.00 + 3.78 y 6.30 + 1.13"""
    return {
        "businessId": "biz-1",
        "documentType": "factura",
        "serie": "f001",
        "numero": "00000123",
        "customerName": "Comercial Andina SAC",
        "customerDocumentType": "RUC",
        "customerDocumentNumber": "20601234567",
        "issueDate": "2024-03-01",
        "dueDate": "2024-03-31",
        "items": [
            {"description": "Arroz extra 5kg", "quantity": 2, "unitPrice": 10.5, "taxRate": 18},
            {"description": "Azúcar rubia", "quantity": "1,5", "unitPrice": "4.2", "taxRate": 0.18},
        ],
    }


@pytest.fixture
def hundred_payload():
    """Boleta de 100.00 exactos (sin IGV)"""
    return {
        "businessId": "biz-1",
        "documentType": "BOLETA",
        "serie": "B001",
        "numero": "1",
        "customerName": "Rosa Quispe",
        "customerDocumentType": "DNI",
        "customerDocumentNumber": "45678912",
        "issueDate": "2099-01-10",
        "items": [{"description": "Servicio contable", "quantity": 1, "unitPrice": 100, "taxRate": 0}],
    }


@pytest.fixture
def service(db_session, settings):
    return InvoiceService(db_session, settings)


def mount_worker(settings, handler):
    """Reemplaza el relay CPE por uno con transporte simulado."""
    relay = CpeRelay(settings, client=httpx.Client(transport=httpx.MockTransport(handler)))
    app.dependency_overrides[get_cpe_relay] = lambda: relay
    return relay


# ===== TESTS DE MONTOS =====

class TestMoney:

    def test_round2_is_half_up(self):
        assert round2("2.675") == Decimal("2.68")
        assert round2("1.005") == Decimal("1.01")
        assert round2(None) == Decimal("0.00")

    def test_parse_decimal_accepts_comma(self):
        assert parse_decimal("1,5") == Decimal("1.5")
        assert parse_decimal(" 12.40 ") == Decimal("12.40")
        assert parse_decimal("") == Decimal(0)

    def test_parse_decimal_rejects_non_finite(self):
        assert parse_decimal("abc") is None
        assert parse_decimal("NaN") is None
        assert parse_decimal("Infinity") is None

    def test_parse_tax_rate(self):
        assert parse_tax_rate("18") == Decimal("0.18")
        assert parse_tax_rate(0.18) == Decimal("0.18")
        assert parse_tax_rate(1) == Decimal(1)
        assert parse_tax_rate(0) == Decimal(0)
        assert parse_tax_rate(101) is None
        assert parse_tax_rate(-1) is None

    def test_to_iso_or_null(self):
        assert to_iso_or_null(None) is None
        assert to_iso_or_null(date(2024, 3, 1)) == "2024-03-01"
        moment = datetime(2024, 3, 1, 15, 30, tzinfo=timezone.utc)
        assert to_iso_or_null(moment) == "2024-03-01T15:30:00.000Z"


# ===== TESTS DE VALIDACIÓN =====

class TestInvoiceValidator:

    def test_valid_payload_computes_totals(self, invoice_payload):
        draft = parse_invoice_payload(invoice_payload)

        assert draft.document_type.value == "FACTURA"
        assert draft.serie == "F001"
        assert draft.issue_date == date(2024, 3, 1)
        assert [item.total for item in draft.items] == [Decimal("24.78"), Decimal("7.43")]
        assert draft.subtotal == Decimal("27.30")
        assert draft.igv == Decimal("4.91")
        assert draft.total == Decimal("32.21")

    def test_totals_are_sum_of_rounded_items(self, invoice_payload):
        invoice_payload["items"] = [
            {"description": f"Item {n}", "quantity": "3", "unitPrice": "0.335", "taxRate": "18"}
            for n in range(7)
        ]
        draft = parse_invoice_payload(invoice_payload)

        assert draft.subtotal == sum((item.subtotal for item in draft.items), Decimal(0))
        assert draft.igv == sum((item.igv for item in draft.items), Decimal(0))
        assert draft.total == draft.subtotal + draft.igv

    @pytest.mark.parametrize("changes, message", [
        ({"businessId": "  "}, "Missing businessId"),
        ({"documentType": "NOTA"}, "Invalid documentType"),
        ({"serie": ""}, "Missing serie or numero"),
        ({"customerName": ""}, "Missing customer fields"),
        ({"customerDocumentType": "PASAPORTE"}, "Invalid customerDocumentType"),
        ({"customerDocumentType": "DNI"}, "Factura requires customerDocumentType RUC"),
        ({"issueDate": "not-a-date"}, "Invalid issueDate"),
        ({"dueDate": "mañana"}, "Invalid dueDate"),
        ({"dueDate": "2024-02-28"}, "dueDate cannot be before issueDate"),
        ({"items": []}, "Missing items"),
        ({"items": [{"description": "", "quantity": 1, "unitPrice": 1, "taxRate": 0}]}, "Invalid item fields"),
        ({"items": [{"description": "x", "quantity": 1, "unitPrice": 1, "taxRate": 150}]}, "Invalid item fields"),
        ({"items": [{"description": "x", "quantity": 0, "unitPrice": 1, "taxRate": 0}]}, "Invalid item values"),
        ({"items": [{"description": "x", "quantity": 1, "unitPrice": -1, "taxRate": 0}]}, "Invalid item values"),
        ({"serie": "F0010000001"}, "Invalid serie or numero"),
        ({"numero": "1" * 21}, "Invalid serie or numero"),
        ({"customerName": "A" * 201}, "Invalid customer fields"),
        ({"customerDocumentNumber": "2" * 21}, "Invalid customer fields"),
        ({"items": [{"description": "x", "quantity": "1e27", "unitPrice": 1, "taxRate": 0}]}, "Invalid item values"),
        ({"items": [{"description": "x", "quantity": 1, "unitPrice": "1e30", "taxRate": 0}]}, "Invalid item values"),
        ({"items": [{"description": "x", "quantity": "1e7", "unitPrice": "1e7", "taxRate": 18}]}, "Invalid item values"),
        ({"items": [
            {"description": "x", "quantity": 1, "unitPrice": "6000000000000", "taxRate": 0},
            {"description": "y", "quantity": 1, "unitPrice": "6000000000000", "taxRate": 0},
        ]}, "Invalid item values"),
    ])
    def test_invalid_payloads(self, invoice_payload, changes, message):
        invoice_payload.update(changes)
        with pytest.raises(ValidationError) as exc:
            parse_invoice_payload(invoice_payload)
        assert exc.value.message == message
        assert exc.value.status_code == 400

    def test_values_at_column_limits(self, invoice_payload):
        invoice_payload.update({
            "serie": "F" * 10,
            "numero": "9" * 20,
            "customerName": "A" * 200,
            "customerDocumentNumber": "2" * 20,
            "items": [{"description": "Lote", "quantity": 1, "unitPrice": str(MAX_AMOUNT), "taxRate": 0}],
        })
        draft = parse_invoice_payload(invoice_payload)
        assert draft.total == MAX_AMOUNT

    def test_quantity_two_at_fifty_with_igv(self, invoice_payload):
        invoice_payload["items"] = [{"description": "Caja", "quantity": 2, "unitPrice": 50, "taxRate": 18}]
        draft = parse_invoice_payload(invoice_payload)

        assert draft.subtotal == Decimal("100.00")
        assert draft.igv == Decimal("18.00")
        assert draft.total == Decimal("118.00")

    def test_boleta_accepts_dni_and_no_due_date(self, hundred_payload):
        draft = parse_invoice_payload(hundred_payload)
        assert draft.customer_document_type.value == "DNI"
        assert draft.due_date is None
        assert draft.total == Decimal("100.00")

    def test_payment_payload(self):
        draft = parse_payment_payload({"businessId": "biz-1", "amount": "12,345", "note": " Yape "})
        assert draft.amount == Decimal("12.35")
        assert draft.note == "Yape"
        assert draft.payment_date is None

    @pytest.mark.parametrize("amount", ["abc", "0", "-5", "0.004", None, "1e30", "10000000000000"])
    def test_invalid_payment_amount(self, amount):
        with pytest.raises(ValidationError) as exc:
            parse_payment_payload({"businessId": "biz-1", "amount": amount})
        assert exc.value.message == "Invalid amount"

    def test_invalid_payment_date(self):
        with pytest.raises(ValidationError) as exc:
            parse_payment_payload({"businessId": "biz-1", "amount": 5, "paymentDate": "ayer"})
        assert exc.value.message == "Invalid paymentDate"

    def test_mark_paid_default_note(self):
        assert parse_mark_paid_payload({"businessId": "biz-1"}).note == "Pago total"
        assert parse_mark_paid_payload({"businessId": "biz-1", "note": "Transferencia"}).note == "Transferencia"

    def test_filters_limit_is_clamped(self):
        assert parse_invoice_filters({"businessId": "biz-1"}).limit == 100
        assert parse_invoice_filters({"businessId": "biz-1", "limit": "1000"}).limit == 300
        assert parse_invoice_filters({"businessId": "biz-1", "limit": "0"}).limit == 1
        assert parse_invoice_filters({"businessId": "biz-1", "limit": "abc"}).limit == 100

    def test_filters_reject_unknown_values(self):
        with pytest.raises(ValidationError) as exc:
            parse_invoice_filters({"businessId": "biz-1", "paymentStatus": "ANULADO"})
        assert exc.value.message == "Invalid paymentStatus"
        with pytest.raises(ValidationError):
            parse_invoice_filters({"businessId": "biz-1", "documentType": "NOTA"})


# ===== TESTS DE ID Y ESTADO =====

class TestInvoiceIdentity:

    def test_known_digest(self):
        assert build_invoice_id("FACTURA", "F001", "00000123") == "030fe8822ca2c92f629a50abc27a060f8d972297"
        assert build_invoice_id("BOLETA", "B001", "1") == "c138f49dadeb22e6d9b46554bf2818d2706e17c6"

    def test_depends_on_every_part(self):
        base = build_invoice_id("FACTURA", "F001", "1")
        assert base != build_invoice_id("BOLETA", "F001", "1")
        assert base != build_invoice_id("FACTURA", "F002", "1")
        assert base != build_invoice_id("FACTURA", "F001", "2")


class TestPaymentStatus:
    today = date(2024, 6, 15)

    def test_zero_balance_is_paid(self):
        assert normalize_payment_status(Decimal("0"), "PENDIENTE", None, self.today) == PaymentStatus.PAGADO
        assert normalize_payment_status(Decimal("0.0000005"), "PARCIAL", None, self.today) == PaymentStatus.PAGADO

    def test_partial_is_kept_even_when_overdue(self):
        overdue = date(2024, 1, 1)
        assert normalize_payment_status(Decimal("5"), "PARCIAL", overdue, self.today) == PaymentStatus.PARCIAL

    def test_overdue_pending_is_vencido(self):
        assert normalize_payment_status(Decimal("5"), "PENDIENTE", date(2024, 6, 14), self.today) == PaymentStatus.VENCIDO

    def test_due_today_is_not_overdue(self):
        assert normalize_payment_status(Decimal("5"), "PENDIENTE", self.today, self.today) == PaymentStatus.PENDIENTE

    def test_unknown_stored_status_defaults_to_pending(self):
        assert normalize_payment_status(Decimal("5"), "ANULADO", None, self.today) == PaymentStatus.PENDIENTE
        assert normalize_payment_status(Decimal("5"), None, None, self.today) == PaymentStatus.PENDIENTE

    def test_status_after_payment(self):
        assert status_after_payment(Decimal("0.00")) == PaymentStatus.PAGADO
        assert status_after_payment(Decimal("0.01")) == PaymentStatus.PARCIAL


# ===== TESTS DEL LIBRO =====

class TestInvoiceService:

    def test_create_invoice(self, service, business, db_session, invoice_payload):
        invoice = service.create_invoice(parse_invoice_payload(invoice_payload), "user-1")

        assert invoice.id == build_invoice_id("FACTURA", "F001", "00000123")
        assert invoice.total == 32.21
        assert invoice.paid_amount == 0
        assert invoice.balance == 32.21
        assert invoice.status == "EMITIDO"
        assert invoice.source == "BACKEND"
        assert invoice.currency == "PEN"
        assert invoice.items[1].unit_price == 4.2
        assert invoice.items[0].tax_rate == 0.18

        comprobante = db_session.query(Comprobante).filter_by(invoice_id=invoice.id).one()
        assert comprobante.monto == Decimal("32.21")
        assert comprobante.igv == Decimal("4.91")
        assert comprobante.type == "VENTA"
        assert comprobante.source == "FACTURACION_BACKEND"

    def test_duplicate_invoice_conflicts(self, service, business, db_session, invoice_payload):
        service.create_invoice(parse_invoice_payload(invoice_payload), "user-1")

        with pytest.raises(ConflictError) as exc:
            service.create_invoice(parse_invoice_payload(invoice_payload), "user-1")
        assert exc.value.message == "Invoice already exists"
        assert db_session.query(Comprobante).count() == 1

    def test_same_document_in_other_business(self, service, business, db_session, invoice_payload):
        db_session.add(Business(id="biz-2", owner_uid="user-1", name="Sucursal Norte"))
        db_session.commit()

        first = service.create_invoice(parse_invoice_payload(invoice_payload), "user-1")
        invoice_payload["businessId"] = "biz-2"
        second = service.create_invoice(parse_invoice_payload(invoice_payload), "user-1")

        assert first.id == second.id
        assert db_session.query(Invoice).count() == 2

    def test_business_of_other_user(self, service, business, invoice_payload):
        with pytest.raises(NotFoundError) as exc:
            service.create_invoice(parse_invoice_payload(invoice_payload), "user-2")
        assert exc.value.message == "Business not found"

    def test_partial_then_full_payment(self, service, business, hundred_payload):
        invoice = service.create_invoice(parse_invoice_payload(hundred_payload), "user-1")

        first = service.apply_payment("user-1", invoice.id, parse_payment_payload({"businessId": "biz-1", "amount": 40}))
        assert first.paid_amount == 40
        assert first.balance == 60
        assert first.payment_status == PaymentStatus.PARCIAL
        assert first.payment_id

        second = service.apply_payment("user-1", invoice.id, parse_payment_payload({"businessId": "biz-1", "amount": "60.00"}))
        assert second.paid_amount == 100
        assert second.balance == 0
        assert second.payment_status == PaymentStatus.PAGADO

    def test_sequential_payments_cannot_overdraw(self, service, business, db_session, hundred_payload):
        invoice = service.create_invoice(parse_invoice_payload(hundred_payload), "user-1")
        payment = parse_payment_payload({"businessId": "biz-1", "amount": 60})

        service.apply_payment("user-1", invoice.id, payment)
        with pytest.raises(ValidationError) as exc:
            service.apply_payment("user-1", invoice.id, payment)

        assert exc.value.message == "Amount exceeds balance"
        stored = service.get_invoice("user-1", "biz-1", invoice.id)
        assert stored.paid_amount == 60
        assert stored.balance == 40
        assert db_session.query(InvoicePayment).count() == 1

    def test_payment_within_half_cent_settles(self, service, business, hundred_payload):
        invoice = service.create_invoice(parse_invoice_payload(hundred_payload), "user-1")

        result = service.apply_payment("user-1", invoice.id, parse_payment_payload(
            {"businessId": "biz-1", "amount": "99.9999999"}
        ))
        assert result.paid_amount == 100
        assert result.balance == 0
        assert result.payment_status == PaymentStatus.PAGADO

    def test_payment_one_cent_over_balance(self, service, business, db_session, hundred_payload):
        invoice = service.create_invoice(parse_invoice_payload(hundred_payload), "user-1")

        with pytest.raises(ValidationError) as exc:
            service.apply_payment("user-1", invoice.id, parse_payment_payload({"businessId": "biz-1", "amount": "100.01"}))
        assert exc.value.message == "Amount exceeds balance"
        assert db_session.query(InvoicePayment).count() == 0

    def test_payment_from_stale_session_sees_committed_balance(self, settings, business, hundred_payload):
        """Dos sesiones: la segunda leyó la factura antes del primer pago"""
        session_a, session_b = SessionLocal(), SessionLocal()
        try:
            service_a = InvoiceService(session_a, settings)
            service_b = InvoiceService(session_b, settings)
            invoice = service_a.create_invoice(parse_invoice_payload(hundred_payload), "user-1")
            assert service_b.get_invoice("user-1", "biz-1", invoice.id).balance == 100

            payment = parse_payment_payload({"businessId": "biz-1", "amount": 60})
            service_a.apply_payment("user-1", invoice.id, payment)
            with pytest.raises(ValidationError) as exc:
                service_b.apply_payment("user-1", invoice.id, payment)

            assert exc.value.message == "Amount exceeds balance"
            stored = service_b.get_invoice("user-1", "biz-1", invoice.id)
            assert stored.paid_amount == 60
            assert stored.balance == 40
            assert session_b.query(InvoicePayment).count() == 1
        finally:
            session_a.close()
            session_b.close()

    def test_business_ids_are_per_user(self, service, business, db_session, invoice_payload):
        db_session.add(Business(id="biz-1", owner_uid="user-2", name="Minimarket Sol"))
        db_session.commit()

        mine = service.create_invoice(parse_invoice_payload(invoice_payload), "user-1")
        theirs = service.create_invoice(parse_invoice_payload(invoice_payload), "user-2")
        service.apply_payment("user-2", theirs.id, parse_payment_payload({"businessId": "biz-1", "amount": 10}))

        assert mine.id == theirs.id
        assert db_session.query(Invoice).count() == 2
        assert service.get_invoice("user-1", "biz-1", mine.id).paid_amount == 0
        assert service.get_invoice("user-2", "biz-1", theirs.id).paid_amount == 10
        assert service.list_payments("user-1", "biz-1", mine.id) == []
        filters = parse_invoice_filters({"businessId": "biz-1"})
        assert [inv.customer_name for inv in service.list_invoices("user-1", filters)] == ["Comercial Andina SAC"]
        assert len(service.list_invoices("user-2", filters)) == 1

    def test_payment_on_missing_invoice(self, service, business):
        with pytest.raises(NotFoundError) as exc:
            service.apply_payment("user-1", "nope", parse_payment_payload({"businessId": "biz-1", "amount": 1}))
        assert exc.value.message == "Invoice not found"

    def test_paid_plus_balance_equals_total(self, service, business, invoice_payload):
        invoice = service.create_invoice(parse_invoice_payload(invoice_payload), "user-1")
        for amount in ("10.01", "0.99", "7.5", "3.33"):
            result = service.apply_payment("user-1", invoice.id, parse_payment_payload({"businessId": "biz-1", "amount": amount}))
            assert round2(result.paid_amount + result.balance) == Decimal("32.21")

    def test_mark_fully_paid_is_idempotent(self, service, business, db_session, invoice_payload):
        invoice = service.create_invoice(parse_invoice_payload(invoice_payload), "user-1")
        service.apply_payment("user-1", invoice.id, parse_payment_payload({"businessId": "biz-1", "amount": 2.21}))

        first = service.mark_fully_paid("user-1", invoice.id, parse_mark_paid_payload({"businessId": "biz-1"}))
        assert first.payment_id
        assert first.paid_amount == 32.21
        assert first.balance == 0
        assert first.payment_status == PaymentStatus.PAGADO

        settling = db_session.get(InvoicePayment, first.payment_id)
        assert settling.amount == Decimal("30.00")
        assert settling.note == "Pago total"

        second = service.mark_fully_paid("user-1", invoice.id, parse_mark_paid_payload({"businessId": "biz-1"}))
        assert second.payment_id is None
        assert second.paid_amount == 32.21
        assert db_session.query(InvoicePayment).count() == 2

    def test_list_payments_newest_first(self, service, business, hundred_payload):
        invoice = service.create_invoice(parse_invoice_payload(hundred_payload), "user-1")
        for day, amount in (("2024-01-05", 10), ("2024-01-20", 20), ("2024-01-10", 30)):
            service.apply_payment("user-1", invoice.id, parse_payment_payload(
                {"businessId": "biz-1", "amount": amount, "paymentDate": day}
            ))

        payments = service.list_payments("user-1", "biz-1", invoice.id)
        assert [p.amount for p in payments] == [20, 30, 10]
        assert payments[0].payment_date == "2024-01-20T00:00:00.000Z"
        assert payments[0].created_by == "user-1"

    def test_overdue_is_derived_on_read(self, service, business, invoice_payload):
        # Vencida desde 2024-03-31
        service.create_invoice(parse_invoice_payload(invoice_payload), "user-1")

        vencidas = service.list_invoices("user-1", parse_invoice_filters({"businessId": "biz-1", "paymentStatus": "VENCIDO"}))
        pendientes = service.list_invoices("user-1", parse_invoice_filters({"businessId": "biz-1", "paymentStatus": "PENDIENTE"}))

        assert len(vencidas) == 1
        assert vencidas[0].payment_status == PaymentStatus.VENCIDO
        assert pendientes == []

    def test_list_filters_and_order(self, service, business, invoice_payload, hundred_payload):
        service.create_invoice(parse_invoice_payload(invoice_payload), "user-1")
        service.create_invoice(parse_invoice_payload(hundred_payload), "user-1")

        everything = service.list_invoices("user-1", parse_invoice_filters({"businessId": "biz-1"}))
        boletas = service.list_invoices("user-1", parse_invoice_filters({"businessId": "biz-1", "documentType": "boleta"}))
        limited = service.list_invoices("user-1", parse_invoice_filters({"businessId": "biz-1", "limit": 1}))

        assert [inv.document_type for inv in everything] == ["BOLETA", "FACTURA"]
        assert [inv.document_type for inv in boletas] == ["BOLETA"]
        assert len(limited) == 1


# ===== TESTS HTTP =====

class TestBillingEndpoints:

    def test_requires_token(self, client, invoice_payload):
        response = client.post("/billing/invoices", json=invoice_payload)
        assert response.status_code == 401
        assert response.json() == {"error": "Missing auth token"}

    def test_rejects_invalid_token(self, client, token_factory, invoice_payload):
        headers = {"Authorization": f"Bearer {token_factory(secret='otro-secreto')}"}
        response = client.post("/billing/invoices", json=invoice_payload, headers=headers)
        assert response.status_code == 401
        assert response.json() == {"error": "Invalid token"}

    def test_create_and_get(self, client, auth_headers, business, invoice_payload):
        response = client.post("/billing/invoices", json=invoice_payload, headers=auth_headers)
        assert response.status_code == 201
        body = response.json()
        assert body["ok"] is True
        invoice = body["invoice"]
        assert invoice["documentType"] == "FACTURA"
        assert invoice["total"] == 32.21
        assert invoice["paidAmount"] == 0
        assert invoice["issueDate"] == "2024-03-01"
        assert invoice["items"][0]["unitPrice"] == 10.5
        assert invoice["cpeStatus"] is None
        assert invoice["cpeBetaStatus"] is None

        fetched = client.get(f"/billing/invoices/{invoice['id']}", params={"businessId": "biz-1"}, headers=auth_headers)
        assert fetched.status_code == 200
        assert fetched.json()["invoice"]["id"] == invoice["id"]

    def test_create_duplicate(self, client, auth_headers, business, invoice_payload):
        client.post("/billing/invoices", json=invoice_payload, headers=auth_headers)
        response = client.post("/billing/invoices", json=invoice_payload, headers=auth_headers)
        assert response.status_code == 409
        assert response.json() == {"error": "Invoice already exists"}

    def test_create_validation_error(self, client, auth_headers, business, invoice_payload):
        invoice_payload["customerDocumentType"] = "DNI"
        response = client.post("/billing/invoices", json=invoice_payload, headers=auth_headers)
        assert response.status_code == 400
        assert response.json() == {"error": "Factura requires customerDocumentType RUC"}

    def test_create_with_huge_quantity(self, client, auth_headers, business, invoice_payload):
        invoice_payload["items"][0]["quantity"] = "1e27"
        response = client.post("/billing/invoices", json=invoice_payload, headers=auth_headers)
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid item values"}

    def test_create_with_long_serie(self, client, auth_headers, business, invoice_payload):
        invoice_payload["serie"] = "F0010000001"
        response = client.post("/billing/invoices", json=invoice_payload, headers=auth_headers)
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid serie or numero"}

    def test_payment_with_huge_amount(self, client, auth_headers, business, hundred_payload):
        invoice_id = client.post("/billing/invoices", json=hundred_payload, headers=auth_headers).json()["invoice"]["id"]
        response = client.post(
            f"/billing/invoices/{invoice_id}/payments",
            json={"businessId": "biz-1", "amount": "1e30"},
            headers=auth_headers,
        )
        assert response.status_code == 400
        assert response.json() == {"error": "Invalid amount"}

    @pytest.mark.parametrize("endpoint", [
        "create_invoice", "list_invoices", "get_invoice", "list_invoice_payments",
        "register_payment", "mark_invoice_paid", "emit_cpe_beta", "emit_cpe_prod",
    ])
    def test_endpoints_run_in_threadpool(self, endpoint):
        # La sesión es síncrona: deben correr en el threadpool
        assert not inspect.iscoroutinefunction(getattr(billing_router, endpoint))

    def test_app_uses_configured_database(self, client, auth_headers, business, db_session, hundred_payload):
        assert engine.url.get_backend_name() == "sqlite"
        invoice_id = client.post("/billing/invoices", json=hundred_payload, headers=auth_headers).json()["invoice"]["id"]
        assert app.dependency_overrides == {}
        assert db_session.query(Invoice).filter_by(owner_uid="user-1", id=invoice_id).count() == 1

    def test_list_requires_business(self, client, auth_headers):
        response = client.get("/billing/invoices", headers=auth_headers)
        assert response.status_code == 400
        assert response.json() == {"error": "Missing businessId"}

    def test_list_invoices(self, client, auth_headers, business, invoice_payload, hundred_payload):
        client.post("/billing/invoices", json=invoice_payload, headers=auth_headers)
        client.post("/billing/invoices", json=hundred_payload, headers=auth_headers)

        response = client.get(
            "/billing/invoices",
            params={"businessId": "biz-1", "paymentStatus": "VENCIDO"},
            headers=auth_headers,
        )
        assert response.status_code == 200
        invoices = response.json()["invoices"]
        assert [inv["serie"] for inv in invoices] == ["F001"]
        assert invoices[0]["paymentStatus"] == "VENCIDO"

    def test_other_user_cannot_read(self, client, token_factory, business, auth_headers, invoice_payload):
        invoice_id = client.post("/billing/invoices", json=invoice_payload, headers=auth_headers).json()["invoice"]["id"]
        intruder = {"Authorization": f"Bearer {token_factory('user-2')}"}

        response = client.get(f"/billing/invoices/{invoice_id}", params={"businessId": "biz-1"}, headers=intruder)
        assert response.status_code == 404
        assert response.json() == {"error": "Invoice not found"}

    def test_payments_flow(self, client, auth_headers, business, hundred_payload):
        invoice_id = client.post("/billing/invoices", json=hundred_payload, headers=auth_headers).json()["invoice"]["id"]
        url = f"/billing/invoices/{invoice_id}/payments"

        first = client.post(url, json={"businessId": "biz-1", "amount": 60}, headers=auth_headers)
        assert first.status_code == 200
        assert first.json()["paymentStatus"] == "PARCIAL"
        assert first.json()["balance"] == 40

        second = client.post(url, json={"businessId": "biz-1", "amount": 60}, headers=auth_headers)
        assert second.status_code == 400
        assert second.json() == {"error": "Amount exceeds balance"}

        listed = client.get(url, params={"businessId": "biz-1"}, headers=auth_headers)
        assert listed.status_code == 200
        payments = listed.json()["payments"]
        assert len(payments) == 1
        assert payments[0]["amount"] == 60
        assert payments[0]["createdBy"] == "user-1"

    def test_mark_paid(self, client, auth_headers, business, hundred_payload):
        invoice_id = client.post("/billing/invoices", json=hundred_payload, headers=auth_headers).json()["invoice"]["id"]
        url = f"/billing/invoices/{invoice_id}/mark-paid"

        response = client.post(url, json={"businessId": "biz-1"}, headers=auth_headers)
        assert response.status_code == 200
        body = response.json()
        assert body == {
            "ok": True,
            "paymentId": body["paymentId"],
            "paidAmount": 100.0,
            "balance": 0.0,
            "paymentStatus": "PAGADO",
        }
        assert body["paymentId"]

        again = client.post(url, json={"businessId": "biz-1"}, headers=auth_headers)
        assert again.json()["paymentId"] is None

    def test_mark_paid_missing_business(self, client, auth_headers):
        response = client.post("/billing/invoices/abc/mark-paid", json={}, headers=auth_headers)
        assert response.status_code == 400
        assert response.json() == {"error": "Missing businessId"}


# ===== TESTS CPE =====

class TestCpeRelay:

    def _create(self, client, headers, payload):
        return client.post("/billing/invoices", json=payload, headers=headers).json()["invoice"]["id"]

    def test_emit_beta_forwards_token(self, client, settings, auth_headers, business, db_session, invoice_payload):
        invoice_id = self._create(client, auth_headers, invoice_payload)
        # Estado que dejaría el worker al aceptar
        stored = db_session.query(Invoice).filter_by(owner_uid="user-1", business_id="biz-1", id=invoice_id).one()
        stored.cpe_beta_status = "ACEPTADO"
        stored.cpe_beta_code = "0"
        db_session.commit()

        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, json={"ok": True, "result": {"ticket": "T-1"}})

        mount_worker(settings, handler)
        response = client.post(f"/billing/invoices/{invoice_id}/emit-cpe", json={"businessId": "biz-1"}, headers=auth_headers)

        assert response.status_code == 200
        body = response.json()
        assert body["result"] == {"ticket": "T-1"}
        assert body["invoice"]["cpeBetaStatus"] == "ACEPTADO"
        assert body["invoice"]["cpeBetaCode"] == "0"
        assert body["invoice"]["cpeStatus"] is None

        assert len(calls) == 1
        assert str(calls[0].url) == "http://sunat-worker.test/sunat/cpe/emit"
        assert calls[0].headers["authorization"] == auth_headers["Authorization"]
        assert json.loads(calls[0].content) == {"businessId": "biz-1", "invoiceId": invoice_id, "env": "BETA"}

    def test_emit_prod_propagates_worker_error(self, client, settings, auth_headers, business, invoice_payload):
        invoice_id = self._create(client, auth_headers, invoice_payload)
        sent = []

        def handler(request: httpx.Request) -> httpx.Response:
            sent.append(json.loads(request.content))
            return httpx.Response(422, json={"error": "Serie no autorizada"})

        mount_worker(settings, handler)
        response = client.post(f"/billing/invoices/{invoice_id}/emit-cpe-prod", json={"businessId": "biz-1"}, headers=auth_headers)

        assert sent[0]["env"] == "PROD"
        assert response.status_code == 422
        assert response.json() == {"error": "Serie no autorizada"}

    def test_worker_server_error_is_generic(self, client, settings, auth_headers, business, invoice_payload):
        invoice_id = self._create(client, auth_headers, invoice_payload)
        mount_worker(settings, lambda request: httpx.Response(503, text="unavailable"))

        response = client.post(f"/billing/invoices/{invoice_id}/emit-cpe", json={"businessId": "biz-1"}, headers=auth_headers)
        assert response.status_code == 503
        assert response.json() == {"error": "Server error"}

    def test_worker_timeout(self, client, settings, auth_headers, business, invoice_payload):
        invoice_id = self._create(client, auth_headers, invoice_payload)

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        mount_worker(settings, handler)
        response = client.post(f"/billing/invoices/{invoice_id}/emit-cpe", json={"businessId": "biz-1"}, headers=auth_headers)
        assert response.status_code == 500
        assert response.json() == {"error": "Server error"}

    def test_missing_worker_url(self, client, auth_headers, business, invoice_payload):
        invoice_id = self._create(client, auth_headers, invoice_payload)
        mount_worker(Settings(SUNAT_WORKER_URL=""), lambda request: httpx.Response(200, json={}))

        response = client.post(f"/billing/invoices/{invoice_id}/emit-cpe", json={"businessId": "biz-1"}, headers=auth_headers)
        assert response.status_code == 500
        assert response.json() == {"error": "Server error"}

    def test_unknown_invoice_is_not_relayed(self, client, settings, auth_headers, business):
        calls = []
        mount_worker(settings, lambda request: calls.append(request) or httpx.Response(200, json={}))

        response = client.post("/billing/invoices/missing/emit-cpe", json={"businessId": "biz-1"}, headers=auth_headers)
        assert response.status_code == 404
        assert response.json() == {"error": "Invoice not found"}
        assert calls == []


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"ok": True}
