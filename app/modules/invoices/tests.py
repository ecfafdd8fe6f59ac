"""
Tests para el módulo de Facturación

Cubren:
- Tabla de transiciones de estado
- Numeración por serie y patrón
- Borradores: totales, edición, eliminación lógica
- Emisión atómica con descuento de inventario (todo o nada)
- Pagos parciales, completos, en otra moneda y sobrepago
- Anulación con reingreso exacto y política de pagos
- Endpoints HTTP y forma de los errores
"""

import threading
import pytest
from datetime import date
from decimal import Decimal
from uuid import uuid4

from sqlalchemy.orm import sessionmaker

from app.common.exceptions import (
    InvalidStateTransition, InsufficientStock, NoActiveSession, ValidationError, NotFound
)
from app.database.database import Base, create_db_engine
from app.modules.currency.calculator import Currency, money
from app.modules.inventory.schemas import ProductCreate
from app.modules.inventory.service import InventoryService
from app.modules.invoices.models import (
    ALLOWED_ACTIONS, InvoiceAction, InvoiceStatus, PaymentMethod, CancelledPaymentPolicy, InvoiceSequence
)
from app.modules.invoices.schemas import (
    InvoiceCreate, InvoiceLineCreate, InvoiceUpdate, InvoiceFilters, PaymentCreate
)
from app.modules.invoices.service import InvoiceService, format_invoice_number, sanitize_client_name
from app.modules.pos.services import CashSessionService


# ===== HELPERS =====

def _line(product=None, quantity="1", unit_price="10", tax_rate="0", **kwargs):
    return InvoiceLineCreate(
        product_id=product.id if product else None,
        quantity=Decimal(quantity),
        unit_price=Decimal(unit_price),
        tax_rate=Decimal(tax_rate),
        **kwargs
    )


def _draft(db, actor_id, lines, client_name="Juan Pérez", **kwargs):
    return InvoiceService(db).create_draft(
        InvoiceCreate(client_name=client_name, lines=lines, **kwargs),
        actor_id
    )


def _stock(db, product):
    return InventoryService(db).get_quantity(product.id)


def _pay(db, invoice, actor_id, amount, method=PaymentMethod.CASH, **kwargs):
    return InvoiceService(db).record_payment(
        invoice.id,
        PaymentCreate(amount=Decimal(amount), method=method, **kwargs),
        actor_id
    )


# ===== TESTS DE TRANSICIONES =====

class TestTransitionTable:

    def test_every_status_has_an_entry(self):
        assert set(ALLOWED_ACTIONS) == set(InvoiceStatus)

    @pytest.mark.parametrize("status", [InvoiceStatus.PAID, InvoiceStatus.CANCELLED, InvoiceStatus.DELETED])
    def test_terminal_states_allow_nothing(self, status):
        assert ALLOWED_ACTIONS[status] == frozenset()

    def test_only_drafts_are_editable(self):
        editable = {status for status, actions in ALLOWED_ACTIONS.items() if InvoiceAction.EDIT in actions}
        assert editable == {InvoiceStatus.DRAFT}

    def test_cancel_only_from_issued_or_partial(self):
        cancellable = {status for status, actions in ALLOWED_ACTIONS.items() if InvoiceAction.CANCEL in actions}
        assert cancellable == {InvoiceStatus.ISSUED, InvoiceStatus.PARTIAL}


# ===== TESTS DE NUMERACIÓN =====

class TestNumbering:

    @pytest.mark.parametrize("name,expected", [
        ("Juan Pérez García", "JPG"),
        ("Inversiones", "INV"),
        ("Ana María del Valle Rojas", "AMD"),
        ("", "CLI"),
        ("S.A. ???", "CLI"),
    ])
    def test_sanitize_client_name(self, name, expected):
        assert sanitize_client_name(name) == expected

    def test_default_pattern(self):
        assert format_invoice_number("{PREFIX}-{NUMBER}", "FAC", 7) == "FAC-00000007"

    def test_all_tokens(self):
        number = format_invoice_number(
            "{PREFIX}/{YEAR}{MONTH}/{CLIENT}/{NUMBER}", "FAC", 12,
            client_name="Bodega Central", when=date(2026, 3, 5)
        )
        assert number == "FAC/202603/BC/00000012"

    def test_empty_pattern_falls_back(self):
        assert format_invoice_number("  ", "B", 1) == "B-00000001"


# ===== TESTS DE BORRADORES =====

class TestDrafts:

    def test_create_draft_computes_totals(self, db, actor_id, make_product):
        product = make_product(stock=Decimal("10"))
        invoice = _draft(db, actor_id, [
            _line(product, quantity="2", unit_price="50", tax_rate="16", discount_percent=Decimal("10")),
            _line(None, quantity="1", unit_price="5.005", description="Servicio de entrega"),
        ])

        assert invoice.status == InvoiceStatus.DRAFT
        assert invoice.number is None
        assert invoice.subtotal == Decimal("95.01")
        assert invoice.tax_total == Decimal("14.40")
        assert invoice.discount_total == Decimal("10.00")
        assert invoice.total == money(invoice.subtotal + invoice.tax_total)
        assert invoice.lines[0].description == product.name
        # El borrador no toca inventario
        assert _stock(db, product) == Decimal("10")

    def test_line_with_unknown_product_rejected(self, db, actor_id):
        with pytest.raises(ValidationError):
            InvoiceService(db).create_draft(
                InvoiceCreate(client_name="Cliente", lines=[
                    InvoiceLineCreate(product_id=uuid4(), quantity=Decimal("1"), unit_price=Decimal("1"))
                ]),
                actor_id
            )

    def test_update_replaces_lines_and_recomputes(self, db, actor_id, make_product):
        product = make_product()
        invoice = _draft(db, actor_id, [_line(product, quantity="1", unit_price="10")])

        updated = InvoiceService(db).update_draft(
            invoice.id,
            InvoiceUpdate(notes="Cliente frecuente", lines=[_line(product, quantity="3", unit_price="20", tax_rate="16")]),
            actor_id
        )

        assert len(updated.lines) == 1
        assert updated.subtotal == Decimal("60.00")
        assert updated.tax_total == Decimal("9.60")
        assert updated.total == Decimal("69.60")
        assert updated.notes == "Cliente frecuente"

    def test_edit_after_issue_rejected(self, db, actor_id, make_product):
        product = make_product()
        invoice = _draft(db, actor_id, [_line(product)])
        InvoiceService(db).issue(invoice.id, actor_id)

        with pytest.raises(InvalidStateTransition):
            InvoiceService(db).update_draft(invoice.id, InvoiceUpdate(notes="x"), actor_id)

    def test_delete_draft_is_soft_and_hidden(self, db, actor_id, make_product):
        product = make_product()
        invoice = _draft(db, actor_id, [_line(product)])

        deleted = InvoiceService(db).delete_draft(invoice.id, actor_id)

        assert deleted.status == InvoiceStatus.DELETED
        assert deleted.deleted_at is not None
        assert _stock(db, product) == Decimal("10")

        listing = InvoiceService(db).list_invoices(InvoiceFilters())
        assert listing.total == 0
        only_deleted = InvoiceService(db).list_invoices(InvoiceFilters(status=InvoiceStatus.DELETED))
        assert only_deleted.total == 1

    def test_delete_non_draft_rejected(self, db, actor_id, make_product):
        product = make_product()
        invoice = _draft(db, actor_id, [_line(product)])
        InvoiceService(db).issue(invoice.id, actor_id)

        with pytest.raises(InvalidStateTransition):
            InvoiceService(db).delete_draft(invoice.id, actor_id)
        assert _stock(db, product) == Decimal("9")

    def test_get_unknown_invoice(self, db):
        with pytest.raises(NotFound):
            InvoiceService(db).get_invoice(uuid4())


# ===== TESTS DE EMISIÓN =====

class TestIssue:

    def test_issue_decrements_stock_and_assigns_number(self, db, actor_id, make_product):
        product = make_product(stock=Decimal("10"))
        invoice = _draft(db, actor_id, [_line(product, quantity="2")])

        issued = InvoiceService(db).issue(invoice.id, actor_id)

        assert issued.status == InvoiceStatus.ISSUED
        assert issued.number == "FAC-00000001"
        assert issued.issued_by == actor_id
        assert issued.issued_at is not None
        assert _stock(db, product) == Decimal("8")

    def test_numbers_are_sequential_per_series(self, db, actor_id, make_product):
        product = make_product(stock=Decimal("10"))
        service = InvoiceService(db)
        first = _draft(db, actor_id, [_line(product)])
        second = _draft(db, actor_id, [_line(product)])
        other_series = _draft(db, actor_id, [_line(product)], series="b")

        assert service.issue(first.id, actor_id).number == "FAC-00000001"
        assert service.issue(other_series.id, actor_id).number == "B-00000001"
        assert service.issue(second.id, actor_id).number == "FAC-00000002"

    def test_insufficient_stock_changes_nothing(self, db, actor_id, make_product):
        plenty = make_product(stock=Decimal("10"))
        scarce = make_product(stock=Decimal("1"))
        invoice = _draft(db, actor_id, [
            _line(plenty, quantity="2"),
            _line(scarce, quantity="3"),
        ])

        with pytest.raises(InsufficientStock) as exc_info:
            InvoiceService(db).issue(invoice.id, actor_id)

        assert exc_info.value.product_id == scarce.id
        assert exc_info.value.requested == Decimal("3")
        assert exc_info.value.available == Decimal("1")

        # Ni la línea con existencia suficiente se descontó
        assert _stock(db, plenty) == Decimal("10")
        assert _stock(db, scarce) == Decimal("1")

        reloaded = InvoiceService(db).get_invoice(invoice.id)
        assert reloaded.status == InvoiceStatus.DRAFT
        assert reloaded.number is None
        assert db.query(InvoiceSequence).count() == 0

    def test_quantities_of_the_same_product_are_summed(self, db, actor_id, make_product):
        product = make_product(stock=Decimal("3"))
        invoice = _draft(db, actor_id, [_line(product, quantity="2"), _line(product, quantity="2")])

        with pytest.raises(InsufficientStock) as exc_info:
            InvoiceService(db).issue(invoice.id, actor_id)

        assert exc_info.value.requested == Decimal("4")
        assert _stock(db, product) == Decimal("3")

    def test_reissue_rejected(self, db, actor_id, make_product):
        product = make_product(stock=Decimal("10"))
        invoice = _draft(db, actor_id, [_line(product, quantity="2")])
        InvoiceService(db).issue(invoice.id, actor_id)

        with pytest.raises(InvalidStateTransition):
            InvoiceService(db).issue(invoice.id, actor_id)
        assert _stock(db, product) == Decimal("8")

    def test_issue_under_open_session(self, db, actor_id, make_product, open_session):
        product = make_product()
        invoice = _draft(db, actor_id, [_line(product)])

        issued = InvoiceService(db).issue(invoice.id, actor_id, cash_session_id=open_session.id)

        assert issued.cash_session_id == open_session.id

    def test_issue_under_closed_session_rejected(self, db, actor_id, make_product, open_session):
        product = make_product()
        CashSessionService(db).close_session(open_session.id, {"USD": Decimal("100")}, actor_id)
        invoice = _draft(db, actor_id, [_line(product)])

        with pytest.raises(NoActiveSession):
            InvoiceService(db).issue(invoice.id, actor_id, cash_session_id=open_session.id)
        assert _stock(db, product) == Decimal("10")

    def test_issue_under_unknown_session_rejected(self, db, actor_id, make_product):
        product = make_product()
        invoice = _draft(db, actor_id, [_line(product)])

        with pytest.raises(NoActiveSession):
            InvoiceService(db).issue(invoice.id, actor_id, cash_session_id=uuid4())

    def test_line_without_product_does_not_touch_stock(self, db, actor_id):
        invoice = _draft(db, actor_id, [_line(None, description="Servicio técnico", unit_price="25")])

        issued = InvoiceService(db).issue(invoice.id, actor_id)

        assert issued.status == InvoiceStatus.ISSUED
        assert issued.total == Decimal("25.00")


class TestConcurrentIssue:

    def test_concurrent_issues_never_oversell(self, tmp_path):
        """Dos emisiones simultáneas sobre el mismo producto: solo una obtiene la existencia"""
        engine = create_db_engine(f"sqlite:///{tmp_path / 'race.db'}")
        Base.metadata.create_all(bind=engine)
        Factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
        actor = uuid4()

        with Factory() as session:
            product = InventoryService(session).create_product(
                ProductCreate(sku="RACE-1", name="Harina", initial_stock=Decimal("3")), actor
            )
            invoice_ids = [
                _draft(session, actor, [_line(product, quantity="2")]).id
                for _ in range(2)
            ]

        barrier = threading.Barrier(2)
        results = []

        def worker(invoice_id):
            with Factory() as session:
                barrier.wait()
                try:
                    InvoiceService(session).issue(invoice_id, actor)
                    results.append("issued")
                except InsufficientStock:
                    results.append("insufficient")
                except Exception as e:
                    results.append(repr(e))

        threads = [threading.Thread(target=worker, args=(invoice_id,)) for invoice_id in invoice_ids]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        assert sorted(results) == ["insufficient", "issued"]
        with Factory() as session:
            assert InventoryService(session).get_quantity(product.id) == Decimal("1")
        engine.dispose()


# ===== TESTS DE PAGOS =====

class TestPayments:

    def _issued(self, db, actor_id, make_product, unit_price="50", currency=Currency.USD):
        product = make_product()
        invoice = _draft(db, actor_id, [_line(product, unit_price=unit_price)], currency=currency)
        return InvoiceService(db).issue(invoice.id, actor_id)

    def test_payment_on_draft_rejected(self, db, actor_id, make_product):
        invoice = _draft(db, actor_id, [_line(make_product())])
        with pytest.raises(InvalidStateTransition):
            _pay(db, invoice, actor_id, "5")

    def test_partial_then_paid(self, db, actor_id, make_product):
        invoice = self._issued(db, actor_id, make_product)

        _pay(db, invoice, actor_id, "20")
        assert InvoiceService(db).get_invoice(invoice.id).status == InvoiceStatus.PARTIAL

        _pay(db, invoice, actor_id, "30", method=PaymentMethod.TRANSFER, reference="TRF-881")
        reloaded = InvoiceService(db).get_invoice(invoice.id)
        assert reloaded.status == InvoiceStatus.PAID
        assert reloaded.paid_amount == Decimal("50.00")
        assert reloaded.balance_due == Decimal("0")

    def test_within_tolerance_is_paid(self, db, actor_id, make_product):
        invoice = self._issued(db, actor_id, make_product)
        _pay(db, invoice, actor_id, "49.99")
        assert InvoiceService(db).get_invoice(invoice.id).status == InvoiceStatus.PAID

    def test_overpayment_rejected(self, db, actor_id, make_product):
        invoice = self._issued(db, actor_id, make_product)
        _pay(db, invoice, actor_id, "40")

        with pytest.raises(ValidationError):
            _pay(db, invoice, actor_id, "10.02")

        reloaded = InvoiceService(db).get_invoice(invoice.id)
        assert reloaded.paid_amount == Decimal("40.00")
        assert len(reloaded.payments) == 1

    def test_paid_invoice_accepts_no_more_payments(self, db, actor_id, make_product):
        invoice = self._issued(db, actor_id, make_product)
        _pay(db, invoice, actor_id, "50")
        with pytest.raises(InvalidStateTransition):
            _pay(db, invoice, actor_id, "1")

    def test_other_currency_requires_rate(self, db, actor_id, make_product):
        invoice = self._issued(db, actor_id, make_product)
        with pytest.raises(ValidationError):
            _pay(db, invoice, actor_id, "365", currency=Currency.VES)

    def test_other_currency_is_converted(self, db, actor_id, make_product):
        invoice = self._issued(db, actor_id, make_product)

        payment = _pay(
            db, invoice, actor_id, "730",
            currency=Currency.VES, exchange_rate=Decimal("0.0273973")
        )

        assert payment.currency == Currency.VES
        assert payment.applied_amount == Decimal("20.00")
        reloaded = InvoiceService(db).get_invoice(invoice.id)
        assert reloaded.paid_amount == Decimal("20.00")
        assert reloaded.status == InvoiceStatus.PARTIAL


# ===== TESTS DE ANULACIÓN =====

class TestCancel:

    def test_issue_then_cancel_restores_stock_exactly(self, db, actor_id, make_product):
        first = make_product(stock=Decimal("10"))
        second = make_product(stock=Decimal("5.5"))
        invoice = _draft(db, actor_id, [
            _line(first, quantity="2"),
            _line(second, quantity="1.25"),
            _line(first, quantity="3"),
        ])
        service = InvoiceService(db)

        service.issue(invoice.id, actor_id)
        assert _stock(db, first) == Decimal("5")
        assert _stock(db, second) == Decimal("4.25")

        cancelled = service.cancel(invoice.id, actor_id, reason="Cliente desistió")

        assert cancelled.status == InvoiceStatus.CANCELLED
        assert cancelled.cancel_reason == "Cliente desistió"
        assert _stock(db, first) == Decimal("10")
        assert _stock(db, second) == Decimal("5.5")

    def test_cancel_draft_rejected(self, db, actor_id, make_product):
        invoice = _draft(db, actor_id, [_line(make_product())])
        with pytest.raises(InvalidStateTransition):
            InvoiceService(db).cancel(invoice.id, actor_id, reason="x")

    def test_cancel_twice_rejected(self, db, actor_id, make_product):
        product = make_product(stock=Decimal("10"))
        invoice = _draft(db, actor_id, [_line(product, quantity="2")])
        service = InvoiceService(db)
        service.issue(invoice.id, actor_id)
        service.cancel(invoice.id, actor_id, reason="Error")

        with pytest.raises(InvalidStateTransition):
            service.cancel(invoice.id, actor_id, reason="Error")
        assert _stock(db, product) == Decimal("10")

    def test_keep_policy_leaves_payments(self, db, actor_id, make_product):
        product = make_product()
        invoice = _draft(db, actor_id, [_line(product, unit_price="50")])
        service = InvoiceService(db)
        service.issue(invoice.id, actor_id)
        _pay(db, invoice, actor_id, "20")

        service.cancel(invoice.id, actor_id, reason="Devolución", payment_policy=CancelledPaymentPolicy.KEEP)

        reloaded = service.get_invoice(invoice.id)
        assert reloaded.status == InvoiceStatus.CANCELLED
        assert len(reloaded.payments) == 1
        assert reloaded.payments[0].voided_at is None
        assert reloaded.paid_amount == Decimal("20.00")

    def test_void_policy_marks_payments(self, db, actor_id, make_product):
        product = make_product()
        invoice = _draft(db, actor_id, [_line(product, unit_price="50")])
        service = InvoiceService(db)
        service.issue(invoice.id, actor_id)
        _pay(db, invoice, actor_id, "20")

        service.cancel(invoice.id, actor_id, reason="Devolución", payment_policy="void")

        reloaded = service.get_invoice(invoice.id)
        assert len(reloaded.payments) == 1
        assert reloaded.payments[0].voided_at is not None

    def test_unknown_policy_rejected(self, db, actor_id, make_product):
        product = make_product()
        invoice = _draft(db, actor_id, [_line(product)])
        InvoiceService(db).issue(invoice.id, actor_id)

        with pytest.raises(ValidationError):
            InvoiceService(db).cancel(invoice.id, actor_id, payment_policy="refund")


# ===== TESTS DE LISTADO =====

class TestListing:

    def test_filters_and_counts(self, db, actor_id, make_product):
        product = make_product(stock=Decimal("10"))
        service = InvoiceService(db)
        issued = _draft(db, actor_id, [_line(product)], client_name="Bodega Central")
        service.issue(issued.id, actor_id)
        _draft(db, actor_id, [_line(product)], client_name="Farmacia Sur", notes="Entrega a domicilio")

        by_client = service.list_invoices(InvoiceFilters(search="bodega"))
        assert by_client.total == 1
        assert by_client.invoices[0].client_name == "Bodega Central"

        by_notes = service.list_invoices(InvoiceFilters(search="DOMICILIO"))
        assert by_notes.total == 1

        by_number = service.list_invoices(InvoiceFilters(search="FAC-0000"))
        assert by_number.total == 1

        drafts = service.list_invoices(InvoiceFilters(status=InvoiceStatus.DRAFT))
        assert drafts.total == 1

        counts = {item.status: item.count for item in service.list_invoices(InvoiceFilters()).counts_by_status}
        assert counts[InvoiceStatus.DRAFT] == 1
        assert counts[InvoiceStatus.ISSUED] == 1
        assert counts[InvoiceStatus.PAID] == 0


# ===== TESTS DE ENDPOINTS =====

class TestInvoiceEndpoints:

    def _create(self, client, actor_headers, product, quantity="2", unit_price="50"):
        response = client.post("/api/v1/invoices/", headers=actor_headers, json={
            "client_name": "Juan Pérez",
            "currency": "USD",
            "lines": [{
                "product_id": str(product.id),
                "quantity": quantity,
                "unit_price": unit_price,
                "tax_rate": "16"
            }]
        })
        assert response.status_code == 201, response.text
        return response.json()

    def test_full_flow(self, client, actor_headers, make_product, db):
        product = make_product(stock=Decimal("10"))
        invoice = self._create(client, actor_headers, product)
        assert invoice["status"] == "draft"
        assert Decimal(invoice["total"]) == Decimal("116.00")
        assert invoice["amount_in_words"] == "SON: CIENTO DIECISEIS DOLARES CON 00/100"

        response = client.post(f"/api/v1/invoices/{invoice['id']}/issue", headers=actor_headers)
        assert response.status_code == 200, response.text
        assert response.json()["number"] == "FAC-00000001"

        stock = client.get(f"/api/v1/products/{product.id}/stock")
        assert Decimal(stock.json()["quantity"]) == Decimal("8")

        response = client.post(f"/api/v1/invoices/{invoice['id']}/payments", headers=actor_headers, json={
            "amount": "116", "method": "cash"
        })
        assert response.status_code == 201, response.text

        payments = client.get(f"/api/v1/invoices/{invoice['id']}/payments").json()
        assert payments["total"] == 1

        detail = client.get(f"/api/v1/invoices/{invoice['id']}").json()
        assert detail["status"] == "paid"

    def test_insufficient_stock_response(self, client, actor_headers, make_product):
        product = make_product(stock=Decimal("1"))
        invoice = self._create(client, actor_headers, product, quantity="4")

        response = client.post(f"/api/v1/invoices/{invoice['id']}/issue", headers=actor_headers)

        assert response.status_code == 409
        body = response.json()
        assert body["error"] == "insufficient_stock"
        assert body["product_id"] == str(product.id)
        assert Decimal(body["requested"]) == Decimal("4")
        assert Decimal(body["available"]) == Decimal("1")

    def test_invalid_transition_response(self, client, actor_headers, make_product):
        product = make_product()
        invoice = self._create(client, actor_headers, product)

        response = client.post(
            f"/api/v1/invoices/{invoice['id']}/cancel", headers=actor_headers, json={"reason": "x"}
        )

        assert response.status_code == 409
        assert response.json()["error"] == "invalid_state_transition"
        assert response.json()["current_status"] == "draft"

    def test_update_and_delete_draft(self, client, actor_headers, make_product):
        product = make_product()
        invoice = self._create(client, actor_headers, product)

        response = client.put(f"/api/v1/invoices/{invoice['id']}", headers=actor_headers, json={
            "lines": [{"product_id": str(product.id), "quantity": "1", "unit_price": "10"}]
        })
        assert response.status_code == 200, response.text
        assert Decimal(response.json()["total"]) == Decimal("10.00")

        response = client.delete(f"/api/v1/invoices/{invoice['id']}", headers=actor_headers)
        assert response.status_code == 200
        assert response.json()["status"] == "deleted"

        listing = client.get("/api/v1/invoices/").json()
        assert listing["total"] == 0

    def test_missing_actor_header(self, client, make_product):
        product = make_product()
        response = client.post("/api/v1/invoices/", json={
            "client_name": "Cliente",
            "lines": [{"product_id": str(product.id), "quantity": "1", "unit_price": "1"}]
        })
        assert response.status_code == 400

    def test_empty_lines_rejected(self, client, actor_headers):
        response = client.post("/api/v1/invoices/", headers=actor_headers, json={
            "client_name": "Cliente", "lines": []
        })
        assert response.status_code == 422

    def test_unknown_invoice(self, client):
        response = client.get(f"/api/v1/invoices/{uuid4()}")
        assert response.status_code == 404
        assert response.json()["error"] == "not_found"


# ===== TESTS DE PRECISIÓN Y LÍMITES =====

class TestPrecision:

    def test_fractional_stock_drains_to_zero(self, db, actor_id, make_product):
        """Emitir exactamente la existencia restante nunca falla por redondeo"""
        product = make_product(stock=Decimal("0.3"))
        service = InvoiceService(db)

        issued = []
        for _ in range(3):
            invoice = _draft(db, actor_id, [_line(product, quantity="0.1")])
            issued.append(service.issue(invoice.id, actor_id))

        assert _stock(db, product) == Decimal("0")

        extra = _draft(db, actor_id, [_line(product, quantity="0.001")])
        with pytest.raises(InsufficientStock):
            service.issue(extra.id, actor_id)

        service.cancel(issued[0].id, actor_id)
        assert _stock(db, product) == Decimal("0.1")

    def test_issued_total_matches_draft(self, db, actor_id, make_product):
        product = make_product(stock=Decimal("5"))
        invoice = _draft(db, actor_id, [_line(product, quantity="1.001", unit_price="999.9999", tax_rate="16")])
        draft_total = invoice.total

        issued = InvoiceService(db).issue(invoice.id, actor_id)

        assert issued.total == draft_total
        assert _stock(db, product) == Decimal("3.999")

    def test_line_with_extra_decimals_rejected(self, db, actor_id, make_product):
        product = make_product()
        line = InvoiceLineCreate.model_construct(
            product_id=product.id,
            description=None,
            quantity=Decimal("1.0004"),
            unit_price=Decimal("1000"),
            tax_rate=Decimal("0"),
            discount_percent=Decimal("0")
        )

        with pytest.raises(ValidationError) as exc_info:
            InvoiceService(db).create_draft(InvoiceCreate(client_name="Cliente", lines=[line]), actor_id)

        assert exc_info.value.details["field"] == "quantity"
        assert InvoiceService(db).list_invoices(InvoiceFilters()).total == 0

    def test_total_beyond_words_range_rejected(self, db, actor_id, make_product):
        product = make_product()

        with pytest.raises(ValidationError):
            _draft(db, actor_id, [_line(product, quantity="1000", unit_price="1000000000")], currency=Currency.VES)

        assert InvoiceService(db).list_invoices(InvoiceFilters()).total == 0

    def test_update_beyond_words_range_keeps_draft(self, db, actor_id, make_product):
        product = make_product()
        invoice = _draft(db, actor_id, [_line(product, quantity="1", unit_price="10")])

        with pytest.raises(ValidationError):
            InvoiceService(db).update_draft(
                invoice.id,
                InvoiceUpdate(lines=[_line(product, quantity="1000", unit_price="1000000000")]),
                actor_id
            )

        reloaded = InvoiceService(db).get_invoice(invoice.id)
        assert reloaded.total == Decimal("10.00")
        assert len(reloaded.lines) == 1
        assert reloaded.lines[0].quantity == Decimal("1")

    def test_oversized_invoice_rejected_over_http(self, client, actor_headers, make_product, db):
        product = make_product(stock=Decimal("5"))

        response = client.post("/api/v1/invoices/", headers=actor_headers, json={
            "client_name": "Importadora",
            "currency": "VES",
            "lines": [{"product_id": str(product.id), "quantity": "1000", "unit_price": "1000000000"}]
        })

        assert response.status_code == 422
        assert response.json()["error"] == "validation_error"
        assert client.get("/api/v1/invoices/").json()["total"] == 0
        assert _stock(db, product) == Decimal("5")

    def test_quantity_precision_rejected_over_http(self, client, actor_headers, make_product, db):
        product = make_product(stock=Decimal("5"))

        response = client.post("/api/v1/invoices/", headers=actor_headers, json={
            "client_name": "Cliente",
            "lines": [{"product_id": str(product.id), "quantity": "1.0004", "unit_price": "1000"}]
        })

        assert response.status_code == 422
        assert client.get("/api/v1/invoices/").json()["total"] == 0

    def test_cancel_without_body(self, client, actor_headers, make_product, db):
        product = make_product(stock=Decimal("5"))
        invoice = _draft(db, actor_id=uuid4(), lines=[_line(product, quantity="2")])
        InvoiceService(db).issue(invoice.id, uuid4())

        response = client.post(f"/api/v1/invoices/{invoice.id}/cancel", headers=actor_headers)

        assert response.status_code == 200, response.text
        assert response.json()["status"] == "cancelled"
        assert response.json()["cancel_reason"] is None
        assert _stock(db, product) == Decimal("5")
