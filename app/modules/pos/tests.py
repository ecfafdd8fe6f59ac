"""
Tests para el módulo POS

Cubren cajas, apertura única por caja, movimientos manuales, cierre con
cuadre independiente por moneda y reconteos posteriores al cierre.
"""

import pytest
from decimal import Decimal
from uuid import uuid4

from sqlalchemy import update
from sqlalchemy.orm import sessionmaker

from app.common.exceptions import (
    ConcurrencyConflict, InvalidStateTransition, SessionAlreadyOpen, ValidationError, NotFound
)
from app.database.database import Base, create_db_engine
from app.database.unit_of_work import atomic
from app.modules.currency.calculator import Currency
from app.modules.invoices.models import PaymentMethod, CancelledPaymentPolicy
from app.modules.invoices.schemas import InvoiceCreate, InvoiceLineCreate, PaymentCreate
from app.modules.invoices.service import InvoiceService
from app.modules.pos.models import (
    ALLOWED_SESSION_ACTIONS, CashMovementType, CashSession, CashSessionStatus
)
from app.modules.pos.schemas import CashRegisterCreate
from app.modules.pos.services import (
    CashRegisterService, CashSessionService, normalize_amounts, normalize_rates
)


RATES = {"VES": Decimal("36.50"), "EUR": Decimal("0.92")}


def _by_currency(reconciliation):
    return {item.currency: item for item in reconciliation.currencies}


def _cash_sale(db, actor_id, product, cash_session, amount, currency=Currency.USD, method=PaymentMethod.CASH):
    """Emite una factura bajo la sesión y la paga completa"""
    service = InvoiceService(db)
    invoice = service.create_draft(InvoiceCreate(
        client_name="Consumidor Final",
        currency=currency,
        lines=[InvoiceLineCreate(product_id=product.id, quantity=Decimal("1"), unit_price=Decimal(amount))]
    ), actor_id)
    service.issue(invoice.id, actor_id, cash_session_id=cash_session.id)
    service.record_payment(invoice.id, PaymentCreate(amount=Decimal(amount), method=method), actor_id)
    return invoice


class TestHelpers:

    def test_missing_currencies_default_to_zero(self):
        amounts = normalize_amounts({"usd": "10.005"})
        assert amounts == {
            Currency.USD: Decimal("10.01"),
            Currency.VES: Decimal("0.00"),
            Currency.EUR: Decimal("0.00"),
        }

    def test_negative_amount_rejected(self):
        with pytest.raises(ValidationError):
            normalize_amounts({"VES": "-1"})

    def test_unknown_currency_rejected(self):
        with pytest.raises(ValidationError):
            normalize_amounts({"COP": "1"})

    @pytest.mark.parametrize("rates", [{"VES": "36.5"}, {"VES": "0", "EUR": "0.92"}])
    def test_rates_required_and_positive(self, rates):
        with pytest.raises(ValidationError):
            normalize_rates(rates)

    def test_session_transition_table(self):
        assert set(ALLOWED_SESSION_ACTIONS) == set(CashSessionStatus)


class TestCashRegisters:

    def test_create_and_list(self, db, actor_id, register):
        service = CashRegisterService(db)
        service.create_register(CashRegisterCreate(name="Caja Express", location="Entrada"), actor_id)

        names = [r.name for r in service.list_registers()]
        assert names == ["Caja Express", "Caja Principal"]

    def test_duplicate_name_rejected(self, db, actor_id, register):
        with pytest.raises(ValidationError):
            CashRegisterService(db).create_register(CashRegisterCreate(name="caja principal"), actor_id)

    def test_deactivate_with_open_session_rejected(self, db, actor_id, register, open_session):
        with pytest.raises(InvalidStateTransition):
            CashRegisterService(db).deactivate_register(register.id, actor_id)

    def test_inactive_register_cannot_open(self, db, actor_id, register):
        CashRegisterService(db).deactivate_register(register.id, actor_id)

        assert CashRegisterService(db).list_registers() == []
        assert len(CashRegisterService(db).list_registers(include_inactive=True)) == 1
        with pytest.raises(ValidationError):
            CashSessionService(db).open_session(register.id, {"USD": "10"}, RATES, actor_id)

    def test_unknown_register(self, db, actor_id):
        with pytest.raises(NotFound):
            CashSessionService(db).open_session(uuid4(), {}, RATES, actor_id)


class TestOpenSession:

    def test_open_stores_amounts_and_rates(self, db, open_session):
        assert open_session.status == CashSessionStatus.OPEN
        assert open_session.opening_amount_usd == Decimal("100.00")
        assert open_session.exchange_rate_ves == Decimal("36.50")

    def test_second_open_rejected(self, db, actor_id, register, open_session):
        with pytest.raises(SessionAlreadyOpen):
            CashSessionService(db).open_session(register.id, {"USD": "50"}, RATES, actor_id)

        assert CashSessionService(db).get_active_session(register.id).id == open_session.id

    def test_lost_race_reported_as_already_open(self, db, actor_id, register, open_session, monkeypatch):
        """El índice único parcial rechaza la segunda apertura aunque la verificación no la vea"""
        monkeypatch.setattr(CashSessionService, "get_active_session", lambda self, register_id: None)

        with pytest.raises(SessionAlreadyOpen):
            CashSessionService(db).open_session(register.id, {"USD": "50"}, RATES, actor_id)

        monkeypatch.undo()
        sessions = CashSessionService(db).list_sessions(register.id)
        assert len(sessions) == 1

    def test_reopen_after_close(self, db, actor_id, register, open_session):
        service = CashSessionService(db)
        service.close_session(open_session.id, {"USD": "100"}, actor_id)

        reopened = service.open_session(register.id, {"USD": "20"}, RATES, actor_id)

        assert reopened.id != open_session.id
        assert service.get_active_session(register.id).id == reopened.id


class TestReconciliation:

    def test_cash_sale_balances_to_zero(self, db, actor_id, make_product, open_session):
        product = make_product()
        _cash_sale(db, actor_id, product, open_session, "50")

        reconciliation = CashSessionService(db).close_session(
            open_session.id, {"USD": "150", "VES": "0", "EUR": "0"}, actor_id
        )

        usd = _by_currency(reconciliation)[Currency.USD]
        assert usd.cash_sales == Decimal("50.00")
        assert usd.expected == Decimal("150.00")
        assert usd.variance == Decimal("0.00")

        closed = CashSessionService(db).get_session(open_session.id)
        assert closed.status == CashSessionStatus.CLOSED
        assert closed.variance_usd == Decimal("0.00")

    def test_currencies_reconcile_independently(self, db, actor_id, make_product, open_session):
        product = make_product()
        _cash_sale(db, actor_id, product, open_session, "365", currency=Currency.VES)

        # Sobran 5 USD y faltan 5 VES: no se compensan
        reconciliation = _by_currency(CashSessionService(db).close_session(
            open_session.id, {"USD": "105", "VES": "360", "EUR": "0"}, actor_id
        ))

        assert reconciliation[Currency.USD].variance == Decimal("5.00")
        assert reconciliation[Currency.VES].expected == Decimal("365.00")
        assert reconciliation[Currency.VES].variance == Decimal("-5.00")
        assert reconciliation[Currency.EUR].variance == Decimal("0.00")

    def test_non_cash_payments_excluded(self, db, actor_id, make_product, open_session):
        product = make_product()
        _cash_sale(db, actor_id, product, open_session, "40", method=PaymentMethod.CARD)

        usd = _by_currency(CashSessionService(db).get_reconciliation(open_session.id))[Currency.USD]

        assert usd.cash_sales == Decimal("0.00")
        assert usd.expected == Decimal("100.00")
        assert usd.counted is None

    def test_deposits_and_withdrawals(self, db, actor_id, open_session):
        service = CashSessionService(db)
        service.add_movement(open_session.id, CashMovementType.DEPOSIT, Decimal("30"), "USD", "Fondo adicional", actor_id)
        service.add_movement(open_session.id, CashMovementType.WITHDRAWAL, Decimal("45"), "USD", "Pago a proveedor", actor_id)
        service.add_movement(open_session.id, CashMovementType.DEPOSIT, Decimal("10"), "EUR", "Cambio", actor_id)

        reconciliation = _by_currency(service.close_session(
            open_session.id, {"USD": "85", "EUR": "10"}, actor_id
        ))

        assert reconciliation[Currency.USD].movements == Decimal("-15.00")
        assert reconciliation[Currency.USD].expected == Decimal("85.00")
        assert reconciliation[Currency.USD].variance == Decimal("0.00")
        assert reconciliation[Currency.EUR].variance == Decimal("0.00")
        assert len(service.list_movements(open_session.id)) == 3

    def test_voided_payments_excluded(self, db, actor_id, make_product, open_session):
        product = make_product()
        invoice = InvoiceService(db).create_draft(InvoiceCreate(
            client_name="Cliente",
            lines=[InvoiceLineCreate(product_id=product.id, quantity=Decimal("1"), unit_price=Decimal("50"))]
        ), actor_id)
        InvoiceService(db).issue(invoice.id, actor_id, cash_session_id=open_session.id)
        InvoiceService(db).record_payment(
            invoice.id, PaymentCreate(amount=Decimal("20"), method=PaymentMethod.CASH), actor_id
        )

        InvoiceService(db).cancel(
            invoice.id, actor_id, reason="Devolución", payment_policy=CancelledPaymentPolicy.VOID
        )

        usd = _by_currency(CashSessionService(db).get_reconciliation(open_session.id))[Currency.USD]
        assert usd.cash_sales == Decimal("0.00")

    def test_kept_payments_still_count(self, db, actor_id, make_product, open_session):
        product = make_product()
        invoice = InvoiceService(db).create_draft(InvoiceCreate(
            client_name="Cliente",
            lines=[InvoiceLineCreate(product_id=product.id, quantity=Decimal("1"), unit_price=Decimal("50"))]
        ), actor_id)
        InvoiceService(db).issue(invoice.id, actor_id, cash_session_id=open_session.id)
        InvoiceService(db).record_payment(
            invoice.id, PaymentCreate(amount=Decimal("20"), method=PaymentMethod.CASH), actor_id
        )

        InvoiceService(db).cancel(
            invoice.id, actor_id, reason="Devolución", payment_policy=CancelledPaymentPolicy.KEEP
        )

        usd = _by_currency(CashSessionService(db).get_reconciliation(open_session.id))[Currency.USD]
        assert usd.cash_sales == Decimal("20.00")

    def test_second_close_rejected(self, db, actor_id, open_session):
        service = CashSessionService(db)
        service.close_session(open_session.id, {"USD": "90"}, actor_id)

        with pytest.raises(InvalidStateTransition):
            service.close_session(open_session.id, {"USD": "100"}, actor_id)

        closed = service.get_session(open_session.id)
        assert closed.closing_amount_usd == Decimal("90.00")
        assert closed.variance_usd == Decimal("-10.00")

    def test_no_movements_after_close(self, db, actor_id, open_session):
        service = CashSessionService(db)
        service.close_session(open_session.id, {"USD": "100"}, actor_id)

        with pytest.raises(InvalidStateTransition):
            service.add_movement(open_session.id, CashMovementType.DEPOSIT, Decimal("1"), "USD", "Tarde", actor_id)


class TestCorrections:

    def test_correction_only_on_closed_session(self, db, actor_id, open_session):
        with pytest.raises(InvalidStateTransition):
            CashSessionService(db).record_correction(open_session.id, {"USD": "100"}, actor_id)

    def test_correction_keeps_original_close(self, db, actor_id, open_session):
        service = CashSessionService(db)
        service.close_session(open_session.id, {"USD": "90"}, actor_id)

        correction = service.record_correction(
            open_session.id, {"USD": "100"}, actor_id, notes="Billete encontrado en la gaveta"
        )

        assert correction.variance_usd == Decimal("0.00")
        closed = service.get_session(open_session.id)
        assert closed.closing_amount_usd == Decimal("90.00")
        assert closed.variance_usd == Decimal("-10.00")


class TestPosEndpoints:

    def test_register_session_flow(self, client, actor_headers):
        response = client.post("/api/v1/cash-registers/", headers=actor_headers, json={"name": "Caja 1"})
        assert response.status_code == 201, response.text
        register_id = response.json()["id"]

        response = client.post(f"/api/v1/cash-registers/{register_id}/sessions", headers=actor_headers, json={
            "opening_amounts": {"USD": "100", "VES": "500", "EUR": "0"},
            "exchange_rates": {"VES": "36.50", "EUR": "0.92"}
        })
        assert response.status_code == 201, response.text
        session_id = response.json()["id"]
        assert response.json()["status"] == "open"

        response = client.post(f"/api/v1/cash-registers/{register_id}/sessions", headers=actor_headers, json={
            "exchange_rates": {"VES": "36.50", "EUR": "0.92"}
        })
        assert response.status_code == 409
        assert response.json()["error"] == "session_already_open"

        response = client.post(f"/api/v1/cash-sessions/{session_id}/movements", headers=actor_headers, json={
            "type": "withdrawal", "amount": "100", "currency": "VES", "reason": "Compra de hielo"
        })
        assert response.status_code == 201, response.text

        active = client.get(f"/api/v1/cash-registers/{register_id}/active-session").json()
        assert active["id"] == session_id

        response = client.post(f"/api/v1/cash-sessions/{session_id}/close", headers=actor_headers, json={
            "counted_amounts": {"USD": "100", "VES": "400", "EUR": "0"}
        })
        assert response.status_code == 200, response.text
        currencies = {item["currency"]: item for item in response.json()["currencies"]}
        assert Decimal(currencies["VES"]["expected"]) == Decimal("400")
        assert Decimal(currencies["VES"]["variance"]) == Decimal("0")

        response = client.post(f"/api/v1/cash-sessions/{session_id}/close", headers=actor_headers, json={
            "counted_amounts": {"USD": "100"}
        })
        assert response.status_code == 409
        assert response.json()["error"] == "invalid_state_transition"

        assert client.get(f"/api/v1/cash-registers/{register_id}/active-session").json() is None

    def test_missing_rates_is_422(self, client, actor_headers, register):
        response = client.post(f"/api/v1/cash-registers/{register.id}/sessions", headers=actor_headers, json={
            "opening_amounts": {"USD": "100"}
        })
        assert response.status_code == 422

    def test_correction_endpoint(self, client, actor_headers, open_session):
        client.post(f"/api/v1/cash-sessions/{open_session.id}/close", headers=actor_headers, json={
            "counted_amounts": {"USD": "95"}
        })

        response = client.post(f"/api/v1/cash-sessions/{open_session.id}/corrections", headers=actor_headers, json={
            "counted_amounts": {"USD": "100"}, "notes": "Reconteo"
        })

        assert response.status_code == 201, response.text
        assert Decimal(response.json()["variance_usd"]) == Decimal("0")


# ===== TESTS DE CONCURRENCIA =====

class TestConcurrency:

    def test_close_with_moved_version_is_conflict(self, db, actor_id, open_session, monkeypatch):
        """Si otra escritura cambia la sesión durante el cierre, el cierre no se aplica"""
        original_cash_sales = CashSessionService._cash_sales

        def cash_sales_after_concurrent_write(self, session_id):
            self.db.execute(
                update(CashSession)
                .where(CashSession.id == session_id)
                .values(version=CashSession.version + 1)
                .execution_options(synchronize_session=False)
            )
            return original_cash_sales(self, session_id)

        monkeypatch.setattr(CashSessionService, "_cash_sales", cash_sales_after_concurrent_write)

        with pytest.raises(ConcurrencyConflict):
            CashSessionService(db).close_session(open_session.id, {"USD": "100"}, actor_id)

        monkeypatch.undo()
        session = CashSessionService(db).get_session(open_session.id)
        assert session.status == CashSessionStatus.OPEN
        assert session.closing_amount_usd is None

        CashSessionService(db).close_session(open_session.id, {"USD": "100"}, actor_id)
        assert CashSessionService(db).get_session(open_session.id).status == CashSessionStatus.CLOSED

    def test_close_from_two_connections(self, tmp_path):
        """Dos servicios con la sesión cargada: el segundo cierre falla y no pisa el primero"""
        engine = create_db_engine(f"sqlite:///{tmp_path / 'close.db'}")
        Base.metadata.create_all(bind=engine)
        Factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
        actor = uuid4()

        with Factory() as session:
            register = CashRegisterService(session).create_register(CashRegisterCreate(name="Caja 2"), actor)
            session_id = CashSessionService(session).open_session(register.id, {"USD": "100"}, RATES, actor).id

        with Factory() as first, Factory() as second:
            loaded = CashSessionService(second).get_session(session_id)
            second.commit()
            assert loaded.status == CashSessionStatus.OPEN

            CashSessionService(first).close_session(session_id, {"USD": "90"}, actor)

            with pytest.raises((InvalidStateTransition, ConcurrencyConflict)):
                CashSessionService(second).close_session(session_id, {"USD": "120"}, actor)

        with Factory() as session:
            stored = CashSessionService(session).get_session(session_id)
            assert stored.status == CashSessionStatus.CLOSED
            assert stored.closing_amount_usd == Decimal("90.00")
        engine.dispose()

    def test_stale_version_inside_atomic_is_conflict(self, db, open_session):
        session = CashSessionService(db).get_session(open_session.id)
        db.execute(
            update(CashSession.__table__)
            .where(CashSession.__table__.c.id == session.id)
            .values(version=session.version + 1)
        )

        with pytest.raises(ConcurrencyConflict):
            with atomic(db, "cash_session"):
                session.opening_notes = "Fondo revisado"

        reloaded = CashSessionService(db).get_session(open_session.id)
        assert reloaded.opening_notes is None
