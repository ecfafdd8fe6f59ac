"""
Servicios del módulo POS

- CashRegisterService: alta, listado y desactivación de cajas
- CashSessionService: apertura, movimientos, cierre con cuadre por moneda y reconteos

Cuadre por moneda, de forma independiente:
    esperado = apertura + pagos en efectivo (no anulados) de facturas emitidas
               bajo la sesión + depósitos - retiros
    diferencia = contado - esperado
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional
from uuid import UUID
import logging

from sqlalchemy import update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.common.exceptions import (
    ValidationError, NotFound, InvalidStateTransition, SessionAlreadyOpen, ConcurrencyConflict
)
from app.database.unit_of_work import atomic
from app.modules.currency.calculator import Currency, money, to_decimal, parse_currency
from app.modules.invoices.models import Invoice, Payment, PaymentMethod
from app.modules.pos.models import (
    CashRegister, CashSession, CashSessionStatus, CashSessionAction, CashMovement, CashMovementType,
    CashSessionCorrection, ensure_session_action
)
from app.modules.pos.schemas import (
    CashRegisterCreate, CurrencyReconciliation, SessionReconciliation, CashSessionCorrectionOut
)

logger = logging.getLogger(__name__)

RATE_CURRENCIES = (Currency.VES, Currency.EUR)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _as_mapping(values: Any) -> Mapping:
    if values is None:
        return {}
    if hasattr(values, "model_dump"):
        return values.model_dump()
    return values


def normalize_amounts(values: Any, field: str = "amounts") -> Dict[Currency, Decimal]:
    """Monto por moneda (USD, VES, EUR); las monedas ausentes valen 0"""
    amounts = {currency: Decimal("0.00") for currency in Currency}
    for key, value in _as_mapping(values).items():
        currency = parse_currency(key)
        amount = money(value if value is not None else 0)
        if amount < 0:
            raise ValidationError(f"El monto en {currency.value} no puede ser negativo", field=field)
        amounts[currency] = amount
    return amounts


def normalize_rates(values: Any) -> Dict[Currency, Decimal]:
    """Tasas VES y EUR por 1 USD; ambas obligatorias y mayores que cero"""
    given = {parse_currency(key): value for key, value in _as_mapping(values).items()}
    rates = {}
    for currency in RATE_CURRENCIES:
        if given.get(currency) is None:
            raise ValidationError(f"Falta la tasa de cambio {currency.value}", field="exchange_rates")
        rate = to_decimal(given[currency], "exchange_rates")
        if rate <= 0:
            raise ValidationError(f"La tasa {currency.value} debe ser mayor que cero", field="exchange_rates")
        rates[currency] = rate
    return rates


class CashRegisterService:
    """Servicio para gestión de cajas registradoras"""

    def __init__(self, db: Session):
        self.db = db

    def list_registers(self, include_inactive: bool = False) -> List[CashRegister]:
        query = self.db.query(CashRegister)
        if not include_inactive:
            query = query.filter(CashRegister.is_active.is_(True))
        return query.order_by(CashRegister.name).all()

    def get_register(self, register_id: UUID) -> CashRegister:
        register = self.db.query(CashRegister).filter(CashRegister.id == register_id).first()
        if not register:
            raise NotFound("Caja", register_id)
        return register

    def create_register(self, data: CashRegisterCreate, actor_id: UUID) -> CashRegister:
        name = data.name.strip()
        if not name:
            raise ValidationError("El nombre de la caja es obligatorio", field="name")
        if self.db.query(CashRegister).filter(func.lower(CashRegister.name) == name.lower()).first():
            raise ValidationError(f"Ya existe una caja con el nombre '{name}'", field="name")

        try:
            with atomic(self.db, "cash_register"):
                register = CashRegister(name=name, location=data.location, is_active=True)
                self.db.add(register)
        except IntegrityError:
            raise ValidationError(f"Ya existe una caja con el nombre '{name}'", field="name")

        logger.info(f"Cash register '{name}' created by {actor_id}")
        return register

    def deactivate_register(self, register_id: UUID, actor_id: UUID) -> CashRegister:
        """Las cajas no se eliminan; solo se desactivan si no tienen sesión abierta"""
        with atomic(self.db, "cash_register"):
            register = self.get_register(register_id)
            open_session = self.db.query(CashSession).filter(
                CashSession.register_id == register_id,
                CashSession.status == CashSessionStatus.OPEN
            ).first()
            if open_session:
                raise InvalidStateTransition(
                    "caja", "open_session", "deactivate",
                    message="No se puede desactivar una caja con una sesión abierta"
                )
            register.is_active = False

        logger.info(f"Cash register '{register.name}' deactivated by {actor_id}")
        return register


class CashSessionService:
    """Servicio para sesiones de caja"""

    def __init__(self, db: Session):
        self.db = db

    # ===== LECTURA =====

    def get_session(self, session_id: UUID) -> CashSession:
        session = self.db.query(CashSession).filter(
            CashSession.id == session_id
        ).populate_existing().first()
        if not session:
            raise NotFound("Sesión de caja", session_id)
        return session

    def get_active_session(self, register_id: UUID) -> Optional[CashSession]:
        """Sesión abierta de la caja, o None. Solo lectura."""
        return self.db.query(CashSession).filter(
            CashSession.register_id == register_id,
            CashSession.status == CashSessionStatus.OPEN
        ).populate_existing().first()

    def list_sessions(self, register_id: UUID, limit: int = 100, offset: int = 0) -> List[CashSession]:
        CashRegisterService(self.db).get_register(register_id)
        return self.db.query(CashSession).filter(
            CashSession.register_id == register_id
        ).order_by(CashSession.opened_at.desc()).offset(offset).limit(limit).all()

    def list_movements(self, session_id: UUID) -> List[CashMovement]:
        self.get_session(session_id)
        return self.db.query(CashMovement).filter(
            CashMovement.session_id == session_id
        ).order_by(CashMovement.created_at).all()

    # ===== APERTURA =====

    def open_session(
        self,
        register_id: UUID,
        opening_amounts: Any,
        exchange_rates: Any,
        actor_id: UUID,
        notes: Optional[str] = None
    ) -> CashSession:
        """
        Abrir sesión de caja.

        La verificación y la inserción van en la misma transacción; si otra
        apertura gana la carrera, el índice único parcial rechaza la segunda
        y se reporta como SessionAlreadyOpen.
        """
        amounts = normalize_amounts(opening_amounts, "opening_amounts")
        rates = normalize_rates(exchange_rates)

        try:
            with atomic(self.db, "cash_session"):
                register = CashRegisterService(self.db).get_register(register_id)
                if not register.is_active:
                    raise ValidationError("La caja está inactiva", field="register_id", register_id=str(register_id))

                if self.get_active_session(register_id):
                    logger.warning(f"Open rejected: register {register.name} already has an open session")
                    raise SessionAlreadyOpen(register_id)

                session = CashSession(
                    register_id=register_id,
                    status=CashSessionStatus.OPEN,
                    opening_amount_usd=amounts[Currency.USD],
                    opening_amount_ves=amounts[Currency.VES],
                    opening_amount_eur=amounts[Currency.EUR],
                    exchange_rate_ves=rates[Currency.VES],
                    exchange_rate_eur=rates[Currency.EUR],
                    opened_by=actor_id,
                    opened_at=_now(),
                    opening_notes=notes
                )
                self.db.add(session)
                self.db.flush()
        except IntegrityError:
            logger.warning(f"Open rejected by unique index: register {register_id} already has an open session")
            raise SessionAlreadyOpen(register_id)

        logger.info(
            f"Cash session {session.id} opened on register {register_id} by {actor_id} "
            f"(USD {amounts[Currency.USD]}, VES {amounts[Currency.VES]}, EUR {amounts[Currency.EUR]})"
        )
        return session

    # ===== MOVIMIENTOS =====

    def add_movement(
        self,
        session_id: UUID,
        movement_type: CashMovementType,
        amount: Decimal,
        currency: Any,
        reason: str,
        actor_id: UUID,
        reference: Optional[str] = None
    ) -> CashMovement:
        """Depósito o retiro manual; solo con la sesión abierta"""
        amount = money(amount)
        if amount <= 0:
            raise ValidationError("El monto del movimiento debe ser mayor a 0", field="amount")
        if not reason or not reason.strip():
            raise ValidationError("El movimiento requiere un motivo", field="reason")
        currency = parse_currency(currency)

        with atomic(self.db, "cash_session"):
            session = self.get_session(session_id)
            ensure_session_action(session, CashSessionAction.MOVE)

            movement = CashMovement(
                session_id=session_id,
                type=movement_type,
                amount=amount,
                currency=currency,
                reason=reason.strip(),
                reference=reference,
                created_by=actor_id
            )
            self.db.add(movement)

        logger.info(f"Cash {movement_type.value} of {amount} {currency.value} on session {session_id} by {actor_id}")
        return movement

    # ===== CUADRE =====

    def _cash_sales(self, session_id: UUID) -> Dict[Currency, Decimal]:
        """Pagos en efectivo no anulados de facturas emitidas bajo la sesión, por moneda del pago"""
        totals = {currency: Decimal("0.00") for currency in Currency}
        rows = self.db.query(Payment.currency, func.sum(Payment.amount)).join(
            Invoice, Payment.invoice_id == Invoice.id
        ).filter(
            Invoice.cash_session_id == session_id,
            Payment.method == PaymentMethod.CASH,
            Payment.voided_at.is_(None)
        ).group_by(Payment.currency).all()

        for currency, amount in rows:
            totals[currency] = money(amount or 0)
        return totals

    def _movement_totals(self, session_id: UUID) -> Dict[Currency, Decimal]:
        totals = {currency: Decimal("0.00") for currency in Currency}
        rows = self.db.query(CashMovement.type, CashMovement.currency, func.sum(CashMovement.amount)).filter(
            CashMovement.session_id == session_id
        ).group_by(CashMovement.type, CashMovement.currency).all()

        for movement_type, currency, amount in rows:
            amount = money(amount or 0)
            totals[currency] += amount if movement_type == CashMovementType.DEPOSIT else -amount
        return totals

    def _reconcile(self, session: CashSession) -> SessionReconciliation:
        cash_sales = self._cash_sales(session.id)
        movements = self._movement_totals(session.id)
        closed = session.status == CashSessionStatus.CLOSED

        currencies = []
        for currency in Currency:
            opening = money(session.opening_amount(currency))
            if closed and session.expected_amount(currency) is not None:
                expected = money(session.expected_amount(currency))
                counted = money(session.closing_amount(currency))
                variance = money(counted - expected)
            else:
                expected = money(opening + cash_sales[currency] + movements[currency])
                counted = None
                variance = None
            currencies.append(CurrencyReconciliation(
                currency=currency,
                opening=opening,
                cash_sales=cash_sales[currency],
                movements=movements[currency],
                expected=expected,
                counted=counted,
                variance=variance
            ))

        return SessionReconciliation(
            session_id=session.id,
            register_id=session.register_id,
            status=session.status,
            currencies=currencies
        )

    def get_reconciliation(self, session_id: UUID) -> SessionReconciliation:
        """Cuadre en vivo si la sesión está abierta; el guardado al cierre si está cerrada"""
        return self._reconcile(self.get_session(session_id))

    # ===== CIERRE =====

    def close_session(
        self,
        session_id: UUID,
        counted_amounts: Any,
        actor_id: UUID,
        notes: Optional[str] = None
    ) -> SessionReconciliation:
        """
        Cerrar sesión de caja.

        Calcula el esperado por moneda y guarda contado y esperado con una
        única escritura condicionada a status = OPEN. El cierre es terminal:
        un segundo cierre falla con InvalidStateTransition y un cierre
        concurrente perdido con ConcurrencyConflict. La diferencia es un
        dato del cuadre, no un error.
        """
        counted = normalize_amounts(counted_amounts, "counted_amounts")

        with atomic(self.db, "cash_session"):
            session = self.get_session(session_id)
            ensure_session_action(session, CashSessionAction.CLOSE)

            cash_sales = self._cash_sales(session_id)
            movements = self._movement_totals(session_id)
            expected = {
                currency: money(session.opening_amount(currency) + cash_sales[currency] + movements[currency])
                for currency in Currency
            }

            result = self.db.execute(
                update(CashSession)
                .where(
                    CashSession.id == session_id,
                    CashSession.status == CashSessionStatus.OPEN,
                    CashSession.version == session.version
                )
                .values(
                    status=CashSessionStatus.CLOSED,
                    closing_amount_usd=counted[Currency.USD],
                    closing_amount_ves=counted[Currency.VES],
                    closing_amount_eur=counted[Currency.EUR],
                    expected_amount_usd=expected[Currency.USD],
                    expected_amount_ves=expected[Currency.VES],
                    expected_amount_eur=expected[Currency.EUR],
                    closed_by=actor_id,
                    closed_at=_now(),
                    closing_notes=notes,
                    version=session.version + 1
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                logger.warning(f"Close rejected: cash session {session_id} was modified concurrently")
                raise ConcurrencyConflict("cash_session")

        session = self.get_session(session_id)
        reconciliation = self._reconcile(session)
        logger.info(
            f"Cash session {session_id} closed by {actor_id}; variance "
            + ", ".join(f"{item.currency.value} {item.variance}" for item in reconciliation.currencies)
        )
        return reconciliation

    # ===== RECONTEOS =====

    def record_correction(
        self,
        session_id: UUID,
        counted_amounts: Any,
        actor_id: UUID,
        notes: Optional[str] = None
    ) -> CashSessionCorrectionOut:
        """Nuevo conteo de una sesión cerrada; la sesión no se modifica"""
        counted = normalize_amounts(counted_amounts, "counted_amounts")

        with atomic(self.db, "cash_session"):
            session = self.get_session(session_id)
            ensure_session_action(session, CashSessionAction.CORRECT)

            correction = CashSessionCorrection(
                session_id=session_id,
                counted_amount_usd=counted[Currency.USD],
                counted_amount_ves=counted[Currency.VES],
                counted_amount_eur=counted[Currency.EUR],
                notes=notes,
                created_by=actor_id
            )
            self.db.add(correction)
            self.db.flush()

        logger.info(f"Correction {correction.id} recorded on cash session {session_id} by {actor_id}")
        return self.correction_to_output(correction)

    @staticmethod
    def correction_to_output(correction: CashSessionCorrection) -> CashSessionCorrectionOut:
        return CashSessionCorrectionOut(
            id=correction.id,
            session_id=correction.session_id,
            counted_amount_usd=correction.counted_amount_usd,
            counted_amount_ves=correction.counted_amount_ves,
            counted_amount_eur=correction.counted_amount_eur,
            variance_usd=correction.variance(Currency.USD),
            variance_ves=correction.variance(Currency.VES),
            variance_eur=correction.variance(Currency.EUR),
            notes=correction.notes,
            created_by=correction.created_by,
            created_at=correction.created_at
        )
