"""
Modelos SQLAlchemy para el módulo POS (Point of Sale)

Este módulo maneja las operaciones de caja:
- CashRegister: Cajas registradoras; nunca se eliminan, solo se desactivan
- CashSession: Ciclo apertura/cierre de una caja con montos por moneda
- CashMovement: Depósitos y retiros manuales durante la sesión
- CashSessionCorrection: Reconteos posteriores al cierre

Invariante: a lo sumo una sesión abierta por caja, reforzada con un
índice único parcial sobre register_id donde status = 'OPEN'.
"""

from app.database.database import Base
from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Numeric, Enum, Text, Integer, Uuid, Index, text
from sqlalchemy.orm import relationship
from decimal import Decimal
from typing import Dict, FrozenSet, Optional
from uuid import uuid4
from app.common.mixins import TimestampMixin
from app.common.exceptions import InvalidStateTransition
from app.modules.currency.calculator import Currency
import enum


# ===== ENUMS =====

class CashSessionStatus(enum.Enum):
    """Estados de la sesión de caja"""
    OPEN = "open"       # Caja abierta
    CLOSED = "closed"   # Caja cerrada, terminal


class CashSessionAction(enum.Enum):
    MOVE = "move"          # Registrar depósito o retiro
    CLOSE = "close"
    CORRECT = "correct"    # Reconteo posterior al cierre


ALLOWED_SESSION_ACTIONS: Dict[CashSessionStatus, FrozenSet[CashSessionAction]] = {
    CashSessionStatus.OPEN: frozenset({CashSessionAction.MOVE, CashSessionAction.CLOSE}),
    CashSessionStatus.CLOSED: frozenset({CashSessionAction.CORRECT}),
}


def ensure_session_action(session: "CashSession", action: CashSessionAction) -> None:
    if action not in ALLOWED_SESSION_ACTIONS[session.status]:
        raise InvalidStateTransition("sesión de caja", session.status.value, action.value)


class CashMovementType(enum.Enum):
    """Tipos de movimiento manual de caja"""
    DEPOSIT = "deposit"         # Ingreso manual
    WITHDRAWAL = "withdrawal"   # Egreso manual


# ===== MODELOS =====

class CashRegister(Base, TimestampMixin):
    __tablename__ = "cash_registers"

    id = Column(Uuid, primary_key=True, default=uuid4)
    name = Column(String(100), nullable=False, unique=True, index=True)
    location = Column(String(200), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    sessions = relationship("CashSession", back_populates="register", order_by="CashSession.opened_at")


class CashSession(Base, TimestampMixin):
    """
    Sesión de caja

    Los montos de apertura, cierre y esperados se guardan por moneda, y las
    tasas VES y EUR (por 1 USD) quedan como snapshot al abrir. Una vez
    cerrada la sesión no se vuelve a modificar.
    """
    __tablename__ = "cash_sessions"

    id = Column(Uuid, primary_key=True, default=uuid4)
    register_id = Column(Uuid, ForeignKey("cash_registers.id"), nullable=False, index=True)
    status = Column(Enum(CashSessionStatus), nullable=False, default=CashSessionStatus.OPEN)

    # Apertura
    opening_amount_usd = Column(Numeric(15, 2), nullable=False, default=0)
    opening_amount_ves = Column(Numeric(15, 2), nullable=False, default=0)
    opening_amount_eur = Column(Numeric(15, 2), nullable=False, default=0)
    exchange_rate_ves = Column(Numeric(18, 6), nullable=False)
    exchange_rate_eur = Column(Numeric(18, 6), nullable=False)
    opened_by = Column(Uuid, nullable=False)
    opened_at = Column(DateTime(timezone=True), nullable=False)
    opening_notes = Column(Text, nullable=True)

    # Cierre (solo se llena al cerrar)
    closing_amount_usd = Column(Numeric(15, 2), nullable=True)
    closing_amount_ves = Column(Numeric(15, 2), nullable=True)
    closing_amount_eur = Column(Numeric(15, 2), nullable=True)
    expected_amount_usd = Column(Numeric(15, 2), nullable=True)
    expected_amount_ves = Column(Numeric(15, 2), nullable=True)
    expected_amount_eur = Column(Numeric(15, 2), nullable=True)
    closed_by = Column(Uuid, nullable=True)
    closed_at = Column(DateTime(timezone=True), nullable=True)
    closing_notes = Column(Text, nullable=True)

    version = Column(Integer, nullable=False, default=1)

    # Relationships
    register = relationship("CashRegister", back_populates="sessions")
    movements = relationship("CashMovement", back_populates="session", order_by="CashMovement.created_at")
    corrections = relationship("CashSessionCorrection", back_populates="session", order_by="CashSessionCorrection.created_at")

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index(
            "uq_cash_session_register_open",
            "register_id",
            unique=True,
            sqlite_where=text("status = 'OPEN'"),
            postgresql_where=text("status = 'OPEN'")
        ),
    )

    def opening_amount(self, currency: Currency) -> Decimal:
        return Decimal(getattr(self, f"opening_amount_{currency.value.lower()}") or 0)

    def closing_amount(self, currency: Currency) -> Optional[Decimal]:
        return getattr(self, f"closing_amount_{currency.value.lower()}")

    def expected_amount(self, currency: Currency) -> Optional[Decimal]:
        return getattr(self, f"expected_amount_{currency.value.lower()}")

    def variance(self, currency: Currency) -> Optional[Decimal]:
        """Contado menos esperado, a partir de los montos guardados"""
        closing = self.closing_amount(currency)
        expected = self.expected_amount(currency)
        if self.status != CashSessionStatus.CLOSED or closing is None or expected is None:
            return None
        return Decimal(closing) - Decimal(expected)

    @property
    def variance_usd(self):
        return self.variance(Currency.USD)

    @property
    def variance_ves(self):
        return self.variance(Currency.VES)

    @property
    def variance_eur(self):
        return self.variance(Currency.EUR)


class CashMovement(Base, TimestampMixin):
    """
    Movimientos manuales de caja

    - DEPOSIT: suma al efectivo esperado de su moneda
    - WITHDRAWAL: resta del efectivo esperado de su moneda
    """
    __tablename__ = "cash_movements"

    id = Column(Uuid, primary_key=True, default=uuid4)
    session_id = Column(Uuid, ForeignKey("cash_sessions.id"), nullable=False, index=True)
    type = Column(Enum(CashMovementType), nullable=False)
    amount = Column(Numeric(15, 2), nullable=False)  # Siempre el valor absoluto
    currency = Column(Enum(Currency), nullable=False)
    reason = Column(String(200), nullable=False)
    reference = Column(String(100), nullable=True)
    created_by = Column(Uuid, nullable=False)

    session = relationship("CashSession", back_populates="movements")

    @property
    def signed_amount(self) -> Decimal:
        amount = Decimal(self.amount)
        return amount if self.type == CashMovementType.DEPOSIT else -amount


class CashSessionCorrection(Base, TimestampMixin):
    """Reconteo de una sesión cerrada; la sesión original no se modifica"""
    __tablename__ = "cash_session_corrections"

    id = Column(Uuid, primary_key=True, default=uuid4)
    session_id = Column(Uuid, ForeignKey("cash_sessions.id"), nullable=False, index=True)
    counted_amount_usd = Column(Numeric(15, 2), nullable=False)
    counted_amount_ves = Column(Numeric(15, 2), nullable=False)
    counted_amount_eur = Column(Numeric(15, 2), nullable=False)
    notes = Column(Text, nullable=True)
    created_by = Column(Uuid, nullable=False)

    session = relationship("CashSession", back_populates="corrections")

    def counted_amount(self, currency: Currency) -> Decimal:
        return Decimal(getattr(self, f"counted_amount_{currency.value.lower()}"))

    def variance(self, currency: Currency) -> Optional[Decimal]:
        expected = self.session.expected_amount(currency)
        if expected is None:
            return None
        return self.counted_amount(currency) - Decimal(expected)
