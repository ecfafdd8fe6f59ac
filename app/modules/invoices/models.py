from app.database.database import Base
from app.database.types import ScaledDecimal
from sqlalchemy import (
    Column, Integer, String, DateTime, ForeignKey, UniqueConstraint, Numeric, Enum, Date, Text, Uuid, Index
)
from sqlalchemy.orm import relationship
from datetime import date
from decimal import Decimal
from typing import Dict, FrozenSet
from uuid import uuid4
from app.common.mixins import TimestampMixin
from app.common.exceptions import InvalidStateTransition
from app.modules.currency.calculator import Currency
import enum


class InvoiceStatus(enum.Enum):
    DRAFT = "draft"          # Borrador, no afecta inventario
    ISSUED = "issued"        # Emitida, inventario descontado, pendiente de pago
    PARTIAL = "partial"      # Con abonos
    PAID = "paid"            # Pagada completamente
    CANCELLED = "cancelled"  # Anulada, inventario devuelto
    DELETED = "deleted"      # Borrador eliminado


class InvoiceAction(enum.Enum):
    EDIT = "edit"
    ISSUE = "issue"
    PAY = "pay"
    CANCEL = "cancel"
    DELETE = "delete"


# Acciones permitidas por estado. Todo estado debe figurar aquí.
ALLOWED_ACTIONS: Dict[InvoiceStatus, FrozenSet[InvoiceAction]] = {
    InvoiceStatus.DRAFT: frozenset({InvoiceAction.EDIT, InvoiceAction.ISSUE, InvoiceAction.DELETE}),
    InvoiceStatus.ISSUED: frozenset({InvoiceAction.PAY, InvoiceAction.CANCEL}),
    InvoiceStatus.PARTIAL: frozenset({InvoiceAction.PAY, InvoiceAction.CANCEL}),
    InvoiceStatus.PAID: frozenset(),
    InvoiceStatus.CANCELLED: frozenset(),
    InvoiceStatus.DELETED: frozenset(),
}


def ensure_invoice_action(invoice: "Invoice", action: InvoiceAction) -> None:
    if action not in ALLOWED_ACTIONS[invoice.status]:
        raise InvalidStateTransition("factura", invoice.status.value, action.value)


class PaymentMethod(enum.Enum):
    CASH = "cash"           # Efectivo
    TRANSFER = "transfer"   # Transferencia
    CARD = "card"           # Tarjeta
    MOBILE = "mobile"       # Pago móvil
    CHECK = "check"         # Cheque


class CancelledPaymentPolicy(enum.Enum):
    KEEP = "keep"   # Los pagos quedan intactos
    VOID = "void"   # Los pagos se marcan como anulados y salen del cuadre de caja


class Invoice(Base, TimestampMixin):
    __tablename__ = "invoices"

    id = Column(Uuid, primary_key=True, default=uuid4)

    # Numeración: se asigna solo al emitir
    series = Column(String(10), nullable=False)
    number = Column(String(50), nullable=True)

    # Cliente (snapshot)
    client_id = Column(Uuid, nullable=True, index=True)
    client_name = Column(String(200), nullable=False)
    client_tax_id = Column(String(30), nullable=True)

    status = Column(Enum(InvoiceStatus), nullable=False, default=InvoiceStatus.DRAFT)
    currency = Column(Enum(Currency), nullable=False, default=Currency.USD)
    exchange_rate = Column(Numeric(18, 6), nullable=False, default=1)  # VES por unidad de la moneda de la factura

    # Dates
    issue_date = Column(Date, nullable=False, default=date.today)
    due_date = Column(Date, nullable=True)

    notes = Column(Text, nullable=True)

    # Totals (calculated)
    subtotal = Column(Numeric(15, 2), nullable=False, default=0)
    discount_total = Column(Numeric(15, 2), nullable=False, default=0)
    tax_total = Column(Numeric(15, 2), nullable=False, default=0)
    total = Column(Numeric(15, 2), nullable=False, default=0)
    paid_amount = Column(Numeric(15, 2), nullable=False, default=0)

    # Sesión de caja bajo la que se emitió
    cash_session_id = Column(Uuid, ForeignKey("cash_sessions.id"), nullable=True, index=True)

    created_by = Column(Uuid, nullable=False)
    issued_by = Column(Uuid, nullable=True)
    issued_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_by = Column(Uuid, nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancel_reason = Column(Text, nullable=True)

    version = Column(Integer, nullable=False, default=1)

    # Relationships
    lines = relationship(
        "InvoiceLine",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceLine.position"
    )
    payments = relationship(
        "Payment",
        back_populates="invoice",
        cascade="save-update, merge",
        order_by="Payment.created_at"
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        UniqueConstraint("series", "number", name="uq_invoice_series_number"),
        Index("ix_invoices_status_issue_date", "status", "issue_date"),
    )

    @property
    def balance_due(self) -> Decimal:
        """Calcular saldo pendiente"""
        return Decimal(self.total or 0) - Decimal(self.paid_amount or 0)

    @property
    def is_editable(self) -> bool:
        return InvoiceAction.EDIT in ALLOWED_ACTIONS[self.status]


class InvoiceLine(Base, TimestampMixin):
    __tablename__ = "invoice_lines"

    id = Column(Uuid, primary_key=True, default=uuid4)
    invoice_id = Column(Uuid, ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False)
    position = Column(Integer, nullable=False)
    product_id = Column(Uuid, ForeignKey("products.id"), nullable=True)

    # Snapshot data (para preservar información si el producto cambia)
    description = Column(String(200), nullable=False)

    quantity = Column(ScaledDecimal(3), nullable=False)
    unit_price = Column(Numeric(15, 4), nullable=False)
    discount_percent = Column(Numeric(5, 2), nullable=False, default=0)
    tax_rate = Column(Numeric(5, 2), nullable=False, default=0)  # Porcentaje: 16 = 16%

    # Sin redondear
    line_subtotal = Column(Numeric(18, 6), nullable=False)
    line_tax = Column(Numeric(18, 6), nullable=False)

    invoice = relationship("Invoice", back_populates="lines")


class Payment(Base, TimestampMixin):
    __tablename__ = "payments"

    id = Column(Uuid, primary_key=True, default=uuid4)
    invoice_id = Column(Uuid, ForeignKey("invoices.id"), nullable=False, index=True)

    amount = Column(Numeric(15, 2), nullable=False)  # En la moneda del pago
    currency = Column(Enum(Currency), nullable=False)
    exchange_rate = Column(Numeric(18, 6), nullable=False, default=1)  # Moneda factura por unidad de pago
    applied_amount = Column(Numeric(15, 2), nullable=False)  # En la moneda de la factura
    method = Column(Enum(PaymentMethod), nullable=False)
    reference = Column(String(100), nullable=True)  # Número de referencia, cheque, etc.
    payment_date = Column(Date, nullable=False, default=date.today)
    notes = Column(Text, nullable=True)
    created_by = Column(Uuid, nullable=False)
    voided_at = Column(DateTime(timezone=True), nullable=True)

    invoice = relationship("Invoice", back_populates="payments")

    @property
    def is_voided(self) -> bool:
        return self.voided_at is not None


class InvoiceSequence(Base):
    """Secuencia de numeración por serie"""
    __tablename__ = "invoice_sequences"

    id = Column(Uuid, primary_key=True, default=uuid4)
    series = Column(String(10), nullable=False, unique=True)
    prefix = Column(String(10), nullable=False)
    current_number = Column(Integer, nullable=False, default=0)
