"""
Esquemas Pydantic para el módulo POS (Point of Sale)

Define la validación de datos de entrada y salida para:
- CashRegister: Cajas registradoras
- CashSession: Apertura, cierre y cuadre por moneda
- CashMovement: Depósitos y retiros
- CashSessionCorrection: Reconteos posteriores al cierre
"""

from pydantic import BaseModel, Field
from decimal import Decimal
from typing import Optional, List
from uuid import UUID
from datetime import datetime

from app.modules.currency.calculator import Currency
from app.modules.pos.models import CashSessionStatus, CashMovementType


# ===== MONTOS POR MONEDA =====

class CurrencyAmounts(BaseModel):
    """Un monto por cada moneda de la caja"""
    USD: Decimal = Field(Decimal("0"), ge=0)
    VES: Decimal = Field(Decimal("0"), ge=0)
    EUR: Decimal = Field(Decimal("0"), ge=0)


class ExchangeRates(BaseModel):
    """Tasas capturadas al abrir: unidades de cada moneda por 1 USD"""
    VES: Decimal = Field(..., gt=0)
    EUR: Decimal = Field(..., gt=0)


# ===== CASH REGISTER SCHEMAS =====

class CashRegisterCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100, description="Nombre de la caja")
    location: Optional[str] = Field(None, max_length=200)


class CashRegisterOut(BaseModel):
    id: UUID
    name: str
    location: Optional[str]
    is_active: bool
    created_at: datetime

    model_config = {"from_attributes": True}


class CashRegisterList(BaseModel):
    registers: List[CashRegisterOut]
    total: int


# ===== CASH SESSION SCHEMAS =====

class CashSessionOpen(BaseModel):
    opening_amounts: CurrencyAmounts = Field(default_factory=CurrencyAmounts)
    exchange_rates: ExchangeRates
    notes: Optional[str] = Field(None, max_length=500, description="Notas de apertura")


class CashSessionClose(BaseModel):
    counted_amounts: CurrencyAmounts = Field(..., description="Efectivo contado por moneda")
    notes: Optional[str] = Field(None, max_length=500, description="Notas de cierre")


class CashSessionOut(BaseModel):
    id: UUID
    register_id: UUID
    status: CashSessionStatus
    opening_amount_usd: Decimal
    opening_amount_ves: Decimal
    opening_amount_eur: Decimal
    exchange_rate_ves: Decimal
    exchange_rate_eur: Decimal
    opened_by: UUID
    opened_at: datetime
    opening_notes: Optional[str]
    closing_amount_usd: Optional[Decimal] = None
    closing_amount_ves: Optional[Decimal] = None
    closing_amount_eur: Optional[Decimal] = None
    expected_amount_usd: Optional[Decimal] = None
    expected_amount_ves: Optional[Decimal] = None
    expected_amount_eur: Optional[Decimal] = None
    variance_usd: Optional[Decimal] = None
    variance_ves: Optional[Decimal] = None
    variance_eur: Optional[Decimal] = None
    closed_by: Optional[UUID] = None
    closed_at: Optional[datetime] = None
    closing_notes: Optional[str] = None

    model_config = {"from_attributes": True}


class CurrencyReconciliation(BaseModel):
    """Cuadre de una moneda; nunca se compensa con otra"""
    currency: Currency
    opening: Decimal
    cash_sales: Decimal
    movements: Decimal
    expected: Decimal
    counted: Optional[Decimal] = None
    variance: Optional[Decimal] = None


class SessionReconciliation(BaseModel):
    session_id: UUID
    register_id: UUID
    status: CashSessionStatus
    currencies: List[CurrencyReconciliation]


# ===== CASH MOVEMENT SCHEMAS =====

class CashMovementCreate(BaseModel):
    type: CashMovementType
    amount: Decimal = Field(..., gt=0, description="Monto siempre positivo")
    currency: Currency
    reason: str = Field(..., min_length=1, max_length=200)
    reference: Optional[str] = Field(None, max_length=100)


class CashMovementOut(BaseModel):
    id: UUID
    session_id: UUID
    type: CashMovementType
    amount: Decimal
    currency: Currency
    reason: str
    reference: Optional[str]
    created_by: UUID
    created_at: datetime

    model_config = {"from_attributes": True}


class CashMovementList(BaseModel):
    movements: List[CashMovementOut]
    total: int


# ===== CORRECTION SCHEMAS =====

class CashSessionCorrectionCreate(BaseModel):
    counted_amounts: CurrencyAmounts
    notes: Optional[str] = Field(None, max_length=500)


class CashSessionCorrectionOut(BaseModel):
    id: UUID
    session_id: UUID
    counted_amount_usd: Decimal
    counted_amount_ves: Decimal
    counted_amount_eur: Decimal
    variance_usd: Optional[Decimal] = None
    variance_ves: Optional[Decimal] = None
    variance_eur: Optional[Decimal] = None
    notes: Optional[str]
    created_by: UUID
    created_at: datetime
