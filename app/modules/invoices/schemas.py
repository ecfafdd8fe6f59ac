from pydantic import BaseModel, Field, field_validator, model_validator
from decimal import Decimal
from typing import Optional, List
from uuid import UUID
from datetime import date, datetime

from app.modules.currency.calculator import Currency
from app.modules.invoices.models import InvoiceStatus, PaymentMethod, CancelledPaymentPolicy


# Invoice Line Schemas
class InvoiceLineCreate(BaseModel):
    product_id: Optional[UUID] = Field(None, description="Producto; sin producto la línea no mueve inventario")
    description: Optional[str] = Field(None, max_length=200, description="Por defecto el nombre del producto")
    quantity: Decimal = Field(..., gt=0, decimal_places=3, description="Cantidad debe ser mayor a 0, hasta 3 decimales")
    unit_price: Decimal = Field(..., ge=0, decimal_places=4, description="Precio unitario sin impuestos, hasta 4 decimales")
    tax_rate: Decimal = Field(Decimal("0"), ge=0, le=100, decimal_places=2, description="Impuesto en porcentaje (16 = 16%)")
    discount_percent: Decimal = Field(Decimal("0"), ge=0, le=100, decimal_places=2)

    @model_validator(mode='after')
    def validate_description(self):
        if self.product_id is None and not (self.description and self.description.strip()):
            raise ValueError('Una línea sin producto requiere descripción')
        return self


class InvoiceLineOut(BaseModel):
    id: UUID
    position: int
    product_id: Optional[UUID]
    description: str
    quantity: Decimal
    unit_price: Decimal
    discount_percent: Decimal
    tax_rate: Decimal
    line_subtotal: Decimal
    line_tax: Decimal

    model_config = {"from_attributes": True}


# Invoice Schemas
class InvoiceCreate(BaseModel):
    series: Optional[str] = Field(None, min_length=1, max_length=10, description="Serie de numeración; por defecto INVOICE_PREFIX")
    client_id: Optional[UUID] = None
    client_name: str = Field(..., min_length=1, max_length=200)
    client_tax_id: Optional[str] = Field(None, max_length=30)
    currency: Currency = Currency.USD
    exchange_rate: Decimal = Field(Decimal("1"), gt=0, description="VES por unidad de la moneda de la factura")
    issue_date: date = Field(default_factory=date.today)
    due_date: Optional[date] = None
    notes: Optional[str] = None
    lines: List[InvoiceLineCreate] = Field(..., min_length=1, description="Debe incluir al menos una línea")

    @model_validator(mode='after')
    def validate_due_date(self):
        if self.due_date and self.issue_date and self.due_date < self.issue_date:
            raise ValueError('La fecha de vencimiento no puede ser anterior a la fecha de emisión')
        return self

    @field_validator('series')
    @classmethod
    def normalize_series(cls, v):
        return v.strip().upper() if v else v


class InvoiceUpdate(BaseModel):
    client_id: Optional[UUID] = None
    client_name: Optional[str] = Field(None, min_length=1, max_length=200)
    client_tax_id: Optional[str] = Field(None, max_length=30)
    currency: Optional[Currency] = None
    exchange_rate: Optional[Decimal] = Field(None, gt=0)
    issue_date: Optional[date] = None
    due_date: Optional[date] = None
    notes: Optional[str] = None
    lines: Optional[List[InvoiceLineCreate]] = Field(None, min_length=1)

    @model_validator(mode='after')
    def validate_due_date(self):
        if self.due_date and self.issue_date and self.due_date < self.issue_date:
            raise ValueError('La fecha de vencimiento no puede ser anterior a la fecha de emisión')
        return self


class InvoiceOut(BaseModel):
    id: UUID
    series: str
    number: Optional[str]
    client_id: Optional[UUID]
    client_name: str
    client_tax_id: Optional[str]
    status: InvoiceStatus
    currency: Currency
    exchange_rate: Decimal
    issue_date: date
    due_date: Optional[date]
    notes: Optional[str]
    subtotal: Decimal
    discount_total: Decimal
    tax_total: Decimal
    total: Decimal
    paid_amount: Decimal
    balance_due: Decimal
    cash_session_id: Optional[UUID]
    issued_at: Optional[datetime]
    cancelled_at: Optional[datetime]
    cancel_reason: Optional[str]
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class PaymentOut(BaseModel):
    id: UUID
    invoice_id: UUID
    amount: Decimal
    currency: Currency
    exchange_rate: Decimal
    applied_amount: Decimal
    method: PaymentMethod
    reference: Optional[str]
    payment_date: date
    notes: Optional[str]
    created_by: UUID
    created_at: datetime
    voided_at: Optional[datetime]

    model_config = {"from_attributes": True}


class InvoiceDetail(InvoiceOut):
    """Factura con líneas, pagos y monto en letras"""
    lines: List[InvoiceLineOut]
    payments: List[PaymentOut] = []
    amount_in_words: Optional[str] = None


class InvoiceStatusCount(BaseModel):
    status: InvoiceStatus
    count: int


class InvoiceFilters(BaseModel):
    """Filtros para búsqueda de facturas"""
    status: Optional[InvoiceStatus] = None
    client_id: Optional[UUID] = None
    currency: Optional[Currency] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    search: Optional[str] = Field(None, description="Buscar en número, nombre del cliente o notas")


class InvoiceList(BaseModel):
    invoices: List[InvoiceOut]
    total: int
    limit: int
    offset: int
    applied_filters: Optional[InvoiceFilters] = None
    counts_by_status: List[InvoiceStatusCount] = Field(default_factory=list)


# Lifecycle requests
class InvoiceIssueRequest(BaseModel):
    cash_session_id: Optional[UUID] = Field(None, description="Sesión de caja abierta bajo la que se emite")


class InvoiceCancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500, description="Motivo de la anulación")
    payment_policy: Optional[CancelledPaymentPolicy] = Field(
        None, description="keep: pagos intactos | void: pagos anulados. Por defecto la configuración"
    )


# Payment Schemas
class PaymentCreate(BaseModel):
    amount: Decimal = Field(..., gt=0, description="Monto en la moneda del pago")
    currency: Optional[Currency] = Field(None, description="Por defecto la moneda de la factura")
    exchange_rate: Optional[Decimal] = Field(
        None, gt=0, description="Unidades de la moneda de la factura por unidad del pago; requerida si las monedas difieren"
    )
    method: PaymentMethod
    reference: Optional[str] = Field(None, max_length=100)
    payment_date: date = Field(default_factory=date.today)
    notes: Optional[str] = None


class PaymentList(BaseModel):
    payments: List[PaymentOut]
    total: int
