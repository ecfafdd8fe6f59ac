from pydantic import BaseModel, Field
from decimal import Decimal
from typing import List

from app.modules.currency.calculator import Currency


class LineAmounts(BaseModel):
    quantity: Decimal = Field(..., gt=0, description="Cantidad")
    unit_price: Decimal = Field(..., ge=0, description="Precio unitario")
    tax_rate: Decimal = Field(Decimal("0"), ge=0, description="Tasa de impuesto en porcentaje (16 = 16%)")
    discount_percent: Decimal = Field(Decimal("0"), ge=0, le=100, description="Descuento en porcentaje")


class TotalsRequest(BaseModel):
    lines: List[LineAmounts] = Field(..., min_length=1)


class TotalsOut(BaseModel):
    subtotal: Decimal
    discount_total: Decimal
    tax_total: Decimal
    total: Decimal


class LegalWordsRequest(BaseModel):
    amount: Decimal = Field(..., description="Monto a representar en letras")
    currency_label: str = Field("BOLIVARES", min_length=1, max_length=40)


class LegalWordsOut(BaseModel):
    amount: Decimal
    text: str


class ConvertRequest(BaseModel):
    amount: Decimal
    rate: Decimal = Field(..., description="Unidades destino por unidad origen")
    from_currency: Currency = Currency.USD
    to_currency: Currency = Currency.VES


class ConvertOut(BaseModel):
    amount: Decimal
    rate: Decimal
    from_currency: Currency
    to_currency: Currency
    result: Decimal
