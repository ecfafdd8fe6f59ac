"""
Cálculo de totales de factura y conversión de monedas

Cálculo puro, sin estado ni acceso a base de datos. Las líneas no se
redondean; el redondeo (2 decimales, ROUND_HALF_UP) se aplica una sola vez
sobre las sumas, de modo que el resultado no depende del orden de las líneas.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Any, Iterable, Mapping, NamedTuple
import enum

from app.common.exceptions import ValidationError


TWO_PLACES = Decimal("0.01")
HUNDRED = Decimal("100")
ZERO = Decimal("0")


class Currency(str, enum.Enum):
    """Monedas soportadas por la caja"""
    USD = "USD"
    VES = "VES"
    EUR = "EUR"


class LineTotal(NamedTuple):
    line_subtotal: Decimal
    line_tax: Decimal


class InvoiceTotals(NamedTuple):
    subtotal: Decimal
    discount_total: Decimal
    tax_total: Decimal
    total: Decimal


def to_decimal(value: Any, field: str = "amount") -> Decimal:
    """Convierte un número a Decimal sin pasar por float"""
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError, TypeError):
            raise ValidationError(f"Valor numérico inválido para '{field}': {value!r}", field=field)
    if not result.is_finite():
        raise ValidationError(f"Valor numérico inválido para '{field}': {value!r}", field=field)
    return result


def money(value: Any) -> Decimal:
    """Redondea a 2 decimales con ROUND_HALF_UP"""
    return to_decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def parse_currency(value: Any) -> Currency:
    if isinstance(value, Currency):
        return value
    try:
        return Currency(str(value).upper())
    except ValueError:
        raise ValidationError(
            f"Moneda desconocida: {value!r}. Valores permitidos: USD, VES, EUR",
            field="currency"
        )


def _non_negative(value: Any, field: str) -> Decimal:
    result = to_decimal(value, field)
    if result < 0:
        raise ValidationError(f"'{field}' no puede ser negativo", field=field, value=str(result))
    return result


def _discount_percent(value: Any) -> Decimal:
    result = _non_negative(value if value is not None else ZERO, "discount_percent")
    if result > HUNDRED:
        raise ValidationError("El descuento no puede superar el 100%", field="discount_percent")
    return result


def _line_field(line: Any, name: str, default: Any = None) -> Any:
    if isinstance(line, Mapping):
        return line.get(name, default)
    return getattr(line, name, default)


def compute_line_total(quantity, unit_price, tax_rate, discount_percent=ZERO) -> LineTotal:
    """
    Subtotal e impuesto de una línea, sin redondear.

    tax_rate y discount_percent son porcentajes (16 significa 16%).
    """
    quantity = _non_negative(quantity, "quantity")
    unit_price = _non_negative(unit_price, "unit_price")
    tax_rate = _non_negative(tax_rate, "tax_rate")
    discount_percent = _discount_percent(discount_percent)

    gross = quantity * unit_price
    line_subtotal = gross - gross * discount_percent / HUNDRED
    line_tax = line_subtotal * tax_rate / HUNDRED
    return LineTotal(line_subtotal, line_tax)


def compute_invoice_totals(lines: Iterable[Any]) -> InvoiceTotals:
    """
    Totales de la factura a partir de sus líneas.

    Acepta schemas, filas ORM o diccionarios con quantity, unit_price,
    tax_rate y opcionalmente discount_percent. subtotal, tax_total y
    discount_total se redondean por separado; total = round(subtotal + tax_total).
    """
    subtotal = ZERO
    tax_total = ZERO
    discount_total = ZERO

    for line in lines:
        quantity = _line_field(line, "quantity")
        unit_price = _line_field(line, "unit_price")
        discount_percent = _line_field(line, "discount_percent", ZERO)
        line_subtotal, line_tax = compute_line_total(
            quantity,
            unit_price,
            _line_field(line, "tax_rate", ZERO),
            discount_percent
        )
        subtotal += line_subtotal
        tax_total += line_tax
        discount_total += to_decimal(quantity) * to_decimal(unit_price) * _discount_percent(discount_percent) / HUNDRED

    subtotal = money(subtotal)
    tax_total = money(tax_total)
    return InvoiceTotals(
        subtotal=subtotal,
        discount_total=money(discount_total),
        tax_total=tax_total,
        total=money(subtotal + tax_total)
    )


def convert(amount, rate) -> Decimal:
    """
    Convierte un monto usando una tasa instantánea (unidades destino por
    unidad origen). La tasa siempre viene del registro dueño, nunca en vivo.
    """
    rate = to_decimal(rate, "exchange_rate")
    if rate <= 0:
        raise ValidationError("La tasa de cambio debe ser mayor que cero", field="exchange_rate")
    return money(to_decimal(amount) * rate)
