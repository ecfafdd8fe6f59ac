"""
Monto en letras para documentos impresos.

    amount_to_legal_words(1250.5) -> "SON: MIL DOSCIENTOS CINCUENTA BOLIVARES CON 50/100"
"""

from decimal import Decimal

from app.common.exceptions import ValidationError
from app.modules.currency.calculator import money, to_decimal

UNITS = ["", "UN", "DOS", "TRES", "CUATRO", "CINCO", "SEIS", "SIETE", "OCHO", "NUEVE"]
TEENS = [
    "DIEZ", "ONCE", "DOCE", "TRECE", "CATORCE",
    "QUINCE", "DIECISEIS", "DIECISIETE", "DIECIOCHO", "DIECINUEVE"
]
# 20-29 se escriben como una sola palabra
TWENTIES = [
    "VEINTE", "VEINTIUN", "VEINTIDOS", "VEINTITRES", "VEINTICUATRO",
    "VEINTICINCO", "VEINTISEIS", "VEINTISIETE", "VEINTIOCHO", "VEINTINUEVE"
]
TENS = ["", "", "", "TREINTA", "CUARENTA", "CINCUENTA", "SESENTA", "SETENTA", "OCHENTA", "NOVENTA"]
HUNDREDS = [
    "", "CIENTO", "DOSCIENTOS", "TRESCIENTOS", "CUATROCIENTOS",
    "QUINIENTOS", "SEISCIENTOS", "SETECIENTOS", "OCHOCIENTOS", "NOVECIENTOS"
]

MAX_AMOUNT = Decimal("1000000000000")


def _join(*parts: str) -> str:
    return " ".join(part for part in parts if part)


def _group_to_words(n: int) -> str:
    """Grupo de tres dígitos (0-999)"""
    if n == 100:
        return "CIEN"

    hundreds, rest = divmod(n, 100)
    if rest >= 30:
        tens, units = divmod(rest, 10)
        rest_words = f"{TENS[tens]} Y {UNITS[units]}" if units else TENS[tens]
    elif rest >= 20:
        rest_words = TWENTIES[rest - 20]
    elif rest >= 10:
        rest_words = TEENS[rest - 10]
    else:
        rest_words = UNITS[rest]

    return _join(HUNDREDS[hundreds], rest_words)


def integer_to_words(n: int) -> str:
    if n == 0:
        return "CERO"
    return _integer_to_words(n)


def _integer_to_words(n: int) -> str:
    if n >= 1_000_000:
        millions, rest = divmod(n, 1_000_000)
        head = "UN MILLON" if millions == 1 else f"{_integer_to_words(millions)} MILLONES"
        return _join(head, _integer_to_words(rest))

    if n >= 1000:
        thousands, rest = divmod(n, 1000)
        # 1.000 es "MIL", nunca "UN MIL"
        head = "MIL" if thousands == 1 else f"{_group_to_words(thousands)} MIL"
        return _join(head, _group_to_words(rest))

    return _group_to_words(n)


def amount_to_legal_words(amount, currency_label: str = "BOLIVARES") -> str:
    """
    Representación en letras de un monto no negativo:
    "SON: <ENTERO EN LETRAS> <MONEDA> CON <CC>/100"
    """
    if to_decimal(amount) < 0:
        raise ValidationError("El monto en letras no admite valores negativos", field="amount")
    value = money(amount)
    if value >= MAX_AMOUNT:
        raise ValidationError("Monto fuera de rango para la representación en letras", field="amount")

    integer_part = int(value)
    cents = int((value - integer_part) * 100)
    label = (currency_label or "").strip().upper()

    return f"SON: {_join(integer_to_words(integer_part), label)} CON {cents:02d}/100"
