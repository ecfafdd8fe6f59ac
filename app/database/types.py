"""
Tipos de columna exactos.

SQLite guarda Numeric como REAL, así que restar existencias en SQL acumula
error de punto flotante. Las cantidades se guardan como enteros escalados
(milésimas) y la aritmética del UPDATE condicionado es exacta en cualquier motor.
"""

from decimal import Decimal
from sqlalchemy import BigInteger
from sqlalchemy.types import TypeDecorator


class ScaledDecimal(TypeDecorator):
    """Decimal guardado como entero: con scale=3, Decimal('1.250') se guarda como 1250"""

    impl = BigInteger
    cache_ok = True

    def __init__(self, scale: int = 3):
        super().__init__()
        self.scale = scale

    @property
    def factor(self) -> Decimal:
        return Decimal(10) ** self.scale

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        scaled = Decimal(str(value)) * self.factor
        if scaled != scaled.to_integral_value():
            raise ValueError(f"{value} tiene más de {self.scale} decimales")
        return int(scaled)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return (Decimal(value) / self.factor).quantize(Decimal(1).scaleb(-self.scale))

    def coerce_compared_value(self, op, value):
        # Los literales comparados o sumados a la columna también se escalan
        return self
