"""
Módulo POS (Point of Sale)

ENTIDADES PRINCIPALES:
- CashRegister: Cajas registradoras; se desactivan, nunca se eliminan
- CashSession: Apertura/cierre con montos por moneda (USD, VES, EUR)
- CashMovement: Depósitos y retiros manuales
- CashSessionCorrection: Reconteos posteriores al cierre

REGLAS DE NEGOCIO:
- Solo una sesión abierta por caja simultáneamente
- El cierre es definitivo; cualquier reconteo es un registro aparte
- Cuadre independiente por moneda, sin compensación entre monedas
- Solo cuentan los pagos en efectivo no anulados de facturas emitidas bajo la sesión
"""

from .models import (
    CashRegister, CashSession, CashMovement, CashSessionCorrection,
    CashSessionStatus, CashMovementType
)

__all__ = [
    "CashRegister", "CashSession", "CashMovement", "CashSessionCorrection",
    "CashSessionStatus", "CashMovementType"
]
