"""
Módulo de Facturación (Invoices)

- Borradores editables con totales recalculados en cada cambio
- Emisión atómica: numeración por serie + descuento de inventario
- Pagos parciales y completos en USD, VES o EUR
- Anulación con reingreso exacto de inventario y política de pagos configurable
- Eliminación lógica de borradores

Tablas principales:
- invoices: Facturas
- invoice_lines: Líneas de factura (inmutables tras emitir)
- payments: Pagos (solo se agregan, nunca se eliminan)
- invoice_sequences: Secuencias de numeración por serie
"""

from .models import (
    Invoice, InvoiceLine, Payment, InvoiceSequence,
    InvoiceStatus, InvoiceAction, PaymentMethod, ALLOWED_ACTIONS
)

__all__ = [
    "Invoice", "InvoiceLine", "Payment", "InvoiceSequence",
    "InvoiceStatus", "InvoiceAction", "PaymentMethod", "ALLOWED_ACTIONS"
]
