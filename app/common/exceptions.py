"""
Errores tipados del núcleo de caja y facturación.

Cada operación falla con una de estas excepciones y deja el estado previo
intacto. main.py las traduce a respuestas HTTP con un único handler.
"""

from decimal import Decimal
from typing import Any, Dict, Optional


class LedgerError(Exception):
    """Base de todos los errores del núcleo"""

    code = "ledger_error"
    status_code = 400

    def __init__(self, message: str, **details: Any):
        self.message = message
        self.details: Dict[str, Any] = details
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        payload = {"error": self.code, "detail": self.message}
        for key, value in self.details.items():
            payload[key] = str(value) if isinstance(value, Decimal) else value
        return payload


class ValidationError(LedgerError):
    """Entrada mal formada: monto negativo, factura sin líneas, moneda desconocida"""

    code = "validation_error"
    status_code = 422


class NotFound(LedgerError):
    code = "not_found"
    status_code = 404

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(f"{entity} no encontrado: {entity_id}", entity=entity, entity_id=str(entity_id))


class InvalidStateTransition(LedgerError):
    """La operación no es válida desde el estado actual"""

    code = "invalid_state_transition"
    status_code = 409

    def __init__(self, entity: str, current: str, action: str, message: Optional[str] = None):
        self.entity = entity
        self.current = current
        self.action = action
        super().__init__(
            message or f"No se puede ejecutar '{action}' sobre {entity} en estado '{current}'",
            entity=entity,
            current_status=current,
            action=action
        )


class InsufficientStock(LedgerError):
    code = "insufficient_stock"
    status_code = 409

    def __init__(self, product_id: Any, requested: Decimal, available: Decimal):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Stock insuficiente para el producto {product_id}. "
            f"Disponible: {available}, Solicitado: {requested}",
            product_id=str(product_id),
            requested=requested,
            available=available
        )


class SessionAlreadyOpen(LedgerError):
    code = "session_already_open"
    status_code = 409

    def __init__(self, register_id: Any):
        self.register_id = register_id
        super().__init__(
            "La caja ya tiene una sesión activa",
            register_id=str(register_id)
        )


class NoActiveSession(LedgerError):
    code = "no_active_session"
    status_code = 409

    def __init__(self, message: str = "No hay una sesión de caja abierta", **details: Any):
        super().__init__(message, **details)


class ConcurrencyConflict(LedgerError):
    """Dos operaciones compitieron por el mismo recurso; el perdedor debe releer y reintentar"""

    code = "concurrency_conflict"
    status_code = 409

    def __init__(self, resource: str, message: Optional[str] = None):
        self.resource = resource
        super().__init__(
            message or f"El recurso '{resource}' fue modificado por otra operación. Vuelva a consultar e intente de nuevo",
            resource=resource
        )
