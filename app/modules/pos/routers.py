"""
Routers FastAPI para el módulo POS (Point of Sale)

Define los endpoints REST para:
- CashRegisters: alta, listado, desactivación y apertura de sesión
- CashSessions: cierre, movimientos, cuadre y reconteos

El actor de cada operación llega en el header X-Actor-Id.
"""

from fastapi import APIRouter, status, Query
from typing import Optional, List
from uuid import UUID

from app.dependencies.dbDependecies import db_dependency
from app.dependencies.actorDependencies import ActorId
from app.modules.pos.services import CashRegisterService, CashSessionService
from app.modules.pos.schemas import (
    CashRegisterCreate, CashRegisterOut, CashRegisterList,
    CashSessionOpen, CashSessionClose, CashSessionOut, SessionReconciliation,
    CashMovementCreate, CashMovementOut, CashMovementList,
    CashSessionCorrectionCreate, CashSessionCorrectionOut
)


# ===== CASH REGISTERS ROUTER =====

cash_registers_router = APIRouter(prefix="/cash-registers", tags=["POS"])


@cash_registers_router.get("/", response_model=CashRegisterList)
def list_cash_registers(
    db: db_dependency,
    include_inactive: bool = Query(False, description="Incluir cajas desactivadas")
):
    registers = CashRegisterService(db).list_registers(include_inactive)
    return CashRegisterList(
        registers=[CashRegisterOut.model_validate(register) for register in registers],
        total=len(registers)
    )


@cash_registers_router.post("/", response_model=CashRegisterOut, status_code=status.HTTP_201_CREATED)
def create_cash_register(register_data: CashRegisterCreate, db: db_dependency, actor_id: ActorId):
    """Crear caja registradora (nombre único)"""
    return CashRegisterService(db).create_register(register_data, actor_id)


@cash_registers_router.post("/{register_id}/deactivate", response_model=CashRegisterOut)
def deactivate_cash_register(register_id: UUID, db: db_dependency, actor_id: ActorId):
    """Desactivar caja. Falla con 409 si tiene una sesión abierta."""
    return CashRegisterService(db).deactivate_register(register_id, actor_id)


@cash_registers_router.get("/{register_id}/active-session", response_model=Optional[CashSessionOut])
def get_active_session(register_id: UUID, db: db_dependency):
    """Sesión abierta de la caja, o null"""
    CashRegisterService(db).get_register(register_id)
    return CashSessionService(db).get_active_session(register_id)


@cash_registers_router.get("/{register_id}/sessions", response_model=List[CashSessionOut])
def list_register_sessions(
    register_id: UUID,
    db: db_dependency,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0)
):
    return CashSessionService(db).list_sessions(register_id, limit, offset)


@cash_registers_router.post("/{register_id}/sessions", response_model=CashSessionOut, status_code=status.HTTP_201_CREATED)
def open_cash_session(register_id: UUID, open_data: CashSessionOpen, db: db_dependency, actor_id: ActorId):
    """
    Abrir sesión de caja

    - Montos de apertura por moneda (USD, VES, EUR), cero o positivos
    - Tasas VES y EUR por 1 USD, guardadas como snapshot de la sesión
    - 409 session_already_open si la caja ya tiene una sesión abierta
    """
    return CashSessionService(db).open_session(
        register_id,
        open_data.opening_amounts,
        open_data.exchange_rates,
        actor_id,
        notes=open_data.notes
    )


# ===== CASH SESSIONS ROUTER =====

cash_sessions_router = APIRouter(prefix="/cash-sessions", tags=["POS"])


@cash_sessions_router.get("/{session_id}", response_model=CashSessionOut)
def get_cash_session(session_id: UUID, db: db_dependency):
    return CashSessionService(db).get_session(session_id)


@cash_sessions_router.post("/{session_id}/close", response_model=SessionReconciliation)
def close_cash_session(session_id: UUID, close_data: CashSessionClose, db: db_dependency, actor_id: ActorId):
    """
    Cerrar sesión con arqueo por moneda

    Responde el cuadre: apertura, ventas en efectivo, movimientos, esperado,
    contado y diferencia para cada moneda. El cierre es definitivo.
    """
    return CashSessionService(db).close_session(
        session_id, close_data.counted_amounts, actor_id, notes=close_data.notes
    )


@cash_sessions_router.get("/{session_id}/movements", response_model=CashMovementList)
def list_cash_movements(session_id: UUID, db: db_dependency):
    movements = CashSessionService(db).list_movements(session_id)
    return CashMovementList(
        movements=[CashMovementOut.model_validate(movement) for movement in movements],
        total=len(movements)
    )


@cash_sessions_router.post("/{session_id}/movements", response_model=CashMovementOut, status_code=status.HTTP_201_CREATED)
def create_cash_movement(session_id: UUID, movement_data: CashMovementCreate, db: db_dependency, actor_id: ActorId):
    """Depósito o retiro manual en una sesión abierta"""
    return CashSessionService(db).add_movement(
        session_id,
        movement_data.type,
        movement_data.amount,
        movement_data.currency,
        movement_data.reason,
        actor_id,
        reference=movement_data.reference
    )


@cash_sessions_router.get("/{session_id}/reconciliation", response_model=SessionReconciliation)
def get_session_reconciliation(session_id: UUID, db: db_dependency):
    return CashSessionService(db).get_reconciliation(session_id)


@cash_sessions_router.post("/{session_id}/corrections", response_model=CashSessionCorrectionOut, status_code=status.HTTP_201_CREATED)
def create_session_correction(
    session_id: UUID,
    correction_data: CashSessionCorrectionCreate,
    db: db_dependency,
    actor_id: ActorId
):
    """Registrar un reconteo sobre una sesión cerrada"""
    return CashSessionService(db).record_correction(
        session_id, correction_data.counted_amounts, actor_id, notes=correction_data.notes
    )
