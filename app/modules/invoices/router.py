from fastapi import APIRouter, status, Query
from typing import Optional
from uuid import UUID
from datetime import date

from app.core.config import settings
from app.dependencies.dbDependecies import db_dependency
from app.dependencies.actorDependencies import ActorId
from app.modules.currency.calculator import Currency
from app.modules.invoices.service import InvoiceService
from app.modules.invoices.models import InvoiceStatus
from app.modules.invoices.schemas import (
    InvoiceCreate, InvoiceUpdate, InvoiceOut, InvoiceDetail, InvoiceList, InvoiceFilters,
    InvoiceIssueRequest, InvoiceCancelRequest, PaymentCreate, PaymentOut, PaymentList
)

# Router principal del módulo de facturas
router = APIRouter(prefix="/invoices", tags=["Invoices"])


@router.post("/", response_model=InvoiceDetail, status_code=status.HTTP_201_CREATED)
def create_invoice(invoice_data: InvoiceCreate, db: db_dependency, actor_id: ActorId):
    """
    Crear factura en borrador

    El borrador no tiene número ni afecta inventario. Los totales se
    calculan y guardan, y se recalculan en cada edición.
    """
    service = InvoiceService(db)
    invoice = service.create_draft(invoice_data, actor_id)
    return service.get_invoice_detail(invoice.id)


@router.get("/", response_model=InvoiceList)
def list_invoices(
    db: db_dependency,
    status: Optional[InvoiceStatus] = Query(None, description="Filtrar por estado"),
    client_id: Optional[UUID] = Query(None),
    currency: Optional[Currency] = Query(None),
    date_from: Optional[date] = Query(None, description="Fecha de emisión desde"),
    date_to: Optional[date] = Query(None, description="Fecha de emisión hasta"),
    search: Optional[str] = Query(None, description="Buscar en número, cliente o notas"),
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0)
):
    """Listar facturas con filtros y conteos por estado"""
    filters = InvoiceFilters(
        status=status,
        client_id=client_id,
        currency=currency,
        date_from=date_from,
        date_to=date_to,
        search=search
    )
    return InvoiceService(db).list_invoices(filters, limit, offset)


@router.get("/{invoice_id}", response_model=InvoiceDetail)
def get_invoice(invoice_id: UUID, db: db_dependency):
    return InvoiceService(db).get_invoice_detail(invoice_id)


@router.put("/{invoice_id}", response_model=InvoiceDetail)
def update_invoice(invoice_id: UUID, invoice_data: InvoiceUpdate, db: db_dependency, actor_id: ActorId):
    """Editar borrador (solo estado draft)"""
    service = InvoiceService(db)
    service.update_draft(invoice_id, invoice_data, actor_id)
    return service.get_invoice_detail(invoice_id)


@router.post("/{invoice_id}/issue", response_model=InvoiceDetail)
def issue_invoice(
    invoice_id: UUID,
    db: db_dependency,
    actor_id: ActorId,
    issue_data: Optional[InvoiceIssueRequest] = None
):
    """
    Emitir factura

    Asigna número, descuenta inventario y pasa a issued en una sola
    transacción. Responde 409 insufficient_stock sin cambios si falta
    existencia en cualquier producto.
    """
    service = InvoiceService(db)
    cash_session_id = issue_data.cash_session_id if issue_data else None
    service.issue(invoice_id, actor_id, cash_session_id=cash_session_id)
    return service.get_invoice_detail(invoice_id)


@router.post("/{invoice_id}/cancel", response_model=InvoiceDetail)
def cancel_invoice(
    invoice_id: UUID,
    db: db_dependency,
    actor_id: ActorId,
    cancel_data: Optional[InvoiceCancelRequest] = None
):
    """Anular factura emitida y devolver inventario; motivo y política de pagos son opcionales"""
    service = InvoiceService(db)
    cancel_data = cancel_data or InvoiceCancelRequest()
    service.cancel(invoice_id, actor_id, reason=cancel_data.reason, payment_policy=cancel_data.payment_policy)
    return service.get_invoice_detail(invoice_id)


@router.delete("/{invoice_id}", response_model=InvoiceOut)
def delete_invoice(invoice_id: UUID, db: db_dependency, actor_id: ActorId):
    """Eliminar borrador (eliminación lógica)"""
    return InvoiceService(db).delete_draft(invoice_id, actor_id)


@router.post("/{invoice_id}/payments", response_model=PaymentOut, status_code=status.HTTP_201_CREATED)
def add_payment(invoice_id: UUID, payment_data: PaymentCreate, db: db_dependency, actor_id: ActorId):
    return InvoiceService(db).record_payment(invoice_id, payment_data, actor_id)


@router.get("/{invoice_id}/payments", response_model=PaymentList)
def get_invoice_payments(invoice_id: UUID, db: db_dependency):
    return InvoiceService(db).list_payments(invoice_id)
