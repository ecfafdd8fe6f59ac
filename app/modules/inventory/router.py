from fastapi import APIRouter, status, Query
from uuid import UUID

from app.dependencies.dbDependecies import db_dependency
from app.dependencies.actorDependencies import ActorId
from app.modules.inventory.service import InventoryService
from app.modules.inventory.schemas import (
    ProductCreate, ProductOut, StockOut, StockUpdate, InventoryMovementList
)

products_router = APIRouter(prefix="/products", tags=["Inventory"])


@products_router.post("/", response_model=ProductOut, status_code=status.HTTP_201_CREATED)
def create_product(product_data: ProductCreate, db: db_dependency, actor_id: ActorId):
    """Crear producto con su existencia inicial"""
    return InventoryService(db).create_product(product_data, actor_id)


@products_router.get("/{product_id}/stock", response_model=StockOut)
def get_product_stock(product_id: UUID, db: db_dependency):
    """Consultar la existencia actual de un producto"""
    return InventoryService(db).get_stock(product_id)


@products_router.put("/{product_id}/stock", response_model=StockOut)
def set_product_stock(product_id: UUID, stock_data: StockUpdate, db: db_dependency, actor_id: ActorId):
    """Ajuste manual de existencia; registra un movimiento ADJ por la diferencia"""
    return InventoryService(db).set_stock(product_id, stock_data.quantity, actor_id, stock_data.notes)


@products_router.get("/{product_id}/movements", response_model=InventoryMovementList)
def get_product_movements(
    product_id: UUID,
    db: db_dependency,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0)
):
    """Historial de movimientos de inventario del producto"""
    return InventoryService(db).get_movements(product_id, limit, offset)
