from pydantic import BaseModel, Field
from typing import Optional, List
from uuid import UUID
from datetime import datetime
from decimal import Decimal
from enum import Enum


class MovementType(str, Enum):
    IN = "IN"
    OUT = "OUT"
    ADJ = "ADJ"


# Product schemas
class ProductCreate(BaseModel):
    sku: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=200)
    initial_stock: Decimal = Field(Decimal("0"), ge=0, description="Existencia inicial")


class ProductOut(BaseModel):
    id: UUID
    sku: str
    name: str
    is_active: bool
    created_at: datetime

    model_config = {"from_attributes": True}


# Stock schemas
class StockOut(BaseModel):
    product_id: UUID
    product_name: Optional[str] = None
    product_sku: Optional[str] = None
    quantity: Decimal


class StockUpdate(BaseModel):
    quantity: Decimal = Field(..., ge=0, description="Nueva existencia")
    notes: Optional[str] = Field(None, max_length=255, description="Notas del ajuste")


# Movement schemas
class InventoryMovementOut(BaseModel):
    id: UUID
    product_id: UUID
    quantity: Decimal
    movement_type: MovementType
    reference: Optional[str]
    invoice_id: Optional[UUID]
    notes: Optional[str]
    created_by: UUID
    created_at: datetime

    model_config = {"from_attributes": True}


class InventoryMovementList(BaseModel):
    movements: List[InventoryMovementOut]
    total: int
    limit: int
    offset: int
