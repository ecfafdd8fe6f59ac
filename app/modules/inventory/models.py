from sqlalchemy import Column, String, Boolean, ForeignKey, Uuid, Index, CheckConstraint
from sqlalchemy.orm import relationship
from uuid import uuid4

from app.database.database import Base
from app.database.types import ScaledDecimal
from app.common.mixins import TimestampMixin


class Product(Base, TimestampMixin):
    __tablename__ = "products"

    id = Column(Uuid, primary_key=True, default=uuid4)
    sku = Column(String(50), nullable=False, unique=True, index=True)
    name = Column(String(200), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)

    stock = relationship("StockLevel", back_populates="product", uselist=False)
    movements = relationship("InventoryMovement", back_populates="product")


class StockLevel(Base, TimestampMixin):
    """Existencia disponible por producto"""
    __tablename__ = "stock_levels"

    id = Column(Uuid, primary_key=True, default=uuid4)
    product_id = Column(Uuid, ForeignKey("products.id"), nullable=False, unique=True)
    quantity = Column(ScaledDecimal(3), nullable=False, default=0)

    product = relationship("Product", back_populates="stock")

    __table_args__ = (
        CheckConstraint("quantity >= 0", name="ck_stock_levels_non_negative"),
    )


class InventoryMovement(Base, TimestampMixin):
    """Auditoría de cada cambio de existencia"""
    __tablename__ = "inventory_movements"

    id = Column(Uuid, primary_key=True, default=uuid4)
    product_id = Column(Uuid, ForeignKey("products.id"), nullable=False)
    quantity = Column(ScaledDecimal(3), nullable=False)  # Positivo entra, negativo sale
    movement_type = Column(String(10), nullable=False)  # IN, OUT, ADJ
    reference = Column(String(100), nullable=True)  # Número de factura
    invoice_id = Column(Uuid, nullable=True)
    notes = Column(String(255), nullable=True)
    created_by = Column(Uuid, nullable=False)

    product = relationship("Product", back_populates="movements")

    __table_args__ = (
        Index("ix_inventory_movements_product_created", "product_id", "created_at"),
        Index("ix_inventory_movements_invoice", "invoice_id"),
    )
