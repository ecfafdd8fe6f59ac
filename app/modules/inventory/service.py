from collections import defaultdict
from decimal import Decimal
from typing import Dict, Iterable, List, Optional
from uuid import UUID
import logging

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.common.exceptions import InsufficientStock, NotFound, ValidationError
from app.database.unit_of_work import atomic
from app.modules.inventory.models import Product, StockLevel, InventoryMovement
from app.modules.inventory.schemas import (
    ProductCreate, StockOut, InventoryMovementOut, InventoryMovementList, MovementType
)

logger = logging.getLogger(__name__)


class InventoryService:
    """
    Existencias por producto.

    decrement_for_invoice y restore_for_invoice no confirman la transacción:
    corren dentro de la unidad de trabajo de quien los llama (emisión o
    anulación de la factura).
    """

    def __init__(self, db: Session):
        self.db = db

    # ===== PRODUCTOS =====

    def create_product(self, data: ProductCreate, actor_id: UUID) -> Product:
        if self.db.query(Product).filter(Product.sku == data.sku).first():
            raise ValidationError(f"Ya existe un producto con SKU '{data.sku}'", field="sku")

        with atomic(self.db, "product"):
            product = Product(sku=data.sku, name=data.name)
            self.db.add(product)
            self.db.flush()

            self.db.add(StockLevel(product_id=product.id, quantity=data.initial_stock))
            if data.initial_stock > 0:
                self.db.add(InventoryMovement(
                    product_id=product.id,
                    quantity=data.initial_stock,
                    movement_type=MovementType.ADJ.value,
                    notes="Existencia inicial",
                    created_by=actor_id
                ))

        logger.info(f"Product {product.sku} created with stock {data.initial_stock}")
        return product

    def get_product(self, product_id: UUID) -> Product:
        product = self.db.query(Product).filter(Product.id == product_id).first()
        if not product:
            raise NotFound("Producto", product_id)
        return product

    # ===== EXISTENCIAS =====

    def get_quantity(self, product_id: UUID) -> Decimal:
        """Existencia actual; un producto sin fila de stock tiene 0"""
        stock = self.db.query(StockLevel).filter(
            StockLevel.product_id == product_id
        ).populate_existing().first()
        return Decimal(stock.quantity) if stock else Decimal("0")

    def get_stock(self, product_id: UUID) -> StockOut:
        product = self.get_product(product_id)
        return StockOut(
            product_id=product.id,
            product_name=product.name,
            product_sku=product.sku,
            quantity=self.get_quantity(product_id)
        )

    def set_stock(self, product_id: UUID, quantity: Decimal, actor_id: UUID, notes: Optional[str] = None) -> StockOut:
        """Ajuste manual de existencia; registra un movimiento ADJ por la diferencia"""
        if quantity < 0:
            raise ValidationError("La existencia no puede ser negativa", field="quantity")

        product = self.get_product(product_id)

        with atomic(self.db, "stock"):
            stock = self.db.query(StockLevel).filter(
                StockLevel.product_id == product_id
            ).with_for_update().first()
            if not stock:
                stock = StockLevel(product_id=product_id, quantity=Decimal("0"))
                self.db.add(stock)

            difference = Decimal(quantity) - Decimal(stock.quantity or 0)
            stock.quantity = quantity
            if difference != 0:
                self.db.add(InventoryMovement(
                    product_id=product_id,
                    quantity=difference,
                    movement_type=MovementType.ADJ.value,
                    notes=notes or "Ajuste manual",
                    created_by=actor_id
                ))

        logger.info(f"Stock for {product.sku} set to {quantity} (diff {difference})")
        return self.get_stock(product_id)

    def get_movements(self, product_id: UUID, limit: int = 100, offset: int = 0) -> InventoryMovementList:
        self.get_product(product_id)
        query = self.db.query(InventoryMovement).filter(InventoryMovement.product_id == product_id)
        total = query.count()
        movements = query.order_by(InventoryMovement.created_at.desc()).offset(offset).limit(limit).all()
        return InventoryMovementList(
            movements=[InventoryMovementOut.model_validate(m) for m in movements],
            total=total,
            limit=limit,
            offset=offset
        )

    # ===== EFECTOS DE FACTURACIÓN =====

    def _expire_stock_levels(self):
        """Las filas en memoria quedan viejas tras un UPDATE directo"""
        for obj in list(self.db.identity_map.values()):
            if isinstance(obj, StockLevel):
                self.db.expire(obj)

    @staticmethod
    def _required_quantities(lines: Iterable) -> Dict[UUID, Decimal]:
        """Suma las cantidades por producto, ordenado por id para bloquear siempre en el mismo orden"""
        required: Dict[UUID, Decimal] = defaultdict(Decimal)
        for line in lines:
            if line.product_id is None:
                continue
            required[line.product_id] += Decimal(line.quantity)
        return dict(sorted(required.items(), key=lambda item: str(item[0])))

    def decrement_for_invoice(
        self,
        lines: Iterable,
        actor_id: UUID,
        invoice_id: Optional[UUID] = None,
        reference: Optional[str] = None
    ) -> List[InventoryMovement]:
        """
        Descuenta la existencia de todas las líneas o de ninguna.

        Primero verifica todos los productos; si alguno quedaría negativo se
        lanza InsufficientStock antes de escribir. El UPDATE condicionado
        (quantity >= q) protege además contra una escritura concurrente.
        """
        required = self._required_quantities(lines)
        if not required:
            return []

        stocks = {
            stock.product_id: stock
            for stock in self.db.query(StockLevel).filter(
                StockLevel.product_id.in_(list(required))
            ).order_by(StockLevel.product_id).populate_existing().with_for_update().all()
        }

        for product_id, quantity in required.items():
            stock = stocks.get(product_id)
            available = Decimal(stock.quantity) if stock else Decimal("0")
            if available < quantity:
                logger.warning(
                    f"Insufficient stock for product {product_id}: requested {quantity}, available {available}"
                )
                raise InsufficientStock(product_id, quantity, available)

        movements = []
        for product_id, quantity in required.items():
            result = self.db.execute(
                update(StockLevel)
                .where(StockLevel.product_id == product_id, StockLevel.quantity >= quantity)
                .values(quantity=StockLevel.quantity - quantity)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise InsufficientStock(product_id, quantity, self.get_quantity(product_id))

            movement = InventoryMovement(
                product_id=product_id,
                quantity=-quantity,
                movement_type=MovementType.OUT.value,
                reference=reference,
                invoice_id=invoice_id,
                notes="Salida por emisión de factura",
                created_by=actor_id
            )
            self.db.add(movement)
            movements.append(movement)

        self._expire_stock_levels()
        return movements

    def restore_for_invoice(
        self,
        lines: Iterable,
        actor_id: UUID,
        invoice_id: Optional[UUID] = None,
        reference: Optional[str] = None
    ) -> List[InventoryMovement]:
        """Devuelve exactamente las cantidades de las líneas congeladas de la factura"""
        required = self._required_quantities(lines)

        movements = []
        for product_id, quantity in required.items():
            result = self.db.execute(
                update(StockLevel)
                .where(StockLevel.product_id == product_id)
                .values(quantity=StockLevel.quantity + quantity)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                self.db.add(StockLevel(product_id=product_id, quantity=quantity))

            movement = InventoryMovement(
                product_id=product_id,
                quantity=quantity,
                movement_type=MovementType.IN.value,
                reference=reference,
                invoice_id=invoice_id,
                notes="Reingreso por anulación de factura",
                created_by=actor_id
            )
            self.db.add(movement)
            movements.append(movement)

        self._expire_stock_levels()
        return movements
