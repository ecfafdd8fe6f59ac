"""
Tests para el módulo de Inventario
"""

import pytest
from decimal import Decimal
from types import SimpleNamespace
from uuid import uuid4

from sqlalchemy import text

from app.common.exceptions import InsufficientStock, NotFound, ValidationError
from app.database.types import ScaledDecimal
from app.modules.inventory.models import InventoryMovement, StockLevel
from app.modules.inventory.schemas import ProductCreate
from app.modules.inventory.service import InventoryService


def _line(product_id, quantity):
    return SimpleNamespace(product_id=product_id, quantity=Decimal(quantity))


class TestProducts:

    def test_create_product_with_initial_stock(self, db, actor_id):
        service = InventoryService(db)
        product = service.create_product(
            ProductCreate(sku="HAR-001", name="Harina PAN 1kg", initial_stock=Decimal("24")), actor_id
        )

        assert service.get_quantity(product.id) == Decimal("24")
        movements = service.get_movements(product.id)
        assert movements.total == 1
        assert movements.movements[0].movement_type == "ADJ"
        assert movements.movements[0].quantity == Decimal("24")

    def test_zero_initial_stock_has_no_movement(self, db, actor_id):
        service = InventoryService(db)
        product = service.create_product(ProductCreate(sku="ARR-001", name="Arroz"), actor_id)

        assert service.get_quantity(product.id) == Decimal("0")
        assert service.get_movements(product.id).total == 0

    def test_duplicate_sku_rejected(self, db, actor_id, make_product):
        make_product(sku="DUP-1")
        with pytest.raises(ValidationError):
            make_product(sku="DUP-1")

    def test_unknown_product(self, db):
        with pytest.raises(NotFound):
            InventoryService(db).get_stock(uuid4())

    def test_missing_stock_row_counts_as_zero(self, db, make_product):
        product = make_product(stock=Decimal("5"))
        db.query(StockLevel).filter(StockLevel.product_id == product.id).delete()
        db.commit()

        assert InventoryService(db).get_quantity(product.id) == Decimal("0")


class TestStockAdjustments:

    def test_set_stock_records_difference(self, db, actor_id, make_product):
        product = make_product(stock=Decimal("10"))
        service = InventoryService(db)

        stock = service.set_stock(product.id, Decimal("7"), actor_id, notes="Merma")

        assert stock.quantity == Decimal("7")
        adjustments = db.query(InventoryMovement).filter(
            InventoryMovement.product_id == product.id,
            InventoryMovement.notes == "Merma"
        ).all()
        assert len(adjustments) == 1
        assert adjustments[0].quantity == Decimal("-3")

    def test_set_same_stock_records_nothing(self, db, actor_id, make_product):
        product = make_product(stock=Decimal("10"))
        InventoryService(db).set_stock(product.id, Decimal("10"), actor_id)
        assert InventoryService(db).get_movements(product.id).total == 1

    def test_negative_stock_rejected(self, db, actor_id, make_product):
        product = make_product()
        with pytest.raises(ValidationError):
            InventoryService(db).set_stock(product.id, Decimal("-1"), actor_id)


class TestInvoiceEffects:

    def test_decrement_is_all_or_nothing(self, db, actor_id, make_product):
        plenty = make_product(stock=Decimal("10"))
        scarce = make_product(stock=Decimal("2"))
        service = InventoryService(db)

        with pytest.raises(InsufficientStock):
            service.decrement_for_invoice(
                [_line(plenty.id, "5"), _line(scarce.id, "3")], actor_id
            )
        db.rollback()

        assert service.get_quantity(plenty.id) == Decimal("10")
        assert service.get_quantity(scarce.id) == Decimal("2")
        assert db.query(InventoryMovement).filter(InventoryMovement.movement_type == "OUT").count() == 0

    def test_decrement_without_stock_row(self, db, actor_id, make_product):
        product = make_product(stock=Decimal("5"))
        db.query(StockLevel).filter(StockLevel.product_id == product.id).delete()
        db.commit()

        with pytest.raises(InsufficientStock) as exc_info:
            InventoryService(db).decrement_for_invoice([_line(product.id, "1")], actor_id)
        db.rollback()

        assert exc_info.value.available == Decimal("0")

    def test_decrement_then_restore(self, db, actor_id, make_product):
        product = make_product(stock=Decimal("10"))
        service = InventoryService(db)
        lines = [_line(product.id, "2.5"), _line(product.id, "1.5"), _line(None, "9")]

        movements = service.decrement_for_invoice(lines, actor_id, reference="FAC-00000001")
        db.commit()
        assert len(movements) == 1
        assert movements[0].quantity == Decimal("-4")
        assert service.get_quantity(product.id) == Decimal("6")

        service.restore_for_invoice(lines, actor_id, reference="FAC-00000001")
        db.commit()
        assert service.get_quantity(product.id) == Decimal("10")

    def test_restore_creates_missing_stock_row(self, db, actor_id, make_product):
        product = make_product(stock=Decimal("0"))
        db.query(StockLevel).filter(StockLevel.product_id == product.id).delete()
        db.commit()

        InventoryService(db).restore_for_invoice([_line(product.id, "3")], actor_id)
        db.commit()

        assert InventoryService(db).get_quantity(product.id) == Decimal("3")

    def test_fractional_decrements_reach_zero(self, db, actor_id, make_product):
        product = make_product(stock=Decimal("0.3"))
        service = InventoryService(db)

        for _ in range(3):
            service.decrement_for_invoice([_line(product.id, "0.1")], actor_id)
            db.commit()

        assert service.get_quantity(product.id) == Decimal("0")
        with pytest.raises(InsufficientStock):
            service.decrement_for_invoice([_line(product.id, "0.001")], actor_id)
        db.rollback()

    def test_quantities_stored_as_thousandths(self, db, make_product):
        make_product(stock=Decimal("0.3"))

        assert db.execute(text("SELECT quantity FROM stock_levels")).scalar() == 300


class TestScaledDecimal:

    def test_bind_and_result(self):
        column_type = ScaledDecimal(3)

        assert column_type.process_bind_param(Decimal("1.25"), None) == 1250
        assert column_type.process_bind_param(None, None) is None
        assert column_type.process_result_value(1250, None) == Decimal("1.250")

    def test_extra_decimals_rejected(self):
        with pytest.raises(ValueError):
            ScaledDecimal(3).process_bind_param(Decimal("0.0001"), None)


class TestInventoryEndpoints:

    def test_create_and_read_stock(self, client, actor_headers):
        response = client.post("/api/v1/products/", headers=actor_headers, json={
            "sku": "CAF-250", "name": "Café molido 250g", "initial_stock": "12"
        })
        assert response.status_code == 201, response.text
        product_id = response.json()["id"]

        stock = client.get(f"/api/v1/products/{product_id}/stock")
        assert stock.status_code == 200
        assert Decimal(stock.json()["quantity"]) == Decimal("12")

    def test_set_stock_and_movements(self, client, actor_headers, make_product):
        product = make_product(stock=Decimal("4"))

        response = client.put(f"/api/v1/products/{product.id}/stock", headers=actor_headers, json={
            "quantity": "9", "notes": "Recepción de mercancía"
        })
        assert response.status_code == 200, response.text
        assert Decimal(response.json()["quantity"]) == Decimal("9")

        movements = client.get(f"/api/v1/products/{product.id}/movements").json()
        assert movements["total"] == 2

    def test_negative_stock_is_422(self, client, actor_headers, make_product):
        product = make_product()
        response = client.put(f"/api/v1/products/{product.id}/stock", headers=actor_headers, json={
            "quantity": "-2"
        })
        assert response.status_code == 422

    def test_unknown_product_is_404(self, client):
        response = client.get(f"/api/v1/products/{uuid4()}/stock")
        assert response.status_code == 404
