"""
Fixtures compartidas para los tests de módulos

Base de datos SQLite en memoria recreada en cada test. El cliente HTTP y
los servicios comparten la misma sesión, así los tests pueden mezclar
llamadas a la API con verificaciones directas sobre la base.
"""

import os

os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["ENVIRONMENT"] = "test"
os.environ["CANCELLED_INVOICE_PAYMENT_POLICY"] = "keep"

import pytest
from decimal import Decimal
from uuid import uuid4
from fastapi.testclient import TestClient

from app.main import app
from app.database.database import Base, SessionLocal, engine, get_db
from app.modules.inventory.schemas import ProductCreate
from app.modules.inventory.service import InventoryService
from app.modules.pos.schemas import CashRegisterCreate
from app.modules.pos.services import CashRegisterService, CashSessionService


@pytest.fixture
def db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def client(db):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def actor_id():
    return uuid4()


@pytest.fixture
def actor_headers(actor_id):
    return {"X-Actor-Id": str(actor_id)}


@pytest.fixture
def make_product(db, actor_id):
    """Crea un producto con existencia inicial"""
    def _make(sku: str = None, name: str = None, stock: Decimal = Decimal("10")):
        sku = sku or f"SKU-{uuid4().hex[:8]}"
        return InventoryService(db).create_product(
            ProductCreate(sku=sku, name=name or f"Producto {sku}", initial_stock=stock),
            actor_id
        )
    return _make


@pytest.fixture
def register(db, actor_id):
    return CashRegisterService(db).create_register(CashRegisterCreate(name="Caja Principal"), actor_id)


@pytest.fixture
def open_session(db, register, actor_id):
    """Sesión abierta con USD=100, VES=0, EUR=0"""
    return CashSessionService(db).open_session(
        register.id,
        {"USD": Decimal("100"), "VES": Decimal("0"), "EUR": Decimal("0")},
        {"VES": Decimal("36.50"), "EUR": Decimal("0.92")},
        actor_id
    )
