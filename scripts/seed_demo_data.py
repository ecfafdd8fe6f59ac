"""
Seed script: carga datos de demostración para Caja360.

Qué crea:
- Cajas (2): Caja Principal y Caja Express, cada una con una sesión abierta.
- Productos de bodega con existencia inicial.
- Facturas emitidas bajo las sesiones en USD, VES y EUR; una parte pagada
  en efectivo, otra con transferencia y algunas anuladas.

Uso:
    python scripts/seed_demo_data.py --products 60 --invoices 120 --rate-ves 36.50 --rate-eur 0.92

Solo para entornos de desarrollo.
"""

# Agregar la raíz del proyecto al path para que `app.*` funcione desde cualquier CWD
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

import argparse
import random
from decimal import Decimal
from uuid import uuid4

from app.common.exceptions import InsufficientStock
from app.database.database import SessionLocal, Base, engine
from app.modules.currency.calculator import Currency, convert
from app.modules.inventory.schemas import ProductCreate
from app.modules.inventory.service import InventoryService
from app.modules.invoices.models import PaymentMethod
from app.modules.invoices.schemas import InvoiceCreate, InvoiceLineCreate, PaymentCreate
from app.modules.invoices.service import InvoiceService
from app.modules.pos.schemas import CashRegisterCreate
from app.modules.pos.services import CashRegisterService, CashSessionService


PRODUCT_NAMES = [
    "Harina de maíz 1kg", "Arroz 1kg", "Pasta larga 500g", "Azúcar 1kg", "Café molido 250g",
    "Aceite vegetal 1L", "Leche en polvo 400g", "Queso blanco 1kg", "Mantequilla 250g", "Atún en lata",
    "Sardinas en lata", "Caraotas negras 1kg", "Salsa de tomate", "Mayonesa 445g", "Galletas de soda",
    "Jabón de baño", "Detergente 1kg", "Papel higiénico 4 rollos", "Crema dental", "Agua mineral 1.5L",
]

CLIENT_NAMES = [
    "Consumidor Final", "Bodega La Esquina", "Inversiones Guaicaipuro", "María Fernanda Rojas",
    "Panadería Santa Ana", "José Gregorio Pérez", "Farmacia El Sol", "Restaurante Don Pedro",
]


def pick(seq):
    return random.choice(seq)


def create_registers(db, actor_id, rates):
    registers = []
    sessions = []
    service = CashRegisterService(db)
    session_service = CashSessionService(db)
    for name, location in (("Caja Principal", "Planta baja"), ("Caja Express", "Entrada")):
        existing = [r for r in service.list_registers(include_inactive=True) if r.name == name]
        register = existing[0] if existing else service.create_register(
            CashRegisterCreate(name=name, location=location), actor_id
        )
        registers.append(register)
        session = session_service.get_active_session(register.id) or session_service.open_session(
            register.id,
            {"USD": Decimal("100"), "VES": Decimal("2000"), "EUR": Decimal("50")},
            rates,
            actor_id,
            notes="Apertura de demostración"
        )
        sessions.append(session)
    return registers, sessions


def create_products(db, actor_id, product_count):
    service = InventoryService(db)
    products = []
    for i in range(product_count):
        base = PRODUCT_NAMES[i % len(PRODUCT_NAMES)]
        name = base if i < len(PRODUCT_NAMES) else f"{base} #{i // len(PRODUCT_NAMES) + 1}"
        product = service.create_product(
            ProductCreate(
                sku=f"DEMO-{uuid4().hex[:8].upper()}",
                name=name,
                initial_stock=Decimal(random.randint(5, 80))
            ),
            actor_id
        )
        products.append((product, Decimal(random.randint(1, 25)) + Decimal(random.randint(0, 99)) / 100))
    return products


def create_invoices(db, actor_id, sessions, products, invoices_count, rates):
    service = InvoiceService(db)
    created = 0
    skipped = 0
    for i in range(invoices_count):
        currency = pick([Currency.USD, Currency.USD, Currency.VES, Currency.EUR])
        rate_to_usd = Decimal("1") if currency == Currency.USD else rates[currency.value]
        lines = []
        for _ in range(random.randint(1, 4)):
            product, usd_price = pick(products)
            lines.append(InvoiceLineCreate(
                product_id=product.id,
                quantity=Decimal(random.randint(1, 4)),
                unit_price=convert(usd_price, rate_to_usd),
                tax_rate=pick([Decimal("0"), Decimal("16")])
            ))

        invoice = service.create_draft(InvoiceCreate(
            client_name=pick(CLIENT_NAMES),
            currency=currency,
            exchange_rate=rates["VES"] / rate_to_usd,
            lines=lines
        ), actor_id)

        session = pick(sessions)
        try:
            invoice = service.issue(invoice.id, actor_id, cash_session_id=session.id)
        except InsufficientStock:
            # El borrador queda intacto; se deja como ejemplo de factura pendiente
            skipped += 1
            continue

        roll = random.random()
        if roll < 0.6:
            service.record_payment(invoice.id, PaymentCreate(
                amount=invoice.total, method=PaymentMethod.CASH, reference=f"EF-{i:04d}"
            ), actor_id)
        elif roll < 0.8:
            service.record_payment(invoice.id, PaymentCreate(
                amount=(invoice.total / 2).quantize(Decimal("0.01")),
                method=PaymentMethod.TRANSFER,
                reference=f"TRF-{i:04d}"
            ), actor_id)
        elif roll < 0.9:
            service.cancel(invoice.id, actor_id, reason="Anulada en demostración")

        created += 1
        if created % 50 == 0:
            print(f"  Invoices issued: {created}")
    return created, skipped


def main():
    parser = argparse.ArgumentParser(description="Seed Caja360 demo data")
    parser.add_argument("--products", type=int, default=60)
    parser.add_argument("--invoices", type=int, default=120)
    parser.add_argument("--rate-ves", type=Decimal, default=Decimal("36.50"))
    parser.add_argument("--rate-eur", type=Decimal, default=Decimal("0.92"))
    args = parser.parse_args()

    Base.metadata.create_all(bind=engine)
    rates = {"VES": args.rate_ves, "EUR": args.rate_eur}
    actor_id = uuid4()

    db = SessionLocal()
    try:
        print("Opening cash registers...")
        registers, sessions = create_registers(db, actor_id, rates)

        print("Creating products...")
        products = create_products(db, actor_id, args.products)
        print(f"Products created: {len(products)}")

        print("Creating invoices (affect inventory and cash)...")
        created, skipped = create_invoices(db, actor_id, sessions, products, args.invoices, rates)
        print(f"Invoices issued: {created}, left as draft for lack of stock: {skipped}")

        print("\nSeed completed.")
        print("Open sessions:")
        for register, session in zip(registers, sessions):
            print(f"  {register.name}: {session.id}")
        print("Header for API requests:")
        print(f"  X-Actor-Id: {actor_id}")
    finally:
        db.close()


if __name__ == "__main__":
    main()
