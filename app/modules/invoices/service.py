"""
Ciclo de vida de facturas

draft -> issued -> partial/paid; issued/partial -> cancelled; draft -> deleted.
Emisión y anulación corren como una sola unidad de trabajo junto con el
inventario: o cambia todo (existencia, número, estado) o no cambia nada.
"""

from datetime import datetime, date, timezone
from decimal import Decimal
from typing import List, Optional, Union
from uuid import UUID
import logging

from sqlalchemy import or_, func
from sqlalchemy.orm import Session, selectinload

from app.core.config import settings
from app.common.exceptions import ValidationError, NotFound, NoActiveSession
from app.database.unit_of_work import atomic
from app.modules.currency.calculator import (
    Currency, compute_invoice_totals, compute_line_total, convert, money, parse_currency, to_decimal
)
from app.modules.currency.words import MAX_AMOUNT, amount_to_legal_words
from app.modules.inventory.models import Product
from app.modules.inventory.service import InventoryService
from app.modules.invoices.models import (
    Invoice, InvoiceLine, InvoiceSequence, InvoiceStatus, InvoiceAction, Payment,
    CancelledPaymentPolicy, ensure_invoice_action
)
from app.modules.invoices.schemas import (
    InvoiceCreate, InvoiceUpdate, InvoiceLineCreate, InvoiceFilters, InvoiceList, InvoiceOut,
    InvoiceStatusCount, InvoiceDetail, PaymentCreate, PaymentList, PaymentOut
)
from app.modules.pos.models import CashSession, CashSessionStatus

logger = logging.getLogger(__name__)

# Decimales que guardan las columnas de la línea
LINE_SCALES = {
    "quantity": 3,
    "unit_price": 4,
    "tax_rate": 2,
    "discount_percent": 2,
}

CURRENCY_LABELS = {
    Currency.VES: "BOLIVARES",
    Currency.USD: "DOLARES",
    Currency.EUR: "EUROS",
}


def sanitize_client_name(name: Optional[str]) -> str:
    """
    Identificador corto del cliente para el patrón de numeración.

    Una palabra: sus primeros 3 caracteres. Varias: la inicial de hasta 3
    palabras. Sin palabras alfanuméricas: "CLI".
    """
    words = [word for word in (name or "").upper().split() if word.isalnum()]
    if not words:
        return "CLI"
    if len(words) == 1:
        return words[0][:3]
    return "".join(word[0] for word in words[:3])


def format_invoice_number(
    pattern: str,
    prefix: str,
    number: int,
    client_name: Optional[str] = None,
    when: Optional[date] = None,
    digits: int = 8
) -> str:
    """Aplica los tokens {PREFIX} {NUMBER} {YEAR} {MONTH} {CLIENT}"""
    when = when or date.today()
    pattern = pattern if pattern and pattern.strip() else "{PREFIX}-{NUMBER}"
    return (
        pattern
        .replace("{PREFIX}", prefix)
        .replace("{NUMBER}", str(number).zfill(digits))
        .replace("{YEAR}", f"{when.year:04d}")
        .replace("{MONTH}", f"{when.month:02d}")
        .replace("{CLIENT}", sanitize_client_name(client_name))
    )


def _now() -> datetime:
    return datetime.now(timezone.utc)


class InvoiceService:
    """Servicio para el ciclo de vida de facturas"""

    def __init__(self, db: Session):
        self.db = db
        self.inventory = InventoryService(db)

    # ===== LECTURA =====

    def get_invoice(self, invoice_id: UUID) -> Invoice:
        """Obtener factura por ID con líneas y pagos"""
        invoice = self.db.query(Invoice).options(
            selectinload(Invoice.lines),
            selectinload(Invoice.payments)
        ).filter(Invoice.id == invoice_id).first()

        if not invoice:
            raise NotFound("Factura", invoice_id)
        return invoice

    def _get_for_update(self, invoice_id: UUID) -> Invoice:
        invoice = self.db.query(Invoice).filter(
            Invoice.id == invoice_id
        ).populate_existing().with_for_update().first()
        if not invoice:
            raise NotFound("Factura", invoice_id)
        return invoice

    def get_invoice_detail(self, invoice_id: UUID) -> InvoiceDetail:
        invoice = self.get_invoice(invoice_id)
        detail = InvoiceDetail.model_validate(invoice)
        detail.amount_in_words = amount_to_legal_words(invoice.total, CURRENCY_LABELS[invoice.currency])
        return detail

    def list_invoices(self, filters: InvoiceFilters, limit: int = 100, offset: int = 0) -> InvoiceList:
        """
        Listar facturas con filtros y conteos por estado.

        Las facturas eliminadas solo aparecen si se filtra explícitamente por ese estado.
        """
        base_query = self.db.query(Invoice)

        if filters.client_id:
            base_query = base_query.filter(Invoice.client_id == filters.client_id)
        if filters.currency:
            base_query = base_query.filter(Invoice.currency == filters.currency)
        if filters.date_from:
            base_query = base_query.filter(Invoice.issue_date >= filters.date_from)
        if filters.date_to:
            base_query = base_query.filter(Invoice.issue_date <= filters.date_to)
        if filters.search:
            pattern = f"%{filters.search.strip()}%"
            base_query = base_query.filter(or_(
                Invoice.number.ilike(pattern),
                Invoice.client_name.ilike(pattern),
                Invoice.notes.ilike(pattern)
            ))

        if filters.status:
            query = base_query.filter(Invoice.status == filters.status)
        else:
            query = base_query.filter(Invoice.status != InvoiceStatus.DELETED)

        total = query.count()
        invoices = query.order_by(
            Invoice.issue_date.desc(), Invoice.created_at.desc()
        ).offset(offset).limit(limit).all()

        # Conteos por estado con los mismos filtros, excepto el de estado
        rows = base_query.with_entities(Invoice.status, func.count(Invoice.id)).group_by(Invoice.status).all()
        counted = {row_status: count for row_status, count in rows}
        counts_by_status = [
            InvoiceStatusCount(status=st, count=counted.get(st, 0))
            for st in InvoiceStatus
        ]

        return InvoiceList(
            invoices=[InvoiceOut.model_validate(invoice) for invoice in invoices],
            total=total,
            limit=limit,
            offset=offset,
            applied_filters=filters,
            counts_by_status=counts_by_status
        )

    def list_payments(self, invoice_id: UUID) -> PaymentList:
        invoice = self.get_invoice(invoice_id)
        return PaymentList(
            payments=[PaymentOut.model_validate(payment) for payment in invoice.payments],
            total=len(invoice.payments)
        )

    # ===== BORRADORES =====

    def _build_lines(self, lines_data: List[InvoiceLineCreate]) -> List[InvoiceLine]:
        if not lines_data:
            raise ValidationError("La factura debe incluir al menos una línea", field="lines")

        lines = []
        for position, line_data in enumerate(lines_data, start=1):
            quantity = to_decimal(line_data.quantity, "quantity")
            if quantity <= 0:
                raise ValidationError("La cantidad debe ser mayor a 0", field="quantity", position=position)

            description = (line_data.description or "").strip()
            if line_data.product_id is not None:
                product = self.db.query(Product).filter(Product.id == line_data.product_id).first()
                if not product:
                    raise ValidationError(
                        f"Producto no encontrado: {line_data.product_id}",
                        field="product_id",
                        position=position
                    )
                if not product.is_active:
                    raise ValidationError(f"El producto {product.sku} está inactivo", field="product_id", position=position)
                description = description or product.name
            elif not description:
                raise ValidationError("Una línea sin producto requiere descripción", field="description", position=position)

            discount_percent = line_data.discount_percent or Decimal("0")
            self._check_scales(position, {
                "quantity": quantity,
                "unit_price": line_data.unit_price,
                "tax_rate": line_data.tax_rate,
                "discount_percent": discount_percent,
            })
            line_subtotal, line_tax = compute_line_total(
                quantity, line_data.unit_price, line_data.tax_rate, discount_percent
            )
            lines.append(InvoiceLine(
                position=position,
                product_id=line_data.product_id,
                description=description,
                quantity=quantity,
                unit_price=line_data.unit_price,
                discount_percent=discount_percent,
                tax_rate=line_data.tax_rate,
                line_subtotal=line_subtotal,
                line_tax=line_tax
            ))
        return lines

    @staticmethod
    def _check_scales(position: int, values: dict) -> None:
        """Rechaza valores con más decimales de los que guarda la columna"""
        for field, value in values.items():
            value = to_decimal(value, field)
            places = LINE_SCALES[field]
            if value != value.quantize(Decimal(1).scaleb(-places)):
                raise ValidationError(
                    f"'{field}' admite hasta {places} decimales",
                    field=field,
                    position=position
                )

    @staticmethod
    def _apply_totals(invoice: Invoice) -> None:
        totals = compute_invoice_totals(invoice.lines)
        if totals.total >= MAX_AMOUNT:
            raise ValidationError(
                f"El total de la factura debe ser menor a {MAX_AMOUNT}",
                field="total",
                total=totals.total
            )
        invoice.subtotal = totals.subtotal
        invoice.discount_total = totals.discount_total
        invoice.tax_total = totals.tax_total
        invoice.total = totals.total

    def create_draft(self, data: InvoiceCreate, actor_id: UUID) -> Invoice:
        """Crear factura en borrador; no toca inventario ni numeración"""
        currency = parse_currency(data.currency)
        exchange_rate = to_decimal(data.exchange_rate, "exchange_rate")
        if exchange_rate <= 0:
            raise ValidationError("La tasa de cambio debe ser mayor que cero", field="exchange_rate")

        with atomic(self.db, "invoice"):
            invoice = Invoice(
                series=(data.series or settings.INVOICE_PREFIX).upper(),
                client_id=data.client_id,
                client_name=data.client_name.strip(),
                client_tax_id=data.client_tax_id,
                currency=currency,
                exchange_rate=exchange_rate,
                issue_date=data.issue_date,
                due_date=data.due_date,
                notes=data.notes,
                status=InvoiceStatus.DRAFT,
                created_by=actor_id
            )
            invoice.lines = self._build_lines(data.lines)
            self._apply_totals(invoice)
            self.db.add(invoice)

        logger.info(f"Draft invoice {invoice.id} created by {actor_id} with total {invoice.total} {currency.value}")
        return invoice

    def update_draft(self, invoice_id: UUID, data: InvoiceUpdate, actor_id: UUID) -> Invoice:
        """Editar un borrador; si vienen líneas se reemplaza la lista completa"""
        with atomic(self.db, "invoice"):
            invoice = self._get_for_update(invoice_id)
            ensure_invoice_action(invoice, InvoiceAction.EDIT)

            changes = data.model_dump(exclude_unset=True, exclude={"lines"})
            if "currency" in changes and changes["currency"] is not None:
                changes["currency"] = parse_currency(changes["currency"])
            for field, value in changes.items():
                if value is None and field in ("client_name", "currency", "exchange_rate", "issue_date"):
                    continue
                setattr(invoice, field, value)

            if invoice.due_date and invoice.issue_date and invoice.due_date < invoice.issue_date:
                raise ValidationError("La fecha de vencimiento no puede ser anterior a la fecha de emisión", field="due_date")

            if data.lines is not None:
                invoice.lines = self._build_lines(data.lines)
            self._apply_totals(invoice)

        logger.info(f"Draft invoice {invoice.id} updated by {actor_id}")
        return invoice

    def delete_draft(self, invoice_id: UUID, actor_id: UUID) -> Invoice:
        """Eliminación lógica de un borrador; sin efecto en inventario"""
        with atomic(self.db, "invoice"):
            invoice = self._get_for_update(invoice_id)
            ensure_invoice_action(invoice, InvoiceAction.DELETE)
            invoice.status = InvoiceStatus.DELETED
            invoice.deleted_at = _now()

        logger.info(f"Draft invoice {invoice.id} deleted by {actor_id}")
        return invoice

    # ===== EMISIÓN =====

    def _next_number(self, invoice: Invoice) -> str:
        """Siguiente número de la serie; corre dentro de la transacción de emisión"""
        sequence = self.db.query(InvoiceSequence).filter(
            InvoiceSequence.series == invoice.series
        ).populate_existing().with_for_update().first()

        if not sequence:
            sequence = InvoiceSequence(series=invoice.series, prefix=invoice.series, current_number=0)
            self.db.add(sequence)

        sequence.current_number = (sequence.current_number or 0) + 1
        return format_invoice_number(
            settings.INVOICE_PATTERN,
            sequence.prefix,
            sequence.current_number,
            client_name=invoice.client_name,
            when=invoice.issue_date,
            digits=settings.INVOICE_NUMBER_DIGITS
        )

    def _ensure_open_session(self, cash_session_id: UUID) -> CashSession:
        cash_session = self.db.query(CashSession).filter(
            CashSession.id == cash_session_id
        ).populate_existing().first()
        if not cash_session or cash_session.status != CashSessionStatus.OPEN:
            logger.warning(f"Issue rejected: cash session {cash_session_id} is not open")
            raise NoActiveSession(
                "La sesión de caja indicada no existe o no está abierta",
                cash_session_id=str(cash_session_id)
            )
        return cash_session

    def issue(self, invoice_id: UUID, actor_id: UUID, cash_session_id: Optional[UUID] = None) -> Invoice:
        """
        Emitir factura.

        En una sola transacción: recalcula totales, asigna el número de la
        serie y descuenta inventario por producto. Si falta existencia en
        cualquier producto no cambia nada.
        """
        with atomic(self.db, "invoice"):
            invoice = self._get_for_update(invoice_id)
            ensure_invoice_action(invoice, InvoiceAction.ISSUE)

            if cash_session_id is not None:
                self._ensure_open_session(cash_session_id)

            self._apply_totals(invoice)
            number = self._next_number(invoice)

            self.inventory.decrement_for_invoice(
                invoice.lines, actor_id, invoice_id=invoice.id, reference=number
            )

            invoice.number = number
            invoice.status = InvoiceStatus.ISSUED
            invoice.cash_session_id = cash_session_id
            invoice.issued_by = actor_id
            invoice.issued_at = _now()

        logger.info(f"Invoice {invoice.number} issued by {actor_id} for {invoice.total} {invoice.currency.value}")
        return invoice

    # ===== PAGOS =====

    def record_payment(self, invoice_id: UUID, data: PaymentCreate, actor_id: UUID) -> Payment:
        """
        Registrar un abono.

        Si la moneda del pago difiere de la factura se exige la tasa y se
        acredita convert(amount, rate) en la moneda de la factura.
        """
        amount = money(data.amount)
        if amount <= 0:
            raise ValidationError("El monto del pago debe ser mayor a 0", field="amount")

        with atomic(self.db, "invoice"):
            invoice = self._get_for_update(invoice_id)
            ensure_invoice_action(invoice, InvoiceAction.PAY)

            currency = parse_currency(data.currency or invoice.currency)
            if currency != invoice.currency:
                if data.exchange_rate is None:
                    raise ValidationError(
                        f"Se requiere tasa de cambio para pagar en {currency.value} una factura en {invoice.currency.value}",
                        field="exchange_rate"
                    )
                exchange_rate = to_decimal(data.exchange_rate, "exchange_rate")
                applied_amount = convert(amount, exchange_rate)
            else:
                exchange_rate = Decimal("1")
                applied_amount = amount

            tolerance = settings.PAYMENT_TOLERANCE
            total = Decimal(invoice.total)
            paid_amount = money(Decimal(invoice.paid_amount or 0) + applied_amount)
            if paid_amount > total + tolerance:
                logger.warning(f"Overpayment rejected on invoice {invoice.number}: {paid_amount} > {total}")
                raise ValidationError(
                    f"El pago excede el saldo pendiente de la factura ({invoice.balance_due})",
                    field="amount",
                    balance_due=invoice.balance_due,
                    applied_amount=applied_amount
                )

            payment = Payment(
                amount=amount,
                currency=currency,
                exchange_rate=exchange_rate,
                applied_amount=applied_amount,
                method=data.method,
                reference=data.reference,
                payment_date=data.payment_date or date.today(),
                notes=data.notes,
                created_by=actor_id
            )
            invoice.payments.append(payment)
            invoice.paid_amount = paid_amount
            invoice.status = InvoiceStatus.PAID if paid_amount >= total - tolerance else InvoiceStatus.PARTIAL

        logger.info(
            f"Payment {amount} {currency.value} ({data.method.value}) recorded on invoice {invoice.number}; "
            f"status {invoice.status.value}"
        )
        return payment

    # ===== ANULACIÓN =====

    def cancel(
        self,
        invoice_id: UUID,
        actor_id: UUID,
        reason: Optional[str] = None,
        payment_policy: Optional[Union[CancelledPaymentPolicy, str]] = None
    ) -> Invoice:
        """
        Anular factura emitida.

        Devuelve al inventario exactamente lo descontado al emitir. Con la
        política "void" los pagos quedan marcados como anulados y dejan de
        contar en el cuadre de caja; con "keep" no se tocan.
        """
        if payment_policy is None:
            payment_policy = settings.CANCELLED_INVOICE_PAYMENT_POLICY
        try:
            policy = CancelledPaymentPolicy(getattr(payment_policy, "value", payment_policy))
        except ValueError:
            raise ValidationError(f"Política de pagos desconocida: {payment_policy!r}", field="payment_policy")

        with atomic(self.db, "invoice"):
            invoice = self._get_for_update(invoice_id)
            ensure_invoice_action(invoice, InvoiceAction.CANCEL)

            self.inventory.restore_for_invoice(
                invoice.lines, actor_id, invoice_id=invoice.id, reference=invoice.number
            )

            voided = 0
            if policy == CancelledPaymentPolicy.VOID:
                cancelled_at = _now()
                for payment in invoice.payments:
                    if payment.voided_at is None:
                        payment.voided_at = cancelled_at
                        voided += 1

            invoice.status = InvoiceStatus.CANCELLED
            invoice.cancelled_by = actor_id
            invoice.cancelled_at = _now()
            invoice.cancel_reason = reason

        logger.info(
            f"Invoice {invoice.number} cancelled by {actor_id} (policy {policy.value}, {voided} payments voided)"
        )
        return invoice
