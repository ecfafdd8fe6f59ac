from fastapi import APIRouter

from app.modules.currency.calculator import compute_invoice_totals, convert
from app.modules.currency.words import amount_to_legal_words
from app.modules.currency.schemas import (
    TotalsRequest, TotalsOut, LegalWordsRequest, LegalWordsOut, ConvertRequest, ConvertOut
)

calculator_router = APIRouter(prefix="/calculator", tags=["Calculator"])


@calculator_router.post("/totals", response_model=TotalsOut)
def preview_totals(payload: TotalsRequest):
    """
    Vista previa de totales de una factura sin persistir nada.

    Usa exactamente el mismo cálculo que la emisión, así la pantalla de
    venta muestra los montos que quedarán en la factura.
    """
    totals = compute_invoice_totals(payload.lines)
    return TotalsOut(**totals._asdict())


@calculator_router.post("/legal-words", response_model=LegalWordsOut)
def legal_words(payload: LegalWordsRequest):
    """Monto en letras para el documento impreso"""
    return LegalWordsOut(
        amount=payload.amount,
        text=amount_to_legal_words(payload.amount, payload.currency_label)
    )


@calculator_router.post("/convert", response_model=ConvertOut)
def convert_amount(payload: ConvertRequest):
    return ConvertOut(
        amount=payload.amount,
        rate=payload.rate,
        from_currency=payload.from_currency,
        to_currency=payload.to_currency,
        result=convert(payload.amount, payload.rate)
    )
