"""
Tests para el módulo de cálculo de moneda

Cubren:
- Totales de línea y de factura con redondeo ROUND_HALF_UP
- Independencia del orden de las líneas
- Conversión con tasa instantánea
- Monto en letras en los límites 100, 1.000 y 1.000.000
- Endpoints de vista previa
"""

import pytest
from decimal import Decimal

from app.common.exceptions import ValidationError
from app.modules.currency.calculator import (
    Currency, compute_line_total, compute_invoice_totals, convert, money, parse_currency
)
from app.modules.currency.words import amount_to_legal_words, integer_to_words


# ===== TESTS DE CALCULADORA =====

class TestLineTotal:

    def test_line_with_discount_and_tax(self):
        """Cant 2, precio 50, IVA 16%, descuento 10% -> subtotal 90, impuesto 14.4"""
        line_subtotal, line_tax = compute_line_total(Decimal("2"), Decimal("50"), Decimal("16"), Decimal("10"))
        assert line_subtotal == Decimal("90")
        assert line_tax == Decimal("14.4")

    def test_line_is_not_rounded(self):
        line_subtotal, line_tax = compute_line_total(Decimal("3"), Decimal("0.333"), Decimal("16"))
        assert line_subtotal == Decimal("0.999")
        assert line_tax == Decimal("0.15984")

    def test_negative_inputs_rejected(self):
        with pytest.raises(ValidationError):
            compute_line_total(Decimal("-1"), Decimal("10"), Decimal("0"))
        with pytest.raises(ValidationError):
            compute_line_total(Decimal("1"), Decimal("-10"), Decimal("0"))
        with pytest.raises(ValidationError):
            compute_line_total(Decimal("1"), Decimal("10"), Decimal("-16"))

    def test_discount_over_hundred_rejected(self):
        with pytest.raises(ValidationError):
            compute_line_total(Decimal("1"), Decimal("10"), Decimal("0"), Decimal("101"))


class TestInvoiceTotals:

    def test_totals_round_half_up(self):
        lines = [
            {"quantity": Decimal("1"), "unit_price": Decimal("10.005"), "tax_rate": Decimal("0")},
        ]
        totals = compute_invoice_totals(lines)
        assert totals.subtotal == Decimal("10.01")
        assert totals.total == Decimal("10.01")

    def test_subtotal_and_tax_rounded_independently(self):
        lines = [
            {"quantity": Decimal("1"), "unit_price": Decimal("0.125"), "tax_rate": Decimal("16")},
            {"quantity": Decimal("1"), "unit_price": Decimal("0.125"), "tax_rate": Decimal("16")},
        ]
        totals = compute_invoice_totals(lines)
        # 0.25 de subtotal, 0.04 de impuesto
        assert totals.subtotal == Decimal("0.25")
        assert totals.tax_total == Decimal("0.04")
        assert totals.total == Decimal("0.29")

    def test_total_equals_rounded_sum_regardless_of_order(self):
        lines = [
            {"quantity": Decimal("3"), "unit_price": Decimal("1.115"), "tax_rate": Decimal("16")},
            {"quantity": Decimal("7"), "unit_price": Decimal("2.345"), "tax_rate": Decimal("8")},
            {"quantity": Decimal("0.5"), "unit_price": Decimal("19.99"), "tax_rate": Decimal("0"), "discount_percent": Decimal("5")},
            {"quantity": Decimal("11"), "unit_price": Decimal("0.005"), "tax_rate": Decimal("16")},
        ]
        forward = compute_invoice_totals(lines)
        backward = compute_invoice_totals(list(reversed(lines)))

        assert forward == backward
        assert forward.total == money(forward.subtotal + forward.tax_total)

    def test_discount_total(self):
        lines = [{"quantity": Decimal("2"), "unit_price": Decimal("50"), "tax_rate": Decimal("16"), "discount_percent": Decimal("10")}]
        totals = compute_invoice_totals(lines)
        assert totals.discount_total == Decimal("10.00")
        assert totals.subtotal == Decimal("90.00")
        assert totals.tax_total == Decimal("14.40")
        assert totals.total == Decimal("104.40")

    def test_accepts_objects_with_attributes(self):
        class Line:
            quantity = Decimal("2")
            unit_price = Decimal("25")
            tax_rate = Decimal("0")
            discount_percent = None

        totals = compute_invoice_totals([Line()])
        assert totals.total == Decimal("50.00")


class TestConvert:

    def test_convert_rounds_to_cents(self):
        assert convert(Decimal("10"), Decimal("36.4567")) == Decimal("364.57")

    def test_convert_half_up(self):
        assert convert(Decimal("1"), Decimal("0.125")) == Decimal("0.13")

    @pytest.mark.parametrize("rate", [Decimal("0"), Decimal("-1")])
    def test_non_positive_rate_rejected(self, rate):
        with pytest.raises(ValidationError):
            convert(Decimal("10"), rate)

    def test_parse_currency(self):
        assert parse_currency("usd") == Currency.USD
        with pytest.raises(ValidationError):
            parse_currency("COP")


# ===== TESTS DE MONTO EN LETRAS =====

class TestLegalWords:

    def test_zero(self):
        assert amount_to_legal_words(0, "BOLIVARES") == "SON: CERO BOLIVARES CON 00/100"

    def test_one_hundred_is_cien(self):
        text = amount_to_legal_words(100, "BOLIVARES")
        assert "CIEN " in text
        assert "CIENTO " not in text
        assert text == "SON: CIEN BOLIVARES CON 00/100"

    def test_hundred_and_one_is_ciento(self):
        assert integer_to_words(101) == "CIENTO UN"

    def test_one_thousand_has_no_un_prefix(self):
        assert amount_to_legal_words(1000, "BOLIVARES") == "SON: MIL BOLIVARES CON 00/100"

    def test_one_million(self):
        text = amount_to_legal_words(1000000, "BOLIVARES")
        assert text.startswith("SON: UN MILLON")
        assert text == "SON: UN MILLON BOLIVARES CON 00/100"

    def test_one_is_un(self):
        assert amount_to_legal_words(1, "DOLARES") == "SON: UN DOLARES CON 00/100"

    @pytest.mark.parametrize("number,expected", [
        (15, "QUINCE"),
        (21, "VEINTIUN"),
        (29, "VEINTINUEVE"),
        (30, "TREINTA"),
        (45, "CUARENTA Y CINCO"),
        (200, "DOSCIENTOS"),
        (999, "NOVECIENTOS NOVENTA Y NUEVE"),
        (2000, "DOS MIL"),
        (21000, "VEINTIUN MIL"),
        (100000, "CIEN MIL"),
        (1001, "MIL UN"),
        (2000000, "DOS MILLONES"),
        (1001000, "UN MILLON MIL"),
        (2500100, "DOS MILLONES QUINIENTOS MIL CIEN"),
        (1000000000, "MIL MILLONES"),
        (3200000000, "TRES MIL DOSCIENTOS MILLONES"),
    ])
    def test_boundaries_and_multiples(self, number, expected):
        assert integer_to_words(number) == expected

    def test_cents_are_rounded_and_padded(self):
        assert amount_to_legal_words(Decimal("1250.5"), "BOLIVARES") == "SON: MIL DOSCIENTOS CINCUENTA BOLIVARES CON 50/100"
        assert amount_to_legal_words(Decimal("7.075"), "BOLIVARES") == "SON: SIETE BOLIVARES CON 08/100"

    def test_cents_never_reach_hundred(self):
        assert amount_to_legal_words(Decimal("0.999"), "BOLIVARES") == "SON: UN BOLIVARES CON 00/100"

    def test_negative_rejected(self):
        with pytest.raises(ValidationError):
            amount_to_legal_words(Decimal("-0.01"), "BOLIVARES")

    def test_out_of_range_rejected(self):
        with pytest.raises(ValidationError):
            amount_to_legal_words(Decimal("1000000000000"), "BOLIVARES")


# ===== TESTS DE ENDPOINTS =====

class TestCalculatorEndpoints:

    def test_totals_preview(self, client):
        response = client.post("/api/v1/calculator/totals", json={
            "lines": [
                {"quantity": "2", "unit_price": "50", "tax_rate": "16", "discount_percent": "10"}
            ]
        })
        assert response.status_code == 200
        data = response.json()
        assert Decimal(data["total"]) == Decimal("104.40")
        assert Decimal(data["discount_total"]) == Decimal("10.00")

    def test_totals_requires_lines(self, client):
        response = client.post("/api/v1/calculator/totals", json={"lines": []})
        assert response.status_code == 422

    def test_legal_words(self, client):
        response = client.post("/api/v1/calculator/legal-words", json={"amount": "100"})
        assert response.status_code == 200
        assert response.json()["text"] == "SON: CIEN BOLIVARES CON 00/100"

    def test_legal_words_negative_is_validation_error(self, client):
        response = client.post("/api/v1/calculator/legal-words", json={"amount": "-5"})
        assert response.status_code == 422
        assert response.json()["error"] == "validation_error"

    def test_convert(self, client):
        response = client.post("/api/v1/calculator/convert", json={
            "amount": "10", "rate": "36.4567", "from_currency": "USD", "to_currency": "VES"
        })
        assert response.status_code == 200
        assert Decimal(response.json()["result"]) == Decimal("364.57")

    def test_convert_zero_rate(self, client):
        response = client.post("/api/v1/calculator/convert", json={"amount": "10", "rate": "0"})
        assert response.status_code == 422
        assert response.json()["error"] == "validation_error"

    def test_responses_carry_tracing_and_security_headers(self, client):
        response = client.post("/api/v1/calculator/convert", json={"amount": "1", "rate": "2"})
        assert "X-Process-Time" in response.headers
        assert response.headers["X-Content-Type-Options"] == "nosniff"

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert "X-Process-Time" not in response.headers
