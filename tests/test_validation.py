"""Tests for input validators."""

from decimal import Decimal

import pytest

from cloudscribe.errors import ValidationError
from cloudscribe.schema import CheckoutRequest, VerifyRequest
from cloudscribe.validation import (
    require_identifier,
    sanitize_string,
    to_decimal,
    validate_and_sanitize,
    validate_email,
    validate_money,
    validate_quantity,
    validate_reference,
    validate_url,
    validate_uuid,
)


class TestStrings:
    def test_sanitize_strips_brackets_and_space(self):
        assert sanitize_string("  <b>hi</b> ") == "bhi/b"

    def test_email_lowercased(self):
        assert validate_email(" Ada@Example.COM ") == "ada@example.com"

    @pytest.mark.parametrize("bad", ["", "no-at", "a@b", 42, None])
    def test_bad_email(self, bad):
        with pytest.raises(ValidationError) as exc_info:
            validate_email(bad)
        assert exc_info.value.fields == {"email": "Invalid email address"}

    def test_uuid(self):
        value = "12345678-1234-5678-1234-567812345678"
        assert validate_uuid(value.upper()) == value

    def test_bad_uuid(self):
        with pytest.raises(ValidationError):
            validate_uuid("not-a-uuid", "purchase_id")

    def test_url(self):
        assert validate_url("https://cloudscribe.app/x") == "https://cloudscribe.app/x"

    @pytest.mark.parametrize("bad", ["ftp://x.com", "javascript:alert(1)", "/relative", 3])
    def test_bad_url(self, bad):
        with pytest.raises(ValidationError):
            validate_url(bad)

    def test_identifier(self):
        assert require_identifier(" prod-1 ", "product_id") == "prod-1"

    @pytest.mark.parametrize("bad", ["", "   ", None, "../etc", "a/b", "x" * 200])
    def test_bad_identifier(self, bad):
        with pytest.raises(ValidationError) as exc_info:
            require_identifier(bad, "product_id")
        assert "product_id" in exc_info.value.fields


class TestReference:
    @pytest.mark.parametrize("ref", ["CS_1700000000000_prod-1", "template_abc_123", "free_1"])
    def test_valid(self, ref):
        assert validate_reference(f" {ref} ") == ref

    @pytest.mark.parametrize("bad", ["", "has space", "semi;colon", "x" * 101, None])
    def test_invalid(self, bad):
        with pytest.raises(ValidationError):
            validate_reference(bad)


class TestNumbers:
    def test_to_decimal_avoids_binary_float(self):
        assert to_decimal(0.1) == Decimal("0.1")

    def test_money(self):
        assert validate_money("12.50") == Decimal("12.50")
        assert validate_money(Decimal("1.500")) == Decimal("1.500")

    def test_money_too_precise(self):
        with pytest.raises(ValidationError):
            validate_money("1.234")

    def test_money_negative(self):
        with pytest.raises(ValidationError):
            validate_money(-1)

    def test_quantity(self):
        assert validate_quantity(3) == 3

    @pytest.mark.parametrize("bad", [0, -1, True, 1.5, "2"])
    def test_bad_quantity(self, bad):
        with pytest.raises(ValidationError):
            validate_quantity(bad)


class TestValidateAndSanitize:
    def test_parses_and_sanitizes(self):
        body = validate_and_sanitize(CheckoutRequest, {"product_id": " <prod-1> ", "quantity": 2})
        assert body.product_id == "prod-1"
        assert body.quantity == 2

    def test_maps_field_errors(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_and_sanitize(CheckoutRequest, {"product_id": "p", "quantity": 0})
        assert "quantity" in exc_info.value.fields
        assert exc_info.value.to_payload()["code"] == "validation_error"

    def test_missing_required(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_and_sanitize(CheckoutRequest, {})
        assert "product_id" in exc_info.value.fields

    def test_non_dict(self):
        with pytest.raises(ValidationError):
            validate_and_sanitize(CheckoutRequest, ["product_id"])

    def test_trxref_fallback(self):
        body = validate_and_sanitize(VerifyRequest, {"trxref": "ref_123"})
        assert body.payment_reference == "ref_123"
