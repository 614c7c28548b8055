"""Tests for payment verification and webhook reconciliation."""

import json
import threading
from decimal import Decimal

import pytest

from cloudscribe.errors import (
    AuthenticationRequired,
    NotFound,
    ValidationError,
    VerificationFailed,
)
from cloudscribe.payments import create_template_purchase
from cloudscribe.reconcile import complete_purchase, handle_webhook, verify_payment
from cloudscribe.schema import TemplatePurchaseRequest, VerifyRequest
from tests.conftest import NOW, SELLER_ID, sign_webhook


@pytest.fixture()
def pending(services, buyer):
    """A pending template purchase with its gateway reference set."""
    result = create_template_purchase(
        services, buyer, TemplatePurchaseRequest(template_id="tmpl-1", return_url="https://x.test")
    )
    return services.store.purchases[result["purchase_id"]]


def _event(reference, amount_minor=500000, event="charge.success", **metadata):
    data = {"reference": reference, "amount": amount_minor, "metadata": metadata}
    return json.dumps({"event": event, "data": data}).encode()


class TestVerifyPayment:
    def test_completes_purchase(self, services, store, buyer, pending):
        result = verify_payment(services, buyer, VerifyRequest(reference=pending.payment_reference))

        assert result == {
            "success": True,
            "verified": True,
            "purchase_id": pending.id,
            "template": {"id": "tmpl-1", "name": "Resume Template", "price": 5000.0},
            "can_download": True,
            "download_token": "token-1",
        }
        purchase = store.purchases[pending.id]
        assert purchase.payment_status == "completed"
        assert purchase.purchase_date == NOW

        token = store.tokens["token-1"]
        assert token.purchase_id == pending.id
        assert token.used is False
        assert (token.expires_at - NOW).total_seconds() == 24 * 60 * 60

        assert len(store.notifications) == 1
        assert store.notifications[0].type == "purchase_success"
        assert store.notifications[0].user_id == buyer.id

    def test_idempotent(self, services, store, buyer, pending):
        request = VerifyRequest(reference=pending.payment_reference)
        first = verify_payment(services, buyer, request)
        second = verify_payment(services, buyer, request)

        assert first == second
        assert list(store.tokens) == ["token-1"]
        assert len(store.notifications) == 1

    def test_concurrent_verifications_agree(self, services, store, buyer, pending):
        request = VerifyRequest(reference=pending.payment_reference)
        barrier = threading.Barrier(8)
        results, errors = [], []

        def verify():
            barrier.wait()
            try:
                results.append(verify_payment(services, buyer, request))
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=verify) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)

        assert errors == []
        assert len(results) == 8
        assert all(result == results[0] for result in results)
        assert list(store.tokens) == [results[0]["download_token"]]
        assert len(store.notifications) == 1
        assert store.purchases[pending.id].payment_status == "completed"

    def test_trxref_accepted(self, services, buyer, pending):
        result = verify_payment(services, buyer, VerifyRequest(trxref=pending.payment_reference))
        assert result["purchase_id"] == pending.id

    def test_requires_buyer(self, services, gateway, pending):
        with pytest.raises(AuthenticationRequired):
            verify_payment(services, None, VerifyRequest(reference=pending.payment_reference))
        assert gateway.verified == []

    def test_missing_reference(self, services, gateway, buyer):
        with pytest.raises(ValidationError):
            verify_payment(services, buyer, VerifyRequest())
        assert gateway.verified == []

    @pytest.mark.parametrize("status", ["failed", "abandoned", "pending", ""])
    def test_gateway_not_success(self, services, store, gateway, buyer, pending, status):
        gateway.verify_status = status
        with pytest.raises(VerificationFailed):
            verify_payment(services, buyer, VerifyRequest(reference=pending.payment_reference))
        assert store.purchases[pending.id].payment_status == "pending"
        assert store.tokens == {}

    def test_other_buyers_reference_is_not_found(
        self, services, store, other_buyer, pending
    ):
        with pytest.raises(NotFound):
            verify_payment(
                services, other_buyer, VerifyRequest(reference=pending.payment_reference)
            )
        assert store.purchases[pending.id].payment_status == "pending"
        assert store.tokens == {}
        assert store.notifications == []

    def test_unknown_reference(self, services, buyer):
        with pytest.raises(NotFound):
            verify_payment(services, buyer, VerifyRequest(reference="template_unknown_1"))


class TestCompletePurchase:
    def test_second_completion_returns_first_token(self, services, pending):
        first = complete_purchase(services, pending)
        second = complete_purchase(services, pending)
        assert first.newly_completed is True
        assert second.newly_completed is False
        assert second.token == first.token


class TestWebhook:
    def test_rejects_bad_signature(self, services, pending):
        body = _event(pending.payment_reference, template_id="tmpl-1")
        with pytest.raises(AuthenticationRequired):
            handle_webhook(services, body, "deadbeef")
        assert services.store.purchases[pending.id].payment_status == "pending"

    def test_rejects_missing_signature(self, services, pending):
        with pytest.raises(AuthenticationRequired):
            handle_webhook(services, _event(pending.payment_reference), "")

    def test_invalid_json(self, services):
        body = b"{not json"
        with pytest.raises(ValidationError):
            handle_webhook(services, body, sign_webhook(body))

    def test_template_charge_completes_and_records_ledger(self, services, store, pending):
        body = _event(pending.payment_reference, template_id="tmpl-1", template_name="Resume")
        result = handle_webhook(services, body, sign_webhook(body))

        assert result == {
            "received": True,
            "handled": True,
            "purchase_id": pending.id,
            "ledger_written": True,
        }
        assert store.purchases[pending.id].payment_status == "completed"
        sale, fee = store.wallet_transactions
        assert (sale.type, sale.amount, sale.user_id) == ("sale", Decimal("4500.00"), SELLER_ID)
        assert (fee.type, fee.amount) == ("fee", Decimal("500.00"))

    def test_replayed_webhook_writes_ledger_once(self, services, store, pending):
        body = _event(pending.payment_reference, template_id="tmpl-1")
        handle_webhook(services, body, sign_webhook(body))
        replay = handle_webhook(services, body, sign_webhook(body))

        assert replay["ledger_written"] is False
        assert len(store.wallet_transactions) == 2
        assert len(store.tokens) == 1
        assert len(store.notifications) == 1

    def test_webhook_then_verify_share_token(self, services, buyer, pending):
        body = _event(pending.payment_reference, template_id="tmpl-1")
        handle_webhook(services, body, sign_webhook(body))
        result = verify_payment(services, buyer, VerifyRequest(reference=pending.payment_reference))
        assert result["download_token"] == "token-1"

    def test_product_sale_records_ledger(self, services, store):
        body = _event(
            "CS_1_prod-1", 100000, product_id="prod-1", seller_id=SELLER_ID, product_name="Notes"
        )
        result = handle_webhook(services, body, sign_webhook(body))

        assert result == {"received": True, "handled": True, "ledger_written": True}
        assert [t.amount for t in store.wallet_transactions] == [
            Decimal("900.00"),
            Decimal("100.00"),
        ]
        assert store.wallet_transactions[0].description == "Sale: Notes"

    def test_unknown_template_reference(self, services, store):
        body = _event("template_missing_1", template_id="tmpl-1")
        result = handle_webhook(services, body, sign_webhook(body))
        assert result == {"received": True, "handled": False}
        assert store.wallet_transactions == []

    def test_charge_without_metadata_skipped(self, services, store):
        body = _event("CS_1_x")
        assert handle_webhook(services, body, sign_webhook(body))["handled"] is False
        assert store.wallet_transactions == []

    def test_other_event_acknowledged(self, services):
        body = _event("ref_1", event="transfer.success")
        assert handle_webhook(services, body, sign_webhook(body)) == {
            "received": True,
            "handled": False,
        }
