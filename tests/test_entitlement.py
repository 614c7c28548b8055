"""Tests for download entitlement: quota, single-use tokens, signed URLs."""

from datetime import timedelta
from urllib.parse import parse_qs, urlparse

import pytest

from cloudscribe.entitlement import download_template
from cloudscribe.errors import (
    AuthenticationRequired,
    ConfigurationError,
    DownloadLimitExceeded,
    GatewayError,
    NotFound,
    TokenAlreadyUsed,
    TokenExpired,
)
from cloudscribe.payments import create_template_purchase
from cloudscribe.reconcile import verify_payment
from cloudscribe.schema import DownloadRequest, TemplatePurchaseRequest, VerifyRequest
from tests.conftest import FailingSigner


@pytest.fixture()
def completed(services, buyer):
    """A completed paid purchase and the download token issued with it."""
    request = TemplatePurchaseRequest(template_id="tmpl-1")
    result = create_template_purchase(services, buyer, request)
    purchase = services.store.purchases[result["purchase_id"]]
    verified = verify_payment(services, buyer, VerifyRequest(reference=purchase.payment_reference))
    return services.store.purchases[purchase.id], verified["download_token"]


class TestDownloadTemplate:
    def test_issues_signed_url(self, services, store, buyer, completed):
        purchase, token = completed
        result = download_template(
            services, buyer, DownloadRequest(purchase_id=purchase.id, download_token=token)
        )

        assert result["success"] is True
        assert result["template_name"] == "Resume Template"
        assert result["download_count"] == 1
        assert result["remaining_downloads"] == 4

        url = urlparse(result["download_url"])
        assert url.path == "/templates/resume.docx"
        claims = services.signer.verify(parse_qs(url.query)["token"][0])
        assert claims["path"] == "templates/resume.docx"
        assert claims["purchase_id"] == purchase.id
        assert claims["exp"] - claims["iat"] == 2 * 60 * 60

        assert store.tokens[token].used is True
        assert store.activity_logs[0].action == "template_download"
        assert store.activity_logs[0].details["remaining_downloads"] == 4

    def test_token_is_single_use(self, services, store, buyer, completed):
        purchase, token = completed
        request = DownloadRequest(purchase_id=purchase.id, download_token=token)
        download_template(services, buyer, request)
        with pytest.raises(TokenAlreadyUsed):
            download_template(services, buyer, request)
        assert store.purchases[purchase.id].download_count == 1

    def test_expired_token(self, services, store, buyer, clock, completed):
        purchase, token = completed
        clock.advance(hours=24)
        with pytest.raises(TokenExpired):
            download_template(
                services, buyer, DownloadRequest(purchase_id=purchase.id, download_token=token)
            )
        assert store.purchases[purchase.id].download_count == 0

    def test_unknown_token(self, services, buyer, completed):
        purchase, _ = completed
        with pytest.raises(NotFound):
            download_template(
                services, buyer, DownloadRequest(purchase_id=purchase.id, download_token="forged")
            )

    def test_quota_enforced(self, services, store, buyer, completed):
        purchase, _ = completed
        request = DownloadRequest(purchase_id=purchase.id)
        for n in range(1, 6):
            assert download_template(services, buyer, request)["download_count"] == n
        with pytest.raises(DownloadLimitExceeded):
            download_template(services, buyer, request)
        assert store.purchases[purchase.id].download_count == 5

    def test_limit_checked_before_token(self, services, store, buyer, clock, completed):
        purchase, token = completed
        store.purchases[purchase.id] = purchase.model_copy(update={"download_count": 5})
        clock.advance(days=2)
        with pytest.raises(DownloadLimitExceeded):
            download_template(
                services, buyer, DownloadRequest(purchase_id=purchase.id, download_token=token)
            )

    def test_limit_checked_before_token_lookup(self, services, store, buyer, completed):
        purchase, _ = completed
        store.purchases[purchase.id] = purchase.model_copy(update={"download_count": 5})
        with pytest.raises(DownloadLimitExceeded):
            download_template(
                services, buyer, DownloadRequest(purchase_id=purchase.id, download_token="forged")
            )

    def test_requires_buyer(self, services, completed):
        purchase, _ = completed
        with pytest.raises(AuthenticationRequired):
            download_template(services, None, DownloadRequest(purchase_id=purchase.id))

    def test_other_buyer_not_found(self, services, store, other_buyer, completed):
        purchase, token = completed
        with pytest.raises(NotFound):
            download_template(
                services,
                other_buyer,
                DownloadRequest(purchase_id=purchase.id, download_token=token),
            )
        assert store.purchases[purchase.id].download_count == 0
        assert store.tokens[token].used is False

    def test_pending_purchase_not_found(self, services, buyer):
        result = create_template_purchase(
            services, buyer, TemplatePurchaseRequest(template_id="tmpl-1")
        )
        with pytest.raises(NotFound):
            download_template(services, buyer, DownloadRequest(purchase_id=result["purchase_id"]))

    def test_free_purchase_downloads_without_token(self, services, buyer):
        result = create_template_purchase(
            services, buyer, TemplatePurchaseRequest(template_id="tmpl-free")
        )
        download = download_template(
            services, buyer, DownloadRequest(purchase_id=result["purchase_id"])
        )
        assert download["download_count"] == 1
        assert "/templates/planner.pdf?token=" in download["download_url"]

    def test_template_without_file(self, services, store, buyer, template, completed):
        purchase, token = completed
        store.add_template(template.model_copy(update={"file_path": ""}))
        with pytest.raises(NotFound, match="Template file not found"):
            download_template(
                services, buyer, DownloadRequest(purchase_id=purchase.id, download_token=token)
            )


class TestSigningFailureCompensation:
    def test_unexpected_error_restores_quota_and_token(self, services, store, buyer, completed):
        purchase, token = completed
        services.signer = FailingSigner(RuntimeError("storage down"))

        with pytest.raises(GatewayError, match="Failed to generate download URL"):
            download_template(
                services, buyer, DownloadRequest(purchase_id=purchase.id, download_token=token)
            )

        assert store.purchases[purchase.id].download_count == 0
        assert store.tokens[token].used is False
        assert store.activity_logs == []

    def test_domain_error_propagates_after_restore(self, services, store, buyer, completed):
        purchase, token = completed
        services.signer = FailingSigner(ConfigurationError())

        with pytest.raises(ConfigurationError):
            download_template(
                services, buyer, DownloadRequest(purchase_id=purchase.id, download_token=token)
            )
        assert store.purchases[purchase.id].download_count == 0

    def test_retry_after_failure_succeeds(self, services, store, buyer, completed):
        purchase, token = completed
        signer = services.signer
        services.signer = FailingSigner(RuntimeError("flaky"))
        request = DownloadRequest(purchase_id=purchase.id, download_token=token)
        with pytest.raises(GatewayError):
            download_template(services, buyer, request)

        services.signer = signer
        assert download_template(services, buyer, request)["download_count"] == 1


class TestTokenExpiryBoundary:
    def test_valid_just_before_expiry(self, services, buyer, clock, completed):
        purchase, token = completed
        clock.advance(hours=24)
        clock.now -= timedelta(seconds=1)
        result = download_template(
            services, buyer, DownloadRequest(purchase_id=purchase.id, download_token=token)
        )
        assert result["download_count"] == 1
