"""Download entitlement: quota, single-use tokens and signed file URLs."""

from __future__ import annotations

import logging

from cloudscribe.errors import (
    AuthenticationRequired,
    CheckoutError,
    GatewayError,
    NotFound,
)
from cloudscribe.schema import ActivityLog, Buyer, DownloadRequest
from cloudscribe.services import Services

logger = logging.getLogger("cloudscribe.entitlement")


def download_template(services: Services, buyer: Buyer | None, request: DownloadRequest) -> dict:
    """Issue a 2-hour signed URL for a completed purchase owned by ``buyer``.

    The quota check, token consumption and count increment happen in one
    store call. If the URL cannot be signed afterwards, that step is undone
    and the caller gets a retryable GatewayError.
    """
    if buyer is None:
        raise AuthenticationRequired()

    purchase = services.store.get_purchase(request.purchase_id, buyer.id)
    if purchase is None or not purchase.is_completed:
        raise NotFound("Purchase not found or not completed")

    template = services.store.get_template(purchase.template_id) if purchase.template_id else None
    if template is None or not template.file_path:
        raise NotFound("Template file not found")

    token = request.download_token or None
    redemption = services.store.consume_download(purchase.id, token, now=services.clock())

    try:
        url = services.signer.sign(template.file_path, purchase_id=purchase.id)
    except CheckoutError:
        services.store.restore_download(purchase.id, token)
        raise
    except Exception as e:
        logger.exception("Signing download URL failed for purchase %s", purchase.id)
        services.store.restore_download(purchase.id, token)
        raise GatewayError("Failed to generate download URL") from e

    updated = redemption.purchase
    services.store.add_activity_log(
        ActivityLog(
            user_id=buyer.id,
            action="template_download",
            details={
                "template_id": template.id,
                "template_name": template.name,
                "purchase_id": purchase.id,
                "download_count": updated.download_count,
                "remaining_downloads": updated.remaining_downloads,
            },
        )
    )
    logger.info(
        "Download %d/%d for purchase %s",
        updated.download_count,
        updated.max_downloads,
        purchase.id,
    )
    return {
        "success": True,
        "download_url": url,
        "template_name": template.name,
        "download_count": updated.download_count,
        "remaining_downloads": updated.remaining_downloads,
    }
