"""Purchase reconciliation: confirm a gateway payment and advance local state.

A purchase moves ``pending -> completed`` exactly once. Completion, the
download token and the buyer notification are written by one atomic store
call, so there is never a completed purchase without its token. Every entry
point here is idempotent: a second verification, a webhook racing the
browser redirect, or a page refresh all observe ``completed`` and return the
same success payload.
"""

from __future__ import annotations

import json
import logging
from datetime import timedelta
from decimal import Decimal

from cloudscribe.config import DOWNLOAD_TOKEN_TTL_SECONDS
from cloudscribe.errors import AuthenticationRequired, NotFound, ValidationError, VerificationFailed
from cloudscribe.fees import calculate_fees, from_minor_units
from cloudscribe.gateway import mask_reference
from cloudscribe.schema import (
    Buyer,
    DownloadToken,
    Notification,
    Purchase,
    VerifyRequest,
    WalletTransaction,
)
from cloudscribe.services import Services
from cloudscribe.store import Completion
from cloudscribe.validation import validate_reference

logger = logging.getLogger("cloudscribe.reconcile")


def complete_purchase(services: Services, purchase: Purchase) -> Completion:
    """Complete ``purchase`` with a new token and notification.

    If the purchase is already completed the store returns the existing
    completion instead, including the token issued the first time.
    """
    now = services.clock()
    template = services.store.get_template(purchase.template_id) if purchase.template_id else None
    name = template.name if template else "your item"

    token = DownloadToken(
        token=services.token_factory(),
        purchase_id=purchase.id,
        expires_at=now + timedelta(seconds=DOWNLOAD_TOKEN_TTL_SECONDS),
    )
    notification = Notification(
        user_id=purchase.buyer_id,
        type="purchase_success",
        title="Template Purchase Successful",
        message=f'You have successfully purchased "{name}". You can now download it.',
        metadata={
            "template_id": purchase.template_id,
            "purchase_id": purchase.id,
            "download_token": token.token,
        },
    )
    completion = services.store.complete_purchase(
        purchase.id, now=now, token=token, notification=notification
    )
    if completion.newly_completed:
        logger.info("Purchase %s completed", purchase.id)
    else:
        logger.info("Purchase %s already completed, returning existing entitlement", purchase.id)
    return completion


def _success_payload(services: Services, completion: Completion) -> dict:
    purchase = completion.purchase
    template = services.store.get_template(purchase.template_id) if purchase.template_id else None
    payload = {
        "success": True,
        "verified": True,
        "purchase_id": purchase.id,
        "template": template.summary() if template else None,
        "can_download": True,
    }
    if completion.token is not None:
        payload["download_token"] = completion.token.token
    return payload


def verify_payment(services: Services, buyer: Buyer | None, request: VerifyRequest) -> dict:
    """Verify ``request.reference`` with the gateway and complete the buyer's purchase.

    Raises VerificationFailed when the gateway reports anything other than
    success, and NotFound when the reference does not belong to ``buyer``
    (including references that belong to somebody else).
    """
    if buyer is None:
        raise AuthenticationRequired()
    reference = validate_reference(request.payment_reference)

    verified = services.gateway.verify_transaction(reference)
    if not verified.succeeded:
        logger.warning(
            "Verification of %s returned status %r", mask_reference(reference), verified.status
        )
        raise VerificationFailed()

    purchase = services.store.find_purchase_by_reference(reference, buyer_id=buyer.id)
    if purchase is None:
        logger.warning("No purchase for %s owned by %s", mask_reference(reference), buyer.id)
        raise NotFound("Purchase not found")

    return _success_payload(services, complete_purchase(services, purchase))


# ---------------------------------------------------------------------------
# Gateway webhook
# ---------------------------------------------------------------------------


def _wallet_entries(
    seller_id: str, reference: str, gross: Decimal, label: str, metadata: dict
) -> list[WalletTransaction]:
    fees = calculate_fees(gross)
    return [
        WalletTransaction(
            user_id=seller_id,
            amount=fees.seller_amount,
            type="sale",
            description=f"Sale: {label}",
            reference=reference,
            metadata={
                **metadata,
                "gross_amount": float(fees.subtotal),
                "platform_fee": float(fees.platform_fee),
            },
        ),
        WalletTransaction(
            user_id=seller_id,
            amount=fees.platform_fee,
            type="fee",
            description=f"Platform fee (10%): {label}",
            reference=reference,
            metadata={**metadata, "seller_amount": float(fees.seller_amount), "fee_percentage": 10},
        ),
    ]


def _handle_charge_success(services: Services, data: dict) -> dict:
    reference = str(data.get("reference", ""))
    metadata = data.get("metadata") or {}
    if not isinstance(metadata, dict):
        metadata = {}
    gross = from_minor_units(int(data.get("amount") or 0))

    if metadata.get("template_id"):
        purchase = services.store.find_purchase_by_reference(reference)
        if purchase is None:
            logger.warning("Webhook charge for unknown purchase %s", mask_reference(reference))
            return {"received": True, "handled": False}
        completion = complete_purchase(services, purchase)
        entries = _wallet_entries(
            purchase.seller_id,
            reference,
            gross,
            str(metadata.get("template_name", "template")),
            {
                "template_id": purchase.template_id,
                "purchase_id": purchase.id,
                "buyer_id": purchase.buyer_id,
            },
        )
        recorded = services.store.record_wallet_transactions(reference, entries)
        return {
            "received": True,
            "handled": True,
            "purchase_id": completion.purchase.id,
            "ledger_written": recorded,
        }

    seller_id = metadata.get("seller_id")
    if not metadata.get("product_id") or not seller_id:
        logger.info("Charge %s has no product/seller metadata, skipping", mask_reference(reference))
        return {"received": True, "handled": False}

    entries = _wallet_entries(
        str(seller_id),
        reference,
        gross,
        str(metadata.get("product_name", "product")),
        {"product_id": metadata["product_id"]},
    )
    recorded = services.store.record_wallet_transactions(reference, entries)
    if recorded:
        logger.info(
            "Processed sale %s: %s to seller, %s platform fee",
            mask_reference(reference),
            entries[0].amount,
            entries[1].amount,
        )
    return {"received": True, "handled": True, "ledger_written": recorded}


def handle_webhook(services: Services, raw_body: bytes, signature: str) -> dict:
    """Verify and dispatch a gateway webhook event."""
    if not services.gateway.verify_webhook_signature(raw_body, signature):
        logger.warning("Rejected webhook with missing or invalid signature")
        raise AuthenticationRequired("Invalid signature")

    try:
        event = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise ValidationError("Invalid JSON") from None
    if not isinstance(event, dict):
        raise ValidationError("Invalid event")

    event_type = event.get("event", "")
    data = event.get("data") or {}
    if event_type == "charge.success" and isinstance(data, dict):
        return _handle_charge_success(services, data)

    logger.info("Unhandled webhook event type: %s", event_type)
    return {"received": True, "handled": False}
