"""Payment initiation: product checkout and template purchase.

Both operations compute the fee split locally, then open a hosted checkout
with the gateway. Amounts sent to the gateway are integer minor units.
"""

from __future__ import annotations

import logging
from decimal import Decimal

from cloudscribe.config import DEFAULT_CURRENCY, PAYSTACK_CHANNELS
from cloudscribe.errors import (
    AuthenticationRequired,
    ConfigurationError,
    NotFound,
    ValidationError,
)
from cloudscribe.fees import calculate_fees, line_subtotal, to_minor_units
from cloudscribe.gateway import mask_email, mask_reference
from cloudscribe.schema import Buyer, CheckoutRequest, Purchase, TemplatePurchaseRequest
from cloudscribe.services import Services

logger = logging.getLogger("cloudscribe.payments")

FALLBACK_EMAIL = "customer@example.com"


def _callback_urls(origin: str, allowed: frozenset[str]) -> tuple[str, str]:
    if origin not in allowed:
        origin = sorted(allowed)[0] if allowed else ""
    return f"{origin}/checkout/success", f"{origin}/checkout/cancel"


# ---------------------------------------------------------------------------
# Product checkout
# ---------------------------------------------------------------------------


def create_checkout(
    services: Services, request: CheckoutRequest, *, email: str = "", origin: str = ""
) -> dict:
    """Open a hosted checkout for ``quantity`` units of a published product.

    Returns ``{checkout_url, reference, amount, platform_fee, seller_amount}``.
    """
    product = services.store.get_product(request.product_id)
    if product is None:
        raise NotFound("Product not found or not available")

    fees = calculate_fees(line_subtotal(product.price, request.quantity))
    reference = f"CS_{services.millis()}_{product.id}"
    success_url, cancel_url = _callback_urls(origin, services.settings.allowed_origins)

    transaction = services.gateway.initialize_transaction(
        email=email or FALLBACK_EMAIL,
        amount_minor=fees.amount_minor,
        reference=reference,
        callback_url=success_url,
        cancel_url=cancel_url,
        currency=fees.currency,
        metadata={
            "product_id": product.id,
            "product_name": product.name,
            "quantity": request.quantity,
            "seller_id": product.seller_id,
            "platform_fee": float(fees.platform_fee),
            "seller_amount": float(fees.seller_amount),
        },
    )
    logger.info(
        "Checkout %s for %s: %s %s (fee %s)",
        mask_reference(transaction.reference),
        mask_email(email),
        fees.subtotal,
        fees.currency,
        fees.platform_fee,
    )
    return {
        "checkout_url": transaction.authorization_url,
        "reference": transaction.reference,
        **fees.to_payload(),
    }


# ---------------------------------------------------------------------------
# Template purchase
# ---------------------------------------------------------------------------


def create_template_purchase(
    services: Services, buyer: Buyer | None, request: TemplatePurchaseRequest
) -> dict:
    """Create a purchase row and, for paid templates, a hosted checkout.

    Free templates are recorded directly as completed without calling the
    gateway.
    """
    if buyer is None:
        raise AuthenticationRequired()

    template = services.store.get_template(request.template_id)
    if template is None:
        raise NotFound("Template not found or not published")

    now = services.clock()
    price = template.current_price(now)

    if template.is_free or price == 0:
        purchase = services.store.create_purchase(
            Purchase(
                id="",
                template_id=template.id,
                buyer_id=buyer.id,
                seller_id=template.author_id,
                price=Decimal("0"),
                currency=DEFAULT_CURRENCY,
                payment_status="completed",
                payment_reference=f"free_{services.millis()}",
                purchase_date=now,
                created_at=now,
            )
        )
        logger.info("Free template %s claimed by %s", template.id, buyer.id)
        return {
            "success": True,
            "purchase_id": purchase.id,
            "is_free": True,
            "download_url": f"{request.return_url}?purchase_id={purchase.id}",
        }

    if not services.settings.paystack_secret_key:
        # No pending row without a configured gateway
        raise ConfigurationError("Paystack key not configured")

    amount_minor = to_minor_units(price)
    if amount_minor <= 0:
        raise ValidationError(fields={"price": "must be positive"})

    purchase = services.store.create_purchase(
        Purchase(
            id="",
            template_id=template.id,
            buyer_id=buyer.id,
            seller_id=template.author_id,
            price=price,
            currency=DEFAULT_CURRENCY,
            payment_status="pending",
            created_at=now,
        )
    )

    transaction = services.gateway.initialize_transaction(
        email=buyer.email or FALLBACK_EMAIL,
        amount_minor=amount_minor,
        reference=f"template_{purchase.id}_{services.millis()}",
        callback_url=request.return_url,
        cancel_url=request.cancel_url,
        channels=PAYSTACK_CHANNELS,
        metadata={
            "template_id": template.id,
            "template_name": template.name,
            "buyer_id": buyer.id,
            "seller_id": template.author_id,
            "purchase_id": purchase.id,
        },
    )
    services.store.set_payment_reference(purchase.id, transaction.reference)
    logger.info(
        "Template purchase %s pending as %s", purchase.id, mask_reference(transaction.reference)
    )
    return {
        "success": True,
        "payment_url": transaction.authorization_url,
        "reference": transaction.reference,
        "purchase_id": purchase.id,
    }
