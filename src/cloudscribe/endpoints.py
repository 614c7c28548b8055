"""Function boundary: request in, ``(status, payload)`` out.

Every serverless handler and the local dev server go through
``run_function``. Domain errors become their mapped 4xx/5xx status with an
``{"error": message}`` body; anything unexpected is logged and reported as a
generic 500. Nothing escapes to crash the handling process.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field

from cloudscribe.entitlement import download_template
from cloudscribe.errors import CheckoutError, RateLimited
from cloudscribe.payments import create_checkout, create_template_purchase
from cloudscribe.reconcile import handle_webhook, verify_payment
from cloudscribe.schema import (
    Buyer,
    CheckoutRequest,
    DownloadRequest,
    TemplatePurchaseRequest,
    VerifyRequest,
)
from cloudscribe.services import Services
from cloudscribe.validation import validate_and_sanitize, validate_email

logger = logging.getLogger("cloudscribe.endpoints")


@dataclass
class FunctionRequest:
    """What a handler extracted from the HTTP request. Header names are lower-case."""

    body: dict = field(default_factory=dict)
    headers: Mapping[str, str] = field(default_factory=dict)
    buyer: Buyer | None = None
    client_ip: str = ""
    raw_body: bytes = b""

    def header(self, name: str) -> str:
        return self.headers.get(name.lower(), "")


def _throttle(services: Services, action: str, identity: str) -> None:
    decision = services.rate_limiter.check(action, identity or "anonymous")
    if not decision.allowed:
        logger.warning("Rate limited %s for %s", action, identity)
        raise RateLimited(retry_after=decision.retry_after)


def _identity(request: FunctionRequest) -> str:
    return request.buyer.id if request.buyer else request.client_ip


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


def _create_checkout(services: Services, request: FunctionRequest) -> dict:
    email = request.header("user-email") or (request.buyer.email if request.buyer else "")
    if email:
        email = validate_email(email, "user-email")
    _throttle(services, "checkout", email or request.client_ip)
    body = validate_and_sanitize(CheckoutRequest, request.body)
    return create_checkout(services, body, email=email, origin=request.header("origin"))


def _create_template_purchase(services: Services, request: FunctionRequest) -> dict:
    _throttle(services, "template_purchase", _identity(request))
    body = validate_and_sanitize(TemplatePurchaseRequest, request.body)
    return create_template_purchase(services, request.buyer, body)


def _verify_payment(services: Services, request: FunctionRequest) -> dict:
    _throttle(services, "verify", _identity(request))
    body = validate_and_sanitize(VerifyRequest, request.body)
    return verify_payment(services, request.buyer, body)


def _download_template(services: Services, request: FunctionRequest) -> dict:
    _throttle(services, "download", _identity(request))
    body = validate_and_sanitize(DownloadRequest, request.body)
    return download_template(services, request.buyer, body)


def _paystack_webhook(services: Services, request: FunctionRequest) -> dict:
    _throttle(services, "webhook", request.client_ip)
    return handle_webhook(services, request.raw_body, request.header("x-paystack-signature"))


FUNCTIONS: dict[str, Callable[[Services, FunctionRequest], dict]] = {
    "create-checkout": _create_checkout,
    "create-template-purchase": _create_template_purchase,
    "verify-payment": _verify_payment,
    "download-template": _download_template,
    "paystack-webhook": _paystack_webhook,
}


def run_function(services: Services, name: str, request: FunctionRequest) -> tuple[int, dict]:
    """Run the named function and convert every outcome to ``(status, payload)``."""
    operation = FUNCTIONS.get(name)
    if operation is None:
        return 404, {"error": f"Unknown function: {name}"}

    try:
        return 200, operation(services, request)
    except RateLimited as e:
        payload = e.to_payload()
        payload["retry_after"] = round(e.retry_after, 1)
        return e.status, payload
    except CheckoutError as e:
        log = logger.error if e.status >= 500 else logger.warning
        log("%s failed (%s): %s", name, e.code, e.message)
        return e.status, e.to_payload()
    except Exception:
        logger.exception("%s failed unexpectedly", name)
        return 500, {"error": "Internal server error"}
