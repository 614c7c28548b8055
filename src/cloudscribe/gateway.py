"""Paystack client: initialize and verify transactions, check webhook signatures.

Talks to the gateway over plain HTTPS with urllib. Any transport failure or
non-success envelope is raised as ``GatewayError``; callers never see
urllib exceptions.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.parse import quote
from urllib.request import Request, urlopen

from cloudscribe.config import DEFAULT_CURRENCY, PAYSTACK_API_BASE
from cloudscribe.errors import ConfigurationError, GatewayError

logger = logging.getLogger("cloudscribe.gateway")


@dataclass(frozen=True)
class InitializedTransaction:
    authorization_url: str
    reference: str
    access_code: str = ""


@dataclass(frozen=True)
class VerifiedTransaction:
    reference: str
    status: str
    amount_minor: int
    currency: str
    metadata: dict

    @property
    def succeeded(self) -> bool:
        return self.status == "success"


def mask_reference(reference: str) -> str:
    """Mask a payment reference for logs: 'template_abc_123' -> 'temp...123'."""
    if not reference or len(reference) < 8:
        return "****"
    return reference[:4] + "..." + reference[-3:]


def mask_email(email: str) -> str:
    """Mask email for display: 'john@example.com' -> 'j***@example.com'."""
    if not email or "@" not in email:
        return ""
    local, domain = email.rsplit("@", 1)
    masked = local[0] + "***" if len(local) > 1 else "***"
    return f"{masked}@{domain}"


class PaystackClient:
    """Thin wrapper over the Paystack transaction API."""

    def __init__(self, secret_key: str, base_url: str = PAYSTACK_API_BASE, timeout: float = 10):
        self.secret_key = secret_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def _request(self, method: str, path: str, payload: dict | None = None) -> dict[str, Any]:
        if not self.secret_key:
            raise ConfigurationError("Paystack key not configured")

        data = json.dumps(payload).encode() if payload is not None else None
        req = Request(f"{self.base_url}{path}", data=data, method=method)
        req.add_header("Authorization", f"Bearer {self.secret_key}")
        req.add_header("Accept", "application/json")
        if data is not None:
            req.add_header("Content-Type", "application/json")

        try:
            with urlopen(req, timeout=self.timeout) as resp:  # noqa: S310
                body = json.loads(resp.read())
        except HTTPError as e:
            error_body = e.read().decode(errors="replace") if e.fp else str(e)
            logger.error("Paystack %s %s failed (%s): %s", method, path, e.code, error_body)
            raise GatewayError() from e
        except (URLError, TimeoutError, json.JSONDecodeError) as e:
            logger.error("Paystack %s %s unreachable: %s", method, path, e)
            raise GatewayError() from e

        if not isinstance(body, dict) or not body.get("status"):
            message = body.get("message") if isinstance(body, dict) else None
            logger.error("Paystack %s %s rejected: %s", method, path, message)
            raise GatewayError()
        return body

    def initialize_transaction(
        self,
        *,
        email: str,
        amount_minor: int,
        reference: str,
        callback_url: str = "",
        cancel_url: str = "",
        metadata: dict | None = None,
        currency: str = DEFAULT_CURRENCY,
        channels: tuple[str, ...] | None = None,
    ) -> InitializedTransaction:
        """Create a hosted checkout. ``amount_minor`` is in kobo/cents."""
        payload: dict[str, Any] = {
            "email": email,
            "amount": amount_minor,
            "currency": currency,
            "reference": reference,
            "metadata": dict(metadata or {}),
        }
        if callback_url:
            payload["callback_url"] = callback_url
        if cancel_url:
            payload["metadata"]["cancel_action"] = cancel_url
        if channels:
            payload["channels"] = list(channels)

        body = self._request("POST", "/transaction/initialize", payload)
        data = body.get("data") or {}
        logger.info("Initialized transaction %s", mask_reference(data.get("reference", reference)))
        return InitializedTransaction(
            authorization_url=data.get("authorization_url", ""),
            reference=data.get("reference", reference),
            access_code=data.get("access_code", ""),
        )

    def verify_transaction(self, reference: str) -> VerifiedTransaction:
        body = self._request("GET", f"/transaction/verify/{quote(reference, safe='')}")
        data = body.get("data") or {}
        return VerifiedTransaction(
            reference=data.get("reference", reference),
            status=str(data.get("status", "")),
            amount_minor=int(data.get("amount") or 0),
            currency=data.get("currency", DEFAULT_CURRENCY),
            metadata=data.get("metadata") or {},
        )

    def verify_webhook_signature(self, raw_body: bytes, signature: str) -> bool:
        """HMAC-SHA512 of the raw body with the secret key, hex encoded."""
        if not self.secret_key or not signature:
            return False
        expected = hmac.new(self.secret_key.encode(), raw_body, hashlib.sha512).hexdigest()
        return hmac.compare_digest(expected, signature)
