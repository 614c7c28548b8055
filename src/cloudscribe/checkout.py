"""Client-side checkout orchestration.

Turns the cart (or a single product) into one call to the remote
``create-checkout`` function and sends the user agent to the returned hosted
checkout page. Nothing is retried: a failed call raises ``CheckoutFailed``
and leaves the cart as it was, so the user can simply try again.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Protocol
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen

from cloudscribe.cart import Cart
from cloudscribe.errors import (
    AuthenticationRequired,
    CheckoutError,
    CheckoutFailed,
    GatewayError,
    ValidationError,
)
from cloudscribe.fees import calculate_fees, line_subtotal
from cloudscribe.schema import Buyer, CartItem, FeeBreakdown

logger = logging.getLogger("cloudscribe.checkout")

CREATE_CHECKOUT = "create-checkout"


class FunctionInvoker(Protocol):
    def __call__(self, name: str, body: dict, headers: dict[str, str]) -> dict: ...


class HttpFunctionInvoker:
    """Calls ``<functions_url>/<name>`` with a JSON body; raises GatewayError on failure."""

    def __init__(self, functions_url: str, access_token: str = "", timeout: float = 15):
        self.functions_url = functions_url.rstrip("/")
        self.access_token = access_token
        self.timeout = timeout

    def __call__(self, name: str, body: dict, headers: dict[str, str]) -> dict:
        req = Request(
            f"{self.functions_url}/{name}",
            data=json.dumps(body).encode(),
            method="POST",
        )
        req.add_header("Content-Type", "application/json")
        req.add_header("Accept", "application/json")
        if self.access_token:
            req.add_header("Authorization", f"Bearer {self.access_token}")
        for k, v in headers.items():
            req.add_header(k, v)

        try:
            with urlopen(req, timeout=self.timeout) as resp:  # noqa: S310
                return json.loads(resp.read())
        except HTTPError as e:
            message = _error_message(e)
            logger.error("Function %s returned %s: %s", name, e.code, message)
            raise GatewayError(message) from e
        except (URLError, TimeoutError, json.JSONDecodeError) as e:
            logger.error("Function %s unreachable: %s", name, e)
            raise GatewayError() from e


def _error_message(e: HTTPError) -> str | None:
    try:
        return json.loads(e.read()).get("error")
    except (ValueError, AttributeError, OSError):
        return None


@dataclass(frozen=True)
class CheckoutResult:
    reference: str
    checkout_url: str | None
    fees: FeeBreakdown
    redirected: bool


class CheckoutOrchestrator:
    """Coordinates cart state with the remote payment-initiation call.

    ``redirect`` receives the hosted checkout URL (a browser opener in the
    CLI, a recorder in tests).
    """

    def __init__(
        self,
        invoke: FunctionInvoker,
        redirect: Callable[[str], Any] | None = None,
        cart: Cart | None = None,
    ):
        self.invoke = invoke
        self.redirect = redirect
        self.cart = cart

    def checkout(
        self,
        user: Buyer | None,
        items: Sequence[CartItem] | None = None,
        *,
        product_id: str | None = None,
        price: Decimal | float | int | None = None,
        quantity: int = 1,
        origin: str = "",
    ) -> CheckoutResult:
        """Start a checkout for the cart's first line item, or a single product.

        Only the first cart line is sent per call; the rest of the cart is
        left for later checkouts.
        """
        if user is None:
            raise AuthenticationRequired()

        if items is None and self.cart is not None and product_id is None:
            items = self.cart.items

        if items:
            first = items[0]
            if len(items) > 1:
                logger.warning(
                    "Cart has %d lines, checking out only the first (%s)", len(items), first.id
                )
            product_id, quantity = first.id, first.quantity
            subtotal = first.line_total
        elif product_id:
            if price is None:
                raise ValidationError(fields={"price": "price is required with product_id"})
            subtotal = line_subtotal(price, quantity)
        else:
            raise ValidationError(fields={"items": "Nothing to check out"})

        fees = calculate_fees(subtotal)

        try:
            data = self.invoke(
                CREATE_CHECKOUT,
                {"product_id": product_id, "quantity": quantity},
                {"user-email": user.email, "origin": origin},
            )
        except CheckoutError as e:
            logger.error("Checkout failed for %s: %s", product_id, e)
            raise CheckoutFailed() from e
        except Exception as e:
            logger.exception("Checkout failed for %s", product_id)
            raise CheckoutFailed() from e

        if not isinstance(data, dict) or data.get("error"):
            raise CheckoutFailed()

        logger.info(
            "Checkout initiated. Total: %s %s (includes %s platform fee)",
            fees.currency,
            fees.subtotal,
            fees.platform_fee,
        )

        checkout_url = data.get("checkout_url") or None
        redirected = False
        if checkout_url is None:
            logger.warning("create-checkout returned no checkout_url, not redirecting")
        elif self.redirect is not None:
            self.redirect(checkout_url)
            redirected = True

        return CheckoutResult(
            reference=str(data.get("reference", "")),
            checkout_url=checkout_url,
            fees=fees,
            redirected=redirected,
        )

    def complete(self) -> None:
        """Called from the success page: the purchase went through, empty the cart."""
        if self.cart is not None:
            self.cart.clear()
