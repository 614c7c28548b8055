"""Error taxonomy for the checkout and reconciliation flow.

Every error carries the HTTP status it maps to and a stable machine code, so
endpoint boundaries can turn any of them into a ``{"error": message}`` body
without further inspection.
"""

from __future__ import annotations


class CheckoutError(Exception):
    """Base class for all expected failures in the payment flow."""

    status = 400
    code = "checkout_error"
    default_message = "Request failed"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)

    def to_payload(self) -> dict:
        return {"error": self.message, "code": self.code}


class AuthenticationRequired(CheckoutError):
    status = 401
    code = "authentication_required"
    default_message = "Please log in to make a purchase."


class ValidationError(CheckoutError):
    """Malformed input. ``fields`` maps field names to messages."""

    status = 400
    code = "validation_error"
    default_message = "Invalid request"

    def __init__(self, message: str | None = None, fields: dict[str, str] | None = None):
        self.fields = dict(fields or {})
        if message is None and self.fields:
            message = "Validation failed: " + ", ".join(
                f"{name}: {msg}" for name, msg in self.fields.items()
            )
        super().__init__(message)

    def to_payload(self) -> dict:
        payload = super().to_payload()
        if self.fields:
            payload["fields"] = self.fields
        return payload


class NotFound(CheckoutError):
    """Record missing, or owned by someone else. The two are indistinguishable."""

    status = 404
    code = "not_found"
    default_message = "Not found"


class RateLimited(CheckoutError):
    status = 429
    code = "rate_limited"
    default_message = "Too many requests, try again later"

    def __init__(self, message: str | None = None, retry_after: float = 0.0):
        self.retry_after = retry_after
        super().__init__(message)


class GatewayError(CheckoutError):
    """Payment gateway or storage call failed. Safe to retry by hand."""

    status = 502
    code = "gateway_error"
    default_message = "Payment service temporarily unavailable"


class CheckoutFailed(GatewayError):
    code = "checkout_failed"
    default_message = "Failed to initiate checkout. Please try again."


class VerificationFailed(CheckoutError):
    status = 400
    code = "verification_failed"
    default_message = "Payment verification failed"


class DownloadLimitExceeded(CheckoutError):
    status = 403
    code = "download_limit_exceeded"
    default_message = "Download limit exceeded"


class TokenExpired(CheckoutError):
    status = 410
    code = "token_expired"
    default_message = "Download token has expired"


class TokenAlreadyUsed(CheckoutError):
    status = 409
    code = "token_already_used"
    default_message = "Download token has already been used"


class ConfigurationError(CheckoutError):
    status = 500
    code = "configuration_error"
    default_message = "Service configuration error"
