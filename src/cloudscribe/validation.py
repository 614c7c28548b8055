"""Input validators for monetary, textual and identity fields.

Every validator either returns the cleaned value or raises
``cloudscribe.errors.ValidationError`` naming the offending field. None of
them touch the network or any shared state.
"""

from __future__ import annotations

import re
import uuid
from decimal import Decimal, InvalidOperation
from typing import Any, TypeVar
from urllib.parse import urlparse

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from cloudscribe.config import REFERENCE_PATTERN
from cloudscribe.errors import ValidationError

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
REFERENCE_RE = re.compile(REFERENCE_PATTERN)

M = TypeVar("M", bound=BaseModel)


def _fail(field: str, message: str) -> ValidationError:
    return ValidationError(fields={field: message})


def sanitize_string(value: str) -> str:
    """Trim whitespace and strip angle brackets."""
    return value.strip().replace("<", "").replace(">", "")


def validate_email(value: Any, field: str = "email") -> str:
    if not isinstance(value, str) or not EMAIL_RE.match(value.strip()):
        raise _fail(field, "Invalid email address")
    return value.strip().lower()


def validate_uuid(value: Any, field: str = "id") -> str:
    try:
        return str(uuid.UUID(str(value)))
    except (ValueError, TypeError, AttributeError):
        raise _fail(field, "Invalid UUID format") from None


def validate_url(value: Any, field: str = "url") -> str:
    if not isinstance(value, str):
        raise _fail(field, "Invalid URL format")
    parsed = urlparse(value.strip())
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise _fail(field, "Invalid URL format")
    return value.strip()


def require_identifier(value: Any, field: str) -> str:
    """A non-empty string id (product, template, purchase)."""
    if not isinstance(value, str) or not value.strip():
        raise _fail(field, f"{field} is required")
    cleaned = value.strip()
    if len(cleaned) > 128 or "/" in cleaned or ".." in cleaned:
        raise _fail(field, f"Invalid {field}")
    return cleaned


def validate_reference(value: Any, field: str = "reference") -> str:
    if not isinstance(value, str) or not value.strip():
        raise _fail(field, "Payment reference is required")
    cleaned = value.strip()
    if not REFERENCE_RE.match(cleaned):
        raise _fail(field, "Invalid payment reference")
    return cleaned


def to_decimal(value: Any, field: str = "amount") -> Decimal:
    """Convert an int, float, str or Decimal to a finite Decimal."""
    if isinstance(value, bool) or value is None:
        raise _fail(field, "must be a number")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float, str)):
        try:
            # str() first so 0.1 becomes Decimal("0.1"), not its binary expansion
            result = Decimal(str(value).strip())
        except InvalidOperation:
            raise _fail(field, "must be a number") from None
    else:
        raise _fail(field, "must be a number")
    if not result.is_finite():
        raise _fail(field, "must be a finite number")
    return result


def validate_money(value: Any, field: str = "amount") -> Decimal:
    """Non-negative, finite, at most two decimal places."""
    amount = to_decimal(value, field)
    if amount < 0:
        raise _fail(field, "must be >= 0")
    # Decimal("1.500") has exponent -3 but is still a whole number of cents
    if amount.as_tuple().exponent < -2 and amount != amount.quantize(Decimal("0.01")):
        raise _fail(field, "must have at most 2 decimal places")
    return amount


def validate_quantity(value: Any, field: str = "quantity") -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise _fail(field, "must be an integer")
    if value < 1:
        raise _fail(field, "must be >= 1")
    return value


def validate_and_sanitize(model: type[M], data: Any) -> M:
    """Parse ``data`` with a pydantic model, sanitizing top-level strings first."""
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    cleaned = {k: sanitize_string(v) if isinstance(v, str) else v for k, v in data.items()}
    try:
        return model.model_validate(cleaned)
    except PydanticValidationError as e:
        fields = {}
        for err in e.errors():
            name = ".".join(str(p) for p in err["loc"]) or "body"
            fields.setdefault(name, err["msg"])
        raise ValidationError(fields=fields) from None
