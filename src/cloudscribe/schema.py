"""Pydantic v2 models for cart items, purchases, tokens and request bodies."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator, model_validator

from cloudscribe.config import DEFAULT_CURRENCY, DEFAULT_MAX_DOWNLOADS
from cloudscribe.errors import ValidationError
from cloudscribe.validation import require_identifier, validate_money, validate_url

PaymentStatus = Literal["pending", "completed", "failed"]


def _checked(check, value, field: str):
    """Run one of the ``cloudscribe.validation`` checks inside a pydantic validator."""
    try:
        return check(value, field)
    except ValidationError as e:
        raise ValueError(e.fields.get(field, e.message)) from None


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


class Buyer(BaseModel):
    """Authenticated caller, taken from a verified access token."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str = ""


# ---------------------------------------------------------------------------
# Cart
# ---------------------------------------------------------------------------


class CartItem(BaseModel):
    """One purchasable line in the client-held cart."""

    id: str = Field(min_length=1)
    name: str
    price: Decimal
    quantity: int = 1
    description: str | None = None
    image_url: str | None = None

    @field_validator("price")
    @classmethod
    def price_valid(cls, v: Decimal) -> Decimal:
        return _checked(validate_money, v, "price")

    @field_validator("quantity")
    @classmethod
    def quantity_positive(cls, v: int) -> int:
        if v < 1:
            msg = f"Quantity must be >= 1, got {v}"
            raise ValueError(msg)
        return v

    @property
    def line_total(self) -> Decimal:
        return self.price * self.quantity


# ---------------------------------------------------------------------------
# Catalogue rows (read-only for this flow)
# ---------------------------------------------------------------------------


class Product(BaseModel):
    id: str
    name: str
    price: Decimal
    seller_id: str
    seller_email: str = ""
    published: bool = True

    @field_validator("price")
    @classmethod
    def price_valid(cls, v: Decimal) -> Decimal:
        return _checked(validate_money, v, "price")


class Template(BaseModel):
    id: str
    name: str
    price: Decimal = Decimal("0")
    author_id: str
    published: bool = True
    is_free: bool = False
    discount_price: Decimal | None = None
    discount_end_date: datetime | None = None
    file_path: str = ""
    post_purchase_questions: list[dict] = Field(default_factory=list)

    @field_validator("price", "discount_price")
    @classmethod
    def prices_valid(cls, v: Decimal | None, info: ValidationInfo) -> Decimal | None:
        return None if v is None else _checked(validate_money, v, info.field_name)

    def current_price(self, now: datetime) -> Decimal:
        """Discount price while the discount window is open, list price otherwise."""
        if (
            self.discount_price is not None
            and self.discount_end_date is not None
            and self.discount_end_date > now
        ):
            return self.discount_price
        return self.price

    def summary(self) -> dict:
        return {"id": self.id, "name": self.name, "price": float(self.price)}


# ---------------------------------------------------------------------------
# Purchase lifecycle
# ---------------------------------------------------------------------------


class Purchase(BaseModel):
    """Durable record of a buyer's transaction. Never deleted."""

    id: str
    template_id: str | None = None
    product_id: str | None = None
    buyer_id: str
    seller_id: str
    price: Decimal
    currency: str = DEFAULT_CURRENCY
    payment_status: PaymentStatus = "pending"
    payment_reference: str | None = None
    download_count: int = 0
    max_downloads: int = DEFAULT_MAX_DOWNLOADS
    last_download_date: datetime | None = None
    purchase_date: datetime | None = None
    created_at: datetime | None = None

    @model_validator(mode="after")
    def downloads_within_quota(self) -> Purchase:
        if self.download_count < 0:
            msg = f"download_count must be >= 0, got {self.download_count}"
            raise ValueError(msg)
        if self.download_count > self.max_downloads:
            msg = f"download_count {self.download_count} exceeds max_downloads {self.max_downloads}"
            raise ValueError(msg)
        return self

    @property
    def is_completed(self) -> bool:
        return self.payment_status == "completed"

    @property
    def remaining_downloads(self) -> int:
        return self.max_downloads - self.download_count


class DownloadToken(BaseModel):
    """Single-use, time-limited credential for one file retrieval."""

    token: str
    purchase_id: str
    expires_at: datetime
    used: bool = False
    used_at: datetime | None = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now


class FeeBreakdown(BaseModel):
    """Derived split of a subtotal. Recomputed on every checkout, never stored."""

    model_config = ConfigDict(frozen=True)

    subtotal: Decimal
    platform_fee: Decimal
    seller_amount: Decimal
    amount_minor: int
    platform_fee_minor: int
    seller_amount_minor: int
    currency: str = DEFAULT_CURRENCY

    def to_payload(self) -> dict:
        return {
            "amount": float(self.subtotal),
            "platform_fee": float(self.platform_fee),
            "seller_amount": float(self.seller_amount),
        }


class Notification(BaseModel):
    user_id: str
    type: str
    title: str
    message: str
    metadata: dict = Field(default_factory=dict)


class ActivityLog(BaseModel):
    user_id: str
    action: str
    details: dict = Field(default_factory=dict)


class WalletTransaction(BaseModel):
    user_id: str
    amount: Decimal
    type: Literal["sale", "fee"]
    status: str = "completed"
    description: str
    reference: str
    metadata: dict = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------


class CheckoutRequest(BaseModel):
    product_id: str
    quantity: int = Field(default=1, ge=1, le=1000)

    @field_validator("product_id")
    @classmethod
    def product_id_valid(cls, v: str) -> str:
        return _checked(require_identifier, v, "product_id")


class TemplatePurchaseRequest(BaseModel):
    template_id: str
    return_url: str = ""
    cancel_url: str = ""

    @field_validator("template_id")
    @classmethod
    def template_id_valid(cls, v: str) -> str:
        return _checked(require_identifier, v, "template_id")

    @field_validator("return_url", "cancel_url")
    @classmethod
    def url_valid(cls, v: str, info: ValidationInfo) -> str:
        return _checked(validate_url, v, info.field_name) if v else v


class VerifyRequest(BaseModel):
    reference: str = ""
    trxref: str = ""

    @property
    def payment_reference(self) -> str:
        return (self.reference or self.trxref).strip()


class DownloadRequest(BaseModel):
    purchase_id: str
    download_token: str | None = None

    @field_validator("purchase_id")
    @classmethod
    def purchase_id_valid(cls, v: str) -> str:
        return _checked(require_identifier, v, "purchase_id")
