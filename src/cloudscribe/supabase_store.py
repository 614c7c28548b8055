"""Supabase-backed ``PurchaseStore``.

Plain reads and inserts go through the PostgREST table API. The atomic
multi-step mutations run as Postgres functions (see
``supabase/migrations``) so each is a single transaction on the server.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from postgrest.exceptions import APIError
from supabase import Client, create_client

from cloudscribe.config import SIGNED_URL_TTL_SECONDS, TEMPLATE_FILES_BUCKET, Settings
from cloudscribe.errors import (
    CheckoutError,
    DownloadLimitExceeded,
    GatewayError,
    NotFound,
    TokenAlreadyUsed,
    TokenExpired,
)
from cloudscribe.schema import (
    DownloadToken,
    Product,
    Purchase,
    Template,
)
from cloudscribe.store import Completion, PurchaseStore, Redemption

logger = logging.getLogger("cloudscribe.supabase")

INVALID_TEXT_REPRESENTATION = "22P02"

# Exception messages raised by the Postgres functions
_RPC_ERRORS: dict[str, type[CheckoutError]] = {
    "not_found": NotFound,
    "download_limit_exceeded": DownloadLimitExceeded,
    "token_expired": TokenExpired,
    "token_already_used": TokenAlreadyUsed,
}


def _purchase_from_row(row: dict[str, Any]) -> Purchase:
    return Purchase(
        id=str(row["id"]),
        template_id=row.get("template_id"),
        product_id=row.get("product_id"),
        buyer_id=str(row["buyer_id"]),
        seller_id=str(row["seller_id"]),
        price=row.get("purchase_price") or 0,
        currency=row.get("currency") or "NGN",
        payment_status=row.get("payment_status") or "pending",
        payment_reference=row.get("payment_reference"),
        download_count=row.get("download_count") or 0,
        max_downloads=row.get("max_downloads") or 5,
        last_download_date=row.get("last_download_date"),
        purchase_date=row.get("purchase_date"),
        created_at=row.get("created_at"),
    )


def _token_from_row(row: dict[str, Any] | None) -> DownloadToken | None:
    if not row:
        return None
    return DownloadToken(
        token=row["token"],
        purchase_id=str(row["purchase_id"]),
        expires_at=row["expires_at"],
        used=bool(row.get("used")),
        used_at=row.get("used_at"),
    )


def _storage_path(file_url: str, supabase_url: str) -> str:
    """Strip the public-bucket prefix so the path can be signed."""
    prefix = f"{supabase_url}/storage/v1/object/public/{TEMPLATE_FILES_BUCKET}/"
    return file_url[len(prefix) :] if file_url.startswith(prefix) else file_url


class SupabaseStore(PurchaseStore):
    def __init__(self, client: Client, supabase_url: str = ""):
        self.client = client
        self.supabase_url = supabase_url

    @classmethod
    def from_settings(cls, settings: Settings) -> SupabaseStore:
        client = create_client(settings.supabase_url, settings.supabase_service_key)
        return cls(client, settings.supabase_url)

    # -- helpers ------------------------------------------------------------

    def _first(self, query) -> dict[str, Any] | None:
        try:
            rows = query.limit(1).execute().data
        except APIError as e:
            if e.code == INVALID_TEXT_REPRESENTATION:
                # An id that is not a uuid matches no row
                return None
            logger.error("Supabase query failed: %s", e.message)
            raise GatewayError() from e
        return rows[0] if rows else None

    def _execute(self, query) -> Any:
        try:
            return query.execute().data
        except APIError as e:
            logger.error("Supabase write failed: %s", e.message)
            raise GatewayError() from e

    def _rpc(self, name: str, params: dict[str, Any]) -> Any:
        try:
            return self.client.rpc(name, params).execute().data
        except APIError as e:
            error_cls = _RPC_ERRORS.get((e.message or "").strip())
            if error_cls is not None:
                raise error_cls() from e
            logger.error("Supabase rpc %s failed: %s", name, e.message)
            raise GatewayError() from e

    # -- catalogue ----------------------------------------------------------

    def get_product(self, product_id):
        row = self._first(
            self.client.table("products")
            .select("*, seller:user_profiles!seller_id(full_name, email)")
            .eq("id", product_id)
            .eq("published", True)
        )
        if row is None:
            return None
        return Product(
            id=str(row["id"]),
            name=row["name"],
            price=row["price"],
            seller_id=str(row["seller_id"]),
            seller_email=(row.get("seller") or {}).get("email") or "",
            published=True,
        )

    def get_template(self, template_id):
        row = self._first(
            self.client.table("templates").select("*").eq("id", template_id).eq("published", True)
        )
        if row is None:
            return None
        return Template(
            id=str(row["id"]),
            name=row["name"],
            price=row.get("price") or 0,
            author_id=str(row["author_id"]),
            published=True,
            is_free=bool(row.get("is_free")),
            discount_price=row.get("discount_price"),
            discount_end_date=row.get("discount_end_date"),
            file_path=_storage_path(row.get("file_url") or "", self.supabase_url),
            post_purchase_questions=row.get("post_purchase_questions") or [],
        )

    # -- purchases ----------------------------------------------------------

    def create_purchase(self, purchase):
        row = {
            "template_id": purchase.template_id,
            "buyer_id": purchase.buyer_id,
            "seller_id": purchase.seller_id,
            "purchase_price": float(purchase.price),
            "currency": purchase.currency,
            "payment_status": purchase.payment_status,
            "payment_reference": purchase.payment_reference,
        }
        if purchase.purchase_date is not None:
            row["purchase_date"] = purchase.purchase_date.isoformat()
        if purchase.id:
            row["id"] = purchase.id
        data = self._execute(self.client.table("template_purchases").insert(row))
        return _purchase_from_row(data[0])

    def set_payment_reference(self, purchase_id, reference):
        self._execute(
            self.client.table("template_purchases")
            .update({"payment_reference": reference})
            .eq("id", purchase_id)
        )

    def get_purchase(self, purchase_id, buyer_id):
        row = self._first(
            self.client.table("template_purchases")
            .select("*")
            .eq("id", purchase_id)
            .eq("buyer_id", buyer_id)
        )
        return _purchase_from_row(row) if row else None

    def find_purchase_by_reference(self, reference, buyer_id=None):
        query = (
            self.client.table("template_purchases")
            .select("*")
            .eq("payment_reference", reference)
        )
        if buyer_id is not None:
            query = query.eq("buyer_id", buyer_id)
        row = self._first(query)
        return _purchase_from_row(row) if row else None

    def complete_purchase(self, purchase_id, *, now, token, notification):
        data = self._rpc(
            "complete_template_purchase",
            {
                "p_purchase_id": purchase_id,
                "p_now": now.isoformat(),
                "p_token": token.token if token else None,
                "p_token_expires_at": token.expires_at.isoformat() if token else None,
                "p_notification": notification.model_dump(mode="json") if notification else None,
            },
        )
        return Completion(
            purchase=_purchase_from_row(data["purchase"]),
            token=_token_from_row(data.get("token")),
            newly_completed=bool(data.get("newly_completed")),
        )

    # -- downloads ----------------------------------------------------------

    def get_download_token(self, token, purchase_id):
        row = self._first(
            self.client.table("template_download_tokens")
            .select("*")
            .eq("token", token)
            .eq("purchase_id", purchase_id)
        )
        return _token_from_row(row)

    def consume_download(self, purchase_id, token, *, now: datetime):
        data = self._rpc(
            "redeem_template_download",
            {"p_purchase_id": purchase_id, "p_token": token, "p_now": now.isoformat()},
        )
        return Redemption(
            purchase=_purchase_from_row(data["purchase"]),
            token=_token_from_row(data.get("token")),
        )

    def restore_download(self, purchase_id, token):
        self._rpc("restore_template_download", {"p_purchase_id": purchase_id, "p_token": token})

    # -- audit --------------------------------------------------------------

    def add_activity_log(self, entry):
        row = entry.model_dump(mode="json")
        self._execute(self.client.table("user_activity_logs").insert(row))

    def record_wallet_transactions(self, reference, transactions):
        rows = [t.model_dump(mode="json") for t in transactions]
        return bool(
            self._rpc("record_wallet_transactions", {"p_reference": reference, "p_rows": rows})
        )


class SupabaseUrlSigner:
    """Signed URLs from Supabase Storage for the template files bucket."""

    def __init__(self, client: Client, ttl_seconds: int = SIGNED_URL_TTL_SECONDS):
        self.client = client
        self.ttl_seconds = ttl_seconds

    def sign(self, file_path: str, *, purchase_id: str) -> str:
        result = self.client.storage.from_(TEMPLATE_FILES_BUCKET).create_signed_url(
            file_path, self.ttl_seconds
        )
        url = result.get("signedURL") or result.get("signedUrl")
        if not url:
            logger.error("No signed URL returned for purchase %s", purchase_id)
            raise GatewayError("Failed to generate download URL")
        return url
