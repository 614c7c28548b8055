"""Purchase storage: the interface the flow needs, plus an in-memory backend.

The backing store is the only place concurrency is resolved. Each multi-step
mutation (completing a purchase together with its token and notification,
consuming a token together with the download count) is a single store call
so a backend can make it atomic: ``MemoryStore`` under a lock,
``SupabaseStore`` inside a Postgres function.
"""

from __future__ import annotations

import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime

from cloudscribe.errors import DownloadLimitExceeded, NotFound, TokenAlreadyUsed, TokenExpired
from cloudscribe.schema import (
    ActivityLog,
    DownloadToken,
    Notification,
    Product,
    Purchase,
    Template,
    WalletTransaction,
)


@dataclass(frozen=True)
class Completion:
    """Outcome of ``complete_purchase``.

    ``newly_completed`` is False when the purchase was already completed, in
    which case ``token`` is the one issued by the call that completed it.
    """

    purchase: Purchase
    token: DownloadToken | None
    newly_completed: bool


@dataclass(frozen=True)
class Redemption:
    """Outcome of ``consume_download``: the updated purchase and the consumed token."""

    purchase: Purchase
    token: DownloadToken | None


def ensure_redeemable(purchase: Purchase, token: DownloadToken | None, now: datetime) -> None:
    """Raise if ``purchase`` may not be downloaded (again) with ``token``.

    Expiry is checked before use so an expired token reports as expired
    whether or not it was ever redeemed.
    """
    if purchase.download_count >= purchase.max_downloads:
        raise DownloadLimitExceeded()
    if token is None:
        return
    if token.is_expired(now):
        raise TokenExpired()
    if token.used:
        raise TokenAlreadyUsed()


class PurchaseStore(ABC):
    """Everything the checkout, reconciliation and download flows read or write."""

    # -- catalogue ----------------------------------------------------------

    @abstractmethod
    def get_product(self, product_id: str) -> Product | None:
        """Published product by id."""

    @abstractmethod
    def get_template(self, template_id: str) -> Template | None:
        """Published template by id."""

    # -- purchases ----------------------------------------------------------

    @abstractmethod
    def create_purchase(self, purchase: Purchase) -> Purchase: ...

    @abstractmethod
    def set_payment_reference(self, purchase_id: str, reference: str) -> None: ...

    @abstractmethod
    def get_purchase(self, purchase_id: str, buyer_id: str) -> Purchase | None:
        """Purchase by id, scoped to its buyer."""

    @abstractmethod
    def find_purchase_by_reference(
        self, reference: str, buyer_id: str | None = None
    ) -> Purchase | None:
        """Purchase by gateway reference. ``buyer_id`` scopes the lookup when given."""

    @abstractmethod
    def complete_purchase(
        self,
        purchase_id: str,
        *,
        now: datetime,
        token: DownloadToken | None,
        notification: Notification | None,
    ) -> Completion:
        """Atomically move pending -> completed, store the token and notification.

        Idempotent: an already-completed purchase is returned untouched with
        the token issued when it was completed.
        """

    # -- downloads ----------------------------------------------------------

    @abstractmethod
    def get_download_token(self, token: str, purchase_id: str) -> DownloadToken | None: ...

    @abstractmethod
    def consume_download(
        self, purchase_id: str, token: str | None, *, now: datetime
    ) -> Redemption:
        """Atomically re-check quota and token, mark the token used, bump the count."""

    @abstractmethod
    def restore_download(self, purchase_id: str, token: str | None) -> None:
        """Compensate a ``consume_download`` whose file URL could not be issued."""

    # -- audit --------------------------------------------------------------

    @abstractmethod
    def add_activity_log(self, entry: ActivityLog) -> None: ...

    @abstractmethod
    def record_wallet_transactions(
        self, reference: str, transactions: list[WalletTransaction]
    ) -> bool:
        """Insert ledger rows for ``reference`` once. Returns False if already recorded."""


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------


class MemoryStore(PurchaseStore):
    """Thread-safe store kept in process memory. Used by tests and the local dev server."""

    def __init__(self):
        self._lock = threading.RLock()
        self.products: dict[str, Product] = {}
        self.templates: dict[str, Template] = {}
        self.purchases: dict[str, Purchase] = {}
        self.tokens: dict[str, DownloadToken] = {}
        self.completion_tokens: dict[str, str] = {}  # purchase_id -> token issued on completion
        self.notifications: list[Notification] = []
        self.activity_logs: list[ActivityLog] = []
        self.wallet_transactions: list[WalletTransaction] = []

    # -- seeding ------------------------------------------------------------

    def add_product(self, product: Product) -> Product:
        self.products[product.id] = product
        return product

    def add_template(self, template: Template) -> Template:
        self.templates[template.id] = template
        return template

    # -- catalogue ----------------------------------------------------------

    def get_product(self, product_id):
        product = self.products.get(product_id)
        return product if product and product.published else None

    def get_template(self, template_id):
        template = self.templates.get(template_id)
        return template if template and template.published else None

    # -- purchases ----------------------------------------------------------

    def create_purchase(self, purchase):
        with self._lock:
            if not purchase.id:
                purchase = purchase.model_copy(update={"id": str(uuid.uuid4())})
            self.purchases[purchase.id] = purchase
            return purchase

    def set_payment_reference(self, purchase_id, reference):
        with self._lock:
            purchase = self.purchases.get(purchase_id)
            if purchase is None:
                raise NotFound("Purchase not found")
            self.purchases[purchase_id] = purchase.model_copy(
                update={"payment_reference": reference}
            )

    def get_purchase(self, purchase_id, buyer_id):
        purchase = self.purchases.get(purchase_id)
        if purchase is None or purchase.buyer_id != buyer_id:
            return None
        return purchase

    def find_purchase_by_reference(self, reference, buyer_id=None):
        for purchase in self.purchases.values():
            if purchase.payment_reference != reference:
                continue
            if buyer_id is not None and purchase.buyer_id != buyer_id:
                continue
            return purchase
        return None

    def complete_purchase(self, purchase_id, *, now, token, notification):
        with self._lock:
            purchase = self.purchases.get(purchase_id)
            if purchase is None:
                raise NotFound("Purchase not found")

            if purchase.is_completed:
                issued = self.completion_tokens.get(purchase_id)
                return Completion(purchase, self.tokens.get(issued) if issued else None, False)

            completed = purchase.model_copy(
                update={"payment_status": "completed", "purchase_date": now}
            )
            self.purchases[purchase_id] = completed
            if token is not None:
                self.tokens[token.token] = token
                self.completion_tokens[purchase_id] = token.token
            if notification is not None:
                self.notifications.append(notification)
            return Completion(completed, token, True)

    # -- downloads ----------------------------------------------------------

    def get_download_token(self, token, purchase_id):
        found = self.tokens.get(token)
        if found is None or found.purchase_id != purchase_id:
            return None
        return found

    def consume_download(self, purchase_id, token, *, now):
        with self._lock:
            purchase = self.purchases.get(purchase_id)
            if purchase is None or not purchase.is_completed:
                raise NotFound("Purchase not found or not completed")

            ensure_redeemable(purchase, None, now)
            found = None
            if token is not None:
                found = self.get_download_token(token, purchase_id)
                if found is None:
                    raise NotFound("Invalid download token")
                ensure_redeemable(purchase, found, now)

            if found is not None:
                found = found.model_copy(update={"used": True, "used_at": now})
                self.tokens[found.token] = found
            updated = purchase.model_copy(
                update={
                    "download_count": purchase.download_count + 1,
                    "last_download_date": now,
                }
            )
            self.purchases[purchase_id] = updated
            return Redemption(updated, found)

    def restore_download(self, purchase_id, token):
        with self._lock:
            purchase = self.purchases.get(purchase_id)
            if purchase is not None and purchase.download_count > 0:
                self.purchases[purchase_id] = purchase.model_copy(
                    update={"download_count": purchase.download_count - 1}
                )
            if token is not None and token in self.tokens:
                self.tokens[token] = self.tokens[token].model_copy(
                    update={"used": False, "used_at": None}
                )

    # -- audit --------------------------------------------------------------

    def add_activity_log(self, entry):
        with self._lock:
            self.activity_logs.append(entry)

    def record_wallet_transactions(self, reference, transactions):
        with self._lock:
            if any(t.reference == reference for t in self.wallet_transactions):
                return False
            self.wallet_transactions.extend(transactions)
            return True
