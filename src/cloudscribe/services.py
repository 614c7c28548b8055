"""Process-wide service container.

Built once at process start by ``build_services`` and passed by reference to
every handler. Tests construct their own with fakes.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone

from cloudscribe.config import Settings
from cloudscribe.gateway import PaystackClient
from cloudscribe.rate_limiter import RateLimiter
from cloudscribe.signing import JwtUrlSigner, UrlSigner
from cloudscribe.store import MemoryStore, PurchaseStore

logger = logging.getLogger("cloudscribe.services")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_token() -> str:
    return secrets.token_urlsafe(32)


@dataclass
class Services:
    settings: Settings
    store: PurchaseStore
    gateway: PaystackClient
    signer: UrlSigner
    rate_limiter: RateLimiter = field(default_factory=RateLimiter)
    clock: Callable[[], datetime] = utcnow
    token_factory: Callable[[], str] = new_token

    def millis(self) -> int:
        """Millisecond timestamp used to make gateway references unique."""
        return int(self.clock().timestamp() * 1000)


def build_services(settings: Settings | None = None) -> Services:
    """Wire the real backends from ``settings`` (default: the environment)."""
    settings = settings or Settings.from_env()

    signer: UrlSigner
    if settings.uses_supabase:
        from cloudscribe.supabase_store import SupabaseStore, SupabaseUrlSigner

        store: PurchaseStore = SupabaseStore.from_settings(settings)
        signer = SupabaseUrlSigner(store.client)
        logger.info("Using Supabase store at %s", settings.supabase_url)
    else:
        store = MemoryStore()
        signer = JwtUrlSigner(
            settings.signing_secret or secrets.token_hex(32),
            settings.download_base_url or "http://127.0.0.1:8080/files",
        )
        logger.warning("SUPABASE_URL not set, using in-memory store (data is not persisted)")

    return Services(
        settings=settings,
        store=store,
        gateway=PaystackClient(settings.paystack_secret_key),
        signer=signer,
    )
