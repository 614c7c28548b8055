"""Constants and configuration for cloudscribe."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from decimal import Decimal

# Platform fee retained on every sale (10%)
PLATFORM_FEE_RATE = Decimal("0.10")

# Gateway amounts are integers in the currency's minor unit (kobo, cents)
MINOR_UNITS_PER_MAJOR = 100
DEFAULT_CURRENCY = "NGN"

# Download entitlement defaults
DEFAULT_MAX_DOWNLOADS = 5
DOWNLOAD_TOKEN_TTL_SECONDS = 24 * 60 * 60
SIGNED_URL_TTL_SECONDS = 2 * 60 * 60  # 2 hours

# Gateway references we accept from clients
REFERENCE_PATTERN = r"^[A-Za-z0-9_.=-]{1,100}$"

# Rate limit presets: (max_requests, window_seconds)
RATE_LIMITS: dict[str, tuple[int, int]] = {
    "login": (5, 15 * 60),
    "checkout": (5, 60),
    "template_purchase": (5, 60),
    "verify": (20, 60),
    "download": (10, 60),
    "webhook": (120, 60),
}

PAYSTACK_API_BASE = "https://api.paystack.co"
PAYSTACK_CHANNELS = ("card", "bank", "ussd", "qr", "mobile_money", "bank_transfer")

TEMPLATE_FILES_BUCKET = "Template Files"

PRODUCTION_ORIGIN = "https://cloudscribe.app"
DEV_ORIGINS = ("http://localhost:8080", "http://127.0.0.1:8080")


def _split_origins(raw: str) -> frozenset[str]:
    return frozenset(o.strip() for o in raw.split(",") if o.strip())


@dataclass(frozen=True)
class Settings:
    """Process-wide settings, read from the environment once at startup."""

    supabase_url: str = ""
    supabase_service_key: str = ""
    supabase_jwt_secret: str = ""
    paystack_secret_key: str = ""
    signing_secret: str = ""
    download_base_url: str = ""
    allowed_origins: frozenset[str] = field(default_factory=lambda: frozenset({PRODUCTION_ORIGIN}))
    production: bool = False

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> Settings:
        env = os.environ if environ is None else environ
        production = env.get("VERCEL_ENV") == "production"

        origins = _split_origins(env.get("CLOUDSCRIBE_ALLOWED_ORIGINS", "")) or frozenset(
            {PRODUCTION_ORIGIN}
        )
        if not production:
            origins = origins | frozenset(DEV_ORIGINS)

        supabase_url = env.get("SUPABASE_URL", "").strip().rstrip("/")
        return cls(
            supabase_url=supabase_url,
            supabase_service_key=env.get("SUPABASE_SERVICE_ROLE_KEY", "").strip(),
            supabase_jwt_secret=env.get("SUPABASE_JWT_SECRET", "").strip(),
            paystack_secret_key=env.get("PAYSTACK_SECRET_KEY", "").strip(),
            signing_secret=env.get("CLOUDSCRIBE_SIGNING_SECRET", "").strip(),
            download_base_url=env.get(
                "CLOUDSCRIBE_DOWNLOAD_BASE_URL", f"{supabase_url}/files" if supabase_url else ""
            ),
            allowed_origins=origins,
            production=production,
        )

    @property
    def uses_supabase(self) -> bool:
        return bool(self.supabase_url and self.supabase_service_key)
