"""Shared fixtures for cloudscribe tests."""

import hashlib
import hmac
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from cloudscribe.config import Settings
from cloudscribe.gateway import InitializedTransaction, VerifiedTransaction
from cloudscribe.rate_limiter import RateLimiter
from cloudscribe.schema import Buyer, Product, Template
from cloudscribe.services import Services
from cloudscribe.signing import JwtUrlSigner
from cloudscribe.store import MemoryStore

# -- Constants --------------------------------------------------------------

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)
PAYSTACK_KEY = "sk_test_cloudscribe"
JWT_SECRET = "test-jwt-secret-that-is-long-enough-for-hs256"
SIGNING_SECRET = "test-signing-secret-that-is-long-enough"
ORIGIN = "https://cloudscribe.app"

SELLER_ID = "seller-1"
BUYER_ID = "buyer-1"
OTHER_BUYER_ID = "buyer-2"


def sign_webhook(raw_body: bytes, key: str = PAYSTACK_KEY) -> str:
    return hmac.new(key.encode(), raw_body, hashlib.sha512).hexdigest()


# -- Fakes ------------------------------------------------------------------


class FakeGateway:
    """Records initialize/verify calls; verify reports ``verify_status``."""

    def __init__(self, secret_key: str = PAYSTACK_KEY):
        self.secret_key = secret_key
        self.initialized: list[dict] = []
        self.verified: list[str] = []
        self.verify_status = "success"
        self.authorization_url = "https://checkout.paystack.com/abc123"

    def initialize_transaction(self, **kwargs):
        self.initialized.append(kwargs)
        return InitializedTransaction(
            authorization_url=self.authorization_url,
            reference=kwargs["reference"],
            access_code="abc123",
        )

    def verify_transaction(self, reference):
        self.verified.append(reference)
        return VerifiedTransaction(
            reference=reference,
            status=self.verify_status,
            amount_minor=500000,
            currency="NGN",
            metadata={},
        )

    def verify_webhook_signature(self, raw_body, signature):
        if not signature:
            return False
        return hmac.compare_digest(sign_webhook(raw_body, self.secret_key), signature)


class FailingSigner:
    def __init__(self, exc: Exception):
        self.exc = exc
        self.calls = 0

    def sign(self, file_path, *, purchase_id):
        self.calls += 1
        raise self.exc


class Clock:
    """Settable clock; advance() moves time forward."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


# -- Data fixtures ----------------------------------------------------------


@pytest.fixture()
def product():
    return Product(
        id="prod-1",
        name="Lecture Notes Bundle",
        price=Decimal("1000"),
        seller_id=SELLER_ID,
        seller_email="seller@example.com",
    )


@pytest.fixture()
def template():
    return Template(
        id="tmpl-1",
        name="Resume Template",
        price=Decimal("5000"),
        author_id=SELLER_ID,
        file_path="templates/resume.docx",
    )


@pytest.fixture()
def free_template():
    return Template(
        id="tmpl-free",
        name="Free Planner",
        price=Decimal("0"),
        author_id=SELLER_ID,
        is_free=True,
        file_path="templates/planner.pdf",
    )


@pytest.fixture()
def buyer():
    return Buyer(id=BUYER_ID, email="ada@example.com")


@pytest.fixture()
def other_buyer():
    return Buyer(id=OTHER_BUYER_ID, email="grace@example.com")


# -- Service fixtures -------------------------------------------------------


@pytest.fixture()
def store(product, template, free_template):
    s = MemoryStore()
    s.add_product(product)
    s.add_template(template)
    s.add_template(free_template)
    return s


@pytest.fixture()
def gateway():
    return FakeGateway()


@pytest.fixture()
def clock():
    return Clock()


@pytest.fixture()
def settings():
    return Settings(
        supabase_jwt_secret=JWT_SECRET,
        paystack_secret_key=PAYSTACK_KEY,
        signing_secret=SIGNING_SECRET,
        download_base_url="https://files.cloudscribe.test",
        allowed_origins=frozenset({ORIGIN}),
    )


@pytest.fixture()
def services(settings, store, gateway, clock):
    counter = iter(range(1, 10_000))
    return Services(
        settings=settings,
        store=store,
        gateway=gateway,
        signer=JwtUrlSigner(SIGNING_SECRET, settings.download_base_url),
        rate_limiter=RateLimiter(),
        clock=clock,
        token_factory=lambda: f"token-{next(counter)}",
    )
