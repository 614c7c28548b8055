"""Time-limited signed download URLs."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Protocol
from urllib.parse import quote, urlencode

import jwt

from cloudscribe.config import SIGNED_URL_TTL_SECONDS
from cloudscribe.errors import ConfigurationError

_ALGORITHM = "HS256"


class UrlSigner(Protocol):
    def sign(self, file_path: str, *, purchase_id: str) -> str: ...


class JwtUrlSigner:
    """Signs ``<base_url>/<file_path>?token=<jwt>`` with an HS256 token.

    The file server validates the token with ``verify`` before streaming.
    """

    def __init__(
        self,
        secret: str,
        base_url: str,
        ttl_seconds: int = SIGNED_URL_TTL_SECONDS,
        clock=lambda: datetime.now(timezone.utc),
    ):
        self.secret = secret
        self.base_url = base_url.rstrip("/")
        self.ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock

    def sign(self, file_path: str, *, purchase_id: str) -> str:
        if not self.secret or not self.base_url:
            raise ConfigurationError("Download signing is not configured")
        now = self._clock()
        claims = {
            "path": file_path,
            "purchase_id": purchase_id,
            "iat": now,
            "exp": now + self.ttl,
        }
        token = jwt.encode(claims, self.secret, algorithm=_ALGORITHM)
        return f"{self.base_url}/{quote(file_path)}?{urlencode({'token': token})}"

    def verify(self, token: str) -> dict[str, Any] | None:
        """Return the claims of a valid, unexpired token, else None."""
        try:
            return jwt.decode(token, self.secret, algorithms=[_ALGORITHM])
        except jwt.InvalidTokenError:
            return None
