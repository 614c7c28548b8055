"""JWT verification for Supabase authentication.

Supabase access tokens are HS256 JWTs signed with the project's JWT secret.
Uses PyJWT for signature, expiry and audience checks. No Supabase SDK needed.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from typing import Any

import jwt

from cloudscribe.schema import Buyer

logger = logging.getLogger("cloudscribe.auth")

_AUDIENCE = "authenticated"


def _get_jwt_secret() -> str:
    return os.environ.get("SUPABASE_JWT_SECRET", "")


def verify_token(token: str, secret: str | None = None) -> dict[str, Any] | None:
    """Verify a Supabase access token and return its claims, or None if invalid."""
    secret = secret if secret is not None else _get_jwt_secret()
    if not secret or not token:
        return None
    try:
        return jwt.decode(
            token,
            secret,
            algorithms=["HS256"],
            audience=_AUDIENCE,
            options={"require": ["sub", "exp"]},
        )
    except jwt.ExpiredSignatureError:
        logger.debug("Token expired")
        return None
    except jwt.InvalidTokenError as e:
        logger.debug("Invalid token: %s", e)
        return None


def get_bearer_token(headers: Mapping[str, str]) -> str | None:
    """Extract Bearer token from an Authorization header."""
    auth = headers.get("Authorization", "") or headers.get("authorization", "")
    if auth.startswith("Bearer "):
        return auth[7:].strip() or None
    return None


def buyer_from_headers(headers: Mapping[str, str], secret: str | None = None) -> Buyer | None:
    """Resolve the authenticated buyer for a request, or None when anonymous."""
    token = get_bearer_token(headers)
    if token is None:
        return None
    claims = verify_token(token, secret)
    if not claims:
        return None
    return Buyer(id=str(claims["sub"]), email=str(claims.get("email") or ""))
