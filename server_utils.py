"""Shared utilities for serve.py and the serverless API handlers.

Consolidates the HTTP plumbing every function needs: CORS pre-flight, raw
and JSON body reading, client address lookup, JSON responses, and the
process-wide service container.
"""

from __future__ import annotations

import json
import logging
from http.server import BaseHTTPRequestHandler
from typing import Any

from auth_utils import buyer_from_headers
from cloudscribe.endpoints import FunctionRequest, run_function
from cloudscribe.services import Services, build_services

logger = logging.getLogger("cloudscribe.server")

MAX_BODY_SIZE = 64 * 1024  # 64KB, webhooks included

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
    "Access-Control-Allow-Headers": (
        "authorization, x-client-info, apikey, content-type, user-email, x-paystack-signature"
    ),
}

# Built on first use and then kept for the life of the process (warm invocations reuse it)
_services: Services | None = None


def get_services() -> Services:
    global _services
    if _services is None:
        _services = build_services()
    return _services


def set_services(services: Services | None) -> None:
    """Install a prebuilt container (serve.py startup, tests)."""
    global _services
    _services = services


# ---------------------------------------------------------------------------
# HTTP helpers (work with any BaseHTTPRequestHandler subclass)
# ---------------------------------------------------------------------------


def send_preflight(handler: BaseHTTPRequestHandler) -> None:
    handler.send_response(204)
    for k, v in CORS_HEADERS.items():
        handler.send_header(k, v)
    handler.end_headers()


def json_response(
    handler: BaseHTTPRequestHandler,
    data: Any,
    status: int = 200,
    headers: dict[str, str] | None = None,
) -> None:
    """Send a JSON response with CORS headers and optional extra headers."""
    body = json.dumps(data).encode("utf-8")
    handler.send_response(status)
    handler.send_header("Content-Type", "application/json")
    handler.send_header("Content-Length", str(len(body)))
    for k, v in CORS_HEADERS.items():
        handler.send_header(k, v)
    if headers:
        for k, v in headers.items():
            handler.send_header(k, v)
    handler.end_headers()
    handler.wfile.write(body)


def json_error(handler: BaseHTTPRequestHandler, message: str, status: int = 400) -> None:
    """Send a JSON error response."""
    json_response(handler, {"error": message}, status)


def client_ip(handler: BaseHTTPRequestHandler) -> str:
    forwarded = handler.headers.get("X-Forwarded-For", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return handler.client_address[0] if handler.client_address else ""


def read_raw_body(handler: BaseHTTPRequestHandler, max_size: int = MAX_BODY_SIZE) -> bytes | None:
    """Read the raw request body, or send 413 and return None if it is too large."""
    try:
        length = int(handler.headers.get("Content-Length", 0))
    except ValueError:
        length = -1
    if length > max_size or length < 0:
        logger.warning("Rejected request from %s: payload too large", client_ip(handler))
        json_error(handler, "Payload too large", 413)
        return None
    return handler.rfile.read(length) if length else b""


def parse_json_body(raw: bytes) -> tuple[dict | None, str | None]:
    """Parse a JSON object body. Returns (dict, None) or (None, error_message)."""
    if not raw:
        return {}, None
    try:
        body = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None, "Invalid JSON body"
    if not isinstance(body, dict):
        return None, "Request body must be a JSON object"
    return body, None


# ---------------------------------------------------------------------------
# Function dispatch
# ---------------------------------------------------------------------------


def handle_function(
    handler: BaseHTTPRequestHandler, name: str, services: Services | None = None
) -> None:
    """Read the request, run the named function, and write its JSON response."""
    raw = read_raw_body(handler)
    if raw is None:
        return

    # Webhooks are signed over the raw bytes; everything else is a JSON object
    body: dict | None = {}
    if name != "paystack-webhook":
        body, error = parse_json_body(raw)
        if error:
            json_error(handler, error, 400)
            return

    services = services or get_services()
    headers = {k.lower(): v for k, v in handler.headers.items()}
    request = FunctionRequest(
        body=body or {},
        headers=headers,
        buyer=buyer_from_headers(headers, services.settings.supabase_jwt_secret),
        client_ip=client_ip(handler),
        raw_body=raw,
    )
    status, payload = run_function(services, name, request)

    extra = {}
    if status == 429 and "retry_after" in payload:
        extra["Retry-After"] = str(max(1, int(payload["retry_after"] + 0.5)))
    json_response(handler, payload, status, extra)
