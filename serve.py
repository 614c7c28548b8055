"""Local development server for the cloudscribe functions.

Serves the same operations as the serverless handlers in api/:
- POST /functions/v1/<name>: create-checkout, create-template-purchase,
  verify-payment, download-template, paystack-webhook
- GET  /files/<path>?token=...: stream a template file if the signed token
  is valid (stands in for Supabase Storage signed URLs)

Catalogue rows can be seeded from a JSON file with "products" and
"templates" lists.
"""

import argparse
import json
import logging
import os
import sys
from dataclasses import replace
from http.server import BaseHTTPRequestHandler, HTTPServer
from pathlib import Path
from urllib.parse import parse_qs, unquote, urlparse

# Run from a checkout without installing the package
sys.path.insert(0, str(Path(__file__).parent / "src"))

from cloudscribe.config import Settings  # noqa: E402
from cloudscribe.endpoints import FUNCTIONS  # noqa: E402
from cloudscribe.schema import Product, Template  # noqa: E402
from cloudscribe.services import build_services  # noqa: E402
from cloudscribe.signing import JwtUrlSigner  # noqa: E402
from cloudscribe.store import MemoryStore  # noqa: E402
from server_utils import (  # noqa: E402
    get_services,
    handle_function,
    json_error,
    send_preflight,
    set_services,
)

logger = logging.getLogger(__name__)

FUNCTIONS_PREFIX = "/functions/v1/"
FILES_PREFIX = "/files/"
FILES_DIR = "files"


def seed_catalogue(store: MemoryStore, path: str) -> tuple[int, int]:
    """Load products and templates from a JSON file into a memory store."""
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    products = [store.add_product(Product.model_validate(p)) for p in data.get("products", [])]
    templates = [store.add_template(Template.model_validate(t)) for t in data.get("templates", [])]
    return len(products), len(templates)


class FunctionServerHandler(BaseHTTPRequestHandler):
    """Routes function calls and signed file downloads."""

    files_dir = FILES_DIR

    def end_headers(self):
        self.send_header("X-Content-Type-Options", "nosniff")
        self.send_header("Referrer-Policy", "strict-origin-when-cross-origin")
        super().end_headers()

    def do_OPTIONS(self):
        send_preflight(self)

    def do_POST(self):
        path = urlparse(self.path).path
        name = path[len(FUNCTIONS_PREFIX) :] if path.startswith(FUNCTIONS_PREFIX) else ""
        if name not in FUNCTIONS:
            json_error(self, "Not Found", 404)
            return
        handle_function(self, name)

    def do_GET(self):
        parsed = urlparse(self.path)
        if not parsed.path.startswith(FILES_PREFIX):
            json_error(self, "Not Found", 404)
            return
        self._handle_file(unquote(parsed.path[len(FILES_PREFIX) :]), parse_qs(parsed.query))

    def _handle_file(self, file_path, query):
        signer = get_services().signer
        if not isinstance(signer, JwtUrlSigner):
            json_error(self, "Not Found", 404)
            return

        claims = signer.verify(query.get("token", [""])[0])
        if not claims or claims.get("path") != file_path:
            json_error(self, "Invalid or expired download link", 403)
            return

        root = Path(self.files_dir).resolve()
        target = (root / file_path).resolve()
        if root not in target.parents or not target.is_file():
            json_error(self, "File not found", 404)
            return

        data = target.read_bytes()
        self.send_response(200)
        self.send_header("Content-Type", "application/octet-stream")
        self.send_header("Content-Length", str(len(data)))
        self.send_header("Content-Disposition", f'attachment; filename="{target.name}"')
        self.end_headers()
        self.wfile.write(data)

    def log_message(self, fmt, *args):
        sys.stderr.write(f"[serve] {fmt % args}\n")


def main(argv=None):
    parser = argparse.ArgumentParser(description="cloudscribe local function server")
    parser.add_argument("port", nargs="?", type=int, default=8080)
    parser.add_argument("--seed", help="JSON file with products/templates to preload")
    parser.add_argument("--files", default=FILES_DIR, help="Directory served under /files/")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    settings = Settings.from_env()
    if not settings.download_base_url:
        settings = replace(settings, download_base_url=f"http://127.0.0.1:{args.port}/files")
    services = build_services(settings)
    set_services(services)

    if args.seed:
        if not isinstance(services.store, MemoryStore):
            print("--seed only applies to the in-memory store, ignoring")
        else:
            n_products, n_templates = seed_catalogue(services.store, args.seed)
            print(f"Seeded {n_products} products, {n_templates} templates from {args.seed}")

    FunctionServerHandler.files_dir = args.files
    server = HTTPServer(("127.0.0.1", args.port), FunctionServerHandler)
    print(f"cloudscribe functions on http://127.0.0.1:{args.port}{FUNCTIONS_PREFIX}")
    print(f"Store:      {type(services.store).__name__}")
    print(f"Gateway:    Paystack ({'configured' if settings.paystack_secret_key else 'NO KEY'})")
    print(f"Files dir:  {os.path.abspath(args.files)}/")
    print("Press Ctrl+C to stop\n")

    try:
        server.serve_forever()
    except KeyboardInterrupt:
        print("\nShutting down.")
        server.server_close()


if __name__ == "__main__":
    main()
