"""Vercel Serverless Function: POST /api/create-template-purchase

Creates a template purchase for the signed-in buyer. Free templates are
completed immediately; paid ones get a pending row and a Paystack URL.
"""

import sys
from http.server import BaseHTTPRequestHandler
from pathlib import Path

# Add src/ and the project root to Python path so cloudscribe and server_utils are importable
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT / "src"))
sys.path.insert(0, str(PROJECT_ROOT))

from server_utils import handle_function, send_preflight  # noqa: E402


class handler(BaseHTTPRequestHandler):
    def do_OPTIONS(self):
        send_preflight(self)

    def do_POST(self):
        handle_function(self, "create-template-purchase")
