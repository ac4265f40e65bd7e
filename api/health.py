"""Health check endpoint."""

from http.server import BaseHTTPRequestHandler
import json
import os


class handler(BaseHTTPRequestHandler):
    """Health check handler for Vercel serverless function."""

    def _send_status(self, include_body: bool):
        storage_configured = bool(
            os.environ.get("SUPABASE_URL") and os.environ.get("SUPABASE_SERVICE_ROLE_KEY")
        )
        self.send_response(200)
        self.send_header('Content-Type', 'application/json')
        self.end_headers()
        if include_body:
            response = json.dumps({
                "status": "ok",
                "service": "majitask-sync",
                "storage_configured": storage_configured,
            })
            self.wfile.write(response.encode('utf-8'))

    def do_GET(self):
        """Handle GET request."""
        self._send_status(include_body=True)

    def do_HEAD(self):
        """Handle HEAD request (reachability probe)."""
        self._send_status(include_body=False)
