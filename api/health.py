"""Health check endpoint."""

from http.server import BaseHTTPRequestHandler
import json

SERVICE_NAME = "taskdesk-backend"


def health_payload() -> tuple[int, dict]:
    """Liveness plus a check that engine settings parse from the environment."""
    from taskdesk.utils.config import EngineSettings

    try:
        settings = EngineSettings.from_env()
    except Exception as e:
        return 503, {"status": "degraded", "service": SERVICE_NAME, "config": f"invalid: {type(e).__name__}"}

    return 200, {
        "status": "ok",
        "service": SERVICE_NAME,
        "config": "ok",
        "claim_guard": settings.claim_guard,
    }


class handler(BaseHTTPRequestHandler):
    """Health check handler for Vercel serverless function."""

    def do_GET(self):
        """Handle GET request."""
        status, payload = health_payload()
        self.send_response(status)
        self.send_header('Content-Type', 'application/json')
        self.end_headers()
        self.wfile.write(json.dumps(payload).encode('utf-8'))

    def do_POST(self):
        """Handle POST request (same as GET for health check)."""
        self.do_GET()
