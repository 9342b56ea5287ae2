"""Test helper functions."""

import json
from io import BytesIO
from typing import Any, Dict, Optional
from unittest.mock import Mock


def rows(repository, table: str) -> list:
    """All rows of a table in an in-memory repository."""
    return list(repository.tables.get(table, {}).values())


def audit_events(repository, event_type: Optional[str] = None) -> list:
    """Audit rows, optionally filtered by event type."""
    events = rows(repository, "audit_log")
    if event_type is not None:
        events = [e for e in events if e["event_type"] == event_type]
    return events


def notifications_for(repository, staff_id: str) -> list:
    """Notification rows addressed to one staff member."""
    return [n for n in rows(repository, "notifications") if n["recipient"] == [staff_id]]


def make_handler(handler_cls, method: str = "GET", path: str = "/api/tasks",
                 body: Optional[Dict[str, Any]] = None, headers: Optional[Dict[str, str]] = None,
                 raw: Optional[bytes] = None):
    """Build a BaseHTTPRequestHandler instance with captured output."""
    if raw is None:
        raw = json.dumps(body).encode("utf-8") if body is not None else b""
    header_lines = "".join(f"{k}: {v}\r\n" for k, v in (headers or {}).items())
    if raw:
        header_lines += f"Content-Length: {len(raw)}\r\n"
    request = f"{method} {path} HTTP/1.1\r\n{header_lines}\r\n".encode("utf-8") + raw

    class MockSocket:
        def makefile(self, *args, **kwargs):
            return BytesIO(request)

        def sendall(self, data):
            pass

        def close(self):
            pass

    # the constructor handles the request line immediately; block that
    original = handler_cls.handle
    handler_cls.handle = lambda self: None
    try:
        h = handler_cls(MockSocket(), ("127.0.0.1", 8000), None)
    finally:
        handler_cls.handle = original

    h.rfile = BytesIO(request)
    h.raw_requestline = h.rfile.readline()
    h.parse_request()
    h.wfile = BytesIO()
    h.send_response = Mock()
    h.send_header = Mock()
    h.end_headers = Mock()
    return h


def response_of(h) -> tuple:
    """(status code, decoded JSON body) written by a handler."""
    h.wfile.seek(0)
    return h.send_response.call_args[0][0], json.loads(h.wfile.read().decode("utf-8"))
