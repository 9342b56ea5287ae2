"""Task lifecycle endpoint for Vercel.

GET  /api/tasks                 -> dashboard buckets for the acting staff member
POST /api/tasks {"action": ...} -> one lifecycle operation

The acting staff id comes from the X-Staff-Id header.
"""

from http.server import BaseHTTPRequestHandler
from urllib.parse import parse_qs, urlparse
import asyncio
import json
import logging

# Setup basic logging first
logging.basicConfig(level=logging.INFO)
_logger = logging.getLogger(__name__)

ACTOR_HEADER = "X-Staff-Id"

# Lazy imports to avoid initialization errors
_services_loaded = False
_engine = None


def _load_services():
    """Lazy load the engine to avoid import errors at cold start."""
    global _services_loaded, _engine

    if _services_loaded:
        return True

    try:
        from taskdesk.services.record_store import SupabaseRecordRepository
        from taskdesk.services.task_engine import TaskEngine
        from taskdesk.utils.config import EngineSettings
        from taskdesk.utils.logging_config import LoggingConfig

        LoggingConfig.setup_logging()
        _engine = TaskEngine(SupabaseRecordRepository(), EngineSettings.from_env())
        _services_loaded = True
        return True
    except Exception as e:
        _logger.error(f"Failed to load services: {e}")
        return False


def _status_for(exc: Exception) -> int:
    from taskdesk.utils.errors import ConflictError, DependencyUnavailable, NotFoundError, ValidationError

    if isinstance(exc, ValidationError):
        return 400
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, ConflictError):
        return 409
    if isinstance(exc, DependencyUnavailable):
        return 503
    return 500


def _error_body(exc: Exception, status: int) -> dict:
    if status == 500:
        return {"error": "internal server error"}
    if status == 503:
        return {"error": "service temporarily unavailable"}
    body = {"error": str(exc)}
    errors = getattr(exc, "errors", None)
    if errors:
        body["fields"] = errors
    return body


def _page_size_of(body: dict):
    from taskdesk.utils.errors import ValidationError

    value = body.get("page_size")
    if value is None or (isinstance(value, int) and not isinstance(value, bool)):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value)
    raise ValidationError("page_size must be an integer", {"page_size": "must be an integer"})


def _task_ids_of(body: dict):
    from taskdesk.utils.errors import ValidationError

    value = body.get("task_ids")
    if value is None:
        return None
    if not isinstance(value, list) or not all(isinstance(v, str) and v for v in value):
        raise ValidationError("task_ids must be a list of task ids", {"task_ids": "must be a list of strings"})
    return value


async def dispatch(engine, action: str, actor_id: str, body: dict):
    """Run one POST action against the engine and return a JSON-ready value."""
    from taskdesk.utils.errors import ValidationError

    task_id = body.get("task_id")
    if action == "create":
        task = await engine.create_task(body.get("fields") or {}, actor_id=actor_id)
        return task.model_dump(mode="json")
    if action == "list":
        buckets = await engine.list_tasks_for_actor(actor_id, _page_size_of(body), body.get("cursor"))
        return buckets.model_dump(mode="json")
    if action == "claim_all":
        result = await engine.claim_all(actor_id, body.get("applicant_id"), _task_ids_of(body))
        return result.model_dump(mode="json")
    if action == "bulk_delete":
        result = await engine.bulk_delete(_task_ids_of(body) or [], actor_id=actor_id)
        return result.model_dump(mode="json")

    if action not in ("claim", "unclaim", "complete", "flag", "resolve", "resolve_complete", "edit", "delete"):
        raise ValidationError(f"Unknown action: {action or '(none)'}", {"action": "unknown"})
    if not task_id:
        raise ValidationError("task_id is required", {"task_id": "required"})

    if action == "delete":
        await engine.delete_task(task_id, actor_id=actor_id)
        return {"deleted": task_id}
    if action == "claim":
        task = await engine.claim_task(task_id, actor_id)
    elif action == "unclaim":
        task = await engine.unclaim_task(task_id, actor_id=actor_id)
    elif action == "complete":
        task = await engine.complete_task(task_id, actor_id)
    elif action == "flag":
        task = await engine.flag_task(task_id, actor_id, body.get("reason", ""))
    elif action == "resolve":
        task = await engine.resolve_flag(task_id, actor_id, body.get("note", ""))
    elif action == "resolve_complete":
        task = await engine.resolve_and_complete(task_id, actor_id, body.get("note", ""))
    else:
        task = await engine.edit_task(task_id, body.get("fields") or {}, actor_id=actor_id)
    return task.model_dump(mode="json")


class handler(BaseHTTPRequestHandler):
    """Vercel serverless function handler for task operations."""

    def _send_json(self, status: int, payload) -> None:
        self.send_response(status)
        self.send_header('Content-Type', 'application/json')
        self.end_headers()
        self.wfile.write(json.dumps(payload).encode('utf-8'))

    def _handle(self, action: str, body: dict) -> None:
        if not _load_services():
            self._send_json(500, {"error": "service initialization failed"})
            return

        from taskdesk.utils.logging import correlation_context
        from taskdesk.utils.logging_config import LoggingConfig

        actor_id = self.headers.get(ACTOR_HEADER, "")
        correlation_id = self.headers.get(LoggingConfig.LOG_CORRELATION_ID_HEADER)

        with correlation_context(correlation_id, actor_id=actor_id or None):
            try:
                result = asyncio.run(dispatch(_engine, action, actor_id, body))
            except Exception as e:
                status = _status_for(e)
                if status == 500:
                    _logger.error(f"Error processing task {action}: {e}", exc_info=True)
                else:
                    _logger.info(f"Task {action} rejected with {status}: {e}")
                self._send_json(status, _error_body(e, status))
                return

        self._send_json(200, {"ok": True, "result": result})

    def do_POST(self):
        """Handle a lifecycle action."""
        content_length = int(self.headers.get('Content-Length', 0))
        raw_body = self.rfile.read(content_length).decode('utf-8') if content_length > 0 else ""

        try:
            body = json.loads(raw_body) if raw_body else {}
        except json.JSONDecodeError:
            self._send_json(400, {"error": "invalid JSON body"})
            return
        if not isinstance(body, dict):
            self._send_json(400, {"error": "JSON body must be an object"})
            return

        self._handle(str(body.get("action", "")), body)

    def do_GET(self):
        """Handle a dashboard list request."""
        query = parse_qs(urlparse(self.path).query)
        body = {}
        try:
            if "page_size" in query:
                body["page_size"] = int(query["page_size"][0])
        except ValueError:
            self._send_json(400, {"error": "page_size must be an integer"})
            return
        if "cursor" in query:
            body["cursor"] = query["cursor"][0]

        self._handle("list", body)
