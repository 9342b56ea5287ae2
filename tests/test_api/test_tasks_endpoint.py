"""Tests for the task lifecycle endpoint."""

import pytest
from unittest.mock import AsyncMock, Mock, patch
from http.server import BaseHTTPRequestHandler

from api.tasks import dispatch, handler
from taskdesk.utils.errors import SupabaseError
from tests.utils.helpers import make_handler, response_of


@pytest.fixture
def serve(engine):
    """Run one request through the handler against the in-memory engine."""
    def _serve(method, path="/api/tasks", body=None, actor="recSTAFF1", raw=None, with_engine=None):
        headers = {"X-Staff-Id": actor, "X-Correlation-ID": "req_test123"}
        h = make_handler(handler, method, path, body=body, headers=headers, raw=raw)
        with patch("api.tasks._load_services", return_value=True), \
                patch("api.tasks._engine", with_engine or engine):
            if method == "GET":
                h.do_GET()
            else:
                h.do_POST()
        return response_of(h)
    return _serve


@pytest.mark.unit
def test_tasks_handler_class():
    """Test that handler is a BaseHTTPRequestHandler subclass."""
    assert issubclass(handler, BaseHTTPRequestHandler)


@pytest.mark.unit
def test_list_returns_buckets(serve, seed_task, staff_member):
    """Test GET returns the actor's dashboard buckets."""
    task_id = seed_task(assignee=staff_member["id"])

    status, body = serve("GET", "/api/tasks?page_size=10")

    assert status == 200
    assert [t["id"] for t in body["result"]["upcoming"]] == [task_id]
    assert body["result"]["next_cursor"] is None


@pytest.mark.unit
def test_list_rejects_bad_page_size(serve):
    """Test a non-numeric page size is a bad request."""
    status, body = serve("GET", "/api/tasks?page_size=lots")

    assert status == 400


@pytest.mark.unit
def test_claim_then_conflict(serve, seed_task):
    """Test a second claim maps to 409."""
    task_id = seed_task()

    status, body = serve("POST", body={"action": "claim", "task_id": task_id})
    assert status == 200
    assert body["result"]["assignee"] == "recSTAFF1"

    status, body = serve("POST", body={"action": "claim", "task_id": task_id}, actor="recSTAFF2")
    assert status == 409
    assert body == {"error": "Task already claimed"}


@pytest.mark.unit
def test_create_validation_error_lists_fields(serve):
    """Test invalid create input maps to 400 with field detail."""
    status, body = serve("POST", body={"action": "create", "fields": {"title": ""}})

    assert status == 400
    assert "title" in body["fields"]


@pytest.mark.unit
@pytest.mark.parametrize("payload", [
    {"action": "archive", "task_id": "rec1"},
    {"action": "complete"},
    {},
])
def test_bad_actions(serve, payload):
    """Test unknown actions and missing task ids are bad requests."""
    status, _ = serve("POST", body=payload)

    assert status == 400


@pytest.mark.unit
def test_invalid_json(serve):
    """Test an unparseable body is rejected before the engine runs."""
    status, body = serve("POST", raw=b"{not json")

    assert status == 400
    assert body == {"error": "invalid JSON body"}


@pytest.mark.unit
def test_missing_task_is_404(serve):
    """Test completing an absent task."""
    status, _ = serve("POST", body={"action": "complete", "task_id": "recMISSING"})

    assert status == 404


@pytest.mark.unit
def test_dependency_failure_is_503_without_detail(serve):
    """Test store errors map to 503 and do not leak internals."""
    broken = Mock()
    broken.claim_task = AsyncMock(side_effect=SupabaseError("password=hunter2 connection refused"))

    status, body = serve("POST", body={"action": "claim", "task_id": "rec1"}, with_engine=broken)

    assert status == 503
    assert "hunter2" not in body["error"]


@pytest.mark.unit
def test_unexpected_error_is_500(serve):
    """Test anything unclassified maps to 500."""
    broken = Mock()
    broken.delete_task = AsyncMock(side_effect=RuntimeError("boom"))

    status, body = serve("POST", body={"action": "delete", "task_id": "rec1"}, with_engine=broken)

    assert status == 500
    assert body == {"error": "internal server error"}


@pytest.mark.unit
def test_service_initialization_failure():
    """Test the handler reports a failed cold start."""
    h = make_handler(handler, "GET", headers={"X-Staff-Id": "recSTAFF1"})

    with patch("api.tasks._load_services", return_value=False):
        h.do_GET()

    status, body = response_of(h)
    assert status == 500
    assert body == {"error": "service initialization failed"}


@pytest.mark.unit
@pytest.mark.asyncio
async def test_dispatch_routes_flag_and_resolve(engine, seed_task, admin):
    """Test dispatch passes reason and note through."""
    task_id = seed_task()

    flagged = await dispatch(engine, "flag", admin["id"], {"task_id": task_id, "reason": "Wrong applicant"})
    resolved = await dispatch(engine, "resolve_complete", admin["id"], {"task_id": task_id, "note": "Reassigned"})

    assert flagged["status"] == "Flagged"
    assert resolved["status"] == "Completed"
    assert resolved["resolution_note"] == "Reassigned"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_dispatch_claim_all_and_bulk_delete(engine, seed_task, admin):
    """Test the batch actions return their result models."""
    a = seed_task(applicant="recAPP")
    b = seed_task(applicant="recAPP")

    claimed = await dispatch(engine, "claim_all", admin["id"], {"applicant_id": "recAPP"})
    deleted = await dispatch(engine, "bulk_delete", admin["id"], {"task_ids": [a, b]})

    assert claimed["total"] == 2
    assert deleted == {"deleted_ids": [a, b], "failed_ids": []}


@pytest.mark.unit
def test_post_list_accepts_numeric_string_page_size(serve, seed_task, staff_member):
    """Test a page size sent as a digit string is read as a number."""
    seed_task(assignee=staff_member["id"])

    status, body = serve("POST", body={"action": "list", "page_size": "10"})

    assert status == 200
    assert len(body["result"]["upcoming"]) == 1


@pytest.mark.unit
@pytest.mark.parametrize("page_size", ["ten", 1.5, True, [10]])
def test_post_list_rejects_malformed_page_size(serve, page_size):
    status, body = serve("POST", body={"action": "list", "page_size": page_size})

    assert status == 400
    assert "page_size" in body["fields"]


@pytest.mark.unit
def test_list_rejects_malformed_cursor(serve):
    """Test a made-up cursor is a bad request, not a server error."""
    status, body = serve("GET", "/api/tasks?cursor=not-a-cursor")

    assert status == 400
    assert body["fields"] == {"cursor": "must be a cursor returned by a previous page"}


@pytest.mark.unit
@pytest.mark.parametrize("action", ["claim_all", "bulk_delete"])
@pytest.mark.parametrize("task_ids", ["recA", ["recA", 7], [""], {"id": "recA"}])
def test_batch_actions_require_a_list_of_ids(serve, seed_task, action, task_ids):
    """Test batch actions reject task_ids that are not a list of strings."""
    seed_task()

    status, body = serve("POST", body={"action": action, "task_ids": task_ids})

    assert status == 400
    assert "task_ids" in body["fields"]
