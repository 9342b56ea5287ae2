"""End-to-end tests: a task through its whole lifecycle."""

import asyncio
import pytest

from taskdesk.services.list_cache import ListCache
from taskdesk.services.task_engine import TaskEngine
from taskdesk.utils.config import EngineSettings
from tests.utils.factories import FIXED_NOW
from tests.utils.helpers import audit_events, rows


@pytest.fixture
def slow_engine(repository, admin, staff_member, other_staff):
    """Engine over a store with enough latency for callers to interleave."""
    repository.latency = 0.005
    return TaskEngine(repository, EngineSettings(), cache=ListCache(60), clock=lambda: FIXED_NOW)


@pytest.mark.integration
@pytest.mark.asyncio
async def test_full_lifecycle(slow_engine, repository, admin, staff_member):
    """Create, claim, flag, resolve, complete; every step audited."""
    task = await slow_engine.create_task(
        {"title": "Collect right-to-work documents", "urgency": "Very High", "applicant": "recAPP"},
        actor_id=admin["id"],
    )
    pool = await slow_engine.list_tasks_for_actor(staff_member["id"])
    assert [t.id for t in pool.upcoming] == [task.id]

    await slow_engine.claim_task(task.id, staff_member["id"])
    await slow_engine.flag_task(task.id, staff_member["id"], "Applicant abroad until Friday")
    flagged = await slow_engine.list_tasks_for_actor(staff_member["id"])
    assert [t.id for t in flagged.flagged] == [task.id]

    await slow_engine.resolve_flag(task.id, admin["id"], "Extended deadline")
    done = await slow_engine.complete_task(task.id, staff_member["id"])
    assert done.is_completed

    after = await slow_engine.list_tasks_for_actor(staff_member["id"])
    assert after.upcoming == after.overdue == after.flagged == []

    event_types = [e["event_type"] for e in audit_events(repository)]
    assert event_types == [
        "Task Created",
        "Task Claimed",
        "Task Flagged",
        "Task Flag Resolved",
        "Task Completion",
    ]
    assert {e["event_status"] for e in audit_events(repository)} == {"Success"}


@pytest.mark.integration
@pytest.mark.asyncio
async def test_claim_race_with_claim_all(slow_engine, repository, staff_member, other_staff, seed_task):
    """A single claim racing a claim-all never double-assigns a task."""
    ids = [seed_task(applicant="recAPP") for _ in range(5)]

    single, bulk = await asyncio.gather(
        slow_engine.claim_task(ids[2], other_staff["id"]),
        slow_engine.claim_all(staff_member["id"], applicant_id="recAPP"),
        return_exceptions=True,
    )

    owners = {r["id"]: r["assigned_staff"] for r in rows(repository, "tasks")}
    assert all(len(owner) == 1 for owner in owners.values())
    if isinstance(single, Exception):
        assert ids[2] in bulk.claimed
    else:
        assert owners[ids[2]] == [other_staff["id"]]
        assert ids[2] in bulk.already_claimed
    assert bulk.total == 5
