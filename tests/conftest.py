"""Shared pytest fixtures and configuration."""

import os
import pytest
from freezegun import freeze_time

from taskdesk.models.notification import NotificationType
from taskdesk.services.list_cache import ListCache
from taskdesk.services.record_store import InMemoryRecordRepository
from taskdesk.services.task_engine import TaskEngine
from taskdesk.utils.config import EngineSettings
from tests.utils.factories import FIXED_NOW, create_staff_data, create_task_data

# Set test environment variables
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "test-key")

ALL_NOTIFICATION_TYPES = [t.value for t in NotificationType]


@pytest.fixture
def repository():
    """Empty in-memory record store."""
    return InMemoryRecordRepository()


@pytest.fixture
def admin(repository):
    """Seeded admin staff row, opted into every notification type."""
    row = create_staff_data(staff_id="recADMIN", is_admin=True, preferences=ALL_NOTIFICATION_TYPES)
    repository.seed("staff", [row])
    return row


@pytest.fixture
def staff_member(repository):
    """Seeded non-admin staff row, opted into every notification type."""
    row = create_staff_data(staff_id="recSTAFF1", preferences=ALL_NOTIFICATION_TYPES)
    repository.seed("staff", [row])
    return row


@pytest.fixture
def other_staff(repository):
    """Seeded non-admin staff row with no notification preferences."""
    row = create_staff_data(staff_id="recSTAFF2", preferences=[])
    repository.seed("staff", [row])
    return row


@pytest.fixture
def settings():
    """Engine settings with the list cache disabled."""
    return EngineSettings(list_cache_ttl_seconds=0)


@pytest.fixture
def engine(repository, settings, admin, staff_member, other_staff):
    """Task engine over the in-memory store with a fixed clock."""
    return TaskEngine(repository, settings, cache=ListCache(0), clock=lambda: FIXED_NOW)


@pytest.fixture
def seed_task(repository):
    """Insert a task row and return its id."""
    def _seed(**overrides) -> str:
        row = create_task_data(**overrides)
        repository.seed("tasks", [row])
        return row["id"]
    return _seed


@pytest.fixture
def freeze_time_fixture():
    """Fixture for freezing time in tests."""
    with freeze_time("2024-12-09 12:00:00") as frozen_time:
        yield frozen_time


@pytest.fixture
def mock_vercel_headers():
    """Headers a dashboard request carries."""
    return {
        "X-Staff-Id": "recSTAFF1",
        "X-Correlation-ID": "req_test123",
        "Content-Type": "application/json",
    }


@pytest.fixture(scope="function")
def reset_environment(monkeypatch):
    """Reset environment variables for each test."""
    original_env = os.environ.copy()
    yield
    os.environ.clear()
    os.environ.update(original_env)
