"""Tests for notification and audit models."""

import pytest
from datetime import datetime, timezone
from pydantic import ValidationError

from taskdesk.models.audit import AuditEvent, AuditStatus
from taskdesk.models.notification import Notification, NotificationType, Severity


@pytest.mark.unit
def test_notification_record_shape():
    """Test the stored notification row."""
    record = Notification(
        title="Task flagged",
        body="'Call applicant' was flagged",
        type=NotificationType.TASK_FLAGGED,
        severity=Severity.WARNING,
        recipient_id="recADMIN",
    ).to_record()

    assert record == {
        "title": "Task flagged",
        "body": "'Call applicant' was flagged",
        "type": "Task Flagged",
        "severity": "Warning",
        "recipient": ["recADMIN"],
        "read": False,
        "source": "System",
    }


@pytest.mark.unit
def test_notification_action_url_included_when_set():
    """Test action URL is only written when present."""
    record = Notification(
        title="t", body="b", type=NotificationType.TASK_UPDATE,
        recipient_id="recSTAFF", action_url="/tasks/rec1",
    ).to_record()

    assert record["action_url"] == "/tasks/rec1"


@pytest.mark.unit
def test_audit_event_record(freeze_time_fixture):
    """Test audit events default their timestamp and system actor."""
    event = AuditEvent(event_type="Task Deletion", event_status=AuditStatus.SUCCESS, task_id="rec1")
    record = event.to_record()

    assert event.timestamp == datetime(2024, 12, 9, 12, 0, 0, tzinfo=timezone.utc)
    assert record["actor_id"] == "system"
    assert record["event_status"] == "Success"
    assert record["detailed_message"] == "No details provided"


@pytest.mark.unit
def test_audit_event_is_immutable():
    """Test audit events cannot be modified once built."""
    event = AuditEvent(event_type="Task Claimed", event_status=AuditStatus.ERROR)

    with pytest.raises(ValidationError):
        event.message = "changed"
