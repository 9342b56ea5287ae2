"""Notification models."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class NotificationType(str, Enum):
    """Task lifecycle notification types; must match the staff preference options."""
    TASK_ASSIGNMENT = "Task Assignment"
    TASK_COMPLETION = "Task Completion"
    TASK_UPDATE = "Task Update"
    TASK_DELETION = "Task Deletion"
    TASK_FLAGGED = "Task Flagged"
    TASK_FLAG_RESOLVED = "Task Flag Resolved"
    TASK_FLAG_RESOLVED_COMPLETED = "Task Flag Resolved & Completed"
    TASK_CLAIM_ALL = "Task Claim-All Executed"


class Severity(str, Enum):
    INFO = "Info"
    WARNING = "Warning"
    CRITICAL = "Critical"


class Notification(BaseModel):
    """In-app notification addressed to one staff member."""
    title: str
    body: str
    type: NotificationType
    severity: Severity = Severity.INFO
    recipient_id: str
    action_url: Optional[str] = None
    source: str = Field(default="System")
    read: bool = False

    def to_record(self) -> dict:
        record = {
            "title": self.title,
            "body": self.body,
            "type": self.type.value,
            "severity": self.severity.value,
            "recipient": [self.recipient_id],
            "read": self.read,
            "source": self.source,
        }
        if self.action_url:
            record["action_url"] = self.action_url
        return record
