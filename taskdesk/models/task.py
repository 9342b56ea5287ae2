"""Task models."""

from datetime import date, datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator


class TaskStatus(str, Enum):
    """Stored task status. "Unassigned" is derived, never stored."""
    IN_PROGRESS = "In-Progress"
    OVERDUE = "Overdue"
    FLAGGED = "Flagged"
    COMPLETED = "Completed"


class Urgency(str, Enum):
    VERY_HIGH = "Very High"
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"
    VERY_LOW = "Very Low"


class Task(BaseModel):
    """Task as read from the record store.

    ``status`` and ``urgency`` stay plain strings so that values written by
    other tools still load; lifecycle checks compare against ``TaskStatus``.
    """
    id: str = Field(..., description="Record ID assigned by the store")
    title: str = Field(default="", description="Task title")
    description: str = Field(default="", description="Task detail")
    urgency: str = Field(default=Urgency.MEDIUM.value, description="Very High .. Very Low")
    due_date: Optional[date] = Field(None, description="Due date (None means no deadline)")
    status: str = Field(default=TaskStatus.IN_PROGRESS.value, description="In-Progress, Overdue, Flagged, Completed")
    assignee: Optional[str] = Field(None, description="Assigned staff ID (None = unclaimed/global)")
    created_by: Optional[str] = Field(None, description="Creating staff ID")
    applicant: Optional[str] = Field(None, description="Applicant the task concerns")
    claimed_at: Optional[datetime] = None
    completed_by: Optional[str] = None
    completed_at: Optional[datetime] = None
    flagged_reason: str = ""
    flagged_by: Optional[str] = None
    flagged_at: Optional[datetime] = None
    flag_resolved_by: Optional[str] = None
    flag_resolved_at: Optional[datetime] = None
    resolution_note: str = ""
    task_type: str = Field(default="Standard", description="Free classification tag")
    created_at: Optional[datetime] = None

    @property
    def is_completed(self) -> bool:
        return self.status == TaskStatus.COMPLETED.value

    @property
    def is_unassigned(self) -> bool:
        return self.status == TaskStatus.IN_PROGRESS.value and not self.assignee


class TaskCreate(BaseModel):
    """Input for creating a task."""
    model_config = ConfigDict(extra="forbid")

    title: str = Field(..., min_length=1, description="Task title")
    description: str = ""
    urgency: Urgency = Urgency.MEDIUM
    due_date: Optional[date] = None
    assignee: Optional[str] = Field(None, description="Staff ID; omit for a global unassigned task")
    created_by: Optional[str] = None
    applicant: Optional[str] = None
    task_type: str = "Standard"

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("title must not be blank")
        return v


class TaskEdit(BaseModel):
    """Whitelisted editable fields. Fields left unset are not touched."""
    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    urgency: Optional[Urgency] = None
    due_date: Optional[date] = None
    applicant: Optional[str] = None
    task_type: Optional[str] = None


class TaskBuckets(BaseModel):
    """Dashboard grouping of open tasks."""
    upcoming: list[Task] = Field(default_factory=list)
    overdue: list[Task] = Field(default_factory=list)
    flagged: list[Task] = Field(default_factory=list)
    next_cursor: Optional[str] = None


class ClaimAllResult(BaseModel):
    claimed: list[str] = Field(default_factory=list)
    already_claimed: list[str] = Field(default_factory=list)
    errors: list[dict] = Field(default_factory=list, description="[{ids: [...], message: str}]")

    @computed_field
    @property
    def total(self) -> int:
        return len(self.claimed) + len(self.already_claimed)


class BulkDeleteResult(BaseModel):
    deleted_ids: list[str] = Field(default_factory=list)
    failed_ids: list[str] = Field(default_factory=list)
