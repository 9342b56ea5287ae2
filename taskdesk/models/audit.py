"""Audit event model."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class AuditStatus(str, Enum):
    SUCCESS = "Success"
    ERROR = "Error"
    PARTIAL = "Partial"


class AuditEvent(BaseModel):
    """Immutable record of one lifecycle transition attempt."""
    model_config = ConfigDict(frozen=True)

    event_type: str = Field(..., description="e.g. Task Claimed, Task Flagged")
    event_status: AuditStatus
    actor_id: Optional[str] = Field(None, description="Acting staff ID (None for system actions)")
    task_id: Optional[str] = None
    message: str = Field(default="No details provided", description="Human readable detail")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def to_record(self) -> dict:
        return {
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type,
            "event_status": self.event_status.value,
            "actor_id": self.actor_id or "system",
            "task_id": self.task_id,
            "detailed_message": self.message,
        }
