"""Engine configuration loaded from environment variables."""

import os
from typing import Literal

from pydantic import BaseModel, Field


ClaimGuard = Literal["conditional", "read_verify_write"]


class EngineSettings(BaseModel):
    """Settings for the task lifecycle engine and its collaborators."""
    tasks_table: str = Field(default="tasks", description="Task records table")
    staff_table: str = Field(default="staff", description="Staff records table")
    notifications_table: str = Field(default="notifications", description="In-app notifications table")
    audit_table: str = Field(default="audit_log", description="Audit events table")
    repository_timeout_seconds: float = Field(default=10.0, gt=0, description="Per-call repository timeout")
    list_cache_ttl_seconds: float = Field(default=60.0, ge=0, description="List cache TTL (0 disables)")
    list_page_size: int = Field(default=100, ge=1, le=100, description="Default page size for task lists")
    claim_guard: ClaimGuard = Field(
        default="conditional",
        description="conditional: precondition on the claim write; read_verify_write: plain check then write"
    )

    @classmethod
    def from_env(cls) -> "EngineSettings":
        env = os.environ
        return cls(
            tasks_table=env.get("TASKS_TABLE", "tasks"),
            staff_table=env.get("STAFF_TABLE", "staff"),
            notifications_table=env.get("NOTIFICATIONS_TABLE", "notifications"),
            audit_table=env.get("AUDIT_TABLE", "audit_log"),
            repository_timeout_seconds=float(env.get("REPOSITORY_TIMEOUT_SECONDS", "10")),
            list_cache_ttl_seconds=float(env.get("TASK_LIST_CACHE_TTL_SECONDS", "60")),
            list_page_size=int(env.get("TASK_LIST_PAGE_SIZE", "100")),
            claim_guard=env.get("TASK_CLAIM_GUARD", "conditional").lower(),
        )
