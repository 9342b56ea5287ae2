"""Staff model - actor reference, owned by the staff directory."""

from typing import Optional

from pydantic import BaseModel, Field


class Staff(BaseModel):
    """Staff member as consumed by the task engine."""
    id: str = Field(..., description="Staff record ID")
    name: str = Field(default="", description="Display name")
    email: Optional[str] = None
    is_admin: bool = Field(default=False, description="Admin flag")
    notification_preferences: list[str] = Field(
        default_factory=list,
        description="Notification types this staff member opted into"
    )

    @classmethod
    def from_record(cls, record: dict) -> "Staff":
        prefs = record.get("notification_preferences") or []
        if isinstance(prefs, str):
            prefs = [prefs]
        return cls(
            id=str(record["id"]),
            name=record.get("name") or "",
            email=record.get("email"),
            is_admin=bool(record.get("is_admin")),
            notification_preferences=list(prefs),
        )
