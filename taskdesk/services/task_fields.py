"""Mapping between task table columns and Task attributes.

Link columns (references to staff/applicant records) are read tolerantly:
a bare id, a list of ids or nothing all normalize to "first id or None".
They are always written back as a list, possibly empty, because the store
keeps link columns in list form.
"""

from datetime import date, datetime
from enum import Enum
from typing import Any, Optional

from taskdesk.models.task import Task

TEXT = "text"
LINK = "link"
DATE = "date"
DATETIME = "datetime"

# attribute -> (column, kind)
TASK_FIELDS: dict[str, tuple[str, str]] = {
    "title": ("task", TEXT),
    "description": ("task_detail", TEXT),
    "urgency": ("urgency", TEXT),
    "due_date": ("due_date", DATE),
    "status": ("status", TEXT),
    "assignee": ("assigned_staff", LINK),
    "created_by": ("created_by", LINK),
    "applicant": ("assigned_applicant", LINK),
    "claimed_at": ("claimed_date", DATETIME),
    "completed_by": ("completed_by", LINK),
    "completed_at": ("completed_at", DATETIME),
    "flagged_reason": ("flagged_reason", TEXT),
    "flagged_by": ("flagged_by", LINK),
    "flagged_at": ("flagged_at", DATETIME),
    "flag_resolved_by": ("flag_resolved_by", LINK),
    "flag_resolved_at": ("flag_resolved_at", DATETIME),
    "resolution_note": ("resolution_note", TEXT),
    "task_type": ("task_type", TEXT),
    "created_at": ("created_at", DATETIME),
}


def column(attr: str) -> str:
    """Storage column for a Task attribute."""
    return TASK_FIELDS[attr][0]


def normalize_link(value: Any) -> Optional[str]:
    """First linked id, or None."""
    if isinstance(value, (list, tuple)):
        value = value[0] if value else None
    if value is None or value == "":
        return None
    return str(value)


def _parse_date(value: Any) -> Optional[date]:
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).split("T")[0])
    except ValueError:
        return None


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def record_to_task(record: dict) -> Task:
    """Build a Task from a raw task row."""
    values: dict[str, Any] = {"id": str(record["id"])}

    for attr, (col, kind) in TASK_FIELDS.items():
        raw = record.get(col)
        if kind == LINK:
            values[attr] = normalize_link(raw)
        elif kind == DATE:
            values[attr] = _parse_date(raw)
        elif kind == DATETIME:
            values[attr] = _parse_datetime(raw)
        elif raw not in (None, ""):
            values[attr] = str(raw)

    return Task(**values)


def _write_value(kind: str, value: Any) -> Any:
    if isinstance(value, Enum):
        value = value.value
    if kind == LINK:
        if isinstance(value, (list, tuple)):
            return [str(v) for v in value if v]
        return [str(value)] if value else []
    if kind in (DATE, DATETIME):
        return value.isoformat() if value else None
    return value


def task_fields_to_record(fields: dict[str, Any]) -> dict[str, Any]:
    """Translate Task attributes into the column dict sent to the store."""
    record: dict[str, Any] = {}
    for attr, value in fields.items():
        col, kind = TASK_FIELDS[attr]
        record[col] = _write_value(kind, value)
    return record
