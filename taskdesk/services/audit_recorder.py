"""Audit recorder - appends lifecycle events to the audit table."""

from taskdesk.models.audit import AuditEvent
from taskdesk.services.record_store import RecordRepository
from taskdesk.utils.logging import get_structured_logger

logger = get_structured_logger(__name__)


class AuditRecorder:
    """Append-only writer for audit events. Never updates or deletes."""

    def __init__(self, repository: RecordRepository, table: str = "audit_log"):
        self.repository = repository
        self.table = table

    async def record(self, event: AuditEvent) -> None:
        await self.repository.create(self.table, event.to_record())
        logger.debug(
            "Audit event recorded",
            event_type=event.event_type,
            event_status=event.event_status.value,
            task_id=event.task_id
        )
