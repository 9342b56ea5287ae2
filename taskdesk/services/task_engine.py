"""Task lifecycle engine - state transitions, the claim race guard and side effects.

Every operation follows the same shape: read, check the precondition, one
write, then audit and notifications. Side effects run only after the write
has been acknowledged; their failures are logged and never change the
outcome of the operation.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Sequence, Union

from pydantic import ValidationError as PydanticValidationError

from taskdesk.models.audit import AuditEvent, AuditStatus
from taskdesk.models.notification import NotificationType, Severity
from taskdesk.models.staff import Staff
from taskdesk.models.task import (
    BulkDeleteResult,
    ClaimAllResult,
    Task,
    TaskBuckets,
    TaskCreate,
    TaskEdit,
    TaskStatus,
)
from taskdesk.services.audit_recorder import AuditRecorder
from taskdesk.services.list_cache import ListCache
from taskdesk.services.notifier import NotificationDispatcher
from taskdesk.services.record_store import Filter, RecordRepository, TimeoutRecordRepository
from taskdesk.services.task_buckets import group_tasks
from taskdesk.services.task_fields import column, record_to_task, task_fields_to_record
from taskdesk.utils.config import EngineSettings
from taskdesk.utils.errors import (
    ConflictError,
    DependencyUnavailable,
    NotFoundError,
    ValidationError,
)
from taskdesk.utils.logging import get_structured_logger, mask_user_id, sanitize_note_text, timed

logger = get_structured_logger(__name__)

CLAIM_ALL_CHUNK_SIZE = 10


def _validation_error(message: str, exc: PydanticValidationError) -> ValidationError:
    errors = {}
    for err in exc.errors():
        field = ".".join(str(part) for part in err["loc"]) or "__root__"
        errors[field] = err["msg"]
    return ValidationError(message, errors)


class TaskEngine:
    """Owns the task state machine on top of a record repository."""

    def __init__(
        self,
        repository: RecordRepository,
        settings: Optional[EngineSettings] = None,
        audit: Optional[AuditRecorder] = None,
        notifier: Optional[NotificationDispatcher] = None,
        cache: Optional[ListCache] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.settings = settings or EngineSettings()
        self.repository = TimeoutRecordRepository(repository, self.settings.repository_timeout_seconds)
        self.table = self.settings.tasks_table
        self.audit = audit or AuditRecorder(self.repository, self.settings.audit_table)
        self.notifier = notifier or NotificationDispatcher(
            self.repository,
            staff_table=self.settings.staff_table,
            notifications_table=self.settings.notifications_table,
        )
        self.cache = cache if cache is not None else ListCache(self.settings.list_cache_ttl_seconds)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # ---- helpers ----

    def _now(self) -> datetime:
        return self._clock()

    @property
    def conditional_claims(self) -> bool:
        return (
            self.settings.claim_guard == "conditional"
            and self.repository.supports_conditional_update
        )

    @staticmethod
    def _require(value: Optional[str], field: str) -> str:
        if not value or not str(value).strip():
            raise ValidationError(f"{field} is required", {field: "required"})
        return str(value).strip()

    async def _get(self, task_id: str) -> Task:
        record = await self.repository.find(self.table, task_id)
        if record is None:
            raise NotFoundError(f"Task not found: {task_id}")
        return record_to_task(record)

    async def _get_staff(self, staff_id: str) -> Staff:
        record = await self.repository.find(self.settings.staff_table, staff_id)
        if record is None:
            raise NotFoundError(f"Staff not found: {staff_id}")
        return Staff.from_record(record)

    async def _write(self, task_id: str, fields: dict[str, Any], expected: Optional[dict] = None) -> Optional[Task]:
        record = await self.repository.update(self.table, task_id, task_fields_to_record(fields), expected=expected)
        if record is None:
            return None
        self.cache.clear()
        return record_to_task(record)

    async def _write_or_raise(self, task_id: str, fields: dict[str, Any]) -> Task:
        task = await self._write(task_id, fields)
        if task is None:
            raise NotFoundError(f"Task not found: {task_id}")
        return task

    async def _run_side_effect(self, name: str, effect: Awaitable[Any]) -> None:
        try:
            await effect
        except Exception as e:
            logger.error(
                "Side effect failed",
                side_effect=name,
                error=str(e),
                exc_info=True
            )

    async def _record_audit(
        self,
        event_type: str,
        status: AuditStatus,
        actor_id: Optional[str],
        task_id: Optional[str],
        message: str,
    ) -> None:
        event = AuditEvent(
            event_type=event_type,
            event_status=status,
            actor_id=actor_id,
            task_id=task_id,
            message=message,
        )
        await self._run_side_effect("audit", self.audit.record(event))

    @asynccontextmanager
    async def _audited(self, event_type: str, actor_id: Optional[str], task_id: Optional[str]):
        """Record a failure audit event for conflicts, missing records and store errors."""
        try:
            yield
        except (ConflictError, NotFoundError, DependencyUnavailable) as e:
            logger.warning(
                f"{event_type} failed",
                task_id=task_id,
                error_type=type(e).__name__,
                error=str(e)
            )
            await self._record_audit(event_type, AuditStatus.ERROR, actor_id, task_id, str(e))
            raise

    async def _staff_name(self, staff_id: Optional[str]) -> str:
        if not staff_id:
            return "System"
        staff = await self.notifier.get_staff(staff_id)
        return staff.name if staff and staff.name else staff_id

    # ---- creation & editing ----

    @timed("task_engine.create_task")
    async def create_task(self, fields: Union[dict, TaskCreate], actor_id: Optional[str] = None) -> Task:
        """Create a task. Without an assignee it is a global unassigned task."""
        try:
            data = fields if isinstance(fields, TaskCreate) else TaskCreate.model_validate(fields)
        except PydanticValidationError as e:
            raise _validation_error("Invalid task fields", e)

        now = self._now()
        attrs = {
            "title": data.title,
            "description": data.description,
            "urgency": data.urgency,
            "due_date": data.due_date,
            "status": TaskStatus.IN_PROGRESS,
            "assignee": data.assignee,
            "created_by": data.created_by or actor_id,
            "applicant": data.applicant,
            "task_type": data.task_type,
            "claimed_at": now if data.assignee else None,
        }

        async with self._audited("Task Created", actor_id, None):
            record = await self.repository.create(self.table, task_fields_to_record(attrs))
        self.cache.clear()
        task = record_to_task(record)

        logger.info(
            "Task created",
            task_id=task.id,
            assignee=mask_user_id(task.assignee),
            unassigned=task.is_unassigned
        )
        await self._record_audit(
            "Task Created", AuditStatus.SUCCESS, actor_id, task.id,
            f"Task '{task.title}' created" + (" (unassigned)" if task.is_unassigned else "")
        )
        if task.assignee and task.assignee != actor_id:
            await self._run_side_effect("notify", self.notifier.notify(
                [task.assignee],
                NotificationType.TASK_ASSIGNMENT,
                "New task assigned",
                f"You have been assigned '{task.title}'.",
            ))
        return task

    @timed("task_engine.edit_task")
    async def edit_task(self, task_id: str, fields: Union[dict, TaskEdit], actor_id: Optional[str] = None) -> Task:
        """Overwrite whitelisted fields; anything not given stays as it is."""
        try:
            edit = fields if isinstance(fields, TaskEdit) else TaskEdit.model_validate(fields)
        except PydanticValidationError as e:
            raise _validation_error("Invalid task fields", e)

        changes = edit.model_dump(exclude_unset=True)
        if not changes:
            raise ValidationError("No editable fields provided", {"fields": "empty"})
        if "title" in changes and not (changes["title"] or "").strip():
            raise ValidationError("Invalid task fields", {"title": "must not be blank"})

        async with self._audited("Task Update", actor_id, task_id):
            task = await self._get(task_id)
            if task.is_completed:
                logger.warning("Editing a completed task", task_id=task_id)
            updated = await self._write_or_raise(task_id, changes)

        logger.info("Task updated", task_id=task_id, fields=sorted(changes))
        await self._record_audit(
            "Task Update", AuditStatus.SUCCESS, actor_id, task_id,
            f"Task {task_id} updated: {', '.join(sorted(changes))}"
        )
        if updated.assignee and updated.assignee != actor_id:
            await self._run_side_effect("notify", self.notifier.notify(
                [updated.assignee],
                NotificationType.TASK_UPDATE,
                "Task updated",
                f"'{updated.title}' was updated.",
            ))
        return updated

    # ---- assignment ----

    @timed("task_engine.claim_task")
    async def claim_task(self, task_id: str, actor_id: str) -> Task:
        """Take ownership of an unassigned task. Exactly one concurrent claimer wins."""
        actor_id = self._require(actor_id, "actor_id")

        async with self._audited("Task Claimed", actor_id, task_id):
            task = await self._get(task_id)
            if task.assignee:
                raise ConflictError("Task already claimed")
            if task.status != TaskStatus.IN_PROGRESS.value:
                raise ConflictError("Task is not claimable")

            fields = {"assignee": actor_id, "claimed_at": self._now()}
            if self.conditional_claims:
                # the stored row must still be the one we just checked
                expected = {
                    column("assignee"): [],
                    column("status"): TaskStatus.IN_PROGRESS.value,
                }
                claimed = await self._write(task_id, fields, expected=expected)
                if claimed is None:
                    raise ConflictError("Task already claimed")
            else:
                logger.debug("Claim written without precondition", task_id=task_id)
                claimed = await self._write_or_raise(task_id, fields)

        logger.info("Task claimed", task_id=task_id, assignee=mask_user_id(actor_id))
        await self._record_audit(
            "Task Claimed", AuditStatus.SUCCESS, actor_id, task_id, f"Task '{claimed.title}' claimed"
        )
        return claimed

    @timed("task_engine.unclaim_task")
    async def unclaim_task(self, task_id: str, actor_id: Optional[str] = None) -> Task:
        """Release a task back to the global pool. Idempotent."""
        async with self._audited("Task Unclaimed", actor_id, task_id):
            task = await self._get(task_id)
            previous = task.assignee
            released = await self._write_or_raise(task_id, {"assignee": None, "claimed_at": None})

        logger.info("Task unclaimed", task_id=task_id, previous_assignee=mask_user_id(previous))
        await self._record_audit(
            "Task Unclaimed", AuditStatus.SUCCESS, actor_id, task_id,
            f"Task '{released.title}' released" if previous else f"Task '{released.title}' was not claimed"
        )
        return released

    @timed("task_engine.claim_all")
    async def claim_all(
        self,
        actor_id: str,
        applicant_id: Optional[str] = None,
        task_ids: Optional[Sequence[str]] = None,
    ) -> ClaimAllResult:
        """Claim every unclaimed open task among ``task_ids`` or linked to an applicant."""
        actor_id = self._require(actor_id, "actor_id")
        if not applicant_id and not task_ids:
            raise ValidationError(
                "Provide applicant_id or a non-empty task_ids list",
                {"applicant_id": "required without task_ids", "task_ids": "required without applicant_id"}
            )

        result = ClaimAllResult()
        async with self._audited("Task Claim-All", actor_id, None):
            candidates: list[Task] = []
            if task_ids:
                for task_id in task_ids:
                    record = await self.repository.find(self.table, task_id)
                    if record is None:
                        result.errors.append({"ids": [task_id], "message": "Task not found"})
                    else:
                        candidates.append(record_to_task(record))
                if applicant_id:
                    candidates = [t for t in candidates if t.applicant == applicant_id]
            else:
                rows, _ = await self.repository.query(self.table, [
                    Filter(column("status"), "neq", TaskStatus.COMPLETED.value),
                    Filter(column("applicant"), "contains", applicant_id),
                ])
                candidates = [record_to_task(r) for r in rows]

        to_claim: list[str] = []
        for task in candidates:
            if task.assignee:
                result.already_claimed.append(task.id)
            elif task.status != TaskStatus.IN_PROGRESS.value:
                result.errors.append({"ids": [task.id], "message": "Task is not claimable"})
            else:
                to_claim.append(task.id)

        expected = {column("assignee"): [], column("status"): TaskStatus.IN_PROGRESS.value} \
            if self.conditional_claims else None

        async def claim_one(task_id: str):
            try:
                return await self._write(
                    task_id, {"assignee": actor_id, "claimed_at": self._now()}, expected=expected
                )
            except DependencyUnavailable as e:
                return e

        for start in range(0, len(to_claim), CLAIM_ALL_CHUNK_SIZE):
            chunk = to_claim[start:start + CLAIM_ALL_CHUNK_SIZE]
            outcomes = await asyncio.gather(*(claim_one(task_id) for task_id in chunk))
            for task_id, outcome in zip(chunk, outcomes):
                if isinstance(outcome, DependencyUnavailable):
                    result.errors.append({"ids": [task_id], "message": str(outcome)})
                elif outcome is None:
                    result.already_claimed.append(task_id)
                else:
                    result.claimed.append(task_id)

        status = AuditStatus.PARTIAL if result.errors else AuditStatus.SUCCESS
        logger.info(
            "Claim-all finished",
            claimed=len(result.claimed),
            already_claimed=len(result.already_claimed),
            failed=len(result.errors)
        )
        await self._record_audit(
            "Task Claim-All", status, actor_id, None,
            f"Claimed {len(result.claimed)} tasks; already claimed {len(result.already_claimed)}."
        )
        if result.claimed:
            await self._run_side_effect("notify", self.notifier.notify(
                [actor_id],
                NotificationType.TASK_CLAIM_ALL,
                "Tasks claimed",
                f"You claimed {len(result.claimed)} tasks.",
            ))
        return result

    # ---- completion & flags ----

    @timed("task_engine.complete_task")
    async def complete_task(self, task_id: str, actor_id: str) -> Task:
        """Complete a task; completion always clears the assignment."""
        actor_id = self._require(actor_id, "actor_id")

        async with self._audited("Task Completion", actor_id, task_id):
            task = await self._get(task_id)
            if task.is_completed:
                raise ConflictError("Task already completed")
            completed = await self._write_or_raise(task_id, {
                "status": TaskStatus.COMPLETED,
                "assignee": None,
                "claimed_at": None,
                "flagged_reason": "",
                "completed_by": actor_id,
                "completed_at": self._now(),
            })

        logger.info("Task completed", task_id=task_id, completed_by=mask_user_id(actor_id))
        await self._record_audit(
            "Task Completion", AuditStatus.SUCCESS, actor_id, task_id, f"Task '{completed.title}' completed"
        )
        await self._run_side_effect("notify", self._notify_admins(
            NotificationType.TASK_COMPLETION, "Task completed", completed, actor_id, "completed"
        ))
        return completed

    @timed("task_engine.flag_task")
    async def flag_task(self, task_id: str, actor_id: str, reason: str) -> Task:
        """Mark a task as blocked pending review."""
        actor_id = self._require(actor_id, "actor_id")
        reason = self._require(reason, "reason")

        async with self._audited("Task Flagged", actor_id, task_id):
            task = await self._get(task_id)
            if task.is_completed:
                raise ConflictError("Task already completed")
            flagged = await self._write_or_raise(task_id, {
                "status": TaskStatus.FLAGGED,
                "flagged_reason": reason,
                "flagged_by": actor_id,
                "flagged_at": self._now(),
            })

        logger.info("Task flagged", task_id=task_id, reason=sanitize_note_text(reason))
        await self._record_audit(
            "Task Flagged", AuditStatus.SUCCESS, actor_id, task_id,
            f"Task '{flagged.title}' flagged: {reason}"
        )
        await self._run_side_effect("notify", self._notify_admins(
            NotificationType.TASK_FLAGGED, "Task flagged", flagged, actor_id, f"flagged ({reason})",
            severity=Severity.WARNING,
        ))
        return flagged

    @timed("task_engine.resolve_flag")
    async def resolve_flag(self, task_id: str, actor_id: str, note: str = "") -> Task:
        """Clear a flag and put the task back in progress."""
        actor_id = self._require(actor_id, "actor_id")

        async with self._audited("Task Flag Resolved", actor_id, task_id):
            task = await self._get(task_id)
            if task.status != TaskStatus.FLAGGED.value:
                raise ConflictError("Task is not flagged")
            resolved = await self._write_or_raise(task_id, {
                "status": TaskStatus.IN_PROGRESS,
                "flagged_reason": "",
                "flag_resolved_by": actor_id,
                "flag_resolved_at": self._now(),
                "resolution_note": note or "",
            })

        logger.info("Task flag resolved", task_id=task_id, note=sanitize_note_text(note))
        await self._record_audit(
            "Task Flag Resolved", AuditStatus.SUCCESS, actor_id, task_id,
            f"Flag on '{resolved.title}' resolved" + (f": {note}" if note else "")
        )
        recipients = [r for r in (task.assignee, task.flagged_by) if r and r != actor_id]
        if recipients:
            await self._run_side_effect("notify", self.notifier.notify(
                recipients,
                NotificationType.TASK_FLAG_RESOLVED,
                "Task flag resolved",
                f"The flag on '{resolved.title}' was resolved." + (f" Note: {note}" if note else ""),
            ))
        return resolved

    @timed("task_engine.resolve_and_complete")
    async def resolve_and_complete(self, task_id: str, actor_id: str, note: str = "") -> Task:
        """Resolve a flag and complete the task in one write."""
        actor_id = self._require(actor_id, "actor_id")

        async with self._audited("Task Flag Resolved & Completed", actor_id, task_id):
            task = await self._get(task_id)
            if task.status != TaskStatus.FLAGGED.value:
                raise ConflictError("Task is not flagged")
            now = self._now()
            completed = await self._write_or_raise(task_id, {
                "status": TaskStatus.COMPLETED,
                "flagged_reason": "",
                "flag_resolved_by": actor_id,
                "flag_resolved_at": now,
                "resolution_note": note or "",
                "assignee": None,
                "claimed_at": None,
                "completed_by": actor_id,
                "completed_at": now,
            })

        logger.info("Task flag resolved and completed", task_id=task_id, note=sanitize_note_text(note))
        await self._record_audit(
            "Task Flag Resolved & Completed", AuditStatus.SUCCESS, actor_id, task_id,
            f"Flag on '{completed.title}' resolved and task completed" + (f": {note}" if note else "")
        )
        await self._run_side_effect("notify", self._notify_admins(
            NotificationType.TASK_FLAG_RESOLVED_COMPLETED, "Task flag resolved & completed",
            completed, actor_id, "resolved and completed",
        ))
        return completed

    async def _notify_admins(
        self,
        type: NotificationType,
        title: str,
        task: Task,
        actor_id: str,
        what: str,
        severity: Severity = Severity.INFO,
    ) -> None:
        actor_name = await self._staff_name(actor_id)
        await self.notifier.notify_admins(
            type, title, f"'{task.title}' was {what} by {actor_name}.",
            severity=severity, exclude=actor_id,
        )

    # ---- deletion ----

    @timed("task_engine.delete_task")
    async def delete_task(self, task_id: str, actor_id: Optional[str] = None) -> None:
        """Remove a task. Deleting an absent task succeeds."""
        async with self._audited("Task Deletion", actor_id, task_id):
            record = await self.repository.find(self.table, task_id)
            await self.repository.delete(self.table, task_id)
        self.cache.clear()

        task = record_to_task(record) if record else None
        logger.info("Task deleted", task_id=task_id, already_absent=task is None)
        await self._record_audit(
            "Task Deletion", AuditStatus.SUCCESS, actor_id, task_id,
            f"Task '{task.title}' deleted" if task else f"Task {task_id} already absent"
        )
        if task and task.assignee and task.assignee != actor_id:
            await self._run_side_effect("notify", self.notifier.notify(
                [task.assignee],
                NotificationType.TASK_DELETION,
                "Task deleted",
                f"'{task.title}' was deleted.",
            ))

    @timed("task_engine.bulk_delete")
    async def bulk_delete(self, task_ids: Sequence[str], actor_id: Optional[str] = None) -> BulkDeleteResult:
        """Delete many tasks; one failure does not stop the rest."""
        if not task_ids:
            raise ValidationError("task_ids is required", {"task_ids": "required"})

        result = BulkDeleteResult()
        deleted: list[Task] = []
        for task_id in task_ids:
            try:
                record = await self.repository.find(self.table, task_id)
                await self.repository.delete(self.table, task_id)
            except DependencyUnavailable as e:
                logger.error("Error deleting task", task_id=task_id, error=str(e))
                result.failed_ids.append(task_id)
                continue
            result.deleted_ids.append(task_id)
            if record:
                deleted.append(record_to_task(record))

        if result.deleted_ids:
            self.cache.clear()

        status = AuditStatus.PARTIAL if result.failed_ids else AuditStatus.SUCCESS
        titles = ", ".join(t.title for t in deleted)
        await self._record_audit(
            "Bulk Task Deletion", status, actor_id, None,
            f"Deleted {len(result.deleted_ids)} tasks: {titles}"
            + (f", {len(result.failed_ids)} failed" if result.failed_ids else "")
        )
        for task in deleted:
            if task.assignee and task.assignee != actor_id:
                await self._run_side_effect("notify", self.notifier.notify(
                    [task.assignee],
                    NotificationType.TASK_DELETION,
                    "Task deleted",
                    f"'{task.title}' was deleted.",
                ))
        return result

    # ---- reads ----

    @timed("task_engine.list_tasks_for_actor")
    async def list_tasks_for_actor(
        self,
        actor_id: str,
        page_size: Optional[int] = None,
        cursor: Optional[str] = None,
    ) -> TaskBuckets:
        """Open tasks visible to the actor, bucketed for the dashboard.

        Staff see their own tasks plus unassigned global tasks; admins see
        every open task.
        """
        actor_id = self._require(actor_id, "actor_id")
        page_size = page_size or self.settings.list_page_size
        if not isinstance(page_size, int) or page_size < 1:
            raise ValidationError("page_size must be a positive integer", {"page_size": "must be an integer >= 1"})
        if cursor is not None and not (isinstance(cursor, str) and cursor.isdigit()):
            raise ValidationError("Invalid cursor", {"cursor": "must be a cursor returned by a previous page"})

        async def load() -> TaskBuckets:
            actor = await self._get_staff(actor_id)
            rows, next_cursor = await self.repository.query(
                self.table,
                [Filter(column("status"), "neq", TaskStatus.COMPLETED.value)],
                sort=[(column("due_date"), "asc")],
                page_size=page_size,
                cursor=cursor,
            )
            tasks = [record_to_task(r) for r in rows]
            if not actor.is_admin:
                tasks = [t for t in tasks if t.assignee in (None, actor_id)]
            return group_tasks(tasks, self._now().date(), next_cursor=next_cursor)

        return await self.cache.get_or_load((actor_id, page_size, cursor), load)
