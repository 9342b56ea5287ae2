"""Notification dispatcher - in-app notifications for staff.

A recipient gets a notification only when the type is in their
notification preferences. Delivery to email/Slack channels happens
downstream of the notifications table and is not handled here.
"""

from typing import Iterable, Optional

from taskdesk.models.notification import Notification, NotificationType, Severity
from taskdesk.models.staff import Staff
from taskdesk.services.record_store import Filter, RecordRepository
from taskdesk.utils.logging import get_structured_logger, mask_user_id

logger = get_structured_logger(__name__)


class NotificationDispatcher:

    def __init__(
        self,
        repository: RecordRepository,
        staff_table: str = "staff",
        notifications_table: str = "notifications",
    ):
        self.repository = repository
        self.staff_table = staff_table
        self.notifications_table = notifications_table

    async def get_staff(self, staff_id: str) -> Optional[Staff]:
        record = await self.repository.find(self.staff_table, staff_id)
        return Staff.from_record(record) if record else None

    async def admin_ids(self) -> list[str]:
        rows, _ = await self.repository.query(
            self.staff_table, [Filter("is_admin", "eq", True)]
        )
        return [str(r["id"]) for r in rows]

    async def notify(
        self,
        recipient_ids: Iterable[Optional[str]],
        type: NotificationType,
        title: str,
        body: str,
        severity: Severity = Severity.INFO,
        action_url: Optional[str] = None,
    ) -> int:
        """Create a notification for each opted-in recipient.

        Failures for one recipient are logged and do not stop the others.
        Returns the number of notifications created.
        """
        sent = 0
        seen: set[str] = set()
        for recipient_id in recipient_ids:
            if not recipient_id or recipient_id in seen:
                continue
            seen.add(recipient_id)
            try:
                staff = await self.get_staff(recipient_id)
                if staff is None:
                    logger.warning(
                        "Notification recipient not found",
                        recipient_id=mask_user_id(recipient_id),
                        notification_type=type.value
                    )
                    continue
                if type.value not in staff.notification_preferences:
                    logger.info(
                        "Notification type not enabled for recipient",
                        recipient_id=mask_user_id(recipient_id),
                        notification_type=type.value
                    )
                    continue

                notification = Notification(
                    title=title,
                    body=body,
                    type=type,
                    severity=severity,
                    recipient_id=recipient_id,
                    action_url=action_url,
                )
                await self.repository.create(self.notifications_table, notification.to_record())
                sent += 1
            except Exception as e:
                logger.error(
                    "Notification creation failed",
                    recipient_id=mask_user_id(recipient_id),
                    notification_type=type.value,
                    error=str(e),
                    exc_info=True
                )
        return sent

    async def notify_admins(
        self,
        type: NotificationType,
        title: str,
        body: str,
        severity: Severity = Severity.INFO,
        exclude: Optional[str] = None,
    ) -> int:
        recipients = [a for a in await self.admin_ids() if a != exclude]
        return await self.notify(recipients, type, title, body, severity=severity)
