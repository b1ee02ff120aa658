"""
Notification service layer.

Usage:
    from notifications.services import NotificationService

    NotificationService.notify(
        order.buyer,
        "Order Confirmed!",
        f"Your order #{order.id} has been confirmed by the seller.",
        kind=NotificationKind.ORDER,
        meta={"order_id": str(order.id)},
    )
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.db import transaction
from django.utils import timezone

from core.services import BaseService, ServiceResult
from notifications.models import Notification, NotificationKind

if TYPE_CHECKING:
    from typing import Any

    from authentication.models import User


class NotificationService(BaseService):
    """
    Service for notification operations.

    Methods:
        notify: Fire-and-forget notification for a settlement event
        mark_as_read: Mark a single notification as read
    """

    @classmethod
    def notify(
        cls,
        recipient: User | None,
        title: str,
        body: str = "",
        kind: str = NotificationKind.ORDER,
        meta: dict[str, Any] | None = None,
    ) -> Notification | None:
        """
        Record a notification for recipient.

        Best-effort: any error is logged and swallowed, and None is
        returned. The write runs in its own savepoint so a failure never
        poisons the caller's transaction.
        """
        if recipient is None:
            return None

        try:
            with transaction.atomic():
                notification = Notification.objects.create(
                    recipient=recipient,
                    kind=kind,
                    title=title,
                    body=body,
                    meta=meta or {},
                )
        except Exception:
            cls.get_logger().exception(
                "Failed to record notification",
                extra={
                    "recipient_id": getattr(recipient, "pk", None),
                    "title": title,
                    "kind": kind,
                },
            )
            return None

        cls.get_logger().debug(
            "Notification recorded",
            extra={"notification_id": notification.id, "kind": kind},
        )
        return notification

    @classmethod
    def mark_as_read(
        cls,
        notification: Notification,
        user: User,
    ) -> ServiceResult[Notification]:
        """
        Mark a single notification as read.

        Idempotent: marking an already-read notification succeeds.

        Error codes:
            NOT_OWNER: User doesn't own the notification
        """
        if notification.recipient_id != user.id:
            cls.get_logger().warning(
                "Attempt to mark another user's notification",
                extra={"notification_id": notification.id, "user_id": user.id},
            )
            return ServiceResult.failure(
                "Cannot mark notification you don't own",
                error_code="NOT_OWNER",
            )

        if not notification.is_read:
            notification.is_read = True
            notification.read_at = timezone.now()
            notification.save(update_fields=["is_read", "read_at", "updated_at"])

        return ServiceResult.success(notification)
