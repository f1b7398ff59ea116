# lending/core/notifications.py
from typing import List, Optional, Protocol

from loguru import logger
from pydantic import BaseModel, Field

from lending.models.enum import NotificationType, OverdueSeverity


class NotificationRequest(BaseModel):
    """What should be sent. Delivery (email, push) happens elsewhere."""
    notification_type: NotificationType
    reservation_ids: List[str] = Field(default_factory=list)
    user_ids: List[str] = Field(default_factory=list)
    severity: Optional[OverdueSeverity] = None
    days_overdue: Optional[int] = None
    custom_message: Optional[str] = None


class NotificationSink(Protocol):
    async def dispatch(self, request: NotificationRequest) -> None: ...


class LoggingNotificationSink:
    """Default sink: records the request in the application log."""

    async def dispatch(self, request: NotificationRequest) -> None:
        logger.info(
            f"Notification {request.notification_type.value} queued for users {request.user_ids} "
            f"(reservations: {request.reservation_ids}, severity: "
            f"{request.severity.value if request.severity else 'n/a'})"
        )


NOTIFICATION_FOR_SEVERITY = {
    OverdueSeverity.MODERATE: NotificationType.REMINDER,
    OverdueSeverity.HIGH: NotificationType.WARNING,
    OverdueSeverity.CRITICAL: NotificationType.FINAL_NOTICE,
}
