# lending/models/overdue.py
from typing import Dict, List, Optional
from datetime import datetime
from pydantic import BaseModel, Field

from lending.core.notifications import NotificationRequest
from .enum import NotificationType, OverdueSeverity


class OverdueEntry(BaseModel):
    reservation_id: str
    item_id: str
    item_name: Optional[str] = None
    user_id: str
    end_date: datetime
    days_overdue: int
    severity: OverdueSeverity
    penalty: float  # applied by a scan, or potential when listing
    auto_return_id: Optional[str] = None


class OverdueScanSummary(BaseModel):
    count: int = 0
    total_penalties: float = 0
    auto_returns_created: int = 0
    average_days_overdue: float = 0


class OverdueFailure(BaseModel):
    reservation_id: str
    error: str


class OverdueScanResult(BaseModel):
    processed: List[OverdueEntry] = Field(default_factory=list)
    summary: OverdueScanSummary = Field(default_factory=OverdueScanSummary)
    by_severity: Dict[OverdueSeverity, int] = Field(default_factory=dict)
    failed: List[OverdueFailure] = Field(default_factory=list)
    notifications: List[NotificationRequest] = Field(default_factory=list)


class OverdueScanRequest(BaseModel):
    """Request body for a manual overdue scan."""
    days_overdue: int = Field(1, ge=1, le=365)
    auto_initiate_returns: bool = False
    penalty_multiplier: float = Field(1.0, ge=0.5, le=3.0)


class OverdueAnalytics(BaseModel):
    total_overdue: int = 0
    by_severity: Dict[OverdueSeverity, int] = Field(default_factory=dict)
    average_days_overdue: float = 0
    total_potential_penalty: float = 0
    affected_users: int = 0
    top_overdue_items: List[OverdueEntry] = Field(default_factory=list)


class OverdueListing(BaseModel):
    overdue: List[OverdueEntry]
    analytics: OverdueAnalytics


class NotificationSendRequest(BaseModel):
    reservation_ids: List[str] = Field(..., min_length=1)
    notification_type: NotificationType
    custom_message: Optional[str] = Field(None, max_length=1000)


class NotificationDispatch(BaseModel):
    sent: int
    notification_type: NotificationType
    reservation_ids: List[str]
    notifications: List[NotificationRequest]
