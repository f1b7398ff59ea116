# lending/models/audit.py
from typing import Annotated, List, Literal, Optional, Union
from datetime import datetime
from pydantic import BaseModel, Field, field_validator

from lending.core.utils import new_id, utcnow, ensure_utc
from .enum import (
    AuditAction,
    DamageReportStatus,
    DamageSeverity,
    DamageType,
    ItemCondition,
    ItemStatus,
    NotificationType,
    OverdueSeverity,
    ReservationStatus,
    ReturnStatus,
)
from .return_record import StaffAssessment


# --- Typed "changes" payloads, one per kind of action ---

class ItemStatusChange(BaseModel):
    kind: Literal["item_status"] = "item_status"
    field: str = "status"
    from_status: ItemStatus
    to_status: ItemStatus
    reason: str
    forced: bool = False
    trigger: str = "manual"  # manual | reservation_change | return | damage_report
    reservation_status: Optional[ReservationStatus] = None
    cancelled_reservation_ids: List[str] = Field(default_factory=list)


class ReservationChange(BaseModel):
    kind: Literal["reservation"] = "reservation"
    from_status: Optional[ReservationStatus] = None
    to_status: ReservationStatus
    reason: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    previous_start_date: Optional[datetime] = None
    previous_end_date: Optional[datetime] = None
    notes: Optional[str] = None
    bulk_operation: bool = False


class CancellationChange(BaseModel):
    kind: Literal["cancellation"] = "cancellation"
    reason: str
    notes: Optional[str] = None
    original_status: ReservationStatus
    hours_before_start: float
    trust_score_impact: float = 0
    penalty_reason: Optional[str] = None
    cancelled_by: str  # owner | staff | system


class ReservationDeletion(BaseModel):
    kind: Literal["deletion"] = "deletion"
    status_at_deletion: ReservationStatus


class ReturnInitiationChange(BaseModel):
    kind: Literal["return_initiation"] = "return_initiation"
    reservation_id: str
    return_date: datetime
    condition_on_return: ItemCondition
    original_condition: ItemCondition
    is_overdue: bool
    days_overdue: int
    condition_degraded: bool
    penalty_amount: float
    penalty_reason: Optional[str] = None
    damage_reported: bool = False


class ReturnConfirmationChange(BaseModel):
    kind: Literal["return_confirmation"] = "return_confirmation"
    previous_status: ReturnStatus
    new_status: ReturnStatus
    approved: bool
    penalty_applied: float
    staff_assessment: Optional[StaffAssessment] = None
    rejection_reason: Optional[str] = None
    staff_notes: Optional[str] = None
    bulk_operation: bool = False


class OverdueProcessingChange(BaseModel):
    kind: Literal["overdue"] = "overdue"
    days_overdue: int
    severity: OverdueSeverity
    penalty_applied: float
    penalty_multiplier: float
    auto_return_initiated: bool
    auto_return_id: Optional[str] = None
    original_end_date: datetime


class DamageReportChange(BaseModel):
    kind: Literal["damage_report"] = "damage_report"
    return_id: str
    from_status: Optional[DamageReportStatus] = None  # None when the report is filed
    to_status: DamageReportStatus
    damage_type: DamageType
    severity: DamageSeverity
    condition_change: Optional[ItemCondition] = None
    item_retired: bool = False
    penalty_applied: float = 0
    admin_notes: Optional[str] = None


class NotificationChange(BaseModel):
    kind: Literal["notification"] = "notification"
    notification_type: NotificationType
    days_overdue: int
    custom_message: Optional[str] = None


AuditChanges = Annotated[
    Union[
        ItemStatusChange,
        ReservationChange,
        CancellationChange,
        ReservationDeletion,
        ReturnInitiationChange,
        ReturnConfirmationChange,
        OverdueProcessingChange,
        NotificationChange,
        DamageReportChange,
    ],
    Field(discriminator="kind"),
]


class AuditEntry(BaseModel):
    """Append-only record written alongside every state transition."""
    id: str = Field(default_factory=new_id)
    action: AuditAction
    entity_type: str  # Item | Reservation | Return | DamageReport
    entity_id: str
    user_id: Optional[str] = None  # None for scheduled jobs
    actor_role: Optional[str] = None
    changes: AuditChanges
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("created_at")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)
