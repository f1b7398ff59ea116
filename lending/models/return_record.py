# lending/models/return_record.py
from typing import List, Optional
from datetime import datetime
from pydantic import BaseModel, Field, field_validator

from lending.core.utils import new_id, utcnow, ensure_utc
from .enum import ItemCondition, ReturnStatus


class ReturnRecord(BaseModel):
    """One-to-one record of a reservation being given back."""
    id: str = Field(default_factory=new_id)
    reservation_id: str
    item_id: str
    user_id: str
    return_date: datetime
    condition_on_return: ItemCondition
    status: ReturnStatus = ReturnStatus.PENDING

    penalty_applied: bool = False
    penalty_amount: Optional[float] = None
    penalty_reason: Optional[str] = None

    damage_report: Optional[str] = None
    damage_images: List[str] = Field(default_factory=list)
    notes: Optional[str] = None
    auto_generated: bool = False

    approved_by_id: Optional[str] = None
    approved_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("return_date", "approved_at", "created_at", "updated_at")
    @classmethod
    def _as_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)

    @property
    def is_processed(self) -> bool:
        return self.status != ReturnStatus.PENDING

    # --- Pydantic Schemas ---
    class Create(BaseModel):
        reservation_id: str = Field(..., min_length=1)
        return_date: datetime
        condition_on_return: ItemCondition
        damage_report: Optional[str] = None
        damage_images: List[str] = Field(default_factory=list)
        notes: Optional[str] = None

    class Response(BaseModel):
        id: str
        reservation_id: str
        item_id: str
        user_id: str
        return_date: datetime
        condition_on_return: ItemCondition
        status: ReturnStatus
        penalty_applied: bool
        penalty_amount: Optional[float] = None
        penalty_reason: Optional[str] = None
        damage_report: Optional[str] = None
        damage_images: List[str] = []
        notes: Optional[str] = None
        auto_generated: bool = False
        approved_by_id: Optional[str] = None
        approved_at: Optional[datetime] = None
        created_at: datetime
        updated_at: datetime

        class Config:
            from_attributes = True


class PenaltyOverride(BaseModel):
    amount: Optional[float] = Field(None, ge=0, le=100)
    reason: Optional[str] = None


class StaffAssessment(BaseModel):
    condition_on_return: Optional[ItemCondition] = None
    damage_report: Optional[str] = None
    damage_images: Optional[List[str]] = None
    penalty_override: Optional[PenaltyOverride] = None


class ConfirmReturn(BaseModel):
    """Request body for a staff confirmation of a pending return."""
    approved: bool
    staff_assessment: Optional[StaffAssessment] = None
    rejection_reason: Optional[str] = None
    staff_notes: Optional[str] = None


class ReturnActions(BaseModel):
    reservation_completed: bool = False
    item_status_updated: bool = False
    trust_score_updated: bool = False
    penalty_applied: float = 0


class ReturnConfirmation(BaseModel):
    message: str
    return_record: ReturnRecord = Field(..., serialization_alias="return")
    actions: ReturnActions


class ReturnInitiation(BaseModel):
    return_record: ReturnRecord = Field(..., serialization_alias="return")
    is_overdue: bool
    days_overdue: int
    condition_degraded: bool
    penalty_amount: float
    requires_approval: bool = True


class ReturnMetrics(BaseModel):
    is_overdue: bool
    days_overdue: int
    borrow_duration: Optional[int] = None
    condition_degraded: bool
    penalty_applied: bool
    requires_approval: bool


class ReturnTimeline(BaseModel):
    borrowed: Optional[datetime] = None
    due_date: datetime
    returned: datetime
    processed: Optional[datetime] = None


class ReturnDetails(BaseModel):
    return_record: ReturnRecord = Field(..., serialization_alias="return")
    metrics: ReturnMetrics
    timeline: ReturnTimeline
