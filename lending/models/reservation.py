# lending/models/reservation.py
from typing import List, Optional
from datetime import datetime
from pydantic import BaseModel, Field, field_validator, model_validator

from lending.core.utils import new_id, utcnow, ensure_utc
from .enum import ReservationStatus


class Reservation(BaseModel):
    """A request to borrow one item for the closed range [start_date, end_date]."""
    id: str = Field(default_factory=new_id)
    item_id: str
    user_id: str
    start_date: datetime
    end_date: datetime
    status: ReservationStatus = ReservationStatus.PENDING
    purpose: Optional[str] = None
    notes: Optional[str] = None

    # pickup / return timestamps
    actual_start_date: Optional[datetime] = None
    actual_end_date: Optional[datetime] = None
    pickup_confirmed: bool = False
    pickup_confirmed_at: Optional[datetime] = None

    approved_by_id: Optional[str] = None
    approved_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    cancellation_reason: Optional[str] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator(
        "start_date", "end_date", "actual_start_date", "actual_end_date",
        "pickup_confirmed_at", "approved_at", "created_at", "updated_at",
    )
    @classmethod
    def _as_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)

    def overlaps(self, start_date: datetime, end_date: datetime) -> bool:
        """Closed-interval overlap: touching endpoints count as a clash."""
        return self.start_date <= ensure_utc(end_date) and self.end_date >= ensure_utc(start_date)

    def hours_until_start(self, now: datetime) -> float:
        return (self.start_date - ensure_utc(now)).total_seconds() / 3600

    # --- Pydantic Schemas ---
    class Create(BaseModel):
        item_id: str = Field(..., min_length=1)
        start_date: datetime
        end_date: datetime
        purpose: Optional[str] = Field(None, max_length=500)

        @model_validator(mode="after")
        def _check_range(self):
            if ensure_utc(self.end_date) <= ensure_utc(self.start_date):
                raise ValueError("end_date must be after start_date")
            return self

    class Modify(BaseModel):
        start_date: datetime
        end_date: datetime
        purpose: Optional[str] = Field(None, max_length=500)

    class Cancel(BaseModel):
        reason: str = Field(..., min_length=1)
        notes: Optional[str] = None

    class Reject(BaseModel):
        reason: Optional[str] = None

    class Response(BaseModel):
        id: str
        item_id: str
        user_id: str
        start_date: datetime
        end_date: datetime
        status: ReservationStatus
        purpose: Optional[str] = None
        notes: Optional[str] = None
        actual_start_date: Optional[datetime] = None
        actual_end_date: Optional[datetime] = None
        pickup_confirmed: bool
        approved_by_id: Optional[str] = None
        approved_at: Optional[datetime] = None
        rejection_reason: Optional[str] = None
        cancellation_reason: Optional[str] = None
        created_at: datetime
        updated_at: datetime

        class Config:
            from_attributes = True


class CancellationOutcome(BaseModel):
    reservation: Reservation
    trust_score_impact: float = 0
    penalty_reason: Optional[str] = None


class ReservationPermissions(BaseModel):
    reservation_id: str
    status: ReservationStatus
    can_modify: bool
    can_cancel: bool
    is_owner: bool
    is_staff: bool
    hours_until_start: float
    is_upcoming: bool
    cancellation_trust_score_impact: float = 0
    cancellation_warning: Optional[str] = None
    modification_warning: Optional[str] = None
    modify_min_hours: float = 0
    cancel_min_hours: float = 0


class ModificationOutcome(BaseModel):
    reservation: Reservation
    requires_reapproval: bool = False
