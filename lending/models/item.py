# lending/models/item.py
from typing import List, Optional
from datetime import datetime
from pydantic import BaseModel, Field, field_validator

from lending.core.utils import new_id, utcnow, ensure_utc
from .enum import ItemStatus, ItemCondition
from .audit import AuditEntry


class Item(BaseModel):
    """A physical asset that can be lent out."""
    id: str = Field(default_factory=new_id)
    name: str = Field(..., max_length=200)
    status: ItemStatus = ItemStatus.AVAILABLE
    condition: ItemCondition = ItemCondition.GOOD
    value: Optional[float] = Field(None, ge=0)

    # --- Timestamps ---
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("created_at", "updated_at")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    # --- Pydantic Schemas for API ---
    class StatusUpdate(BaseModel):
        status: ItemStatus
        reason: Optional[str] = Field(None, max_length=500)
        force_update: bool = False

    class Response(BaseModel):
        id: str
        name: str
        status: ItemStatus
        condition: ItemCondition
        value: Optional[float] = None
        created_at: datetime
        updated_at: datetime

        class Config:
            from_attributes = True


class StatusRecommendation(BaseModel):
    status: ItemStatus
    reason: str
    priority: str  # "high" | "medium" | "low"
    action: str
    reservation_ids: List[str] = Field(default_factory=list)


class StatusRecommendations(BaseModel):
    item_id: str
    current_status: ItemStatus
    recommendations: List[StatusRecommendation]
    active_reservations: int = 0
    approved_reservations: int = 0
    pending_reservations: int = 0


class StatusChange(BaseModel):
    """Outcome of one item status transition."""
    item: Item
    previous_status: ItemStatus
    new_status: ItemStatus
    changed: bool = True
    forced: bool = False
    reason: str
    cancelled_reservation_ids: List[str] = Field(default_factory=list)


class StatusHistory(BaseModel):
    item_id: str
    current_status: ItemStatus
    last_updated: datetime
    entries: List[AuditEntry]
