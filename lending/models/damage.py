# lending/models/damage.py
from typing import List, Optional
from datetime import datetime
from pydantic import BaseModel, Field, field_validator

from lending.core.utils import new_id, utcnow, ensure_utc
from .enum import DamageReportStatus, DamageSeverity, DamageType


class DamageReport(BaseModel):
    """Damage found on a returned item, reviewed by staff before any penalty."""
    id: str = Field(default_factory=new_id)
    return_id: str
    reservation_id: str
    item_id: str
    user_id: str  # the borrower
    reported_by_id: str

    damage_type: DamageType
    severity: DamageSeverity
    description: str
    damage_images: List[str] = Field(default_factory=list)
    estimated_repair_cost: Optional[float] = None
    is_repairable: bool = True
    affects_usability: bool = False
    witness_details: Optional[str] = None
    incident_date: Optional[datetime] = None

    status: DamageReportStatus = DamageReportStatus.REPORTED
    admin_notes: Optional[str] = None
    repair_cost: Optional[float] = None
    penalty_amount: Optional[float] = None
    penalty_applied: bool = False
    approved_by_id: Optional[str] = None
    approved_at: Optional[datetime] = None
    resolution_date: Optional[datetime] = None
    resolution_notes: Optional[str] = None

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("incident_date", "approved_at", "resolution_date", "created_at", "updated_at")
    @classmethod
    def _as_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value)

    # --- Pydantic Schemas ---
    class Create(BaseModel):
        return_id: str = Field(..., min_length=1)
        damage_type: DamageType
        severity: DamageSeverity
        description: str = Field(..., min_length=10)
        damage_images: List[str] = Field(default_factory=list)
        estimated_repair_cost: Optional[float] = Field(None, ge=0)
        is_repairable: bool = True
        affects_usability: bool = False
        witness_details: Optional[str] = None
        incident_date: Optional[datetime] = None

    class Update(BaseModel):
        status: Optional[DamageReportStatus] = None
        admin_notes: Optional[str] = None
        repair_cost: Optional[float] = Field(None, ge=0)
        penalty_amount: Optional[float] = Field(None, ge=0, le=100)
        resolution_date: Optional[datetime] = None
        resolution_notes: Optional[str] = None

    class Response(BaseModel):
        id: str
        return_id: str
        reservation_id: str
        item_id: str
        user_id: str
        reported_by_id: str
        damage_type: DamageType
        severity: DamageSeverity
        description: str
        damage_images: List[str] = []
        estimated_repair_cost: Optional[float] = None
        is_repairable: bool
        affects_usability: bool
        witness_details: Optional[str] = None
        incident_date: Optional[datetime] = None
        status: DamageReportStatus
        admin_notes: Optional[str] = None
        repair_cost: Optional[float] = None
        penalty_amount: Optional[float] = None
        penalty_applied: bool
        approved_by_id: Optional[str] = None
        approved_at: Optional[datetime] = None
        resolution_date: Optional[datetime] = None
        resolution_notes: Optional[str] = None
        created_at: datetime
        updated_at: datetime

        class Config:
            from_attributes = True
