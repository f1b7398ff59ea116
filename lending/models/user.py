# lending/models/user.py
from typing import Optional
from datetime import datetime
from enum import Enum
from pydantic import BaseModel, Field, EmailStr, field_validator

from lending.core.utils import new_id, utcnow, ensure_utc

TRUST_SCORE_BASELINE = 100.0


class UserRole(str, Enum):
    SUPER_ADMIN = "SUPER_ADMIN"
    MANAGER = "MANAGER"
    STAFF = "STAFF"
    USER = "USER"


class User(BaseModel):
    id: str = Field(default_factory=new_id)
    username: str
    email: Optional[EmailStr] = None
    full_name: Optional[str] = None
    role: UserRole = Field(default=UserRole.USER)
    disabled: bool = Field(default=False)  # False = active
    # Cached projection of the reputation ledger, see core/reputation.py
    trust_score: float = TRUST_SCORE_BASELINE

    # Timestamps
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("created_at", "updated_at")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    # --- Pydantic Schemas ---
    class Response(BaseModel):
        id: str
        username: str
        email: Optional[EmailStr] = None
        full_name: Optional[str] = None
        role: UserRole
        disabled: bool
        trust_score: float
        created_at: datetime
        updated_at: datetime

        class Config:
            from_attributes = True
