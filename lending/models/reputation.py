# lending/models/reputation.py
from datetime import datetime
from pydantic import BaseModel, Field, field_validator

from lending.core.utils import new_id, utcnow, ensure_utc


class ReputationEntry(BaseModel):
    """Append-only trust score delta. Never updated or deleted."""
    id: str = Field(default_factory=new_id)
    user_id: str
    change: float
    reason: str
    previous_score: float
    new_score: float
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("created_at")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    class Response(BaseModel):
        id: str
        user_id: str
        change: float
        reason: str
        previous_score: float
        new_score: float
        created_at: datetime

        class Config:
            from_attributes = True
