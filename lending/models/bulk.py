# lending/models/bulk.py
from enum import Enum
from typing import List, Optional, Union
from pydantic import BaseModel, Field

from .reservation import Reservation
from .return_record import ReturnRecord


class BulkTarget(str, Enum):
    RESERVATION = "RESERVATION"
    RETURN = "RETURN"


class BulkOperation(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    CANCEL = "cancel"
    DELETE = "delete"
    PICKUP = "pickup"


class BulkOutcome(BaseModel):
    id: str
    success: bool
    status: Optional[str] = None
    error: Optional[str] = None
    penalty: float = 0
    record: Optional[Union[Reservation, ReturnRecord]] = None


class BulkResult(BaseModel):
    """Per-id outcome of a batch. A failed id never undoes a successful one."""
    target: BulkTarget
    operation: BulkOperation
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    outcomes: List[BulkOutcome] = Field(default_factory=list)
    total_penalties: float = 0

    @property
    def errors(self) -> List[str]:
        return [f"{o.id}: {o.error}" for o in self.outcomes if not o.success]

    @property
    def successful_records(self) -> list:
        return [o.record for o in self.outcomes if o.success and o.record is not None]


# --- Request schemas ---

class BulkReservationAction(BaseModel):
    action: BulkOperation
    reservation_ids: List[str] = Field(..., min_length=1)
    reason: Optional[str] = None


class BulkPickup(BaseModel):
    reservation_ids: List[str] = Field(..., min_length=1)
    notes: Optional[str] = None


class BulkReturnApprove(BaseModel):
    return_ids: List[str] = Field(..., min_length=1)
    staff_notes: Optional[str] = None


class BulkReturnReject(BaseModel):
    return_ids: List[str] = Field(..., min_length=1)
    rejection_reason: str = Field(..., min_length=1)
    staff_notes: Optional[str] = None
