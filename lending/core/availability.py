# lending/core/availability.py
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from lending.db.store import UnitOfWork
from lending.models.enum import BLOCKING_RESERVATION_STATUSES
from lending.models.reservation import Reservation

logger = logging.getLogger(__name__)


async def find_overlapping_reservations(
    uow: UnitOfWork,
    item_id: str,
    start_date: datetime,
    end_date: datetime,
    exclude_reservation_id: Optional[str] = None,
) -> List[Reservation]:
    """
    Reservations on the item that hold it (APPROVED or ACTIVE) at any point of
    the closed range [start_date, end_date]. Touching endpoints count.
    """
    holding = await uow.find_reservations(item_id=item_id, statuses=BLOCKING_RESERVATION_STATUSES)
    conflicts = [
        r for r in holding
        if r.id != exclude_reservation_id and r.overlaps(start_date, end_date)
    ]
    logger.debug(
        f"Availability check for item {item_id} [{start_date} - {end_date}]: "
        f"{len(holding)} holding reservations, {len(conflicts)} overlapping"
    )
    return conflicts


def describe_conflicts(reservations: List[Reservation]) -> List[Dict[str, Any]]:
    return [
        {
            "id": r.id,
            "user_id": r.user_id,
            "status": r.status.value,
            "start_date": r.start_date.isoformat(),
            "end_date": r.end_date.isoformat(),
        }
        for r in reservations
    ]
