# lending/api/v1/endpoints/reservations.py
from typing import List, Optional

from fastapi import APIRouter, Body, Depends, Path, Request, status
from loguru import logger

from lending.core.engine import LendingEngine
from lending.core.rate_limiter import limiter
from lending.core.security import get_current_active_user
from lending.db.database import get_engine
from lending.models.audit import AuditEntry
from lending.models.bulk import BulkOperation, BulkPickup, BulkReservationAction, BulkTarget
from lending.models.reservation import (
    CancellationOutcome,
    ModificationOutcome,
    Reservation,
    ReservationPermissions,
)
from lending.models.user import User

router = APIRouter(tags=["Reservations"])


@router.post(
    "/",
    response_model=Reservation.Response,
    status_code=status.HTTP_201_CREATED,
    summary="Request a reservation",
)
@limiter.limit("20/hour")
async def create_reservation(
    request: Request,
    payload: Reservation.Create,
    current_user: User = Depends(get_current_active_user),
    engine: LendingEngine = Depends(get_engine),
):
    return await engine.reservations.request_reservation(
        current_user, payload.item_id, payload.start_date, payload.end_date, purpose=payload.purpose
    )


@router.post(
    "/bulk",
    summary="Approve, reject, cancel, delete or pick up many reservations (Staff/Admin)",
)
@limiter.limit("30/hour")
async def bulk_reservation_action(
    request: Request,
    payload: BulkReservationAction,
    current_user: User = Depends(get_current_active_user),
    engine: LendingEngine = Depends(get_engine),
):
    result = await engine.bulk.apply_to_many(
        BulkTarget.RESERVATION,
        payload.action,
        payload.reservation_ids,
        current_user,
        params={"reason": payload.reason},
    )
    logger.info(
        f"Bulk {payload.action.value} by '{current_user.username}': "
        f"{result.succeeded}/{result.attempted} reservations updated"
    )
    return {
        "updated": result.succeeded,
        "total": result.attempted,
        "errors": result.errors,
        "updated_reservations": [
            Reservation.Response.model_validate(r).model_dump(mode="json") for r in result.successful_records
        ],
        "total_penalties": result.total_penalties,
    }


@router.post(
    "/pickup/bulk",
    summary="Confirm pickup of many approved reservations (Staff/Admin)",
)
@limiter.limit("30/hour")
async def bulk_confirm_pickup(
    request: Request,
    payload: BulkPickup,
    current_user: User = Depends(get_current_active_user),
    engine: LendingEngine = Depends(get_engine),
):
    result = await engine.bulk.apply_to_many(
        BulkTarget.RESERVATION,
        BulkOperation.PICKUP,
        payload.reservation_ids,
        current_user,
        params={"notes": payload.notes},
    )
    return {
        "message": f"Processed {result.attempted} pickup confirmations",
        "results": [
            {"reservation_id": o.id, "success": o.success, "error": o.error} for o in result.outcomes
        ],
        "summary": {"total": result.attempted, "successful": result.succeeded, "failed": result.failed},
    }


@router.get(
    "/{reservation_id}",
    response_model=Reservation.Response,
    summary="Get a reservation",
)
@limiter.limit("120/minute")
async def get_reservation(
    request: Request,
    reservation_id: str = Path(..., description="Reservation id"),
    current_user: User = Depends(get_current_active_user),
    engine: LendingEngine = Depends(get_engine),
):
    return await engine.reservations.get(reservation_id, current_user)


@router.get(
    "/{reservation_id}/history",
    response_model=List[AuditEntry],
    summary="Audit trail of a reservation",
)
@limiter.limit("120/minute")
async def get_reservation_history(
    request: Request,
    reservation_id: str = Path(..., description="Reservation id"),
    current_user: User = Depends(get_current_active_user),
    engine: LendingEngine = Depends(get_engine),
):
    return await engine.reservations.history(reservation_id, current_user)


@router.get(
    "/{reservation_id}/permissions",
    response_model=ReservationPermissions,
    summary="What the current user may still do with a reservation",
)
@limiter.limit("120/minute")
async def get_reservation_permissions(
    request: Request,
    reservation_id: str = Path(..., description="Reservation id"),
    current_user: User = Depends(get_current_active_user),
    engine: LendingEngine = Depends(get_engine),
):
    return await engine.reservations.permissions(reservation_id, current_user)


@router.patch(
    "/{reservation_id}/approve",
    response_model=Reservation.Response,
    summary="Approve a pending reservation (Staff/Admin)",
)
@limiter.limit("60/minute")
async def approve_reservation(
    request: Request,
    reservation_id: str = Path(..., description="Reservation id"),
    current_user: User = Depends(get_current_active_user),
    engine: LendingEngine = Depends(get_engine),
):
    return await engine.reservations.approve(reservation_id, current_user)


@router.patch(
    "/{reservation_id}/reject",
    response_model=Reservation.Response,
    summary="Reject a reservation (Staff/Admin)",
)
@limiter.limit("60/minute")
async def reject_reservation(
    request: Request,
    reservation_id: str = Path(..., description="Reservation id"),
    payload: Optional[Reservation.Reject] = Body(None),
    current_user: User = Depends(get_current_active_user),
    engine: LendingEngine = Depends(get_engine),
):
    reason = payload.reason if payload else None
    return await engine.reservations.reject(reservation_id, current_user, reason)


@router.patch(
    "/{reservation_id}/cancel",
    response_model=CancellationOutcome,
    summary="Cancel a reservation",
)
@limiter.limit("30/hour")
async def cancel_reservation(
    request: Request,
    payload: Reservation.Cancel,
    reservation_id: str = Path(..., description="Reservation id"),
    current_user: User = Depends(get_current_active_user),
    engine: LendingEngine = Depends(get_engine),
):
    return await engine.reservations.cancel(reservation_id, current_user, payload.reason, notes=payload.notes)


@router.patch(
    "/{reservation_id}/modify",
    response_model=ModificationOutcome,
    summary="Change the dates of a reservation",
)
@limiter.limit("30/hour")
async def modify_reservation(
    request: Request,
    payload: Reservation.Modify,
    reservation_id: str = Path(..., description="Reservation id"),
    current_user: User = Depends(get_current_active_user),
    engine: LendingEngine = Depends(get_engine),
):
    return await engine.reservations.modify(
        reservation_id, current_user, payload.start_date, payload.end_date, purpose=payload.purpose
    )


@router.post(
    "/{reservation_id}/pickup",
    response_model=Reservation.Response,
    summary="Confirm the item was picked up",
)
@limiter.limit("60/minute")
async def confirm_pickup(
    request: Request,
    reservation_id: str = Path(..., description="Reservation id"),
    current_user: User = Depends(get_current_active_user),
    engine: LendingEngine = Depends(get_engine),
):
    return await engine.reservations.confirm_pickup(reservation_id, current_user)


@router.delete(
    "/{reservation_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a finished reservation (Admin)",
)
@limiter.limit("10/hour")
async def delete_reservation(
    request: Request,
    reservation_id: str = Path(..., description="Reservation id"),
    current_user: User = Depends(get_current_active_user),
    engine: LendingEngine = Depends(get_engine),
):
    await engine.reservations.delete(reservation_id, current_user)
