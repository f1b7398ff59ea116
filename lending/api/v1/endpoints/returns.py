# lending/api/v1/endpoints/returns.py
from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query, Request, status
from loguru import logger

from lending.core.engine import LendingEngine
from lending.core.rate_limiter import limiter
from lending.core.security import get_current_active_user
from lending.db.database import get_engine
from lending.models.bulk import BulkOperation, BulkResult, BulkReturnApprove, BulkReturnReject, BulkTarget
from lending.models.damage import DamageReport
from lending.models.enum import DamageReportStatus, DamageSeverity, DamageType, OverdueSeverity
from lending.models.overdue import (
    NotificationDispatch,
    NotificationSendRequest,
    OverdueListing,
    OverdueScanRequest,
    OverdueScanResult,
)
from lending.models.return_record import ConfirmReturn, ReturnRecord
from lending.models.user import User

router = APIRouter(tags=["Returns & Overdue"])


def _bulk_response(result: BulkResult) -> dict:
    return {
        "updated": result.succeeded,
        "total": result.attempted,
        "errors": result.errors,
        "updated_returns": [
            ReturnRecord.Response.model_validate(r).model_dump(mode="json") for r in result.successful_records
        ],
        "total_penalties": result.total_penalties,
    }


@router.post(
    "/",
    status_code=status.HTTP_201_CREATED,
    summary="Initiate the return of a borrowed item",
)
@limiter.limit("20/hour")
async def initiate_return(
    request: Request,
    payload: ReturnRecord.Create,
    current_user: User = Depends(get_current_active_user),
    engine: LendingEngine = Depends(get_engine),
):
    initiation = await engine.returns.initiate_return(
        payload.reservation_id,
        current_user,
        payload.return_date,
        payload.condition_on_return,
        damage_report=payload.damage_report,
        damage_images=payload.damage_images,
        notes=payload.notes,
    )
    return initiation.model_dump(mode="json", by_alias=True)


# --- Overdue routes come before /{return_id} so they are not shadowed ---

@router.get(
    "/overdue",
    response_model=OverdueListing,
    summary="Active loans past their due date (Staff/Admin)",
)
@limiter.limit("60/minute")
async def list_overdue(
    request: Request,
    severity: Optional[OverdueSeverity] = Query(None),
    user_id: Optional[str] = Query(None),
    item_id: Optional[str] = Query(None),
    current_user: User = Depends(get_current_active_user),
    engine: LendingEngine = Depends(get_engine),
):
    return await engine.overdue.list_overdue(current_user, severity=severity, user_id=user_id, item_id=item_id)


@router.post(
    "/overdue/process",
    response_model=OverdueScanResult,
    summary="Penalize overdue loans now (Staff/Admin)",
)
@limiter.limit("10/hour")
async def process_overdue(
    request: Request,
    payload: OverdueScanRequest,
    current_user: User = Depends(get_current_active_user),
    engine: LendingEngine = Depends(get_engine),
):
    logger.info(
        f"Manual overdue scan by '{current_user.username}' "
        f"(threshold {payload.days_overdue}d, multiplier {payload.penalty_multiplier})"
    )
    return await engine.overdue.scan(
        current_user,
        days_overdue_threshold=payload.days_overdue,
        auto_initiate_returns=payload.auto_initiate_returns,
        penalty_multiplier=payload.penalty_multiplier,
    )


@router.post(
    "/overdue/notify",
    response_model=NotificationDispatch,
    summary="Send late-return notices (Staff/Admin)",
)
@limiter.limit("30/hour")
async def notify_overdue(
    request: Request,
    payload: NotificationSendRequest,
    current_user: User = Depends(get_current_active_user),
    engine: LendingEngine = Depends(get_engine),
):
    return await engine.overdue.send_notifications(
        current_user, payload.reservation_ids, payload.notification_type, custom_message=payload.custom_message
    )


@router.post(
    "/bulk/approve",
    summary="Approve many pending returns (Staff/Admin)",
)
@limiter.limit("30/hour")
async def bulk_approve_returns(
    request: Request,
    payload: BulkReturnApprove,
    current_user: User = Depends(get_current_active_user),
    engine: LendingEngine = Depends(get_engine),
):
    result = await engine.bulk.apply_to_many(
        BulkTarget.RETURN, BulkOperation.APPROVE, payload.return_ids, current_user,
        params={"staff_notes": payload.staff_notes},
    )
    return _bulk_response(result)


@router.post(
    "/bulk/reject",
    summary="Reject many pending returns (Staff/Admin)",
)
@limiter.limit("30/hour")
async def bulk_reject_returns(
    request: Request,
    payload: BulkReturnReject,
    current_user: User = Depends(get_current_active_user),
    engine: LendingEngine = Depends(get_engine),
):
    result = await engine.bulk.apply_to_many(
        BulkTarget.RETURN, BulkOperation.REJECT, payload.return_ids, current_user,
        params={"rejection_reason": payload.rejection_reason, "staff_notes": payload.staff_notes},
    )
    return _bulk_response(result)


# --- Damage reports ---

@router.post(
    "/damage",
    response_model=DamageReport.Response,
    status_code=status.HTTP_201_CREATED,
    summary="Report damage found on a returned item",
)
@limiter.limit("20/hour")
async def report_damage(
    request: Request,
    payload: DamageReport.Create,
    current_user: User = Depends(get_current_active_user),
    engine: LendingEngine = Depends(get_engine),
):
    return await engine.damage.report_damage(
        payload.return_id,
        current_user,
        payload.damage_type,
        payload.severity,
        payload.description,
        damage_images=payload.damage_images,
        estimated_repair_cost=payload.estimated_repair_cost,
        is_repairable=payload.is_repairable,
        affects_usability=payload.affects_usability,
        witness_details=payload.witness_details,
        incident_date=payload.incident_date,
    )


@router.get(
    "/damage",
    response_model=List[DamageReport.Response],
    summary="List damage reports (borrowers see their own)",
)
@limiter.limit("60/minute")
async def list_damage_reports(
    request: Request,
    return_id: Optional[str] = Query(None),
    user_id: Optional[str] = Query(None),
    item_id: Optional[str] = Query(None),
    report_status: Optional[DamageReportStatus] = Query(None, alias="status"),
    severity: Optional[DamageSeverity] = Query(None),
    damage_type: Optional[DamageType] = Query(None),
    current_user: User = Depends(get_current_active_user),
    engine: LendingEngine = Depends(get_engine),
):
    return await engine.damage.list_reports(
        current_user, return_id=return_id, user_id=user_id, item_id=item_id,
        status=report_status, severity=severity, damage_type=damage_type,
    )


@router.get(
    "/damage/{report_id}",
    response_model=DamageReport.Response,
    summary="Get a damage report",
)
@limiter.limit("120/minute")
async def get_damage_report(
    request: Request,
    report_id: str = Path(..., description="Damage report id"),
    current_user: User = Depends(get_current_active_user),
    engine: LendingEngine = Depends(get_engine),
):
    return await engine.damage.get_report(report_id, current_user)


@router.put(
    "/damage/{report_id}",
    response_model=DamageReport.Response,
    summary="Review a damage report (Staff/Admin)",
)
@limiter.limit("60/minute")
async def review_damage_report(
    request: Request,
    payload: DamageReport.Update,
    report_id: str = Path(..., description="Damage report id"),
    current_user: User = Depends(get_current_active_user),
    engine: LendingEngine = Depends(get_engine),
):
    return await engine.damage.review(
        report_id,
        current_user,
        status=payload.status,
        admin_notes=payload.admin_notes,
        repair_cost=payload.repair_cost,
        penalty_amount=payload.penalty_amount,
        resolution_date=payload.resolution_date,
        resolution_notes=payload.resolution_notes,
    )


@router.get(
    "/{return_id}",
    summary="Return record with lateness and timeline metrics",
)
@limiter.limit("120/minute")
async def get_return(
    request: Request,
    return_id: str = Path(..., description="Return id"),
    current_user: User = Depends(get_current_active_user),
    engine: LendingEngine = Depends(get_engine),
):
    details = await engine.returns.return_details(return_id, current_user)
    return details.model_dump(mode="json", by_alias=True)


@router.put(
    "/{return_id}",
    summary="Approve or reject a pending return (Staff/Admin)",
)
@limiter.limit("60/minute")
async def confirm_return(
    request: Request,
    payload: ConfirmReturn,
    return_id: str = Path(..., description="Return id"),
    current_user: User = Depends(get_current_active_user),
    engine: LendingEngine = Depends(get_engine),
):
    confirmation = await engine.returns.confirm_return(
        return_id,
        payload.approved,
        current_user,
        staff_assessment=payload.staff_assessment,
        rejection_reason=payload.rejection_reason,
        staff_notes=payload.staff_notes,
    )
    return confirmation.model_dump(mode="json", by_alias=True)
