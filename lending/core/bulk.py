# lending/core/bulk.py
import asyncio
import logging
from typing import Any, Dict, List, Optional

from lending.core.errors import LendingError, ValidationError
from lending.core.permissions import Capability, require
from lending.core.reservations import ReservationLifecycle
from lending.core.returns import ReturnProcessor
from lending.models.bulk import BulkOperation, BulkOutcome, BulkResult, BulkTarget
from lending.models.user import User

logger = logging.getLogger(__name__)

SUPPORTED_OPERATIONS = {
    BulkTarget.RESERVATION: (
        BulkOperation.APPROVE, BulkOperation.REJECT, BulkOperation.CANCEL, BulkOperation.DELETE, BulkOperation.PICKUP,
    ),
    BulkTarget.RETURN: (BulkOperation.APPROVE, BulkOperation.REJECT),
}

REQUIRED_CAPABILITY = {
    (BulkTarget.RESERVATION, BulkOperation.APPROVE): Capability.APPROVE_RESERVATION,
    (BulkTarget.RESERVATION, BulkOperation.REJECT): Capability.REJECT_RESERVATION,
    (BulkTarget.RESERVATION, BulkOperation.CANCEL): Capability.MANAGE_ANY_RESERVATION,
    (BulkTarget.RESERVATION, BulkOperation.DELETE): Capability.DELETE_RESERVATION,
    (BulkTarget.RESERVATION, BulkOperation.PICKUP): Capability.MANAGE_ANY_RESERVATION,
    (BulkTarget.RETURN, BulkOperation.APPROVE): Capability.CONFIRM_RETURN,
    (BulkTarget.RETURN, BulkOperation.REJECT): Capability.CONFIRM_RETURN,
}


class BulkOperationCoordinator:
    """Runs one single-item operation over many ids with per-id failure capture."""

    def __init__(self, reservations: ReservationLifecycle, returns: ReturnProcessor):
        self.reservations = reservations
        self.returns = returns

    async def apply_to_many(
        self,
        target,
        operation,
        ids: List[str],
        actor: User,
        params: Optional[Dict[str, Any]] = None,
    ) -> BulkResult:
        try:
            target = BulkTarget(target)
            operation = BulkOperation(operation)
        except ValueError:
            raise ValidationError(f"Unknown bulk operation {target}/{operation}", rule="Invalid action")
        if operation not in SUPPORTED_OPERATIONS[target]:
            raise ValidationError(
                f"Operation '{operation.value}' is not supported for {target.value.lower()}s",
                rule="Invalid action",
                suggestion="Supported: " + ", ".join(o.value for o in SUPPORTED_OPERATIONS[target]),
            )
        if not ids:
            raise ValidationError("No ids given", rule="Bulk operations need at least one id")
        require(actor, REQUIRED_CAPABILITY[(target, operation)])

        params = params or {}
        unique_ids = list(dict.fromkeys(ids))
        outcomes = await asyncio.gather(
            *(self._run_one(target, operation, record_id, actor, params) for record_id in unique_ids)
        )

        result = BulkResult(target=target, operation=operation, attempted=len(unique_ids), outcomes=list(outcomes))
        result.succeeded = sum(1 for o in outcomes if o.success)
        result.failed = result.attempted - result.succeeded
        result.total_penalties = sum(o.penalty for o in outcomes if o.success)
        logger.info(
            f"Bulk {operation.value} on {target.value.lower()}s by '{actor.username}': "
            f"{result.succeeded}/{result.attempted} succeeded"
        )
        return result

    async def _run_one(
        self, target: BulkTarget, operation: BulkOperation, record_id: str, actor: User, params: Dict[str, Any]
    ) -> BulkOutcome:
        try:
            if target == BulkTarget.RESERVATION:
                return await self._reservation_op(operation, record_id, actor, params)
            return await self._return_op(operation, record_id, actor, params)
        except LendingError as e:
            logger.warning(f"Bulk {operation.value} failed for {record_id}: {e.message}")
            return BulkOutcome(id=record_id, success=False, error=e.message)
        except Exception as e:
            logger.error(f"Unexpected error in bulk {operation.value} for {record_id}: {e}", exc_info=True)
            return BulkOutcome(id=record_id, success=False, error=f"Failed to {operation.value} {record_id}")

    async def _reservation_op(self, operation, reservation_id, actor, params) -> BulkOutcome:
        if operation == BulkOperation.APPROVE:
            reservation = await self.reservations.approve(reservation_id, actor)
        elif operation == BulkOperation.REJECT:
            reservation = await self.reservations.reject(
                reservation_id, actor, params.get("reason") or "Bulk rejection by admin"
            )
        elif operation == BulkOperation.CANCEL:
            outcome = await self.reservations.cancel(
                reservation_id, actor, params.get("reason") or "Bulk cancellation by admin"
            )
            return BulkOutcome(
                id=reservation_id, success=True, status=outcome.reservation.status.value,
                penalty=abs(outcome.trust_score_impact), record=outcome.reservation,
            )
        elif operation == BulkOperation.PICKUP:
            reservation = await self.reservations.confirm_pickup(
                reservation_id, actor, notes=params.get("notes"), bulk_operation=True
            )
        else:
            await self.reservations.delete(reservation_id, actor)
            return BulkOutcome(id=reservation_id, success=True, status="DELETED")
        return BulkOutcome(id=reservation_id, success=True, status=reservation.status.value, record=reservation)

    async def _return_op(self, operation, return_id, actor, params) -> BulkOutcome:
        approved = operation == BulkOperation.APPROVE
        confirmation = await self.returns.confirm_return(
            return_id,
            approved,
            actor,
            rejection_reason=None if approved else params.get("rejection_reason"),
            staff_notes=params.get("staff_notes"),
            bulk_operation=True,
        )
        penalty = confirmation.actions.penalty_applied if confirmation.actions.trust_score_updated else 0
        return BulkOutcome(
            id=return_id,
            success=True,
            status=confirmation.return_record.status.value,
            penalty=penalty,
            record=confirmation.return_record,
        )
