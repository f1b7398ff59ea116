# lending/core/returns.py
import logging
from datetime import datetime
from typing import Callable, List, Optional

from lending.core import penalties
from lending.core.audit import ENTITY_RETURN, record_audit
from lending.core.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from lending.core.item_status import ItemStatusManager
from lending.core.permissions import Capability, can, require
from lending.core.policy import LendingPolicy
from lending.core.reputation import ReputationLedger
from lending.core.reservations import ReservationLifecycle
from lending.core.utils import days_between_ceil, ensure_utc
from lending.db.store import LendingStore, UnitOfWork
from lending.models.audit import ReturnConfirmationChange, ReturnInitiationChange
from lending.models.enum import (
    AuditAction,
    ItemCondition,
    ItemStatus,
    ReservationStatus,
    ReturnStatus,
)
from lending.models.return_record import (
    ReturnActions,
    ReturnConfirmation,
    ReturnDetails,
    ReturnInitiation,
    ReturnMetrics,
    ReturnRecord,
    ReturnTimeline,
    StaffAssessment,
)
from lending.models.user import User

logger = logging.getLogger(__name__)


def degradation_reason(original: ItemCondition, current: ItemCondition) -> str:
    return f"Condition degraded from {original.value} to {current.value}"


class ReturnProcessor:
    """Return records: borrower (or staff) initiates, staff confirms exactly once."""

    def __init__(
        self,
        store: LendingStore,
        items: ItemStatusManager,
        reservations: ReservationLifecycle,
        ledger: ReputationLedger,
        policy: LendingPolicy,
        clock: Callable,
    ):
        self.store = store
        self.items = items
        self.reservations = reservations
        self.ledger = ledger
        self.policy = policy
        self.clock = clock

    @staticmethod
    def _check_owner_or_staff(actor: User, owner_id: str) -> None:
        if owner_id != actor.id and not can(actor.role, Capability.MANAGE_ANY_RETURN):
            raise PermissionDeniedError("Access denied", rule="Only the borrower or staff can do this")

    async def initiate_return(
        self,
        reservation_id: str,
        actor: User,
        return_date: datetime,
        condition_on_return: ItemCondition,
        damage_report: Optional[str] = None,
        damage_images: Optional[List[str]] = None,
        notes: Optional[str] = None,
    ) -> ReturnInitiation:
        return_date = ensure_utc(return_date)
        now = self.clock()
        if return_date > now:
            raise ValidationError("Return date cannot be in the future", rule="return_date <= now")

        async with self.store.transaction() as uow:
            reservation = await uow.get_reservation(reservation_id)
            if reservation is None:
                raise NotFoundError(f"Reservation {reservation_id} not found")
            self._check_owner_or_staff(actor, reservation.user_id)
            if reservation.status != ReservationStatus.ACTIVE:
                raise ConflictError(
                    f"Cannot return reservation with status: {reservation.status.value}",
                    rule="Only active reservations can be returned",
                    suggestion="Confirm pickup before returning the item",
                )
            existing = await uow.get_return_for_reservation(reservation.id)
            if existing is not None:
                raise ConflictError(
                    "Return already initiated for this reservation",
                    rule="At most one return per reservation",
                    conflicts=[{"id": existing.id, "status": existing.status.value}],
                )
            item = await uow.get_item(reservation.item_id)
            if item is None:
                raise NotFoundError(f"Item {reservation.item_id} not found")

            is_overdue = return_date > reservation.end_date
            days_overdue = days_between_ceil(reservation.end_date, return_date) if is_overdue else 0
            degraded = penalties.is_degraded(item.condition, condition_on_return)
            # lateness is penalized by the overdue scan, not here
            penalty = penalties.condition_penalty(item.condition, condition_on_return, self.policy)

            record = ReturnRecord(
                reservation_id=reservation.id,
                item_id=item.id,
                user_id=reservation.user_id,
                return_date=return_date,
                condition_on_return=condition_on_return,
                penalty_applied=penalty > 0,
                penalty_amount=penalty if penalty > 0 else None,
                penalty_reason=degradation_reason(item.condition, condition_on_return) if penalty > 0 else None,
                damage_report=damage_report,
                damage_images=damage_images or [],
                notes=notes,
                created_at=now,
                updated_at=now,
            )
            await uow.save_return(record)
            await record_audit(
                uow, AuditAction.INITIATE_RETURN, ENTITY_RETURN, record.id, actor,
                ReturnInitiationChange(
                    reservation_id=reservation.id,
                    return_date=return_date,
                    condition_on_return=condition_on_return,
                    original_condition=item.condition,
                    is_overdue=is_overdue,
                    days_overdue=days_overdue,
                    condition_degraded=degraded,
                    penalty_amount=penalty,
                    penalty_reason=record.penalty_reason,
                    damage_reported=bool(damage_report),
                ),
                now,
            )
        logger.info(
            f"Return {record.id} initiated for reservation {reservation_id} by '{actor.username}' "
            f"(overdue: {days_overdue}d, degraded: {degraded})"
        )
        return ReturnInitiation(
            return_record=record,
            is_overdue=is_overdue,
            days_overdue=days_overdue,
            condition_degraded=degraded,
            penalty_amount=penalty,
        )

    async def confirm_return(
        self,
        return_id: str,
        approved: bool,
        actor: User,
        staff_assessment: Optional[StaffAssessment] = None,
        rejection_reason: Optional[str] = None,
        staff_notes: Optional[str] = None,
        bulk_operation: bool = False,
    ) -> ReturnConfirmation:
        require(actor, Capability.CONFIRM_RETURN)
        assessment = staff_assessment or StaffAssessment()

        async with self.store.transaction() as uow:
            record = await uow.get_return(return_id)
            if record is None:
                raise NotFoundError(f"Return {return_id} not found")
            if record.status != ReturnStatus.PENDING:
                raise ConflictError(
                    f"Return already processed with status: {record.status.value}",
                    rule="A return is confirmed exactly once",
                    conflicts=[{"id": record.id, "status": record.status.value}],
                )
            await uow.lock_item(record.item_id)
            item = await uow.get_item(record.item_id)
            if item is None:
                raise NotFoundError(f"Item {record.item_id} not found")
            reservation = await uow.get_reservation(record.reservation_id)
            if reservation is None:
                raise NotFoundError(f"Reservation {record.reservation_id} not found")

            now = self.clock()
            assessed = assessment.condition_on_return or record.condition_on_return
            damage_report = assessment.damage_report or record.damage_report

            # An auto-generated return pre-fills the overdue penalty the scan already
            # charged, so confirming it charges that amount again. Overdue and return
            # penalties are additive.
            final_penalty = record.penalty_amount or 0.0
            penalty_reason = record.penalty_reason
            condition_penalty = penalties.condition_penalty(item.condition, assessed, self.policy)
            if condition_penalty > final_penalty:
                final_penalty = condition_penalty
                penalty_reason = degradation_reason(item.condition, assessed)
            override = assessment.penalty_override
            if override is not None and override.amount is not None:
                final_penalty = override.amount
                penalty_reason = override.reason or penalty_reason or "Penalty set by staff"

            is_damaged = assessed == ItemCondition.DAMAGED or bool(damage_report)
            if is_damaged:
                final_status = ReturnStatus.DAMAGED
            else:
                final_status = ReturnStatus.APPROVED if approved else ReturnStatus.REJECTED

            record.status = final_status
            record.approved_by_id = actor.id
            record.approved_at = now
            record.penalty_applied = final_penalty > 0
            record.penalty_amount = final_penalty if final_penalty > 0 else None
            record.penalty_reason = penalty_reason if final_penalty > 0 else None
            record.condition_on_return = assessed
            record.damage_report = damage_report
            if assessment.damage_images is not None:
                record.damage_images = assessment.damage_images
            extra_notes = []
            if staff_notes:
                extra_notes.append(f"Staff Notes: {staff_notes}")
            if rejection_reason and not approved:
                extra_notes.append(f"Rejection Reason: {rejection_reason}")
            if extra_notes:
                record.notes = "\n\n".join([record.notes or ""] + extra_notes).strip()
            record.updated_at = now
            await uow.save_return(record)

            actions = ReturnActions(penalty_applied=final_penalty)
            if approved:
                await self.reservations.complete(uow, reservation, record.return_date)
                actions.reservation_completed = True
                await self._release_item(uow, item.id, assessed, is_damaged, actor)
                actions.item_status_updated = True
                if final_penalty > 0:
                    await self.ledger.apply(uow, record.user_id, -final_penalty, f"Return penalty: {penalty_reason}")
                    actions.trust_score_updated = True

            await record_audit(
                uow,
                AuditAction.APPROVE_RETURN if approved else AuditAction.REJECT_RETURN,
                ENTITY_RETURN, record.id, actor,
                ReturnConfirmationChange(
                    previous_status=ReturnStatus.PENDING,
                    new_status=final_status,
                    approved=approved,
                    penalty_applied=final_penalty,
                    staff_assessment=staff_assessment,
                    rejection_reason=rejection_reason,
                    staff_notes=staff_notes,
                    bulk_operation=bulk_operation,
                ),
                now,
            )

        logger.info(
            f"Return {return_id} {'approved' if approved else 'rejected'} by '{actor.username}' "
            f"-> {final_status.value}, penalty {final_penalty}"
        )
        return ReturnConfirmation(
            message="Return approved successfully" if approved else "Return rejected",
            return_record=record,
            actions=actions,
        )

    async def _release_item(
        self, uow: UnitOfWork, item_id: str, condition: ItemCondition, is_damaged: bool, actor: User
    ) -> None:
        """Put the returned item back into circulation (or into maintenance)."""
        item = await uow.get_item(item_id)
        item.condition = condition
        item.updated_at = self.clock()
        await uow.save_item(item)
        if item.status == ItemStatus.RETIRED:
            return  # retired while out on loan, stays retired

        target = ItemStatus.MAINTENANCE if is_damaged else ItemStatus.AVAILABLE
        if item.status != target:
            await self.items.transition(
                uow, item_id, target, actor,
                reason="Item returned damaged" if is_damaged else "Item returned",
                action=AuditAction.AUTO_UPDATE_STATUS,
                trigger="return",
                reservation_status=ReservationStatus.COMPLETED,
            )
        if target == ItemStatus.AVAILABLE:
            upcoming = await uow.find_reservations(item_id=item_id, statuses=(ReservationStatus.APPROVED,))
            if upcoming:
                await self.items.transition(
                    uow, item_id, ItemStatus.RESERVED, actor,
                    reason="Item reserved for an upcoming approved reservation",
                    action=AuditAction.AUTO_UPDATE_STATUS,
                    trigger="return",
                    reservation_status=ReservationStatus.COMPLETED,
                )

    async def return_details(self, return_id: str, actor: User) -> ReturnDetails:
        async with self.store.transaction() as uow:
            record = await uow.get_return(return_id)
            if record is None:
                raise NotFoundError(f"Return {return_id} not found")
            self._check_owner_or_staff(actor, record.user_id)
            reservation = await uow.get_reservation(record.reservation_id)
            if reservation is None:
                raise NotFoundError(f"Reservation {record.reservation_id} not found")
            audit = await uow.find_audit_entries(ENTITY_RETURN, record.id, actions=(AuditAction.INITIATE_RETURN,))

        is_overdue = record.return_date > reservation.end_date
        days_overdue = days_between_ceil(reservation.end_date, record.return_date) if is_overdue else 0
        borrow_duration = None
        if reservation.actual_start_date is not None:
            borrow_duration = days_between_ceil(reservation.actual_start_date, record.return_date)
        degraded = bool(audit) and audit[0].changes.condition_degraded
        return ReturnDetails(
            return_record=record,
            metrics=ReturnMetrics(
                is_overdue=is_overdue,
                days_overdue=days_overdue,
                borrow_duration=borrow_duration,
                condition_degraded=degraded,
                penalty_applied=record.penalty_applied,
                requires_approval=record.status == ReturnStatus.PENDING,
            ),
            timeline=ReturnTimeline(
                borrowed=reservation.actual_start_date,
                due_date=reservation.end_date,
                returned=record.return_date,
                processed=record.approved_at,
            ),
        )
