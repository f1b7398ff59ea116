# lending/core/reservations.py
import logging
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from lending.core import penalties
from lending.core.audit import ENTITY_RESERVATION, record_audit
from lending.core.availability import describe_conflicts, find_overlapping_reservations
from lending.core.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from lending.core.item_status import ItemStatusManager
from lending.core.permissions import Capability, can, is_staff, require
from lending.core.policy import LendingPolicy
from lending.core.reputation import ReputationLedger
from lending.core.utils import ensure_utc
from lending.db.store import LendingStore, UnitOfWork
from lending.models.audit import AuditEntry, CancellationChange, ReservationChange, ReservationDeletion
from lending.models.enum import (
    AuditAction,
    ItemStatus,
    ReservationStatus,
    TERMINAL_RESERVATION_STATUSES,
)
from lending.models.reservation import (
    CancellationOutcome,
    ModificationOutcome,
    Reservation,
    ReservationPermissions,
)
from lending.models.user import User

logger = logging.getLogger(__name__)

CHANGEABLE_STATUSES = (ReservationStatus.PENDING, ReservationStatus.APPROVED)
UNRESERVABLE_ITEM_STATUSES = (ItemStatus.RETIRED, ItemStatus.MAINTENANCE)
# Date shifts larger than this on an approved reservation need a new approval.
SIGNIFICANT_CHANGE = timedelta(hours=24)


class ReservationLifecycle:
    """PENDING -> APPROVED -> ACTIVE -> COMPLETED, with REJECTED / CANCELLED exits."""

    def __init__(
        self,
        store: LendingStore,
        items: ItemStatusManager,
        ledger: ReputationLedger,
        policy: LendingPolicy,
        clock: Callable,
    ):
        self.store = store
        self.items = items
        self.ledger = ledger
        self.policy = policy
        self.clock = clock

    # --- helpers ---

    async def _load(self, uow: UnitOfWork, reservation_id: str) -> Reservation:
        reservation = await uow.get_reservation(reservation_id)
        if reservation is None:
            raise NotFoundError(f"Reservation {reservation_id} not found")
        return reservation

    @staticmethod
    def _check_owner_or(actor: User, reservation: Reservation, capability: Capability) -> None:
        if reservation.user_id != actor.id and not can(actor.role, capability):
            raise PermissionDeniedError(
                "Access denied",
                rule="Only the reservation owner or staff can do this",
            )

    @staticmethod
    def _require_status(reservation: Reservation, allowed, verb: str) -> None:
        if reservation.status not in allowed:
            raise ConflictError(
                f"Cannot {verb} reservation with status: {reservation.status.value}",
                rule=f"Only {'/'.join(s.value for s in allowed)} reservations allow this",
            )

    async def _check_overlap(
        self, uow: UnitOfWork, item_id: str, start_date: datetime, end_date: datetime,
        exclude_id: Optional[str] = None,
    ) -> None:
        conflicts = await find_overlapping_reservations(uow, item_id, start_date, end_date, exclude_id)
        if conflicts:
            raise ConflictError(
                "Item is not available for the selected dates",
                rule="No overlapping approved or active reservations on one item",
                suggestion="Choose dates outside the conflicting reservations",
                conflicts=describe_conflicts(conflicts),
            )

    async def _reservable_item(self, uow: UnitOfWork, item_id: str):
        item = await uow.get_item(item_id)
        if item is None:
            raise NotFoundError(f"Item {item_id} not found")
        if item.status in UNRESERVABLE_ITEM_STATUSES:
            raise ConflictError(
                f"Item is not available for reservation (status: {item.status.value})",
                rule="Retired or maintenance items cannot be reserved",
            )
        return item

    # --- operations ---

    async def request_reservation(
        self,
        actor: User,
        item_id: str,
        start_date: datetime,
        end_date: datetime,
        purpose: Optional[str] = None,
    ) -> Reservation:
        start_date, end_date = ensure_utc(start_date), ensure_utc(end_date)
        if end_date <= start_date:
            raise ValidationError("End date must be after start date", rule="end_date > start_date")
        now = self.clock()
        if start_date < now:
            raise ValidationError("Start date cannot be in the past", rule="start_date >= now")

        async with self.store.transaction() as uow:
            await uow.lock_item(item_id)
            await self._reservable_item(uow, item_id)
            await self._check_overlap(uow, item_id, start_date, end_date)
            reservation = Reservation(
                item_id=item_id,
                user_id=actor.id,
                start_date=start_date,
                end_date=end_date,
                purpose=purpose,
                created_at=now,
                updated_at=now,
            )
            await uow.save_reservation(reservation)
            await record_audit(
                uow, AuditAction.CREATE_RESERVATION, ENTITY_RESERVATION, reservation.id, actor,
                ReservationChange(to_status=reservation.status, start_date=start_date, end_date=end_date),
                now,
            )
        logger.info(f"User '{actor.username}' requested reservation {reservation.id} for item {item_id}")
        return reservation

    async def approve(self, reservation_id: str, actor: User) -> Reservation:
        require(actor, Capability.APPROVE_RESERVATION)
        async with self.store.transaction() as uow:
            reservation = await self._load(uow, reservation_id)
            # overlap check and write happen under the item lock
            await uow.lock_item(reservation.item_id)
            self._require_status(reservation, (ReservationStatus.PENDING,), "approve")
            await self._reservable_item(uow, reservation.item_id)
            await self._check_overlap(
                uow, reservation.item_id, reservation.start_date, reservation.end_date, reservation.id
            )
            now = self.clock()
            reservation.status = ReservationStatus.APPROVED
            reservation.approved_by_id = actor.id
            reservation.approved_at = now
            reservation.updated_at = now
            await uow.save_reservation(reservation)
            await record_audit(
                uow, AuditAction.APPROVE_RESERVATION, ENTITY_RESERVATION, reservation.id, actor,
                ReservationChange(from_status=ReservationStatus.PENDING, to_status=ReservationStatus.APPROVED),
                now,
            )
            await self.items.sync_with_reservation(uow, reservation.item_id, reservation.status, actor)
        logger.info(f"Reservation {reservation_id} approved by '{actor.username}'")
        return reservation

    async def reject(self, reservation_id: str, actor: User, reason: Optional[str] = None) -> Reservation:
        require(actor, Capability.REJECT_RESERVATION)
        async with self.store.transaction() as uow:
            reservation = await self._load(uow, reservation_id)
            self._require_status(reservation, CHANGEABLE_STATUSES, "reject")
            now = self.clock()
            previous = reservation.status
            reservation.status = ReservationStatus.REJECTED
            reservation.rejection_reason = reason
            reservation.updated_at = now
            await uow.save_reservation(reservation)
            await record_audit(
                uow, AuditAction.REJECT_RESERVATION, ENTITY_RESERVATION, reservation.id, actor,
                ReservationChange(from_status=previous, to_status=reservation.status, reason=reason),
                now,
            )
            await self.items.sync_with_reservation(uow, reservation.item_id, reservation.status, actor)
        logger.info(f"Reservation {reservation_id} rejected by '{actor.username}'")
        return reservation

    async def confirm_pickup(
        self, reservation_id: str, actor: User, notes: Optional[str] = None, bulk_operation: bool = False
    ) -> Reservation:
        async with self.store.transaction() as uow:
            reservation = await self._load(uow, reservation_id)
            self._check_owner_or(actor, reservation, Capability.MANAGE_ANY_RESERVATION)
            await uow.lock_item(reservation.item_id)
            if reservation.pickup_confirmed:
                raise ConflictError("Item has already been picked up", rule="Pickup is confirmed once")
            if reservation.status != ReservationStatus.APPROVED:
                raise ConflictError(
                    f"Cannot confirm pickup for reservation with status: {reservation.status.value}",
                    rule="Only approved reservations can be picked up",
                )
            still_out = [
                r for r in await uow.find_reservations(
                    item_id=reservation.item_id, statuses=(ReservationStatus.ACTIVE,)
                )
                if r.id != reservation.id
            ]
            if still_out:
                raise ConflictError(
                    "Item is still out on another reservation",
                    rule="An item has at most one active reservation",
                    suggestion="Process the outstanding return first",
                    conflicts=describe_conflicts(still_out),
                )
            now = self.clock()
            reservation.status = ReservationStatus.ACTIVE
            reservation.actual_start_date = now
            reservation.pickup_confirmed = True
            reservation.pickup_confirmed_at = now
            reservation.updated_at = now
            if notes:
                reservation.notes = "\n\n".join([reservation.notes or "", f"Pickup Notes: {notes}"]).strip()
            await uow.save_reservation(reservation)
            await record_audit(
                uow, AuditAction.BULK_CONFIRM_PICKUP if bulk_operation else AuditAction.CONFIRM_PICKUP,
                ENTITY_RESERVATION, reservation.id, actor,
                ReservationChange(
                    from_status=ReservationStatus.APPROVED,
                    to_status=ReservationStatus.ACTIVE,
                    notes=notes,
                    bulk_operation=bulk_operation,
                ),
                now,
            )
            await self.items.sync_with_reservation(uow, reservation.item_id, reservation.status, actor)
        logger.info(f"Pickup confirmed for reservation {reservation_id} by '{actor.username}'")
        return reservation

    async def cancel(
        self,
        reservation_id: str,
        actor: User,
        reason: str,
        notes: Optional[str] = None,
    ) -> CancellationOutcome:
        if not reason or not reason.strip():
            raise ValidationError("Cancellation reason is required", rule="reason must not be empty")
        async with self.store.transaction() as uow:
            reservation = await self._load(uow, reservation_id)
            self._check_owner_or(actor, reservation, Capability.MANAGE_ANY_RESERVATION)
            self._require_status(reservation, CHANGEABLE_STATUSES, "cancel")

            now = self.clock()
            hours_until_start = reservation.hours_until_start(now)
            staff_action = is_staff(actor)
            impact = 0.0 if staff_action else penalties.cancellation_penalty(hours_until_start, self.policy)
            penalty_reason = None
            if impact < 0 and hours_until_start > 0:
                penalty_reason = "Late cancellation (less than 24 hours notice)"
            elif impact < 0:
                penalty_reason = "Very late cancellation (after scheduled start time)"

            previous = reservation.status
            reservation.status = ReservationStatus.CANCELLED
            reservation.cancellation_reason = reason
            if notes:
                reservation.notes = notes
            reservation.updated_at = now
            await uow.save_reservation(reservation)
            if impact < 0:
                await self.ledger.apply(uow, reservation.user_id, impact, penalty_reason)
            await record_audit(
                uow, AuditAction.CANCEL_RESERVATION, ENTITY_RESERVATION, reservation.id, actor,
                CancellationChange(
                    reason=reason,
                    notes=notes,
                    original_status=previous,
                    hours_before_start=hours_until_start,
                    trust_score_impact=impact,
                    penalty_reason=penalty_reason,
                    cancelled_by="staff" if staff_action else "owner",
                ),
                now,
            )
            await self.items.sync_with_reservation(uow, reservation.item_id, reservation.status, actor)
        logger.info(
            f"Reservation {reservation_id} cancelled by '{actor.username}' "
            f"({hours_until_start:.1f}h before start, impact {impact})"
        )
        return CancellationOutcome(reservation=reservation, trust_score_impact=impact, penalty_reason=penalty_reason)

    async def complete(self, uow: UnitOfWork, reservation: Reservation, ended_at: datetime) -> Reservation:
        """ACTIVE -> COMPLETED. Only called by the return processor, inside its transaction."""
        if reservation.status != ReservationStatus.ACTIVE:
            raise ConflictError(
                f"Cannot complete reservation with status: {reservation.status.value}",
                rule="Only active reservations can be completed",
            )
        reservation.status = ReservationStatus.COMPLETED
        reservation.actual_end_date = ensure_utc(ended_at)
        reservation.updated_at = self.clock()
        await uow.save_reservation(reservation)
        return reservation

    def _can_modify(self, reservation: Reservation, actor: User, hours_until_start: float) -> bool:
        if reservation.status not in CHANGEABLE_STATUSES:
            return False
        if can(actor.role, Capability.MANAGE_ANY_RESERVATION):
            return True
        return reservation.user_id == actor.id and hours_until_start > self.policy.owner_modify_min_hours

    async def modify(
        self,
        reservation_id: str,
        actor: User,
        start_date: datetime,
        end_date: datetime,
        purpose: Optional[str] = None,
    ) -> ModificationOutcome:
        start_date, end_date = ensure_utc(start_date), ensure_utc(end_date)
        if end_date <= start_date:
            raise ValidationError("End date must be after start date", rule="end_date > start_date")
        now = self.clock()
        if start_date < now:
            raise ValidationError("Start date cannot be in the past", rule="start_date >= now")

        async with self.store.transaction() as uow:
            reservation = await self._load(uow, reservation_id)
            self._check_owner_or(actor, reservation, Capability.MANAGE_ANY_RESERVATION)
            self._require_status(reservation, CHANGEABLE_STATUSES, "modify")
            hours_until_start = reservation.hours_until_start(now)
            if not self._can_modify(reservation, actor, hours_until_start):
                raise PermissionDeniedError(
                    "Reservation can no longer be modified",
                    rule=f"Owners may modify only more than {self.policy.owner_modify_min_hours:g} hours before start",
                    suggestion="Cancel the reservation or ask staff for help",
                )
            await uow.lock_item(reservation.item_id)
            await self._check_overlap(uow, reservation.item_id, start_date, end_date, reservation.id)

            significant = (
                abs(start_date - reservation.start_date) > SIGNIFICANT_CHANGE
                or abs(end_date - reservation.end_date) > SIGNIFICANT_CHANGE
            )
            previous_status = reservation.status
            previous_start, previous_end = reservation.start_date, reservation.end_date
            requires_reapproval = (
                previous_status == ReservationStatus.APPROVED and significant and not is_staff(actor)
            )
            reservation.start_date = start_date
            reservation.end_date = end_date
            if purpose is not None:
                reservation.purpose = purpose
            if requires_reapproval:
                reservation.status = ReservationStatus.PENDING
                reservation.approved_by_id = None
                reservation.approved_at = None
            reservation.updated_at = now
            await uow.save_reservation(reservation)
            await record_audit(
                uow, AuditAction.MODIFY_RESERVATION, ENTITY_RESERVATION, reservation.id, actor,
                ReservationChange(
                    from_status=previous_status,
                    to_status=reservation.status,
                    start_date=start_date,
                    end_date=end_date,
                    previous_start_date=previous_start,
                    previous_end_date=previous_end,
                ),
                now,
            )
            if requires_reapproval:
                await self.items.sync_with_reservation(uow, reservation.item_id, reservation.status, actor)
        logger.info(f"Reservation {reservation_id} modified by '{actor.username}' (re-approval: {requires_reapproval})")
        return ModificationOutcome(reservation=reservation, requires_reapproval=requires_reapproval)

    async def permissions(self, reservation_id: str, actor: User) -> ReservationPermissions:
        async with self.store.transaction() as uow:
            reservation = await self._load(uow, reservation_id)
        self._check_owner_or(actor, reservation, Capability.VIEW_ANY_RESERVATION)

        now = self.clock()
        hours_until_start = reservation.hours_until_start(now)
        is_owner = reservation.user_id == actor.id
        staff = can(actor.role, Capability.MANAGE_ANY_RESERVATION)
        can_modify = self._can_modify(reservation, actor, hours_until_start)
        can_cancel = reservation.status in CHANGEABLE_STATUSES and (is_owner or staff)

        impact = 0.0
        cancellation_warning = None
        if can_cancel and is_owner and not staff:
            impact = penalties.cancellation_penalty(hours_until_start, self.policy)
            if impact < 0 and hours_until_start > 0:
                cancellation_warning = f"Late cancellation penalty: {impact:g} trust score points"
            elif impact < 0:
                cancellation_warning = f"Very late cancellation penalty: {impact:g} trust score points"

        modification_warning = None
        if can_modify and reservation.status == ReservationStatus.APPROVED and is_owner and not staff:
            modification_warning = "Significant date changes may require re-approval"

        return ReservationPermissions(
            reservation_id=reservation.id,
            status=reservation.status,
            can_modify=can_modify,
            can_cancel=can_cancel,
            is_owner=is_owner,
            is_staff=staff,
            hours_until_start=round(hours_until_start, 1),
            is_upcoming=hours_until_start > 0,
            cancellation_trust_score_impact=impact,
            cancellation_warning=cancellation_warning,
            modification_warning=modification_warning,
            modify_min_hours=self.policy.owner_modify_min_hours if is_owner and not staff else 0,
            cancel_min_hours=0,
        )

    async def delete(self, reservation_id: str, actor: User) -> None:
        require(actor, Capability.DELETE_RESERVATION)
        async with self.store.transaction() as uow:
            reservation = await self._load(uow, reservation_id)
            if reservation.status not in TERMINAL_RESERVATION_STATUSES:
                raise ConflictError(
                    f"Cannot delete reservation with status: {reservation.status.value}",
                    rule="Only cancelled, rejected or completed reservations can be deleted",
                    suggestion="Cancel or reject the reservation first",
                )
            await record_audit(
                uow, AuditAction.DELETE_RESERVATION, ENTITY_RESERVATION, reservation.id, actor,
                ReservationDeletion(status_at_deletion=reservation.status),
                self.clock(),
            )
            await uow.delete_reservation(reservation.id)
        logger.info(f"Reservation {reservation_id} deleted by '{actor.username}'")

    async def get(self, reservation_id: str, actor: User) -> Reservation:
        async with self.store.transaction() as uow:
            reservation = await self._load(uow, reservation_id)
        self._check_owner_or(actor, reservation, Capability.VIEW_ANY_RESERVATION)
        return reservation

    async def history(self, reservation_id: str, actor: User) -> List[AuditEntry]:
        """Audit trail of the reservation, oldest first."""
        async with self.store.transaction() as uow:
            reservation = await self._load(uow, reservation_id)
            self._check_owner_or(actor, reservation, Capability.VIEW_ANY_RESERVATION)
            return await uow.find_audit_entries(ENTITY_RESERVATION, reservation_id)
