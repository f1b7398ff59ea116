# lending/core/item_status.py
import logging
from typing import Callable, List, Optional

from lending.core.audit import ENTITY_ITEM, record_audit
from lending.core.availability import describe_conflicts
from lending.core.errors import ConflictError, NotFoundError, ValidationError
from lending.core.permissions import Capability, require
from lending.db.store import LendingStore, UnitOfWork
from lending.models.audit import ItemStatusChange
from lending.models.enum import (
    AuditAction,
    ItemStatus,
    OPEN_RESERVATION_STATUSES,
    ReservationStatus,
)
from lending.models.item import (
    Item,
    StatusChange,
    StatusHistory,
    StatusRecommendation,
    StatusRecommendations,
)
from lending.models.user import User

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    ItemStatus.AVAILABLE: {ItemStatus.RESERVED, ItemStatus.BORROWED, ItemStatus.MAINTENANCE, ItemStatus.RETIRED},
    ItemStatus.RESERVED: {ItemStatus.AVAILABLE, ItemStatus.BORROWED, ItemStatus.MAINTENANCE, ItemStatus.RETIRED},
    ItemStatus.BORROWED: {ItemStatus.AVAILABLE, ItemStatus.MAINTENANCE, ItemStatus.RETIRED},
    ItemStatus.MAINTENANCE: {ItemStatus.AVAILABLE, ItemStatus.RETIRED},
    ItemStatus.RETIRED: {ItemStatus.AVAILABLE, ItemStatus.MAINTENANCE},
}

# Entering one of these cancels the item's pending and approved reservations.
UNAVAILABLE_STATUSES = (ItemStatus.RETIRED, ItemStatus.MAINTENANCE)


def coerce_status(value) -> ItemStatus:
    try:
        return ItemStatus(value)
    except ValueError:
        raise ValidationError(
            f"Unknown item status '{value}'",
            rule="Item status must be one of " + ", ".join(s.value for s in ItemStatus),
        )


class ItemStatusManager:
    """Owns every change to ``Item.status``."""

    def __init__(self, store: LendingStore, clock: Callable):
        self.store = store
        self.clock = clock

    async def apply_transition(
        self,
        item_id: str,
        new_status,
        actor: User,
        reason: Optional[str] = None,
        force: bool = False,
    ) -> StatusChange:
        """Manual status change requested by staff. Atomic with its cascades."""
        require(actor, Capability.UPDATE_ITEM_STATUS)
        if force:
            require(actor, Capability.FORCE_ITEM_STATUS)
        target = coerce_status(new_status)
        async with self.store.transaction() as uow:
            await uow.lock_item(item_id)
            change = await self.transition(
                uow, item_id, target, actor,
                reason=reason or "No reason provided",
                force=force,
            )
        logger.info(
            f"Item {item_id} status {change.previous_status.value} -> {change.new_status.value}"
            f"{' (forced)' if force else ''} by {actor.username}"
        )
        return change

    async def transition(
        self,
        uow: UnitOfWork,
        item_id: str,
        target: ItemStatus,
        actor: Optional[User],
        reason: str,
        force: bool = False,
        action: AuditAction = AuditAction.UPDATE_STATUS,
        trigger: str = "manual",
        reservation_status: Optional[ReservationStatus] = None,
    ) -> StatusChange:
        """Apply a transition inside the caller's transaction."""
        item = await uow.get_item(item_id)
        if item is None:
            raise NotFoundError(f"Item {item_id} not found")
        open_reservations = await uow.find_reservations(item_id=item_id, statuses=OPEN_RESERVATION_STATUSES)

        if not force:
            self._check_table(item.status, target)
            self._check_guards(item, target, open_reservations)

        now = self.clock()
        previous = item.status
        cancelled: List[str] = []
        if target in UNAVAILABLE_STATUSES:
            cancelled = await self._cancel_open_reservations(uow, open_reservations, target, now)

        item.status = target
        item.updated_at = now
        await uow.save_item(item)
        await record_audit(
            uow, action, ENTITY_ITEM, item.id, actor,
            ItemStatusChange(
                from_status=previous,
                to_status=target,
                reason=reason,
                forced=force,
                trigger=trigger,
                reservation_status=reservation_status,
                cancelled_reservation_ids=cancelled,
            ),
            now,
        )
        return StatusChange(
            item=item,
            previous_status=previous,
            new_status=target,
            forced=force,
            reason=reason,
            cancelled_reservation_ids=cancelled,
        )

    def _check_table(self, current: ItemStatus, target: ItemStatus) -> None:
        allowed = ALLOWED_TRANSITIONS[current]
        if target not in allowed:
            raise ConflictError(
                f"Cannot transition from {current.value} to {target.value}",
                rule="Item status transition table",
                suggestion=f"Valid transitions from {current.value}: "
                           + ", ".join(sorted(s.value for s in allowed)),
            )

    def _check_guards(self, item: Item, target: ItemStatus, open_reservations) -> None:
        active = [r for r in open_reservations if r.status == ReservationStatus.ACTIVE]
        if target == ItemStatus.RETIRED and open_reservations:
            raise ConflictError(
                "Cannot retire item with active reservations",
                rule="No open reservations on a retired item",
                suggestion="Cancel or complete all reservations first",
                conflicts=describe_conflicts(open_reservations),
            )
        if target == ItemStatus.MAINTENANCE and item.status == ItemStatus.BORROWED and active:
            raise ConflictError(
                "Cannot move borrowed item to maintenance",
                rule="Borrowed item must be returned before maintenance",
                suggestion="Wait for item to be returned first",
                conflicts=describe_conflicts(active),
            )
        if item.status == ItemStatus.BORROWED and target != ItemStatus.BORROWED and active:
            raise ConflictError(
                f"Cannot move borrowed item to {target.value.lower()} while it is on loan",
                rule="Borrowed item must have exactly one active reservation",
                suggestion="Process the return first",
                conflicts=describe_conflicts(active),
            )
        if target == ItemStatus.BORROWED and not active:
            raise ConflictError(
                "Cannot mark item as borrowed without an active reservation",
                rule="Borrowed item needs an active reservation",
                suggestion="Approve a reservation and confirm pickup first",
                conflicts=describe_conflicts(open_reservations),
            )

    async def _cancel_open_reservations(self, uow: UnitOfWork, open_reservations, target: ItemStatus, now) -> List[str]:
        cancelled = []
        for reservation in open_reservations:
            if reservation.status == ReservationStatus.PENDING:
                reservation.cancellation_reason = f"Item moved to {target.value.lower()} status"
            elif reservation.status == ReservationStatus.APPROVED:
                reservation.cancellation_reason = f"Item became unavailable due to {target.value.lower()}"
            else:
                continue  # ACTIVE loans stay with the borrower
            reservation.status = ReservationStatus.CANCELLED
            reservation.updated_at = now
            await uow.save_reservation(reservation)
            cancelled.append(reservation.id)
        if cancelled:
            logger.info(f"Cancelled {len(cancelled)} reservations after item moved to {target.value}")
        return cancelled

    async def sync_with_reservation(
        self,
        uow: UnitOfWork,
        item_id: str,
        reservation_status: ReservationStatus,
        actor: Optional[User],
    ) -> Optional[StatusChange]:
        """
        Keep the item status in step with a reservation that just changed.
        Must be called after the reservation itself was saved.
        Returns None when the item is already where it should be.
        """
        item = await uow.get_item(item_id)
        if item is None:
            raise NotFoundError(f"Item {item_id} not found")
        holding = await uow.find_reservations(
            item_id=item_id,
            statuses=(ReservationStatus.APPROVED, ReservationStatus.ACTIVE),
        )

        target = None
        reason = None
        if reservation_status == ReservationStatus.APPROVED:
            if item.status == ItemStatus.AVAILABLE:
                target, reason = ItemStatus.RESERVED, "Item reserved due to approved reservation"
        elif reservation_status == ReservationStatus.ACTIVE:
            if item.status != ItemStatus.BORROWED:
                target, reason = ItemStatus.BORROWED, "Item marked as borrowed due to active reservation"
        elif reservation_status in (ReservationStatus.CANCELLED, ReservationStatus.REJECTED, ReservationStatus.PENDING):
            if not holding and item.status == ItemStatus.RESERVED:
                target = ItemStatus.AVAILABLE
                reason = f"Item returned to available status after reservation {reservation_status.value.lower()}"

        if target is None:
            return None
        return await self.transition(
            uow, item_id, target, actor, reason,
            action=AuditAction.AUTO_UPDATE_STATUS,
            trigger="reservation_change",
            reservation_status=reservation_status,
        )

    async def recommendations(self, item_id: str, actor: User) -> StatusRecommendations:
        require(actor, Capability.UPDATE_ITEM_STATUS)
        async with self.store.transaction() as uow:
            item = await uow.get_item(item_id)
            if item is None:
                raise NotFoundError(f"Item {item_id} not found")
            open_reservations = await uow.find_reservations(item_id=item_id, statuses=OPEN_RESERVATION_STATUSES)

        now = self.clock()
        active = [r for r in open_reservations if r.status == ReservationStatus.ACTIVE]
        approved = [r for r in open_reservations if r.status == ReservationStatus.APPROVED]
        pending = [r for r in open_reservations if r.status == ReservationStatus.PENDING]

        recs: List[StatusRecommendation] = []
        if item.status == ItemStatus.AVAILABLE:
            if pending:
                recs.append(StatusRecommendation(
                    status=ItemStatus.RESERVED, reason="Approve pending reservations",
                    priority="medium", action="approve_reservations",
                    reservation_ids=[r.id for r in pending],
                ))
            recs.append(StatusRecommendation(
                status=ItemStatus.MAINTENANCE, reason="Schedule maintenance if needed",
                priority="low", action="schedule_maintenance",
            ))
        elif item.status == ItemStatus.RESERVED:
            if approved:
                recs.append(StatusRecommendation(
                    status=ItemStatus.BORROWED, reason="Mark as borrowed when picked up",
                    priority="high", action="confirm_pickup",
                    reservation_ids=[r.id for r in approved],
                ))
        elif item.status == ItemStatus.BORROWED:
            overdue = [r for r in active if r.end_date < now]
            if overdue:
                recs.append(StatusRecommendation(
                    status=ItemStatus.AVAILABLE, reason="Item is overdue for return",
                    priority="high", action="process_return",
                    reservation_ids=[r.id for r in overdue],
                ))
        elif item.status == ItemStatus.MAINTENANCE:
            recs.append(StatusRecommendation(
                status=ItemStatus.AVAILABLE, reason="Return to circulation after maintenance",
                priority="medium", action="complete_maintenance",
            ))
        elif item.status == ItemStatus.RETIRED:
            recs.append(StatusRecommendation(
                status=ItemStatus.AVAILABLE, reason="Restore item to active inventory",
                priority="low", action="restore_item",
            ))

        return StatusRecommendations(
            item_id=item.id,
            current_status=item.status,
            recommendations=recs,
            active_reservations=len(active),
            approved_reservations=len(approved),
            pending_reservations=len(pending),
        )

    async def status_history(self, item_id: str, actor: User) -> StatusHistory:
        require(actor, Capability.UPDATE_ITEM_STATUS)
        async with self.store.transaction() as uow:
            item = await uow.get_item(item_id)
            if item is None:
                raise NotFoundError(f"Item {item_id} not found")
            entries = await uow.find_audit_entries(
                ENTITY_ITEM, item_id,
                actions=(AuditAction.UPDATE_STATUS, AuditAction.AUTO_UPDATE_STATUS),
            )
        return StatusHistory(
            item_id=item.id,
            current_status=item.status,
            last_updated=item.updated_at,
            entries=list(reversed(entries)),
        )
