# lending/core/overdue.py
import logging
from collections import Counter
from datetime import datetime, timedelta
from typing import Callable, Iterable, List, Optional

from lending.core import penalties
from lending.core.audit import ENTITY_RESERVATION, record_audit
from lending.core.errors import LendingError, NotFoundError, ValidationError
from lending.core.notifications import NOTIFICATION_FOR_SEVERITY, NotificationRequest, NotificationSink
from lending.core.permissions import Capability, require
from lending.core.policy import LendingPolicy
from lending.core.reputation import ReputationLedger
from lending.core.utils import days_between_floor
from lending.db.store import LendingStore, UnitOfWork
from lending.models.audit import NotificationChange, OverdueProcessingChange
from lending.models.enum import AuditAction, NotificationType, OverdueSeverity, ReservationStatus
from lending.models.overdue import (
    NotificationDispatch,
    OverdueAnalytics,
    OverdueEntry,
    OverdueFailure,
    OverdueListing,
    OverdueScanResult,
    OverdueScanSummary,
)
from lending.models.reservation import Reservation
from lending.models.return_record import ReturnRecord
from lending.models.user import User

logger = logging.getLogger(__name__)

TOP_OVERDUE_LIMIT = 5


class OverdueProcessor:
    """Finds active loans past their due date and penalizes them."""

    def __init__(
        self,
        store: LendingStore,
        ledger: ReputationLedger,
        notifier: NotificationSink,
        policy: LendingPolicy,
        clock: Callable,
    ):
        self.store = store
        self.ledger = ledger
        self.notifier = notifier
        self.policy = policy
        self.clock = clock

    def _validate_scan_args(self, threshold: int, multiplier: float) -> None:
        p = self.policy
        if not p.min_overdue_threshold_days <= threshold <= p.max_overdue_threshold_days:
            raise ValidationError(
                f"days_overdue_threshold must be between {p.min_overdue_threshold_days} "
                f"and {p.max_overdue_threshold_days}",
                rule="Overdue threshold bounds",
            )
        if not p.min_penalty_multiplier <= multiplier <= p.max_penalty_multiplier:
            raise ValidationError(
                f"penalty_multiplier must be between {p.min_penalty_multiplier:g} "
                f"and {p.max_penalty_multiplier:g}",
                rule="Penalty multiplier bounds",
            )

    async def _unreturned(self, uow: UnitOfWork, reservations: Iterable[Reservation]) -> List[Reservation]:
        return [r for r in reservations if await uow.get_return_for_reservation(r.id) is None]

    async def scan(
        self,
        actor: Optional[User],
        days_overdue_threshold: int = 1,
        auto_initiate_returns: bool = False,
        penalty_multiplier: float = 1.0,
        incremental: bool = False,
    ) -> OverdueScanResult:
        """
        Penalize every ACTIVE reservation whose end date is more than
        ``days_overdue_threshold`` days in the past and that has no return yet.

        With ``incremental`` a loan is only charged what its current overdue
        penalty exceeds the sum of earlier scan penalties for it, so repeated
        periodic scans never charge the same days twice.

        ``actor`` is None when the scheduler runs the scan. Each reservation is
        processed in its own transaction; failures are reported, not raised.
        """
        require(actor, Capability.PROCESS_OVERDUE)
        self._validate_scan_args(days_overdue_threshold, penalty_multiplier)
        now = self.clock()
        cutoff = now - timedelta(days=days_overdue_threshold)

        async with self.store.transaction() as uow:
            candidates = await uow.find_reservations(statuses=(ReservationStatus.ACTIVE,), end_before=cutoff)
            candidates = await self._unreturned(uow, candidates)
        logger.info(f"Overdue scan found {len(candidates)} reservations past {cutoff.isoformat()}")

        result = OverdueScanResult()
        for reservation in candidates:
            try:
                entry = await self._process_one(
                    reservation.id, now, auto_initiate_returns, penalty_multiplier, actor, incremental
                )
            except LendingError as e:
                logger.warning(f"Overdue processing failed for reservation {reservation.id}: {e.message}")
                result.failed.append(OverdueFailure(reservation_id=reservation.id, error=e.message))
                continue
            except Exception as e:
                logger.error(f"Unexpected error processing overdue reservation {reservation.id}: {e}", exc_info=True)
                result.failed.append(OverdueFailure(reservation_id=reservation.id, error=str(e)))
                continue
            if entry is not None:
                result.processed.append(entry)

        for entry in result.processed:
            request = NotificationRequest(
                notification_type=NOTIFICATION_FOR_SEVERITY[entry.severity],
                reservation_ids=[entry.reservation_id],
                user_ids=[entry.user_id],
                severity=entry.severity,
                days_overdue=entry.days_overdue,
            )
            result.notifications.append(request)
            await self._dispatch(request)

        count = len(result.processed)
        result.summary = OverdueScanSummary(
            count=count,
            total_penalties=sum(e.penalty for e in result.processed),
            auto_returns_created=sum(1 for e in result.processed if e.auto_return_id),
            average_days_overdue=(sum(e.days_overdue for e in result.processed) / count) if count else 0,
        )
        result.by_severity = dict(Counter(e.severity for e in result.processed))
        logger.info(
            f"Overdue scan done: {count} processed, {len(result.failed)} failed, "
            f"total penalties {result.summary.total_penalties}"
        )
        return result

    async def _process_one(
        self,
        reservation_id: str,
        now: datetime,
        auto_initiate_returns: bool,
        multiplier: float,
        actor: Optional[User],
        incremental: bool = False,
    ) -> Optional[OverdueEntry]:
        async with self.store.transaction() as uow:
            reservation = await uow.get_reservation(reservation_id)
            # re-check, the loan may have been returned since the candidate query
            if reservation is None or reservation.status != ReservationStatus.ACTIVE:
                return None
            if await uow.get_return_for_reservation(reservation_id) is not None:
                return None
            await uow.lock_item(reservation.item_id)
            item = await uow.get_item(reservation.item_id)
            if item is None:
                raise NotFoundError(f"Item {reservation.item_id} not found")

            days_overdue = days_between_floor(reservation.end_date, now)
            severity = self.policy.severity_for(days_overdue)
            penalty = penalties.overdue_penalty(days_overdue, multiplier, self.policy)
            if incremental:
                penalty -= await self._already_charged(uow, reservation.id)
                if penalty <= 0:
                    return None

            auto_return = None
            if auto_initiate_returns:
                auto_return = ReturnRecord(
                    reservation_id=reservation.id,
                    item_id=item.id,
                    user_id=reservation.user_id,
                    return_date=now,
                    condition_on_return=item.condition,
                    penalty_applied=True,
                    penalty_amount=penalty,
                    penalty_reason=f"Auto-initiated return for overdue item ({days_overdue} days late)",
                    notes="Auto-generated return for overdue item. System penalty applied.",
                    auto_generated=True,
                    created_at=now,
                    updated_at=now,
                )
                await uow.save_return(auto_return)

            await self.ledger.apply(
                uow, reservation.user_id, -penalty,
                f"Overdue item penalty: {item.name} ({days_overdue} days late)",
            )
            await record_audit(
                uow, AuditAction.PROCESS_OVERDUE_ITEM, ENTITY_RESERVATION, reservation.id, actor,
                OverdueProcessingChange(
                    days_overdue=days_overdue,
                    severity=severity,
                    penalty_applied=penalty,
                    penalty_multiplier=multiplier,
                    auto_return_initiated=auto_return is not None,
                    auto_return_id=auto_return.id if auto_return else None,
                    original_end_date=reservation.end_date,
                ),
                now,
            )
        return OverdueEntry(
            reservation_id=reservation.id,
            item_id=item.id,
            item_name=item.name,
            user_id=reservation.user_id,
            end_date=reservation.end_date,
            days_overdue=days_overdue,
            severity=severity,
            penalty=penalty,
            auto_return_id=auto_return.id if auto_return else None,
        )

    async def _already_charged(self, uow: UnitOfWork, reservation_id: str) -> float:
        processed = await uow.find_audit_entries(
            ENTITY_RESERVATION, reservation_id, actions=(AuditAction.PROCESS_OVERDUE_ITEM,)
        )
        return sum(entry.changes.penalty_applied for entry in processed)

    async def _dispatch(self, request: NotificationRequest) -> None:
        # delivery is best effort, the penalties are already committed
        try:
            await self.notifier.dispatch(request)
        except Exception as e:
            logger.error(f"Notification dispatch failed for {request.reservation_ids}: {e}", exc_info=True)

    async def list_overdue(
        self,
        actor: User,
        severity: Optional[OverdueSeverity] = None,
        user_id: Optional[str] = None,
        item_id: Optional[str] = None,
    ) -> OverdueListing:
        require(actor, Capability.VIEW_OVERDUE)
        now = self.clock()
        entries: List[OverdueEntry] = []
        async with self.store.transaction() as uow:
            past_due = await uow.find_reservations(
                item_id=item_id, user_id=user_id,
                statuses=(ReservationStatus.ACTIVE,), end_before=now,
            )
            for reservation in await self._unreturned(uow, past_due):
                item = await uow.get_item(reservation.item_id)
                days_overdue = days_between_floor(reservation.end_date, now)
                entries.append(OverdueEntry(
                    reservation_id=reservation.id,
                    item_id=reservation.item_id,
                    item_name=item.name if item else None,
                    user_id=reservation.user_id,
                    end_date=reservation.end_date,
                    days_overdue=days_overdue,
                    severity=self.policy.severity_for(days_overdue),
                    penalty=penalties.overdue_penalty(days_overdue, 1.0, self.policy),
                ))
        if severity is not None:
            entries = [e for e in entries if e.severity == severity]

        total = len(entries)
        analytics = OverdueAnalytics(
            total_overdue=total,
            by_severity=dict(Counter(e.severity for e in entries)),
            average_days_overdue=(sum(e.days_overdue for e in entries) / total) if total else 0,
            total_potential_penalty=sum(e.penalty for e in entries),
            affected_users=len({e.user_id for e in entries}),
            top_overdue_items=sorted(entries, key=lambda e: e.days_overdue, reverse=True)[:TOP_OVERDUE_LIMIT],
        )
        return OverdueListing(overdue=entries, analytics=analytics)

    async def send_notifications(
        self,
        actor: User,
        reservation_ids: List[str],
        notification_type: NotificationType,
        custom_message: Optional[str] = None,
    ) -> NotificationDispatch:
        require(actor, Capability.SEND_NOTIFICATIONS)
        if not reservation_ids:
            raise ValidationError("reservation_ids must not be empty")
        now = self.clock()
        requests: List[NotificationRequest] = []
        async with self.store.transaction() as uow:
            active = await uow.find_reservations(ids=reservation_ids, statuses=(ReservationStatus.ACTIVE,))
            if not active:
                raise NotFoundError(
                    "No active reservations found",
                    rule="Late-return notices only go to active loans",
                )
            for reservation in active:
                days_overdue = max(0, days_between_floor(reservation.end_date, now))
                await record_audit(
                    uow, AuditAction.SEND_LATE_RETURN_NOTIFICATION, ENTITY_RESERVATION, reservation.id, actor,
                    NotificationChange(
                        notification_type=notification_type,
                        days_overdue=days_overdue,
                        custom_message=custom_message,
                    ),
                    now,
                )
                requests.append(NotificationRequest(
                    notification_type=notification_type,
                    reservation_ids=[reservation.id],
                    user_ids=[reservation.user_id],
                    severity=self.policy.severity_for(days_overdue) if days_overdue > 0 else None,
                    days_overdue=days_overdue,
                    custom_message=custom_message,
                ))
        for request in requests:
            await self._dispatch(request)
        logger.info(f"{notification_type.value} notices sent for {len(requests)} reservations by '{actor.username}'")
        return NotificationDispatch(
            sent=len(requests),
            notification_type=notification_type,
            reservation_ids=[r.reservation_ids[0] for r in requests],
            notifications=requests,
        )
