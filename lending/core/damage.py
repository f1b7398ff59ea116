# lending/core/damage.py
import logging
from datetime import datetime
from typing import Callable, List, Optional

from lending.core import penalties
from lending.core.audit import ENTITY_DAMAGE_REPORT, record_audit
from lending.core.availability import describe_conflicts
from lending.core.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from lending.core.item_status import ItemStatusManager
from lending.core.permissions import Capability, can, require
from lending.core.reputation import ReputationLedger
from lending.core.utils import ensure_utc
from lending.db.store import LendingStore
from lending.models.audit import DamageReportChange
from lending.models.damage import DamageReport
from lending.models.enum import (
    AuditAction,
    DamageReportStatus,
    DamageSeverity,
    DamageType,
    ItemCondition,
    ItemStatus,
    ReservationStatus,
    ReturnStatus,
)
from lending.models.user import User

logger = logging.getLogger(__name__)

MIN_DESCRIPTION_LENGTH = 10

REPORT_TRANSITIONS = {
    DamageReportStatus.REPORTED: {
        DamageReportStatus.UNDER_REVIEW, DamageReportStatus.APPROVED, DamageReportStatus.REJECTED,
    },
    DamageReportStatus.UNDER_REVIEW: {
        DamageReportStatus.APPROVED, DamageReportStatus.REJECTED, DamageReportStatus.RESOLVED,
    },
    DamageReportStatus.APPROVED: {DamageReportStatus.RESOLVED},
    DamageReportStatus.REJECTED: set(),
    DamageReportStatus.RESOLVED: set(),
}

# Reaching one of these accepts the damage and charges the penalty, once.
ACCEPTED_STATUSES = (DamageReportStatus.APPROVED, DamageReportStatus.RESOLVED)

# Condition an item drops to when the damage affects its usability. MINOR keeps it.
SEVERITY_CONDITION = {
    DamageSeverity.MODERATE: ItemCondition.FAIR,
    DamageSeverity.MAJOR: ItemCondition.POOR,
    DamageSeverity.TOTAL_LOSS: ItemCondition.DAMAGED,
}


class DamageReportProcessor:
    """Damage reports filed against processed returns and their staff review."""

    def __init__(
        self,
        store: LendingStore,
        items: ItemStatusManager,
        ledger: ReputationLedger,
        clock: Callable,
    ):
        self.store = store
        self.items = items
        self.ledger = ledger
        self.clock = clock

    async def report_damage(
        self,
        return_id: str,
        actor: User,
        damage_type: DamageType,
        severity: DamageSeverity,
        description: str,
        damage_images: Optional[List[str]] = None,
        estimated_repair_cost: Optional[float] = None,
        is_repairable: bool = True,
        affects_usability: bool = False,
        witness_details: Optional[str] = None,
        incident_date: Optional[datetime] = None,
    ) -> DamageReport:
        """
        File a report against a confirmed return. The return is marked
        DAMAGED. When the damage affects usability the item's condition drops
        to match the severity, and a total loss retires the item, cancelling
        its upcoming reservations.
        """
        description = (description or "").strip()
        if len(description) < MIN_DESCRIPTION_LENGTH:
            raise ValidationError(
                f"Description must be at least {MIN_DESCRIPTION_LENGTH} characters",
                rule="Damage description length",
            )
        damage_type, severity = DamageType(damage_type), DamageSeverity(severity)

        async with self.store.transaction() as uow:
            record = await uow.get_return(return_id)
            if record is None:
                raise NotFoundError(f"Return {return_id} not found")
            if record.user_id != actor.id and not can(actor.role, Capability.MANAGE_ANY_RETURN):
                raise PermissionDeniedError("Access denied", rule="Only the borrower or staff can report damage")
            if record.status in (ReturnStatus.PENDING, ReturnStatus.REJECTED):
                raise ConflictError(
                    f"Cannot report damage on a return with status: {record.status.value}",
                    rule="Damage reports are filed against confirmed returns",
                    suggestion="Add the damage to the return while confirming it",
                )
            await uow.lock_item(record.item_id)
            item = await uow.get_item(record.item_id)
            if item is None:
                raise NotFoundError(f"Item {record.item_id} not found")

            now = self.clock()
            report = DamageReport(
                return_id=record.id,
                reservation_id=record.reservation_id,
                item_id=item.id,
                user_id=record.user_id,
                reported_by_id=actor.id,
                damage_type=damage_type,
                severity=severity,
                description=description,
                damage_images=damage_images or [],
                estimated_repair_cost=estimated_repair_cost,
                is_repairable=is_repairable,
                affects_usability=affects_usability,
                witness_details=witness_details,
                incident_date=ensure_utc(incident_date) if incident_date else None,
                created_at=now,
                updated_at=now,
            )

            if record.status != ReturnStatus.DAMAGED:
                record.status = ReturnStatus.DAMAGED
                record.damage_report = record.damage_report or description
                record.updated_at = now
                await uow.save_return(record)

            condition_change = None
            retired = False
            if affects_usability:
                degraded_to = SEVERITY_CONDITION.get(severity)
                if degraded_to and penalties.is_degraded(item.condition, degraded_to):
                    item.condition = degraded_to
                    item.updated_at = now
                    await uow.save_item(item)
                    condition_change = degraded_to
                if severity == DamageSeverity.TOTAL_LOSS and item.status != ItemStatus.RETIRED:
                    on_loan = await uow.find_reservations(item_id=item.id, statuses=(ReservationStatus.ACTIVE,))
                    if on_loan:
                        raise ConflictError(
                            "Cannot retire an item that is out on loan",
                            rule="Borrowed item must have exactly one active reservation",
                            suggestion="Process the outstanding return first",
                            conflicts=describe_conflicts(on_loan),
                        )
                    await self.items.transition(
                        uow, item.id, ItemStatus.RETIRED, actor,
                        reason=f"Total loss reported in damage report {report.id}",
                        force=True,
                        action=AuditAction.AUTO_UPDATE_STATUS,
                        trigger="damage_report",
                    )
                    retired = True

            await uow.save_damage_report(report)
            await record_audit(
                uow, AuditAction.CREATE_DAMAGE_REPORT, ENTITY_DAMAGE_REPORT, report.id, actor,
                DamageReportChange(
                    return_id=record.id,
                    to_status=report.status,
                    damage_type=damage_type,
                    severity=severity,
                    condition_change=condition_change,
                    item_retired=retired,
                ),
                now,
            )
        logger.info(
            f"Damage report {report.id} ({severity.value}) filed on return {return_id} by '{actor.username}'"
            f"{' - item retired' if retired else ''}"
        )
        return report

    async def review(
        self,
        report_id: str,
        actor: User,
        status: Optional[DamageReportStatus] = None,
        admin_notes: Optional[str] = None,
        repair_cost: Optional[float] = None,
        penalty_amount: Optional[float] = None,
        resolution_date: Optional[datetime] = None,
        resolution_notes: Optional[str] = None,
    ) -> DamageReport:
        """Staff review. Accepting the report charges its penalty to the borrower exactly once."""
        require(actor, Capability.REVIEW_DAMAGE_REPORT)
        if penalty_amount is not None and penalty_amount < 0:
            raise ValidationError("penalty_amount must not be negative", rule="Damage penalty bounds")

        async with self.store.transaction() as uow:
            report = await uow.get_damage_report(report_id)
            if report is None:
                raise NotFoundError(f"Damage report {report_id} not found")
            previous = report.status
            if not REPORT_TRANSITIONS[previous]:
                raise ConflictError(
                    f"Damage report is closed with status: {previous.value}",
                    rule="Rejected and resolved reports are final",
                )
            target = DamageReportStatus(status) if status is not None else previous
            if target != previous and target not in REPORT_TRANSITIONS[previous]:
                raise ConflictError(
                    f"Cannot move damage report from {previous.value} to {target.value}",
                    rule="Damage report review workflow",
                    suggestion=f"Valid transitions from {previous.value}: "
                               + ", ".join(sorted(s.value for s in REPORT_TRANSITIONS[previous])),
                )
            if penalty_amount is not None and report.penalty_applied and penalty_amount != report.penalty_amount:
                raise ConflictError(
                    "Damage penalty has already been charged",
                    rule="A damage penalty is charged once",
                )

            now = self.clock()
            if admin_notes is not None:
                report.admin_notes = admin_notes
            if repair_cost is not None:
                report.repair_cost = repair_cost
            if penalty_amount is not None:
                report.penalty_amount = penalty_amount
            report.status = target
            if target in ACCEPTED_STATUSES and report.approved_by_id is None:
                report.approved_by_id = actor.id
                report.approved_at = now
            if target == DamageReportStatus.RESOLVED:
                report.resolution_date = ensure_utc(resolution_date) if resolution_date else now
                if resolution_notes is not None:
                    report.resolution_notes = resolution_notes

            charged = 0.0
            if target in ACCEPTED_STATUSES and not report.penalty_applied and (report.penalty_amount or 0) > 0:
                charged = report.penalty_amount
                await self.ledger.apply(uow, report.user_id, -charged, f"Damage penalty: {report.description}")
                report.penalty_applied = True

            report.updated_at = now
            await uow.save_damage_report(report)
            await record_audit(
                uow, AuditAction.UPDATE_DAMAGE_REPORT, ENTITY_DAMAGE_REPORT, report.id, actor,
                DamageReportChange(
                    return_id=report.return_id,
                    from_status=previous,
                    to_status=target,
                    damage_type=report.damage_type,
                    severity=report.severity,
                    penalty_applied=charged,
                    admin_notes=admin_notes,
                ),
                now,
            )
        logger.info(
            f"Damage report {report_id} {previous.value} -> {target.value} by '{actor.username}', penalty {charged}"
        )
        return report

    async def get_report(self, report_id: str, actor: User) -> DamageReport:
        async with self.store.transaction() as uow:
            report = await uow.get_damage_report(report_id)
        if report is None:
            raise NotFoundError(f"Damage report {report_id} not found")
        if actor.id not in (report.user_id, report.reported_by_id) and not can(actor.role, Capability.MANAGE_ANY_RETURN):
            raise PermissionDeniedError("Access denied", rule="Only the borrower, the reporter or staff can view this")
        return report

    async def list_reports(
        self,
        actor: User,
        return_id: Optional[str] = None,
        user_id: Optional[str] = None,
        item_id: Optional[str] = None,
        status: Optional[DamageReportStatus] = None,
        severity: Optional[DamageSeverity] = None,
        damage_type: Optional[DamageType] = None,
    ) -> List[DamageReport]:
        # borrowers only ever see reports on their own loans
        if not can(actor.role, Capability.MANAGE_ANY_RETURN):
            user_id = actor.id
        async with self.store.transaction() as uow:
            return await uow.find_damage_reports(
                return_id=return_id, user_id=user_id, item_id=item_id,
                status=status, severity=severity, damage_type=damage_type,
            )
