# tests/test_damage.py
from datetime import timedelta

import pytest

from lending.core.audit import ENTITY_DAMAGE_REPORT
from lending.core.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
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
from tests.conftest import add_item, ledger_entries, load_item, load_reservation, load_user

DESCRIPTION = "Cracked lens housing"


@pytest.fixture
def returned(engine, clock, staff, make_loan):
    """Lend the item, take it back in the given condition and confirm the return."""

    async def _returned(borrower, item, condition=ItemCondition.GOOD):
        loan = await make_loan(borrower, staff, item)
        clock.advance(days=1)
        initiation = await engine.returns.initiate_return(loan.id, borrower, clock(), condition)
        confirmation = await engine.returns.confirm_return(initiation.return_record.id, True, staff)
        return confirmation.return_record

    return _returned


async def load_return(store, return_id):
    async with store.transaction() as uow:
        return await uow.get_return(return_id)


async def load_report(store, report_id):
    async with store.transaction() as uow:
        return await uow.get_damage_report(report_id)


class TestReportDamage:
    async def test_report_marks_the_return_damaged(self, engine, store, borrower, item, returned):
        record = await returned(borrower, item)

        report = await engine.damage.report_damage(
            record.id, borrower, DamageType.COSMETIC, DamageSeverity.MINOR, DESCRIPTION
        )

        assert report.status == DamageReportStatus.REPORTED
        assert report.user_id == borrower.id
        assert report.reported_by_id == borrower.id
        stored = await load_return(store, record.id)
        assert stored.status == ReturnStatus.DAMAGED
        assert stored.damage_report == DESCRIPTION
        reloaded = await load_item(store, item.id)
        assert reloaded.condition == ItemCondition.GOOD
        assert reloaded.status == ItemStatus.AVAILABLE
        assert await ledger_entries(store, borrower.id) == []

        async with store.transaction() as uow:
            audit = await uow.find_audit_entries(ENTITY_DAMAGE_REPORT, report.id)
        assert [e.action for e in audit] == [AuditAction.CREATE_DAMAGE_REPORT]
        assert audit[0].changes.from_status is None
        assert not audit[0].changes.item_retired

    async def test_usability_damage_lowers_the_condition(self, engine, store, borrower, item, returned):
        record = await returned(borrower, item)

        await engine.damage.report_damage(
            record.id, borrower, DamageType.FUNCTIONAL, DamageSeverity.MAJOR, DESCRIPTION, affects_usability=True
        )

        reloaded = await load_item(store, item.id)
        assert reloaded.condition == ItemCondition.POOR
        assert reloaded.status == ItemStatus.AVAILABLE

    async def test_condition_is_never_raised(self, engine, store, borrower, item, returned):
        record = await returned(borrower, item, ItemCondition.POOR)

        await engine.damage.report_damage(
            record.id, borrower, DamageType.PHYSICAL, DamageSeverity.MODERATE, DESCRIPTION, affects_usability=True
        )

        assert (await load_item(store, item.id)).condition == ItemCondition.POOR

    async def test_total_loss_retires_the_item(
        self, engine, store, clock, staff, borrower, other_user, item, returned
    ):
        later = clock() + timedelta(days=10)
        upcoming = await engine.reservations.request_reservation(
            other_user, item.id, later, later + timedelta(days=1)
        )
        await engine.reservations.approve(upcoming.id, staff)
        record = await returned(borrower, item)
        assert (await load_item(store, item.id)).status == ItemStatus.RESERVED

        await engine.damage.report_damage(
            record.id, staff, DamageType.PHYSICAL, DamageSeverity.TOTAL_LOSS,
            "Dropped down the stairwell", affects_usability=True,
        )

        reloaded = await load_item(store, item.id)
        assert reloaded.status == ItemStatus.RETIRED
        assert reloaded.condition == ItemCondition.DAMAGED
        cancelled = await load_reservation(store, upcoming.id)
        assert cancelled.status == ReservationStatus.CANCELLED
        history = await engine.items.status_history(item.id, staff)
        assert history.entries[0].changes.trigger == "damage_report"

    async def test_total_loss_is_refused_while_the_item_is_out_again(
        self, engine, store, staff, borrower, other_user, item, returned, make_loan
    ):
        record = await returned(borrower, item)
        second = await make_loan(other_user, staff, item)

        with pytest.raises(ConflictError) as exc:
            await engine.damage.report_damage(
                record.id, staff, DamageType.PHYSICAL, DamageSeverity.TOTAL_LOSS, DESCRIPTION,
                affects_usability=True,
            )

        assert [c["id"] for c in exc.value.conflicts] == [second.id]
        assert (await load_return(store, record.id)).status == ReturnStatus.APPROVED
        assert (await load_item(store, item.id)).status == ItemStatus.BORROWED
        assert await engine.damage.list_reports(staff) == []

    async def test_pending_return_cannot_be_reported(self, engine, clock, staff, borrower, item, make_loan):
        loan = await make_loan(borrower, staff, item)
        initiation = await engine.returns.initiate_return(loan.id, borrower, clock(), ItemCondition.GOOD)

        with pytest.raises(ConflictError):
            await engine.damage.report_damage(
                initiation.return_record.id, borrower, DamageType.OTHER, DamageSeverity.MINOR, DESCRIPTION
            )

    async def test_description_needs_ten_characters(self, engine, borrower, item, returned):
        record = await returned(borrower, item)
        with pytest.raises(ValidationError):
            await engine.damage.report_damage(record.id, borrower, DamageType.OTHER, DamageSeverity.MINOR, "Scratch")

    async def test_only_borrower_or_staff_may_report(self, engine, staff, borrower, other_user, item, returned):
        record = await returned(borrower, item)

        with pytest.raises(PermissionDeniedError):
            await engine.damage.report_damage(
                record.id, other_user, DamageType.OTHER, DamageSeverity.MINOR, DESCRIPTION
            )

        report = await engine.damage.report_damage(
            record.id, staff, DamageType.MISSING_PARTS, DamageSeverity.MINOR, "Power cable missing"
        )
        assert report.reported_by_id == staff.id
        assert report.user_id == borrower.id

    async def test_unknown_return(self, engine, staff):
        with pytest.raises(NotFoundError):
            await engine.damage.report_damage("missing", staff, DamageType.OTHER, DamageSeverity.MINOR, DESCRIPTION)


class TestReviewDamage:
    async def test_approval_charges_the_penalty_once(self, engine, store, clock, staff, borrower, item, returned):
        record = await returned(borrower, item)
        report = await engine.damage.report_damage(
            record.id, borrower, DamageType.PHYSICAL, DamageSeverity.MODERATE, DESCRIPTION
        )

        await engine.damage.review(report.id, staff, status=DamageReportStatus.UNDER_REVIEW)
        approved = await engine.damage.review(
            report.id, staff, status=DamageReportStatus.APPROVED, penalty_amount=15, repair_cost=40
        )
        assert approved.penalty_applied
        assert approved.approved_by_id == staff.id
        assert approved.approved_at == clock()

        clock.advance(days=3)
        resolved = await engine.damage.review(
            report.id, staff, status=DamageReportStatus.RESOLVED, resolution_notes="Lens replaced"
        )

        assert resolved.resolution_date == clock()
        assert resolved.resolution_notes == "Lens replaced"
        entries = await ledger_entries(store, borrower.id)
        assert [(e.change, e.reason) for e in entries] == [(-15, f"Damage penalty: {DESCRIPTION}")]
        assert (await load_user(store, borrower.id)).trust_score == 85

        async with store.transaction() as uow:
            audit = await uow.find_audit_entries(
                ENTITY_DAMAGE_REPORT, report.id, actions=(AuditAction.UPDATE_DAMAGE_REPORT,)
            )
        assert [e.changes.penalty_applied for e in audit] == [0, 15, 0]

    async def test_penalty_can_be_set_at_resolution(self, engine, store, staff, borrower, item, returned):
        record = await returned(borrower, item)
        report = await engine.damage.report_damage(
            record.id, borrower, DamageType.PHYSICAL, DamageSeverity.MAJOR, DESCRIPTION
        )

        await engine.damage.review(report.id, staff, status=DamageReportStatus.APPROVED)
        assert await ledger_entries(store, borrower.id) == []

        await engine.damage.review(report.id, staff, status=DamageReportStatus.RESOLVED, penalty_amount=20)

        assert [e.change for e in await ledger_entries(store, borrower.id)] == [-20]

    async def test_rejected_report_charges_nothing_and_is_final(
        self, engine, store, staff, borrower, item, returned
    ):
        record = await returned(borrower, item)
        report = await engine.damage.report_damage(
            record.id, borrower, DamageType.COSMETIC, DamageSeverity.MINOR, DESCRIPTION
        )

        rejected = await engine.damage.review(
            report.id, staff, status=DamageReportStatus.REJECTED, penalty_amount=10, admin_notes="Wear and tear"
        )

        assert not rejected.penalty_applied
        assert await ledger_entries(store, borrower.id) == []
        with pytest.raises(ConflictError):
            await engine.damage.review(report.id, staff, status=DamageReportStatus.APPROVED)

    async def test_resolving_a_fresh_report_skips_the_workflow(self, engine, store, staff, borrower, item, returned):
        record = await returned(borrower, item)
        report = await engine.damage.report_damage(
            record.id, borrower, DamageType.OTHER, DamageSeverity.MINOR, DESCRIPTION
        )

        with pytest.raises(ConflictError) as exc:
            await engine.damage.review(report.id, staff, status=DamageReportStatus.RESOLVED)

        assert "UNDER_REVIEW" in exc.value.suggestion
        assert (await load_report(store, report.id)).status == DamageReportStatus.REPORTED

    async def test_charged_penalty_cannot_be_changed(self, engine, store, staff, borrower, item, returned):
        record = await returned(borrower, item)
        report = await engine.damage.report_damage(
            record.id, borrower, DamageType.PHYSICAL, DamageSeverity.MODERATE, DESCRIPTION
        )
        await engine.damage.review(report.id, staff, status=DamageReportStatus.APPROVED, penalty_amount=15)

        with pytest.raises(ConflictError):
            await engine.damage.review(report.id, staff, status=DamageReportStatus.RESOLVED, penalty_amount=5)

        assert (await load_report(store, report.id)).status == DamageReportStatus.APPROVED
        assert [e.change for e in await ledger_entries(store, borrower.id)] == [-15]

    async def test_borrower_cannot_review(self, engine, borrower, item, returned):
        record = await returned(borrower, item)
        report = await engine.damage.report_damage(
            record.id, borrower, DamageType.OTHER, DamageSeverity.MINOR, DESCRIPTION
        )
        with pytest.raises(PermissionDeniedError):
            await engine.damage.review(report.id, borrower, status=DamageReportStatus.REJECTED)


class TestDamageQueries:
    async def test_borrowers_only_see_their_own_reports(
        self, engine, store, staff, borrower, other_user, item, returned
    ):
        mine = await engine.damage.report_damage(
            (await returned(borrower, item)).id, borrower, DamageType.COSMETIC, DamageSeverity.MINOR, DESCRIPTION
        )
        other_item = await add_item(store, "Tripod")
        theirs = await engine.damage.report_damage(
            (await returned(other_user, other_item)).id, other_user,
            DamageType.FUNCTIONAL, DamageSeverity.MAJOR, "Leg lock does not hold",
        )

        assert [r.id for r in await engine.damage.list_reports(borrower, user_id=other_user.id)] == [mine.id]
        assert [r.id for r in await engine.damage.list_reports(staff, severity=DamageSeverity.MAJOR)] == [theirs.id]
        assert len(await engine.damage.list_reports(staff)) == 2

    async def test_report_visibility(self, engine, staff, borrower, other_user, item, returned):
        record = await returned(borrower, item)
        report = await engine.damage.report_damage(
            record.id, staff, DamageType.OTHER, DamageSeverity.MINOR, DESCRIPTION
        )

        assert (await engine.damage.get_report(report.id, borrower)).id == report.id
        with pytest.raises(PermissionDeniedError):
            await engine.damage.get_report(report.id, other_user)
        with pytest.raises(NotFoundError):
            await engine.damage.get_report("missing", staff)
