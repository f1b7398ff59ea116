# tests/test_reservations.py
from datetime import timedelta

import pytest

from lending.core.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from lending.models.enum import AuditAction, ItemStatus, ReservationStatus
from tests.conftest import add_item, ledger_entries, load_item, load_reservation, load_user


class TestRequest:
    async def test_request_creates_pending_reservation(self, engine, store, clock, borrower, item):
        start = clock() + timedelta(days=1)
        reservation = await engine.reservations.request_reservation(
            borrower, item.id, start, start + timedelta(days=2), purpose="Workshop"
        )

        assert reservation.status == ReservationStatus.PENDING
        assert reservation.user_id == borrower.id
        stored = await load_reservation(store, reservation.id)
        assert stored.purpose == "Workshop"
        history = await engine.reservations.history(reservation.id, borrower)
        assert [e.action for e in history] == [AuditAction.CREATE_RESERVATION]

    async def test_end_must_follow_start(self, engine, clock, borrower, item):
        start = clock() + timedelta(days=1)
        with pytest.raises(ValidationError):
            await engine.reservations.request_reservation(borrower, item.id, start, start)

    async def test_start_in_the_past_is_refused(self, engine, clock, borrower, item):
        start = clock() - timedelta(hours=1)
        with pytest.raises(ValidationError):
            await engine.reservations.request_reservation(borrower, item.id, start, start + timedelta(days=1))

    async def test_unknown_item(self, engine, clock, borrower):
        start = clock() + timedelta(days=1)
        with pytest.raises(NotFoundError):
            await engine.reservations.request_reservation(borrower, "missing", start, start + timedelta(days=1))

    async def test_retired_item_cannot_be_reserved(self, engine, store, clock, borrower):
        retired = await add_item(store, status=ItemStatus.RETIRED)
        start = clock() + timedelta(days=1)
        with pytest.raises(ConflictError):
            await engine.reservations.request_reservation(borrower, retired.id, start, start + timedelta(days=1))

    async def test_overlap_with_approved_reservation_is_refused(
        self, engine, clock, staff, borrower, other_user, item
    ):
        start = clock() + timedelta(days=1)
        end = start + timedelta(days=4)
        first = await engine.reservations.request_reservation(borrower, item.id, start, end)
        await engine.reservations.approve(first.id, staff)

        # touching endpoints count as overlap
        with pytest.raises(ConflictError) as exc:
            await engine.reservations.request_reservation(other_user, item.id, end, end + timedelta(days=1))
        assert [c["id"] for c in exc.value.conflicts] == [first.id]

    async def test_pending_reservations_do_not_block(self, engine, clock, borrower, other_user, item):
        start = clock() + timedelta(days=1)
        await engine.reservations.request_reservation(borrower, item.id, start, start + timedelta(days=1))
        second = await engine.reservations.request_reservation(other_user, item.id, start, start + timedelta(days=1))
        assert second.status == ReservationStatus.PENDING


class TestApprovalFlow:
    async def test_scenario_request_approve_pickup(self, engine, store, clock, staff, borrower, item):
        start = clock() + timedelta(days=9)
        reservation = await engine.reservations.request_reservation(borrower, item.id, start, start + timedelta(days=5))
        assert reservation.status == ReservationStatus.PENDING

        approved = await engine.reservations.approve(reservation.id, staff)
        assert approved.status == ReservationStatus.APPROVED
        assert approved.approved_by_id == staff.id
        assert (await load_item(store, item.id)).status == ItemStatus.RESERVED

        active = await engine.reservations.confirm_pickup(reservation.id, borrower)
        assert active.status == ReservationStatus.ACTIVE
        assert active.pickup_confirmed
        assert active.actual_start_date == clock()

    async def test_approving_a_touching_pending_reservation_is_refused(
        self, engine, store, clock, staff, borrower, other_user, item
    ):
        start = clock() + timedelta(days=1)
        end = start + timedelta(days=2)
        first = await engine.reservations.request_reservation(borrower, item.id, start, end)
        second = await engine.reservations.request_reservation(other_user, item.id, end, end + timedelta(days=1))
        await engine.reservations.approve(first.id, staff)

        with pytest.raises(ConflictError) as exc:
            await engine.reservations.approve(second.id, staff)

        assert [c["id"] for c in exc.value.conflicts] == [first.id]
        assert (await load_reservation(store, second.id)).status == ReservationStatus.PENDING
        assert (await load_item(store, item.id)).status == ItemStatus.BORROWED

        assert await ledger_entries(store, borrower.id) == []

    async def test_only_staff_approve(self, engine, clock, borrower, item):
        start = clock() + timedelta(days=1)
        reservation = await engine.reservations.request_reservation(borrower, item.id, start, start + timedelta(days=1))
        with pytest.raises(PermissionDeniedError):
            await engine.reservations.approve(reservation.id, borrower)

    async def test_approving_twice_is_a_conflict(self, engine, clock, staff, borrower, item):
        start = clock() + timedelta(days=1)
        reservation = await engine.reservations.request_reservation(borrower, item.id, start, start + timedelta(days=1))
        await engine.reservations.approve(reservation.id, staff)
        with pytest.raises(ConflictError):
            await engine.reservations.approve(reservation.id, staff)

    async def test_second_overlapping_approval_is_refused(self, engine, store, clock, staff, borrower, other_user, item):
        start = clock() + timedelta(days=1)
        first = await engine.reservations.request_reservation(borrower, item.id, start, start + timedelta(days=2))
        second = await engine.reservations.request_reservation(
            other_user, item.id, start + timedelta(days=1), start + timedelta(days=3)
        )
        await engine.reservations.approve(first.id, staff)

        with pytest.raises(ConflictError):
            await engine.reservations.approve(second.id, staff)
        assert (await load_reservation(store, second.id)).status == ReservationStatus.PENDING

    async def test_pickup_requires_approval(self, engine, clock, borrower, item):
        start = clock() + timedelta(days=1)
        reservation = await engine.reservations.request_reservation(borrower, item.id, start, start + timedelta(days=1))
        with pytest.raises(ConflictError):
            await engine.reservations.confirm_pickup(reservation.id, borrower)

    async def test_pickup_twice_is_a_conflict(self, engine, staff, borrower, item, make_loan):
        loan = await make_loan(borrower, staff, item)
        with pytest.raises(ConflictError):
            await engine.reservations.confirm_pickup(loan.id, borrower)

    async def test_other_users_cannot_pick_up(self, engine, clock, staff, borrower, other_user, item):
        start = clock() + timedelta(days=1)
        reservation = await engine.reservations.request_reservation(borrower, item.id, start, start + timedelta(days=1))
        await engine.reservations.approve(reservation.id, staff)
        with pytest.raises(PermissionDeniedError):
            await engine.reservations.confirm_pickup(reservation.id, other_user)


class TestCancel:
    async def _approved(self, engine, clock, staff, borrower, item, start_in):
        start = clock() + start_in
        reservation = await engine.reservations.request_reservation(borrower, item.id, start, start + timedelta(days=1))
        return await engine.reservations.approve(reservation.id, staff)

    async def test_early_cancellation_is_free(self, engine, store, clock, staff, borrower, item):
        reservation = await self._approved(engine, clock, staff, borrower, item, timedelta(days=3))

        outcome = await engine.reservations.cancel(reservation.id, borrower, "Plans changed")

        assert outcome.reservation.status == ReservationStatus.CANCELLED
        assert outcome.trust_score_impact == 0
        assert (await load_user(store, borrower.id)).trust_score == 100
        assert (await load_item(store, item.id)).status == ItemStatus.AVAILABLE

    async def test_late_cancellation_costs_five(self, engine, store, clock, staff, borrower, item):
        reservation = await self._approved(engine, clock, staff, borrower, item, timedelta(hours=30))
        clock.advance(hours=10)  # 20h before start

        outcome = await engine.reservations.cancel(reservation.id, borrower, "Sick")

        assert outcome.trust_score_impact == -5
        assert outcome.penalty_reason == "Late cancellation (less than 24 hours notice)"
        entries = await ledger_entries(store, borrower.id)
        assert [e.change for e in entries] == [-5]
        assert (await load_user(store, borrower.id)).trust_score == 95

    async def test_cancellation_after_start_costs_ten(self, engine, store, clock, staff, borrower, item):
        reservation = await self._approved(engine, clock, staff, borrower, item, timedelta(hours=2))
        clock.advance(hours=3)

        outcome = await engine.reservations.cancel(reservation.id, borrower, "Forgot")

        assert outcome.trust_score_impact == -10
        assert outcome.penalty_reason == "Very late cancellation (after scheduled start time)"
        assert (await load_user(store, borrower.id)).trust_score == 90

    async def test_staff_cancellation_carries_no_penalty(self, engine, store, clock, staff, borrower, item):
        reservation = await self._approved(engine, clock, staff, borrower, item, timedelta(hours=2))

        outcome = await engine.reservations.cancel(reservation.id, staff, "Equipment recalled")

        assert outcome.trust_score_impact == 0
        assert await ledger_entries(store, borrower.id) == []

    async def test_reason_is_required(self, engine, clock, staff, borrower, item):
        reservation = await self._approved(engine, clock, staff, borrower, item, timedelta(days=2))
        with pytest.raises(ValidationError):
            await engine.reservations.cancel(reservation.id, borrower, "  ")

    async def test_active_reservation_cannot_be_cancelled(self, engine, staff, borrower, item, make_loan):
        loan = await make_loan(borrower, staff, item)
        with pytest.raises(ConflictError):
            await engine.reservations.cancel(loan.id, borrower, "Too late")

    async def test_other_users_cannot_cancel(self, engine, clock, staff, borrower, other_user, item):
        reservation = await self._approved(engine, clock, staff, borrower, item, timedelta(days=2))
        with pytest.raises(PermissionDeniedError):
            await engine.reservations.cancel(reservation.id, other_user, "Not mine")


class TestModify:
    async def test_owner_can_move_pending_reservation(self, engine, clock, borrower, item):
        start = clock() + timedelta(days=3)
        reservation = await engine.reservations.request_reservation(borrower, item.id, start, start + timedelta(days=1))

        new_start = start + timedelta(days=2)
        outcome = await engine.reservations.modify(reservation.id, borrower, new_start, new_start + timedelta(days=1))

        assert outcome.reservation.start_date == new_start
        assert not outcome.requires_reapproval
        assert outcome.reservation.status == ReservationStatus.PENDING

    async def test_significant_owner_change_needs_reapproval(self, engine, store, clock, staff, borrower, item):
        start = clock() + timedelta(days=3)
        reservation = await engine.reservations.request_reservation(borrower, item.id, start, start + timedelta(days=1))
        await engine.reservations.approve(reservation.id, staff)

        new_start = start + timedelta(days=2)
        outcome = await engine.reservations.modify(reservation.id, borrower, new_start, new_start + timedelta(days=1))

        assert outcome.requires_reapproval
        assert outcome.reservation.status == ReservationStatus.PENDING
        assert outcome.reservation.approved_by_id is None
        assert (await load_item(store, item.id)).status == ItemStatus.AVAILABLE

    async def test_small_change_keeps_approval(self, engine, clock, staff, borrower, item):
        start = clock() + timedelta(days=3)
        reservation = await engine.reservations.request_reservation(borrower, item.id, start, start + timedelta(days=1))
        await engine.reservations.approve(reservation.id, staff)

        outcome = await engine.reservations.modify(
            reservation.id, borrower, start + timedelta(hours=4), start + timedelta(days=1, hours=4)
        )

        assert not outcome.requires_reapproval
        assert outcome.reservation.status == ReservationStatus.APPROVED

    async def test_owner_cannot_modify_shortly_before_start(self, engine, clock, borrower, item):
        start = clock() + timedelta(hours=1)
        reservation = await engine.reservations.request_reservation(borrower, item.id, start, start + timedelta(days=1))
        with pytest.raises(PermissionDeniedError):
            await engine.reservations.modify(
                reservation.id, borrower, start + timedelta(hours=2), start + timedelta(days=1)
            )

    async def test_modification_must_not_overlap(self, engine, clock, staff, borrower, other_user, item):
        start = clock() + timedelta(days=3)
        held = await engine.reservations.request_reservation(other_user, item.id, start, start + timedelta(days=1))
        await engine.reservations.approve(held.id, staff)
        later = start + timedelta(days=5)
        mine = await engine.reservations.request_reservation(borrower, item.id, later, later + timedelta(days=1))

        with pytest.raises(ConflictError):
            await engine.reservations.modify(mine.id, borrower, start, start + timedelta(hours=5))


class TestPermissionsPreview:
    async def test_owner_preview_warns_about_late_cancellation(self, engine, clock, borrower, item):
        start = clock() + timedelta(hours=10)
        reservation = await engine.reservations.request_reservation(borrower, item.id, start, start + timedelta(days=1))

        preview = await engine.reservations.permissions(reservation.id, borrower)

        assert preview.is_owner and not preview.is_staff
        assert preview.can_cancel and preview.can_modify
        assert preview.cancellation_trust_score_impact == -5
        assert preview.cancellation_warning is not None

    async def test_staff_preview_has_no_penalty(self, engine, clock, staff, borrower, item):
        start = clock() + timedelta(hours=10)
        reservation = await engine.reservations.request_reservation(borrower, item.id, start, start + timedelta(days=1))

        preview = await engine.reservations.permissions(reservation.id, staff)

        assert preview.is_staff and not preview.is_owner
        assert preview.cancellation_trust_score_impact == 0


class TestDelete:
    async def test_only_terminal_reservations_are_deleted(self, engine, store, clock, admin, borrower, item):
        start = clock() + timedelta(days=2)
        reservation = await engine.reservations.request_reservation(borrower, item.id, start, start + timedelta(days=1))

        with pytest.raises(ConflictError):
            await engine.reservations.delete(reservation.id, admin)

        await engine.reservations.cancel(reservation.id, borrower, "No longer needed")
        await engine.reservations.delete(reservation.id, admin)
        assert await load_reservation(store, reservation.id) is None

    async def test_staff_cannot_delete(self, engine, clock, staff, borrower, item):
        start = clock() + timedelta(days=2)
        reservation = await engine.reservations.request_reservation(borrower, item.id, start, start + timedelta(days=1))
        await engine.reservations.reject(reservation.id, staff, "Duplicate")
        with pytest.raises(PermissionDeniedError):
            await engine.reservations.delete(reservation.id, staff)


class TestVisibility:
    async def test_other_users_cannot_read(self, engine, clock, borrower, other_user, staff, item):
        start = clock() + timedelta(days=2)
        reservation = await engine.reservations.request_reservation(borrower, item.id, start, start + timedelta(days=1))

        with pytest.raises(PermissionDeniedError):
            await engine.reservations.get(reservation.id, other_user)
        assert (await engine.reservations.get(reservation.id, staff)).id == reservation.id
