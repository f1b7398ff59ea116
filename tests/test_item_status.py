# tests/test_item_status.py
from datetime import timedelta

import pytest

from lending.core.errors import ConflictError, PermissionDeniedError, ValidationError
from lending.models.enum import AuditAction, ItemStatus, ReservationStatus
from tests.conftest import add_item, load_item, load_reservation


class TestTransitionTable:
    async def test_allowed_transition_is_applied_and_audited(self, engine, store, staff, item):
        change = await engine.items.apply_transition(item.id, ItemStatus.MAINTENANCE, staff, reason="Lamp check")

        assert change.previous_status == ItemStatus.AVAILABLE
        assert change.new_status == ItemStatus.MAINTENANCE
        assert (await load_item(store, item.id)).status == ItemStatus.MAINTENANCE

        history = await engine.items.status_history(item.id, staff)
        assert len(history.entries) == 1
        entry = history.entries[0]
        assert entry.action == AuditAction.UPDATE_STATUS
        assert entry.user_id == staff.id
        assert entry.changes.kind == "item_status"
        assert entry.changes.reason == "Lamp check"

    async def test_transition_outside_table_is_rejected(self, engine, store, staff):
        item = await add_item(store, status=ItemStatus.MAINTENANCE)
        with pytest.raises(ConflictError) as exc:
            await engine.items.apply_transition(item.id, ItemStatus.BORROWED, staff)
        assert "MAINTENANCE" in exc.value.message
        assert (await load_item(store, item.id)).status == ItemStatus.MAINTENANCE

    async def test_same_status_is_not_a_transition(self, engine, staff, item):
        with pytest.raises(ConflictError):
            await engine.items.apply_transition(item.id, ItemStatus.AVAILABLE, staff)

    async def test_unknown_status_is_a_validation_error(self, engine, staff, item):
        with pytest.raises(ValidationError):
            await engine.items.apply_transition(item.id, "LOST", staff)

    async def test_borrowed_needs_an_active_reservation(self, engine, staff, item):
        with pytest.raises(ConflictError) as exc:
            await engine.items.apply_transition(item.id, ItemStatus.BORROWED, staff)
        assert "active reservation" in exc.value.message


class TestGuards:
    async def test_retire_with_approved_reservation_is_refused(self, engine, store, clock, staff, borrower, item):
        start = clock() + timedelta(days=2)
        reservation = await engine.reservations.request_reservation(borrower, item.id, start, start + timedelta(days=1))
        await engine.reservations.approve(reservation.id, staff)

        with pytest.raises(ConflictError) as exc:
            await engine.items.apply_transition(item.id, ItemStatus.RETIRED, staff)

        assert exc.value.message == "Cannot retire item with active reservations"
        assert [c["id"] for c in exc.value.conflicts] == [reservation.id]
        assert (await load_item(store, item.id)).status == ItemStatus.RESERVED

    async def test_borrowed_item_cannot_go_to_maintenance(self, engine, store, staff, borrower, item, make_loan):
        await make_loan(borrower, staff, item)
        with pytest.raises(ConflictError) as exc:
            await engine.items.apply_transition(item.id, ItemStatus.MAINTENANCE, staff)
        assert exc.value.message == "Cannot move borrowed item to maintenance"
        assert (await load_item(store, item.id)).status == ItemStatus.BORROWED

    async def test_borrowed_item_cannot_be_released_while_on_loan(
        self, engine, store, staff, borrower, item, make_loan
    ):
        loan = await make_loan(borrower, staff, item)

        with pytest.raises(ConflictError) as exc:
            await engine.items.apply_transition(item.id, ItemStatus.AVAILABLE, staff)

        assert exc.value.suggestion == "Process the return first"
        assert [c["id"] for c in exc.value.conflicts] == [loan.id]
        assert (await load_item(store, item.id)).status == ItemStatus.BORROWED
        assert (await load_reservation(store, loan.id)).status == ReservationStatus.ACTIVE

    async def test_force_releases_a_borrowed_item(self, engine, store, staff, manager, borrower, item, make_loan):
        await make_loan(borrower, staff, item)

        change = await engine.items.apply_transition(item.id, ItemStatus.AVAILABLE, manager, force=True)

        assert change.forced
        assert (await load_item(store, item.id)).status == ItemStatus.AVAILABLE


class TestForce:
    async def test_staff_cannot_force(self, engine, staff, item):
        with pytest.raises(PermissionDeniedError):
            await engine.items.apply_transition(item.id, ItemStatus.RETIRED, staff, force=True)

    async def test_user_cannot_change_status(self, engine, borrower, item):
        with pytest.raises(PermissionDeniedError):
            await engine.items.apply_transition(item.id, ItemStatus.MAINTENANCE, borrower)

    async def test_force_bypasses_guards_and_cascades(self, engine, store, clock, staff, manager, borrower, item):
        start = clock() + timedelta(days=2)
        approved = await engine.reservations.request_reservation(borrower, item.id, start, start + timedelta(days=1))
        await engine.reservations.approve(approved.id, staff)
        later = start + timedelta(days=5)
        pending = await engine.reservations.request_reservation(borrower, item.id, later, later + timedelta(days=1))

        change = await engine.items.apply_transition(
            item.id, ItemStatus.RETIRED, manager, reason="Broken beyond repair", force=True
        )

        assert change.forced
        assert set(change.cancelled_reservation_ids) == {approved.id, pending.id}
        assert (await load_item(store, item.id)).status == ItemStatus.RETIRED
        for reservation_id in (approved.id, pending.id):
            assert (await load_reservation(store, reservation_id)).status == ReservationStatus.CANCELLED

    async def test_maintenance_cancels_pending_and_approved(self, engine, store, clock, staff, borrower, item):
        start = clock() + timedelta(days=1)
        reservation = await engine.reservations.request_reservation(borrower, item.id, start, start + timedelta(days=1))

        change = await engine.items.apply_transition(item.id, ItemStatus.MAINTENANCE, staff)

        assert change.cancelled_reservation_ids == [reservation.id]
        cancelled = await load_reservation(store, reservation.id)
        assert cancelled.cancellation_reason == "Item moved to maintenance status"


class TestReservationSync:
    async def test_item_follows_reservation_lifecycle(self, engine, store, clock, staff, borrower, item):
        start = clock() + timedelta(hours=3)
        reservation = await engine.reservations.request_reservation(borrower, item.id, start, start + timedelta(days=2))
        assert (await load_item(store, item.id)).status == ItemStatus.AVAILABLE

        await engine.reservations.approve(reservation.id, staff)
        assert (await load_item(store, item.id)).status == ItemStatus.RESERVED

        await engine.reservations.reject(reservation.id, staff, "Room booked for exams")
        assert (await load_item(store, item.id)).status == ItemStatus.AVAILABLE

        history = await engine.items.status_history(item.id, staff)
        actions = [e.action for e in history.entries]
        assert actions == [AuditAction.AUTO_UPDATE_STATUS, AuditAction.AUTO_UPDATE_STATUS]
        assert history.entries[0].changes.to_status == ItemStatus.AVAILABLE  # newest first

    async def test_item_stays_reserved_while_another_approval_holds_it(
        self, engine, store, clock, staff, borrower, other_user, item
    ):
        first_start = clock() + timedelta(days=1)
        first = await engine.reservations.request_reservation(
            borrower, item.id, first_start, first_start + timedelta(days=1)
        )
        second_start = first_start + timedelta(days=3)
        second = await engine.reservations.request_reservation(
            other_user, item.id, second_start, second_start + timedelta(days=1)
        )
        await engine.reservations.approve(first.id, staff)
        await engine.reservations.approve(second.id, staff)

        await engine.reservations.cancel(first.id, staff, "Event moved")
        assert (await load_item(store, item.id)).status == ItemStatus.RESERVED


class TestRecommendations:
    async def test_available_item_with_pending_requests(self, engine, clock, staff, borrower, item):
        start = clock() + timedelta(days=1)
        reservation = await engine.reservations.request_reservation(borrower, item.id, start, start + timedelta(days=1))

        recs = await engine.items.recommendations(item.id, staff)

        assert recs.pending_reservations == 1
        assert recs.recommendations[0].action == "approve_reservations"
        assert recs.recommendations[0].reservation_ids == [reservation.id]

    async def test_overdue_borrowed_item_suggests_processing_the_return(
        self, engine, clock, staff, borrower, item, make_loan
    ):
        loan = await make_loan(borrower, staff, item, length=timedelta(days=1))
        clock.advance(days=3)

        recs = await engine.items.recommendations(item.id, staff)

        assert recs.current_status == ItemStatus.BORROWED
        assert recs.recommendations[0].action == "process_return"
        assert recs.recommendations[0].reservation_ids == [loan.id]
