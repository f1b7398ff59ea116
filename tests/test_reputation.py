# tests/test_reputation.py
from datetime import timedelta

import pytest

from lending.core.errors import NotFoundError, PermissionDeniedError
from lending.models.enum import ItemCondition
from tests.conftest import load_user


class TestLedger:
    async def test_apply_appends_entry_and_updates_cache(self, engine, store, borrower):
        async with store.transaction() as uow:
            entry = await engine.ledger.apply(uow, borrower.id, -7.5, "Manual correction")

        assert entry.previous_score == 100
        assert entry.new_score == 92.5
        assert (await load_user(store, borrower.id)).trust_score == 92.5

    async def test_zero_change_is_not_recorded(self, engine, store, borrower):
        async with store.transaction() as uow:
            assert await engine.ledger.apply(uow, borrower.id, 0, "Nothing") is None
        assert await engine.ledger.history(borrower.id, borrower) == []

    async def test_unknown_user(self, engine, store):
        with pytest.raises(NotFoundError):
            async with store.transaction() as uow:
                await engine.ledger.apply(uow, "ghost", -5, "Late")

    async def test_score_is_not_clamped(self, engine, store, borrower):
        async with store.transaction() as uow:
            for _ in range(4):
                await engine.ledger.apply(uow, borrower.id, -30, "Overdue")
        assert (await load_user(store, borrower.id)).trust_score == -20

    async def test_rollback_keeps_score_and_ledger_together(self, engine, store, borrower):
        with pytest.raises(RuntimeError):
            async with store.transaction() as uow:
                await engine.ledger.apply(uow, borrower.id, -10, "Late")
                raise RuntimeError("write failed")

        assert (await load_user(store, borrower.id)).trust_score == 100
        assert await engine.ledger.history(borrower.id, borrower) == []


class TestConsistency:
    async def test_cached_score_matches_ledger_after_a_full_loan(
        self, engine, store, clock, staff, borrower, item, make_loan
    ):
        loan = await make_loan(borrower, staff, item, length=timedelta(days=1))
        clock.now = loan.end_date + timedelta(days=6)
        await engine.overdue.scan(staff)
        initiation = await engine.returns.initiate_return(loan.id, borrower, clock(), ItemCondition.POOR)
        await engine.returns.confirm_return(initiation.return_record.id, True, staff)

        consistent, cached, expected = await engine.ledger.verify(borrower.id)

        assert consistent
        assert cached == expected == 100 - 12 - 10
        assert await engine.ledger.recompute(borrower.id) == cached


class TestHistoryAccess:
    async def test_newest_first(self, engine, store, borrower):
        async with store.transaction() as uow:
            await engine.ledger.apply(uow, borrower.id, -5, "First")
            await engine.ledger.apply(uow, borrower.id, -10, "Second")

        history = await engine.ledger.history(borrower.id, borrower)

        assert [e.reason for e in history] == ["Second", "First"]

    async def test_users_see_only_their_own(self, engine, borrower, other_user, staff):
        with pytest.raises(PermissionDeniedError):
            await engine.ledger.history(borrower.id, other_user)
        assert await engine.ledger.history(borrower.id, staff) == []
