# lending/core/reputation.py
import logging
from typing import Callable, List, Optional, Tuple

from lending.core.errors import NotFoundError
from lending.core.permissions import Capability, require
from lending.core.policy import LendingPolicy
from lending.db.store import LendingStore, UnitOfWork
from lending.models.reputation import ReputationEntry
from lending.models.user import User

logger = logging.getLogger(__name__)


class ReputationLedger:
    """Append-only trust score ledger.

    The entries are the source of truth. ``User.trust_score`` is a cached
    projection that is only ever changed here, inside the same transaction
    that appends the entry, so ``baseline + sum(change) == trust_score``.
    """

    def __init__(self, store: LendingStore, policy: LendingPolicy, clock: Callable):
        self.store = store
        self.policy = policy
        self.clock = clock

    async def apply(
        self, uow: UnitOfWork, user_id: str, change: float, reason: str
    ) -> Optional[ReputationEntry]:
        if change == 0:
            return None
        user = await uow.get_user(user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found", rule="Trust score changes need an existing user")
        previous = user.trust_score
        entry = ReputationEntry(
            user_id=user_id,
            change=change,
            reason=reason,
            previous_score=previous,
            new_score=previous + change,
            created_at=self.clock(),
        )
        user.trust_score = entry.new_score
        user.updated_at = entry.created_at
        await uow.add_reputation_entry(entry)
        await uow.save_user(user)
        logger.info(f"Trust score for user {user_id}: {previous} -> {entry.new_score} ({reason})")
        return entry

    async def history(self, user_id: str, actor: User) -> List[ReputationEntry]:
        if actor.id != user_id:
            require(actor, Capability.VIEW_ANY_REPUTATION)
        async with self.store.transaction() as uow:
            if await uow.get_user(user_id) is None:
                raise NotFoundError(f"User {user_id} not found")
            entries = await uow.find_reputation_entries(user_id)
        return list(reversed(entries))

    async def recompute(self, user_id: str) -> float:
        """Score implied by the ledger alone."""
        async with self.store.transaction() as uow:
            entries = await uow.find_reputation_entries(user_id)
        return self.policy.trust_score_baseline + sum(e.change for e in entries)

    async def verify(self, user_id: str) -> Tuple[bool, float, float]:
        """(consistent, cached score, ledger score)."""
        async with self.store.transaction() as uow:
            user = await uow.get_user(user_id)
            if user is None:
                raise NotFoundError(f"User {user_id} not found")
            entries = await uow.find_reputation_entries(user_id)
        expected = self.policy.trust_score_baseline + sum(e.change for e in entries)
        consistent = abs(expected - user.trust_score) < 1e-9
        if not consistent:
            logger.warning(f"Trust score drift for user {user_id}: cached {user.trust_score}, ledger {expected}")
        return consistent, user.trust_score, expected
