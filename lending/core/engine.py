# lending/core/engine.py
import logging
from typing import Callable, Optional

from lending.core.bulk import BulkOperationCoordinator
from lending.core.damage import DamageReportProcessor
from lending.core.errors import NotFoundError
from lending.core.item_status import ItemStatusManager
from lending.core.notifications import LoggingNotificationSink, NotificationSink
from lending.core.overdue import OverdueProcessor
from lending.core.policy import DEFAULT_POLICY, LendingPolicy
from lending.core.reputation import ReputationLedger
from lending.core.reservations import ReservationLifecycle
from lending.core.returns import ReturnProcessor
from lending.core.utils import utcnow
from lending.db.store import LendingStore
from lending.models.user import User

logger = logging.getLogger(__name__)


class LendingEngine:
    """Wires every lifecycle component to one store, policy, notifier and clock."""

    def __init__(
        self,
        store: LendingStore,
        policy: LendingPolicy = DEFAULT_POLICY,
        notifier: Optional[NotificationSink] = None,
        clock: Callable = utcnow,
    ):
        self.store = store
        self.policy = policy
        self.notifier = notifier or LoggingNotificationSink()
        self.clock = clock

        self.ledger = ReputationLedger(store, policy, clock)
        self.items = ItemStatusManager(store, clock)
        self.reservations = ReservationLifecycle(store, self.items, self.ledger, policy, clock)
        self.returns = ReturnProcessor(store, self.items, self.reservations, self.ledger, policy, clock)
        self.damage = DamageReportProcessor(store, self.items, self.ledger, clock)
        self.overdue = OverdueProcessor(store, self.ledger, self.notifier, policy, clock)
        self.bulk = BulkOperationCoordinator(self.reservations, self.returns)
        logger.debug(f"Lending engine ready on {type(store).__name__}")

    async def get_user_by_username(self, username: str) -> Optional[User]:
        async with self.store.transaction() as uow:
            return await uow.get_user_by_username(username)

    async def get_user(self, user_id: str) -> User:
        async with self.store.transaction() as uow:
            user = await uow.get_user(user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")
        return user
