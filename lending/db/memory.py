# lending/db/memory.py
import asyncio
import copy
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import AsyncIterator, Dict, Iterable, List, Optional

from lending.db.store import LendingStore, UnitOfWork
from lending.models.item import Item
from lending.models.reservation import Reservation
from lending.models.return_record import ReturnRecord
from lending.models.user import User
from lending.models.reputation import ReputationEntry
from lending.models.damage import DamageReport
from lending.models.audit import AuditEntry
from lending.models.enum import AuditAction, DamageReportStatus, DamageSeverity, DamageType, ReservationStatus


@dataclass
class _State:
    items: Dict[str, Item] = field(default_factory=dict)
    reservations: Dict[str, Reservation] = field(default_factory=dict)
    returns: Dict[str, ReturnRecord] = field(default_factory=dict)
    damage_reports: Dict[str, DamageReport] = field(default_factory=dict)
    users: Dict[str, User] = field(default_factory=dict)
    reputation: List[ReputationEntry] = field(default_factory=list)
    audit: List[AuditEntry] = field(default_factory=list)


def _copy(model):
    return model.model_copy(deep=True) if model is not None else None


class MemoryUnitOfWork(UnitOfWork):
    def __init__(self, state: _State):
        self._state = state

    async def get_item(self, item_id: str) -> Optional[Item]:
        return _copy(self._state.items.get(item_id))

    async def save_item(self, item: Item) -> None:
        self._state.items[item.id] = _copy(item)

    async def lock_item(self, item_id: str) -> None:
        # transactions are already serialized by the store lock
        return None

    async def get_reservation(self, reservation_id: str) -> Optional[Reservation]:
        return _copy(self._state.reservations.get(reservation_id))

    async def save_reservation(self, reservation: Reservation) -> None:
        self._state.reservations[reservation.id] = _copy(reservation)

    async def delete_reservation(self, reservation_id: str) -> None:
        self._state.reservations.pop(reservation_id, None)

    async def find_reservations(
        self,
        item_id: Optional[str] = None,
        user_id: Optional[str] = None,
        statuses: Optional[Iterable[ReservationStatus]] = None,
        end_before: Optional[datetime] = None,
        ids: Optional[Iterable[str]] = None,
    ) -> List[Reservation]:
        wanted_statuses = set(statuses) if statuses is not None else None
        wanted_ids = set(ids) if ids is not None else None
        found = []
        for reservation in self._state.reservations.values():
            if item_id is not None and reservation.item_id != item_id:
                continue
            if user_id is not None and reservation.user_id != user_id:
                continue
            if wanted_statuses is not None and reservation.status not in wanted_statuses:
                continue
            if end_before is not None and not reservation.end_date < end_before:
                continue
            if wanted_ids is not None and reservation.id not in wanted_ids:
                continue
            found.append(_copy(reservation))
        return sorted(found, key=lambda r: r.start_date)

    async def get_return(self, return_id: str) -> Optional[ReturnRecord]:
        return _copy(self._state.returns.get(return_id))

    async def get_return_for_reservation(self, reservation_id: str) -> Optional[ReturnRecord]:
        for record in self._state.returns.values():
            if record.reservation_id == reservation_id:
                return _copy(record)
        return None

    async def save_return(self, return_record: ReturnRecord) -> None:
        self._state.returns[return_record.id] = _copy(return_record)

    async def get_damage_report(self, report_id: str) -> Optional[DamageReport]:
        return _copy(self._state.damage_reports.get(report_id))

    async def save_damage_report(self, report: DamageReport) -> None:
        self._state.damage_reports[report.id] = _copy(report)

    async def find_damage_reports(
        self,
        return_id: Optional[str] = None,
        user_id: Optional[str] = None,
        item_id: Optional[str] = None,
        status: Optional[DamageReportStatus] = None,
        severity: Optional[DamageSeverity] = None,
        damage_type: Optional[DamageType] = None,
    ) -> List[DamageReport]:
        wanted = {
            "return_id": return_id, "user_id": user_id, "item_id": item_id,
            "status": status, "severity": severity, "damage_type": damage_type,
        }
        found = [
            _copy(r) for r in self._state.damage_reports.values()
            if all(value is None or getattr(r, name) == value for name, value in wanted.items())
        ]
        return sorted(found, key=lambda r: r.created_at, reverse=True)

    async def get_user(self, user_id: str) -> Optional[User]:
        return _copy(self._state.users.get(user_id))

    async def get_user_by_username(self, username: str) -> Optional[User]:
        for user in self._state.users.values():
            if user.username == username:
                return _copy(user)
        return None

    async def save_user(self, user: User) -> None:
        self._state.users[user.id] = _copy(user)

    async def add_reputation_entry(self, entry: ReputationEntry) -> None:
        self._state.reputation.append(_copy(entry))

    async def find_reputation_entries(self, user_id: str) -> List[ReputationEntry]:
        return [_copy(e) for e in self._state.reputation if e.user_id == user_id]

    async def add_audit_entry(self, entry: AuditEntry) -> None:
        self._state.audit.append(_copy(entry))

    async def find_audit_entries(
        self,
        entity_type: str,
        entity_id: str,
        actions: Optional[Iterable[AuditAction]] = None,
    ) -> List[AuditEntry]:
        wanted = set(actions) if actions is not None else None
        return [
            _copy(e) for e in self._state.audit
            if e.entity_type == entity_type
            and e.entity_id == entity_id
            and (wanted is None or e.action in wanted)
        ]


class InMemoryStore(LendingStore):
    """Process-local store used by tests and demos.

    One lock serializes all transactions. The whole state is snapshotted on
    entry and restored if the block raises.
    """

    def __init__(self):
        self._state = _State()
        self._lock = asyncio.Lock()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[UnitOfWork]:
        async with self._lock:
            snapshot = copy.deepcopy(self._state)
            try:
                yield MemoryUnitOfWork(self._state)
            except BaseException:
                self._state = snapshot
                raise
