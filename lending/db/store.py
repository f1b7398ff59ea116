# lending/db/store.py
from abc import ABC, abstractmethod
from datetime import datetime
from typing import AsyncContextManager, Iterable, List, Optional

from lending.models.item import Item
from lending.models.reservation import Reservation
from lending.models.return_record import ReturnRecord
from lending.models.user import User
from lending.models.reputation import ReputationEntry
from lending.models.damage import DamageReport
from lending.models.audit import AuditEntry
from lending.models.enum import AuditAction, DamageReportStatus, DamageSeverity, DamageType, ReservationStatus


class UnitOfWork(ABC):
    """Reads and writes staged inside one transaction.

    Everything saved through a unit of work commits together when the
    ``transaction()`` block exits normally and is discarded when it raises.
    """

    # --- items ---
    @abstractmethod
    async def get_item(self, item_id: str) -> Optional[Item]: ...

    @abstractmethod
    async def save_item(self, item: Item) -> None: ...

    @abstractmethod
    async def lock_item(self, item_id: str) -> None:
        """Serialize concurrent transactions that touch the same item."""

    # --- reservations ---
    @abstractmethod
    async def get_reservation(self, reservation_id: str) -> Optional[Reservation]: ...

    @abstractmethod
    async def save_reservation(self, reservation: Reservation) -> None: ...

    @abstractmethod
    async def delete_reservation(self, reservation_id: str) -> None: ...

    @abstractmethod
    async def find_reservations(
        self,
        item_id: Optional[str] = None,
        user_id: Optional[str] = None,
        statuses: Optional[Iterable[ReservationStatus]] = None,
        end_before: Optional[datetime] = None,
        ids: Optional[Iterable[str]] = None,
    ) -> List[Reservation]:
        """Reservations matching every given filter, ordered by start date."""

    # --- returns ---
    @abstractmethod
    async def get_return(self, return_id: str) -> Optional[ReturnRecord]: ...

    @abstractmethod
    async def get_return_for_reservation(self, reservation_id: str) -> Optional[ReturnRecord]: ...

    @abstractmethod
    async def save_return(self, return_record: ReturnRecord) -> None: ...

    # --- damage reports ---
    @abstractmethod
    async def get_damage_report(self, report_id: str) -> Optional[DamageReport]: ...

    @abstractmethod
    async def save_damage_report(self, report: DamageReport) -> None: ...

    @abstractmethod
    async def find_damage_reports(
        self,
        return_id: Optional[str] = None,
        user_id: Optional[str] = None,
        item_id: Optional[str] = None,
        status: Optional[DamageReportStatus] = None,
        severity: Optional[DamageSeverity] = None,
        damage_type: Optional[DamageType] = None,
    ) -> List[DamageReport]:
        """Reports matching every given filter, newest first."""

    # --- users / reputation ---
    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[User]: ...

    @abstractmethod
    async def get_user_by_username(self, username: str) -> Optional[User]: ...

    @abstractmethod
    async def save_user(self, user: User) -> None: ...

    @abstractmethod
    async def add_reputation_entry(self, entry: ReputationEntry) -> None: ...

    @abstractmethod
    async def find_reputation_entries(self, user_id: str) -> List[ReputationEntry]:
        """Ledger rows for one user, oldest first."""

    # --- audit ---
    @abstractmethod
    async def add_audit_entry(self, entry: AuditEntry) -> None: ...

    @abstractmethod
    async def find_audit_entries(
        self,
        entity_type: str,
        entity_id: str,
        actions: Optional[Iterable[AuditAction]] = None,
    ) -> List[AuditEntry]:
        """Audit rows for one entity, oldest first."""


class LendingStore(ABC):
    @abstractmethod
    def transaction(self) -> AsyncContextManager[UnitOfWork]:
        """``async with store.transaction() as uow:`` commits on success, rolls back on error."""
