# lending/db/mongo.py
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Iterable, List, Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorClientSession
from pymongo.errors import PyMongoError

from lending.core.errors import ConflictError
from lending.db.documents import (
    AuditEntryDocument,
    DamageReportDocument,
    ItemDocument,
    ReputationEntryDocument,
    ReservationDocument,
    ReturnDocument,
    UserDocument,
)
from lending.db.store import LendingStore, UnitOfWork
from lending.models.audit import AuditEntry
from lending.models.damage import DamageReport
from lending.models.enum import AuditAction, DamageReportStatus, DamageSeverity, DamageType, ReservationStatus
from lending.models.item import Item
from lending.models.reputation import ReputationEntry
from lending.models.reservation import Reservation
from lending.models.return_record import ReturnRecord
from lending.models.user import User

logger = logging.getLogger(__name__)


def _to_entity(model_cls, doc):
    if doc is None:
        return None
    return model_cls.model_validate(doc.model_dump(exclude={"revision_id"}))


def _to_document(document_cls, entity):
    return document_cls.model_validate(entity.model_dump())


class MongoUnitOfWork(UnitOfWork):
    """Every call runs on the session of the surrounding Motor transaction."""

    def __init__(self, session: AsyncIOMotorClientSession):
        self.session = session

    async def get_item(self, item_id: str) -> Optional[Item]:
        return _to_entity(Item, await ItemDocument.get(item_id, session=self.session))

    async def save_item(self, item: Item) -> None:
        await _to_document(ItemDocument, item).save(session=self.session)

    async def lock_item(self, item_id: str) -> None:
        # A write on the item document makes any concurrent transaction that
        # also locks this item fail with a write conflict.
        await ItemDocument.get_motor_collection().update_one(
            {"_id": item_id}, {"$inc": {"lock_version": 1}}, session=self.session
        )

    async def get_reservation(self, reservation_id: str) -> Optional[Reservation]:
        return _to_entity(Reservation, await ReservationDocument.get(reservation_id, session=self.session))

    async def save_reservation(self, reservation: Reservation) -> None:
        await _to_document(ReservationDocument, reservation).save(session=self.session)

    async def delete_reservation(self, reservation_id: str) -> None:
        doc = await ReservationDocument.get(reservation_id, session=self.session)
        if doc is not None:
            await doc.delete(session=self.session)

    async def find_reservations(
        self,
        item_id: Optional[str] = None,
        user_id: Optional[str] = None,
        statuses: Optional[Iterable[ReservationStatus]] = None,
        end_before: Optional[datetime] = None,
        ids: Optional[Iterable[str]] = None,
    ) -> List[Reservation]:
        query = {}
        if item_id is not None:
            query["item_id"] = item_id
        if user_id is not None:
            query["user_id"] = user_id
        if statuses is not None:
            query["status"] = {"$in": [ReservationStatus(s).value for s in statuses]}
        if end_before is not None:
            query["end_date"] = {"$lt": end_before}
        if ids is not None:
            query["_id"] = {"$in": list(ids)}
        docs = await ReservationDocument.find(query, session=self.session).sort("+start_date").to_list()
        return [_to_entity(Reservation, d) for d in docs]

    async def get_return(self, return_id: str) -> Optional[ReturnRecord]:
        return _to_entity(ReturnRecord, await ReturnDocument.get(return_id, session=self.session))

    async def get_return_for_reservation(self, reservation_id: str) -> Optional[ReturnRecord]:
        doc = await ReturnDocument.find_one({"reservation_id": reservation_id}, session=self.session)
        return _to_entity(ReturnRecord, doc)

    async def save_return(self, return_record: ReturnRecord) -> None:
        await _to_document(ReturnDocument, return_record).save(session=self.session)

    async def get_damage_report(self, report_id: str) -> Optional[DamageReport]:
        return _to_entity(DamageReport, await DamageReportDocument.get(report_id, session=self.session))

    async def save_damage_report(self, report: DamageReport) -> None:
        await _to_document(DamageReportDocument, report).save(session=self.session)

    async def find_damage_reports(
        self,
        return_id: Optional[str] = None,
        user_id: Optional[str] = None,
        item_id: Optional[str] = None,
        status: Optional[DamageReportStatus] = None,
        severity: Optional[DamageSeverity] = None,
        damage_type: Optional[DamageType] = None,
    ) -> List[DamageReport]:
        filters = {
            "return_id": return_id, "user_id": user_id, "item_id": item_id,
            "status": status, "severity": severity, "damage_type": damage_type,
        }
        query = {name: getattr(value, "value", value) for name, value in filters.items() if value is not None}
        docs = await DamageReportDocument.find(query, session=self.session).sort("-created_at").to_list()
        return [_to_entity(DamageReport, d) for d in docs]

    async def get_user(self, user_id: str) -> Optional[User]:
        return _to_entity(User, await UserDocument.get(user_id, session=self.session))

    async def get_user_by_username(self, username: str) -> Optional[User]:
        return _to_entity(User, await UserDocument.find_one({"username": username}, session=self.session))

    async def save_user(self, user: User) -> None:
        await _to_document(UserDocument, user).save(session=self.session)

    async def add_reputation_entry(self, entry: ReputationEntry) -> None:
        await _to_document(ReputationEntryDocument, entry).insert(session=self.session)

    async def find_reputation_entries(self, user_id: str) -> List[ReputationEntry]:
        docs = await ReputationEntryDocument.find(
            {"user_id": user_id}, session=self.session
        ).sort("+created_at").to_list()
        return [_to_entity(ReputationEntry, d) for d in docs]

    async def add_audit_entry(self, entry: AuditEntry) -> None:
        await _to_document(AuditEntryDocument, entry).insert(session=self.session)

    async def find_audit_entries(
        self,
        entity_type: str,
        entity_id: str,
        actions: Optional[Iterable[AuditAction]] = None,
    ) -> List[AuditEntry]:
        query = {"entity_type": entity_type, "entity_id": entity_id}
        if actions is not None:
            query["action"] = {"$in": [AuditAction(a).value for a in actions]}
        docs = await AuditEntryDocument.find(query, session=self.session).sort("+created_at").to_list()
        return [_to_entity(AuditEntry, d) for d in docs]


class MongoStore(LendingStore):
    """Runs each unit of work in a Motor session transaction (needs a replica set)."""

    def __init__(self, client: AsyncIOMotorClient):
        self.client = client

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[UnitOfWork]:
        try:
            async with await self.client.start_session() as session:
                async with session.start_transaction():
                    yield MongoUnitOfWork(session)
        except PyMongoError as e:
            if e.has_error_label("TransientTransactionError"):
                logger.warning(f"Transaction aborted by a concurrent write: {e}")
                raise ConflictError(
                    "The record was changed by a concurrent request",
                    rule="Concurrent writes on one item are serialized",
                    suggestion="Retry the operation",
                ) from e
            raise
