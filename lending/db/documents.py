# lending/db/documents.py
"""Beanie documents persisting the domain entities one collection each."""
from beanie import Document
from pydantic import Field
from pymongo import IndexModel, ASCENDING, DESCENDING

from lending.core.utils import new_id
from lending.models.audit import AuditEntry
from lending.models.damage import DamageReport
from lending.models.item import Item
from lending.models.reputation import ReputationEntry
from lending.models.reservation import Reservation
from lending.models.return_record import ReturnRecord
from lending.models.user import User


class ItemDocument(Item, Document):
    id: str = Field(default_factory=new_id)

    class Settings:
        name = "items"
        indexes = [
            IndexModel([("name", ASCENDING)], name="item_name_index"),
            IndexModel([("status", ASCENDING)], name="item_status_index"),
        ]


class ReservationDocument(Reservation, Document):
    id: str = Field(default_factory=new_id)

    class Settings:
        name = "reservations"
        indexes = [
            IndexModel([("item_id", ASCENDING), ("status", ASCENDING)], name="reservation_item_status_index"),
            IndexModel([("user_id", ASCENDING)], name="reservation_user_index"),
            IndexModel([("status", ASCENDING), ("end_date", ASCENDING)], name="reservation_status_end_index"),
        ]


class ReturnDocument(ReturnRecord, Document):
    id: str = Field(default_factory=new_id)

    class Settings:
        name = "returns"
        indexes = [
            # one return per reservation
            IndexModel([("reservation_id", ASCENDING)], name="return_reservation_unique_index", unique=True),
            IndexModel([("status", ASCENDING)], name="return_status_index"),
        ]


class DamageReportDocument(DamageReport, Document):
    id: str = Field(default_factory=new_id)

    class Settings:
        name = "damage_reports"
        indexes = [
            IndexModel([("return_id", ASCENDING)], name="damage_report_return_index"),
            IndexModel([("user_id", ASCENDING), ("created_at", DESCENDING)], name="damage_report_user_index"),
            IndexModel([("status", ASCENDING)], name="damage_report_status_index"),
        ]


class UserDocument(User, Document):
    id: str = Field(default_factory=new_id)

    class Settings:
        name = "users"
        indexes = [
            IndexModel([("username", ASCENDING)], name="user_username_unique_index", unique=True),
        ]


class ReputationEntryDocument(ReputationEntry, Document):
    id: str = Field(default_factory=new_id)

    class Settings:
        name = "reputation_history"
        indexes = [
            IndexModel([("user_id", ASCENDING), ("created_at", ASCENDING)], name="reputation_user_time_index"),
        ]


class AuditEntryDocument(AuditEntry, Document):
    id: str = Field(default_factory=new_id)

    class Settings:
        name = "audit_log"
        indexes = [
            IndexModel(
                [("entity_type", ASCENDING), ("entity_id", ASCENDING), ("created_at", DESCENDING)],
                name="audit_entity_index",
            ),
        ]


DOCUMENT_MODELS = [
    ItemDocument,
    ReservationDocument,
    ReturnDocument,
    DamageReportDocument,
    UserDocument,
    ReputationEntryDocument,
    AuditEntryDocument,
]
