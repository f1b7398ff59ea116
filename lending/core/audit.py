# lending/core/audit.py
import logging
from datetime import datetime
from typing import Optional

from lending.db.store import UnitOfWork
from lending.models.audit import AuditEntry, AuditChanges
from lending.models.enum import AuditAction
from lending.models.user import User

logger = logging.getLogger(__name__)

ENTITY_ITEM = "Item"
ENTITY_RESERVATION = "Reservation"
ENTITY_RETURN = "Return"
ENTITY_DAMAGE_REPORT = "DamageReport"


async def record_audit(
    uow: UnitOfWork,
    action: AuditAction,
    entity_type: str,
    entity_id: str,
    actor: Optional[User],
    changes: AuditChanges,
    at: datetime,
) -> AuditEntry:
    """Append one audit row inside the caller's transaction."""
    entry = AuditEntry(
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        user_id=actor.id if actor else None,
        actor_role=actor.role.value if actor else None,
        changes=changes,
        created_at=at,
    )
    await uow.add_audit_entry(entry)
    logger.debug(f"Audit {action.value} on {entity_type} {entity_id} by {entry.user_id or 'system'}")
    return entry
