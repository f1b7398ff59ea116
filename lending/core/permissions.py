# lending/core/permissions.py
from enum import Enum
from typing import Dict, FrozenSet, Optional

from lending.models.user import User, UserRole
from lending.core.errors import PermissionDeniedError


class Capability(str, Enum):
    # items
    UPDATE_ITEM_STATUS = "UPDATE_ITEM_STATUS"
    FORCE_ITEM_STATUS = "FORCE_ITEM_STATUS"
    # reservations
    APPROVE_RESERVATION = "APPROVE_RESERVATION"
    REJECT_RESERVATION = "REJECT_RESERVATION"
    MANAGE_ANY_RESERVATION = "MANAGE_ANY_RESERVATION"  # cancel / modify / pickup on behalf of others
    VIEW_ANY_RESERVATION = "VIEW_ANY_RESERVATION"
    DELETE_RESERVATION = "DELETE_RESERVATION"
    # returns
    MANAGE_ANY_RETURN = "MANAGE_ANY_RETURN"
    CONFIRM_RETURN = "CONFIRM_RETURN"
    REVIEW_DAMAGE_REPORT = "REVIEW_DAMAGE_REPORT"
    # overdue
    VIEW_OVERDUE = "VIEW_OVERDUE"
    PROCESS_OVERDUE = "PROCESS_OVERDUE"
    SEND_NOTIFICATIONS = "SEND_NOTIFICATIONS"
    # reputation
    VIEW_ANY_REPUTATION = "VIEW_ANY_REPUTATION"


_STAFF_CAPABILITIES: FrozenSet[Capability] = frozenset({
    Capability.UPDATE_ITEM_STATUS,
    Capability.APPROVE_RESERVATION,
    Capability.REJECT_RESERVATION,
    Capability.MANAGE_ANY_RESERVATION,
    Capability.VIEW_ANY_RESERVATION,
    Capability.MANAGE_ANY_RETURN,
    Capability.CONFIRM_RETURN,
    Capability.REVIEW_DAMAGE_REPORT,
    Capability.VIEW_OVERDUE,
    Capability.PROCESS_OVERDUE,
    Capability.SEND_NOTIFICATIONS,
    Capability.VIEW_ANY_REPUTATION,
})

ROLE_CAPABILITIES: Dict[UserRole, FrozenSet[Capability]] = {
    UserRole.SUPER_ADMIN: frozenset(Capability),
    UserRole.MANAGER: _STAFF_CAPABILITIES | {Capability.FORCE_ITEM_STATUS},
    UserRole.STAFF: _STAFF_CAPABILITIES,
    UserRole.USER: frozenset(),
}

STAFF_ROLES = (UserRole.SUPER_ADMIN, UserRole.MANAGER, UserRole.STAFF)


def can(role: UserRole, capability: Capability) -> bool:
    return capability in ROLE_CAPABILITIES.get(UserRole(role), frozenset())


def is_staff(actor: Optional[User]) -> bool:
    """The scheduler runs with no actor and is treated as staff."""
    return actor is None or actor.role in STAFF_ROLES


def require(actor: Optional[User], capability: Capability) -> None:
    if actor is None:
        return
    if not can(actor.role, capability):
        raise PermissionDeniedError(
            f"Operation not permitted for role {actor.role.value}",
            rule=f"Requires capability {capability.value}",
        )
