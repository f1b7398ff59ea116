# lending/models/enum.py
from enum import Enum


class ItemStatus(str, Enum):
    AVAILABLE = "AVAILABLE"
    RESERVED = "RESERVED"
    BORROWED = "BORROWED"
    MAINTENANCE = "MAINTENANCE"
    RETIRED = "RETIRED"  # terminal, but can be restored


class ItemCondition(str, Enum):
    EXCELLENT = "EXCELLENT"
    GOOD = "GOOD"
    FAIR = "FAIR"
    POOR = "POOR"
    DAMAGED = "DAMAGED"


class ReservationStatus(str, Enum):
    PENDING = "PENDING"      # submitted by the borrower
    APPROVED = "APPROVED"    # approved by staff, waiting for pickup
    ACTIVE = "ACTIVE"        # picked up
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"  # return confirmed


class ReturnStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    DAMAGED = "DAMAGED"


class DamageType(str, Enum):
    PHYSICAL = "PHYSICAL"
    FUNCTIONAL = "FUNCTIONAL"
    COSMETIC = "COSMETIC"
    MISSING_PARTS = "MISSING_PARTS"
    OTHER = "OTHER"


class DamageSeverity(str, Enum):
    MINOR = "MINOR"
    MODERATE = "MODERATE"
    MAJOR = "MAJOR"
    TOTAL_LOSS = "TOTAL_LOSS"


class DamageReportStatus(str, Enum):
    REPORTED = "REPORTED"
    UNDER_REVIEW = "UNDER_REVIEW"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    RESOLVED = "RESOLVED"


class OverdueSeverity(str, Enum):
    MODERATE = "MODERATE"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class NotificationType(str, Enum):
    REMINDER = "REMINDER"
    WARNING = "WARNING"
    FINAL_NOTICE = "FINAL_NOTICE"


class AuditAction(str, Enum):
    UPDATE_STATUS = "UPDATE_STATUS"
    AUTO_UPDATE_STATUS = "AUTO_UPDATE_STATUS"
    CREATE_RESERVATION = "CREATE_RESERVATION"
    APPROVE_RESERVATION = "APPROVE_RESERVATION"
    REJECT_RESERVATION = "REJECT_RESERVATION"
    CANCEL_RESERVATION = "CANCEL_RESERVATION"
    MODIFY_RESERVATION = "MODIFY_RESERVATION"
    CONFIRM_PICKUP = "CONFIRM_PICKUP"
    BULK_CONFIRM_PICKUP = "BULK_CONFIRM_PICKUP"
    DELETE_RESERVATION = "DELETE_RESERVATION"
    INITIATE_RETURN = "INITIATE_RETURN"
    APPROVE_RETURN = "APPROVE_RETURN"
    REJECT_RETURN = "REJECT_RETURN"
    CREATE_DAMAGE_REPORT = "CREATE_DAMAGE_REPORT"
    UPDATE_DAMAGE_REPORT = "UPDATE_DAMAGE_REPORT"
    PROCESS_OVERDUE_ITEM = "PROCESS_OVERDUE_ITEM"
    SEND_LATE_RETURN_NOTIFICATION = "SEND_LATE_RETURN_NOTIFICATION"


# Reservation states that hold the item for their date range.
BLOCKING_RESERVATION_STATUSES = (ReservationStatus.APPROVED, ReservationStatus.ACTIVE)
# Reservation states that are still "open" from the item's point of view.
OPEN_RESERVATION_STATUSES = (
    ReservationStatus.PENDING,
    ReservationStatus.APPROVED,
    ReservationStatus.ACTIVE,
)
TERMINAL_RESERVATION_STATUSES = (
    ReservationStatus.CANCELLED,
    ReservationStatus.REJECTED,
    ReservationStatus.COMPLETED,
)
