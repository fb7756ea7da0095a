"""
Import all models here so that:
1. Alembic can auto-detect them when generating migrations
2. Relationships between models resolve correctly

Order matters: import parent tables before child tables.
"""

from app.models.role import Role
from app.models.user import User
from app.models.category import Category
from app.models.equipment import Equipment
from app.models.reservation import Reservation
from app.models.borrowing_transaction import BorrowingTransaction
from app.models.maintenance_schedule import MaintenanceSchedule
from app.models.waitlist_entry import WaitlistEntry
from app.models.notification import Notification
from app.models.audit_log import AuditLog

__all__ = [
    "Role",
    "User",
    "Category",
    "Equipment",
    "Reservation",
    "BorrowingTransaction",
    "MaintenanceSchedule",
    "WaitlistEntry",
    "Notification",
    "AuditLog",
]
