"""initial schema

Revision ID: 0001
Revises:
Create Date: 2026-10-18 09:00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

TZ = sa.TIMESTAMP(timezone=True)

role_name           = sa.Enum("STUDENT", "LECTURER", "LAB_STAFF", "ADMIN", name="rolename")
equipment_condition = sa.Enum("EXCELLENT", "GOOD", "FAIR", "POOR", name="equipmentcondition")
reservation_status  = sa.Enum("PENDING", "APPROVED", "REJECTED", "CANCELLED", "COMPLETED",
                              name="reservationstatus")
borrowing_status    = sa.Enum("PENDING", "ACTIVE", "RETURNED", "OVERDUE", "REJECTED", "CANCELLED",
                              name="borrowingstatus")
maintenance_type     = sa.Enum("ROUTINE", "REPAIR", "CALIBRATION", "REPLACEMENT", name="maintenancetype")
maintenance_priority = sa.Enum("LOW", "MEDIUM", "HIGH", "URGENT", name="maintenancepriority")
maintenance_status   = sa.Enum("SCHEDULED", "IN_PROGRESS", "COMPLETED", "CANCELLED", name="maintenancestatus")
waitlist_priority    = sa.Enum("LOW", "NORMAL", "HIGH", "URGENT", name="waitlistpriority")
notification_type    = sa.Enum("INFO", "SUCCESS", "WARNING", "ERROR", "APPROVAL", "WAITLIST", "EQUIPMENT",
                               name="notificationtype")


def _timestamps(with_updated: bool = True) -> list[sa.Column]:
    cols = [sa.Column("createdAt", TZ, server_default=sa.func.now(), nullable=False)]
    if with_updated:
        cols.append(sa.Column("updatedAt", TZ, server_default=sa.func.now(), nullable=False))
    return cols


def upgrade() -> None:
    # ─── Roles & Users ────────────────────────────────────────────────────────
    op.create_table(
        "roles",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", role_name, nullable=False, unique=True),
    )
    op.create_index("ix_roles_id", "roles", ["id"])

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("fullName", sa.String(150), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("studentId", sa.String(50), nullable=True, unique=True),
        sa.Column("department", sa.String(150), nullable=True),
        sa.Column("isActive", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("bannedUntil", TZ, nullable=True),
        sa.Column("roleId", sa.Integer(), sa.ForeignKey("roles.id"), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_users_id", "users", ["id"])
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    # ─── Inventory ────────────────────────────────────────────────────────────
    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False, unique=True),
        sa.Column("description", sa.Text(), nullable=True),
        *_timestamps(with_updated=False),
    )
    op.create_index("ix_categories_id", "categories", ["id"])

    op.create_table(
        "equipment",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("serialNumber", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("categoryId", sa.Integer(), sa.ForeignKey("categories.id"), nullable=True),
        sa.Column("condition", equipment_condition, nullable=False, server_default="GOOD"),
        sa.Column("location", sa.String(200), nullable=True),
        sa.Column("lostAt", TZ, nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_equipment_id", "equipment", ["id"])
    op.create_index("ix_equipment_serialNumber", "equipment", ["serialNumber"], unique=True)

    # ─── Reservations ─────────────────────────────────────────────────────────
    op.create_table(
        "reservations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("equipmentId", sa.Integer(), sa.ForeignKey("equipment.id"), nullable=False),
        sa.Column("userId", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("startTime", TZ, nullable=False),
        sa.Column("endTime", TZ, nullable=False),
        sa.Column("status", reservation_status, nullable=False, server_default="PENDING"),
        sa.Column("approvalRequired", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("approvedById", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("approvedAt", TZ, nullable=True),
        sa.Column("systemNote", sa.Text(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint('"startTime" < "endTime"', name="ck_reservations_time_range"),
    )
    op.create_index("ix_reservations_id", "reservations", ["id"])
    op.create_index("ix_reservations_equipmentId", "reservations", ["equipmentId"])
    op.create_index("ix_reservations_userId", "reservations", ["userId"])
    op.create_index("ix_reservations_status", "reservations", ["status"])

    # No two pending/approved reservations may overlap on the same equipment.
    # Half-open ranges, so back-to-back bookings are allowed.
    op.execute("CREATE EXTENSION IF NOT EXISTS btree_gist")
    op.execute(
        'ALTER TABLE reservations ADD CONSTRAINT ex_reservations_no_overlap '
        'EXCLUDE USING gist ("equipmentId" WITH =, tstzrange("startTime", "endTime", \'[)\') WITH &&) '
        "WHERE (status IN ('PENDING', 'APPROVED'))"
    )

    # ─── Borrowing ────────────────────────────────────────────────────────────
    op.create_table(
        "borrowing_transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("equipmentId", sa.Integer(), sa.ForeignKey("equipment.id"), nullable=False),
        sa.Column("userId", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("borrowDate", TZ, nullable=False),
        sa.Column("expectedReturnDate", TZ, nullable=False),
        sa.Column("actualReturnDate", TZ, nullable=True),
        sa.Column("status", borrowing_status, nullable=False, server_default="PENDING"),
        sa.Column("purpose", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("adminNotes", sa.Text(), nullable=True),
        sa.Column("returnCondition", sa.Text(), nullable=True),
        sa.Column("extensionCount", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("penaltyAmount", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("penaltyPaid", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("approvedById", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("approvedAt", TZ, nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_borrowing_transactions_id", "borrowing_transactions", ["id"])
    op.create_index("ix_borrowing_transactions_equipmentId", "borrowing_transactions", ["equipmentId"])
    op.create_index("ix_borrowing_transactions_userId", "borrowing_transactions", ["userId"])
    op.create_index("ix_borrowing_transactions_status", "borrowing_transactions", ["status"])

    # ─── Maintenance ──────────────────────────────────────────────────────────
    op.create_table(
        "maintenance_schedules",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("equipmentId", sa.Integer(), sa.ForeignKey("equipment.id"), nullable=False),
        sa.Column("maintenanceType", maintenance_type, nullable=False, server_default="ROUTINE"),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("scheduledDate", TZ, nullable=False),
        sa.Column("estimatedDurationHours", sa.Numeric(6, 2), nullable=False, server_default="1"),
        sa.Column("priority", maintenance_priority, nullable=False, server_default="MEDIUM"),
        sa.Column("status", maintenance_status, nullable=False, server_default="SCHEDULED"),
        sa.Column("createdById", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_maintenance_schedules_id", "maintenance_schedules", ["id"])
    op.create_index("ix_maintenance_schedules_equipmentId", "maintenance_schedules", ["equipmentId"])
    op.create_index("ix_maintenance_schedules_status", "maintenance_schedules", ["status"])

    # ─── Waitlist ─────────────────────────────────────────────────────────────
    op.create_table(
        "waitlist_entries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("equipmentId", sa.Integer(), sa.ForeignKey("equipment.id"), nullable=False),
        sa.Column("userId", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("requestedStartTime", TZ, nullable=False),
        sa.Column("requestedEndTime", TZ, nullable=False),
        sa.Column("priority", waitlist_priority, nullable=False, server_default="NORMAL"),
        sa.Column("notifiedAt", TZ, nullable=True),
        *_timestamps(with_updated=False),
    )
    op.create_index("ix_waitlist_entries_id", "waitlist_entries", ["id"])
    op.create_index("ix_waitlist_entries_equipmentId", "waitlist_entries", ["equipmentId"])
    op.create_index("ix_waitlist_entries_userId", "waitlist_entries", ["userId"])

    # ─── Notifications & Audit ────────────────────────────────────────────────
    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("userId", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("type", notification_type, nullable=False, server_default="INFO"),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("data", sa.JSON(), nullable=True),
        sa.Column("isRead", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(with_updated=False),
    )
    op.create_index("ix_notifications_id", "notifications", ["id"])
    op.create_index("ix_notifications_userId", "notifications", ["userId"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("userId", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("action", sa.String(100), nullable=False),
        sa.Column("entityType", sa.String(100), nullable=False),
        sa.Column("entityId", sa.Integer(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        *_timestamps(with_updated=False),
    )
    op.create_index("ix_audit_logs_id", "audit_logs", ["id"])

    # ─── Seed roles ───────────────────────────────────────────────────────────
    op.bulk_insert(
        sa.table("roles", sa.column("name", role_name)),
        [{"name": name} for name in ("STUDENT", "LECTURER", "LAB_STAFF", "ADMIN")],
    )


def downgrade() -> None:
    for table in ("audit_logs", "notifications", "waitlist_entries", "maintenance_schedules",
                  "borrowing_transactions", "reservations", "equipment", "categories", "users", "roles"):
        op.drop_table(table)
    for enum_type in (notification_type, waitlist_priority, maintenance_status, maintenance_priority,
                      maintenance_type, borrowing_status, reservation_status, equipment_condition, role_name):
        enum_type.drop(op.get_bind(), checkfirst=True)
