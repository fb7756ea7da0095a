import enum
from datetime import timedelta
from sqlalchemy import Column, Integer, String, Text, ForeignKey, Enum, Numeric
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base, UTCDateTime, utcnow


class MaintenanceType(str, enum.Enum):
    ROUTINE     = "routine"
    REPAIR      = "repair"
    CALIBRATION = "calibration"
    REPLACEMENT = "replacement"


class MaintenancePriority(str, enum.Enum):
    LOW    = "low"
    MEDIUM = "medium"
    HIGH   = "high"
    URGENT = "urgent"


class MaintenanceStatus(str, enum.Enum):
    SCHEDULED   = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED   = "completed"
    CANCELLED   = "cancelled"


# Windows in these statuses no longer occupy the timeline
CLOSED_MAINTENANCE_STATUSES = (MaintenanceStatus.COMPLETED, MaintenanceStatus.CANCELLED)


class MaintenanceSchedule(Base):
    __tablename__ = "maintenance_schedules"

    id                     = Column(Integer, primary_key=True, index=True)
    equipmentId            = Column(Integer, ForeignKey("equipment.id"), nullable=False, index=True)
    maintenanceType        = Column(Enum(MaintenanceType), default=MaintenanceType.ROUTINE, nullable=False)
    title                  = Column(String(200), nullable=False)
    description            = Column(Text, nullable=True)
    scheduledDate          = Column(UTCDateTime, nullable=False)
    estimatedDurationHours = Column(Numeric(6, 2), default=1, nullable=False)
    priority               = Column(Enum(MaintenancePriority), default=MaintenancePriority.MEDIUM,
                                    nullable=False)
    status                 = Column(Enum(MaintenanceStatus), default=MaintenanceStatus.SCHEDULED,
                                    nullable=False, index=True)
    createdById            = Column(Integer, ForeignKey("users.id"), nullable=False)
    createdAt              = Column(UTCDateTime, default=utcnow, server_default=func.now(), nullable=False)
    updatedAt              = Column(UTCDateTime, default=utcnow, server_default=func.now(),
                                    onupdate=utcnow, nullable=False)

    # ─── Relationships ─────────────────────────────────────────────────────────
    equipment  = relationship("Equipment", back_populates="maintenance")
    created_by = relationship("User")

    @property
    def endDate(self):
        return self.scheduledDate + timedelta(hours=float(self.estimatedDurationHours))

    @property
    def is_blocking(self) -> bool:
        return self.status not in CLOSED_MAINTENANCE_STATUSES

    def __repr__(self):
        return f"<MaintenanceSchedule id={self.id} equipmentId={self.equipmentId} status={self.status}>"
