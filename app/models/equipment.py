import enum
from sqlalchemy import Column, Integer, String, Text, ForeignKey, Enum
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base, UTCDateTime, utcnow


class EquipmentStatus(str, enum.Enum):
    """Derived on read from reservations, borrowings and maintenance. Never stored."""
    AVAILABLE   = "available"
    BORROWED    = "borrowed"
    MAINTENANCE = "maintenance"
    LOST        = "lost"


class EquipmentCondition(str, enum.Enum):
    EXCELLENT = "excellent"
    GOOD      = "good"
    FAIR      = "fair"
    POOR      = "poor"


class Equipment(Base):
    __tablename__ = "equipment"

    id           = Column(Integer, primary_key=True, index=True)
    name         = Column(String(200), nullable=False)
    serialNumber = Column(String(100), unique=True, nullable=False, index=True)
    description  = Column(Text, nullable=True)
    categoryId   = Column(Integer, ForeignKey("categories.id"), nullable=True)
    condition    = Column(Enum(EquipmentCondition), default=EquipmentCondition.GOOD, nullable=False)
    location     = Column(String(200), nullable=True)
    lostAt       = Column(UTCDateTime, nullable=True)   # set once: permanently retired
    createdAt    = Column(UTCDateTime, default=utcnow, server_default=func.now(), nullable=False)
    updatedAt    = Column(UTCDateTime, default=utcnow, server_default=func.now(),
                          onupdate=utcnow, nullable=False)

    # ─── Relationships ─────────────────────────────────────────────────────────
    category     = relationship("Category", back_populates="equipment")
    reservations = relationship("Reservation", back_populates="equipment")
    borrowings   = relationship("BorrowingTransaction", back_populates="equipment")
    maintenance  = relationship("MaintenanceSchedule", back_populates="equipment")
    waitlist     = relationship("WaitlistEntry", back_populates="equipment")

    @property
    def is_lost(self) -> bool:
        return self.lostAt is not None

    def __repr__(self):
        return f"<Equipment id={self.id} name={self.name} serial={self.serialNumber}>"
