import enum
from sqlalchemy import Column, Integer, String, Text, Boolean, ForeignKey, Enum, CheckConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base, UTCDateTime, utcnow


class ReservationStatus(str, enum.Enum):
    PENDING   = "pending"
    APPROVED  = "approved"
    REJECTED  = "rejected"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


# Statuses that occupy the equipment timeline
BLOCKING_RESERVATION_STATUSES = (ReservationStatus.PENDING, ReservationStatus.APPROVED)

# PostgreSQL exclusion constraint created by the initial migration
RESERVATION_OVERLAP_CONSTRAINT = "ex_reservations_no_overlap"

RESERVATION_TRANSITIONS = {
    ReservationStatus.PENDING:   {ReservationStatus.APPROVED, ReservationStatus.REJECTED,
                                  ReservationStatus.CANCELLED},
    ReservationStatus.APPROVED:  {ReservationStatus.CANCELLED, ReservationStatus.COMPLETED},
    ReservationStatus.REJECTED:  set(),
    ReservationStatus.CANCELLED: set(),
    ReservationStatus.COMPLETED: set(),
}


class Reservation(Base):
    __tablename__ = "reservations"
    __table_args__ = (
        CheckConstraint('"startTime" < "endTime"', name="ck_reservations_time_range"),
    )

    id               = Column(Integer, primary_key=True, index=True)
    equipmentId      = Column(Integer, ForeignKey("equipment.id"), nullable=False, index=True)
    userId           = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    title            = Column(String(200), nullable=False)
    description      = Column(Text, nullable=True)
    startTime        = Column(UTCDateTime, nullable=False)   # inclusive
    endTime          = Column(UTCDateTime, nullable=False)   # exclusive
    status           = Column(Enum(ReservationStatus), default=ReservationStatus.PENDING,
                              nullable=False, index=True)
    approvalRequired = Column(Boolean, default=False, nullable=False)
    approvedById     = Column(Integer, ForeignKey("users.id"), nullable=True)
    approvedAt       = Column(UTCDateTime, nullable=True)
    systemNote       = Column(Text, nullable=True)
    createdAt        = Column(UTCDateTime, default=utcnow, server_default=func.now(), nullable=False)
    updatedAt        = Column(UTCDateTime, default=utcnow, server_default=func.now(),
                              onupdate=utcnow, nullable=False)

    # ─── Relationships ─────────────────────────────────────────────────────────
    equipment   = relationship("Equipment", back_populates="reservations")
    user        = relationship("User", foreign_keys=[userId], back_populates="reservations")
    approved_by = relationship("User", foreign_keys=[approvedById])

    @property
    def is_terminal(self) -> bool:
        return not RESERVATION_TRANSITIONS[self.status]

    def can_transition_to(self, target: ReservationStatus) -> bool:
        return target in RESERVATION_TRANSITIONS[self.status]

    def __repr__(self):
        return f"<Reservation id={self.id} status={self.status} equipmentId={self.equipmentId}>"
