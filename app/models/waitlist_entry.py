import enum
from sqlalchemy import Column, Integer, ForeignKey, Enum, case
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base, UTCDateTime, utcnow


class WaitlistPriority(str, enum.Enum):
    LOW    = "low"
    NORMAL = "normal"
    HIGH   = "high"
    URGENT = "urgent"


PRIORITY_RANK = {
    WaitlistPriority.LOW:    0,
    WaitlistPriority.NORMAL: 1,
    WaitlistPriority.HIGH:   2,
    WaitlistPriority.URGENT: 3,
}


class WaitlistEntry(Base):
    __tablename__ = "waitlist_entries"

    id                 = Column(Integer, primary_key=True, index=True)
    equipmentId        = Column(Integer, ForeignKey("equipment.id"), nullable=False, index=True)
    userId             = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    requestedStartTime = Column(UTCDateTime, nullable=False)
    requestedEndTime   = Column(UTCDateTime, nullable=False)
    priority           = Column(Enum(WaitlistPriority), default=WaitlistPriority.NORMAL, nullable=False)
    notifiedAt         = Column(UTCDateTime, nullable=True)
    createdAt          = Column(UTCDateTime, default=utcnow, server_default=func.now(), nullable=False)

    # ─── Relationships ─────────────────────────────────────────────────────────
    equipment = relationship("Equipment", back_populates="waitlist")
    user      = relationship("User", back_populates="waitlist")

    def __repr__(self):
        return f"<WaitlistEntry id={self.id} equipmentId={self.equipmentId} priority={self.priority}>"


# SQL expression for (priority desc, createdAt asc, id asc) ordering
priority_rank = case(
    *[(WaitlistEntry.priority == p, rank) for p, rank in PRIORITY_RANK.items()],
    else_=0,
)

PROMOTION_ORDER = (priority_rank.desc(), WaitlistEntry.createdAt.asc(), WaitlistEntry.id.asc())
