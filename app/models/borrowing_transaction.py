import enum
from sqlalchemy import Column, Integer, Text, Boolean, ForeignKey, Enum
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base, UTCDateTime, utcnow


class BorrowingStatus(str, enum.Enum):
    PENDING   = "pending"
    ACTIVE    = "active"
    RETURNED  = "returned"
    OVERDUE   = "overdue"
    REJECTED  = "rejected"
    CANCELLED = "cancelled"


# Count toward the role's maxItems
OPEN_BORROWING_STATUSES = (BorrowingStatus.PENDING, BorrowingStatus.ACTIVE, BorrowingStatus.OVERDUE)
# Physically out (or approved to go out) and therefore occupying the timeline
HOLDING_BORROWING_STATUSES = (BorrowingStatus.ACTIVE, BorrowingStatus.OVERDUE)


class BorrowingTransaction(Base):
    __tablename__ = "borrowing_transactions"

    id                 = Column(Integer, primary_key=True, index=True)
    equipmentId        = Column(Integer, ForeignKey("equipment.id"), nullable=False, index=True)
    userId             = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    borrowDate         = Column(UTCDateTime, nullable=False)
    expectedReturnDate = Column(UTCDateTime, nullable=False)
    actualReturnDate   = Column(UTCDateTime, nullable=True)   # immutable once set
    status             = Column(Enum(BorrowingStatus), default=BorrowingStatus.PENDING,
                                nullable=False, index=True)
    purpose            = Column(Text, nullable=True)
    notes              = Column(Text, nullable=True)
    adminNotes         = Column(Text, nullable=True)
    returnCondition    = Column(Text, nullable=True)
    extensionCount     = Column(Integer, default=0, nullable=False)
    penaltyAmount      = Column(Integer, default=0, nullable=False)
    penaltyPaid        = Column(Boolean, default=False, nullable=False)
    approvedById       = Column(Integer, ForeignKey("users.id"), nullable=True)
    approvedAt         = Column(UTCDateTime, nullable=True)
    createdAt          = Column(UTCDateTime, default=utcnow, server_default=func.now(), nullable=False)
    updatedAt          = Column(UTCDateTime, default=utcnow, server_default=func.now(),
                                onupdate=utcnow, nullable=False)

    # ─── Relationships ─────────────────────────────────────────────────────────
    equipment   = relationship("Equipment", back_populates="borrowings")
    user        = relationship("User", foreign_keys=[userId], back_populates="borrowings")
    approved_by = relationship("User", foreign_keys=[approvedById])

    def __repr__(self):
        return f"<BorrowingTransaction id={self.id} status={self.status} equipmentId={self.equipmentId}>"
