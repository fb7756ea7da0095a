import enum
from sqlalchemy import Column, Integer, String, Text, Boolean, ForeignKey, Enum, JSON
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base, UTCDateTime, utcnow


class NotificationType(str, enum.Enum):
    INFO      = "info"
    SUCCESS   = "success"
    WARNING   = "warning"
    ERROR     = "error"
    APPROVAL  = "approval"
    WAITLIST  = "waitlist"
    EQUIPMENT = "equipment"


class Notification(Base):
    __tablename__ = "notifications"

    id        = Column(Integer, primary_key=True, index=True)
    userId    = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    type      = Column(Enum(NotificationType), default=NotificationType.INFO, nullable=False)
    title     = Column(String(200), nullable=False)
    message   = Column(Text, nullable=False)
    data      = Column(JSON, nullable=True)
    isRead    = Column(Boolean, default=False, nullable=False)
    createdAt = Column(UTCDateTime, default=utcnow, server_default=func.now(), nullable=False)

    # ─── Relationships ─────────────────────────────────────────────────────────
    user = relationship("User", back_populates="notifications")

    def __repr__(self):
        return f"<Notification id={self.id} userId={self.userId} type={self.type}>"
