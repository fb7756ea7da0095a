from sqlalchemy import Column, Integer, String, Boolean, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from app.database import Base, UTCDateTime, utcnow
from app.models.role import STAFF_ROLES


class User(Base):
    __tablename__ = "users"

    id          = Column(Integer, primary_key=True, index=True)
    fullName    = Column(String(150), nullable=False)
    email       = Column(String(255), unique=True, nullable=False, index=True)
    studentId   = Column(String(50), unique=True, nullable=True)   # NIM / staff number
    department  = Column(String(150), nullable=True)
    isActive    = Column(Boolean, default=True, nullable=False)
    bannedUntil = Column(UTCDateTime, nullable=True)               # blocks new borrow requests
    roleId      = Column(Integer, ForeignKey("roles.id"), nullable=False)
    createdAt   = Column(UTCDateTime, default=utcnow, server_default=func.now(), nullable=False)
    updatedAt   = Column(UTCDateTime, default=utcnow, server_default=func.now(),
                         onupdate=utcnow, nullable=False)

    # ─── Relationships ─────────────────────────────────────────────────────────
    role          = relationship("Role", back_populates="users")
    reservations  = relationship("Reservation", foreign_keys="Reservation.userId", back_populates="user")
    borrowings    = relationship("BorrowingTransaction", foreign_keys="BorrowingTransaction.userId",
                                 back_populates="user")
    waitlist      = relationship("WaitlistEntry", back_populates="user")
    notifications = relationship("Notification", back_populates="user", cascade="all, delete-orphan")
    audit_logs    = relationship("AuditLog", back_populates="user")

    @property
    def role_name(self) -> str:
        return self.role.name.value

    @property
    def is_staff(self) -> bool:
        return self.role.name in STAFF_ROLES

    def __repr__(self):
        return f"<User id={self.id} email={self.email} role={self.roleId}>"
