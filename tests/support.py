import unittest
from datetime import datetime, time, timedelta, timezone
from decimal import Decimal

from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.config import settings
from app.database import Base, get_db, utcnow
from app.main import app
from app.models import (
    Role, User, Category, Equipment, Reservation, BorrowingTransaction,
    MaintenanceSchedule, WaitlistEntry, Notification,
)
from app.models.role import RoleName
from app.models.reservation import ReservationStatus
from app.models.borrowing_transaction import BorrowingStatus

# A fixed day a week out keeps reservations in the future and cancellable.
DAY = (utcnow() + timedelta(days=7)).date()


def at(hour: int, minute: int = 0, day_offset: int = 0) -> datetime:
    return datetime.combine(DAY + timedelta(days=day_offset), time(hour, minute), tzinfo=timezone.utc)


def create_access_token(user_id: int, role: str, expires_minutes: int = 15) -> str:
    """Token in the identity service's format: sub (user id as string), role, type, exp."""
    payload = {
        "sub":  str(user_id),
        "role": role,
        "type": "access",
        "exp":  datetime.now(timezone.utc) + timedelta(minutes=expires_minutes),
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


class LabTestCase(unittest.TestCase):
    """
    Fresh in-memory database per test with the four roles, one user per role and a
    piece of equipment. API tests go through `self.client()` which shares the
    same database.
    """

    def setUp(self):
        self.engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        Base.metadata.create_all(self.engine)
        self.Session = sessionmaker(bind=self.engine, autocommit=False, autoflush=False,
                                    expire_on_commit=False)
        self.db = self.Session()

        self.roles = {name: Role(name=name) for name in RoleName}
        self.db.add_all(self.roles.values())
        self.db.commit()

        self.student  = self.make_user("Sari Wulandari", "sari@lab.test", RoleName.STUDENT, studentId="S001")
        self.lecturer = self.make_user("Budi Santoso", "budi@lab.test", RoleName.LECTURER)
        self.staff    = self.make_user("Rina Lab", "rina@lab.test", RoleName.LAB_STAFF)
        self.admin    = self.make_user("Admin", "admin@lab.test", RoleName.ADMIN)

        self.category  = Category(name="Measurement")
        self.db.add(self.category)
        self.db.commit()
        self.equipment = self.make_equipment("Oscilloscope", "OSC-001")

    def tearDown(self):
        app.dependency_overrides.clear()
        self.db.close()
        Base.metadata.drop_all(self.engine)
        self.engine.dispose()

    # ─── Factories ────────────────────────────────────────────────────────────
    def make_user(self, name: str, email: str, role: RoleName, **kwargs) -> User:
        u = User(fullName=name, email=email, roleId=self.roles[role].id, **kwargs)
        self.db.add(u)
        self.db.commit()
        self.db.refresh(u)
        return u

    def make_equipment(self, name: str, serial: str) -> Equipment:
        e = Equipment(name=name, serialNumber=serial, categoryId=self.category.id, location="Lab 2")
        self.db.add(e)
        self.db.commit()
        self.db.refresh(e)
        return e

    def make_reservation(self, user: User, start: datetime, end: datetime,
                         status: ReservationStatus = ReservationStatus.APPROVED,
                         equipment: Equipment | None = None) -> Reservation:
        """Insert directly, bypassing the conflict check."""
        r = Reservation(equipmentId=(equipment or self.equipment).id, userId=user.id, title="Lab session",
                        startTime=start, endTime=end, status=status)
        self.db.add(r)
        self.db.commit()
        self.db.refresh(r)
        return r

    def make_borrowing(self, user: User, borrow_date: datetime, expected: datetime,
                       status: BorrowingStatus = BorrowingStatus.ACTIVE,
                       equipment: Equipment | None = None) -> BorrowingTransaction:
        t = BorrowingTransaction(equipmentId=(equipment or self.equipment).id, userId=user.id,
                                 borrowDate=borrow_date, expectedReturnDate=expected, status=status)
        self.db.add(t)
        self.db.commit()
        self.db.refresh(t)
        return t

    def make_maintenance(self, start: datetime, hours: float, equipment: Equipment | None = None,
                         **kwargs) -> MaintenanceSchedule:
        m = MaintenanceSchedule(equipmentId=(equipment or self.equipment).id, title="Calibration",
                                scheduledDate=start, estimatedDurationHours=Decimal(str(hours)),
                                createdById=self.staff.id, **kwargs)
        self.db.add(m)
        self.db.commit()
        self.db.refresh(m)
        return m

    # ─── Lookups ──────────────────────────────────────────────────────────────
    def reload(self, obj):
        self.db.refresh(obj)
        return obj

    def notifications_for(self, user: User) -> list[Notification]:
        self.db.expire_all()
        return self.db.query(Notification).filter(Notification.userId == user.id).order_by(Notification.id).all()

    def waitlist_entry(self, entry_id: int) -> WaitlistEntry:
        self.db.expire_all()
        return self.db.query(WaitlistEntry).filter(WaitlistEntry.id == entry_id).one()

    # ─── HTTP ─────────────────────────────────────────────────────────────────
    def client(self) -> TestClient:
        def override_get_db():
            db = self.Session()
            try:
                yield db
            finally:
                db.close()

        app.dependency_overrides[get_db] = override_get_db
        return TestClient(app)

    def auth(self, user: User) -> dict:
        return {"Authorization": f"Bearer {create_access_token(user.id, user.role_name)}"}
