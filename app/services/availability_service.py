"""
Availability checker.

Every equipment has a single timeline. It is occupied by pending/approved
reservations, active or overdue borrowings, and maintenance windows that are not
completed/cancelled. All intervals are half-open `[start, end)`, so a booking that
ends at 11:00 never collides with one that starts at 11:00.

Reads here are a fast path for the UI. Writers must call `lock_equipment` and
re-run `find_conflicts` inside their own transaction before inserting.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone

from sqlalchemy import or_
from sqlalchemy.orm import Session

from app.database import as_utc, utcnow
from app.models.equipment import Equipment, EquipmentStatus
from app.models.reservation import Reservation, ReservationStatus, BLOCKING_RESERVATION_STATUSES
from app.models.borrowing_transaction import (
    BorrowingTransaction, BorrowingStatus, HOLDING_BORROWING_STATUSES,
)
from app.models.maintenance_schedule import MaintenanceSchedule, CLOSED_MAINTENANCE_STATUSES
from app.utils.exceptions import NotFoundException, InvalidDateRangeException, ValidationException

logger = logging.getLogger(__name__)

MINUTES_PER_DAY = 24 * 60


def overlaps(a_start: datetime, a_end: datetime | None,
             b_start: datetime, b_end: datetime | None) -> bool:
    """Half-open overlap test. An end of None means the interval is open-ended."""
    return (b_end is None or a_start < b_end) and (a_end is None or b_start < a_end)


def validate_range(start: datetime, end: datetime) -> tuple[datetime, datetime]:
    start, end = as_utc(start), as_utc(end)
    if start >= end:
        raise InvalidDateRangeException()
    return start, end


@dataclass(frozen=True)
class BlockingInterval:
    kind:   str                 # reservation | borrowing | maintenance
    id:     int
    start:  datetime
    end:    datetime | None     # None: overdue borrowing, blocks until returned
    status: str
    userId: int | None = None

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return overlaps(self.start, self.end, start, end)

    def to_dict(self) -> dict:
        return {
            "type":      self.kind,
            "id":        self.id,
            "startTime": self.start.isoformat(),
            "endTime":   self.end.isoformat() if self.end else None,
            "status":    self.status,
        }


def lock_equipment(db: Session, equipment_id: int) -> Equipment:
    """
    Load the equipment row FOR UPDATE. Concurrent writers for the same equipment
    queue here, so check-then-insert happens as one unit.
    """
    equipment = db.query(Equipment).filter(Equipment.id == equipment_id).with_for_update().first()
    if not equipment:
        raise NotFoundException("Equipment")
    return equipment


class AvailabilityService:

    def find_conflicts(
        self, db: Session, equipment_id: int, start: datetime, end: datetime,
        exclude_reservation_id: int | None = None,
        exclude_borrowing_id: int | None = None,
        exclude_maintenance_id: int | None = None,
        ignore_user_id: int | None = None,
        now: datetime | None = None,
    ) -> list[BlockingInterval]:
        """
        All blocking intervals that overlap [start, end), ordered by start.

        `ignore_user_id` skips that user's own reservations (a borrower is not
        blocked by the slot they reserved themselves).
        """
        start, end = as_utc(start), as_utc(end)
        now = as_utc(now) or utcnow()
        blocks: list[BlockingInterval] = []

        # ─── Reservations ─────────────────────────────────────────────────────
        q = db.query(Reservation).filter(
            Reservation.equipmentId == equipment_id,
            Reservation.status.in_(BLOCKING_RESERVATION_STATUSES),
            Reservation.startTime < end,
            Reservation.endTime   > start,
        )
        if exclude_reservation_id:
            q = q.filter(Reservation.id != exclude_reservation_id)
        if ignore_user_id:
            q = q.filter(Reservation.userId != ignore_user_id)
        for r in q.all():
            blocks.append(BlockingInterval("reservation", r.id, r.startTime, r.endTime,
                                           r.status.value, r.userId))

        # ─── Borrowings ───────────────────────────────────────────────────────
        # An item not back by its due date keeps blocking until it is returned.
        q = db.query(BorrowingTransaction).filter(
            BorrowingTransaction.equipmentId == equipment_id,
            BorrowingTransaction.status.in_(HOLDING_BORROWING_STATUSES),
            BorrowingTransaction.actualReturnDate == None,
            BorrowingTransaction.borrowDate < end,
            or_(
                BorrowingTransaction.expectedReturnDate > start,
                BorrowingTransaction.expectedReturnDate <= now,
                BorrowingTransaction.status == BorrowingStatus.OVERDUE,
            ),
        )
        if exclude_borrowing_id:
            q = q.filter(BorrowingTransaction.id != exclude_borrowing_id)
        for t in q.all():
            open_ended = t.status == BorrowingStatus.OVERDUE or t.expectedReturnDate <= now
            blocks.append(BlockingInterval("borrowing", t.id, t.borrowDate,
                                           None if open_ended else t.expectedReturnDate,
                                           t.status.value, t.userId))

        # ─── Maintenance ──────────────────────────────────────────────────────
        # The window end is derived from the duration, so the upper bound is checked here.
        q = db.query(MaintenanceSchedule).filter(
            MaintenanceSchedule.equipmentId == equipment_id,
            MaintenanceSchedule.status.notin_(CLOSED_MAINTENANCE_STATUSES),
            MaintenanceSchedule.scheduledDate < end,
        )
        if exclude_maintenance_id:
            q = q.filter(MaintenanceSchedule.id != exclude_maintenance_id)
        for m in q.all():
            if m.endDate > start:
                blocks.append(BlockingInterval("maintenance", m.id, m.scheduledDate, m.endDate,
                                               m.status.value))

        return sorted(blocks, key=lambda b: (b.start, b.kind, b.id))

    def is_available(self, db: Session, equipment_id: int, start: datetime, end: datetime,
                     now: datetime | None = None) -> bool:
        """True iff [start, end) overlaps nothing on the equipment's timeline."""
        start, end = validate_range(start, end)
        equipment = db.query(Equipment).filter(Equipment.id == equipment_id).first()
        if not equipment:
            raise NotFoundException("Equipment")
        if equipment.is_lost:
            return False
        return not self.find_conflicts(db, equipment_id, start, end, now=now)

    def generate_slots(self, db: Session, equipment_id: int, day: date, slot_minutes: int,
                       now: datetime | None = None) -> list[dict]:
        """
        Split [00:00, 24:00) UTC of `day` into slot_minutes-sized slots. A slot touched
        by any blocking interval is unavailable; when the day does not divide evenly
        the last slot ends at midnight.
        """
        if slot_minutes <= 0 or slot_minutes > MINUTES_PER_DAY:
            raise ValidationException("slot_duration must be between 1 and 1440 minutes",
                                      field="slot_duration")
        equipment = db.query(Equipment).filter(Equipment.id == equipment_id).first()
        if not equipment:
            raise NotFoundException("Equipment")

        day_start = datetime.combine(day, time.min, tzinfo=timezone.utc)
        day_end   = day_start + timedelta(days=1)
        step      = timedelta(minutes=slot_minutes)
        blocks    = self.find_conflicts(db, equipment_id, day_start, day_end, now=now)

        slots = []
        cursor = day_start
        while cursor < day_end:
            slot_end = min(cursor + step, day_end)
            slots.append({
                "start":     cursor.isoformat(),
                "end":       slot_end.isoformat(),
                "available": not equipment.is_lost and not any(b.overlaps(cursor, slot_end) for b in blocks),
            })
            cursor = slot_end
        return slots

    def derive_status(self, db: Session, equipment: Equipment, now: datetime | None = None) -> EquipmentStatus:
        """
        Current status from canonical records, recomputed on every read:
        lost > maintenance > borrowed (borrowing out, or approved reservation running) > available.
        """
        if equipment.is_lost:
            return EquipmentStatus.LOST
        now = as_utc(now) or utcnow()
        blocks = self.find_conflicts(db, equipment.id, now, now + timedelta(microseconds=1), now=now)
        if any(b.kind == "maintenance" for b in blocks):
            return EquipmentStatus.MAINTENANCE
        if any(b.kind == "borrowing" or b.status == ReservationStatus.APPROVED.value for b in blocks):
            return EquipmentStatus.BORROWED
        return EquipmentStatus.AVAILABLE

    def upcoming(self, db: Session, equipment_id: int, now: datetime | None = None) -> dict:
        now = as_utc(now) or utcnow()
        reservations = db.query(Reservation).filter(
            Reservation.equipmentId == equipment_id,
            Reservation.status.in_(BLOCKING_RESERVATION_STATUSES),
            Reservation.startTime >= now,
        ).order_by(Reservation.startTime.asc()).limit(5).all()
        maintenance = db.query(MaintenanceSchedule).filter(
            MaintenanceSchedule.equipmentId == equipment_id,
            MaintenanceSchedule.status.notin_(CLOSED_MAINTENANCE_STATUSES),
            MaintenanceSchedule.scheduledDate >= now,
        ).order_by(MaintenanceSchedule.scheduledDate.asc()).limit(3).all()
        return {
            "upcomingReservations": [{
                "id":        r.id,
                "title":     r.title,
                "userId":    r.userId,
                "status":    r.status.value,
                "startTime": r.startTime.isoformat(),
                "endTime":   r.endTime.isoformat(),
            } for r in reservations],
            "upcomingMaintenance": [{
                "id":            m.id,
                "title":         m.title,
                "type":          m.maintenanceType.value,
                "status":        m.status.value,
                "scheduledDate": m.scheduledDate.isoformat(),
                "endDate":       m.endDate.isoformat(),
            } for m in maintenance],
        }


availability_service = AvailabilityService()
