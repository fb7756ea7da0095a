import logging
from datetime import datetime, timedelta
from sqlalchemy import func
from sqlalchemy.orm import Session

from app.config import settings
from app.database import as_utc, utcnow
from app.models.equipment import Equipment
from app.models.notification import NotificationType
from app.models.user import User
from app.models.waitlist_entry import WaitlistEntry, PROMOTION_ORDER
from app.schemas.waitlist import WaitlistCreateRequest
from app.services.availability_service import availability_service, overlaps, validate_range
from app.services.notification_service import notification_service
from app.utils.audit import log_action
from app.utils.exceptions import (
    NotFoundException, DuplicateEntryException, ForbiddenException,
    ValidationException, EquipmentUnavailableException,
)

logger = logging.getLogger(__name__)


def _serialize(w: WaitlistEntry) -> dict:
    return {
        "id":     w.id,
        "equipment": {
            "id":           w.equipment.id,
            "name":         w.equipment.name,
            "serialNumber": w.equipment.serialNumber,
        },
        "user": {
            "id":       w.user.id,
            "fullName": w.user.fullName,
            "email":    w.user.email,
        },
        "requestedStartTime": w.requestedStartTime.isoformat(),
        "requestedEndTime":   w.requestedEndTime.isoformat(),
        "priority":           w.priority.value,
        "notifiedAt":         w.notifiedAt.isoformat() if w.notifiedAt else None,
        "createdAt":          w.createdAt.isoformat(),
    }


def _resolve_target_user(db: Session, user_id: int | None, current_user: User) -> User:
    if user_id is None or user_id == current_user.id:
        return current_user
    if not current_user.is_staff:
        raise ForbiddenException("You can only join the waitlist for yourself")
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFoundException("User")
    return user


class WaitlistService:

    def list_entries(
        self, db: Session, current_user: User, page: int, limit: int,
        equipment_id: int | None, user_id: int | None,
    ) -> tuple[list[dict], int]:
        q = db.query(WaitlistEntry)
        if not current_user.is_staff:
            q = q.filter(WaitlistEntry.userId == current_user.id)
        elif user_id:
            q = q.filter(WaitlistEntry.userId == user_id)
        if equipment_id:
            q = q.filter(WaitlistEntry.equipmentId == equipment_id)

        total = q.count()
        items = q.order_by(*PROMOTION_ORDER).offset((page - 1) * limit).limit(limit).all()
        return [_serialize(w) for w in items], total

    def position_of(self, db: Session, entry: WaitlistEntry) -> int:
        """1-based place among the equipment's unnotified entries in promotion order."""
        ids = [row.id for row in db.query(WaitlistEntry.id).filter(
            WaitlistEntry.equipmentId == entry.equipmentId,
            WaitlistEntry.notifiedAt == None,
        ).order_by(*PROMOTION_ORDER).all()]
        return ids.index(entry.id) + 1 if entry.id in ids else 0

    def enqueue(self, db: Session, data: WaitlistCreateRequest, current_user: User) -> tuple[dict, int]:
        user = _resolve_target_user(db, data.userId, current_user)
        start, end = validate_range(data.requestedStartTime, data.requestedEndTime)

        equipment = db.query(Equipment).filter(Equipment.id == data.equipmentId).first()
        if not equipment:
            raise NotFoundException("Equipment")
        if equipment.is_lost:
            raise EquipmentUnavailableException()

        existing = db.query(WaitlistEntry).filter(
            WaitlistEntry.equipmentId == equipment.id,
            WaitlistEntry.userId == user.id,
            WaitlistEntry.requestedStartTime == start,
            WaitlistEntry.requestedEndTime == end,
            WaitlistEntry.notifiedAt == None,
        ).first()
        if existing:
            raise DuplicateEntryException("You are already in the waitlist for this time slot")

        w = WaitlistEntry(
            equipmentId=equipment.id,
            userId=user.id,
            requestedStartTime=start,
            requestedEndTime=end,
            priority=data.priority,
        )
        db.add(w)
        db.flush()
        log_action(db, current_user.id, "CREATE", "WaitlistEntry", w.id,
                   f"{user.fullName} joined the waitlist for {equipment.name} ({data.priority.value})")
        db.commit()
        db.refresh(w)
        return _serialize(w), self.position_of(db, w)

    def remove(
        self, db: Session, current_user: User,
        entry_id: int | None, equipment_id: int | None, user_id: int | None,
    ) -> int:
        if entry_id:
            w = db.query(WaitlistEntry).filter(WaitlistEntry.id == entry_id).first()
            if not w:
                raise NotFoundException("Waitlist entry")
            if w.userId != current_user.id and not current_user.is_staff:
                raise ForbiddenException("You can only leave your own waitlist entries")
            entries = [w]
        elif equipment_id and user_id:
            if user_id != current_user.id and not current_user.is_staff:
                raise ForbiddenException("You can only leave your own waitlist entries")
            entries = db.query(WaitlistEntry).filter(
                WaitlistEntry.equipmentId == equipment_id,
                WaitlistEntry.userId == user_id,
            ).all()
        else:
            raise ValidationException("Either waitlist ID or both equipment_id and user_id are required")

        for w in entries:
            log_action(db, current_user.id, "DELETE", "WaitlistEntry", w.id,
                       f"Waitlist entry #{w.id} removed")
            db.delete(w)
        db.commit()
        return len(entries)

    # ─── Promotion ────────────────────────────────────────────────────────────
    def promote_next(
        self, db: Session, equipment_id: int, freed_start: datetime, freed_end: datetime,
        now: datetime | None = None,
    ) -> WaitlistEntry | None:
        """
        Notify the best waiting candidate for a freed interval. Adds to the caller's
        transaction; the caller commits.

        Candidates are unnotified entries whose requested interval overlaps the freed
        one, taken in (priority desc, createdAt asc) order. A candidate is skipped when
        its own requested interval is still not available, or overlaps an interval held
        by an entry notified within the grace window. Notification is advisory: no
        reservation is created.
        """
        freed_start, freed_end = validate_range(freed_start, freed_end)
        now = as_utc(now) or utcnow()

        candidates = db.query(WaitlistEntry).filter(
            WaitlistEntry.equipmentId == equipment_id,
            WaitlistEntry.notifiedAt == None,
            WaitlistEntry.requestedStartTime < freed_end,
            WaitlistEntry.requestedEndTime   > freed_start,
        ).order_by(*PROMOTION_ORDER).all()
        if not candidates:
            return None

        holds = []
        if settings.WAITLIST_GRACE_MINUTES > 0:
            grace_start = now - timedelta(minutes=settings.WAITLIST_GRACE_MINUTES)
            holds = db.query(WaitlistEntry).filter(
                WaitlistEntry.equipmentId == equipment_id,
                WaitlistEntry.notifiedAt != None,
                WaitlistEntry.notifiedAt > grace_start,
            ).all()

        for entry in candidates:
            start, end = entry.requestedStartTime, entry.requestedEndTime
            if any(overlaps(h.requestedStartTime, h.requestedEndTime, start, end) for h in holds):
                continue
            if not availability_service.is_available(db, equipment_id, start, end, now=now):
                continue

            entry.notifiedAt = now
            expires = now + timedelta(minutes=settings.WAITLIST_GRACE_MINUTES)
            notification_service.notify(
                db, entry.userId,
                "Equipment slot available",
                f"{entry.equipment.name} is now free from {start.isoformat()} to {end.isoformat()}. "
                f"Reserve it before {expires.isoformat()} to keep your place.",
                NotificationType.WAITLIST,
                {"waitlistEntryId": entry.id, "equipmentId": equipment_id,
                 "startTime": start.isoformat(), "endTime": end.isoformat(),
                 "holdExpiresAt": expires.isoformat()},
            )
            log_action(db, None, "NOTIFY", "WaitlistEntry", entry.id,
                       f"Waitlist entry #{entry.id} notified for {entry.equipment.name}")
            logger.info(f"Waitlist entry #{entry.id} (user {entry.userId}) promoted for equipment {equipment_id}")
            return entry
        return None

    def latest_waiting_end(self, db: Session, equipment_id: int, after: datetime) -> datetime | None:
        """End of the furthest unnotified request on the equipment still running after `after`."""
        end = db.query(func.max(WaitlistEntry.requestedEndTime)).filter(
            WaitlistEntry.equipmentId == equipment_id,
            WaitlistEntry.notifiedAt == None,
            WaitlistEntry.requestedEndTime > as_utc(after),
        ).scalar()
        return as_utc(end)

    def promote_best_effort(self, db: Session, equipment_id: int,
                            freed_start: datetime, freed_end: datetime) -> dict | None:
        """
        Run promotion after the freeing change has already been committed.
        A failure here is logged and rolled back; it never fails the caller.
        """
        try:
            entry = self.promote_next(db, equipment_id, freed_start, freed_end)
            db.commit()
        except Exception:
            db.rollback()
            logger.exception(f"Waitlist promotion failed for equipment {equipment_id}")
            return None
        return _serialize(entry) if entry else None

    def promote(self, db: Session, equipment_id: int, start: datetime, end: datetime) -> dict | None:
        if not db.query(Equipment).filter(Equipment.id == equipment_id).first():
            raise NotFoundException("Equipment")
        entry = self.promote_next(db, equipment_id, start, end)
        db.commit()
        return _serialize(entry) if entry else None


waitlist_service = WaitlistService()
