import logging
from datetime import date, datetime
from sqlalchemy.orm import Session
from sqlalchemy import or_

from app.config import settings
from app.database import utcnow
from app.models.category import Category
from app.models.equipment import Equipment, EquipmentStatus
from app.models.notification import NotificationType
from app.models.reservation import Reservation, BLOCKING_RESERVATION_STATUSES
from app.schemas.equipment import (
    EquipmentCreateRequest, EquipmentUpdateRequest, MarkLostRequest, CategoryCreateRequest,
)
from app.services.availability_service import availability_service, validate_range, lock_equipment
from app.services.notification_service import notification_service
from app.utils.audit import log_action
from app.utils.exceptions import NotFoundException, DuplicateEntryException, ValidationException

logger = logging.getLogger(__name__)


def _serialize(db: Session, e: Equipment, now: datetime | None = None) -> dict:
    return {
        "id":           e.id,
        "name":         e.name,
        "serialNumber": e.serialNumber,
        "description":  e.description,
        "category":     {"id": e.category.id, "name": e.category.name} if e.category else None,
        "status":       availability_service.derive_status(db, e, now).value,
        "condition":    e.condition.value,
        "location":     e.location,
        "lostAt":       e.lostAt.isoformat() if e.lostAt else None,
        "createdAt":    e.createdAt.isoformat(),
        "updatedAt":    e.updatedAt.isoformat(),
    }


def _get_or_404(db: Session, equipment_id: int) -> Equipment:
    e = db.query(Equipment).filter(Equipment.id == equipment_id).first()
    if not e:
        raise NotFoundException("Equipment")
    return e


class EquipmentService:

    def list_equipment(
        self, db: Session, page: int, limit: int,
        search: str | None, category_id: int | None, status: EquipmentStatus | None,
    ) -> tuple[list[dict], int]:
        q = db.query(Equipment)

        if search:
            kw = f"%{search}%"
            q = q.filter(or_(
                Equipment.name.ilike(kw),
                Equipment.serialNumber.ilike(kw),
                Equipment.location.ilike(kw),
            ))
        if category_id:
            q = q.filter(Equipment.categoryId == category_id)

        now = utcnow()
        if status is None:
            total = q.count()
            items = q.order_by(Equipment.name, Equipment.id).offset((page - 1) * limit).limit(limit).all()
            return [_serialize(db, e, now) for e in items], total

        # Status is derived per row, so filtering happens after serialization
        rows = [_serialize(db, e, now) for e in q.order_by(Equipment.name, Equipment.id).all()]
        rows = [r for r in rows if r["status"] == status.value]
        return rows[(page - 1) * limit: page * limit], len(rows)

    def get_equipment(self, db: Session, equipment_id: int) -> dict:
        return _serialize(db, _get_or_404(db, equipment_id))

    def create_equipment(self, db: Session, data: EquipmentCreateRequest, actor_id: int) -> dict:
        if db.query(Equipment).filter(Equipment.serialNumber == data.serialNumber).first():
            raise DuplicateEntryException("Serial number already registered", field="serialNumber")
        if data.categoryId and not db.query(Category).filter(Category.id == data.categoryId).first():
            raise NotFoundException("Category")

        e = Equipment(
            name=data.name,
            serialNumber=data.serialNumber,
            description=data.description,
            categoryId=data.categoryId,
            condition=data.condition,
            location=data.location,
        )
        db.add(e)
        db.flush()
        log_action(db, actor_id, "CREATE", "Equipment", e.id,
                   f"Created equipment {e.name} ({e.serialNumber})")
        db.commit()
        db.refresh(e)
        return _serialize(db, e)

    def update_equipment(self, db: Session, equipment_id: int, data: EquipmentUpdateRequest, actor_id: int) -> dict:
        e = _get_or_404(db, equipment_id)

        if data.serialNumber and data.serialNumber != e.serialNumber:
            if db.query(Equipment).filter(Equipment.serialNumber == data.serialNumber,
                                          Equipment.id != equipment_id).first():
                raise DuplicateEntryException("Serial number already used", field="serialNumber")
        if data.categoryId and not db.query(Category).filter(Category.id == data.categoryId).first():
            raise NotFoundException("Category")

        if data.name:                    e.name         = data.name
        if data.serialNumber:            e.serialNumber = data.serialNumber
        if data.description is not None: e.description  = data.description
        if data.categoryId:              e.categoryId   = data.categoryId
        if data.condition:               e.condition    = data.condition
        if data.location is not None:    e.location     = data.location

        log_action(db, actor_id, "UPDATE", "Equipment", e.id, f"Updated equipment {e.name}")
        db.commit()
        db.refresh(e)
        return _serialize(db, e)

    def mark_lost(self, db: Session, equipment_id: int, data: MarkLostRequest, actor_id: int) -> dict:
        """Permanently retire the equipment. Pending and approved reservations stay on
        record; their owners are told the item is gone."""
        e = lock_equipment(db, equipment_id)
        if e.is_lost:
            raise ValidationException("Equipment is already marked as lost")

        now = utcnow()
        e.lostAt = now
        upcoming = db.query(Reservation).filter(
            Reservation.equipmentId == e.id,
            Reservation.status.in_(BLOCKING_RESERVATION_STATUSES),
            Reservation.endTime > now,
        ).all()
        for r in upcoming:
            notification_service.notify(
                db, r.userId, "Equipment unavailable",
                f"{e.name} has been reported lost. Your reservation '{r.title}' cannot be fulfilled.",
                NotificationType.EQUIPMENT, {"equipmentId": e.id, "reservationId": r.id},
            )
        log_action(db, actor_id, "MARK_LOST", "Equipment", e.id,
                   f"Equipment {e.name} marked lost" + (f" | Reason: {data.reason}" if data.reason else ""))
        db.commit()
        db.refresh(e)
        logger.info(f"Equipment {e.id} retired, {len(upcoming)} reservation owner(s) notified")
        return _serialize(db, e, now)

    # ─── Availability ─────────────────────────────────────────────────────────
    def get_availability(
        self, db: Session, equipment_id: int,
        start_time: datetime | None, end_time: datetime | None,
        day: date | None, slot_duration: int | None,
    ) -> dict:
        e = _get_or_404(db, equipment_id)
        now = utcnow()

        if start_time is not None or end_time is not None:
            if start_time is None or end_time is None:
                raise ValidationException("Both start_time and end_time are required",
                                          field="start_time" if start_time is None else "end_time")
            start, end = validate_range(start_time, end_time)
            conflicts = [] if e.is_lost else availability_service.find_conflicts(db, e.id, start, end, now=now)
            return {
                "equipmentId": e.id,
                "startTime":   start.isoformat(),
                "endTime":     end.isoformat(),
                "available":   not e.is_lost and not conflicts,
                "conflicts":   [c.to_dict() for c in conflicts],
            }

        if day is not None:
            minutes = settings.DEFAULT_SLOT_MINUTES if slot_duration is None else slot_duration
            return {
                "equipmentId":  e.id,
                "date":         day.isoformat(),
                "slotDuration": minutes,
                "slots":        availability_service.generate_slots(db, e.id, day, minutes, now=now),
            }

        return {
            "equipmentId": e.id,
            "status":      availability_service.derive_status(db, e, now).value,
            **availability_service.upcoming(db, e.id, now),
        }

    # ─── Categories ───────────────────────────────────────────────────────────
    def list_categories(self, db: Session) -> list[dict]:
        cats = db.query(Category).order_by(Category.name).all()
        return [{"id": c.id, "name": c.name, "description": c.description} for c in cats]

    def create_category(self, db: Session, data: CategoryCreateRequest, actor_id: int) -> dict:
        if db.query(Category).filter(Category.name == data.name).first():
            raise DuplicateEntryException("Category already exists", field="name")
        cat = Category(name=data.name, description=data.description)
        db.add(cat)
        db.flush()
        log_action(db, actor_id, "CREATE", "Category", cat.id, f"Created category {cat.name}")
        db.commit()
        db.refresh(cat)
        return {"id": cat.id, "name": cat.name, "description": cat.description}


equipment_service = EquipmentService()
