import logging
from datetime import datetime
from sqlalchemy.orm import Session

from app.database import as_utc
from app.models.maintenance_schedule import MaintenanceSchedule, MaintenanceStatus
from app.models.notification import NotificationType
from app.models.user import User
from app.schemas.maintenance import MaintenanceCreateRequest, MaintenanceUpdateRequest
from app.services.availability_service import availability_service, lock_equipment, BlockingInterval
from app.services.notification_service import notification_service
from app.services.waitlist_service import waitlist_service
from app.utils.audit import log_action
from app.utils.exceptions import NotFoundException, InvalidStatusTransitionException, ValidationException

logger = logging.getLogger(__name__)

MAINTENANCE_TRANSITIONS = {
    MaintenanceStatus.SCHEDULED:   {MaintenanceStatus.IN_PROGRESS, MaintenanceStatus.COMPLETED,
                                    MaintenanceStatus.CANCELLED},
    MaintenanceStatus.IN_PROGRESS: {MaintenanceStatus.COMPLETED, MaintenanceStatus.CANCELLED},
    MaintenanceStatus.COMPLETED:   set(),
    MaintenanceStatus.CANCELLED:   set(),
}


def _serialize(m: MaintenanceSchedule) -> dict:
    return {
        "id": m.id,
        "equipment": {
            "id":           m.equipment.id,
            "name":         m.equipment.name,
            "serialNumber": m.equipment.serialNumber,
        },
        "maintenanceType":        m.maintenanceType.value,
        "title":                  m.title,
        "description":            m.description,
        "scheduledDate":          m.scheduledDate.isoformat(),
        "estimatedDurationHours": float(m.estimatedDurationHours),
        "endDate":                m.endDate.isoformat(),
        "priority":               m.priority.value,
        "status":                 m.status.value,
        "createdBy": {
            "id":       m.created_by.id,
            "fullName": m.created_by.fullName,
        },
        "createdAt": m.createdAt.isoformat(),
    }


def _get_or_404(db: Session, schedule_id: int) -> MaintenanceSchedule:
    m = db.query(MaintenanceSchedule).filter(MaintenanceSchedule.id == schedule_id).first()
    if not m: raise NotFoundException("Maintenance schedule")
    return m


def _affected_reservations(db: Session, m: MaintenanceSchedule) -> list[BlockingInterval]:
    conflicts = availability_service.find_conflicts(db, m.equipmentId, m.scheduledDate, m.endDate,
                                                    exclude_maintenance_id=m.id)
    return [c for c in conflicts if c.kind == "reservation"]


class MaintenanceService:

    def list_schedules(
        self, db: Session, page: int, limit: int,
        equipment_id: int | None, status: MaintenanceStatus | None,
        start_date: datetime | None, end_date: datetime | None,
    ) -> tuple[list[dict], int]:
        q = db.query(MaintenanceSchedule)

        if equipment_id: q = q.filter(MaintenanceSchedule.equipmentId == equipment_id)
        if status:       q = q.filter(MaintenanceSchedule.status == status)
        if start_date:   q = q.filter(MaintenanceSchedule.scheduledDate >= as_utc(start_date))
        if end_date:     q = q.filter(MaintenanceSchedule.scheduledDate <= as_utc(end_date))

        total = q.count()
        items = q.order_by(MaintenanceSchedule.scheduledDate.asc(), MaintenanceSchedule.id.asc())\
                 .offset((page - 1) * limit).limit(limit).all()
        return [_serialize(m) for m in items], total

    def get_schedule(self, db: Session, schedule_id: int) -> dict:
        return _serialize(_get_or_404(db, schedule_id))

    def create_schedule(self, db: Session, data: MaintenanceCreateRequest, current_user: User) -> tuple[dict, list[dict]]:
        """
        Staff may schedule maintenance over existing bookings. The window is never
        rejected; the overlapping reservations are returned and their owners notified.
        """
        equipment = lock_equipment(db, data.equipmentId)

        m = MaintenanceSchedule(
            equipmentId=equipment.id,
            maintenanceType=data.maintenanceType,
            title=data.title,
            description=data.description,
            scheduledDate=as_utc(data.scheduledDate),
            estimatedDurationHours=data.estimatedDurationHours,
            priority=data.priority,
            status=MaintenanceStatus.SCHEDULED,
            createdById=current_user.id,
        )
        db.add(m)
        db.flush()

        affected = _affected_reservations(db, m)
        for r in affected:
            notification_service.notify(
                db, r.userId, "Maintenance scheduled",
                f"{equipment.name} has maintenance '{m.title}' overlapping your reservation.",
                NotificationType.WARNING, {"maintenanceId": m.id, "reservationId": r.id},
            )
        if affected:
            logger.warning(f"Maintenance #{m.id} overlaps {len(affected)} reservation(s) on equipment {equipment.id}")

        log_action(db, current_user.id, "CREATE", "MaintenanceSchedule", m.id,
                   f"Maintenance '{m.title}' scheduled for {equipment.name}")
        db.commit()
        db.refresh(m)
        return _serialize(m), [r.to_dict() for r in affected]

    def update_schedule(self, db: Session, schedule_id: int,
                        data: MaintenanceUpdateRequest, current_user: User) -> dict:
        m = _get_or_404(db, schedule_id)
        if not m.is_blocking:
            raise ValidationException(f"A {m.status.value} maintenance schedule can no longer be modified")

        target = data.status if data.status is not None and data.status != m.status else None
        if target is not None and target not in MAINTENANCE_TRANSITIONS[m.status]:
            raise InvalidStatusTransitionException(m.status.value, target.value)

        freed_start, freed_end = m.scheduledDate, m.endDate

        if data.title:                              m.title                  = data.title
        if data.description is not None:            m.description            = data.description
        if data.scheduledDate is not None:          m.scheduledDate          = as_utc(data.scheduledDate)
        if data.estimatedDurationHours is not None: m.estimatedDurationHours = data.estimatedDurationHours
        if data.priority is not None:               m.priority               = data.priority

        if target is not None:
            m.status = target
            log_action(db, current_user.id, "STATUS_CHANGE", "MaintenanceSchedule", m.id,
                       f"Maintenance #{m.id} moved to {target.value}")
        else:
            log_action(db, current_user.id, "UPDATE", "MaintenanceSchedule", m.id,
                       f"Updated maintenance schedule #{m.id}")

        db.commit()
        db.refresh(m)

        # Closing frees the whole window; a reschedule frees the old one
        if not m.is_blocking or (m.scheduledDate, m.endDate) != (freed_start, freed_end):
            waitlist_service.promote_best_effort(db, m.equipmentId, freed_start, freed_end)
        return _serialize(m)


maintenance_service = MaintenanceService()
