import logging
from datetime import datetime
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError

from app.config import settings
from app.database import as_utc, utcnow
from app.models.notification import NotificationType
from app.models.reservation import Reservation, ReservationStatus, RESERVATION_OVERLAP_CONSTRAINT
from app.models.user import User
from app.schemas.reservation import ReservationCreateRequest, ReservationUpdateRequest
from app.services.availability_service import availability_service, lock_equipment, validate_range
from app.services.notification_service import notification_service
from app.services.waitlist_service import waitlist_service
from app.utils.audit import log_action
from app.utils.exceptions import (
    NotFoundException, ReservationConflictException, InvalidStatusTransitionException,
    ReservationStartedException, EquipmentUnavailableException, ForbiddenException,
    ValidationException,
)

logger = logging.getLogger(__name__)

AUTO_REJECT_NOTE = "Automatically rejected: the time slot was taken before approval"


def _serialize(r: Reservation) -> dict:
    return {
        "id":     r.id,
        "status": r.status.value,
        "title":  r.title,
        "description": r.description,
        "equipment": {
            "id":           r.equipment.id,
            "name":         r.equipment.name,
            "serialNumber": r.equipment.serialNumber,
        },
        "user": {
            "id":       r.user.id,
            "fullName": r.user.fullName,
            "email":    r.user.email,
            "role":     r.user.role_name,
        },
        "startTime":        r.startTime.isoformat(),
        "endTime":          r.endTime.isoformat(),
        "approvalRequired": r.approvalRequired,
        "approvedBy": {
            "id":       r.approved_by.id,
            "fullName": r.approved_by.fullName,
        } if r.approved_by else None,
        "approvedAt": r.approvedAt.isoformat() if r.approvedAt else None,
        "systemNote": r.systemNote,
        "createdAt":  r.createdAt.isoformat(),
        "updatedAt":  r.updatedAt.isoformat(),
    }


def _get_or_404(db: Session, reservation_id: int) -> Reservation:
    r = db.query(Reservation).filter(Reservation.id == reservation_id).first()
    if not r:
        raise NotFoundException("Reservation")
    return r


def _check_owner_or_staff(r: Reservation, current_user: User, action: str) -> None:
    if r.userId != current_user.id and not current_user.is_staff:
        raise ForbiddenException(f"You can only {action} your own reservations")


def _raise_if_conflicting(db: Session, equipment_id: int, start: datetime, end: datetime,
                          exclude_id: int | None = None) -> None:
    conflicts = availability_service.find_conflicts(db, equipment_id, start, end,
                                                    exclude_reservation_id=exclude_id)
    if conflicts:
        raise ReservationConflictException([c.to_dict() for c in conflicts])


def _write_or_conflict(db: Session, write) -> None:
    """Flush or commit; a lost race against the overlap constraint becomes a conflict."""
    try:
        write()
    except IntegrityError as exc:
        db.rollback()
        if RESERVATION_OVERLAP_CONSTRAINT not in str(exc.orig):
            raise
        logger.warning(f"Overlap constraint rejected a reservation write: {exc.orig}")
        raise ReservationConflictException()


class ReservationService:

    def list_reservations(
        self, db: Session, page: int, limit: int,
        equipment_id: int | None, user_id: int | None, status: ReservationStatus | None,
        start_date: datetime | None, end_date: datetime | None,
    ) -> tuple[list[dict], int]:
        q = db.query(Reservation)

        if equipment_id: q = q.filter(Reservation.equipmentId == equipment_id)
        if user_id:      q = q.filter(Reservation.userId == user_id)
        if status:       q = q.filter(Reservation.status == status)
        if start_date:   q = q.filter(Reservation.startTime >= as_utc(start_date))
        if end_date:     q = q.filter(Reservation.endTime   <= as_utc(end_date))

        total = q.count()
        items = q.order_by(Reservation.startTime.asc(), Reservation.id.asc())\
                 .offset((page - 1) * limit).limit(limit).all()
        return [_serialize(r) for r in items], total

    def get_reservation(self, db: Session, reservation_id: int) -> dict:
        return _serialize(_get_or_404(db, reservation_id))

    def create_reservation(self, db: Session, data: ReservationCreateRequest, current_user: User) -> dict:
        if data.userId is not None and data.userId != current_user.id:
            if not current_user.is_staff:
                raise ForbiddenException("You can only create reservations for yourself")
            user = db.query(User).filter(User.id == data.userId).first()
            if not user:
                raise NotFoundException("User")
        else:
            user = current_user

        start, end = validate_range(data.startTime, data.endTime)
        equipment = lock_equipment(db, data.equipmentId)
        if equipment.is_lost:
            raise EquipmentUnavailableException()

        _raise_if_conflicting(db, equipment.id, start, end)

        # Only staff may override the role default
        approval_required = data.approvalRequired if current_user.is_staff else None
        if approval_required is None:
            approval_required = user.role_name in settings.get_approval_required_roles()

        r = Reservation(
            equipmentId=equipment.id,
            userId=user.id,
            title=data.title,
            description=data.description,
            startTime=start,
            endTime=end,
            approvalRequired=approval_required,
            status=ReservationStatus.PENDING if approval_required else ReservationStatus.APPROVED,
            approvedAt=None if approval_required else utcnow(),
        )
        db.add(r)
        _write_or_conflict(db, db.flush)

        log_action(db, current_user.id, "CREATE", "Reservation", r.id,
                   f"{user.fullName} reserved {equipment.name} ({r.status.value})")
        db.commit()
        db.refresh(r)
        return _serialize(r)

    def update_reservation(self, db: Session, reservation_id: int,
                           data: ReservationUpdateRequest, current_user: User) -> dict:
        r = _get_or_404(db, reservation_id)
        _check_owner_or_staff(r, current_user, "update")

        target = data.status if data.status is not None and data.status != r.status else None
        if target == ReservationStatus.CANCELLED:
            return self.cancel_reservation(db, r.id, current_user)
        if target is not None:
            if not r.can_transition_to(target):
                raise InvalidStatusTransitionException(r.status.value, target.value)
            if not current_user.is_staff:
                raise ForbiddenException(f"Only lab staff can set a reservation to '{target.value}'")
        if data.approvalRequired is not None and not current_user.is_staff:
            raise ForbiddenException("Only lab staff can change the approval requirement")

        times_changed = (data.startTime is not None and as_utc(data.startTime) != r.startTime) or \
                        (data.endTime is not None and as_utc(data.endTime) != r.endTime)
        if r.is_terminal and (times_changed or data.title or data.description is not None):
            raise ValidationException(f"A {r.status.value} reservation can no longer be modified")

        if data.title:                        r.title            = data.title
        if data.description is not None:      r.description      = data.description
        if data.approvalRequired is not None: r.approvalRequired = data.approvalRequired

        freed_start, freed_end = r.startTime, r.endTime
        if times_changed:
            start, end = validate_range(data.startTime or r.startTime, data.endTime or r.endTime)
            lock_equipment(db, r.equipmentId)
            _raise_if_conflicting(db, r.equipmentId, start, end, exclude_id=r.id)
            r.startTime, r.endTime = start, end
            # A moved booking that needs approval goes back to the approval queue
            if r.approvalRequired and r.status == ReservationStatus.APPROVED and not current_user.is_staff:
                r.status, r.approvedById, r.approvedAt = ReservationStatus.PENDING, None, None

        if target == ReservationStatus.APPROVED:
            return self._approve(db, r, current_user, data.note)
        if target == ReservationStatus.REJECTED:
            rejected = self._reject(db, r, current_user, data.note)
            if times_changed:
                waitlist_service.promote_best_effort(db, r.equipmentId, freed_start, freed_end)
            return rejected
        if target == ReservationStatus.COMPLETED:
            r.status = ReservationStatus.COMPLETED
            log_action(db, current_user.id, "COMPLETE", "Reservation", r.id,
                       f"Reservation #{r.id} completed")
        else:
            log_action(db, current_user.id, "UPDATE", "Reservation", r.id,
                       f"Reservation #{r.id} updated")

        _write_or_conflict(db, db.commit)
        db.refresh(r)

        if times_changed:
            waitlist_service.promote_best_effort(db, r.equipmentId, freed_start, freed_end)
        return _serialize(r)

    def _approve(self, db: Session, r: Reservation, approver: User, note: str | None) -> dict:
        # The slot may have been taken since the request was made; re-check under lock
        lock_equipment(db, r.equipmentId)
        conflicts = availability_service.find_conflicts(db, r.equipmentId, r.startTime, r.endTime,
                                                        exclude_reservation_id=r.id)
        now = utcnow()
        r.approvedById = approver.id
        r.approvedAt   = now

        if conflicts:
            r.status     = ReservationStatus.REJECTED
            r.systemNote = AUTO_REJECT_NOTE
            log_action(db, approver.id, "REJECT", "Reservation", r.id,
                       f"Reservation #{r.id} auto-rejected at approval: slot no longer free")
            notification_service.notify(
                db, r.userId, "Reservation rejected",
                f"Your reservation '{r.title}' for {r.equipment.name} could not be approved: "
                f"the time slot is no longer available.",
                NotificationType.APPROVAL, {"reservationId": r.id},
            )
            db.commit()
            raise ReservationConflictException([c.to_dict() for c in conflicts],
                                               "Time slot is no longer available; reservation rejected")

        r.status = ReservationStatus.APPROVED
        if note:
            r.systemNote = note
        log_action(db, approver.id, "APPROVE", "Reservation", r.id,
                   f"Reservation #{r.id} approved for {r.user.fullName}")
        notification_service.notify(
            db, r.userId, "Reservation approved",
            f"Your reservation '{r.title}' for {r.equipment.name} has been approved.",
            NotificationType.APPROVAL, {"reservationId": r.id},
        )
        _write_or_conflict(db, db.commit)
        db.refresh(r)
        return _serialize(r)

    def _reject(self, db: Session, r: Reservation, approver: User, note: str | None) -> dict:
        r.status       = ReservationStatus.REJECTED
        r.approvedById = approver.id
        r.approvedAt   = utcnow()
        r.systemNote   = note
        log_action(db, approver.id, "REJECT", "Reservation", r.id,
                   f"Reservation #{r.id} rejected" + (f". Reason: {note}" if note else ""))
        notification_service.notify(
            db, r.userId, "Reservation rejected",
            f"Your reservation '{r.title}' for {r.equipment.name} was rejected."
            + (f" Reason: {note}" if note else ""),
            NotificationType.APPROVAL, {"reservationId": r.id},
        )
        db.commit()
        db.refresh(r)

        # A rejected booking no longer holds its slot
        waitlist_service.promote_best_effort(db, r.equipmentId, r.startTime, r.endTime)
        return _serialize(r)

    def cancel_reservation(self, db: Session, reservation_id: int, current_user: User,
                           now: datetime | None = None) -> dict:
        r = _get_or_404(db, reservation_id)
        _check_owner_or_staff(r, current_user, "cancel")

        now = as_utc(now) or utcnow()
        if r.startTime <= now:
            raise ReservationStartedException()
        if not r.can_transition_to(ReservationStatus.CANCELLED):
            raise InvalidStatusTransitionException(r.status.value, ReservationStatus.CANCELLED.value)

        r.status = ReservationStatus.CANCELLED
        log_action(db, current_user.id, "CANCEL", "Reservation", r.id, f"Reservation #{r.id} cancelled")
        if r.userId != current_user.id:
            notification_service.notify(
                db, r.userId, "Reservation cancelled",
                f"Your reservation '{r.title}' for {r.equipment.name} was cancelled by lab staff.",
                NotificationType.WARNING, {"reservationId": r.id},
            )
        db.commit()
        db.refresh(r)

        waitlist_service.promote_best_effort(db, r.equipmentId, r.startTime, r.endTime)
        return _serialize(r)


reservation_service = ReservationService()
