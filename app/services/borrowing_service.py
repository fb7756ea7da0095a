import logging
from datetime import datetime, timedelta
from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from app.config import settings
from app.database import as_utc, utcnow
from app.models.borrowing_transaction import (
    BorrowingTransaction, BorrowingStatus, OPEN_BORROWING_STATUSES, HOLDING_BORROWING_STATUSES,
)
from app.models.equipment import EquipmentCondition
from app.models.notification import NotificationType
from app.models.user import User
from app.schemas.borrowing import (
    BorrowCreateRequest, BorrowApproveRequest, BorrowRejectRequest,
    BorrowReturnRequest, ExtensionRequest,
)
from app.services.availability_service import availability_service, lock_equipment
from app.services.notification_service import notification_service
from app.services.waitlist_service import waitlist_service
from app.utils.audit import log_action
from app.utils.borrowing import (
    get_limits_for_role, compute_penalty, overdue_days, format_penalty, can_request_extension,
)
from app.utils.exceptions import (
    NotFoundException, ForbiddenException, InvalidDateRangeException, InvalidStatusTransitionException,
    BorrowLimitExceededException, ExtensionNotAllowedException, EquipmentUnavailableException,
    ReservationConflictException, AccountBannedException,
)

logger = logging.getLogger(__name__)


def _is_overdue(t: BorrowingTransaction, now: datetime) -> bool:
    if t.actualReturnDate is not None:
        return False
    if t.status == BorrowingStatus.OVERDUE:
        return True
    return t.status == BorrowingStatus.ACTIVE and now > t.expectedReturnDate


def _effective_status(t: BorrowingTransaction, now: datetime) -> BorrowingStatus:
    return BorrowingStatus.OVERDUE if _is_overdue(t, now) else t.status


def _serialize(t: BorrowingTransaction, now: datetime | None = None) -> dict:
    now = now or utcnow()
    returned = t.actualReturnDate is not None
    # Unreturned items show a live running total; returned ones the settled amount
    running = t.penaltyAmount if returned else (
        compute_penalty(t.expectedReturnDate, now) if t.status in HOLDING_BORROWING_STATUSES else 0
    )
    return {
        "id":     t.id,
        "status": _effective_status(t, now).value,
        "equipment": {
            "id":           t.equipment.id,
            "name":         t.equipment.name,
            "serialNumber": t.equipment.serialNumber,
        },
        "user": {
            "id":       t.user.id,
            "fullName": t.user.fullName,
            "email":    t.user.email,
            "role":     t.user.role_name,
        },
        "borrowDate":         t.borrowDate.isoformat(),
        "expectedReturnDate": t.expectedReturnDate.isoformat(),
        "actualReturnDate":   t.actualReturnDate.isoformat() if returned else None,
        "purpose":            t.purpose,
        "notes":              t.notes,
        "adminNotes":         t.adminNotes,
        "returnCondition":    t.returnCondition,
        "extensionCount":     t.extensionCount,
        "overdueDays":        overdue_days(t.expectedReturnDate, t.actualReturnDate or now)
                              if t.status in HOLDING_BORROWING_STATUSES + (BorrowingStatus.RETURNED,) else 0,
        "penaltyAmount":      running,
        "penaltyFormatted":   format_penalty(running),
        "penaltyPaid":        t.penaltyPaid,
        "approvedAt":         t.approvedAt.isoformat() if t.approvedAt else None,
        "createdAt":          t.createdAt.isoformat(),
    }


def _get_or_404(db: Session, borrowing_id: int) -> BorrowingTransaction:
    t = db.query(BorrowingTransaction).filter(BorrowingTransaction.id == borrowing_id).first()
    if not t:
        raise NotFoundException("Borrowing transaction")
    return t


def _raise_if_conflicting(db: Session, equipment_id: int, start: datetime, end: datetime,
                          user_id: int, exclude_id: int | None = None, now: datetime | None = None) -> None:
    conflicts = availability_service.find_conflicts(
        db, equipment_id, start, end,
        exclude_borrowing_id=exclude_id, ignore_user_id=user_id, now=now,
    )
    if conflicts:
        raise ReservationConflictException([c.to_dict() for c in conflicts],
                                           "Equipment is not available for the requested borrowing period")


class BorrowingService:

    def list_borrowings(
        self, db: Session, current_user: User, page: int, limit: int,
        status: BorrowingStatus | None, equipment_id: int | None, user_id: int | None,
    ) -> tuple[list[dict], int]:
        now = utcnow()
        q = db.query(BorrowingTransaction)

        if not current_user.is_staff:
            q = q.filter(BorrowingTransaction.userId == current_user.id)
        elif user_id:
            q = q.filter(BorrowingTransaction.userId == user_id)
        if equipment_id:
            q = q.filter(BorrowingTransaction.equipmentId == equipment_id)
        if status == BorrowingStatus.OVERDUE:
            q = q.filter(or_(
                BorrowingTransaction.status == BorrowingStatus.OVERDUE,
                and_(BorrowingTransaction.status == BorrowingStatus.ACTIVE,
                     BorrowingTransaction.expectedReturnDate < now),
            ))
        elif status == BorrowingStatus.ACTIVE:
            q = q.filter(BorrowingTransaction.status == BorrowingStatus.ACTIVE,
                         BorrowingTransaction.expectedReturnDate >= now)
        elif status:
            q = q.filter(BorrowingTransaction.status == status)

        total = q.count()
        items = q.order_by(BorrowingTransaction.createdAt.desc(), BorrowingTransaction.id.desc())\
                 .offset((page - 1) * limit).limit(limit).all()
        return [_serialize(t, now) for t in items], total

    def get_borrowing(self, db: Session, borrowing_id: int, current_user: User) -> dict:
        t = _get_or_404(db, borrowing_id)
        if t.userId != current_user.id and not current_user.is_staff:
            raise ForbiddenException("You can only view your own borrowings")
        return _serialize(t)

    # ─── Request ──────────────────────────────────────────────────────────────
    def request_borrow(self, db: Session, data: BorrowCreateRequest, current_user: User,
                       now: datetime | None = None) -> dict:
        now = as_utc(now) or utcnow()
        if current_user.bannedUntil and current_user.bannedUntil > now:
            raise AccountBannedException(current_user.bannedUntil.date().isoformat())

        borrow_date = as_utc(data.borrowDate) or now
        expected    = as_utc(data.expectedReturnDate)
        if expected <= borrow_date:
            raise InvalidDateRangeException("Expected return date must be after the borrow date")

        limits = get_limits_for_role(current_user.role_name)
        open_count = db.query(BorrowingTransaction).filter(
            BorrowingTransaction.userId == current_user.id,
            BorrowingTransaction.status.in_(OPEN_BORROWING_STATUSES),
        ).count()
        if open_count >= limits["maxItems"]:
            raise BorrowLimitExceededException(
                f"You have reached the maximum number of borrowed items ({limits['maxItems']})")
        if expected - borrow_date > timedelta(days=limits["maxDays"]):
            raise BorrowLimitExceededException(
                f"Borrowing period cannot exceed {limits['maxDays']} days")

        equipment = lock_equipment(db, data.equipmentId)
        if equipment.is_lost:
            raise EquipmentUnavailableException()
        _raise_if_conflicting(db, equipment.id, borrow_date, expected, current_user.id, now=now)

        t = BorrowingTransaction(
            equipmentId=equipment.id,
            userId=current_user.id,
            borrowDate=borrow_date,
            expectedReturnDate=expected,
            purpose=data.purpose,
            notes=data.notes,
            status=BorrowingStatus.PENDING,
        )
        db.add(t)
        db.flush()
        log_action(db, current_user.id, "CREATE", "BorrowingTransaction", t.id,
                   f"{current_user.fullName} requested to borrow {equipment.name}")
        notification_service.notify_staff(
            db, "New borrow request",
            f"{current_user.fullName} requested {equipment.name} until {expected.date().isoformat()}.",
            NotificationType.APPROVAL, {"borrowingId": t.id},
        )
        db.commit()
        db.refresh(t)
        return _serialize(t, now)

    # ─── Staff decisions ──────────────────────────────────────────────────────
    def approve_borrow(self, db: Session, borrowing_id: int, data: BorrowApproveRequest,
                       current_user: User) -> dict:
        t = _get_or_404(db, borrowing_id)
        if t.status != BorrowingStatus.PENDING:
            raise InvalidStatusTransitionException(t.status.value, BorrowingStatus.ACTIVE.value)

        equipment = lock_equipment(db, t.equipmentId)
        if equipment.is_lost:
            raise EquipmentUnavailableException()
        _raise_if_conflicting(db, t.equipmentId, t.borrowDate, t.expectedReturnDate, t.userId,
                              exclude_id=t.id)

        t.status       = BorrowingStatus.ACTIVE
        t.adminNotes   = data.note
        t.approvedById = current_user.id
        t.approvedAt   = utcnow()
        log_action(db, current_user.id, "APPROVE", "BorrowingTransaction", t.id,
                   f"Borrowing #{t.id} approved for {t.user.fullName}")
        notification_service.notify(
            db, t.userId, "Borrow request approved",
            f"Your request for {equipment.name} was approved. Please collect it from the lab.",
            NotificationType.APPROVAL, {"borrowingId": t.id},
        )
        db.commit()
        db.refresh(t)
        return _serialize(t)

    def reject_borrow(self, db: Session, borrowing_id: int, data: BorrowRejectRequest,
                      current_user: User) -> dict:
        t = _get_or_404(db, borrowing_id)
        if t.status != BorrowingStatus.PENDING:
            raise InvalidStatusTransitionException(t.status.value, BorrowingStatus.REJECTED.value)

        t.status       = BorrowingStatus.REJECTED
        t.adminNotes   = data.note
        t.approvedById = current_user.id
        t.approvedAt   = utcnow()
        log_action(db, current_user.id, "REJECT", "BorrowingTransaction", t.id,
                   f"Borrowing #{t.id} rejected. Reason: {data.note}")
        notification_service.notify(
            db, t.userId, "Borrow request rejected",
            f"Your request for {t.equipment.name} was rejected. Reason: {data.note}",
            NotificationType.APPROVAL, {"borrowingId": t.id},
        )
        db.commit()
        db.refresh(t)
        return _serialize(t)

    def cancel_borrow(self, db: Session, borrowing_id: int, current_user: User) -> dict:
        t = _get_or_404(db, borrowing_id)
        if t.userId != current_user.id and not current_user.is_staff:
            raise ForbiddenException("You can only cancel your own borrow requests")
        if t.status != BorrowingStatus.PENDING:
            raise InvalidStatusTransitionException(t.status.value, BorrowingStatus.CANCELLED.value)

        t.status = BorrowingStatus.CANCELLED
        log_action(db, current_user.id, "CANCEL", "BorrowingTransaction", t.id,
                   f"Borrowing #{t.id} cancelled")
        db.commit()
        db.refresh(t)
        return _serialize(t)

    # ─── Return ───────────────────────────────────────────────────────────────
    def return_borrow(self, db: Session, borrowing_id: int, data: BorrowReturnRequest,
                      current_user: User, now: datetime | None = None) -> dict:
        t = _get_or_404(db, borrowing_id)
        if t.actualReturnDate is not None or t.status not in HOLDING_BORROWING_STATUSES:
            raise InvalidStatusTransitionException(t.status.value, BorrowingStatus.RETURNED.value)

        now = as_utc(now) or utcnow()
        penalty = compute_penalty(t.expectedReturnDate, now)
        freed_until = t.expectedReturnDate

        t.actualReturnDate = now
        t.status           = BorrowingStatus.RETURNED
        t.penaltyAmount    = penalty
        t.penaltyPaid      = penalty == 0
        t.returnCondition  = data.condition
        if data.notes:
            t.adminNotes = data.notes
        if data.hasDamage and data.condition in {c.value for c in EquipmentCondition}:
            t.equipment.condition = EquipmentCondition(data.condition)

        message = f"{t.equipment.name} has been returned and confirmed by lab staff."
        if penalty > 0:
            message += f" Late return penalty: {format_penalty(penalty)}"
        log_action(db, current_user.id, "RETURN", "BorrowingTransaction", t.id,
                   f"Borrowing #{t.id} returned, penalty {penalty}")
        notification_service.notify(db, t.userId, "Return confirmed", message,
                                    NotificationType.EQUIPMENT, {"borrowingId": t.id, "penalty": penalty})
        db.commit()
        db.refresh(t)

        if now >= freed_until:
            # An overdue borrow held the item open-ended, so every later request is freed
            freed_until = waitlist_service.latest_waiting_end(db, t.equipmentId, now)
        if freed_until is not None:
            waitlist_service.promote_best_effort(db, t.equipmentId, now, freed_until)
        return _serialize(t, now)

    # ─── Extension ────────────────────────────────────────────────────────────
    def extend_borrow(self, db: Session, borrowing_id: int, data: ExtensionRequest,
                      current_user: User, now: datetime | None = None) -> dict:
        t = _get_or_404(db, borrowing_id)
        if t.userId != current_user.id and not current_user.is_staff:
            raise ForbiddenException("You can only extend your own borrowings")

        now = as_utc(now) or utcnow()
        if not can_request_extension(t.extensionCount, _is_overdue(t, now), t.status.value, t.user.role_name):
            raise ExtensionNotAllowedException()

        new_expected = as_utc(data.newExpectedReturnDate)
        if new_expected <= t.expectedReturnDate:
            raise InvalidDateRangeException("New return date must be after the current return date")
        if new_expected - t.expectedReturnDate > timedelta(days=settings.MAX_EXTENSION_DAYS):
            raise ExtensionNotAllowedException(
                f"An extension cannot be longer than {settings.MAX_EXTENSION_DAYS} days")

        lock_equipment(db, t.equipmentId)
        _raise_if_conflicting(db, t.equipmentId, t.expectedReturnDate, new_expected, t.userId,
                              exclude_id=t.id, now=now)

        old = t.expectedReturnDate
        t.expectedReturnDate = new_expected
        t.extensionCount    += 1
        log_action(db, current_user.id, "EXTEND", "BorrowingTransaction", t.id,
                   f"Borrowing #{t.id} extended from {old.isoformat()} to {new_expected.isoformat()}")
        db.commit()
        db.refresh(t)
        return _serialize(t, now)

    def mark_penalty_paid(self, db: Session, borrowing_id: int, current_user: User) -> dict:
        t = _get_or_404(db, borrowing_id)
        if t.status != BorrowingStatus.RETURNED:
            raise InvalidStatusTransitionException(t.status.value, "penalty_paid")
        t.penaltyPaid = True
        log_action(db, current_user.id, "PENALTY_PAID", "BorrowingTransaction", t.id,
                   f"Penalty of {format_penalty(t.penaltyAmount)} marked paid")
        db.commit()
        db.refresh(t)
        return _serialize(t)

    # ─── Scheduler helper (called by cron / admin endpoint) ──────────────────
    def mark_overdue(self, db: Session, now: datetime | None = None) -> int:
        """Persist OVERDUE for ACTIVE borrowings past their expected return. Returns count updated."""
        now = as_utc(now) or utcnow()
        result = db.query(BorrowingTransaction).filter(
            BorrowingTransaction.status == BorrowingStatus.ACTIVE,
            BorrowingTransaction.actualReturnDate == None,
            BorrowingTransaction.expectedReturnDate < now,
        ).all()
        for t in result:
            t.status = BorrowingStatus.OVERDUE
            log_action(db, None, "SYSTEM_OVERDUE", "BorrowingTransaction", t.id,
                       f"Borrowing #{t.id} auto-marked OVERDUE")
        if result:
            db.commit()
        return len(result)


borrowing_service = BorrowingService()
