import logging
from sqlalchemy.orm import Session

from app.models.notification import Notification, NotificationType
from app.models.role import Role, STAFF_ROLES
from app.models.user import User
from app.utils.email import send_notification_email
from app.utils.exceptions import NotFoundException, ForbiddenException

logger = logging.getLogger(__name__)


def _serialize(n: Notification) -> dict:
    return {
        "id":        n.id,
        "type":      n.type.value,
        "title":     n.title,
        "message":   n.message,
        "data":      n.data or {},
        "isRead":    n.isRead,
        "createdAt": n.createdAt.isoformat(),
    }


class NotificationService:

    # ─── Sink ─────────────────────────────────────────────────────────────────
    def notify(
        self, db: Session, user_id: int, title: str, message: str,
        type: NotificationType = NotificationType.INFO, data: dict | None = None,
    ) -> Notification:
        """
        Queue an in-app notification in the caller's transaction and hand an email
        to the mail service. Channel delivery is the mail service's concern.
        """
        n = Notification(userId=user_id, type=type, title=title, message=message, data=data or {})
        db.add(n)
        user = db.query(User).filter(User.id == user_id).first()
        if user:
            send_notification_email(user.email, user.fullName, title, message)
        return n

    def notify_staff(self, db: Session, title: str, message: str,
                     type: NotificationType = NotificationType.INFO, data: dict | None = None) -> int:
        staff = db.query(User).join(User.role).filter(
            Role.name.in_(STAFF_ROLES),
            User.isActive == True,
        ).all()
        for u in staff:
            self.notify(db, u.id, title, message, type, data)
        return len(staff)

    # ─── Inbox ────────────────────────────────────────────────────────────────
    def list_notifications(
        self, db: Session, current_user: User, page: int, limit: int, unread_only: bool,
    ) -> tuple[list[dict], int, int]:
        q = db.query(Notification).filter(Notification.userId == current_user.id)
        if unread_only:
            q = q.filter(Notification.isRead == False)

        total = q.count()
        unread = db.query(Notification).filter(
            Notification.userId == current_user.id,
            Notification.isRead == False,
        ).count()
        items = q.order_by(Notification.createdAt.desc(), Notification.id.desc())\
                 .offset((page - 1) * limit).limit(limit).all()
        return [_serialize(n) for n in items], total, unread

    def mark_read(self, db: Session, notification_id: int, current_user: User) -> dict:
        n = db.query(Notification).filter(Notification.id == notification_id).first()
        if not n:
            raise NotFoundException("Notification")
        if n.userId != current_user.id:
            raise ForbiddenException("You can only update your own notifications")
        n.isRead = True
        db.commit()
        db.refresh(n)
        return _serialize(n)

    def mark_all_read(self, db: Session, current_user: User) -> int:
        count = db.query(Notification).filter(
            Notification.userId == current_user.id,
            Notification.isRead == False,
        ).update({Notification.isRead: True}, synchronize_session=False)
        db.commit()
        return count


notification_service = NotificationService()
