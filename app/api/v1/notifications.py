from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.database import get_db
from app.dependencies import get_current_user
from app.models.user import User
from app.schemas.common import success_response, paginated_response
from app.services.notification_service import notification_service

router = APIRouter(prefix="/notifications")


@router.get("", summary="List own notifications")
def list_notifications(
    page:        int     = Query(1, ge=1),
    limit:       int     = Query(20, ge=1, le=100),
    unread_only: bool    = Query(False),
    db:          Session = Depends(get_db),
    current_user: User   = Depends(get_current_user),
):
    data, total, unread = notification_service.list_notifications(db, current_user, page, limit, unread_only)
    response = paginated_response("Notifications retrieved", data, total, page, limit)
    response["meta"]["unread"] = unread
    return response


@router.patch("/{notification_id}/read", summary="Mark a notification as read")
def mark_read(
    notification_id: int,
    db:              Session = Depends(get_db),
    current_user:    User    = Depends(get_current_user),
):
    return success_response("Notification marked as read",
                            notification_service.mark_read(db, notification_id, current_user))


@router.post("/mark-all-read", summary="Mark all own notifications as read")
def mark_all_read(db: Session = Depends(get_db), current_user: User = Depends(get_current_user)):
    count = notification_service.mark_all_read(db, current_user)
    return success_response(f"{count} notification(s) marked as read", {"updated": count})
