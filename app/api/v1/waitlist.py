from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Optional

from app.database import get_db
from app.dependencies import get_current_user, get_staff_user
from app.models.user import User
from app.schemas.waitlist import WaitlistCreateRequest, WaitlistPromoteRequest
from app.schemas.common import success_response, paginated_response
from app.services.waitlist_service import waitlist_service

router = APIRouter(prefix="/waitlist")


@router.get("", summary="List waitlist entries (own entries unless staff)")
def list_entries(
    page:         int           = Query(1, ge=1),
    limit:        int           = Query(20, ge=1, le=100),
    equipment_id: Optional[int] = Query(None),
    user_id:      Optional[int] = Query(None, description="Staff only"),
    db:           Session       = Depends(get_db),
    current_user: User          = Depends(get_current_user),
):
    data, total = waitlist_service.list_entries(db, current_user, page, limit, equipment_id, user_id)
    return paginated_response("Waitlist retrieved successfully", data, total, page, limit)


@router.post("", status_code=status.HTTP_201_CREATED, summary="Join the waitlist for a time slot")
def join_waitlist(
    body: WaitlistCreateRequest,
    db:   Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    data, position = waitlist_service.enqueue(db, body, current_user)
    return success_response(f"Added to waitlist at position {position}", {**data, "position": position})


@router.delete("", summary="Leave the waitlist (by id, or by equipment_id + user_id)")
def leave_waitlist(
    id:           Optional[int] = Query(None),
    equipment_id: Optional[int] = Query(None),
    user_id:      Optional[int] = Query(None),
    db:           Session       = Depends(get_db),
    current_user: User          = Depends(get_current_user),
):
    removed = waitlist_service.remove(db, current_user, id, equipment_id, user_id)
    return success_response("Removed from waitlist", {"removed": removed})


@router.post("/promote", summary="Notify the next waiting user for a freed slot (Staff)")
def promote(
    body: WaitlistPromoteRequest,
    db:   Session = Depends(get_db),
    _:    User    = Depends(get_staff_user),
):
    data = waitlist_service.promote(db, body.equipmentId, body.startTime, body.endTime)
    return success_response("Waitlist entry notified" if data else "No eligible waitlist entry", data)
