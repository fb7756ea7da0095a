from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Optional
from datetime import datetime

from app.database import get_db
from app.dependencies import get_current_user
from app.models.reservation import ReservationStatus
from app.models.user import User
from app.schemas.reservation import ReservationCreateRequest, ReservationUpdateRequest
from app.schemas.common import success_response, paginated_response
from app.services.reservation_service import reservation_service

router = APIRouter(prefix="/reservations")


@router.get("", summary="List reservations (calendar view)")
def list_reservations(
    page:         int                         = Query(1, ge=1),
    limit:        int                         = Query(20, ge=1, le=100),
    equipment_id: Optional[int]               = Query(None),
    user_id:      Optional[int]               = Query(None),
    status:       Optional[ReservationStatus] = Query(None),
    start_date:   Optional[datetime]          = Query(None, description="startTime >= start_date"),
    end_date:     Optional[datetime]          = Query(None, description="endTime <= end_date"),
    db:           Session                     = Depends(get_db),
    _:            User                        = Depends(get_current_user),
):
    data, total = reservation_service.list_reservations(
        db, page, limit, equipment_id, user_id, status, start_date, end_date,
    )
    return paginated_response("Reservations retrieved successfully", data, total, page, limit)


@router.get("/{reservation_id}", summary="Get reservation detail")
def get_reservation(
    reservation_id: int,
    db:             Session = Depends(get_db),
    _:              User    = Depends(get_current_user),
):
    return success_response("Reservation retrieved", reservation_service.get_reservation(db, reservation_id))


@router.post("", status_code=status.HTTP_201_CREATED, summary="Create reservation")
def create_reservation(
    body: ReservationCreateRequest,
    db:   Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    data = reservation_service.create_reservation(db, body, current_user)
    message = "Reservation submitted for approval" if data["status"] == ReservationStatus.PENDING.value \
        else "Reservation created successfully"
    return success_response(message, data)


@router.put("/{reservation_id}", summary="Update reservation (approve/reject/complete: staff only)")
def update_reservation(
    reservation_id: int,
    body:           ReservationUpdateRequest,
    db:             Session = Depends(get_db),
    current_user:   User    = Depends(get_current_user),
):
    data = reservation_service.update_reservation(db, reservation_id, body, current_user)
    return success_response("Reservation updated successfully", data)


@router.delete("/{reservation_id}", summary="Cancel reservation (before it starts)")
def cancel_reservation(
    reservation_id: int,
    db:             Session = Depends(get_db),
    current_user:   User    = Depends(get_current_user),
):
    data = reservation_service.cancel_reservation(db, reservation_id, current_user)
    return success_response("Reservation cancelled", data)
