from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Optional
from datetime import datetime

from app.database import get_db
from app.dependencies import get_current_user, get_staff_user
from app.models.maintenance_schedule import MaintenanceStatus
from app.models.user import User
from app.schemas.maintenance import MaintenanceCreateRequest, MaintenanceUpdateRequest
from app.schemas.common import success_response, paginated_response
from app.services.maintenance_service import maintenance_service

router = APIRouter(prefix="/maintenance")


@router.get("", summary="List maintenance schedules")
def list_schedules(
    page:         int                         = Query(1, ge=1),
    limit:        int                         = Query(20, ge=1, le=100),
    equipment_id: Optional[int]               = Query(None),
    status:       Optional[MaintenanceStatus] = Query(None),
    start_date:   Optional[datetime]          = Query(None),
    end_date:     Optional[datetime]          = Query(None),
    db:           Session                     = Depends(get_db),
    _:            User                        = Depends(get_current_user),
):
    data, total = maintenance_service.list_schedules(db, page, limit, equipment_id, status, start_date, end_date)
    return paginated_response("Maintenance schedules retrieved", data, total, page, limit)


@router.get("/{schedule_id}", summary="Get maintenance schedule")
def get_schedule(schedule_id: int, db: Session = Depends(get_db), _: User = Depends(get_current_user)):
    return success_response("Schedule retrieved", maintenance_service.get_schedule(db, schedule_id))


@router.post("", status_code=status.HTTP_201_CREATED, summary="Schedule maintenance (Staff)")
def create_schedule(
    body: MaintenanceCreateRequest,
    db:   Session = Depends(get_db),
    current_user: User = Depends(get_staff_user),
):
    data, affected = maintenance_service.create_schedule(db, body, current_user)
    message = "Maintenance scheduled"
    if affected:
        message += f". {len(affected)} reservation(s) overlap this window and were notified."
    return success_response(message, {**data, "affectedReservations": affected})


@router.put("/{schedule_id}", summary="Update maintenance schedule / status (Staff)")
def update_schedule(
    schedule_id: int,
    body:        MaintenanceUpdateRequest,
    db:          Session = Depends(get_db),
    current_user: User   = Depends(get_staff_user),
):
    data = maintenance_service.update_schedule(db, schedule_id, body, current_user)
    return success_response("Maintenance schedule updated", data)
