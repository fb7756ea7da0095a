from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Optional
from datetime import date, datetime

from app.database import get_db
from app.dependencies import get_current_user, get_staff_user
from app.models.equipment import EquipmentStatus
from app.models.user import User
from app.schemas.equipment import EquipmentCreateRequest, EquipmentUpdateRequest, MarkLostRequest
from app.schemas.common import success_response, paginated_response
from app.services.equipment_service import equipment_service

router = APIRouter(prefix="/equipment")


@router.get("", summary="List equipment with derived status")
def list_equipment(
    page:        int                       = Query(1, ge=1),
    limit:       int                       = Query(20, ge=1, le=100),
    search:      Optional[str]             = Query(None, description="Search by name, serial number, or location"),
    category_id: Optional[int]             = Query(None),
    status:      Optional[EquipmentStatus] = Query(None),
    db:          Session                   = Depends(get_db),
    _:           User                      = Depends(get_current_user),
):
    data, total = equipment_service.list_equipment(db, page, limit, search, category_id, status)
    return paginated_response("Equipment retrieved successfully", data, total, page, limit)


@router.get("/{equipment_id}", summary="Get equipment detail")
def get_equipment(equipment_id: int, db: Session = Depends(get_db), _: User = Depends(get_current_user)):
    return success_response("Equipment retrieved", equipment_service.get_equipment(db, equipment_id))


@router.get("/{equipment_id}/availability", summary="Check an interval, list a day's slots, or show upcoming usage")
def get_availability(
    equipment_id:  int,
    start_time:    Optional[datetime] = Query(None),
    end_time:      Optional[datetime] = Query(None),
    day:           Optional[date]     = Query(None, alias="date", description="YYYY-MM-DD (UTC day)"),
    slot_duration: Optional[int]      = Query(None, description="Minutes per slot (1-1440)"),
    db:            Session            = Depends(get_db),
    _:             User               = Depends(get_current_user),
):
    data = equipment_service.get_availability(db, equipment_id, start_time, end_time, day, slot_duration)
    return success_response("Availability retrieved", data)


@router.post("", status_code=status.HTTP_201_CREATED, summary="Create equipment (Staff)")
def create_equipment(
    body: EquipmentCreateRequest,
    db:   Session = Depends(get_db),
    current_user: User = Depends(get_staff_user),
):
    return success_response("Equipment created successfully",
                            equipment_service.create_equipment(db, body, current_user.id))


@router.put("/{equipment_id}", summary="Update equipment (Staff)")
def update_equipment(
    equipment_id: int,
    body:         EquipmentUpdateRequest,
    db:           Session = Depends(get_db),
    current_user: User    = Depends(get_staff_user),
):
    return success_response("Equipment updated successfully",
                            equipment_service.update_equipment(db, equipment_id, body, current_user.id))


@router.patch("/{equipment_id}/lost", summary="Mark equipment as permanently lost (Staff)")
def mark_lost(
    equipment_id: int,
    body:         MarkLostRequest = MarkLostRequest(),
    db:           Session         = Depends(get_db),
    current_user: User            = Depends(get_staff_user),
):
    return success_response("Equipment marked as lost",
                            equipment_service.mark_lost(db, equipment_id, body, current_user.id))
