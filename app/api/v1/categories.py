from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.database import get_db
from app.dependencies import get_current_user, get_staff_user
from app.models.user import User
from app.schemas.equipment import CategoryCreateRequest
from app.schemas.common import success_response
from app.services.equipment_service import equipment_service

router = APIRouter(prefix="/categories")


@router.get("", summary="List equipment categories")
def list_categories(db: Session = Depends(get_db), _: User = Depends(get_current_user)):
    return success_response("Categories retrieved", equipment_service.list_categories(db))


@router.post("", status_code=status.HTTP_201_CREATED, summary="Create category (Staff)")
def create_category(
    body: CategoryCreateRequest,
    db:   Session = Depends(get_db),
    current_user: User = Depends(get_staff_user),
):
    return success_response("Category created", equipment_service.create_category(db, body, current_user.id))
