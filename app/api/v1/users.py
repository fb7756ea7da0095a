from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Optional

from app.database import get_db
from app.dependencies import get_current_user, get_admin_user
from app.models.role import RoleName
from app.models.user import User
from app.schemas.user import UserCreateRequest, UserUpdateRequest
from app.schemas.common import success_response, paginated_response
from app.services.user_service import user_service

router = APIRouter(prefix="/users")


# GET /users (admin only)
@router.get("", status_code=status.HTTP_200_OK, summary="List all users (paginated)")
def list_users(
    page:     int                = Query(1,    ge=1),
    limit:    int                = Query(20,   ge=1, le=100),
    search:   Optional[str]      = Query(None, description="Search by name, email, or student ID"),
    role:     Optional[RoleName] = Query(None),
    is_active: Optional[bool]    = Query(None),
    db:       Session            = Depends(get_db),
    _:        User               = Depends(get_admin_user),
):
    data, total = user_service.list_users(db, page, limit, search, role, is_active)
    return paginated_response("Users retrieved successfully", data, total, page, limit)


# GET /users/me (any authenticated user)
@router.get("/me", status_code=status.HTTP_200_OK, summary="Get current user profile")
def get_me(current_user: User = Depends(get_current_user)):
    return success_response("Profile retrieved", user_service.get_profile(current_user))


# GET /users/roles (any authenticated user, for dropdowns)
@router.get("/roles", status_code=status.HTTP_200_OK, summary="List all roles with borrowing limits")
def list_roles(
    db: Session = Depends(get_db),
    _:  User    = Depends(get_current_user),
):
    return success_response("Roles retrieved", user_service.list_roles(db))


# GET /users/{id} (admin only)
@router.get("/{user_id}", status_code=status.HTTP_200_OK, summary="Get user by ID")
def get_user(
    user_id: int,
    db:      Session = Depends(get_db),
    _:       User    = Depends(get_admin_user),
):
    return success_response("User retrieved", user_service.get_user(db, user_id))


# POST /users (admin only)
@router.post("", status_code=status.HTTP_201_CREATED, summary="Create a new user")
def create_user(
    body:         UserCreateRequest,
    db:           Session = Depends(get_db),
    current_user: User    = Depends(get_admin_user),
):
    return success_response("User created successfully", user_service.create_user(db, body, current_user.id))


# PUT /users/{id} (admin only)
@router.put("/{user_id}", status_code=status.HTTP_200_OK, summary="Update user (role, ban, active flag)")
def update_user(
    user_id:      int,
    body:         UserUpdateRequest,
    db:           Session = Depends(get_db),
    current_user: User    = Depends(get_admin_user),
):
    return success_response("User updated successfully", user_service.update_user(db, user_id, body, current_user.id))
