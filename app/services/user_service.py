from sqlalchemy.orm import Session
from sqlalchemy import or_

from app.database import as_utc
from app.models.user import User
from app.models.role import Role, RoleName
from app.schemas.user import UserCreateRequest, UserUpdateRequest
from app.utils.audit import log_action
from app.utils.borrowing import get_limits_for_role
from app.utils.exceptions import NotFoundException, DuplicateEntryException, ForbiddenException


def _serialize_user(u: User) -> dict:
    return {
        "id":          u.id,
        "fullName":    u.fullName,
        "email":       u.email,
        "studentId":   u.studentId,
        "department":  u.department,
        "isActive":    u.isActive,
        "bannedUntil": u.bannedUntil.isoformat() if u.bannedUntil else None,
        "role":        {"id": u.role.id, "name": u.role.name.value},
        "limits":      get_limits_for_role(u.role_name),
        "createdAt":   u.createdAt.isoformat(),
        "updatedAt":   u.updatedAt.isoformat(),
    }


def _role_or_404(db: Session, name: RoleName) -> Role:
    role = db.query(Role).filter(Role.name == name).first()
    if not role:
        raise NotFoundException("Role")
    return role


class UserService:

    # ─── List ─────────────────────────────────────────────────────────────────
    def list_users(
        self, db: Session,
        page: int, limit: int,
        search: str | None,
        role: RoleName | None,
        is_active: bool | None,
    ) -> tuple[list[dict], int]:
        q = db.query(User)

        if search:
            kw = f"%{search}%"
            q = q.filter(or_(
                User.fullName.ilike(kw),
                User.email.ilike(kw),
                User.studentId.ilike(kw),
            ))
        if role is not None:
            q = q.join(User.role).filter(Role.name == role)
        if is_active is not None:
            q = q.filter(User.isActive == is_active)

        total = q.count()
        users = q.order_by(User.createdAt.desc(), User.id.desc()).offset((page - 1) * limit).limit(limit).all()
        return [_serialize_user(u) for u in users], total

    # ─── Get by ID ────────────────────────────────────────────────────────────
    def get_user(self, db: Session, user_id: int) -> dict:
        u = db.query(User).filter(User.id == user_id).first()
        if not u:
            raise NotFoundException("User")
        return _serialize_user(u)

    def get_profile(self, current_user: User) -> dict:
        return _serialize_user(current_user)

    # ─── Create ───────────────────────────────────────────────────────────────
    def create_user(self, db: Session, data: UserCreateRequest, actor_id: int) -> dict:
        if db.query(User).filter(User.email == data.email).first():
            raise DuplicateEntryException("Email already registered", field="email")
        if data.studentId and db.query(User).filter(User.studentId == data.studentId).first():
            raise DuplicateEntryException("Student ID already exists", field="studentId")
        role = _role_or_404(db, data.role)

        u = User(
            fullName=data.fullName,
            email=data.email,
            studentId=data.studentId,
            department=data.department,
            isActive=True,
            roleId=role.id,
        )
        db.add(u)
        db.flush()
        log_action(db, actor_id, "CREATE", "User", u.id,
                   f"Admin created user {u.fullName} ({u.email})")
        db.commit()
        db.refresh(u)
        return _serialize_user(u)

    # ─── Update ───────────────────────────────────────────────────────────────
    def update_user(self, db: Session, user_id: int, data: UserUpdateRequest, actor_id: int) -> dict:
        u = db.query(User).filter(User.id == user_id).first()
        if not u:
            raise NotFoundException("User")

        if data.email and data.email != u.email:
            if db.query(User).filter(User.email == data.email, User.id != user_id).first():
                raise DuplicateEntryException("Email already used by another user", field="email")
        if data.isActive is False and u.id == actor_id:
            raise ForbiddenException("You cannot deactivate your own account")

        if data.fullName:                 u.fullName   = data.fullName
        if data.email:                    u.email      = data.email
        if data.department is not None:   u.department = data.department
        if data.role:                     u.roleId     = _role_or_404(db, data.role).id
        if data.isActive is not None:     u.isActive   = data.isActive
        # An explicit null lifts the ban
        if "bannedUntil" in data.model_fields_set:
            u.bannedUntil = as_utc(data.bannedUntil)

        log_action(db, actor_id, "UPDATE", "User", u.id, f"Admin updated user {u.fullName}")
        db.commit()
        db.refresh(u)
        return _serialize_user(u)

    # ─── List Roles ───────────────────────────────────────────────────────────
    def list_roles(self, db: Session) -> list[dict]:
        roles = db.query(Role).order_by(Role.id).all()
        return [{"id": r.id, "name": r.name.value, "limits": get_limits_for_role(r.name.value)} for r in roles]


user_service = UserService()
