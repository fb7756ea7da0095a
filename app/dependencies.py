from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from app.database import get_db
from app.models.user import User
from app.models.role import RoleName, STAFF_ROLES
from app.utils.security import token_user_id
from app.utils.exceptions import UnauthorizedException, ForbiddenException, AccountInactiveException

bearer_scheme = HTTPBearer(auto_error=False)


# ─── Current User ─────────────────────────────────────────────────────────────
def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> User:
    """
    Resolve the bearer token to a User.
    401 when the token is missing, invalid, expired, or names a user that no
    longer exists. 403 when the account has been deactivated.
    """
    if not credentials:
        raise UnauthorizedException("No authentication token provided")

    user = db.query(User).filter(User.id == token_user_id(credentials.credentials)).first()
    if not user:
        raise UnauthorizedException("User for this token no longer exists")
    if not user.isActive:
        raise AccountInactiveException()
    return user


# ─── Role Guards ──────────────────────────────────────────────────────────────
def require_roles(*roles: RoleName):
    """
    Dependency factory: the current user must hold one of `roles`.

    Usage:
        @router.post("/maintenance")
        def create(current_user: User = Depends(require_roles(*STAFF_ROLES))):
            ...
    """
    allowed = ", ".join(r.value for r in roles)

    def dependency(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role.name not in roles:
            raise ForbiddenException(f"This action requires one of these roles: {allowed}")
        return current_user
    return dependency


get_admin_user = require_roles(RoleName.ADMIN)
get_staff_user = require_roles(*STAFF_ROLES)
