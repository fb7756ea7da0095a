from jose import JWTError, ExpiredSignatureError, jwt

from app.config import settings
from app.utils.exceptions import TokenExpiredException, UnauthorizedException


# ─── JWT ──────────────────────────────────────────────────────────────────────
# Tokens are minted by the identity service that owns login and sessions;
# this service only verifies them.
def decode_access_token(token: str) -> dict:
    """Decode and validate an access token. 401 if invalid, 401 TOKEN_EXPIRED if expired."""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except ExpiredSignatureError:
        raise TokenExpiredException()
    except JWTError:
        raise UnauthorizedException("Invalid or malformed token")

    if payload.get("type") != "access":
        raise UnauthorizedException("Invalid token type")
    return payload


def token_user_id(token: str) -> int:
    """
    The user id carried in `sub`. The `role` claim is informational only;
    permissions always come from the user's current role in the database.
    """
    sub = decode_access_token(token).get("sub")
    if not isinstance(sub, str) or not sub.isdigit():
        raise UnauthorizedException("Invalid token payload")
    return int(sub)
