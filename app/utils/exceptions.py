from fastapi import HTTPException, status


# ═══════════════════════════════════════════════════════════════════════════════
# ERROR CODES: machine-readable constants for frontend switch/case
# ═══════════════════════════════════════════════════════════════════════════════
class ErrorCode:
    VALIDATION_ERROR          = "VALIDATION_ERROR"
    UNAUTHORIZED              = "UNAUTHORIZED"
    TOKEN_EXPIRED             = "TOKEN_EXPIRED"
    FORBIDDEN                 = "FORBIDDEN"
    NOT_FOUND                 = "NOT_FOUND"
    DUPLICATE_ENTRY           = "DUPLICATE_ENTRY"
    RESERVATION_CONFLICT      = "RESERVATION_CONFLICT"
    INVALID_STATUS_TRANSITION = "INVALID_STATUS_TRANSITION"
    RESERVATION_STARTED       = "RESERVATION_STARTED"
    EQUIPMENT_UNAVAILABLE     = "EQUIPMENT_UNAVAILABLE"
    INVALID_DATE_RANGE        = "INVALID_DATE_RANGE"
    BORROW_LIMIT_EXCEEDED     = "BORROW_LIMIT_EXCEEDED"
    EXTENSION_NOT_ALLOWED     = "EXTENSION_NOT_ALLOWED"
    ACCOUNT_INACTIVE          = "ACCOUNT_INACTIVE"
    ACCOUNT_BANNED            = "ACCOUNT_BANNED"
    INTERNAL_SERVER_ERROR     = "INTERNAL_SERVER_ERROR"


# ═══════════════════════════════════════════════════════════════════════════════
# BASE EXCEPTION
# ═══════════════════════════════════════════════════════════════════════════════
class AppException(HTTPException):
    """
    Base exception for all application-level errors.
    Carries a machine-readable error code for frontend handling.
    """
    def __init__(
        self,
        status_code: int,
        message: str,
        error_code: str,
        details: list | None = None,
        field: str | None = None,
    ):
        super().__init__(status_code=status_code, detail={
            "message": message,
            "error": {
                "code": error_code,
                "details": details,
                "field": field,
            }
        })


# ═══════════════════════════════════════════════════════════════════════════════
# CONCRETE EXCEPTIONS
# ═══════════════════════════════════════════════════════════════════════════════

class ValidationException(AppException):
    def __init__(self, message: str, field: str | None = None):
        super().__init__(status.HTTP_400_BAD_REQUEST, message, ErrorCode.VALIDATION_ERROR, field=field)


class UnauthorizedException(AppException):
    def __init__(self, message: str = "Authentication required"):
        super().__init__(status.HTTP_401_UNAUTHORIZED, message, ErrorCode.UNAUTHORIZED)


class TokenExpiredException(AppException):
    def __init__(self):
        super().__init__(status.HTTP_401_UNAUTHORIZED, "Access token has expired", ErrorCode.TOKEN_EXPIRED)


class ForbiddenException(AppException):
    def __init__(self, message: str = "You do not have permission to perform this action"):
        super().__init__(status.HTTP_403_FORBIDDEN, message, ErrorCode.FORBIDDEN)


class NotFoundException(AppException):
    def __init__(self, resource: str = "Resource"):
        super().__init__(status.HTTP_404_NOT_FOUND, f"{resource} not found", ErrorCode.NOT_FOUND)


class DuplicateEntryException(AppException):
    def __init__(self, message: str = "Record already exists", field: str | None = None):
        super().__init__(status.HTTP_409_CONFLICT, message, ErrorCode.DUPLICATE_ENTRY, field=field)


class ReservationConflictException(AppException):
    """
    The requested window collides with a reservation, borrow or maintenance window.
    `conflicts` lists the colliding windows so the caller can offer another time
    or the waitlist.
    """
    def __init__(self, conflicts: list[dict] | None = None,
                 message: str = "Equipment is already reserved for the selected time slot"):
        details = [dict(c, canJoinWaitlist=True) for c in (conflicts or [])]
        super().__init__(status.HTTP_409_CONFLICT, message, ErrorCode.RESERVATION_CONFLICT, details=details)


class InvalidStatusTransitionException(AppException):
    def __init__(self, current: str, target: str):
        super().__init__(
            status.HTTP_400_BAD_REQUEST,
            f"Cannot change status from '{current}' to '{target}'",
            ErrorCode.INVALID_STATUS_TRANSITION,
            field="status",
        )


class ReservationStartedException(AppException):
    def __init__(self):
        super().__init__(
            status.HTTP_400_BAD_REQUEST,
            "Cannot cancel reservation that has already started",
            ErrorCode.RESERVATION_STARTED,
        )


class EquipmentUnavailableException(AppException):
    def __init__(self, message: str = "Equipment is lost or retired and cannot be reserved"):
        super().__init__(status.HTTP_400_BAD_REQUEST, message, ErrorCode.EQUIPMENT_UNAVAILABLE)


class InvalidDateRangeException(AppException):
    def __init__(self, message: str = "End time must be after start time"):
        super().__init__(status.HTTP_400_BAD_REQUEST, message, ErrorCode.INVALID_DATE_RANGE)


class BorrowLimitExceededException(AppException):
    def __init__(self, message: str):
        super().__init__(status.HTTP_400_BAD_REQUEST, message, ErrorCode.BORROW_LIMIT_EXCEEDED)


class ExtensionNotAllowedException(AppException):
    def __init__(self, message: str = "This borrowing is not eligible for an extension"):
        super().__init__(status.HTTP_400_BAD_REQUEST, message, ErrorCode.EXTENSION_NOT_ALLOWED)


class AccountInactiveException(AppException):
    def __init__(self):
        super().__init__(
            status.HTTP_403_FORBIDDEN,
            "Your account has been deactivated. Contact admin.",
            ErrorCode.ACCOUNT_INACTIVE,
        )


class AccountBannedException(AppException):
    def __init__(self, until: str):
        super().__init__(
            status.HTTP_403_FORBIDDEN,
            f"Your account is blocked from borrowing until {until}",
            ErrorCode.ACCOUNT_BANNED,
        )
