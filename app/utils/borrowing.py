"""
Pure borrowing rules: penalties, role limits and extension eligibility.

Nothing here touches the database, so these helpers are safe to call for
display purposes (e.g. a live running penalty before an item is returned).
"""
import math
from datetime import datetime, timedelta

from app.config import settings, ROLE_LIMITS, DEFAULT_ROLE
from app.database import as_utc

ONE_DAY = timedelta(days=1)


def get_limits_for_role(role: str | None) -> dict:
    """Return {maxItems, maxDays, maxExtensions} for a role. Unknown roles get STUDENT limits."""
    key = (role or DEFAULT_ROLE).upper()
    return ROLE_LIMITS.get(key, ROLE_LIMITS[DEFAULT_ROLE])


def overdue_days(expected_return: datetime, actual_or_now: datetime) -> int:
    """Started days past the expected return. 0 when returned on time or early."""
    late = as_utc(actual_or_now) - as_utc(expected_return)
    return max(0, math.ceil(late / ONE_DAY))


def compute_penalty(expected_return: datetime, actual_or_now: datetime,
                    rate_per_day: int | None = None) -> int:
    """
    penalty = ceil(days late) * rate.

    Monotonic in `actual_or_now`, and 0 for any time up to and including
    `expected_return`.
    """
    rate = settings.PENALTY_RATE_PER_DAY if rate_per_day is None else rate_per_day
    return overdue_days(expected_return, actual_or_now) * rate


def format_penalty(amount: int) -> str:
    return f"{settings.PENALTY_CURRENCY} {amount:,}".replace(",", ".")


def can_request_extension(current_extensions: int, is_overdue: bool, status: str,
                          role: str | None = None) -> bool:
    if status != "active":
        return False
    if is_overdue:
        return False
    return current_extensions < get_limits_for_role(role)["maxExtensions"]
