from sqlalchemy.orm import Session
from app.models.audit_log import AuditLog


def log_action(
    db: Session,
    user_id: int | None,
    action: str,
    entity_type: str,
    entity_id: int | None = None,
    description: str | None = None,
) -> None:
    """
    Add an audit trail row to the caller's transaction.

    Args:
        db:          Active DB session (adds only, the caller commits)
        user_id:     Acting user (None = system action, e.g. overdue sweep)
        action:      Verb: CREATE, APPROVE, REJECT, CANCEL, RETURN, EXTEND, NOTIFY, ...
        entity_type: "Reservation", "BorrowingTransaction", "WaitlistEntry", ...
        entity_id:   Primary key of the affected record
        description: Human-readable line for the audit screen

    Usage:
        log_action(db, current_user.id, "APPROVE", "Reservation", r.id,
                   f"Reservation #{r.id} approved for {r.user.fullName}")
        db.commit()
    """
    db.add(AuditLog(
        userId=user_id,
        action=action,
        entityType=entity_type,
        entityId=entity_id,
        description=description,
    ))
