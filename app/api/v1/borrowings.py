from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from typing import Optional

from app.database import get_db
from app.dependencies import get_current_user, get_staff_user
from app.models.borrowing_transaction import BorrowingStatus
from app.models.user import User
from app.schemas.borrowing import (
    BorrowCreateRequest, BorrowApproveRequest, BorrowRejectRequest,
    BorrowReturnRequest, ExtensionRequest,
)
from app.schemas.common import success_response, paginated_response
from app.services.borrowing_service import borrowing_service

router = APIRouter(prefix="/borrowings")


@router.get("", summary="List borrowings (own unless staff), with running penalty")
def list_borrowings(
    page:         int                       = Query(1, ge=1),
    limit:        int                       = Query(20, ge=1, le=100),
    status:       Optional[BorrowingStatus] = Query(None),
    equipment_id: Optional[int]             = Query(None),
    user_id:      Optional[int]             = Query(None, description="Staff only"),
    db:           Session                   = Depends(get_db),
    current_user: User                      = Depends(get_current_user),
):
    data, total = borrowing_service.list_borrowings(db, current_user, page, limit, status, equipment_id, user_id)
    return paginated_response("Borrowings retrieved successfully", data, total, page, limit)


# Declared before /{borrowing_id} so the literal path wins
@router.post("/mark-overdue", summary="Persist OVERDUE on late active borrowings (Staff / scheduler)")
def mark_overdue(db: Session = Depends(get_db), _: User = Depends(get_staff_user)):
    count = borrowing_service.mark_overdue(db)
    return success_response(f"{count} borrowing(s) marked overdue", {"updated": count})


@router.get("/{borrowing_id}", summary="Get borrowing detail")
def get_borrowing(
    borrowing_id: int,
    db:           Session = Depends(get_db),
    current_user: User    = Depends(get_current_user),
):
    return success_response("Borrowing retrieved", borrowing_service.get_borrowing(db, borrowing_id, current_user))


@router.post("", status_code=status.HTTP_201_CREATED, summary="Request to borrow equipment")
def request_borrow(
    body: BorrowCreateRequest,
    db:   Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return success_response("Borrow request submitted", borrowing_service.request_borrow(db, body, current_user))


@router.post("/{borrowing_id}/approve", summary="Approve borrow request (Staff)")
def approve_borrow(
    borrowing_id: int,
    body:         BorrowApproveRequest = BorrowApproveRequest(),
    db:           Session              = Depends(get_db),
    current_user: User                 = Depends(get_staff_user),
):
    return success_response("Borrow request approved",
                            borrowing_service.approve_borrow(db, borrowing_id, body, current_user))


@router.post("/{borrowing_id}/reject", summary="Reject borrow request (Staff)")
def reject_borrow(
    borrowing_id: int,
    body:         BorrowRejectRequest,
    db:           Session = Depends(get_db),
    current_user: User    = Depends(get_staff_user),
):
    return success_response("Borrow request rejected",
                            borrowing_service.reject_borrow(db, borrowing_id, body, current_user))


@router.patch("/{borrowing_id}/cancel", summary="Cancel own borrow request (PENDING only)")
def cancel_borrow(
    borrowing_id: int,
    db:           Session = Depends(get_db),
    current_user: User    = Depends(get_current_user),
):
    return success_response("Borrow request cancelled", borrowing_service.cancel_borrow(db, borrowing_id, current_user))


@router.post("/{borrowing_id}/return", summary="Confirm equipment return (Staff)")
def return_borrow(
    borrowing_id: int,
    body:         BorrowReturnRequest = BorrowReturnRequest(),
    db:           Session             = Depends(get_db),
    current_user: User                = Depends(get_staff_user),
):
    return success_response("Return recorded", borrowing_service.return_borrow(db, borrowing_id, body, current_user))


@router.post("/{borrowing_id}/extend", summary="Extend the expected return date")
def extend_borrow(
    borrowing_id: int,
    body:         ExtensionRequest,
    db:           Session = Depends(get_db),
    current_user: User    = Depends(get_current_user),
):
    return success_response("Borrowing extended", borrowing_service.extend_borrow(db, borrowing_id, body, current_user))


@router.patch("/{borrowing_id}/penalty-paid", summary="Mark late penalty as paid (Staff)")
def mark_penalty_paid(
    borrowing_id: int,
    db:           Session = Depends(get_db),
    current_user: User    = Depends(get_staff_user),
):
    return success_response("Penalty marked as paid",
                            borrowing_service.mark_penalty_paid(db, borrowing_id, current_user))
