from pydantic import BaseModel, field_validator
from typing import Optional
from datetime import datetime


class BorrowCreateRequest(BaseModel):
    equipmentId:        int
    borrowDate:         Optional[datetime] = None   # defaults to now
    expectedReturnDate: datetime
    purpose:            Optional[str]      = None
    notes:              Optional[str]      = None


class BorrowApproveRequest(BaseModel):
    note: Optional[str] = None


class BorrowRejectRequest(BaseModel):
    note: str

    @field_validator("note")
    @classmethod
    def check_note(cls, v):
        if not v.strip(): raise ValueError("Rejection note is required")
        return v.strip()


class BorrowReturnRequest(BaseModel):
    condition: Optional[str] = None
    notes:     Optional[str] = None
    hasDamage: bool          = False


class ExtensionRequest(BaseModel):
    newExpectedReturnDate: datetime
