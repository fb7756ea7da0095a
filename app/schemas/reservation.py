from pydantic import BaseModel, field_validator
from typing import Optional
from datetime import datetime

from app.models.reservation import ReservationStatus


class ReservationCreateRequest(BaseModel):
    equipmentId:      int
    userId:           Optional[int]  = None   # staff may book on behalf of a user
    title:            str
    description:      Optional[str]  = None
    startTime:        datetime
    endTime:          datetime
    approvalRequired: Optional[bool] = None   # None = decided by the requester's role

    @field_validator("title")
    @classmethod
    def check_title(cls, v):
        if not v.strip(): raise ValueError("Title cannot be empty")
        return v.strip()


class ReservationUpdateRequest(BaseModel):
    title:            Optional[str]               = None
    description:      Optional[str]               = None
    startTime:        Optional[datetime]          = None
    endTime:          Optional[datetime]          = None
    status:           Optional[ReservationStatus] = None
    approvalRequired: Optional[bool]              = None
    note:             Optional[str]               = None

    @field_validator("title")
    @classmethod
    def check_title(cls, v):
        if v is not None and not v.strip(): raise ValueError("Title cannot be empty")
        return v.strip() if v else v
