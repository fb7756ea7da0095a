from pydantic import BaseModel
from typing import Optional
from datetime import datetime

from app.models.waitlist_entry import WaitlistPriority


class WaitlistCreateRequest(BaseModel):
    equipmentId:        int
    userId:             Optional[int] = None
    requestedStartTime: datetime
    requestedEndTime:   datetime
    priority:           WaitlistPriority = WaitlistPriority.NORMAL


class WaitlistPromoteRequest(BaseModel):
    equipmentId: int
    startTime:   datetime
    endTime:     datetime
