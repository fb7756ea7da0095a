from pydantic import BaseModel, field_validator
from typing import Optional
from datetime import datetime
from decimal import Decimal

from app.models.maintenance_schedule import MaintenanceType, MaintenancePriority, MaintenanceStatus


class MaintenanceCreateRequest(BaseModel):
    equipmentId:            int
    maintenanceType:        MaintenanceType     = MaintenanceType.ROUTINE
    title:                  str
    description:            Optional[str]       = None
    scheduledDate:          datetime
    estimatedDurationHours: Decimal             = Decimal("1")
    priority:               MaintenancePriority = MaintenancePriority.MEDIUM

    @field_validator("title")
    @classmethod
    def check_title(cls, v):
        if not v.strip(): raise ValueError("Title cannot be empty")
        return v.strip()

    @field_validator("estimatedDurationHours")
    @classmethod
    def check_duration(cls, v):
        if v <= 0: raise ValueError("Duration must be greater than 0")
        return v


class MaintenanceUpdateRequest(BaseModel):
    title:                  Optional[str]                 = None
    description:            Optional[str]                 = None
    scheduledDate:          Optional[datetime]            = None
    estimatedDurationHours: Optional[Decimal]             = None
    priority:               Optional[MaintenancePriority] = None
    status:                 Optional[MaintenanceStatus]   = None

    @field_validator("estimatedDurationHours")
    @classmethod
    def check_duration(cls, v):
        if v is not None and v <= 0: raise ValueError("Duration must be greater than 0")
        return v
