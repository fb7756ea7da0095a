from pydantic import BaseModel, field_validator
from typing import Optional

from app.models.equipment import EquipmentCondition


class CategoryCreateRequest(BaseModel):
    name:        str
    description: Optional[str] = None

    @field_validator("name")
    @classmethod
    def check_name(cls, v):
        if not v.strip(): raise ValueError("Name cannot be empty")
        return v.strip()


class EquipmentCreateRequest(BaseModel):
    name:         str
    serialNumber: str
    description:  Optional[str]      = None
    categoryId:   Optional[int]      = None
    condition:    EquipmentCondition = EquipmentCondition.GOOD
    location:     Optional[str]      = None

    @field_validator("name", "serialNumber")
    @classmethod
    def check_not_empty(cls, v):
        if not v.strip(): raise ValueError("Field cannot be empty")
        return v.strip()


class EquipmentUpdateRequest(BaseModel):
    name:         Optional[str]                = None
    serialNumber: Optional[str]                = None
    description:  Optional[str]                = None
    categoryId:   Optional[int]                = None
    condition:    Optional[EquipmentCondition] = None
    location:     Optional[str]                = None

    @field_validator("name", "serialNumber")
    @classmethod
    def check_not_empty(cls, v):
        if v is not None and not v.strip(): raise ValueError("Field cannot be empty")
        return v.strip() if v else v


class MarkLostRequest(BaseModel):
    reason: Optional[str] = None
