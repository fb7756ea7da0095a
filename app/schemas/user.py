from pydantic import BaseModel, EmailStr, field_validator
from typing import Optional
from datetime import datetime

from app.models.role import RoleName


class UserCreateRequest(BaseModel):
    fullName:   str
    email:      EmailStr
    studentId:  Optional[str] = None
    department: Optional[str] = None
    role:       RoleName      = RoleName.STUDENT

    @field_validator("fullName")
    @classmethod
    def check_name(cls, v):
        if not v.strip(): raise ValueError("Name cannot be empty")
        return v.strip()

    @field_validator("studentId")
    @classmethod
    def check_student_id(cls, v):
        if v is not None and not v.strip(): raise ValueError("Student ID cannot be empty")
        return v.strip().upper() if v else v


class UserUpdateRequest(BaseModel):
    fullName:    Optional[str]      = None
    email:       Optional[EmailStr] = None
    department:  Optional[str]      = None
    role:        Optional[RoleName] = None
    isActive:    Optional[bool]     = None
    bannedUntil: Optional[datetime] = None

    @field_validator("fullName")
    @classmethod
    def check_name(cls, v):
        if v is not None and not v.strip(): raise ValueError("Name cannot be empty")
        return v.strip() if v else v
