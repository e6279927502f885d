from __future__ import annotations

from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr


class UserRole(str, Enum):
    PROVIDER = "provider"
    ADMIN = "admin"
    PATIENT = "patient"


class User(BaseModel):
    id: UUID
    email: EmailStr
    role: UserRole
    # Organization (tenant) that this user belongs to. Every query the user
    # issues is scoped to it.
    organization_id: str
    # Patient record a portal user may act for; set only for the patient role.
    patient_id: Optional[str] = None
