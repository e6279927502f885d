from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from src.emr.domain.models.form_schema import FormElement


class AssignmentStatus(str, Enum):
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    SUBMITTED = "submitted"


class PortalStatus(str, Enum):
    PENDING = "pending"
    OVERDUE = "overdue"
    COMPLETED = "completed"


class Assignment(BaseModel):
    """A form schema bound to a specific patient for completion.

    ``elements`` is a snapshot of the schema's elements taken when the
    assignment was created, so later edits to the schema never change what
    the patient is asked to fill in.
    """

    id: UUID
    organization_id: str
    schema_id: UUID
    schema_version: int
    schema_name: str
    elements: List[FormElement] = Field(default_factory=list)
    patient_id: str
    status: AssignmentStatus = AssignmentStatus.ASSIGNED
    assigned_at: datetime
    due_at: Optional[datetime] = None
    assigned_by: Optional[str] = None
    is_visible_on_portal: bool = True

    def portal_status(self, now: datetime) -> PortalStatus:
        if self.status == AssignmentStatus.SUBMITTED:
            return PortalStatus.COMPLETED
        if self.due_at is not None and self.due_at < now:
            return PortalStatus.OVERDUE
        return PortalStatus.PENDING
