from __future__ import annotations

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from src.emr.context import AppContext
from src.emr.domain.models.assignment import Assignment, AssignmentStatus
from src.emr.domain.models.submission import AnswerInput, Submission
from src.emr.domain.models.user import User, UserRole
from src.emr.errors import AuthorizationError
from src.emr.security import STAFF_ROLES, ensure_role, get_app_context, get_current_user, require_staff
from src.emr.services.assignments.service import PortalDocument

router = APIRouter(
    prefix="/assignments",
    tags=["assignments"],
    dependencies=[Depends(get_current_user)],
)


class CreateAssignmentRequest(BaseModel):
    schema_id: UUID
    patient_id: str
    due_at: Optional[datetime] = None
    is_visible_on_portal: bool = True


class BulkAssignRequest(BaseModel):
    schema_ids: List[UUID]
    patient_ids: List[str]
    due_at: Optional[datetime] = None


class SubmitFormRequest(BaseModel):
    answers: List[AnswerInput] = Field(default_factory=list)


@router.post("/", response_model=Assignment, status_code=status.HTTP_201_CREATED)
async def create_assignment(
    payload: CreateAssignmentRequest,
    user: User = Depends(require_staff),
    ctx: AppContext = Depends(get_app_context),
) -> Assignment:
    assignment = ctx.assignments.create_assignment(
        payload.schema_id,
        payload.patient_id,
        payload.due_at,
        assigned_by=str(user.id),
        is_visible_on_portal=payload.is_visible_on_portal,
    )
    ctx.audit.log_event(
        action="assign",
        resource_type="assignment",
        resource_id=str(assignment.id),
        extra={"schema_id": str(assignment.schema_id), "schema_version": assignment.schema_version},
    )
    return assignment


@router.post("/bulk", response_model=List[Assignment], status_code=status.HTTP_201_CREATED)
async def assign_many(
    payload: BulkAssignRequest,
    user: User = Depends(require_staff),
    ctx: AppContext = Depends(get_app_context),
) -> List[Assignment]:
    assignments = ctx.assignments.assign_many(
        payload.schema_ids,
        payload.patient_ids,
        payload.due_at,
        assigned_by=str(user.id),
    )
    ctx.audit.log_event(action="assign", resource_type="assignment", extra={"count": len(assignments)})
    return assignments


@router.get("/", response_model=List[Assignment], dependencies=[Depends(require_staff)])
async def list_assignments(
    patient_id: Optional[str] = None,
    status_filter: Optional[AssignmentStatus] = Query(None, alias="status"),
    ctx: AppContext = Depends(get_app_context),
) -> List[Assignment]:
    return ctx.assignments.list_assignments(patient_id=patient_id, status=status_filter)


def _ensure_patient_access(user: User, patient_id: str) -> None:
    """Patients may only act on their own record; staff may act on any."""

    if user.role == UserRole.PATIENT:
        if user.patient_id is None or user.patient_id != patient_id:
            raise AuthorizationError("Patients can only access their own documents")
        return
    ensure_role(user, *STAFF_ROLES)


def _load_assignment(ctx: AppContext, user: User, assignment_id: UUID) -> Assignment:
    assignment = ctx.assignments.get_assignment(assignment_id)
    _ensure_patient_access(user, assignment.patient_id)
    return assignment


@router.get("/portal/{patient_id}", response_model=List[PortalDocument])
async def portal_documents(
    patient_id: str,
    user: User = Depends(get_current_user),
    ctx: AppContext = Depends(get_app_context),
) -> List[PortalDocument]:
    """Documents shown to a patient in the portal, with pending/overdue/completed status."""

    _ensure_patient_access(user, patient_id)
    return ctx.assignments.portal_documents(patient_id)


@router.get("/{assignment_id}", response_model=Assignment)
async def get_assignment(
    assignment_id: UUID,
    user: User = Depends(get_current_user),
    ctx: AppContext = Depends(get_app_context),
) -> Assignment:
    return _load_assignment(ctx, user, assignment_id)


@router.post("/{assignment_id}/start", response_model=Assignment)
async def start_assignment(
    assignment_id: UUID,
    user: User = Depends(get_current_user),
    ctx: AppContext = Depends(get_app_context),
) -> Assignment:
    _load_assignment(ctx, user, assignment_id)
    assignment = ctx.assignments.start_assignment(assignment_id)
    ctx.audit.log_event(action="start", resource_type="assignment", resource_id=str(assignment_id))
    return assignment


@router.post("/{assignment_id}/submit", response_model=Submission, status_code=status.HTTP_201_CREATED)
async def submit_form(
    assignment_id: UUID,
    payload: SubmitFormRequest,
    user: User = Depends(get_current_user),
    ctx: AppContext = Depends(get_app_context),
) -> Submission:
    _load_assignment(ctx, user, assignment_id)
    submission = ctx.assignments.submit_form(assignment_id, payload.answers, submitted_by=str(user.id))
    ctx.audit.log_event(
        action="submit",
        resource_type="assignment",
        resource_id=str(assignment_id),
        extra={"submission_id": str(submission.id), "answer_count": len(submission.form_data)},
    )
    return submission


@router.get("/{assignment_id}/submission", response_model=Submission)
async def get_submission(
    assignment_id: UUID,
    user: User = Depends(get_current_user),
    ctx: AppContext = Depends(get_app_context),
) -> Submission:
    _load_assignment(ctx, user, assignment_id)
    return ctx.assignments.get_submission(assignment_id)
