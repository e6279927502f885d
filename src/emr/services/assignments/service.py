from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Sequence
from uuid import UUID, uuid4

from pydantic import BaseModel

from src.emr.domain.models.assignment import Assignment, AssignmentStatus, PortalStatus
from src.emr.domain.models.submission import AnswerInput, Submission
from src.emr.errors import ConflictError, NotFoundError, ValidationError
from src.emr.infra.db.repositories import AssignmentRepository, FormSchemaRepository, PatientRepository
from src.emr.services.forms.answers import build_form_data
from src.emr.tenancy import get_current_organization

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    """Treat naive datetimes from clients as UTC."""

    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


class PortalDocument(BaseModel):
    """An assignment as shown in the patient portal document list."""

    assignment_id: UUID
    schema_name: str
    assigned_at: datetime
    due_at: Optional[datetime] = None
    status: PortalStatus
    submission_id: Optional[UUID] = None


class AssignmentService:
    """Lifecycle of assigned forms: assigned -> (in_progress) -> submitted."""

    def __init__(
        self,
        *,
        schemas: FormSchemaRepository,
        patients: PatientRepository,
        assignments: AssignmentRepository,
        default_due_days: int = 7,
    ) -> None:
        self._schemas = schemas
        self._patients = patients
        self._assignments = assignments
        self._default_due_days = default_due_days

    def create_assignment(
        self,
        schema_id: UUID,
        patient_id: str,
        due_at: Optional[datetime] = None,
        *,
        assigned_by: Optional[str] = None,
        is_visible_on_portal: bool = True,
    ) -> Assignment:
        schema = self._schemas.get(schema_id)
        if schema is None or not schema.is_active:
            raise NotFoundError("Form schema not found")
        patient = self._patients.get(patient_id)
        if patient is None or patient.is_deleted:
            raise NotFoundError("Patient not found")

        now = datetime.now(timezone.utc)
        assignment = Assignment(
            id=uuid4(),
            organization_id=get_current_organization(),
            schema_id=schema.id,
            schema_version=schema.version,
            schema_name=schema.name,
            elements=[element.model_copy(deep=True) for element in schema.elements],
            patient_id=patient.id,
            status=AssignmentStatus.ASSIGNED,
            assigned_at=now,
            due_at=_as_utc(due_at) if due_at is not None else now + timedelta(days=self._default_due_days),
            assigned_by=assigned_by,
            is_visible_on_portal=is_visible_on_portal,
        )
        self._assignments.save(assignment)
        logger.info("Assigned form schema %s to patient %s as %s", schema.id, patient.id, assignment.id)
        return assignment

    def assign_many(
        self,
        schema_ids: Sequence[UUID],
        patient_ids: Sequence[str],
        due_at: Optional[datetime] = None,
        *,
        assigned_by: Optional[str] = None,
    ) -> List[Assignment]:
        """Assign every schema to every patient.

        All references are checked before anything is written, so a bad id
        leaves no partial batch behind.
        """

        if not schema_ids or not patient_ids:
            raise ValidationError("At least one template and one patient are required")
        for schema_id in schema_ids:
            schema = self._schemas.get(schema_id)
            if schema is None or not schema.is_active:
                raise NotFoundError(f"Form schema {schema_id} not found")
        for patient_id in patient_ids:
            patient = self._patients.get(patient_id)
            if patient is None or patient.is_deleted:
                raise NotFoundError(f"Patient {patient_id} not found")

        return [
            self.create_assignment(schema_id, patient_id, due_at, assigned_by=assigned_by)
            for schema_id in schema_ids
            for patient_id in patient_ids
        ]

    def get_assignment(self, assignment_id: UUID) -> Assignment:
        assignment = self._assignments.get(assignment_id)
        if assignment is None:
            raise NotFoundError("Assignment not found")
        return assignment

    def list_assignments(
        self,
        *,
        patient_id: Optional[str] = None,
        status: Optional[AssignmentStatus] = None,
    ) -> List[Assignment]:
        return list(self._assignments.list_by_filters(patient_id=patient_id, status=status))

    def start_assignment(self, assignment_id: UUID) -> Assignment:
        assignment = self.get_assignment(assignment_id)
        if assignment.status == AssignmentStatus.SUBMITTED:
            raise ConflictError("Assignment has already been submitted")
        if assignment.status == AssignmentStatus.IN_PROGRESS:
            return assignment
        updated = assignment.model_copy(update={"status": AssignmentStatus.IN_PROGRESS})
        self._assignments.save(updated)
        return updated

    def submit_form(
        self,
        assignment_id: UUID,
        answers: Sequence[AnswerInput],
        *,
        submitted_by: Optional[str] = None,
    ) -> Submission:
        """Validate answers and atomically record the submission.

        Raises ConflictError if the assignment was already submitted, before
        looking at the answers, so a duplicate call never creates a second
        submission regardless of its payload.
        """

        assignment = self.get_assignment(assignment_id)
        if assignment.status == AssignmentStatus.SUBMITTED:
            raise ConflictError("Assignment has already been submitted")

        form_data = build_form_data(assignment.elements, answers)
        submission = Submission(
            id=uuid4(),
            organization_id=assignment.organization_id,
            assignment_id=assignment.id,
            patient_id=assignment.patient_id,
            form_data=form_data,
            created_at=datetime.now(timezone.utc),
            submitted_by=submitted_by,
        )
        self._assignments.record_submission(assignment.id, submission)
        logger.info("Recorded submission %s for assignment %s", submission.id, assignment.id)
        return submission

    def get_submission(self, assignment_id: UUID) -> Submission:
        self.get_assignment(assignment_id)
        submission = self._assignments.get_submission(assignment_id)
        if submission is None:
            raise NotFoundError("Assignment has not been submitted yet")
        return submission

    def portal_documents(self, patient_id: str, *, now: Optional[datetime] = None) -> List[PortalDocument]:
        now = _as_utc(now) if now is not None else datetime.now(timezone.utc)
        documents: List[PortalDocument] = []
        for assignment in self._assignments.list_by_filters(patient_id=patient_id):
            if not assignment.is_visible_on_portal:
                continue
            submission = None
            if assignment.status == AssignmentStatus.SUBMITTED:
                submission = self._assignments.get_submission(assignment.id)
            documents.append(
                PortalDocument(
                    assignment_id=assignment.id,
                    schema_name=assignment.schema_name,
                    assigned_at=assignment.assigned_at,
                    due_at=assignment.due_at,
                    status=assignment.portal_status(now),
                    submission_id=submission.id if submission else None,
                )
            )
        return documents
