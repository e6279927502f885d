from __future__ import annotations

from threading import Lock
from typing import Dict, Iterable, List, Optional
from uuid import UUID

from src.emr.domain.models.assignment import Assignment, AssignmentStatus
from src.emr.domain.models.clinical_note import ClinicalNote
from src.emr.domain.models.fax import Fax
from src.emr.domain.models.form_schema import FormSchema
from src.emr.domain.models.patient import Patient
from src.emr.domain.models.submission import Submission
from src.emr.errors import ConflictError, NotFoundError
from src.emr.infra.db.repositories import (
    AssignmentRepository,
    ClinicalNoteRepository,
    FaxRepository,
    FormSchemaRepository,
    PatientRepository,
)
from src.emr.tenancy import get_current_organization


class InMemoryPatientRepository(PatientRepository):
    def __init__(self) -> None:
        self._patients: Dict[str, Patient] = {}

    def get(self, patient_id: str) -> Optional[Patient]:
        patient = self._patients.get(patient_id)
        if patient is None or patient.organization_id != get_current_organization():
            return None
        return patient

    def list(self, *, include_deleted: bool = False) -> Iterable[Patient]:
        current = get_current_organization()
        for patient in self._patients.values():
            if patient.organization_id != current:
                continue
            if patient.is_deleted and not include_deleted:
                continue
            yield patient

    def save(self, patient: Patient) -> None:
        self._patients[patient.id] = patient


class InMemoryFormSchemaRepository(FormSchemaRepository):
    def __init__(self) -> None:
        self._schemas: Dict[UUID, FormSchema] = {}

    def get(self, schema_id: UUID) -> Optional[FormSchema]:
        schema = self._schemas.get(schema_id)
        if schema is None or schema.organization_id != get_current_organization():
            return None
        return schema

    def list(self, *, tag: Optional[str] = None, include_inactive: bool = False) -> Iterable[FormSchema]:
        current = get_current_organization()
        for schema in self._schemas.values():
            if schema.organization_id != current:
                continue
            if not schema.is_active and not include_inactive:
                continue
            if tag is not None and tag not in schema.tags:
                continue
            yield schema

    def save(self, schema: FormSchema) -> None:
        self._schemas[schema.id] = schema


class InMemoryAssignmentRepository(AssignmentRepository):
    def __init__(self) -> None:
        self._assignments: Dict[UUID, Assignment] = {}
        # Keyed by assignment id; a list so that a broken writer would be
        # visible to tests rather than silently overwriting.
        self._submissions: Dict[UUID, List[Submission]] = {}
        self._lock = Lock()

    def get(self, assignment_id: UUID) -> Optional[Assignment]:
        assignment = self._assignments.get(assignment_id)
        if assignment is None or assignment.organization_id != get_current_organization():
            return None
        return assignment

    def list_by_filters(
        self,
        *,
        patient_id: Optional[str] = None,
        schema_id: Optional[UUID] = None,
        status: Optional[AssignmentStatus] = None,
    ) -> Iterable[Assignment]:
        current = get_current_organization()
        for assignment in list(self._assignments.values()):
            if assignment.organization_id != current:
                continue
            if patient_id is not None and assignment.patient_id != patient_id:
                continue
            if schema_id is not None and assignment.schema_id != schema_id:
                continue
            if status is not None and assignment.status != status:
                continue
            yield assignment

    def save(self, assignment: Assignment) -> None:
        with self._lock:
            stored = self._assignments.get(assignment.id)
            if stored is not None and stored.status == AssignmentStatus.SUBMITTED:
                if assignment.status != AssignmentStatus.SUBMITTED:
                    raise ConflictError("Assignment is already submitted")
            self._assignments[assignment.id] = assignment

    def get_submission(self, assignment_id: UUID) -> Optional[Submission]:
        if self.get(assignment_id) is None:
            return None
        submissions = self._submissions.get(assignment_id) or []
        return submissions[0] if submissions else None

    def count_submissions(self, assignment_id: UUID) -> int:
        return len(self._submissions.get(assignment_id) or [])

    def record_submission(self, assignment_id: UUID, submission: Submission) -> Assignment:
        with self._lock:
            assignment = self.get(assignment_id)
            if assignment is None:
                raise NotFoundError("Assignment not found")
            if assignment.status == AssignmentStatus.SUBMITTED or self._submissions.get(assignment_id):
                raise ConflictError("Assignment has already been submitted")

            updated = assignment.model_copy(update={"status": AssignmentStatus.SUBMITTED})
            self._submissions[assignment_id] = [submission]
            self._assignments[assignment_id] = updated
            return updated


class InMemoryClinicalNoteRepository(ClinicalNoteRepository):
    def __init__(self) -> None:
        self._notes: Dict[UUID, ClinicalNote] = {}
        self._lock = Lock()

    def get(self, note_id: UUID) -> Optional[ClinicalNote]:
        note = self._notes.get(note_id)
        if note is None or note.organization_id != get_current_organization():
            return None
        return note

    def list_by_patient(self, patient_id: str, *, include_deleted: bool = False) -> Iterable[ClinicalNote]:
        current = get_current_organization()
        notes = [
            note
            for note in self._notes.values()
            if note.organization_id == current
            and note.patient_id == patient_id
            and (include_deleted or not note.is_deleted)
        ]
        return sorted(notes, key=lambda n: n.created_at, reverse=True)

    def save(self, note: ClinicalNote, *, expected_version: Optional[int] = None) -> None:
        with self._lock:
            if expected_version is not None:
                stored = self._notes.get(note.id)
                if stored is None or stored.version != expected_version:
                    raise ConflictError(
                        "Note was modified by someone else",
                        details={"expected_version": expected_version, "actual_version": stored.version if stored else None},
                    )
            self._notes[note.id] = note


class InMemoryFaxRepository(FaxRepository):
    def __init__(self) -> None:
        self._faxes: Dict[UUID, Fax] = {}

    def get(self, fax_id: UUID) -> Optional[Fax]:
        fax = self._faxes.get(fax_id)
        if fax is None or fax.organization_id != get_current_organization():
            return None
        return fax

    def get_by_carrier_sid(self, sid: str) -> Optional[Fax]:
        for fax in self._faxes.values():
            if fax.twilio_sid == sid:
                return fax
        return None

    def list(self) -> Iterable[Fax]:
        current = get_current_organization()
        faxes = [fax for fax in self._faxes.values() if fax.organization_id == current]
        return sorted(faxes, key=lambda f: f.created_at, reverse=True)

    def save(self, fax: Fax) -> None:
        self._faxes[fax.id] = fax
