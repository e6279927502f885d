from __future__ import annotations

from typing import Iterable, List, Optional
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError

from src.emr.domain.models.assignment import Assignment, AssignmentStatus
from src.emr.domain.models.clinical_note import ClinicalNote
from src.emr.domain.models.fax import Fax
from src.emr.domain.models.form_schema import FormSchema
from src.emr.domain.models.patient import Patient
from src.emr.domain.models.submission import Submission
from src.emr.errors import ConflictError, NotFoundError
from src.emr.infra.db.models import AssignmentORM, ClinicalNoteORM, FaxORM, FormSchemaORM, PatientORM, SubmissionORM
from src.emr.infra.db.repositories import (
    AssignmentRepository,
    ClinicalNoteRepository,
    FaxRepository,
    FormSchemaRepository,
    PatientRepository,
)
from src.emr.infra.db.session import SessionFactory, session_scope
from src.emr.tenancy import get_current_organization


class SqlPatientRepository(PatientRepository):
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    def get(self, patient_id: str) -> Optional[Patient]:
        with session_scope(self._session_factory) as session:
            orm = session.get(PatientORM, patient_id)
            if orm is None or orm.organization_id != get_current_organization():
                return None
            return orm.to_domain()

    def list(self, *, include_deleted: bool = False) -> Iterable[Patient]:
        with session_scope(self._session_factory) as session:
            query = select(PatientORM).where(PatientORM.organization_id == get_current_organization())
            if not include_deleted:
                query = query.where(PatientORM.is_deleted.is_(False))
            return [orm.to_domain() for orm in session.scalars(query.order_by(PatientORM.full_name))]

    def save(self, patient: Patient) -> None:
        with session_scope(self._session_factory, commit=True) as session:
            session.merge(PatientORM.from_domain(patient))


class SqlFormSchemaRepository(FormSchemaRepository):
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    def get(self, schema_id: UUID) -> Optional[FormSchema]:
        with session_scope(self._session_factory) as session:
            orm = session.get(FormSchemaORM, schema_id)
            if orm is None or orm.organization_id != get_current_organization():
                return None
            return orm.to_domain()

    def list(self, *, tag: Optional[str] = None, include_inactive: bool = False) -> Iterable[FormSchema]:
        with session_scope(self._session_factory) as session:
            query = select(FormSchemaORM).where(FormSchemaORM.organization_id == get_current_organization())
            if not include_inactive:
                query = query.where(FormSchemaORM.is_active.is_(True))
            schemas = [orm.to_domain() for orm in session.scalars(query.order_by(FormSchemaORM.updated_at.desc()))]
        # Tags are a JSON array; filtering in Python keeps this portable
        # across SQLite and PostgreSQL.
        if tag is not None:
            schemas = [s for s in schemas if tag in s.tags]
        return schemas

    def save(self, schema: FormSchema) -> None:
        with session_scope(self._session_factory, commit=True) as session:
            existing = session.get(FormSchemaORM, schema.id)
            if existing is None:
                session.add(FormSchemaORM.from_domain(schema))
            else:
                existing.apply(schema)


class SqlAssignmentRepository(AssignmentRepository):
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    def get(self, assignment_id: UUID) -> Optional[Assignment]:
        with session_scope(self._session_factory) as session:
            orm = session.get(AssignmentORM, assignment_id)
            if orm is None or orm.organization_id != get_current_organization():
                return None
            return orm.to_domain()

    def list_by_filters(
        self,
        *,
        patient_id: Optional[str] = None,
        schema_id: Optional[UUID] = None,
        status: Optional[AssignmentStatus] = None,
    ) -> Iterable[Assignment]:
        with session_scope(self._session_factory) as session:
            query = select(AssignmentORM).where(AssignmentORM.organization_id == get_current_organization())
            if patient_id is not None:
                query = query.where(AssignmentORM.patient_id == patient_id)
            if schema_id is not None:
                query = query.where(AssignmentORM.document_template_id == schema_id)
            if status is not None:
                query = query.where(AssignmentORM.status == status.value)
            return [orm.to_domain() for orm in session.scalars(query.order_by(AssignmentORM.assigned_at))]

    def save(self, assignment: Assignment) -> None:
        with session_scope(self._session_factory, commit=True) as session:
            existing = session.get(AssignmentORM, assignment.id)
            if existing is None:
                session.add(AssignmentORM.from_domain(assignment))
                return
            if existing.status == AssignmentStatus.SUBMITTED.value and assignment.status != AssignmentStatus.SUBMITTED:
                raise ConflictError("Assignment is already submitted")
            fresh = AssignmentORM.from_domain(assignment)
            for column in AssignmentORM.__table__.columns.keys():
                if column != "id":
                    setattr(existing, column, getattr(fresh, column))

    def get_submission(self, assignment_id: UUID) -> Optional[Submission]:
        with session_scope(self._session_factory) as session:
            orm = session.scalars(
                select(SubmissionORM).where(
                    SubmissionORM.assigned_form_id == assignment_id,
                    SubmissionORM.organization_id == get_current_organization(),
                )
            ).first()
            return orm.to_domain() if orm is not None else None

    def count_submissions(self, assignment_id: UUID) -> int:
        with session_scope(self._session_factory) as session:
            return session.scalar(
                select(func.count()).select_from(SubmissionORM).where(SubmissionORM.assigned_form_id == assignment_id)
            ) or 0

    def record_submission(self, assignment_id: UUID, submission: Submission) -> Assignment:
        with session_scope(self._session_factory, commit=True) as session:
            # Conditional update: only one writer can move the row out of the
            # unsubmitted states, the loser sees rowcount == 0.
            result = session.execute(
                update(AssignmentORM)
                .where(
                    AssignmentORM.id == assignment_id,
                    AssignmentORM.organization_id == get_current_organization(),
                    AssignmentORM.status != AssignmentStatus.SUBMITTED.value,
                )
                .values(status=AssignmentStatus.SUBMITTED.value)
            )
            if result.rowcount == 0:
                orm = session.get(AssignmentORM, assignment_id)
                if orm is None or orm.organization_id != get_current_organization():
                    raise NotFoundError("Assignment not found")
                raise ConflictError("Assignment has already been submitted")

            session.add(SubmissionORM.from_domain(submission))
            try:
                session.flush()
            except IntegrityError as exc:
                raise ConflictError("Assignment has already been submitted") from exc

            orm = session.get(AssignmentORM, assignment_id)
            session.refresh(orm)
            return orm.to_domain()


class SqlClinicalNoteRepository(ClinicalNoteRepository):
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    def get(self, note_id: UUID) -> Optional[ClinicalNote]:
        with session_scope(self._session_factory) as session:
            orm = session.get(ClinicalNoteORM, note_id)
            if orm is None or orm.organization_id != get_current_organization():
                return None
            return orm.to_domain()

    def list_by_patient(self, patient_id: str, *, include_deleted: bool = False) -> Iterable[ClinicalNote]:
        with session_scope(self._session_factory) as session:
            query = select(ClinicalNoteORM).where(
                ClinicalNoteORM.organization_id == get_current_organization(),
                ClinicalNoteORM.patient_id == patient_id,
            )
            if not include_deleted:
                query = query.where(ClinicalNoteORM.is_deleted.is_(False))
            notes: List[ClinicalNote] = [
                orm.to_domain() for orm in session.scalars(query.order_by(ClinicalNoteORM.created_at.desc()))
            ]
            return notes

    def save(self, note: ClinicalNote, *, expected_version: Optional[int] = None) -> None:
        with session_scope(self._session_factory, commit=True) as session:
            existing = session.get(ClinicalNoteORM, note.id, with_for_update=expected_version is not None)
            if existing is None:
                if expected_version is not None:
                    raise ConflictError("Note was modified by someone else")
                session.add(ClinicalNoteORM.from_domain(note))
                return
            if expected_version is not None and existing.version != expected_version:
                raise ConflictError(
                    "Note was modified by someone else",
                    details={"expected_version": expected_version, "actual_version": existing.version},
                )
            existing.apply(note)


class SqlFaxRepository(FaxRepository):
    def __init__(self, session_factory: SessionFactory) -> None:
        self._session_factory = session_factory

    def get(self, fax_id: UUID) -> Optional[Fax]:
        with session_scope(self._session_factory) as session:
            orm = session.get(FaxORM, fax_id)
            if orm is None or orm.organization_id != get_current_organization():
                return None
            return orm.to_domain()

    def get_by_carrier_sid(self, sid: str) -> Optional[Fax]:
        with session_scope(self._session_factory) as session:
            orm = session.scalars(select(FaxORM).where(FaxORM.twilio_sid == sid)).first()
            return orm.to_domain() if orm is not None else None

    def list(self) -> Iterable[Fax]:
        with session_scope(self._session_factory) as session:
            query = (
                select(FaxORM)
                .where(FaxORM.organization_id == get_current_organization())
                .order_by(FaxORM.created_at.desc())
            )
            return [orm.to_domain() for orm in session.scalars(query)]

    def save(self, fax: Fax) -> None:
        with session_scope(self._session_factory, commit=True) as session:
            session.merge(FaxORM.from_domain(fax))
