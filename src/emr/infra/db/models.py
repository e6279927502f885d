from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, Boolean, Date, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from src.emr.domain.models.assignment import Assignment, AssignmentStatus
from src.emr.domain.models.clinical_note import ClinicalNote, NoteStatus, NoteType
from src.emr.domain.models.fax import Fax, FaxDirection
from src.emr.domain.models.form_schema import FormSchema
from src.emr.domain.models.patient import Patient
from src.emr.domain.models.submission import Submission


def _aware(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo on round-trip; values are always stored as UTC.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Base(DeclarativeBase):
    pass


class PatientORM(Base):
    __tablename__ = "patients"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    organization_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    full_name: Mapped[str] = mapped_column(String, nullable=False)
    date_of_birth: Mapped[date | None] = mapped_column(Date, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    @classmethod
    def from_domain(cls, patient: Patient) -> "PatientORM":
        return cls(**patient.model_dump())

    def to_domain(self) -> Patient:
        return Patient(
            id=self.id,
            organization_id=self.organization_id,
            full_name=self.full_name,
            date_of_birth=self.date_of_birth,
            created_at=_aware(self.created_at),
            is_deleted=self.is_deleted,
        )


class FormSchemaORM(Base):
    __tablename__ = "document_templates"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    organization_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    tags: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    # Ordered list of element dicts; order is the display order.
    content: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    parent_schema_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    created_by: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    @classmethod
    def from_domain(cls, schema: FormSchema) -> "FormSchemaORM":
        data = schema.model_dump(mode="json")
        return cls(
            id=schema.id,
            organization_id=schema.organization_id,
            name=schema.name,
            description=schema.description,
            tags=list(schema.tags),
            content=data["elements"],
            version=schema.version,
            is_active=schema.is_active,
            parent_schema_id=schema.parent_schema_id,
            created_by=schema.created_by,
            created_at=schema.created_at,
            updated_at=schema.updated_at,
        )

    def apply(self, schema: FormSchema) -> None:
        fresh = FormSchemaORM.from_domain(schema)
        for column in self.__table__.columns.keys():
            if column != "id":
                setattr(self, column, getattr(fresh, column))

    def to_domain(self) -> FormSchema:
        return FormSchema.model_validate(
            {
                "id": self.id,
                "organization_id": self.organization_id,
                "name": self.name,
                "description": self.description,
                "tags": self.tags or [],
                "elements": self.content or [],
                "version": self.version,
                "is_active": self.is_active,
                "parent_schema_id": self.parent_schema_id,
                "created_by": self.created_by,
                "created_at": _aware(self.created_at),
                "updated_at": _aware(self.updated_at),
            }
        )


class AssignmentORM(Base):
    __tablename__ = "assigned_documents"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    organization_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    document_template_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    schema_version: Mapped[int] = mapped_column(Integer, nullable=False)
    schema_name: Mapped[str] = mapped_column(String, nullable=False)
    # Snapshot of the template elements at assignment time.
    content: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    patient_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    status: Mapped[str] = mapped_column(String, nullable=False)
    assigned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    due_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    assigned_by: Mapped[str | None] = mapped_column(String, nullable=True)
    is_visible_on_portal: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    @classmethod
    def from_domain(cls, assignment: Assignment) -> "AssignmentORM":
        data = assignment.model_dump(mode="json")
        return cls(
            id=assignment.id,
            organization_id=assignment.organization_id,
            document_template_id=assignment.schema_id,
            schema_version=assignment.schema_version,
            schema_name=assignment.schema_name,
            content=data["elements"],
            patient_id=assignment.patient_id,
            status=assignment.status.value,
            assigned_at=assignment.assigned_at,
            due_at=assignment.due_at,
            assigned_by=assignment.assigned_by,
            is_visible_on_portal=assignment.is_visible_on_portal,
        )

    def to_domain(self) -> Assignment:
        return Assignment.model_validate(
            {
                "id": self.id,
                "organization_id": self.organization_id,
                "schema_id": self.document_template_id,
                "schema_version": self.schema_version,
                "schema_name": self.schema_name,
                "elements": self.content or [],
                "patient_id": self.patient_id,
                "status": AssignmentStatus(self.status),
                "assigned_at": _aware(self.assigned_at),
                "due_at": _aware(self.due_at),
                "assigned_by": self.assigned_by,
                "is_visible_on_portal": self.is_visible_on_portal,
            }
        )


class SubmissionORM(Base):
    __tablename__ = "form_submissions"
    # At most one submission per assignment, enforced by the database too.
    __table_args__ = (UniqueConstraint("assigned_form_id", name="uq_form_submissions_assignment"),)

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    organization_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    assigned_form_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("assigned_documents.id"), nullable=False)
    patient_id: Mapped[str] = mapped_column(String, nullable=False)
    form_data: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    submitted_by: Mapped[str | None] = mapped_column(String, nullable=True)

    @classmethod
    def from_domain(cls, submission: Submission) -> "SubmissionORM":
        data = submission.model_dump(mode="json")
        return cls(
            id=submission.id,
            organization_id=submission.organization_id,
            assigned_form_id=submission.assignment_id,
            patient_id=submission.patient_id,
            form_data=data["form_data"],
            created_at=submission.created_at,
            submitted_by=submission.submitted_by,
        )

    def to_domain(self) -> Submission:
        return Submission.model_validate(
            {
                "id": self.id,
                "organization_id": self.organization_id,
                "assignment_id": self.assigned_form_id,
                "patient_id": self.patient_id,
                "form_data": self.form_data or [],
                "created_at": _aware(self.created_at),
                "submitted_by": self.submitted_by,
            }
        )


class ClinicalNoteORM(Base):
    __tablename__ = "clinical_notes"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    organization_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    patient_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    provider_id: Mapped[str] = mapped_column(String, nullable=False)
    content: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    type: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    tags: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    note_metadata: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, nullable=False, default=dict)
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    parent_note_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    signed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    signed_by: Mapped[str | None] = mapped_column(String, nullable=True)

    @classmethod
    def from_domain(cls, note: ClinicalNote) -> "ClinicalNoteORM":
        data = note.model_dump(mode="json")
        return cls(
            id=note.id,
            organization_id=note.organization_id,
            patient_id=note.patient_id,
            provider_id=note.provider_id,
            content=data["content"],
            type=note.type.value,
            status=note.status.value,
            version=note.version,
            tags=list(note.tags),
            note_metadata=data["metadata"],
            is_deleted=note.is_deleted,
            parent_note_id=note.parent_note_id,
            created_at=note.created_at,
            updated_at=note.updated_at,
            signed_at=note.signed_at,
            signed_by=note.signed_by,
        )

    def apply(self, note: ClinicalNote) -> None:
        fresh = ClinicalNoteORM.from_domain(note)
        for attr in (
            "organization_id",
            "patient_id",
            "provider_id",
            "content",
            "type",
            "status",
            "version",
            "tags",
            "note_metadata",
            "is_deleted",
            "parent_note_id",
            "created_at",
            "updated_at",
            "signed_at",
            "signed_by",
        ):
            setattr(self, attr, getattr(fresh, attr))

    def to_domain(self) -> ClinicalNote:
        return ClinicalNote.model_validate(
            {
                "id": self.id,
                "organization_id": self.organization_id,
                "patient_id": self.patient_id,
                "provider_id": self.provider_id,
                "content": self.content,
                "type": NoteType(self.type),
                "status": NoteStatus(self.status),
                "version": self.version,
                "tags": self.tags or [],
                "metadata": self.note_metadata or {},
                "is_deleted": self.is_deleted,
                "parent_note_id": self.parent_note_id,
                "created_at": _aware(self.created_at),
                "updated_at": _aware(self.updated_at),
                "signed_at": _aware(self.signed_at),
                "signed_by": self.signed_by,
            }
        )


class FaxORM(Base):
    __tablename__ = "faxes"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    organization_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    patient_id: Mapped[str | None] = mapped_column(String, nullable=True)
    direction: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False)
    from_number: Mapped[str | None] = mapped_column(String, nullable=True)
    to_number: Mapped[str] = mapped_column(String, nullable=False)
    media_url: Mapped[str] = mapped_column(String, nullable=False)
    twilio_sid: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    pages: Mapped[int | None] = mapped_column(Integer, nullable=True)
    duration_seconds: Mapped[int | None] = mapped_column("duration", Integer, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    @classmethod
    def from_domain(cls, fax: Fax) -> "FaxORM":
        data = fax.model_dump()
        data["direction"] = fax.direction.value
        return cls(**data)

    def to_domain(self) -> Fax:
        return Fax(
            id=self.id,
            organization_id=self.organization_id,
            patient_id=self.patient_id,
            direction=FaxDirection(self.direction),
            status=self.status,
            from_number=self.from_number,
            to_number=self.to_number,
            media_url=self.media_url,
            twilio_sid=self.twilio_sid,
            pages=self.pages,
            duration_seconds=self.duration_seconds,
            error_message=self.error_message,
            created_at=_aware(self.created_at),
            updated_at=_aware(self.updated_at),
        )
