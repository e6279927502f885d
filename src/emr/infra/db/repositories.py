from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Iterable, Optional
from uuid import UUID

from src.emr.domain.models.assignment import Assignment, AssignmentStatus
from src.emr.domain.models.clinical_note import ClinicalNote
from src.emr.domain.models.fax import Fax
from src.emr.domain.models.form_schema import FormSchema
from src.emr.domain.models.patient import Patient
from src.emr.domain.models.submission import Submission

# All repositories scope reads to the current organization
# (src.emr.tenancy.get_current_organization) unless stated otherwise.


class PatientRepository(ABC):
    @abstractmethod
    def get(self, patient_id: str) -> Optional[Patient]:
        raise NotImplementedError

    @abstractmethod
    def list(self, *, include_deleted: bool = False) -> Iterable[Patient]:
        raise NotImplementedError

    @abstractmethod
    def save(self, patient: Patient) -> None:
        raise NotImplementedError


class FormSchemaRepository(ABC):
    @abstractmethod
    def get(self, schema_id: UUID) -> Optional[FormSchema]:
        raise NotImplementedError

    @abstractmethod
    def list(self, *, tag: Optional[str] = None, include_inactive: bool = False) -> Iterable[FormSchema]:
        raise NotImplementedError

    @abstractmethod
    def save(self, schema: FormSchema) -> None:
        raise NotImplementedError


class AssignmentRepository(ABC):
    @abstractmethod
    def get(self, assignment_id: UUID) -> Optional[Assignment]:
        raise NotImplementedError

    @abstractmethod
    def list_by_filters(
        self,
        *,
        patient_id: Optional[str] = None,
        schema_id: Optional[UUID] = None,
        status: Optional[AssignmentStatus] = None,
    ) -> Iterable[Assignment]:
        raise NotImplementedError

    @abstractmethod
    def save(self, assignment: Assignment) -> None:
        raise NotImplementedError

    @abstractmethod
    def get_submission(self, assignment_id: UUID) -> Optional[Submission]:
        raise NotImplementedError

    @abstractmethod
    def count_submissions(self, assignment_id: UUID) -> int:
        raise NotImplementedError

    @abstractmethod
    def record_submission(self, assignment_id: UUID, submission: Submission) -> Assignment:
        """Insert ``submission`` and mark the assignment submitted as one unit.

        Raises ConflictError if the assignment is already submitted and
        NotFoundError if it does not exist. On any failure neither write is
        applied.
        """

        raise NotImplementedError


class ClinicalNoteRepository(ABC):
    @abstractmethod
    def get(self, note_id: UUID) -> Optional[ClinicalNote]:
        """Return the note even if soft-deleted; callers filter ``is_deleted``."""

        raise NotImplementedError

    @abstractmethod
    def list_by_patient(self, patient_id: str, *, include_deleted: bool = False) -> Iterable[ClinicalNote]:
        raise NotImplementedError

    @abstractmethod
    def save(self, note: ClinicalNote, *, expected_version: Optional[int] = None) -> None:
        """Insert or update ``note``.

        When ``expected_version`` is given the stored note must still carry
        that version, otherwise ConflictError is raised and nothing is written.
        """

        raise NotImplementedError


class FaxRepository(ABC):
    @abstractmethod
    def get(self, fax_id: UUID) -> Optional[Fax]:
        raise NotImplementedError

    @abstractmethod
    def get_by_carrier_sid(self, sid: str) -> Optional[Fax]:
        """Look up a fax by carrier SID across all organizations.

        Carrier webhooks carry no tenant context, so this lookup is not
        organization-scoped.
        """

        raise NotImplementedError

    @abstractmethod
    def list(self) -> Iterable[Fax]:
        raise NotImplementedError

    @abstractmethod
    def save(self, fax: Fax) -> None:
        raise NotImplementedError
