from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import UUID, uuid4

from src.emr.domain.models.form_schema import unique_tags
from src.emr.domain.models.clinical_note import (
    ClinicalNote,
    CreateNoteParams,
    NotePatch,
    NoteStatus,
    TemplateContent,
)
from src.emr.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from src.emr.infra.db.repositories import ClinicalNoteRepository, PatientRepository
from src.emr.services.realtime.feed import ChangeEvent, ChangeFeed, ChangeType
from src.emr.services.templates.service import NoteTemplateService
from src.emr.tenancy import get_current_organization

logger = logging.getLogger(__name__)

NOTES_TABLE = "clinical_notes"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ClinicalNoteService:
    """Create, edit, sign, amend and soft-delete clinical notes.

    Every successful write is published on the change feed under the
    ``clinical_notes`` table so that open note-history views for the same
    ``(patient_id, organization_id)`` stay current.
    """

    def __init__(
        self,
        *,
        notes: ClinicalNoteRepository,
        patients: PatientRepository,
        feed: ChangeFeed,
        templates: Optional[NoteTemplateService] = None,
    ) -> None:
        self._notes = notes
        self._patients = patients
        self._feed = feed
        self._templates = templates

    # Helpers

    def _publish(self, event_type: ChangeType, note: ClinicalNote, old: Optional[ClinicalNote] = None) -> None:
        self._feed.publish(
            ChangeEvent(
                table=NOTES_TABLE,
                event_type=event_type,
                record=note.model_dump(mode="json"),
                old_record=old.model_dump(mode="json") if old is not None else None,
            )
        )

    def _check_template_content(self, params_content: Any) -> None:
        if not isinstance(params_content, TemplateContent) or self._templates is None:
            return
        template = self._templates.get_template(params_content.template_id)
        if template is None:
            raise NotFoundError("Note template not found")
        unknown = set(params_content.sections) - set(template.section_ids())
        if unknown:
            raise ValidationError(
                "Note content has sections that are not part of the template",
                errors=[f"{section_id}: unknown section" for section_id in sorted(unknown)],
            )

    def _get_live(self, note_id: UUID) -> ClinicalNote:
        note = self._notes.get(note_id)
        if note is None or note.is_deleted:
            raise NotFoundError("Clinical note not found")
        return note

    # Reads

    def get_note(self, note_id: UUID) -> ClinicalNote:
        return self._get_live(note_id)

    def list_notes(self, patient_id: str, *, tag: Optional[str] = None) -> List[ClinicalNote]:
        notes = list(self._notes.list_by_patient(patient_id))
        if tag is not None:
            notes = [note for note in notes if tag in note.tags]
        return notes

    def note_history(self, note_id: UUID) -> List[ClinicalNote]:
        """Return the amendment chain ending at ``note_id``, oldest first."""

        chain: List[ClinicalNote] = []
        current: Optional[ClinicalNote] = self._get_live(note_id)
        while current is not None:
            chain.append(current)
            current = self._notes.get(current.parent_note_id) if current.parent_note_id else None
        chain.reverse()
        return chain

    # Writes

    def create_note(self, params: CreateNoteParams, *, provider_id: Optional[str] = None) -> ClinicalNote:
        acting_organization = get_current_organization()
        if params.organization_id != acting_organization:
            logger.warning(
                "Rejected note creation for organization %s by provider of organization %s",
                params.organization_id,
                acting_organization,
            )
            raise AuthorizationError("Cannot create notes for another organization")

        patient = self._patients.get(params.patient_id)
        if patient is None or patient.is_deleted:
            raise NotFoundError("Patient not found")

        author = params.provider_id or provider_id
        if not author:
            raise ValidationError("provider_id is required")

        self._check_template_content(params.content)

        now = _now()
        note = ClinicalNote(
            id=uuid4(),
            organization_id=params.organization_id,
            patient_id=params.patient_id,
            provider_id=author,
            content=params.content,
            type=params.type,
            status=NoteStatus.DRAFT,
            version=1,
            tags=params.tags,
            metadata=params.metadata,
            created_at=now,
            updated_at=now,
        )
        self._notes.save(note)
        self._publish(ChangeType.INSERT, note)
        return note

    def update_note(self, note_id: UUID, patch: NotePatch, *, expected_version: Optional[int] = None) -> ClinicalNote:
        """Apply ``patch`` and bump the version.

        Without ``expected_version`` concurrent edits are last-write-wins.
        With it, the write only succeeds if nobody saved in between.
        """

        current = self._get_live(note_id)
        if current.is_locked:
            raise ConflictError("Signed notes cannot be edited; create an amendment instead")
        if expected_version is not None and current.version != expected_version:
            raise ConflictError(
                "Note was modified by someone else",
                details={"expected_version": expected_version, "actual_version": current.version},
            )

        changes: Dict[str, Any] = {
            key: getattr(patch, key) for key in patch.model_fields_set if getattr(patch, key) is not None
        }
        if "content" in changes:
            self._check_template_content(changes["content"])
        changes["version"] = current.version + 1
        changes["updated_at"] = _now()

        if "tags" in changes:
            changes["tags"] = unique_tags(changes["tags"])
        updated = current.model_copy(update=changes)
        self._notes.save(updated, expected_version=current.version)
        self._publish(ChangeType.UPDATE, updated, current)
        return updated

    def finalize_note(self, note_id: UUID) -> ClinicalNote:
        current = self._get_live(note_id)
        if current.status != NoteStatus.DRAFT:
            raise ConflictError(f"Only draft notes can be finalized (note is {current.status.value})")
        updated = current.model_copy(
            update={"status": NoteStatus.FINAL, "version": current.version + 1, "updated_at": _now()}
        )
        self._notes.save(updated, expected_version=current.version)
        self._publish(ChangeType.UPDATE, updated, current)
        return updated

    def sign_note(self, note_id: UUID, signer_id: str) -> ClinicalNote:
        current = self._get_live(note_id)
        if current.is_locked:
            raise ConflictError("Note is already signed")

        now = _now()
        updated = current.model_copy(
            update={
                "status": NoteStatus.SIGNED,
                "signed_at": now,
                "signed_by": signer_id,
                "version": current.version + 1,
                "updated_at": now,
            }
        )
        self._notes.save(updated, expected_version=current.version)
        self._publish(ChangeType.UPDATE, updated, current)
        logger.info("Note %s signed by %s", note_id, signer_id)
        return updated

    def amend_note(self, note_id: UUID, patch: NotePatch, *, provider_id: Optional[str] = None) -> ClinicalNote:
        """Create an amendment of a signed note; the signed note is untouched."""

        parent = self._get_live(note_id)
        if not parent.is_locked:
            raise ConflictError("Only signed notes can be amended; edit the note instead")

        changes = {key: getattr(patch, key) for key in patch.model_fields_set if getattr(patch, key) is not None}
        if "content" in changes:
            self._check_template_content(changes["content"])

        now = _now()
        amendment = ClinicalNote(
            id=uuid4(),
            organization_id=parent.organization_id,
            patient_id=parent.patient_id,
            provider_id=provider_id or parent.provider_id,
            content=changes.get("content", parent.content),
            type=changes.get("type", parent.type),
            status=NoteStatus.AMENDED,
            version=parent.version + 1,
            tags=unique_tags(changes.get("tags", parent.tags)),
            metadata=changes.get("metadata", parent.metadata),
            parent_note_id=parent.id,
            created_at=now,
            updated_at=now,
        )
        self._notes.save(amendment)
        self._publish(ChangeType.INSERT, amendment)
        return amendment

    def soft_delete_note(self, note_id: UUID) -> ClinicalNote:
        current = self._get_live(note_id)
        if current.is_locked:
            raise ConflictError("Signed notes cannot be deleted")
        updated = current.model_copy(update={"is_deleted": True, "updated_at": _now()})
        self._notes.save(updated, expected_version=current.version)
        self._publish(ChangeType.DELETE, updated, current)
        return updated
