from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from src.emr.domain.models.form_schema import unique_tags


class NoteType(str, Enum):
    VOICE = "voice"
    MANUAL = "manual"
    TEMPLATE = "template"
    AI_ASSISTED = "ai_assisted"


class NoteStatus(str, Enum):
    DRAFT = "draft"
    FINAL = "final"
    SIGNED = "signed"
    AMENDED = "amended"


class FreeTextContent(BaseModel):
    kind: Literal["free_text"] = "free_text"
    text: str = ""


class SoapContent(BaseModel):
    kind: Literal["soap"] = "soap"
    subjective: str = ""
    objective: str = ""
    assessment: str = ""
    plan: str = ""


class TemplateContent(BaseModel):
    """Note body written against a known note template.

    ``sections`` maps the template's section ids to their text.
    """

    kind: Literal["template"] = "template"
    template_id: UUID
    sections: Dict[str, str] = Field(default_factory=dict)


class StructuredContent(BaseModel):
    # Open key-value fallback for free-form structured data.
    kind: Literal["structured"] = "structured"
    fields: Dict[str, Any] = Field(default_factory=dict)


NoteContent = Annotated[
    Union[FreeTextContent, SoapContent, TemplateContent, StructuredContent],
    Field(discriminator="kind"),
]


class Vitals(BaseModel):
    blood_pressure: Optional[str] = None
    heart_rate: Optional[str] = None
    temperature: Optional[str] = None
    respiratory_rate: Optional[str] = None
    oxygen_saturation: Optional[str] = None


class NoteMetadata(BaseModel):
    specialty: Optional[str] = None
    template_type: Optional[str] = None
    diagnosis: List[str] = Field(default_factory=list)
    procedures: List[str] = Field(default_factory=list)
    vitals: Optional[Vitals] = None


class ClinicalNote(BaseModel):
    """Provider documentation about a patient encounter.

    Signed notes are immutable. Amendments are separate notes that point back
    at the signed note through ``parent_note_id``.
    """

    id: UUID
    organization_id: str
    patient_id: str
    provider_id: str
    content: NoteContent
    type: NoteType = NoteType.MANUAL
    status: NoteStatus = NoteStatus.DRAFT
    version: int = 1
    tags: List[str] = Field(default_factory=list)
    metadata: NoteMetadata = Field(default_factory=NoteMetadata)
    is_deleted: bool = False
    parent_note_id: Optional[UUID] = None
    created_at: datetime
    updated_at: datetime
    signed_at: Optional[datetime] = None
    signed_by: Optional[str] = None

    @field_validator("tags")
    @classmethod
    def _dedupe_tags(cls, tags: List[str]) -> List[str]:
        return unique_tags(tags)

    @property
    def is_locked(self) -> bool:
        return self.status == NoteStatus.SIGNED or self.signed_at is not None


class CreateNoteParams(BaseModel):
    organization_id: str
    patient_id: str
    provider_id: Optional[str] = None
    content: NoteContent
    type: NoteType = NoteType.MANUAL
    tags: List[str] = Field(default_factory=list)
    metadata: NoteMetadata = Field(default_factory=NoteMetadata)


class NotePatch(BaseModel):
    """Partial update to a clinical note; ``None`` fields are left unchanged."""

    content: Optional[NoteContent] = None
    type: Optional[NoteType] = None
    tags: Optional[List[str]] = None
    metadata: Optional[NoteMetadata] = None
