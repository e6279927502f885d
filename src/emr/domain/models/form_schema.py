from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator


def unique_tags(tags: List[str]) -> List[str]:
    """Strip blanks and duplicates from a tag list, keeping first occurrences."""

    seen: List[str] = []
    for tag in tags:
        tag = tag.strip()
        if tag and tag not in seen:
            seen.append(tag)
    return seen


class FormElementType(str, Enum):
    STATIC_TEXT = "staticText"
    TEXT = "text"
    CHECKBOX = "checkbox"
    DROPDOWN = "dropdown"
    RADIO = "radio"
    DATE = "date"
    SIGNATURE = "signature"
    TABLE = "table"
    IMAGE = "image"
    SECTION = "section"


# Element types that only structure or decorate a document and never collect
# an answer from the patient.
DISPLAY_ONLY_TYPES = frozenset({FormElementType.STATIC_TEXT, FormElementType.SECTION})

CHOICE_TYPES = frozenset({FormElementType.DROPDOWN, FormElementType.RADIO})

IMAGE_TYPES = frozenset({FormElementType.SIGNATURE, FormElementType.IMAGE})


class ElementLayout(str, Enum):
    FULL = "full"
    HALF = "half"


class TableColumnType(str, Enum):
    TEXT = "text"
    NUMBER = "number"
    DATE = "date"
    SELECT = "select"


class TableColumn(BaseModel):
    id: str
    header: str
    type: TableColumnType = TableColumnType.TEXT
    options: List[str] = Field(default_factory=list)


class ElementValidation(BaseModel):
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    pattern: Optional[str] = None
    # Row bounds only apply to table elements.
    min_rows: Optional[int] = None
    max_rows: Optional[int] = None


class FormElement(BaseModel):
    """A single field definition within a form schema.

    ``type`` is kept as a plain string so that schemas loaded from storage or
    sent by older clients with an unknown type can still be represented and
    then rejected by the builder with a proper validation message.
    """

    id: str
    type: str
    label: str = ""
    description: str = ""
    required: bool = False
    options: List[str] = Field(default_factory=list)
    columns: List[TableColumn] = Field(default_factory=list)
    validation: Optional[ElementValidation] = None
    layout: ElementLayout = ElementLayout.FULL

    @property
    def element_type(self) -> Optional[FormElementType]:
        try:
            return FormElementType(self.type)
        except ValueError:
            return None

    @property
    def collects_answer(self) -> bool:
        return self.element_type not in DISPLAY_ONLY_TYPES


class FormSchema(BaseModel):
    """A document template: an ordered list of form elements.

    Once an assignment references a schema, edits fork a new schema with a
    higher ``version`` and ``parent_schema_id`` pointing back at the original.
    """

    id: UUID
    organization_id: str
    name: str
    description: str = ""
    tags: List[str] = Field(default_factory=list)
    elements: List[FormElement] = Field(default_factory=list)
    version: int = 1
    is_active: bool = True
    parent_schema_id: Optional[UUID] = None
    created_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @field_validator("tags")
    @classmethod
    def _dedupe_tags(cls, tags: List[str]) -> List[str]:
        return unique_tags(tags)

    def element_by_id(self, element_id: str) -> Optional[FormElement]:
        for element in self.elements:
            if element.id == element_id:
                return element
        return None
