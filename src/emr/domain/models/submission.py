from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

# checkbox -> bool, table -> list of rows keyed by column id, everything else
# (including image-encoded signatures and uploads) -> str.
AnswerValue = Union[bool, str, List[Dict[str, Any]], None]


class AnswerInput(BaseModel):
    field_id: str
    answer: AnswerValue = None


class SubmissionAnswer(BaseModel):
    model_config = ConfigDict(frozen=True)

    field_id: str
    question: str
    answer: AnswerValue = None


class Submission(BaseModel):
    """Immutable record of a patient's answers to an assignment."""

    model_config = ConfigDict(frozen=True)

    id: UUID
    organization_id: str
    assignment_id: UUID
    patient_id: str
    form_data: List[SubmissionAnswer] = Field(default_factory=list)
    created_at: datetime
    submitted_by: Optional[str] = None

    def answer_for(self, field_id: str) -> AnswerValue:
        for item in self.form_data:
            if item.field_id == field_id:
                return item.answer
        return None
