from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile, status
from pydantic import BaseModel

from src.emr.context import AppContext
from src.emr.domain.models.clinical_note import ClinicalNote, CreateNoteParams, NoteType
from src.emr.domain.models.user import User
from src.emr.errors import ValidationError
from src.emr.security import get_app_context, require_staff
from src.emr.services.transcription.service import TranscriptionSummary
from src.emr.tenancy import get_current_organization

router = APIRouter(
    prefix="/transcriptions",
    tags=["transcriptions"],
    dependencies=[Depends(require_staff)],
)


class TranscriptionResponse(BaseModel):
    result: TranscriptionSummary
    note: Optional[ClinicalNote] = None


@router.post("/", response_model=TranscriptionResponse, status_code=status.HTTP_201_CREATED)
async def transcribe_audio(
    audio: UploadFile = File(...),
    language: Optional[str] = Form("en"),
    patient_id: Optional[str] = Form(None),
    user: User = Depends(require_staff),
    ctx: AppContext = Depends(get_app_context),
) -> TranscriptionResponse:
    """Transcribe dictated audio into a transcript and SOAP summary.

    When ``patient_id`` is supplied the summary is also saved as a draft
    voice note for that patient.
    """

    limit = ctx.settings.max_upload_bytes
    # Read one byte past the limit so oversized uploads are refused without
    # buffering the whole file.
    data = await audio.read(limit + 1)
    if len(data) > limit:
        raise ValidationError("Audio file is too large", details={"max_upload_bytes": limit})

    result = ctx.transcription.transcribe_and_summarize(
        data,
        filename=audio.filename or "recording.webm",
        language=language or None,
    )

    note = None
    if patient_id:
        note = ctx.notes.create_note(
            CreateNoteParams(
                organization_id=get_current_organization(),
                patient_id=patient_id,
                content=result.summary,
                type=NoteType.VOICE,
            ),
            provider_id=str(user.id),
        )

    ctx.audit.log_event(
        action="transcribe",
        resource_type="transcription",
        resource_id=str(note.id) if note else None,
        extra={"bytes": len(data), "duration_seconds": result.duration_seconds, "note_created": note is not None},
    )
    return TranscriptionResponse(result=result, note=note)
