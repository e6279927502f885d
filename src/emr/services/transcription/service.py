from __future__ import annotations

import json
import logging
from typing import Optional

from pydantic import BaseModel

from src.emr.domain.models.clinical_note import SoapContent
from src.emr.errors import ValidationError
from src.emr.services.ai.completion import CompletionBackend, CompletionRequest, get_completion_backend_from_env
from src.emr.services.transcription.backends import (
    ASRBackend,
    TranscriptionRequest,
    TranscriptionResult,
    get_asr_backend_from_env,
)

logger = logging.getLogger(__name__)

SOAP_SECTIONS = ("subjective", "objective", "assessment", "plan")
MISSING_SECTION_TEXT = "No information provided."

SUMMARY_SYSTEM_PROMPT = """You are a medical transcriptionist. Create a structured medical note from the transcribed audio.
Format the response as a JSON object with the following keys:
{
  "subjective": "Patient's situation from their perspective, including concerns and understanding of their condition",
  "objective": "Clinical observations, established diagnoses, and findings mentioned by the provider",
  "assessment": "Diagnoses, clinical impressions, and medical conclusions",
  "plan": "Treatment plans, medications, follow-up instructions"
}
Include every relevant piece of information in the appropriate section."""


class TranscriptionSummary(BaseModel):
    transcript: str
    summary: SoapContent
    duration_seconds: Optional[float] = None
    language: Optional[str] = None


def parse_soap_summary(raw: str) -> SoapContent:
    """Turn the model's JSON answer into SOAP sections.

    Missing or blank sections are filled with a placeholder. Output that is
    not a JSON object is kept whole in the subjective section.
    """

    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Summary response was not valid JSON; keeping it as free text")
        data = {"subjective": raw}
    if not isinstance(data, dict):
        data = {"subjective": str(data)}

    sections = {}
    for name in SOAP_SECTIONS:
        value = data.get(name)
        sections[name] = str(value).strip() if value else MISSING_SECTION_TEXT
    return SoapContent(**sections)


class TranscriptionService:
    """Transcribes dictated audio and summarises it into SOAP sections."""

    def __init__(
        self,
        *,
        asr_backend: Optional[ASRBackend] = None,
        completion_backend: Optional[CompletionBackend] = None,
        max_upload_bytes: Optional[int] = None,
    ) -> None:
        self._asr_backend = asr_backend or get_asr_backend_from_env()
        self._completion_backend = completion_backend or get_completion_backend_from_env()
        self._max_upload_bytes = max_upload_bytes

    def transcribe(self, audio: bytes, *, filename: str = "recording.webm", language: Optional[str] = "en") -> TranscriptionResult:
        if not audio:
            raise ValidationError("Audio data is required")
        if self._max_upload_bytes is not None and len(audio) > self._max_upload_bytes:
            raise ValidationError(
                "Audio file is too large",
                details={"max_upload_bytes": self._max_upload_bytes, "size": len(audio)},
            )
        return self._asr_backend.transcribe(TranscriptionRequest(audio=audio, filename=filename, language=language))

    def summarize(self, transcript: str) -> SoapContent:
        response = self._completion_backend.complete(
            CompletionRequest(
                system_prompt=SUMMARY_SYSTEM_PROMPT,
                user_prompt=transcript,
                temperature=0.7,
                max_tokens=1000,
                json_mode=True,
            )
        )
        return parse_soap_summary(response.text)

    def transcribe_and_summarize(
        self,
        audio: bytes,
        *,
        filename: str = "recording.webm",
        language: Optional[str] = "en",
    ) -> TranscriptionSummary:
        result = self.transcribe(audio, filename=filename, language=language)
        summary = self.summarize(result.text)
        logger.info("Transcribed %d bytes of audio into %d characters", len(audio), len(result.text))
        return TranscriptionSummary(
            transcript=result.text,
            summary=summary,
            duration_seconds=result.duration_seconds,
            language=result.language,
        )
