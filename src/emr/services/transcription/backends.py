from __future__ import annotations

import io
from dataclasses import dataclass
from typing import Optional, Protocol

from src.emr.config import settings
from src.emr.errors import ExternalServiceError


@dataclass
class TranscriptionRequest:
    audio: bytes
    filename: str = "recording.webm"
    language: Optional[str] = "en"


@dataclass
class TranscriptionResult:
    text: str
    duration_seconds: Optional[float] = None
    language: Optional[str] = None


class ASRBackend(Protocol):
    """Protocol for automatic speech recognition backends.

    Implementations take raw audio bytes and return the transcript together
    with the recording duration and detected language when available.
    """

    def transcribe(self, request: TranscriptionRequest) -> TranscriptionResult:  # pragma: no cover - interface
        raise NotImplementedError


class DemoASRBackend:
    """Very simple demo ASR backend.

    Returns a deterministic placeholder so tests remain fast and offline.
    """

    def transcribe(self, request: TranscriptionRequest) -> TranscriptionResult:
        lang = request.language or "en"
        return TranscriptionResult(
            text=f"Demo transcript of {request.filename} ({len(request.audio)} bytes) in {lang}",
            duration_seconds=0.0,
            language=lang,
        )


class OpenAIWhisperBackend:
    """ASR backend that calls the hosted Whisper model through the OpenAI client.

    Uses the ``verbose_json`` response format so that duration and language
    come back alongside the text.
    """

    def __init__(self, model: Optional[str] = None, api_key: Optional[str] = None) -> None:
        self._model = model or settings.transcription_model
        self._api_key = api_key or settings.openai_api_key
        self._client = None

    def _get_client(self):
        if self._client is None:
            if not self._api_key:
                raise ExternalServiceError(
                    "OPENAI_API_KEY must be set to use the OpenAI transcription backend",
                    service="transcription",
                )
            try:
                from openai import OpenAI
            except ImportError as exc:
                raise ExternalServiceError(
                    "The OpenAI transcription backend requires the 'openai' package. "
                    "Install it with 'pip install openai'",
                    service="transcription",
                ) from exc
            self._client = OpenAI(api_key=self._api_key, timeout=settings.llm_timeout_seconds, max_retries=0)
        return self._client

    def transcribe(self, request: TranscriptionRequest) -> TranscriptionResult:  # pragma: no cover - depends on external service
        client = self._get_client()
        kwargs = {}
        if request.language:
            kwargs["language"] = request.language
        try:
            response = client.audio.transcriptions.create(
                file=(request.filename, io.BytesIO(request.audio)),
                model=self._model,
                response_format="verbose_json",
                **kwargs,
            )
        except Exception as exc:
            raise ExternalServiceError("Transcription request failed", service="transcription") from exc

        return TranscriptionResult(
            text=response.text,
            duration_seconds=getattr(response, "duration", None),
            language=getattr(response, "language", None),
        )

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None


demo_asr_backend = DemoASRBackend()


def get_asr_backend_from_env() -> ASRBackend:
    """Select an ASR backend based on the ASR_BACKEND environment variable.

    - ASR_BACKEND=openai → OpenAIWhisperBackend
    - Anything else (or unset) → DemoASRBackend
    """

    if settings.asr_backend.lower() == "openai":
        return OpenAIWhisperBackend()
    return demo_asr_backend
