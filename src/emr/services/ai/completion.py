from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import List, Optional, Protocol

from pydantic import BaseModel, Field

from src.emr.config import settings
from src.emr.errors import ExternalServiceError, ValidationError

logger = logging.getLogger(__name__)

ASSISTANT_SYSTEM_PROMPT = (
    "You are an AI medical assistant helping a healthcare provider with clinical documentation."
)


@dataclass
class CompletionRequest:
    system_prompt: str
    user_prompt: str
    temperature: float = 0.7
    max_tokens: int = 500
    # Ask the provider for a JSON object instead of free text.
    json_mode: bool = False


@dataclass
class CompletionResponse:
    text: str


class CompletionBackend(Protocol):
    """Protocol for text completion providers.

    One attempt per call; implementations raise ExternalServiceError on any
    provider failure.
    """

    def complete(self, request: CompletionRequest) -> CompletionResponse:  # pragma: no cover - interface
        raise NotImplementedError


class DemoCompletionBackend:
    """Deterministic offline backend so tests and local runs need no API key."""

    def complete(self, request: CompletionRequest) -> CompletionResponse:
        if request.json_mode:
            snippet = request.user_prompt.strip()[:200]
            summary = {"subjective": f"Demo summary: {snippet}", "objective": "", "assessment": "", "plan": ""}
            return CompletionResponse(text=json.dumps(summary))
        return CompletionResponse(text=f"Demo suggestion for: {request.user_prompt.strip()[:200]}")


class OpenAICompletionBackend:
    """Completion backend using the OpenAI chat completions API.

    Requires the optional ``openai`` package and OPENAI_API_KEY.
    """

    def __init__(self, model: Optional[str] = None, api_key: Optional[str] = None) -> None:
        self._model = model or settings.llm_model
        self._api_key = api_key or settings.openai_api_key
        self._client = None

    def _get_client(self):
        if self._client is None:
            if not self._api_key:
                raise ExternalServiceError("OPENAI_API_KEY must be set to use the OpenAI backend", service="ai")
            try:
                from openai import OpenAI
            except ImportError as exc:
                raise ExternalServiceError(
                    "The OpenAI backend requires the 'openai' package. Install it with 'pip install openai'",
                    service="ai",
                ) from exc
            self._client = OpenAI(
                api_key=self._api_key,
                timeout=settings.llm_timeout_seconds,
                max_retries=0,
            )
        return self._client

    def complete(self, request: CompletionRequest) -> CompletionResponse:  # pragma: no cover - depends on external service
        client = self._get_client()
        kwargs = {}
        if request.json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        try:
            completion = client.chat.completions.create(
                model=self._model,
                messages=[
                    {"role": "system", "content": request.system_prompt},
                    {"role": "user", "content": request.user_prompt},
                ],
                temperature=request.temperature,
                max_tokens=request.max_tokens,
                **kwargs,
            )
        except Exception as exc:
            raise ExternalServiceError("AI completion request failed", service="ai") from exc

        content = completion.choices[0].message.content if completion.choices else None
        if not content:
            raise ExternalServiceError("AI completion returned no content", service="ai")
        return CompletionResponse(text=content)

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None


demo_completion_backend = DemoCompletionBackend()


def get_completion_backend_from_env() -> CompletionBackend:
    """Select a completion backend based on COMPLETION_BACKEND.

    - COMPLETION_BACKEND=openai → OpenAICompletionBackend
    - Anything else (or unset) → DemoCompletionBackend
    """

    if settings.completion_backend.lower() == "openai":
        return OpenAICompletionBackend()
    return demo_completion_backend


class PatientContext(BaseModel):
    """Optional chart context passed along with an assistant prompt."""

    age: Optional[int] = None
    gender: Optional[str] = None
    medical_history: List[str] = Field(default_factory=list)
    medications: List[str] = Field(default_factory=list)


def build_system_prompt(patient: Optional[PatientContext] = None) -> str:
    prompt = ASSISTANT_SYSTEM_PROMPT
    if patient is None:
        return prompt
    prompt += "\nPatient Context:"
    prompt += f"\n- Age: {patient.age if patient.age is not None else 'Unknown'}"
    prompt += f"\n- Gender: {patient.gender or 'Unknown'}"
    if patient.medical_history:
        prompt += "\n- Medical History: " + ", ".join(patient.medical_history)
    if patient.medications:
        prompt += "\n- Current Medications: " + ", ".join(patient.medications)
    return prompt


class NoteAssistant:
    """Drafts note text for a provider from a free-form prompt."""

    def __init__(self, backend: Optional[CompletionBackend] = None) -> None:
        self._backend = backend or get_completion_backend_from_env()

    def generate(self, prompt: str, *, patient: Optional[PatientContext] = None, max_tokens: int = 500) -> str:
        if not prompt.strip():
            raise ValidationError("prompt must not be empty")
        response = self._backend.complete(
            CompletionRequest(
                system_prompt=build_system_prompt(patient),
                user_prompt=prompt,
                temperature=0.7,
                max_tokens=max_tokens,
            )
        )
        logger.debug("Generated %d characters of note text", len(response.text))
        return response.text
