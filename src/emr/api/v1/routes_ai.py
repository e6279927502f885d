from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from src.emr.context import AppContext
from src.emr.security import get_app_context, require_staff
from src.emr.services.ai.completion import PatientContext

router = APIRouter(
    prefix="/ai",
    tags=["ai"],
    dependencies=[Depends(require_staff)],
)


class GenerateRequest(BaseModel):
    prompt: str
    patient: Optional[PatientContext] = None
    max_tokens: int = Field(default=500, ge=1, le=1000)


class GenerateResponse(BaseModel):
    suggestion: str


@router.post("/generate", response_model=GenerateResponse)
async def generate(payload: GenerateRequest, ctx: AppContext = Depends(get_app_context)) -> GenerateResponse:
    """Draft note text from a prompt, optionally grounded in patient context."""

    suggestion = ctx.assistant.generate(payload.prompt, patient=payload.patient, max_tokens=payload.max_tokens)
    ctx.audit.log_event(
        action="generate",
        resource_type="ai_suggestion",
        extra={"with_patient_context": payload.patient is not None},
    )
    return GenerateResponse(suggestion=suggestion)
