from __future__ import annotations

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel

from src.emr.context import AppContext
from src.emr.domain.models.note_template import NoteTemplate, NoteTemplateSection
from src.emr.errors import NotFoundError
from src.emr.security import get_app_context, require_staff

router = APIRouter(
    prefix="/templates",
    tags=["templates"],
    dependencies=[Depends(require_staff)],
)


class CreateTemplateRequest(BaseModel):
    name: str
    specialty: str
    visit_type: Optional[str] = None
    sections: List[NoteTemplateSection]


@router.get("/", response_model=List[NoteTemplate])
async def list_templates(
    specialty: Optional[str] = None,
    visit_type: Optional[str] = None,
    ctx: AppContext = Depends(get_app_context),
) -> List[NoteTemplate]:
    return ctx.templates.list_templates(specialty=specialty, visit_type=visit_type)


@router.post("/", response_model=NoteTemplate, status_code=status.HTTP_201_CREATED)
async def create_template(payload: CreateTemplateRequest, ctx: AppContext = Depends(get_app_context)) -> NoteTemplate:
    template = ctx.templates.create_template(
        name=payload.name,
        specialty=payload.specialty,
        visit_type=payload.visit_type,
        sections=payload.sections,
    )
    ctx.audit.log_event(action="create", resource_type="note_template", resource_id=str(template.id))
    return template


@router.get("/{template_id}", response_model=NoteTemplate)
async def get_template(template_id: UUID, ctx: AppContext = Depends(get_app_context)) -> NoteTemplate:
    template = ctx.templates.get_template(template_id)
    if template is None:
        raise NotFoundError("Note template not found")
    return template
