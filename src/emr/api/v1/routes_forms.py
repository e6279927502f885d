from __future__ import annotations

from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from src.emr.context import AppContext
from src.emr.domain.models.form_schema import FormElement, FormSchema
from src.emr.domain.models.user import User
from src.emr.security import get_app_context, require_staff
from src.emr.services.forms import builder

router = APIRouter(
    prefix="/forms",
    tags=["forms"],
    dependencies=[Depends(require_staff)],
)


class SchemaRequest(BaseModel):
    name: str
    description: str = ""
    tags: List[str] = Field(default_factory=list)
    elements: List[FormElement] = Field(default_factory=list)


class AddElementRequest(BaseModel):
    element: FormElement
    at_index: Optional[int] = None


class ReorderRequest(BaseModel):
    from_index: int
    to_index: int


class SchemaIssueResponse(BaseModel):
    severity: str
    message: str
    element_id: Optional[str] = None


def _issues(schema: FormSchema) -> List[SchemaIssueResponse]:
    return [
        SchemaIssueResponse(severity=issue.severity.value, message=issue.message, element_id=issue.element_id)
        for issue in builder.validate_schema(schema)
    ]


@router.get("/", response_model=List[FormSchema])
async def list_schemas(
    tag: Optional[str] = None,
    include_inactive: bool = False,
    ctx: AppContext = Depends(get_app_context),
) -> List[FormSchema]:
    return ctx.schemas.list_schemas(tag=tag, include_inactive=include_inactive)


@router.post("/", response_model=FormSchema, status_code=status.HTTP_201_CREATED)
async def create_schema(
    payload: SchemaRequest,
    user: User = Depends(require_staff),
    ctx: AppContext = Depends(get_app_context),
) -> FormSchema:
    schema = ctx.schemas.create_schema(
        name=payload.name,
        description=payload.description,
        tags=payload.tags,
        elements=payload.elements,
        created_by=str(user.id),
    )
    ctx.audit.log_event(
        action="create",
        resource_type="form_schema",
        resource_id=str(schema.id),
        extra={"element_count": len(schema.elements)},
    )
    return schema


@router.post("/validate", response_model=List[SchemaIssueResponse])
async def validate_draft(payload: SchemaRequest, ctx: AppContext = Depends(get_app_context)) -> List[SchemaIssueResponse]:
    """Check an unsaved schema without persisting it."""

    draft = ctx.schemas.new_schema(
        name=payload.name,
        description=payload.description,
        tags=payload.tags,
        elements=payload.elements,
    )
    return _issues(draft)


@router.get("/{schema_id}", response_model=FormSchema)
async def get_schema(schema_id: UUID, ctx: AppContext = Depends(get_app_context)) -> FormSchema:
    return ctx.schemas.get_schema(schema_id)


@router.get("/{schema_id}/issues", response_model=List[SchemaIssueResponse])
async def get_schema_issues(schema_id: UUID, ctx: AppContext = Depends(get_app_context)) -> List[SchemaIssueResponse]:
    return _issues(ctx.schemas.get_schema(schema_id))


@router.put("/{schema_id}", response_model=FormSchema)
async def save_schema(
    schema_id: UUID,
    payload: SchemaRequest,
    ctx: AppContext = Depends(get_app_context),
) -> FormSchema:
    stored = ctx.schemas.get_schema(schema_id)
    edited = stored.model_copy(
        update={
            "name": payload.name,
            "description": payload.description,
            "tags": payload.tags,
            "elements": payload.elements,
        }
    )
    saved = ctx.schemas.save_schema(edited)
    ctx.audit.log_event(
        action="update",
        resource_type="form_schema",
        resource_id=str(saved.id),
        extra={"forked_from": str(schema_id) if saved.id != schema_id else None, "version": saved.version},
    )
    return saved


@router.delete("/{schema_id}", response_model=FormSchema)
async def deactivate_schema(schema_id: UUID, ctx: AppContext = Depends(get_app_context)) -> FormSchema:
    schema = ctx.schemas.deactivate_schema(schema_id)
    ctx.audit.log_event(action="deactivate", resource_type="form_schema", resource_id=str(schema_id))
    return schema


def _apply(ctx: AppContext, schema_id: UUID, edited: FormSchema, action: str) -> FormSchema:
    saved = ctx.schemas.save_schema(edited)
    ctx.audit.log_event(
        action=action,
        resource_type="form_schema",
        resource_id=str(saved.id),
        extra={"version": saved.version, "forked": saved.id != schema_id},
    )
    return saved


@router.post("/{schema_id}/elements", response_model=FormSchema, status_code=status.HTTP_201_CREATED)
async def add_element(
    schema_id: UUID,
    payload: AddElementRequest,
    ctx: AppContext = Depends(get_app_context),
) -> FormSchema:
    stored = ctx.schemas.get_schema(schema_id)
    return _apply(ctx, schema_id, builder.add_element(stored, payload.element, payload.at_index), "add_element")


@router.patch("/{schema_id}/elements/{element_id}", response_model=FormSchema)
async def update_element(
    schema_id: UUID,
    element_id: str,
    changes: Dict[str, Any],
    ctx: AppContext = Depends(get_app_context),
) -> FormSchema:
    stored = ctx.schemas.get_schema(schema_id)
    return _apply(ctx, schema_id, builder.update_element(stored, element_id, changes), "update_element")


@router.delete("/{schema_id}/elements/{element_id}", response_model=FormSchema)
async def remove_element(
    schema_id: UUID,
    element_id: str,
    ctx: AppContext = Depends(get_app_context),
) -> FormSchema:
    stored = ctx.schemas.get_schema(schema_id)
    return _apply(ctx, schema_id, builder.remove_element(stored, element_id), "remove_element")


@router.post("/{schema_id}/elements/reorder", response_model=FormSchema)
async def reorder_elements(
    schema_id: UUID,
    payload: ReorderRequest,
    ctx: AppContext = Depends(get_app_context),
) -> FormSchema:
    stored = ctx.schemas.get_schema(schema_id)
    edited = builder.reorder_elements(stored, payload.from_index, payload.to_index)
    return _apply(ctx, schema_id, edited, "reorder_elements")
