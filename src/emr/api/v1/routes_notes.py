from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect, status
from pydantic import BaseModel, Field

from src.emr.context import AppContext
from src.emr.domain.models.clinical_note import ClinicalNote, CreateNoteParams, NoteContent, NoteMetadata, NotePatch, NoteType
from src.emr.domain.models.user import User
from src.emr.errors import AuthorizationError
from src.emr.security import STAFF_ROLES, ensure_role, get_app_context, require_staff, resolve_user
from src.emr.services.notes.service import NOTES_TABLE
from src.emr.services.realtime.feed import ChangeEvent
from src.emr.tenancy import get_current_organization

logger = logging.getLogger(__name__)

# Endpoints declare require_staff individually; router-level security
# dependencies cannot run on the WebSocket route.
router = APIRouter(prefix="/notes", tags=["notes"])


class CreateNoteRequest(BaseModel):
    patient_id: str
    content: NoteContent
    # Defaults to the caller's organization.
    organization_id: Optional[str] = None
    provider_id: Optional[str] = None
    type: NoteType = NoteType.MANUAL
    tags: List[str] = Field(default_factory=list)
    metadata: NoteMetadata = Field(default_factory=NoteMetadata)


class UpdateNoteRequest(NotePatch):
    expected_version: Optional[int] = None


class SignNoteRequest(BaseModel):
    signer_id: Optional[str] = None


@router.post("/", response_model=ClinicalNote, status_code=status.HTTP_201_CREATED)
async def create_note(
    payload: CreateNoteRequest,
    user: User = Depends(require_staff),
    ctx: AppContext = Depends(get_app_context),
) -> ClinicalNote:
    params = CreateNoteParams(
        organization_id=payload.organization_id or get_current_organization(),
        patient_id=payload.patient_id,
        provider_id=payload.provider_id,
        content=payload.content,
        type=payload.type,
        tags=payload.tags,
        metadata=payload.metadata,
    )
    note = ctx.notes.create_note(params, provider_id=str(user.id))
    ctx.audit.log_event(
        action="create",
        resource_type="clinical_note",
        resource_id=str(note.id),
        extra={"type": note.type.value, "content_kind": note.content.kind},
    )
    return note


@router.get("/", response_model=List[ClinicalNote], dependencies=[Depends(require_staff)])
async def list_notes(
    patient_id: str,
    tag: Optional[str] = None,
    ctx: AppContext = Depends(get_app_context),
) -> List[ClinicalNote]:
    return ctx.notes.list_notes(patient_id, tag=tag)


@router.get("/{note_id}", response_model=ClinicalNote, dependencies=[Depends(require_staff)])
async def get_note(note_id: UUID, ctx: AppContext = Depends(get_app_context)) -> ClinicalNote:
    note = ctx.notes.get_note(note_id)
    ctx.audit.log_event(action="view", resource_type="clinical_note", resource_id=str(note_id))
    return note


@router.get("/{note_id}/history", response_model=List[ClinicalNote], dependencies=[Depends(require_staff)])
async def note_history(note_id: UUID, ctx: AppContext = Depends(get_app_context)) -> List[ClinicalNote]:
    return ctx.notes.note_history(note_id)


@router.patch("/{note_id}", response_model=ClinicalNote, dependencies=[Depends(require_staff)])
async def update_note(
    note_id: UUID,
    payload: UpdateNoteRequest,
    ctx: AppContext = Depends(get_app_context),
) -> ClinicalNote:
    patch = NotePatch.model_validate(payload.model_dump(exclude={"expected_version"}, exclude_unset=True))
    note = ctx.notes.update_note(note_id, patch, expected_version=payload.expected_version)
    ctx.audit.log_event(
        action="update",
        resource_type="clinical_note",
        resource_id=str(note_id),
        extra={"version": note.version},
    )
    return note


@router.post("/{note_id}/finalize", response_model=ClinicalNote, dependencies=[Depends(require_staff)])
async def finalize_note(note_id: UUID, ctx: AppContext = Depends(get_app_context)) -> ClinicalNote:
    note = ctx.notes.finalize_note(note_id)
    ctx.audit.log_event(action="finalize", resource_type="clinical_note", resource_id=str(note_id))
    return note


@router.post("/{note_id}/sign", response_model=ClinicalNote)
async def sign_note(
    note_id: UUID,
    payload: Optional[SignNoteRequest] = None,
    user: User = Depends(require_staff),
    ctx: AppContext = Depends(get_app_context),
) -> ClinicalNote:
    signer_id = (payload.signer_id if payload and payload.signer_id else None) or str(user.id)
    note = ctx.notes.sign_note(note_id, signer_id)
    ctx.audit.log_event(action="sign", resource_type="clinical_note", resource_id=str(note_id))
    return note


@router.post("/{note_id}/amendments", response_model=ClinicalNote, status_code=status.HTTP_201_CREATED)
async def amend_note(
    note_id: UUID,
    payload: NotePatch,
    user: User = Depends(require_staff),
    ctx: AppContext = Depends(get_app_context),
) -> ClinicalNote:
    amendment = ctx.notes.amend_note(note_id, payload, provider_id=str(user.id))
    ctx.audit.log_event(
        action="amend",
        resource_type="clinical_note",
        resource_id=str(amendment.id),
        extra={"parent_note_id": str(note_id)},
    )
    return amendment


@router.delete("/{note_id}", status_code=status.HTTP_204_NO_CONTENT, dependencies=[Depends(require_staff)])
async def delete_note(note_id: UUID, ctx: AppContext = Depends(get_app_context)) -> None:
    ctx.notes.soft_delete_note(note_id)
    ctx.audit.log_event(action="delete", resource_type="clinical_note", resource_id=str(note_id))


async def _forward(websocket: WebSocket, queue: "asyncio.Queue[Dict[str, Any]]") -> None:
    while True:
        payload = await queue.get()
        await websocket.send_json(payload)


@router.websocket("/ws")
async def note_changes(websocket: WebSocket) -> None:
    """Stream note changes for one patient.

    Query parameters: ``patient_id`` (required), ``token`` (bearer session
    token) and ``organization_id``. Each INSERT/UPDATE/DELETE on the
    patient's notes is sent as ``{"table", "eventType", "new", "old",
    "occurred_at"}``. The subscription is released when the client
    disconnects.
    """

    ctx = get_app_context(websocket)
    qp = websocket.query_params
    patient_id = qp.get("patient_id")
    if not patient_id:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    try:
        user = resolve_user(
            ctx,
            api_key=websocket.headers.get("x-api-key"),
            bearer_token=qp.get("token"),
            organization_header=qp.get("organization_id") or websocket.headers.get("x-organization-id"),
        )
        ensure_role(user, *STAFF_ROLES)
    except (HTTPException, AuthorizationError):
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    loop = asyncio.get_running_loop()
    queue: "asyncio.Queue[Dict[str, Any]]" = asyncio.Queue()

    def on_change(event: ChangeEvent) -> None:
        loop.call_soon_threadsafe(queue.put_nowait, event.to_payload())

    subscription = ctx.feed.subscribe(
        NOTES_TABLE,
        {"patient_id": patient_id, "organization_id": user.organization_id},
        on_change,
    )
    sender = None
    try:
        await websocket.send_json({"event": "subscribed", "patient_id": patient_id})
        sender = asyncio.create_task(_forward(websocket, queue))
        while True:
            # Client messages are ignored; receiving only detects disconnects.
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.debug("Note feed client for patient %s disconnected", patient_id)
    finally:
        if sender is not None:
            sender.cancel()
        subscription.unsubscribe()
