from __future__ import annotations

from typing import List, Optional
from uuid import UUID

import pydantic
from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel

from src.emr.context import AppContext
from src.emr.domain.models.fax import Fax
from src.emr.errors import AuthorizationError, ValidationError
from src.emr.security import get_app_context, require_staff
from src.emr.services.fax.service import FaxStatusUpdate, verify_twilio_signature
from src.emr.tenancy import OrganizationScope

router = APIRouter(prefix="/fax", tags=["fax"])


class SendFaxRequest(BaseModel):
    to: str
    media_url: str
    patient_id: Optional[str] = None


@router.post("/", response_model=Fax, status_code=status.HTTP_201_CREATED, dependencies=[Depends(require_staff)])
async def send_fax(payload: SendFaxRequest, ctx: AppContext = Depends(get_app_context)) -> Fax:
    fax = ctx.fax.send_fax(to_number=payload.to, media_url=payload.media_url, patient_id=payload.patient_id)
    ctx.audit.log_event(action="send", resource_type="fax", resource_id=str(fax.id))
    return fax


@router.get("/", response_model=List[Fax], dependencies=[Depends(require_staff)])
async def list_faxes(patient_id: Optional[str] = None, ctx: AppContext = Depends(get_app_context)) -> List[Fax]:
    return ctx.fax.list_faxes(patient_id=patient_id)


@router.get("/{fax_id}", response_model=Fax, dependencies=[Depends(require_staff)])
async def get_fax(fax_id: UUID, ctx: AppContext = Depends(get_app_context)) -> Fax:
    return ctx.fax.get_fax(fax_id)


@router.post("/webhook")
async def fax_status_webhook(request: Request, ctx: AppContext = Depends(get_app_context)) -> dict:
    """Carrier status callback.

    The carrier posts form-encoded fields (FaxSid, Status, NumPages,
    Duration, ErrorMessage). With the Twilio backend the request must carry a
    valid X-Twilio-Signature; the demo backend also accepts JSON bodies.
    """

    cfg = ctx.settings
    verify = cfg.fax_backend.lower() == "twilio" and bool(cfg.twilio_auth_token)

    if not verify and request.headers.get("content-type", "").startswith("application/json"):
        raw = await request.json()
        if not isinstance(raw, dict):
            raise ValidationError("Webhook body must be an object")
    else:
        raw = {key: str(value) for key, value in (await request.form()).items()}

    if verify:
        # The carrier signs the public callback URL it was given, which may
        # differ from the URL seen behind a proxy.
        url = cfg.fax_status_callback_url or str(request.url)
        if not verify_twilio_signature(cfg.twilio_auth_token, url, raw, request.headers.get("x-twilio-signature")):
            raise AuthorizationError("Invalid fax carrier signature")

    try:
        update = FaxStatusUpdate.model_validate({key: value for key, value in raw.items() if value not in ("", None)})
    except pydantic.ValidationError as exc:
        raise ValidationError(
            "Invalid fax status callback",
            errors=[f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()],
        ) from exc

    fax = ctx.fax.handle_status_update(update)
    # Callbacks carry no tenant header; audit under the fax's own organization.
    with OrganizationScope(fax.organization_id):
        ctx.audit.log_event(
            action="status_update",
            resource_type="fax",
            resource_id=str(fax.id),
            subject="fax-carrier",
            extra={"status": fax.status},
        )
    return {"success": True}
