from __future__ import annotations

import base64
import hashlib
import hmac
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Mapping, Optional, Protocol
from uuid import UUID, uuid4

import httpx
from pydantic import BaseModel, ConfigDict, Field

from src.emr.config import settings
from src.emr.domain.models.fax import Fax, FaxDirection
from src.emr.errors import ExternalServiceError, NotFoundError, ValidationError
from src.emr.infra.db.repositories import FaxRepository
from src.emr.tenancy import get_current_organization

logger = logging.getLogger(__name__)


class FaxCarrier(Protocol):
    """Protocol for outbound fax carriers.

    ``send`` returns the carrier's identifier (SID) for the fax; status
    updates arrive later through the webhook.
    """

    def send(
        self, *, to_number: str, from_number: Optional[str], media_url: str, status_callback: Optional[str]
    ) -> str:  # pragma: no cover - interface
        raise NotImplementedError


class DemoFaxCarrier:
    """Accepts every fax without sending anything."""

    def __init__(self) -> None:
        self.sent: List[dict] = []

    def send(self, *, to_number: str, from_number: Optional[str], media_url: str, status_callback: Optional[str]) -> str:
        sid = "FX" + uuid4().hex
        self.sent.append({"sid": sid, "to": to_number, "from": from_number, "media_url": media_url})
        return sid


@dataclass
class TwilioFaxConfig:
    account_sid: Optional[str]
    auth_token: Optional[str]
    base_url: str
    timeout_seconds: float

    @classmethod
    def from_settings(cls) -> "TwilioFaxConfig":
        return cls(
            account_sid=settings.twilio_account_sid,
            auth_token=settings.twilio_auth_token,
            base_url=settings.twilio_api_base_url.rstrip("/"),
            timeout_seconds=settings.fax_timeout_seconds,
        )


class TwilioFaxCarrier:
    """Minimal client for Twilio's Programmable Fax REST API."""

    def __init__(self, config: TwilioFaxConfig, client: Optional[httpx.Client] = None) -> None:
        if not config.account_sid or not config.auth_token:
            raise ExternalServiceError("TWILIO_ACCOUNT_SID and TWILIO_AUTH_TOKEN must be set", service="fax")
        self._config = config
        self._client = client or httpx.Client(timeout=config.timeout_seconds)

    def send(self, *, to_number: str, from_number: Optional[str], media_url: str, status_callback: Optional[str]) -> str:
        form = {"To": to_number, "MediaUrl": media_url}
        if from_number:
            form["From"] = from_number
        if status_callback:
            form["StatusCallback"] = status_callback

        try:
            response = self._client.post(
                f"{self._config.base_url}/Faxes",
                data=form,
                auth=(self._config.account_sid, self._config.auth_token),
            )
        except httpx.HTTPError as exc:
            raise ExternalServiceError("Fax carrier request failed", service="fax") from exc

        if response.status_code >= 400:
            logger.error("Fax carrier rejected request with status %s: %s", response.status_code, response.text)
            raise ExternalServiceError(
                "Fax carrier rejected the request",
                service="fax",
                details={"status_code": response.status_code},
            )

        try:
            sid = response.json().get("sid")
        except ValueError as exc:
            raise ExternalServiceError("Fax carrier returned a non-JSON response", service="fax") from exc
        if not sid:
            raise ExternalServiceError("Fax carrier response did not include a SID", service="fax")
        return sid

    def close(self) -> None:
        self._client.close()


def twilio_signature(auth_token: str, url: str, params: Mapping[str, str]) -> str:
    """Compute the X-Twilio-Signature value for a form-encoded callback.

    HMAC-SHA1 over the full callback URL followed by every POST parameter
    name and value, sorted by name, base64-encoded.
    """

    payload = url + "".join(f"{key}{params[key]}" for key in sorted(params))
    digest = hmac.new(auth_token.encode("utf-8"), payload.encode("utf-8"), hashlib.sha1).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_twilio_signature(auth_token: str, url: str, params: Mapping[str, str], signature: Optional[str]) -> bool:
    if not signature:
        return False
    return hmac.compare_digest(twilio_signature(auth_token, url, params), signature)


def get_fax_carrier_from_env() -> FaxCarrier:
    """Select a fax carrier based on FAX_BACKEND.

    - FAX_BACKEND=twilio → TwilioFaxCarrier
    - Anything else (or unset) → DemoFaxCarrier
    """

    if settings.fax_backend.lower() == "twilio":
        return TwilioFaxCarrier(TwilioFaxConfig.from_settings())
    return DemoFaxCarrier()


class FaxStatusUpdate(BaseModel):
    """Status callback payload posted by the carrier (Twilio field names)."""

    model_config = ConfigDict(populate_by_name=True)

    fax_sid: str = Field(alias="FaxSid")
    status: str = Field(alias="Status")
    num_pages: Optional[int] = Field(default=None, alias="NumPages")
    duration: Optional[int] = Field(default=None, alias="Duration")
    error_message: Optional[str] = Field(default=None, alias="ErrorMessage")


class FaxService:
    def __init__(
        self,
        *,
        faxes: FaxRepository,
        carrier: Optional[FaxCarrier] = None,
        from_number: Optional[str] = None,
        status_callback_url: Optional[str] = None,
    ) -> None:
        self._faxes = faxes
        self._carrier = carrier or get_fax_carrier_from_env()
        self._from_number = from_number if from_number is not None else settings.twilio_fax_number
        self._status_callback_url = (
            status_callback_url if status_callback_url is not None else settings.fax_status_callback_url
        )

    @property
    def carrier(self) -> FaxCarrier:
        return self._carrier

    def send_fax(self, *, to_number: str, media_url: str, patient_id: Optional[str] = None) -> Fax:
        """Record an outbound fax as queued and hand it to the carrier.

        If the carrier call fails the record is kept with status ``failed``
        and the error is re-raised.
        """

        if not to_number.strip():
            raise ValidationError("Destination fax number is required")
        if not media_url.startswith(("http://", "https://")):
            raise ValidationError("media_url must be an http(s) URL the carrier can fetch")

        now = datetime.now(timezone.utc)
        fax = Fax(
            id=uuid4(),
            organization_id=get_current_organization(),
            patient_id=patient_id,
            direction=FaxDirection.OUTBOUND,
            status="queued",
            from_number=self._from_number,
            to_number=to_number.strip(),
            media_url=media_url,
            created_at=now,
            updated_at=now,
        )
        self._faxes.save(fax)

        try:
            sid = self._carrier.send(
                to_number=fax.to_number,
                from_number=fax.from_number,
                media_url=fax.media_url,
                status_callback=self._status_callback_url,
            )
        except ExternalServiceError as exc:
            failed = fax.model_copy(
                update={"status": "failed", "error_message": exc.message, "updated_at": datetime.now(timezone.utc)}
            )
            self._faxes.save(failed)
            raise

        sent = fax.model_copy(update={"twilio_sid": sid, "updated_at": datetime.now(timezone.utc)})
        self._faxes.save(sent)
        logger.info("Queued fax %s with carrier SID %s", sent.id, sid)
        return sent

    def handle_status_update(self, update: FaxStatusUpdate) -> Fax:
        fax = self._faxes.get_by_carrier_sid(update.fax_sid)
        if fax is None:
            raise NotFoundError("No fax with this carrier SID")

        updated = fax.model_copy(
            update={
                "status": update.status.lower(),
                "pages": update.num_pages,
                "duration_seconds": update.duration,
                "error_message": update.error_message,
                "updated_at": datetime.now(timezone.utc),
            }
        )
        self._faxes.save(updated)
        logger.info("Fax %s is now %s", fax.id, updated.status)
        return updated

    def get_fax(self, fax_id: UUID) -> Fax:
        fax = self._faxes.get(fax_id)
        if fax is None:
            raise NotFoundError("Fax not found")
        return fax

    def list_faxes(self, *, patient_id: Optional[str] = None) -> List[Fax]:
        faxes = [fax for fax in self._faxes.list() if patient_id is None or fax.patient_id == patient_id]
        return sorted(faxes, key=lambda f: f.created_at, reverse=True)
