from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel


class FaxDirection(str, Enum):
    OUTBOUND = "outbound"
    INBOUND = "inbound"


class Fax(BaseModel):
    id: UUID
    organization_id: str
    patient_id: Optional[str] = None
    direction: FaxDirection = FaxDirection.OUTBOUND
    # Carrier status string, lower-cased ("queued", "sending", "delivered",
    # "failed", ...). Kept open because carriers add states over time.
    status: str = "queued"
    from_number: Optional[str] = None
    to_number: str
    media_url: str
    twilio_sid: Optional[str] = None
    pages: Optional[int] = None
    duration_seconds: Optional[int] = None
    error_message: Optional[str] = None
    created_at: datetime
    updated_at: datetime
