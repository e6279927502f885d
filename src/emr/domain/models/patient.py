from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel


class Patient(BaseModel):
    """Minimal patient record needed to scope forms and notes.

    Demographics, history, medications and the rest of the chart live in
    other systems; this service only needs identity, ownership and the
    soft-delete flag.
    """

    id: str
    organization_id: str
    full_name: str
    date_of_birth: Optional[date] = None
    created_at: datetime
    is_deleted: bool = False
