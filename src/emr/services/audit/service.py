from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from src.emr.security import get_current_subject
from src.emr.tenancy import get_current_organization

logger = logging.getLogger("audit")


@dataclass
class AuditEvent:
    """Structured representation of an audit event.

    Keeps the payload free of PHI: identifiers, types and high-level actions
    only, never note bodies, answers or signature images.
    """

    timestamp: str
    action: str
    resource_type: str
    organization_id: str
    resource_id: Optional[str] = None
    subject: Optional[str] = None
    extra: Optional[Dict[str, Any]] = None


class AuditService:
    def log_event(
        self,
        *,
        action: str,
        resource_type: str,
        resource_id: Optional[str] = None,
        subject: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> AuditEvent:
        """Log a structured audit event as one JSON line.

        - `action`: high-level verb, e.g. "create", "submit", "sign".
        - `resource_type`: coarse type, e.g. "clinical_note", "assignment".
        - `resource_id`: stable identifier when available.
        - `subject`: caller identifier; inferred from the security context
          when omitted.
        - `extra`: optional small dict of non-PHI metadata (counts, flags).
        """

        event = AuditEvent(
            timestamp=datetime.now(timezone.utc).isoformat(),
            action=action,
            resource_type=resource_type,
            organization_id=get_current_organization(),
            resource_id=resource_id,
            subject=subject if subject is not None else get_current_subject(),
            extra=extra,
        )

        payload = asdict(event)
        try:
            line = json.dumps(payload)
        except TypeError:
            # Something in extra is not JSON serializable; drop it rather than
            # the whole event.
            payload["extra"] = None
            line = json.dumps(payload)
        logger.info(line)
        return event
