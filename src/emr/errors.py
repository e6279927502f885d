from __future__ import annotations

from typing import Any, Dict, List, Optional


class EMRError(Exception):
    """Base class for domain errors raised by the service layer.

    ``code`` is a stable machine-readable identifier returned to API clients
    alongside the human-readable message.
    """

    code = "emr_error"

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(EMRError):
    """Malformed input or missing required field."""

    code = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        errors: Optional[List[str]] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, details=details)
        self.errors = errors or []


class RangeError(ValidationError):
    """An index argument fell outside the bounds of a sequence."""

    code = "range_error"


class NotFoundError(EMRError):
    """Referenced entity is absent, soft-deleted, or outside the tenant."""

    code = "not_found"


class ConflictError(EMRError):
    """Invalid state transition (double submission, editing a signed note)."""

    code = "conflict"


class AuthorizationError(EMRError):
    """Cross-tenant access attempt or insufficient role."""

    code = "forbidden"


class StorageError(EMRError):
    """Failure reported by the persistence layer, passed through."""

    code = "storage_error"


class ExternalServiceError(EMRError):
    """Failure of an AI, transcription, or fax provider."""

    code = "external_service_error"

    def __init__(self, message: str, *, service: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, details=details)
        self.service = service
