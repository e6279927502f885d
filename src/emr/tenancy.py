from __future__ import annotations

from contextvars import ContextVar

DEFAULT_ORGANIZATION = "default"

# Context variable storing the organization (tenant) identifier for the
# in-flight request. Defaults to "default" so single-organization clients and
# direct service calls in tests work without specifying X-Organization-ID.
_current_organization: ContextVar[str] = ContextVar("current_organization", default=DEFAULT_ORGANIZATION)


def get_current_organization() -> str:
    """Return the current organization identifier.

    In HTTP requests this is set by :func:`src.emr.security.resolve_user`
    from the session or the X-Organization-ID header. In non-request contexts it
    falls back to "default".
    """

    return _current_organization.get()


def set_current_organization(organization_id: str) -> None:
    _current_organization.set(organization_id)


class OrganizationScope:
    """Temporarily run code under a specific organization.

    Usage::

        with OrganizationScope("org-1"):
            note_service.list_notes(patient_id=...)
    """

    def __init__(self, organization_id: str) -> None:
        self.organization_id = organization_id
        self._token = None

    def __enter__(self) -> "OrganizationScope":
        self._token = _current_organization.set(self.organization_id)
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        _current_organization.reset(self._token)
        return False

