from __future__ import annotations

import hashlib
from contextvars import ContextVar
from typing import TYPE_CHECKING, List, Optional

from fastapi import Depends, Header, HTTPException, Security, status
from fastapi.security import APIKeyHeader, HTTPAuthorizationCredentials, HTTPBearer
from starlette.requests import HTTPConnection

from src.emr.config import Settings
from src.emr.domain.models.user import User, UserRole
from src.emr.errors import AuthorizationError
from src.emr.tenancy import DEFAULT_ORGANIZATION, set_current_organization

if TYPE_CHECKING:
    from src.emr.context import AppContext

# API key is expected in this header when ENABLE_API_AUTH is true.
_api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)
# Session tokens issued by /auth/sign-in are sent as "Authorization: Bearer <token>".
bearer_scheme = HTTPBearer(auto_error=False)

# Stable, non-raw identifier for the current caller (hashed API key or session
# user id), used by the audit logger.
_current_subject: ContextVar[Optional[str]] = ContextVar("current_subject", default=None)

STAFF_ROLES = (UserRole.PROVIDER, UserRole.ADMIN)


def get_current_subject() -> Optional[str]:
    return _current_subject.get()


def get_app_context(connection: HTTPConnection) -> "AppContext":
    """Return the AppContext attached to the running application."""

    context = getattr(connection.app.state, "context", None)
    if context is None or not context.initialized:
        raise RuntimeError("Application context is not initialized")
    return context


def _parse_api_keys(cfg: Settings) -> List[str]:
    """Return the configured API keys as a normalized list.

    API_KEYS is treated as a comma-separated list. Whitespace is stripped and
    empty entries are ignored.
    """

    if not cfg.api_keys:
        return []
    return [key.strip() for key in cfg.api_keys.split(",") if key.strip()]


def resolve_user(
    context: "AppContext",
    *,
    api_key: Optional[str] = None,
    bearer_token: Optional[str] = None,
    organization_header: Optional[str] = None,
) -> User:
    """Authenticate the caller and establish the organization context.

    - A bearer session token always wins; the session's organization becomes
      the acting organization and a conflicting X-Organization-ID is refused.
    - With ENABLE_API_AUTH=false (development/tests) the caller is an
      anonymous admin of the organization named in X-Organization-ID.
    - Otherwise a valid X-API-Key is required; the key acts as a provider of
      the organization named in X-Organization-ID.
    """

    cfg = context.settings

    if bearer_token:
        session = context.identity.get_session(bearer_token)
        if session is None:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired session.")
        if organization_header and organization_header != session.organization_id:
            raise AuthorizationError("Session does not belong to the requested organization")
        _current_subject.set(f"user:{session.user.id}")
        set_current_organization(session.organization_id)
        return session.user

    organization = organization_header or DEFAULT_ORGANIZATION

    if not cfg.enable_api_auth:
        _current_subject.set(None)
        set_current_organization(organization)
        return context.users.upsert_user_for_subject(
            subject=f"anonymous:{organization}",
            email="anonymous@example.com",
            role=UserRole.ADMIN,
            organization_id=organization,
        )

    allowed_keys = _parse_api_keys(cfg)
    if not allowed_keys:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="API authentication is enabled but no API keys are configured.",
        )
    if not api_key or api_key not in allowed_keys:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or missing API key.")

    # Derive a non-reversible identifier from the key so audit logs never
    # contain the raw secret.
    subject = "api-key:" + hashlib.sha256(api_key.encode("utf-8")).hexdigest()[:16]
    _current_subject.set(subject)
    set_current_organization(organization)
    return context.users.upsert_user_for_subject(
        subject=f"{subject}:{organization}",
        email=f"integration+{subject[8:16]}@example.com",
        role=UserRole.PROVIDER,
        organization_id=organization,
    )


async def get_current_user(
    connection: HTTPConnection,
    api_key: Optional[str] = Security(_api_key_header),
    credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
    x_organization_id: Optional[str] = Header(None, alias="X-Organization-ID"),
) -> User:
    return resolve_user(
        get_app_context(connection),
        api_key=api_key,
        bearer_token=credentials.credentials if credentials else None,
        organization_header=x_organization_id,
    )


def ensure_role(user: User, *roles: UserRole) -> None:
    """Raise AuthorizationError unless the user holds one of ``roles``."""

    if user.role not in roles:
        raise AuthorizationError(f"Role '{user.role.value}' is not allowed to perform this action")


async def require_staff(user: User = Depends(get_current_user)) -> User:
    """Dependency for provider/admin-only endpoints."""

    ensure_role(user, *STAFF_ROLES)
    return user
