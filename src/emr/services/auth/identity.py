from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Dict, List, Optional, Protocol
from uuid import uuid4

from pydantic import BaseModel

from src.emr.domain.models.user import User, UserRole
from src.emr.errors import ConflictError, ValidationError

logger = logging.getLogger(__name__)

_PBKDF2_ITERATIONS = 120_000


class Session(BaseModel):
    token: str
    user: User
    expires_at: datetime

    @property
    def organization_id(self) -> str:
        return self.user.organization_id


class IdentityProvider(Protocol):
    """Session lookup and password sign-in used by the API layer."""

    def get_session(self, token: str) -> Optional[Session]:  # pragma: no cover - interface
        raise NotImplementedError

    def sign_in(self, email: str, password: str) -> Optional[Session]:  # pragma: no cover - interface
        raise NotImplementedError

    def sign_out(self, token: str) -> bool:  # pragma: no cover - interface
        raise NotImplementedError


@dataclass
class _Credential:
    user: User
    salt: bytes
    password_hash: bytes


def _hash_password(password: str, salt: bytes) -> bytes:
    return hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, _PBKDF2_ITERATIONS)


class InMemoryIdentityProvider:
    """Demo identity provider with email/password accounts and bearer sessions.

    Passwords are stored as salted PBKDF2 hashes and tokens are random URL-safe
    strings. Expired sessions are dropped on lookup.
    """

    def __init__(self, *, session_ttl: timedelta = timedelta(hours=12)) -> None:
        self._credentials: Dict[str, _Credential] = {}
        self._sessions: Dict[str, Session] = {}
        self._session_ttl = session_ttl
        self._lock = Lock()

    def register(
        self,
        *,
        email: str,
        password: str,
        organization_id: str,
        role: UserRole = UserRole.PROVIDER,
        patient_id: Optional[str] = None,
    ) -> User:
        if not password:
            raise ValidationError("password must not be empty")
        key = email.strip().lower()
        user = User(
            id=uuid4(),
            email=key,
            role=role,
            organization_id=organization_id,
            patient_id=patient_id if role == UserRole.PATIENT else None,
        )
        salt = secrets.token_bytes(16)
        with self._lock:
            if key in self._credentials:
                raise ConflictError("A user with this email already exists")
            self._credentials[key] = _Credential(user=user, salt=salt, password_hash=_hash_password(password, salt))
        return user

    def sign_in(self, email: str, password: str) -> Optional[Session]:
        credential = self._credentials.get(email.strip().lower())
        if credential is None:
            return None
        if not hmac.compare_digest(credential.password_hash, _hash_password(password, credential.salt)):
            logger.info("Failed sign-in for user %s", credential.user.id)
            return None

        session = Session(
            token=secrets.token_urlsafe(32),
            user=credential.user,
            expires_at=datetime.now(timezone.utc) + self._session_ttl,
        )
        with self._lock:
            self._sessions[session.token] = session
        return session

    def get_session(self, token: str) -> Optional[Session]:
        session = self._sessions.get(token)
        if session is None:
            return None
        if session.expires_at <= datetime.now(timezone.utc):
            with self._lock:
                self._sessions.pop(token, None)
            return None
        return session

    def sign_out(self, token: str) -> bool:
        with self._lock:
            return self._sessions.pop(token, None) is not None


def parse_demo_users(raw: Optional[str]) -> List[dict]:
    """Parse DEMO_USERS entries of the form ``email:password:organization[:role[:patient_id]]``.

    The optional patient id links a ``patient`` account to the record it may
    see in the portal; an unlinked patient account can see no assignments.
    """

    users: List[dict] = []
    if not raw:
        return users
    for position, entry in enumerate(raw.split(","), start=1):
        entry = entry.strip()
        if not entry:
            continue
        parts = entry.split(":")
        if len(parts) not in (3, 4, 5):
            raise ValueError(f"DEMO_USERS entry {position} must be email:password:organization[:role[:patient_id]]")
        role = UserRole(parts[3]) if len(parts) >= 4 else UserRole.PROVIDER
        account = {"email": parts[0], "password": parts[1], "organization_id": parts[2], "role": role}
        if len(parts) == 5:
            account["patient_id"] = parts[4]
        users.append(account)
    return users
