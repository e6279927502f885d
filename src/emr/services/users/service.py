from __future__ import annotations

from threading import Lock
from typing import Dict, Optional
from uuid import uuid4

from src.emr.domain.models.user import User, UserRole
from src.emr.tenancy import get_current_organization


class InMemoryUserService:
    """Small in-memory user store keyed by auth subject.

    Maps the hashed auth subject (API key hash or session user id) to a
    concrete User so that downstream code can reason about providers, admins
    and patients without seeing raw secrets.
    """

    def __init__(self) -> None:
        self._by_subject: Dict[str, User] = {}
        self._lock = Lock()

    def upsert_user_for_subject(
        self,
        *,
        subject: str,
        email: str,
        role: UserRole,
        organization_id: Optional[str] = None,
    ) -> User:
        with self._lock:
            existing = self._by_subject.get(subject)
            if existing is not None:
                return existing

            user = User(
                id=uuid4(),
                email=email,
                role=role,
                organization_id=organization_id or get_current_organization(),
            )
            self._by_subject[subject] = user
            return user

