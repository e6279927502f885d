from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID, uuid4

from src.emr.domain.models.form_schema import FormElement, FormSchema
from src.emr.errors import ConflictError, NotFoundError, ValidationError
from src.emr.infra.db.repositories import AssignmentRepository, FormSchemaRepository
from src.emr.services.forms.builder import schema_errors
from src.emr.tenancy import get_current_organization

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class FormSchemaService:
    """Persists document templates built with :mod:`.builder`.

    A template that has already been assigned to a patient is never changed
    in place: saving it forks a new template with the next version number and
    retires the old one.
    """

    def __init__(self, schemas: FormSchemaRepository, assignments: AssignmentRepository) -> None:
        self._schemas = schemas
        self._assignments = assignments

    def _ensure_valid(self, schema: FormSchema) -> None:
        errors = schema_errors(schema)
        if errors:
            raise ValidationError(
                "Form schema is invalid",
                errors=[f"{issue.element_id}: {issue.message}" if issue.element_id else issue.message for issue in errors],
            )

    def new_schema(
        self,
        *,
        name: str,
        description: str = "",
        tags: Optional[List[str]] = None,
        elements: Optional[List[FormElement]] = None,
        created_by: Optional[str] = None,
    ) -> FormSchema:
        """Build an unsaved schema owned by the current organization."""

        now = _now()
        return FormSchema(
            id=uuid4(),
            organization_id=get_current_organization(),
            name=name,
            description=description,
            tags=tags or [],
            elements=elements or [],
            created_by=created_by,
            created_at=now,
            updated_at=now,
        )

    def create_schema(
        self,
        *,
        name: str,
        description: str = "",
        tags: Optional[List[str]] = None,
        elements: Optional[List[FormElement]] = None,
        created_by: Optional[str] = None,
    ) -> FormSchema:
        if not name.strip():
            raise ValidationError("Template name must not be empty")
        schema = self.new_schema(
            name=name,
            description=description,
            tags=tags,
            elements=elements,
            created_by=created_by,
        )
        self._ensure_valid(schema)
        self._schemas.save(schema)
        logger.info("Created form schema %s with %d elements", schema.id, len(schema.elements))
        return schema

    def get_schema(self, schema_id: UUID) -> FormSchema:
        schema = self._schemas.get(schema_id)
        if schema is None:
            raise NotFoundError("Form schema not found")
        return schema

    def list_schemas(self, *, tag: Optional[str] = None, include_inactive: bool = False) -> List[FormSchema]:
        return list(self._schemas.list(tag=tag, include_inactive=include_inactive))

    def is_referenced(self, schema_id: UUID) -> bool:
        return any(True for _ in self._assignments.list_by_filters(schema_id=schema_id))

    def save_schema(self, schema: FormSchema) -> FormSchema:
        """Persist an edited schema, forking it if assignments reference it.

        Returns the schema as stored: either the same id with a bumped
        version, or a new id whose ``parent_schema_id`` is the edited one.
        Retired schemas are read-only and raise ConflictError.
        """

        stored = self.get_schema(schema.id)
        if not stored.is_active:
            raise ConflictError("Form schema has been retired; edit its latest version instead")
        if not schema.name.strip():
            raise ValidationError("Template name must not be empty")
        self._ensure_valid(schema)

        now = _now()
        if not self.is_referenced(stored.id):
            updated = schema.model_copy(
                update={
                    "organization_id": stored.organization_id,
                    "version": stored.version + 1,
                    "created_at": stored.created_at,
                    "updated_at": now,
                }
            )
            self._schemas.save(updated)
            return updated

        forked = schema.model_copy(
            update={
                "id": uuid4(),
                "organization_id": stored.organization_id,
                "version": stored.version + 1,
                "parent_schema_id": stored.id,
                "is_active": True,
                "created_at": now,
                "updated_at": now,
            }
        )
        self._schemas.save(forked)
        self._schemas.save(stored.model_copy(update={"is_active": False, "updated_at": now}))
        logger.info("Forked form schema %s into %s (version %d)", stored.id, forked.id, forked.version)
        return forked

    def deactivate_schema(self, schema_id: UUID) -> FormSchema:
        stored = self.get_schema(schema_id)
        updated = stored.model_copy(update={"is_active": False, "updated_at": _now()})
        self._schemas.save(updated)
        return updated
