"""Pure transformations over form schemas.

Every function returns a new :class:`FormSchema` and leaves its input
untouched, so callers can keep an undo history or discard edits freely.
Persistence is handled by :mod:`src.emr.services.forms.service`.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

import pydantic

from src.emr.domain.models.form_schema import (
    CHOICE_TYPES,
    DISPLAY_ONLY_TYPES,
    FormElement,
    FormElementType,
    FormSchema,
)
from src.emr.errors import NotFoundError, RangeError, ValidationError


class IssueSeverity(str, Enum):
    ERROR = "error"
    WARNING = "warning"


@dataclass(frozen=True)
class SchemaIssue:
    severity: IssueSeverity
    message: str
    element_id: Optional[str] = None


def _with_elements(schema: FormSchema, elements: List[FormElement]) -> FormSchema:
    return schema.model_copy(update={"elements": elements})


def add_element(schema: FormSchema, element: FormElement, at_index: Optional[int] = None) -> FormSchema:
    """Insert ``element`` at ``at_index`` (default: end of the schema)."""

    if element.element_type is None:
        raise ValidationError(
            f"Unsupported element type '{element.type}'",
            errors=[f"{element.id}: unsupported type '{element.type}'"],
        )
    if schema.element_by_id(element.id) is not None:
        raise ValidationError(f"Element id '{element.id}' already exists in schema")

    elements = list(schema.elements)
    if at_index is None:
        elements.append(element)
    else:
        if at_index < 0 or at_index > len(elements):
            raise RangeError(f"Insert index {at_index} out of range 0..{len(elements)}")
        elements.insert(at_index, element)
    return _with_elements(schema, elements)


def remove_element(schema: FormSchema, element_id: str) -> FormSchema:
    elements = [e for e in schema.elements if e.id != element_id]
    if len(elements) == len(schema.elements):
        raise NotFoundError(f"Element '{element_id}' not found in schema")
    return _with_elements(schema, elements)


def reorder_elements(schema: FormSchema, from_index: int, to_index: int) -> FormSchema:
    """Move the element at ``from_index`` so that it ends up at ``to_index``."""

    size = len(schema.elements)
    for index in (from_index, to_index):
        if index < 0 or index >= size:
            raise RangeError(f"Index {index} out of range for schema with {size} elements")

    elements = list(schema.elements)
    moved = elements.pop(from_index)
    elements.insert(to_index, moved)
    return _with_elements(schema, elements)


def update_element(schema: FormSchema, element_id: str, changes: Dict[str, Any]) -> FormSchema:
    """Apply property ``changes`` to one element. The element id cannot change."""

    if "id" in changes and changes["id"] != element_id:
        raise ValidationError("Element id cannot be changed")

    elements: List[FormElement] = []
    found = False
    for element in schema.elements:
        if element.id == element_id:
            try:
                updated = FormElement.model_validate({**element.model_dump(), **changes})
            except pydantic.ValidationError as exc:
                raise ValidationError(
                    f"Invalid changes for element '{element_id}'",
                    errors=[f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()],
                ) from exc
            if updated.element_type is None:
                raise ValidationError(f"Unsupported element type '{updated.type}'")
            elements.append(updated)
            found = True
        else:
            elements.append(element)

    if not found:
        raise NotFoundError(f"Element '{element_id}' not found in schema")
    return _with_elements(schema, elements)


def validate_element(element: FormElement) -> List[SchemaIssue]:
    issues: List[SchemaIssue] = []
    element_type = element.element_type

    if element_type is None:
        issues.append(SchemaIssue(IssueSeverity.ERROR, f"Unsupported element type '{element.type}'", element.id))
        return issues

    # Static text and sections may carry their content in the description.
    has_text = bool(element.label.strip()) or (
        element_type in DISPLAY_ONLY_TYPES and bool(element.description.strip())
    )
    if not has_text:
        issues.append(SchemaIssue(IssueSeverity.ERROR, "Label must not be empty", element.id))

    if element_type in CHOICE_TYPES and not [o for o in element.options if o.strip()]:
        issues.append(
            SchemaIssue(IssueSeverity.ERROR, f"{element_type.value} element needs at least one option", element.id)
        )

    rules = element.validation
    if element_type == FormElementType.TABLE:
        if not element.columns:
            issues.append(SchemaIssue(IssueSeverity.ERROR, "Table element must define columns", element.id))
        column_ids = [c.id for c in element.columns]
        if len(set(column_ids)) != len(column_ids):
            issues.append(SchemaIssue(IssueSeverity.ERROR, "Table column ids must be unique", element.id))
        if rules is not None and rules.min_rows is not None and rules.max_rows is not None:
            if rules.min_rows > rules.max_rows:
                issues.append(SchemaIssue(IssueSeverity.ERROR, "min_rows is greater than max_rows", element.id))

    if rules is not None and rules.pattern:
        try:
            re.compile(rules.pattern)
        except re.error as exc:
            issues.append(SchemaIssue(IssueSeverity.ERROR, f"Invalid validation pattern: {exc}", element.id))

    if element.required and element_type in DISPLAY_ONLY_TYPES:
        issues.append(
            SchemaIssue(IssueSeverity.WARNING, f"{element_type.value} elements cannot be answered", element.id)
        )

    return issues


def validate_schema(schema: FormSchema) -> List[SchemaIssue]:
    """Return every problem found in ``schema``.

    An empty schema is reported as a warning; it can be saved but is
    probably not ready to be assigned.
    """

    issues: List[SchemaIssue] = []
    if not schema.elements:
        issues.append(SchemaIssue(IssueSeverity.WARNING, "Schema has no elements"))

    seen: set[str] = set()
    for element in schema.elements:
        if element.id in seen:
            issues.append(SchemaIssue(IssueSeverity.ERROR, "Duplicate element id", element.id))
        seen.add(element.id)
        issues.extend(validate_element(element))
    return issues


def schema_errors(schema: FormSchema) -> List[SchemaIssue]:
    return [issue for issue in validate_schema(schema) if issue.severity == IssueSeverity.ERROR]
