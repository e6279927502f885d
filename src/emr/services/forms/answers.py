from __future__ import annotations

import re
from datetime import date
from typing import Dict, List, Sequence

from src.emr.domain.models.form_schema import (
    CHOICE_TYPES,
    IMAGE_TYPES,
    FormElement,
    FormElementType,
    TableColumnType,
)
from src.emr.domain.models.submission import AnswerInput, AnswerValue, SubmissionAnswer
from src.emr.errors import ValidationError
from src.emr.services.forms.signature import decode_data_url

DEFAULT_MIN_ROWS = 1
DEFAULT_MAX_ROWS = 10


def is_empty_answer(element: FormElement, answer: AnswerValue) -> bool:
    if answer is None:
        return True
    if element.element_type == FormElementType.CHECKBOX:
        return answer is False
    if isinstance(answer, str):
        return not answer.strip()
    if isinstance(answer, list):
        return len(answer) == 0
    return False


def _check_text(element: FormElement, answer: AnswerValue) -> List[str]:
    if not isinstance(answer, str):
        return [f"{element.id}: expected a text answer"]
    errors: List[str] = []
    rules = element.validation
    if rules is not None:
        if rules.min_length is not None and len(answer) < rules.min_length:
            errors.append(f"{element.id}: answer shorter than {rules.min_length} characters")
        if rules.max_length is not None and len(answer) > rules.max_length:
            errors.append(f"{element.id}: answer longer than {rules.max_length} characters")
        if rules.pattern:
            try:
                matched = re.fullmatch(rules.pattern, answer) is not None
            except re.error:
                errors.append(f"{element.id}: field has an invalid validation pattern")
            else:
                if not matched:
                    errors.append(f"{element.id}: answer does not match the expected format")
    return errors


def _check_date(value: str) -> bool:
    try:
        date.fromisoformat(value)
    except ValueError:
        return False
    return True


def _check_table(element: FormElement, answer: AnswerValue) -> List[str]:
    if not isinstance(answer, list) or not all(isinstance(row, dict) for row in answer):
        return [f"{element.id}: expected a list of table rows"]

    rules = element.validation
    min_rows = rules.min_rows if rules and rules.min_rows is not None else DEFAULT_MIN_ROWS
    max_rows = rules.max_rows if rules and rules.max_rows is not None else DEFAULT_MAX_ROWS
    errors: List[str] = []
    # An optional, untouched table is allowed to have no rows at all.
    if answer and len(answer) < min_rows:
        errors.append(f"{element.id}: table needs at least {min_rows} rows")
    if len(answer) > max_rows:
        errors.append(f"{element.id}: table allows at most {max_rows} rows")

    columns = {column.id: column for column in element.columns}
    for index, row in enumerate(answer):
        unknown = set(row) - set(columns)
        if unknown:
            errors.append(f"{element.id}: row {index} has unknown columns {sorted(unknown)}")
        for column_id, value in row.items():
            column = columns.get(column_id)
            if column is None or value in (None, ""):
                continue
            if column.type == TableColumnType.NUMBER and not isinstance(value, (int, float)):
                try:
                    float(str(value))
                except ValueError:
                    errors.append(f"{element.id}: row {index} column '{column_id}' must be a number")
            elif column.type == TableColumnType.DATE and not _check_date(str(value)):
                errors.append(f"{element.id}: row {index} column '{column_id}' must be an ISO date")
            elif column.type == TableColumnType.SELECT and column.options and value not in column.options:
                errors.append(f"{element.id}: row {index} column '{column_id}' is not an allowed option")
    return errors


def check_answer(element: FormElement, answer: AnswerValue) -> List[str]:
    """Return type errors for a non-empty ``answer`` to ``element``."""

    element_type = element.element_type
    if element_type == FormElementType.CHECKBOX:
        return [] if isinstance(answer, bool) else [f"{element.id}: expected true or false"]
    if element_type == FormElementType.TABLE:
        return _check_table(element, answer)
    if not isinstance(answer, str):
        return [f"{element.id}: expected a text answer"]
    if element_type in IMAGE_TYPES:
        try:
            decode_data_url(answer)
        except ValidationError as exc:
            return [f"{element.id}: {exc.message}"]
        return []
    if element_type in CHOICE_TYPES:
        return [] if answer in element.options else [f"{element.id}: '{answer}' is not one of the options"]
    if element_type == FormElementType.DATE:
        return [] if _check_date(answer) else [f"{element.id}: expected an ISO date (YYYY-MM-DD)"]
    return _check_text(element, answer)


def build_form_data(elements: Sequence[FormElement], answers: Sequence[AnswerInput]) -> List[SubmissionAnswer]:
    """Validate ``answers`` against ``elements`` and return them in element order.

    The result holds exactly one entry per element, in schema order. Display
    elements and unanswered optional fields get a ``None`` answer.
    """

    by_id = {element.id: element for element in elements}
    provided: Dict[str, AnswerValue] = {}
    errors: List[str] = []

    for item in answers:
        element = by_id.get(item.field_id)
        if element is None:
            errors.append(f"{item.field_id}: unknown field")
            continue
        if not element.collects_answer:
            continue
        if item.field_id in provided:
            errors.append(f"{item.field_id}: answered more than once")
            continue
        provided[item.field_id] = item.answer

    for element in elements:
        if not element.collects_answer:
            continue
        answer = provided.get(element.id)
        if is_empty_answer(element, answer):
            if element.required:
                errors.append(f"{element.id}: required field '{element.label}' is missing")
            continue
        errors.extend(check_answer(element, answer))

    if errors:
        raise ValidationError("Submission failed validation", errors=errors)

    return [
        SubmissionAnswer(
            field_id=element.id,
            question=element.label,
            answer=provided.get(element.id) if element.collects_answer else None,
        )
        for element in elements
    ]
