from datetime import datetime, timezone
from uuid import uuid4

import pytest

from src.emr.domain.models.form_schema import ElementValidation, FormElement, FormSchema, TableColumn
from src.emr.errors import NotFoundError, RangeError, ValidationError
from src.emr.services.forms import builder
from src.emr.services.forms.builder import IssueSeverity


def _schema(*elements: FormElement) -> FormSchema:
    now = datetime.now(timezone.utc)
    return FormSchema(
        id=uuid4(),
        organization_id="default",
        name="Intake",
        elements=list(elements),
        created_at=now,
        updated_at=now,
    )


def _ids(schema: FormSchema):
    return [e.id for e in schema.elements]


def test_add_element_appends_and_inserts_without_mutating_input():
    base = _schema(FormElement(id="a", type="text", label="A"))

    appended = builder.add_element(base, FormElement(id="b", type="checkbox", label="B"))
    inserted = builder.add_element(appended, FormElement(id="c", type="date", label="C"), at_index=0)

    assert _ids(base) == ["a"]
    assert _ids(appended) == ["a", "b"]
    assert _ids(inserted) == ["c", "a", "b"]


def test_add_element_rejects_duplicates_unknown_types_and_bad_index():
    base = _schema(FormElement(id="a", type="text", label="A"))

    with pytest.raises(ValidationError):
        builder.add_element(base, FormElement(id="a", type="text", label="again"))
    with pytest.raises(ValidationError):
        builder.add_element(base, FormElement(id="x", type="slider", label="X"))
    with pytest.raises(RangeError):
        builder.add_element(base, FormElement(id="x", type="text", label="X"), at_index=5)


def test_reorder_moves_element_to_target_index():
    schema = _schema(*(FormElement(id=i, type="text", label=i.upper()) for i in "abcd"))

    assert _ids(builder.reorder_elements(schema, 0, 2)) == ["b", "c", "a", "d"]
    assert _ids(builder.reorder_elements(schema, 3, 0)) == ["d", "a", "b", "c"]
    with pytest.raises(RangeError):
        builder.reorder_elements(schema, 0, 4)


def test_remove_and_update_element():
    schema = _schema(FormElement(id="a", type="text", label="A"), FormElement(id="b", type="text", label="B"))

    assert _ids(builder.remove_element(schema, "a")) == ["b"]
    with pytest.raises(NotFoundError):
        builder.remove_element(schema, "missing")

    updated = builder.update_element(schema, "b", {"label": "Allergies", "required": True})
    element = updated.element_by_id("b")
    assert element.label == "Allergies"
    assert element.required is True
    assert schema.element_by_id("b").label == "B"

    with pytest.raises(ValidationError):
        builder.update_element(schema, "b", {"id": "renamed"})
    with pytest.raises(ValidationError):
        builder.update_element(schema, "b", {"required": "not-a-bool"})


def test_validate_schema_reports_errors_and_warnings():
    schema = _schema(
        FormElement(id="q1", type="text", label=""),
        FormElement(id="q2", type="dropdown", label="Pick", options=[]),
        FormElement(id="t1", type="table", label="Meds", columns=[TableColumn(id="c", header="C"), TableColumn(id="c", header="C")]),
        FormElement(id="s1", type="section", label="Header", required=True),
    )

    issues = builder.validate_schema(schema)
    errors = {(i.element_id, i.message) for i in issues if i.severity == IssueSeverity.ERROR}
    warnings = [i for i in issues if i.severity == IssueSeverity.WARNING]

    assert ("q1", "Label must not be empty") in errors
    assert ("q2", "dropdown element needs at least one option") in errors
    assert ("t1", "Table column ids must be unique") in errors
    assert [w.element_id for w in warnings] == ["s1"]


def test_empty_schema_is_only_a_warning():
    issues = builder.validate_schema(_schema())

    assert len(issues) == 1
    assert issues[0].severity == IssueSeverity.WARNING
    assert builder.schema_errors(_schema()) == []


def test_static_text_may_use_description_instead_of_label():
    schema = _schema(FormElement(id="intro", type="staticText", description="Please answer honestly."))

    assert builder.schema_errors(schema) == []


def test_invalid_validation_pattern_is_a_schema_error():
    schema = _schema(
        FormElement(id="zip", type="text", label="ZIP", validation=ElementValidation(pattern="[a-")),
        FormElement(id="code", type="text", label="Code", validation=ElementValidation(pattern=r"[A-Z]{3}")),
    )

    errors = builder.schema_errors(schema)

    assert [issue.element_id for issue in errors] == ["zip"]
    assert errors[0].message.startswith("Invalid validation pattern")
