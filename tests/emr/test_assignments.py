from datetime import datetime, timedelta, timezone

import pytest
from fastapi import status

from src.emr.domain.models.assignment import AssignmentStatus, PortalStatus
from src.emr.domain.models.form_schema import FormElement
from src.emr.domain.models.submission import AnswerInput
from src.emr.errors import ConflictError, NotFoundError, ValidationError
from src.emr.services.forms import builder


def _intake(ctx):
    patient = ctx.patients.create_patient(full_name="Ada Lovelace")
    schema = ctx.schemas.create_schema(
        name="Intake",
        tags=["intake", "intake"],
        elements=[
            FormElement(id="q1", type="text", label="Reason for visit", required=True),
            FormElement(id="q2", type="checkbox", label="First visit?"),
        ],
    )
    return patient, schema


def test_submit_form_records_exactly_one_submission(ctx):
    patient, schema = _intake(ctx)
    assert schema.tags == ["intake"]
    assignment = ctx.assignments.create_assignment(schema.id, patient.id)
    assert assignment.status == AssignmentStatus.ASSIGNED

    with pytest.raises(ValidationError):
        ctx.assignments.submit_form(assignment.id, [])
    assert ctx.assignments.get_assignment(assignment.id).status == AssignmentStatus.ASSIGNED

    submission = ctx.assignments.submit_form(assignment.id, [AnswerInput(field_id="q1", answer="Cough")])
    assert submission.answer_for("q1") == "Cough"
    assert [item.field_id for item in submission.form_data] == ["q1", "q2"]
    assert ctx.assignments.get_assignment(assignment.id).status == AssignmentStatus.SUBMITTED

    # A repeat submit is refused before its answers are even looked at.
    with pytest.raises(ConflictError):
        ctx.assignments.submit_form(assignment.id, [])
    with pytest.raises(ConflictError):
        ctx.assignments.submit_form(assignment.id, [AnswerInput(field_id="q1", answer="Other")])

    assert ctx.repositories.assignments.count_submissions(assignment.id) == 1
    assert ctx.assignments.get_submission(assignment.id).id == submission.id


def test_start_assignment_moves_to_in_progress(ctx):
    patient, schema = _intake(ctx)
    assignment = ctx.assignments.create_assignment(schema.id, patient.id)

    started = ctx.assignments.start_assignment(assignment.id)
    assert started.status == AssignmentStatus.IN_PROGRESS
    assert ctx.assignments.start_assignment(assignment.id).status == AssignmentStatus.IN_PROGRESS

    ctx.assignments.submit_form(assignment.id, [AnswerInput(field_id="q1", answer="Cough")])
    with pytest.raises(ConflictError):
        ctx.assignments.start_assignment(assignment.id)


def test_editing_an_assigned_schema_forks_it(ctx):
    patient, schema = _intake(ctx)
    assignment = ctx.assignments.create_assignment(schema.id, patient.id)

    edited = builder.add_element(schema, FormElement(id="q3", type="text", label="Allergies", required=True))
    saved = ctx.schemas.save_schema(edited)

    assert saved.id != schema.id
    assert saved.parent_schema_id == schema.id
    assert saved.version == schema.version + 1
    assert ctx.schemas.get_schema(schema.id).is_active is False

    # The existing assignment keeps the snapshot it was created with.
    snapshot = ctx.assignments.get_assignment(assignment.id)
    assert [e.id for e in snapshot.elements] == ["q1", "q2"]
    submission = ctx.assignments.submit_form(assignment.id, [AnswerInput(field_id="q1", answer="Cough")])
    assert len(submission.form_data) == 2

    # Retired templates cannot be assigned any more.
    with pytest.raises(NotFoundError):
        ctx.assignments.create_assignment(schema.id, patient.id)


def test_editing_an_unassigned_schema_updates_in_place(ctx):
    _, schema = _intake(ctx)

    saved = ctx.schemas.save_schema(builder.remove_element(schema, "q2"))

    assert saved.id == schema.id
    assert saved.version == 2
    assert [e.id for e in ctx.schemas.get_schema(schema.id).elements] == ["q1"]


def test_invalid_schema_cannot_be_saved(ctx):
    with pytest.raises(ValidationError):
        ctx.schemas.create_schema(name="Broken", elements=[FormElement(id="d", type="dropdown", label="Pick")])
    with pytest.raises(ValidationError):
        ctx.schemas.create_schema(name="  ")


def test_portal_documents_report_pending_overdue_and_completed(ctx):
    patient, schema = _intake(ctx)
    now = datetime.now(timezone.utc)
    pending = ctx.assignments.create_assignment(schema.id, patient.id, now + timedelta(days=3))
    overdue = ctx.assignments.create_assignment(schema.id, patient.id, now - timedelta(days=1))
    done = ctx.assignments.create_assignment(schema.id, patient.id, now - timedelta(days=1))
    ctx.assignments.create_assignment(schema.id, patient.id, is_visible_on_portal=False)
    submission = ctx.assignments.submit_form(done.id, [AnswerInput(field_id="q1", answer="Cough")])

    documents = {doc.assignment_id: doc for doc in ctx.assignments.portal_documents(patient.id, now=now)}

    assert len(documents) == 3
    assert documents[pending.id].status == PortalStatus.PENDING
    assert documents[overdue.id].status == PortalStatus.OVERDUE
    assert documents[done.id].status == PortalStatus.COMPLETED
    assert documents[done.id].submission_id == submission.id


def test_assign_many_checks_every_reference_first(ctx):
    patient, schema = _intake(ctx)
    other = ctx.patients.create_patient(full_name="Grace Hopper")

    created = ctx.assignments.assign_many([schema.id], [patient.id, other.id])
    assert {a.patient_id for a in created} == {patient.id, other.id}

    with pytest.raises(NotFoundError):
        ctx.assignments.assign_many([schema.id], [patient.id, "missing"])
    assert len(ctx.assignments.list_assignments(patient_id=patient.id)) == 1

    with pytest.raises(ValidationError):
        ctx.assignments.assign_many([], [patient.id])


def test_default_due_date_uses_configured_days(make_ctx):
    ctx = make_ctx(default_assignment_due_days=3)
    patient, schema = _intake(ctx)

    assignment = ctx.assignments.create_assignment(schema.id, patient.id)

    assert assignment.due_at - assignment.assigned_at == timedelta(days=3)


async def test_assignment_flow_over_http(client):
    patient = (await client.post("/api/v1/patients/", json={"full_name": "Ada Lovelace"})).json()
    create_schema = await client.post(
        "/api/v1/forms/",
        json={
            "name": "Intake",
            "tags": ["intake"],
            "elements": [{"id": "q1", "type": "text", "label": "Reason for visit", "required": True}],
        },
    )
    assert create_schema.status_code == status.HTTP_201_CREATED
    schema = create_schema.json()

    create_assignment = await client.post(
        "/api/v1/assignments/",
        json={"schema_id": schema["id"], "patient_id": patient["id"]},
    )
    assert create_assignment.status_code == status.HTTP_201_CREATED
    assignment = create_assignment.json()

    empty = await client.post(f"/api/v1/assignments/{assignment['id']}/submit", json={"answers": []})
    assert empty.status_code == 422
    assert empty.json()["error"] == "validation_error"
    assert any("q1" in message for message in empty.json()["errors"])

    submit = await client.post(
        f"/api/v1/assignments/{assignment['id']}/submit",
        json={"answers": [{"field_id": "q1", "answer": "Cough"}]},
    )
    assert submit.status_code == status.HTTP_201_CREATED
    assert submit.json()["form_data"][0] == {"field_id": "q1", "question": "Reason for visit", "answer": "Cough"}

    again = await client.post(
        f"/api/v1/assignments/{assignment['id']}/submit",
        json={"answers": [{"field_id": "q1", "answer": "Cough"}]},
    )
    assert again.status_code == status.HTTP_409_CONFLICT

    listed = await client.get("/api/v1/assignments/", params={"status": "submitted"})
    assert [a["id"] for a in listed.json()] == [assignment["id"]]

    portal = await client.get(f"/api/v1/assignments/portal/{patient['id']}")
    assert portal.json()[0]["status"] == "completed"


async def test_form_element_endpoints(client):
    schema = (await client.post("/api/v1/forms/", json={"name": "Consent"})).json()

    added = await client.post(
        f"/api/v1/forms/{schema['id']}/elements",
        json={"element": {"id": "agree", "type": "checkbox", "label": "I agree"}},
    )
    assert added.status_code == status.HTTP_201_CREATED
    await client.post(
        f"/api/v1/forms/{schema['id']}/elements",
        json={"element": {"id": "sig", "type": "signature", "label": "Signature"}, "at_index": 0},
    )

    reordered = await client.post(f"/api/v1/forms/{schema['id']}/elements/reorder", json={"from_index": 0, "to_index": 1})
    assert [e["id"] for e in reordered.json()["elements"]] == ["agree", "sig"]

    out_of_range = await client.post(f"/api/v1/forms/{schema['id']}/elements/reorder", json={"from_index": 0, "to_index": 9})
    assert out_of_range.status_code == 422
    assert out_of_range.json()["error"] == "range_error"

    patched = await client.patch(f"/api/v1/forms/{schema['id']}/elements/agree", json={"required": True})
    assert patched.json()["elements"][0]["required"] is True

    removed = await client.delete(f"/api/v1/forms/{schema['id']}/elements/sig")
    assert [e["id"] for e in removed.json()["elements"]] == ["agree"]

    missing = await client.delete(f"/api/v1/forms/{schema['id']}/elements/sig")
    assert missing.status_code == status.HTTP_404_NOT_FOUND

    issues = await client.post("/api/v1/forms/validate", json={"name": "Draft", "elements": []})
    assert issues.json() == [{"severity": "warning", "message": "Schema has no elements", "element_id": None}]

    deactivated = await client.delete(f"/api/v1/forms/{schema['id']}")
    assert deactivated.json()["is_active"] is False
    assert (await client.get("/api/v1/forms/")).json() == []


def test_retired_schema_cannot_be_forked_twice(ctx):
    patient, schema = _intake(ctx)
    ctx.assignments.create_assignment(schema.id, patient.id)

    forked = ctx.schemas.save_schema(schema.model_copy(update={"name": "Intake v2"}))
    with pytest.raises(ConflictError):
        ctx.schemas.save_schema(schema.model_copy(update={"name": "Intake v2 again"}))

    assert [s.id for s in ctx.schemas.list_schemas()] == [forked.id]


async def test_naive_due_date_is_treated_as_utc(client):
    patient = (await client.post("/api/v1/patients/", json={"full_name": "Ada Lovelace"})).json()
    schema = (await client.post("/api/v1/forms/", json={"name": "Intake"})).json()

    created = await client.post(
        "/api/v1/assignments/",
        json={"schema_id": schema["id"], "patient_id": patient["id"], "due_at": "2000-01-01T00:00:00"},
    )
    assert created.status_code == status.HTTP_201_CREATED

    portal = await client.get(f"/api/v1/assignments/portal/{patient['id']}")
    assert portal.status_code == status.HTTP_200_OK
    assert portal.json()[0]["status"] == "overdue"


def test_naive_due_dates_are_stored_as_utc(ctx):
    patient, schema = _intake(ctx)

    [assignment] = ctx.assignments.assign_many([schema.id], [patient.id], datetime(2030, 1, 1))

    assert assignment.due_at == datetime(2030, 1, 1, tzinfo=timezone.utc)
    assert ctx.assignments.portal_documents(patient.id)[0].status == PortalStatus.PENDING
