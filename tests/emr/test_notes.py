import logging
from uuid import uuid4

import pytest
from fastapi import status

from src.emr.domain.models.clinical_note import (
    CreateNoteParams,
    FreeTextContent,
    NotePatch,
    NoteStatus,
    SoapContent,
    TemplateContent,
)
from src.emr.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from src.emr.services.notes.service import NOTES_TABLE
from src.emr.services.realtime.feed import ChangeEvent, ChangeFeed, ChangeType
from src.emr.tenancy import OrganizationScope


def _draft(ctx, patient_id, **overrides):
    params = CreateNoteParams(
        organization_id="default",
        patient_id=patient_id,
        content=overrides.pop("content", SoapContent(subjective="Cough for 3 days")),
        **overrides,
    )
    return ctx.notes.create_note(params, provider_id="prov-1")


def test_create_note_for_another_organization_is_refused(ctx):
    with OrganizationScope("org-1"):
        patient = ctx.patients.create_patient(full_name="Ada Lovelace")
        params = CreateNoteParams(
            organization_id="org-2",
            patient_id=patient.id,
            content=FreeTextContent(text="hello"),
        )
        with pytest.raises(AuthorizationError):
            ctx.notes.create_note(params, provider_id="prov-1")
        assert ctx.notes.list_notes(patient.id) == []

    with OrganizationScope("org-2"):
        assert ctx.notes.list_notes(patient.id) == []


def test_create_note_requires_known_patient_and_provider(ctx):
    with pytest.raises(NotFoundError):
        _draft(ctx, "missing")

    patient = ctx.patients.create_patient(full_name="Ada Lovelace")
    params = CreateNoteParams(organization_id="default", patient_id=patient.id, content=FreeTextContent(text="x"))
    with pytest.raises(ValidationError):
        ctx.notes.create_note(params)


def test_note_lifecycle_update_sign_and_amend(ctx):
    patient = ctx.patients.create_patient(full_name="Ada Lovelace")
    note = _draft(ctx, patient.id, tags=["cough", "cough", "uri"])
    assert note.status == NoteStatus.DRAFT
    assert note.version == 1
    assert note.tags == ["cough", "uri"]

    updated = ctx.notes.update_note(note.id, NotePatch(tags=["uri", "uri"]))
    assert updated.version == 2
    assert updated.tags == ["uri"]
    assert updated.content == note.content

    finalized = ctx.notes.finalize_note(note.id)
    assert finalized.status == NoteStatus.FINAL
    with pytest.raises(ConflictError):
        ctx.notes.finalize_note(note.id)

    signed = ctx.notes.sign_note(note.id, "prov-1")
    assert signed.status == NoteStatus.SIGNED
    assert signed.signed_by == "prov-1"
    assert signed.signed_at is not None

    with pytest.raises(ConflictError):
        ctx.notes.update_note(note.id, NotePatch(content=FreeTextContent(text="rewrite")))
    with pytest.raises(ConflictError):
        ctx.notes.sign_note(note.id, "prov-2")
    with pytest.raises(ConflictError):
        ctx.notes.soft_delete_note(note.id)
    assert ctx.notes.get_note(note.id) == signed

    amendment = ctx.notes.amend_note(note.id, NotePatch(content=SoapContent(subjective="Cough for 4 days")), provider_id="prov-2")
    assert amendment.id != note.id
    assert amendment.parent_note_id == note.id
    assert amendment.status == NoteStatus.AMENDED
    assert amendment.version == signed.version + 1
    assert amendment.provider_id == "prov-2"
    assert amendment.tags == signed.tags

    assert [n.id for n in ctx.notes.note_history(amendment.id)] == [note.id, amendment.id]


def test_only_signed_notes_can_be_amended(ctx):
    patient = ctx.patients.create_patient(full_name="Ada Lovelace")
    note = _draft(ctx, patient.id)

    with pytest.raises(ConflictError):
        ctx.notes.amend_note(note.id, NotePatch(tags=["x"]))


def test_update_with_stale_expected_version_conflicts(ctx):
    patient = ctx.patients.create_patient(full_name="Ada Lovelace")
    note = _draft(ctx, patient.id)

    ctx.notes.update_note(note.id, NotePatch(tags=["a"]), expected_version=1)
    with pytest.raises(ConflictError) as exc_info:
        ctx.notes.update_note(note.id, NotePatch(tags=["b"]), expected_version=1)

    assert exc_info.value.details == {"expected_version": 1, "actual_version": 2}
    assert ctx.notes.get_note(note.id).tags == ["a"]


def test_soft_deleted_notes_disappear(ctx):
    patient = ctx.patients.create_patient(full_name="Ada Lovelace")
    kept = _draft(ctx, patient.id, tags=["keep"])
    dropped = _draft(ctx, patient.id)

    ctx.notes.soft_delete_note(dropped.id)

    assert [n.id for n in ctx.notes.list_notes(patient.id)] == [kept.id]
    assert [n.id for n in ctx.notes.list_notes(patient.id, tag="keep")] == [kept.id]
    with pytest.raises(NotFoundError):
        ctx.notes.get_note(dropped.id)


def test_template_notes_must_use_template_sections(ctx):
    patient = ctx.patients.create_patient(full_name="Ada Lovelace")
    template = ctx.templates.get_default_for(specialty="cardiology", visit_type="follow_up")

    note = _draft(ctx, patient.id, content=TemplateContent(template_id=template.id, sections={"plan": "Start statin"}))
    assert note.content.sections == {"plan": "Start statin"}

    with pytest.raises(ValidationError):
        _draft(ctx, patient.id, content=TemplateContent(template_id=template.id, sections={"diet": "Low salt"}))
    with pytest.raises(NotFoundError):
        _draft(ctx, patient.id, content=TemplateContent(template_id=uuid4()))


def test_note_writes_are_published_to_matching_subscribers(ctx):
    patient = ctx.patients.create_patient(full_name="Ada Lovelace")
    other = ctx.patients.create_patient(full_name="Grace Hopper")
    received = []

    with ctx.feed.subscribe(NOTES_TABLE, {"patient_id": patient.id, "organization_id": "default"}, received.append):
        note = _draft(ctx, patient.id)
        _draft(ctx, other.id)
        ctx.notes.update_note(note.id, NotePatch(tags=["x"]))
        ctx.notes.soft_delete_note(note.id)

    _draft(ctx, patient.id)

    assert [event.event_type for event in received] == [ChangeType.INSERT, ChangeType.UPDATE, ChangeType.DELETE]
    assert received[1].old_record["version"] == 1
    assert received[1].record["version"] == 2
    assert received[2].record["is_deleted"] is True
    assert ctx.feed.subscription_count == 0


def test_unsubscribe_releases_exactly_once():
    feed = ChangeFeed()
    subscription = feed.subscribe("t", {}, lambda event: None)

    assert subscription.unsubscribe() is True
    assert subscription.unsubscribe() is False
    assert feed.subscription_count == 0
    assert feed.publish(ChangeEvent(table="t", event_type=ChangeType.INSERT, record={})) == 0


def test_failing_subscriber_is_logged_and_skipped(caplog):
    feed = ChangeFeed()
    received = []

    def broken(event):
        raise RuntimeError("boom")

    feed.subscribe("t", {}, broken)
    feed.subscribe("t", {}, received.append)

    with caplog.at_level(logging.ERROR):
        delivered = feed.publish(ChangeEvent(table="t", event_type=ChangeType.INSERT, record={"id": 1}))

    assert delivered == 1
    assert len(received) == 1
    assert "failed" in caplog.text
    assert feed.close() == 2


async def test_note_endpoints(client):
    patient = (await client.post("/api/v1/patients/", json={"full_name": "Ada Lovelace"})).json()

    create = await client.post(
        "/api/v1/notes/",
        json={
            "patient_id": patient["id"],
            "content": {"kind": "soap", "subjective": "Cough", "plan": "Fluids"},
            "tags": ["uri"],
        },
    )
    assert create.status_code == status.HTTP_201_CREATED
    note = create.json()
    assert note["status"] == "draft"
    assert note["organization_id"] == "default"

    foreign = await client.post(
        "/api/v1/notes/",
        json={"patient_id": patient["id"], "organization_id": "org-2", "content": {"kind": "free_text", "text": "x"}},
    )
    assert foreign.status_code == status.HTTP_403_FORBIDDEN
    assert foreign.json()["error"] == "forbidden"

    stale = await client.patch(f"/api/v1/notes/{note['id']}", json={"tags": ["a"], "expected_version": 7})
    assert stale.status_code == status.HTTP_409_CONFLICT
    assert stale.json()["details"] == {"expected_version": 7, "actual_version": 1}

    patched = await client.patch(f"/api/v1/notes/{note['id']}", json={"tags": ["a"], "expected_version": 1})
    assert patched.json()["version"] == 2

    signed = await client.post(f"/api/v1/notes/{note['id']}/sign")
    assert signed.status_code == status.HTTP_200_OK
    assert signed.json()["status"] == "signed"

    locked = await client.patch(f"/api/v1/notes/{note['id']}", json={"tags": ["b"]})
    assert locked.status_code == status.HTTP_409_CONFLICT

    amend = await client.post(
        f"/api/v1/notes/{note['id']}/amendments",
        json={"content": {"kind": "free_text", "text": "Addendum"}},
    )
    assert amend.status_code == status.HTTP_201_CREATED
    assert amend.json()["parent_note_id"] == note["id"]

    history = await client.get(f"/api/v1/notes/{amend.json()['id']}/history")
    assert [n["id"] for n in history.json()] == [note["id"], amend.json()["id"]]

    listed = await client.get("/api/v1/notes/", params={"patient_id": patient["id"]})
    assert {n["id"] for n in listed.json()} == {note["id"], amend.json()["id"]}

    deleted = await client.delete(f"/api/v1/notes/{amend.json()['id']}")
    assert deleted.status_code == status.HTTP_204_NO_CONTENT
    missing = await client.get(f"/api/v1/notes/{amend.json()['id']}")
    assert missing.status_code == status.HTTP_404_NOT_FOUND
