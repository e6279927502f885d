import logging

from fastapi import status
from httpx import ASGITransport, AsyncClient

from src.emr.domain.models.user import UserRole
from src.emr.main import create_app
from src.emr.services.ai.completion import CompletionResponse


async def test_root_health_check(client):
    response = await client.get("/health")
    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"status": "ok"}


async def test_v1_health_check(client):
    response = await client.get("/api/v1/health")
    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"status": "ok", "version": "v1"}


async def test_storage_health_reports_memory_backend(client):
    response = await client.get("/api/v1/system/storage/health")
    assert response.json() == {"status": "ok", "backend": "memory"}


async def test_multitenancy_isolation_for_patients_forms_and_notes(client):
    """Data created under one organization is invisible to another."""

    org_a = {"X-Organization-ID": "org-a"}
    org_b = {"X-Organization-ID": "org-b"}

    patient_a = (await client.post("/api/v1/patients/", json={"full_name": "Patient A"}, headers=org_a)).json()
    patient_b = (await client.post("/api/v1/patients/", json={"full_name": "Patient B"}, headers=org_b)).json()
    schema_a = (await client.post("/api/v1/forms/", json={"name": "Form A"}, headers=org_a)).json()
    note_a = (
        await client.post(
            "/api/v1/notes/",
            json={"patient_id": patient_a["id"], "content": {"kind": "free_text", "text": "A"}},
            headers=org_a,
        )
    ).json()

    list_a = await client.get("/api/v1/patients/", headers=org_a)
    assert [p["id"] for p in list_a.json()] == [patient_a["id"]]
    list_b = await client.get("/api/v1/patients/", headers=org_b)
    assert [p["id"] for p in list_b.json()] == [patient_b["id"]]

    assert (await client.get(f"/api/v1/patients/{patient_a['id']}", headers=org_b)).status_code == 404
    assert (await client.get(f"/api/v1/forms/{schema_a['id']}", headers=org_b)).status_code == 404
    assert (await client.get(f"/api/v1/notes/{note_a['id']}", headers=org_b)).status_code == 404
    assert (await client.get("/api/v1/forms/", headers=org_b)).json() == []

    # Org B cannot assign org A's form or write notes for org A's patient.
    assign = await client.post(
        "/api/v1/assignments/",
        json={"schema_id": schema_a["id"], "patient_id": patient_b["id"]},
        headers=org_b,
    )
    assert assign.status_code == 404
    note = await client.post(
        "/api/v1/notes/",
        json={"patient_id": patient_a["id"], "content": {"kind": "free_text", "text": "B"}},
        headers=org_b,
    )
    assert note.status_code == 404


async def test_deleted_patient_is_hidden(client):
    patient = (await client.post("/api/v1/patients/", json={"full_name": "Ada Lovelace"})).json()

    deleted = await client.delete(f"/api/v1/patients/{patient['id']}")
    assert deleted.status_code == status.HTTP_204_NO_CONTENT

    assert (await client.get(f"/api/v1/patients/{patient['id']}")).status_code == 404
    assert (await client.get("/api/v1/patients/")).json() == []

    invalid = await client.post("/api/v1/patients/", json={"full_name": "  "})
    assert invalid.status_code == 422


async def test_api_key_and_session_authentication(make_ctx):
    ctx = make_ctx(
        enable_api_auth=True,
        api_keys="key-1, key-2",
        demo_users="doc@example.com:s3cret:org-1,admin@example.com:pw:org-1:admin,pat@example.com:pw:org-1:patient",
    )
    async with AsyncClient(transport=ASGITransport(app=create_app(ctx)), base_url="http://test") as ac:
        assert (await ac.get("/api/v1/patients/")).status_code == status.HTTP_401_UNAUTHORIZED
        assert (await ac.get("/api/v1/patients/", headers={"X-API-Key": "nope"})).status_code == 401
        assert (await ac.get("/api/v1/patients/", headers={"X-API-Key": "key-2"})).status_code == 200

        # The health endpoints stay public.
        assert (await ac.get("/api/v1/health")).status_code == 200

        bad = await ac.post("/api/v1/auth/sign-in", json={"email": "doc@example.com", "password": "wrong"})
        assert bad.status_code == status.HTTP_401_UNAUTHORIZED

        signed_in = await ac.post("/api/v1/auth/sign-in", json={"email": "doc@example.com", "password": "s3cret"})
        assert signed_in.status_code == status.HTTP_200_OK
        body = signed_in.json()
        assert body["token_type"] == "bearer"
        assert body["user"]["organization_id"] == "org-1"
        bearer = {"Authorization": f"Bearer {body['access_token']}"}

        session = await ac.get("/api/v1/auth/session", headers=bearer)
        assert session.json()["email"] == "doc@example.com"

        created = await ac.post("/api/v1/patients/", json={"full_name": "Ada Lovelace"}, headers=bearer)
        assert created.json()["organization_id"] == "org-1"

        conflicting = await ac.get("/api/v1/patients/", headers={**bearer, "X-Organization-ID": "org-2"})
        assert conflicting.status_code == status.HTTP_403_FORBIDDEN

        patient_login = await ac.post("/api/v1/auth/sign-in", json={"email": "pat@example.com", "password": "pw"})
        patient_bearer = {"Authorization": f"Bearer {patient_login.json()['access_token']}"}
        assert (await ac.get("/api/v1/patients/", headers=patient_bearer)).status_code == 403

        signed_out = await ac.post("/api/v1/auth/sign-out", headers=bearer)
        assert signed_out.status_code == status.HTTP_204_NO_CONTENT
        assert (await ac.get("/api/v1/auth/session", headers=bearer)).status_code == 401
        assert (await ac.post("/api/v1/auth/sign-out", headers=bearer)).status_code == 401


async def test_mutations_are_audited_without_phi(client, caplog):
    with caplog.at_level(logging.INFO, logger="audit"):
        await client.post("/api/v1/patients/", json={"full_name": "Ada Lovelace"}, headers={"X-Organization-ID": "org-a"})

    audit_lines = [record.getMessage() for record in caplog.records if record.name == "audit"]
    assert len(audit_lines) == 1
    assert '"action": "create"' in audit_lines[0]
    assert '"organization_id": "org-a"' in audit_lines[0]
    assert "Ada Lovelace" not in audit_lines[0]


async def test_note_templates(client):
    listed = await client.get("/api/v1/templates/", params={"specialty": "pediatrics"})
    assert [t["name"] for t in listed.json()] == ["Pediatrics well-child visit"]

    created = await client.post(
        "/api/v1/templates/",
        json={
            "name": "Dermatology",
            "specialty": "dermatology",
            "sections": [{"id": "lesions", "title": "Lesions"}, {"id": "plan", "title": "Plan"}],
        },
    )
    assert created.status_code == status.HTTP_201_CREATED
    template = created.json()
    assert (await client.get(f"/api/v1/templates/{template['id']}")).json()["sections"][0]["id"] == "lesions"

    duplicate = await client.post(
        "/api/v1/templates/",
        json={"name": "Bad", "specialty": "x", "sections": [{"id": "a", "title": "A"}, {"id": "a", "title": "B"}]},
    )
    assert duplicate.status_code == 422

    # Templates are organization scoped; other organizations start empty.
    other = await client.get("/api/v1/templates/", headers={"X-Organization-ID": "org-b"})
    assert other.json() == []


class RecordingBackend:
    def __init__(self, text="Suggested plan"):
        self.text = text
        self.requests = []

    def complete(self, request):
        self.requests.append(request)
        return CompletionResponse(text=self.text)


async def test_ai_generate_passes_patient_context(make_ctx):
    backend = RecordingBackend()
    ctx = make_ctx(completion_backend=backend)
    async with AsyncClient(transport=ASGITransport(app=create_app(ctx)), base_url="http://test") as ac:
        response = await ac.post(
            "/api/v1/ai/generate",
            json={
                "prompt": "Draft a plan for hypertension",
                "patient": {"age": 64, "gender": "female", "medications": ["lisinopril"]},
                "max_tokens": 200,
            },
        )
        empty = await ac.post("/api/v1/ai/generate", json={"prompt": "   "})
        too_long = await ac.post("/api/v1/ai/generate", json={"prompt": "x", "max_tokens": 5000})

    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"suggestion": "Suggested plan"}
    request = backend.requests[0]
    assert request.max_tokens == 200
    assert "- Age: 64" in request.system_prompt
    assert "- Current Medications: lisinopril" in request.system_prompt
    assert empty.status_code == 422
    assert too_long.status_code == 422
    assert len(backend.requests) == 1


async def test_transcription_creates_voice_note(client):
    patient = (await client.post("/api/v1/patients/", json={"full_name": "Ada Lovelace"})).json()

    response = await client.post(
        "/api/v1/transcriptions/",
        files={"audio": ("visit.webm", b"abc", "audio/webm")},
        data={"patient_id": patient["id"]},
    )

    assert response.status_code == status.HTTP_201_CREATED
    payload = response.json()
    result = payload["result"]
    assert result["transcript"] == "Demo transcript of visit.webm (3 bytes) in en"
    assert result["summary"]["subjective"].startswith("Demo summary:")
    assert result["summary"]["plan"] == "No information provided."
    note = payload["note"]
    assert note["type"] == "voice"
    assert note["status"] == "draft"
    assert note["content"]["kind"] == "soap"


async def test_transcription_without_patient_and_oversized_audio(make_ctx):
    ctx = make_ctx(max_upload_bytes=4)
    async with AsyncClient(transport=ASGITransport(app=create_app(ctx)), base_url="http://test") as ac:
        ok = await ac.post("/api/v1/transcriptions/", files={"audio": ("a.wav", b"1234", "audio/wav")})
        too_big = await ac.post("/api/v1/transcriptions/", files={"audio": ("a.wav", b"12345", "audio/wav")})
        empty = await ac.post("/api/v1/transcriptions/", files={"audio": ("a.wav", b"", "audio/wav")})

    assert ok.status_code == status.HTTP_201_CREATED
    assert ok.json()["note"] is None
    assert too_big.status_code == 422
    assert empty.status_code == 422


async def test_patient_users_only_see_their_own_assignments(make_ctx):
    ctx = make_ctx(enable_api_auth=True, api_keys="key-1")
    staff = {"X-API-Key": "key-1", "X-Organization-ID": "org-1"}
    async with AsyncClient(transport=ASGITransport(app=create_app(ctx)), base_url="http://test") as ac:
        own = (await ac.post("/api/v1/patients/", json={"full_name": "Ada Lovelace"}, headers=staff)).json()
        other = (await ac.post("/api/v1/patients/", json={"full_name": "Grace Hopper"}, headers=staff)).json()
        schema = (
            await ac.post(
                "/api/v1/forms/",
                json={"name": "Intake", "elements": [{"id": "q1", "type": "text", "label": "Reason"}]},
                headers=staff,
            )
        ).json()
        assignments = (
            await ac.post(
                "/api/v1/assignments/bulk",
                json={"schema_ids": [schema["id"]], "patient_ids": [own["id"], other["id"]]},
                headers=staff,
            )
        ).json()
        mine, theirs = (next(a for a in assignments if a["patient_id"] == pid) for pid in (own["id"], other["id"]))
        await ac.post(
            f"/api/v1/assignments/{theirs['id']}/submit",
            json={"answers": [{"field_id": "q1", "answer": "Private"}]},
            headers=staff,
        )

        ctx.identity.register(
            email="ada@example.com", password="pw", organization_id="org-1", role=UserRole.PATIENT, patient_id=own["id"]
        )
        login = await ac.post("/api/v1/auth/sign-in", json={"email": "ada@example.com", "password": "pw"})
        patient = {"Authorization": f"Bearer {login.json()['access_token']}"}

        assert (await ac.get(f"/api/v1/assignments/{theirs['id']}/submission", headers=patient)).status_code == 403
        assert (await ac.get(f"/api/v1/assignments/{theirs['id']}", headers=patient)).status_code == 403
        assert (await ac.get(f"/api/v1/assignments/portal/{other['id']}", headers=patient)).status_code == 403
        foreign_submit = await ac.post(
            f"/api/v1/assignments/{theirs['id']}/submit", json={"answers": []}, headers=patient
        )
        assert foreign_submit.status_code == 403

        portal = await ac.get(f"/api/v1/assignments/portal/{own['id']}", headers=patient)
        assert [d["assignment_id"] for d in portal.json()] == [mine["id"]]
        submitted = await ac.post(
            f"/api/v1/assignments/{mine['id']}/submit",
            json={"answers": [{"field_id": "q1", "answer": "Cough"}]},
            headers=patient,
        )
        assert submitted.status_code == status.HTTP_201_CREATED
        assert (await ac.get(f"/api/v1/assignments/{mine['id']}/submission", headers=patient)).status_code == 200
