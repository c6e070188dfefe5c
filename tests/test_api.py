"""HTTP surface: upload, stage invocation, edits, logs and shares."""

from __future__ import annotations

from uuid import UUID

import pytest
from fastapi.testclient import TestClient

from optihub.controllers.dependencies import get_services
from optihub.database import get_session
from optihub.main import app
from optihub.models.user import UserRole
from optihub.pipeline import Stage
from optihub.pipeline.errors import InferenceServiceError
from optihub.utils import create_access_token


@pytest.fixture
def client(env):
    async def _session():
        async with env.session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = _session
    app.dependency_overrides[get_services] = lambda: env.services
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def _headers(env, role=UserRole.STAFF):
    user = env.create_user(role)
    return {"Authorization": f"Bearer {create_access_token(user)}"}


def _upload(client, headers, **form):
    return client.post(
        "/recordings",
        headers=headers,
        data={"account_id": "acc-1", **form},
        files={"audio_file": ("call.webm", b"webm-bytes", "audio/webm")},
    )


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_login_issues_token(env, client):
    env.create_user(UserRole.STAFF, email="ana@example.com", password="password123")

    response = client.post(
        "/auth/login", json={"email": "ana@example.com", "password": "password123"}
    )

    assert response.status_code == 200
    body = response.json()
    assert body["tokenType"] == "bearer"
    assert body["role"] == "staff"

    listing = client.get(
        "/recordings", headers={"Authorization": f"Bearer {body['accessToken']}"}
    )
    assert listing.status_code == 200


def test_login_rejects_bad_password(env, client):
    env.create_user(UserRole.STAFF, email="ana@example.com", password="password123")

    response = client.post(
        "/auth/login", json={"email": "ana@example.com", "password": "wrong-password"}
    )

    assert response.status_code == 401


def test_requests_without_token_are_rejected(client):
    assert client.get("/recordings").status_code == 401


def test_upload_then_run_pipeline(env, client):
    headers = _headers(env)

    created = _upload(client, headers, duration_seconds="95")
    assert created.status_code == 201
    recording = created.json()
    assert recording["transcription_status"] == "pending"
    assert recording["duration_seconds"] == 95
    recording_id = recording["id"]

    for stage in ("transcribe", "process", "analyze"):
        started = client.post(f"/recordings/{recording_id}/stages/{stage}", headers=headers)
        assert started.status_code == 202

    status = client.get(f"/recordings/{recording_id}/status", headers=headers).json()
    assert status["analysis_status"] == "completed"
    assert status["stages"]["process"]["can_force_retry"] is False

    detail = client.get(f"/recordings/{recording_id}", headers=headers).json()
    assert detail["transcript"]["edit_count"] == 0
    assert detail["context"]["confidence_level"] == "high"
    assert detail["extract"]["extract_text"]


def test_auto_transcribe_on_upload(env, client):
    headers = _headers(env)

    created = _upload(client, headers, auto_transcribe="true")

    assert created.status_code == 201
    assert created.json()["transcription_status"] == "processing"
    status = client.get(f"/recordings/{created.json()['id']}/status", headers=headers)
    assert status.json()["transcription_status"] == "completed"


def test_retried_upload_with_same_slot_reuses_audio(env, client):
    headers = _headers(env)
    stored = env.run(
        env.storage.upload(
            account_id="acc-1", data=b"webm-bytes", content_type="audio/webm", extension="webm"
        )
    )
    env.services.upload_cache.put("slot-42", stored)

    created = _upload(client, headers, slot_id="slot-42")

    assert created.status_code == 201
    assert created.json()["audio_path"] == stored.object_key
    assert env.storage.uploads == 1
    assert len(env.services.upload_cache) == 0


def test_stage_out_of_order_is_conflict(env, client):
    headers = _headers(env)
    recording_id = _upload(client, headers).json()["id"]

    response = client.post(f"/recordings/{recording_id}/stages/process", headers=headers)

    assert response.status_code == 409
    assert response.json()["code"] == "stage_not_ready"
    status = client.get(f"/recordings/{recording_id}/status", headers=headers).json()
    assert status["processing_status"] == "pending"


def test_transient_failure_is_reported_on_status(env, client):
    headers = _headers(env)
    recording_id = _upload(client, headers).json()["id"]
    env.inference.queue(
        "transcribe", *[InferenceServiceError("Bad gateway", status_code=502)] * 3
    )

    client.post(f"/recordings/{recording_id}/stages/transcribe", headers=headers)

    stage = client.get(f"/recordings/{recording_id}/status", headers=headers).json()[
        "stages"
    ]["transcribe"]
    assert stage["status"] == "failed"
    assert stage["error"]["error_class"] == "transient"
    assert stage["user_message"].startswith("The AI service is temporarily unavailable")
    assert stage["can_force_retry"] is True

    retried = client.post(
        f"/recordings/{recording_id}/stages/transcribe/force-retry", headers=headers
    )
    assert retried.status_code == 202
    status = client.get(f"/recordings/{recording_id}/status", headers=headers).json()
    assert status["transcription_status"] == "completed"


def test_permanent_transcription_failure_offers_audio_back(env, client):
    headers = _headers(env)
    recording_id = _upload(client, headers).json()["id"]
    env.inference.queue(
        "transcribe", InferenceServiceError("ValidationException", status_code=400)
    )

    client.post(f"/recordings/{recording_id}/stages/transcribe", headers=headers)

    response = client.get(f"/recordings/{recording_id}/status", headers=headers)
    assert response.status_code == 422
    body = response.json()
    assert body["code"] == "permanent_input_error"
    assert body["recording_deleted"] is True
    assert body["recovery_url"].startswith("https://signed.example/")

    download = client.get(f"/recordings/{recording_id}/audio-download", headers=headers)
    assert download.status_code == 200
    assert download.json()["url"].startswith("https://signed.example/")

    listing = client.get("/recordings", headers=headers).json()
    assert recording_id not in [item["id"] for item in listing]
    assert client.get(f"/recordings/{recording_id}", headers=headers).status_code == 404

    assert client.delete(f"/recordings/{recording_id}", headers=headers).status_code == 200
    assert env.storage.objects == {}
    gone = client.get(f"/recordings/{recording_id}/status", headers=headers)
    assert gone.status_code == 404


def test_invoking_a_processing_stage_takes_it_over(env, client):
    headers = _headers(env)
    recording_id = _upload(client, headers).json()["id"]
    env.run(env.services.executor.begin(UUID(recording_id), Stage.TRANSCRIBE))

    response = client.post(f"/recordings/{recording_id}/stages/transcribe", headers=headers)

    assert response.status_code == 202
    status = client.get(f"/recordings/{recording_id}/status", headers=headers).json()
    assert status["transcription_status"] == "completed"


def test_edit_and_undo_over_http(env, client):
    headers = _headers(env)
    recording_id = _upload(client, headers).json()["id"]
    client.post(f"/recordings/{recording_id}/stages/transcribe", headers=headers)
    url = f"/recordings/{recording_id}/fields/full_text"

    saved = client.put(url, headers=headers, json={"value": "corrected transcript"})
    assert saved.status_code == 200
    assert saved.json()["edit_count"] == 1
    assert saved.json()["can_undo"] is True

    undone = client.post(f"{url}/undo", headers=headers).json()
    assert undone["value"] == "raw transcript of the optimisation call"
    assert undone["can_undo"] is False

    premature = client.put(
        f"/recordings/{recording_id}/fields/processed_text",
        headers=headers,
        json={"value": "too early"},
    )
    assert premature.status_code == 409


def test_improve_returns_candidate(env, client):
    headers = _headers(env)
    recording_id = _upload(client, headers).json()["id"]
    client.post(f"/recordings/{recording_id}/stages/transcribe", headers=headers)
    env.inference.queue("improve_transcript", "cleaner transcript")

    response = client.post(
        f"/recordings/{recording_id}/fields/full_text/improve",
        headers=headers,
        json={"instruction": "remove filler words"},
    )

    assert response.status_code == 200
    assert response.json()["candidate"] == "cleaner transcript"


def test_debug_log_is_staff_only(env, client):
    staff = _headers(env, UserRole.STAFF)
    viewer = _headers(env, UserRole.CLIENT)
    recording_id = _upload(client, staff).json()["id"]
    client.post(f"/recordings/{recording_id}/stages/transcribe", headers=staff)

    denied = client.get(f"/recordings/{recording_id}/logs", headers=viewer)
    assert denied.status_code == 403

    logs = client.get(
        f"/recordings/{recording_id}/logs", headers=staff, params={"step": "transcribe"}
    )
    assert logs.status_code == 200
    assert [entry["step"] for entry in logs.json()] == ["transcribe"]


def test_share_flow(env, client):
    headers = _headers(env)
    recording_id = _upload(client, headers).json()["id"]
    for stage in ("transcribe", "process", "analyze"):
        client.post(f"/recordings/{recording_id}/stages/{stage}", headers=headers)

    created = client.post(
        f"/recordings/{recording_id}/shares",
        headers=headers,
        json={"expires_in_days": 30, "password": "open-sesame"},
    )
    assert created.status_code == 201
    slug = created.json()["slug"]

    assert client.get(f"/shared/{slug}").status_code == 401
    shared = client.get(f"/shared/{slug}", headers={"X-Share-Password": "open-sesame"})
    assert shared.status_code == 200
    assert shared.json()["view_count"] == 1

    assert client.delete(f"/shares/{slug}", headers=headers).status_code == 204
    assert client.get(f"/shared/{slug}").status_code == 404


def test_delete_recording(env, client):
    headers = _headers(env)
    recording_id = _upload(client, headers).json()["id"]

    response = client.delete(f"/recordings/{recording_id}", headers=headers)

    assert response.status_code == 200
    assert response.json()["data"]["audio_removed"] is True
    assert env.storage.objects == {}
    assert client.get(f"/recordings/{recording_id}", headers=headers).status_code == 404


def test_prompt_editing_is_staff_only(env, client):
    staff = _headers(env, UserRole.STAFF)
    viewer = _headers(env, UserRole.CLIENT)
    body = {
        "platform": "meta",
        "objective": "leads",
        "prompt_type": "process",
        "prompt_text": "Focus on lead quality for {account_name}.",
    }

    assert client.post("/prompts", headers=viewer, json=body).status_code == 403
    created = client.post("/prompts", headers=staff, json=body)
    assert created.status_code == 201
    prompt_id = created.json()["id"]

    denied = client.put(
        f"/prompts/{prompt_id}", headers=viewer, json={"prompt_text": "hijacked"}
    )
    assert denied.status_code == 403
    assert client.post(f"/prompts/{prompt_id}/undo", headers=viewer).status_code == 403

    updated = client.put(
        f"/prompts/{prompt_id}", headers=staff, json={"prompt_text": "Focus on cost per lead."}
    ).json()
    assert updated["changed"] is True
    assert updated["can_undo"] is True
    assert updated["prompt"]["edit_count"] == 1

    undone = client.post(f"/prompts/{prompt_id}/undo", headers=staff).json()
    assert undone["prompt"]["prompt_text"] == body["prompt_text"]
    assert undone["can_undo"] is False

    listing = client.get("/prompts", headers=viewer, params={"platform": "meta"})
    assert listing.status_code == 200
    assert [item["objective"] for item in listing.json()] == ["leads"]
    assert client.post("/prompts", headers=staff, json=body).status_code == 409


def test_upload_records_campaign_metadata(env, client):
    headers = _headers(env)

    created = client.post(
        "/recordings",
        headers=headers,
        data={
            "account_id": "acc-1",
            "platform": "google",
            "objectives": ["sales", "leads"],
            "override_context": "Holiday push",
        },
        files={"audio_file": ("call.webm", b"webm-bytes", "audio/webm")},
    )

    assert created.status_code == 201
    recording = created.json()
    assert recording["platform"] == "google"
    assert recording["selected_objectives"] == ["sales", "leads"]
    assert recording["override_context"] == "Holiday push"
