from __future__ import annotations

import os

os.environ.setdefault("SUPABASE_URL", "http://supabase.test")
os.environ.setdefault("SUPABASE_ANON_KEY", "anon-key")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from neulbom.main import app  # noqa: E402
from neulbom.profiles import ProfileSynchronizer  # noqa: E402
from neulbom.routes.auth import get_profile_synchronizer, get_public_auth  # noqa: E402
from neulbom.schemas import Role  # noqa: E402
from neulbom.supabase import get_auth_context  # noqa: E402

from .fakes import AuthServer, FakeSupabase, InMemorySupabase, failing, make_auth  # noqa: E402


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _act_as(auth) -> None:
    app.dependency_overrides[get_auth_context] = lambda: auth


def _seed_note(backend: InMemorySupabase, caregiver_id: str) -> None:
    backend.tables["wards"].append(
        {"id": "w-1", "name": "Minji", "caregiver_id": caregiver_id, "guardian_id": "g-1",
         "affiliation": "Sunshine Center", "birth_date": "2018-04-02", "gender": "female"}
    )
    backend.tables["notes"].append(
        {"id": "n-1", "ward_id": "w-1", "caregiver_id": caregiver_id, "details": "Walk",
         "ai_note": "Walk", "tags": ["walk", "stable"], "photos": [],
         "created_at": "2025-03-01T09:00:00+00:00"}
    )


def test_health(client) -> None:
    assert client.get("/health").json() == {"status": "ok"}


def test_missing_token_rejected(client) -> None:
    response = client.get("/api/v1/wards")
    assert response.status_code == 401


def test_invalid_note_maps_to_400(client) -> None:
    fake = FakeSupabase()
    _act_as(make_auth(fake, user_id="carer-1"))

    response = client.post("/api/v1/notes", json={"ward_id": "w-1", "text": "Walk", "tags": ["walk"]})

    assert response.status_code == 400
    assert response.json()["detail"] == "Select exactly one activity tag and one health tag."
    assert fake.calls == []


def test_guardian_cannot_register_ward(client) -> None:
    _act_as(make_auth(FakeSupabase(), user_id="g-1", role=Role.GUARDIAN))

    response = client.post(
        "/api/v1/wards",
        json={"name": "Minji", "birth_date": "2018-04-02", "gender": "female", "guardian_id": "g-1"},
    )

    assert response.status_code == 403


def test_missing_note_maps_to_404(client) -> None:
    _act_as(make_auth(InMemorySupabase()))
    assert client.get("/api/v1/notes/missing").status_code == 404


def test_backend_rejection_keeps_status(client) -> None:
    fake = FakeSupabase(errors={("select", "wards"): failing("permission denied for table wards", 403)})
    _act_as(make_auth(fake))

    response = client.get("/api/v1/wards")

    assert response.status_code == 403
    assert response.json()["detail"] == "permission denied for table wards"


def test_ward_listing_keeps_selection(client) -> None:
    backend = InMemorySupabase()
    _seed_note(backend, "carer-1")
    backend.tables["wards"].append({"id": "w-0", "name": "Aram", "caregiver_id": "carer-1"})
    _act_as(make_auth(backend, user_id="carer-1"))

    body = client.get("/api/v1/wards", params={"selected_id": "w-1"}).json()

    assert [ward["name"] for ward in body["wards"]] == ["Aram", "Minji"]
    assert body["selected_ward_id"] == "w-1"
    assert client.get("/api/v1/wards").json()["selected_ward_id"] == "w-0"


def test_comment_edit_by_non_author_is_silent(client) -> None:
    backend = InMemorySupabase()
    _seed_note(backend, "carer-1")
    backend.tables["comments"].append({"id": "c-1", "note_id": "n-1", "user_id": "g-1", "text": "Thanks"})
    _act_as(make_auth(backend, user_id="carer-1"))

    assert client.patch("/api/v1/comments/c-1", json={"text": "hijack"}).json() == {"updated": 0}
    assert client.delete("/api/v1/comments/c-1").json() == {"deleted": 0}
    assert backend.tables["comments"][0]["text"] == "Thanks"


def test_note_delete_removes_comments(client) -> None:
    backend = InMemorySupabase()
    _seed_note(backend, "carer-1")
    backend.tables["comments"].append({"id": "c-1", "note_id": "n-1", "user_id": "g-1", "text": "Thanks"})
    _act_as(make_auth(backend, user_id="carer-1"))

    assert client.delete("/api/v1/notes/n-1").json() == {"deleted": True}
    assert backend.tables["notes"] == []
    assert backend.tables["comments"] == []


def test_sign_in_syncs_profile(client) -> None:
    server = AuthServer()
    server.users["kim@example.com"] = {
        "id": "carer-1",
        "email": "kim@example.com",
        "password": "Abcd123!",
        "user_metadata": {"name": "Kim", "role": "caregiver", "affiliation": "Sunshine Center"},
    }
    backend = InMemorySupabase()
    app.dependency_overrides[get_public_auth] = lambda: server.client()
    app.dependency_overrides[get_profile_synchronizer] = lambda: ProfileSynchronizer(lambda token: backend)

    response = client.post("/api/v1/auth/sign-in", json={"email": "kim@example.com", "password": "Abcd123!"})

    assert response.status_code == 200
    assert response.json()["user"]["id"] == "carer-1"
    assert backend.tables["users"] == [
        {"id": "carer-1", "email": "kim@example.com", "name": "Kim", "role": "caregiver",
         "affiliation": "Sunshine Center"}
    ]


def test_sign_in_bad_password(client) -> None:
    server = AuthServer()
    app.dependency_overrides[get_public_auth] = lambda: server.client()
    app.dependency_overrides[get_profile_synchronizer] = lambda: ProfileSynchronizer(lambda token: InMemorySupabase())

    response = client.post("/api/v1/auth/sign-in", json={"email": "kim@example.com", "password": "nope"})

    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid login credentials"


def test_sign_up_validates_before_calling_auth(client) -> None:
    server = AuthServer()
    app.dependency_overrides[get_public_auth] = lambda: server.client()

    response = client.post(
        "/api/v1/auth/sign-up",
        json={"email": "kim@example.com", "name": "Kim", "password": "abcdefgh",
              "confirm_password": "abcdefgh", "agree_service": True, "agree_privacy": True,
              "agree_location": True},
    )

    assert response.status_code == 400
    assert server.requests == []


def test_note_photo_from_internal_address_refused(client) -> None:
    backend = InMemorySupabase()
    _seed_note(backend, "carer-1")
    _act_as(make_auth(backend, user_id="carer-1"))

    response = client.post(
        "/api/v1/notes",
        json={
            "ward_id": "w-1",
            "text": "Walk",
            "tags": ["walk", "stable"],
            "new_photos": ["http://169.254.169.254/latest/meta-data/iam"],
        },
    )

    assert response.status_code == 400
    assert len(backend.tables["notes"]) == 1
    assert backend.objects == {}
