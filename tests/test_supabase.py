from __future__ import annotations

import asyncio
import time

import httpx
import jwt
import pytest

from neulbom.errors import RemoteError
from neulbom.supabase import AuthResult, SupabaseClient, token_expiry

from .fakes import SUPABASE_URL


def _client(handler) -> SupabaseClient:
    return SupabaseClient(
        base_url=SUPABASE_URL,
        anon_key="anon-key",
        access_token="user-token",
        transport=httpx.MockTransport(handler),
    )


def test_select_sends_filters_and_user_token() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=[{"id": "w-1"}])

    rows = asyncio.run(
        _client(handler).select("wards", {"select": "id", "or": "(caregiver_id.eq.u,guardian_id.eq.u)"})
    )

    assert rows == [{"id": "w-1"}]
    request = seen[0]
    assert request.url.path == "/rest/v1/wards"
    assert request.url.params["or"] == "(caregiver_id.eq.u,guardian_id.eq.u)"
    assert request.headers["apikey"] == "anon-key"
    assert request.headers["authorization"] == "Bearer user-token"


@pytest.mark.parametrize(
    "body, expected",
    [
        ({"message": "new row violates row-level security policy"}, "new row violates row-level security policy"),
        ({"msg": "JWT expired"}, "JWT expired"),
        ({"error_description": "Invalid login credentials"}, "Invalid login credentials"),
    ],
)
def test_error_body_becomes_remote_error(body, expected) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403, json=body)

    with pytest.raises(RemoteError) as exc:
        asyncio.run(_client(handler).insert("notes", {"ward_id": "w-1"}))

    assert exc.value.message == expected
    assert exc.value.status_code == 403
    assert exc.value.action == "insert"


def test_unreachable_server_is_remote_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(RemoteError) as exc:
        asyncio.run(_client(handler).select("wards", {}))
    assert exc.value.status_code == 502
    assert exc.value.message.startswith("Could not reach the server")


def test_writes_ask_for_representation() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=[])

    client = _client(handler)
    asyncio.run(client.delete("comments", {"id": "eq.c-1"}))
    asyncio.run(client.upsert("users", {"id": "u-1"}, on_conflict="id"))

    delete, upsert = seen
    assert delete.method == "DELETE"
    assert delete.headers["prefer"] == "return=representation"
    assert upsert.url.params["on_conflict"] == "id"
    assert "resolution=merge-duplicates" in upsert.headers["prefer"]


def test_upload_object_posts_bytes() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"Key": "care-photos/w-1/1-a.png"})

    client = _client(handler)
    key = asyncio.run(client.upload_object("care-photos", "w-1/1-a.png", b"png", "image/png"))

    assert key == "w-1/1-a.png"
    assert seen[0].url.path == "/storage/v1/object/care-photos/w-1/1-a.png"
    assert seen[0].headers["content-type"] == "image/png"
    assert seen[0].content == b"png"
    assert client.public_url("care-photos", key) == (
        f"{SUPABASE_URL}/storage/v1/object/public/care-photos/w-1/1-a.png"
    )


def test_token_expiry_reads_claim() -> None:
    exp = int(time.time()) + 600
    token = jwt.encode({"sub": "u-1", "exp": exp}, "secret-value-long-enough-for-hs256", algorithm="HS256")
    assert token_expiry(token) == exp
    assert token_expiry("not-a-jwt") is None


def test_sign_up_without_session_still_has_user() -> None:
    result = AuthResult(data={"id": "u-1", "email": "kim@example.com", "user_metadata": None})
    assert result.session is None
    assert result.user.id == "u-1"
    assert result.user.user_metadata == {}
