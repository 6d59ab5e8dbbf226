from __future__ import annotations

import asyncio

import pytest

from neulbom.comments import (
    can_modify_comment,
    create_comment,
    delete_comment,
    list_comments,
    update_comment,
)
from neulbom.errors import AuthenticationRequired, InputError, RemoteError
from neulbom.schemas import Comment, Role

from .fakes import FakeSupabase, failing, make_auth


def test_list_comments_ascending_with_author() -> None:
    fake = FakeSupabase(
        select_queue={
            "comments": [
                [
                    {
                        "id": "c-1",
                        "note_id": "n-1",
                        "text": "Thank you!",
                        "created_at": "2025-03-01T10:00:00+00:00",
                        "user_id": "g-1",
                        "user": {"id": "g-1", "name": "Park", "role": "guardian"},
                    }
                ]
            ]
        }
    )

    comments = asyncio.run(list_comments(make_auth(fake), "n-1"))

    assert comments[0].user.name == "Park"
    assert comments[0].user.role == Role.GUARDIAN
    _, _, params = fake.calls[0]
    assert params["note_id"] == "eq.n-1"
    assert params["order"] == "created_at.asc"
    assert "user:users!comments_user_id_fkey(id,name,role)" in params["select"]


def test_create_comment_trims_text() -> None:
    fake = FakeSupabase(
        insert_queue={"comments": [[{"id": "c-1", "note_id": "n-1", "user_id": "g-1", "text": "Hi"}]]}
    )
    auth = make_auth(fake, user_id="g-1", role=Role.GUARDIAN)

    comment = asyncio.run(create_comment(auth, "n-1", "  Hi  "))

    assert comment.text == "Hi"
    _, _, payload, _ = fake.calls[0]
    assert payload == {"note_id": "n-1", "user_id": "g-1", "text": "Hi"}


def test_create_comment_rejects_blank_and_anonymous() -> None:
    fake = FakeSupabase()
    with pytest.raises(InputError):
        asyncio.run(create_comment(make_auth(fake), "n-1", "   "))
    with pytest.raises(AuthenticationRequired):
        asyncio.run(create_comment(None, "n-1", "hello"))
    assert fake.calls == []


def test_update_by_non_owner_changes_nothing_and_does_not_raise() -> None:
    fake = FakeSupabase(update_queue={"comments": [[]]})
    auth = make_auth(fake, user_id="intruder")

    changed = asyncio.run(update_comment(auth, "c-1", "edited"))

    assert changed == 0
    _, _, payload, params = fake.calls[0]
    assert payload == {"text": "edited"}
    assert params == {"id": "eq.c-1", "user_id": "eq.intruder"}


def test_delete_by_non_owner_changes_nothing_and_does_not_raise() -> None:
    fake = FakeSupabase(delete_queue={"comments": [[]]})
    auth = make_auth(fake, user_id="intruder")

    assert asyncio.run(delete_comment(auth, "c-1")) == 0
    _, _, params = fake.calls[0]
    assert params == {"id": "eq.c-1", "user_id": "eq.intruder"}


def test_owner_update_reports_one_row() -> None:
    fake = FakeSupabase(update_queue={"comments": [[{"id": "c-1", "user_id": "g-1", "text": "edited"}]]})
    assert asyncio.run(update_comment(make_auth(fake, user_id="g-1"), "c-1", " edited ")) == 1


def test_remote_failure_is_distinct_from_zero_rows() -> None:
    fake = FakeSupabase(errors={("delete", "comments"): failing("network down", 503)})

    with pytest.raises(RemoteError) as exc:
        asyncio.run(delete_comment(make_auth(fake), "c-1"))
    assert exc.value.message == "network down"


def test_can_modify_comment_only_for_author() -> None:
    comment = Comment(id="c-1", user_id="g-1", text="hi")
    assert can_modify_comment(comment, "g-1")
    assert not can_modify_comment(comment, "carer-1")
    assert not can_modify_comment(comment, None)
