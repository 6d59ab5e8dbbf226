from __future__ import annotations

import pytest

from neulbom.errors import NotFound, RemoteError, user_message
from neulbom.supabase import AuthError


@pytest.mark.parametrize("status, expected", [(409, 409), (None, 502), (200, 502)])
def test_remote_error_status(status, expected) -> None:
    assert RemoteError("boom", status_code=status).status_code == expected


def test_user_message_prefers_error_text() -> None:
    assert user_message(NotFound("Ward not found."), "Something went wrong.") == "Ward not found."
    assert user_message(AuthError("Invalid login credentials", 400), "fallback") == "Invalid login credentials"
    assert user_message(AuthError("  "), "fallback") == "fallback"
    assert user_message(ValueError("raw"), "fallback") == "fallback"
