"""Per-note discussion between caregivers and guardians."""
from __future__ import annotations

import logging
from typing import List, Optional

from .directory import require_actor
from .errors import InputError, RemoteError
from .schemas import Comment
from .supabase import AuthContext

logger = logging.getLogger(__name__)

COMMENT_COLUMNS = (
    "id,note_id,text,created_at,user_id,user:users!comments_user_id_fkey(id,name,role)"
)


def can_modify_comment(comment: Comment, user_id: Optional[str]) -> bool:
    return bool(user_id) and comment.user_id == user_id


def _clean_text(text: Optional[str]) -> str:
    trimmed = (text or "").strip()
    if not trimmed:
        raise InputError("Please enter a comment.")
    return trimmed


async def list_comments(auth: AuthContext, note_id: str) -> List[Comment]:
    rows = await auth.supabase.select(
        "comments",
        params={
            "select": COMMENT_COLUMNS,
            "note_id": f"eq.{note_id}",
            "order": "created_at.asc",
        },
    )
    return [Comment.model_validate(row) for row in rows]


async def create_comment(auth: Optional[AuthContext], note_id: str, text: str) -> Comment:
    trimmed = _clean_text(text)
    auth = require_actor(auth)
    payload = {"note_id": note_id, "user_id": auth.user_id, "text": trimmed}
    rows = await auth.supabase.insert("comments", payload)
    if not rows:
        raise RemoteError("The comment was not saved.", action="insert")
    return Comment.model_validate(rows[0])


async def update_comment(auth: AuthContext, comment_id: str, text: str) -> int:
    """Edit the caller's own comment; returns the number of rows changed.

    Filtering on the author means another user's comment (or a missing one)
    changes zero rows and still succeeds.
    """
    trimmed = _clean_text(text)
    rows = await auth.supabase.update(
        "comments",
        {"text": trimmed},
        params={"id": f"eq.{comment_id}", "user_id": f"eq.{auth.user_id}"},
    )
    if not rows:
        logger.info("comment update matched no rows", extra={"comment_id": comment_id})
    return len(rows)


async def delete_comment(auth: AuthContext, comment_id: str) -> int:
    rows = await auth.supabase.delete(
        "comments",
        params={"id": f"eq.{comment_id}", "user_id": f"eq.{auth.user_id}"},
    )
    if not rows:
        logger.info("comment delete matched no rows", extra={"comment_id": comment_id})
    return len(rows)
