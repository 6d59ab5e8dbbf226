from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ..comments import create_comment, delete_comment, list_comments, update_comment
from ..schemas import Comment
from ..supabase import AuthContext, get_auth_context

router = APIRouter(prefix="/api/v1", tags=["comments"])


class CommentPayload(BaseModel):
    text: str


@router.get("/notes/{note_id}/comments", response_model=List[Comment])
async def list_comments_endpoint(
    note_id: str,
    auth: AuthContext = Depends(get_auth_context),
) -> List[Comment]:
    return await list_comments(auth, note_id)


@router.post("/notes/{note_id}/comments", response_model=Comment)
async def create_comment_endpoint(
    note_id: str,
    payload: CommentPayload,
    auth: AuthContext = Depends(get_auth_context),
) -> Comment:
    return await create_comment(auth, note_id, payload.text)


@router.patch("/comments/{comment_id}")
async def update_comment_endpoint(
    comment_id: str,
    payload: CommentPayload,
    auth: AuthContext = Depends(get_auth_context),
) -> dict:
    return {"updated": await update_comment(auth, comment_id, payload.text)}


@router.delete("/comments/{comment_id}")
async def delete_comment_endpoint(
    comment_id: str,
    auth: AuthContext = Depends(get_auth_context),
) -> dict:
    return {"deleted": await delete_comment(auth, comment_id)}
