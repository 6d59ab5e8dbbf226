from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..composer import compose_note
from ..config import get_config
from ..notes import create_note, delete_note, get_note, list_notes, update_note
from ..photos import PhotoUploader
from ..schemas import Note, NoteDraft
from ..supabase import AuthContext, get_auth_context

router = APIRouter(prefix="/api/v1", tags=["notes"])
logger = logging.getLogger(__name__)


class ComposePayload(BaseModel):
    content: str = Field(..., description="Caregiver's rough memo")
    meal: Optional[str] = None
    tags: List[str] = Field(default_factory=list)


class ComposeOut(BaseModel):
    text: str


def get_photo_uploader(auth: AuthContext = Depends(get_auth_context)) -> PhotoUploader:
    config = get_config()
    # Public http(s) images only; no local files or internal hosts on a caller's behalf.
    return PhotoUploader(
        auth.supabase,
        config.storage_bucket,
        allow_local_files=False,
        timeout=config.http_timeout,
    )


@router.get("/wards/{ward_id}/notes", response_model=List[Note])
async def list_notes_endpoint(
    ward_id: str,
    auth: AuthContext = Depends(get_auth_context),
) -> List[Note]:
    return await list_notes(auth, ward_id)


@router.get("/notes/{note_id}", response_model=Note)
async def get_note_endpoint(
    note_id: str,
    auth: AuthContext = Depends(get_auth_context),
) -> Note:
    return await get_note(auth, note_id)


@router.post("/notes", response_model=Note)
async def create_note_endpoint(
    payload: NoteDraft,
    auth: AuthContext = Depends(get_auth_context),
    uploader: PhotoUploader = Depends(get_photo_uploader),
) -> Note:
    return await create_note(auth, payload, uploader=uploader)


@router.patch("/notes/{note_id}", response_model=Note)
async def update_note_endpoint(
    note_id: str,
    payload: NoteDraft,
    auth: AuthContext = Depends(get_auth_context),
    uploader: PhotoUploader = Depends(get_photo_uploader),
) -> Note:
    return await update_note(auth, note_id, payload, uploader=uploader)


@router.delete("/notes/{note_id}")
async def delete_note_endpoint(
    note_id: str,
    auth: AuthContext = Depends(get_auth_context),
) -> dict:
    await delete_note(auth, note_id)
    return {"deleted": True}


@router.post("/notes/compose", response_model=ComposeOut)
async def compose_note_endpoint(
    payload: ComposePayload,
    auth: AuthContext = Depends(get_auth_context),
) -> ComposeOut:
    logger.info("compose requested", extra={"user_id": auth.user_id})
    text = await compose_note(payload.content, meal=payload.meal, tags=payload.tags)
    return ComposeOut(text=text)
