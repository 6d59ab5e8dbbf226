"""Activity journal entries for a ward."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .directory import require_actor
from .errors import InputError, NotFound, PermissionDenied, RemoteError
from .photos import PhotoUploader
from .schemas import ACTIVITY_TAGS, HEALTH_TAGS, Note, NoteDraft
from .supabase import AuthContext

logger = logging.getLogger(__name__)

NOTE_COLUMNS = "id,created_at,details,meal,ai_note,tags,photos,ward_id,caregiver_id"
MAX_PHOTOS = 5


def split_tags(tags: Sequence[str]) -> Tuple[Optional[str], Optional[str]]:
    """Recover the (activity, health) pair from a stored tag list."""
    activity = next((tag for tag in ACTIVITY_TAGS if tag in tags), None)
    health = next((tag for tag in HEALTH_TAGS if tag in tags), None)
    return activity, health


def validate_note_draft(auth: Optional[AuthContext], draft: NoteDraft) -> Dict[str, Any]:
    """Check the note form and return the columns to write. No network calls."""
    if not draft.ward_id:
        raise InputError("Please select the ward for this note.")
    text = draft.text.strip()
    if not text:
        raise InputError("Write the note yourself or polish it with AI first.")
    require_actor(auth)

    activity = [tag for tag in draft.tags if tag in ACTIVITY_TAGS]
    health = [tag for tag in draft.tags if tag in HEALTH_TAGS]
    unknown = [tag for tag in draft.tags if tag not in ACTIVITY_TAGS and tag not in HEALTH_TAGS]
    if len(activity) != 1 or len(health) != 1 or unknown:
        raise InputError("Select exactly one activity tag and one health tag.")
    if len(draft.photos) + len(draft.new_photos) > MAX_PHOTOS:
        raise InputError(f"Attach at most {MAX_PHOTOS} photos.")

    meal = (draft.meal or "").strip()
    return {
        "ward_id": draft.ward_id,
        "details": text,
        "meal": meal or None,
        "ai_note": text,
        "tags": [activity[0], health[0]],
    }


def ensure_owner(auth: AuthContext, note: Note, action: str) -> None:
    if note.caregiver_id != auth.user_id:
        raise PermissionDenied(f"You do not have permission to {action} this note.")


async def list_notes(auth: AuthContext, ward_id: str) -> List[Note]:
    rows = await auth.supabase.select(
        "notes",
        params={
            "select": NOTE_COLUMNS,
            "ward_id": f"eq.{ward_id}",
            "order": "created_at.desc",
        },
    )
    return [Note.model_validate(row) for row in rows]


async def get_note(auth: AuthContext, note_id: str) -> Note:
    rows = await auth.supabase.select(
        "notes",
        params={"select": NOTE_COLUMNS, "id": f"eq.{note_id}", "limit": "1"},
    )
    if not rows:
        raise NotFound("Activity note not found.")
    return Note.model_validate(rows[0])


async def load_note_for_edit(auth: AuthContext, note_id: str) -> Note:
    note = await get_note(auth, note_id)
    ensure_owner(auth, note, "edit")
    return note


async def _photo_urls(
    auth: AuthContext,
    draft: NoteDraft,
    uploader: Optional[PhotoUploader],
) -> List[str]:
    urls = list(draft.photos)
    if draft.new_photos:
        if uploader is None:
            raise InputError("Photo upload is not available.")
        urls.extend(await uploader.upload_all(draft.new_photos, draft.ward_id or auth.user_id))
    return urls


async def create_note(
    auth: AuthContext,
    draft: NoteDraft,
    *,
    uploader: Optional[PhotoUploader] = None,
) -> Note:
    row = validate_note_draft(auth, draft)
    if not auth.is_caregiver:
        raise PermissionDenied("Only caregivers can write activity notes.")
    row["photos"] = await _photo_urls(auth, draft, uploader)
    row["caregiver_id"] = auth.user_id
    rows = await auth.supabase.insert("notes", row)
    if not rows:
        raise RemoteError("The activity note was not saved.", action="insert")
    logger.info(
        "note created",
        extra={"ward_id": draft.ward_id, "photo_count": len(row["photos"])},
    )
    return Note.model_validate(rows[0])


async def update_note(
    auth: AuthContext,
    note_id: str,
    draft: NoteDraft,
    *,
    uploader: Optional[PhotoUploader] = None,
) -> Note:
    row = validate_note_draft(auth, draft)
    await load_note_for_edit(auth, note_id)
    row["photos"] = await _photo_urls(auth, draft, uploader)
    rows = await auth.supabase.update(
        "notes",
        row,
        params={"id": f"eq.{note_id}", "caregiver_id": f"eq.{auth.user_id}"},
    )
    if not rows:
        raise RemoteError("The activity note was not saved.", action="update")
    return Note.model_validate(rows[0])


async def delete_note(auth: AuthContext, note_id: str) -> None:
    """Delete the note's comments, then the note itself (two separate requests)."""
    note = await get_note(auth, note_id)
    ensure_owner(auth, note, "delete")
    await auth.supabase.delete("comments", params={"note_id": f"eq.{note_id}"})
    await auth.supabase.delete(
        "notes",
        params={"id": f"eq.{note_id}", "caregiver_id": f"eq.{auth.user_id}"},
    )
    logger.info("note deleted", extra={"note_id": note_id, "ward_id": note.ward_id})
