"""Wards a user can see, guardians a caregiver can link, and the ward form."""
from __future__ import annotations

import logging
import re
from datetime import date
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, Field

from .errors import AuthenticationRequired, InputError, NotFound, PermissionDenied, RemoteError
from .schemas import GuardianOption, Role, Ward, WardDraft
from .supabase import AuthContext

logger = logging.getLogger(__name__)

WARD_COLUMNS = "id,name,birth_date,gender,affiliation,guardian_id,caregiver_id"
BIRTH_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")


class WardListing(BaseModel):
    wards: List[Ward] = Field(default_factory=list)
    selected_ward_id: Optional[str] = None


class GuardianListing(BaseModel):
    guardians: List[GuardianOption] = Field(default_factory=list)
    selected_guardian_id: Optional[str] = None


def select_preserved(
    ids: Sequence[str],
    previous_id: Optional[str],
    preferred_id: Optional[str] = None,
) -> Optional[str]:
    """Pick the selection after a list refresh.

    Keeps ``previous_id`` while it is still listed, then tries ``preferred_id``
    (set when coming back from an edit flow), then the first item.
    """
    if previous_id and previous_id in ids:
        return previous_id
    if preferred_id and preferred_id in ids:
        return preferred_id
    return ids[0] if ids else None


def require_actor(auth: Optional[AuthContext]) -> AuthContext:
    if auth is None or not auth.user_id:
        raise AuthenticationRequired("Sign-in is required for this action.")
    return auth


async def list_wards(auth: AuthContext) -> List[Ward]:
    """Wards the caller looks after as caregiver or is linked to as guardian."""
    rows = await auth.supabase.select(
        "wards",
        params={
            "select": WARD_COLUMNS,
            "or": f"(caregiver_id.eq.{auth.user_id},guardian_id.eq.{auth.user_id})",
            "order": "name.asc",
        },
    )
    return [Ward.model_validate(row) for row in rows]


async def refresh_wards(
    auth: AuthContext,
    *,
    selected_id: Optional[str] = None,
    preferred_id: Optional[str] = None,
) -> WardListing:
    wards = await list_wards(auth)
    selected = select_preserved([ward.id for ward in wards], selected_id, preferred_id)
    return WardListing(wards=wards, selected_ward_id=selected)


async def list_guardians(auth: AuthContext, affiliation: Optional[str]) -> List[GuardianOption]:
    affiliation = (affiliation or "").strip()
    if not affiliation:
        return []
    rows = await auth.supabase.select(
        "users",
        params={
            "select": "id,name,email",
            "role": f"eq.{Role.GUARDIAN.value}",
            "affiliation": f"eq.{affiliation}",
            "order": "name.asc",
        },
    )
    return [GuardianOption.model_validate(row) for row in rows]


async def refresh_guardians(
    auth: AuthContext,
    affiliation: Optional[str],
    *,
    selected_id: Optional[str] = None,
    preferred_id: Optional[str] = None,
) -> GuardianListing:
    guardians = await list_guardians(auth, affiliation)
    selected = select_preserved([g.id for g in guardians], selected_id, preferred_id)
    return GuardianListing(guardians=guardians, selected_guardian_id=selected)


def effective_affiliation(auth: AuthContext, ward: Optional[Ward] = None) -> str:
    """The caregiver's own affiliation, else the one stored on the ward being edited."""
    return (auth.affiliation or (ward.affiliation if ward else None) or "").strip()


async def get_ward(auth: AuthContext, ward_id: str, *, for_edit: bool = False) -> Ward:
    rows = await auth.supabase.select(
        "wards",
        params={"select": WARD_COLUMNS, "id": f"eq.{ward_id}", "limit": "1"},
    )
    if not rows:
        raise NotFound("Ward not found.")
    ward = Ward.model_validate(rows[0])
    if for_edit and ward.caregiver_id != auth.user_id:
        raise PermissionDenied("You do not have permission to edit this ward.")
    return ward


def validate_ward_draft(
    auth: Optional[AuthContext],
    draft: WardDraft,
    *,
    affiliation: str,
) -> Dict[str, Any]:
    """Check the ward form and return the row to write. No network calls."""
    name = draft.name.strip()
    birth_date = draft.birth_date.strip()
    if not name:
        raise InputError("Please enter the ward's name.")
    if not BIRTH_DATE_PATTERN.match(birth_date):
        raise InputError("Enter the birth date as YYYY-MM-DD.")
    try:
        date.fromisoformat(birth_date)
    except ValueError as exc:
        raise InputError("Enter the birth date as YYYY-MM-DD.") from exc
    if draft.gender is None:
        raise InputError("Please select a gender.")
    if not draft.guardian_id:
        raise InputError("Please select the guardian to link.")
    if not affiliation:
        raise InputError("Your profile has no affiliation. Check your profile details.")
    require_actor(auth)
    return {
        "name": name,
        "birth_date": birth_date,
        "gender": draft.gender.value,
        "affiliation": affiliation,
        "guardian_id": draft.guardian_id,
    }


async def create_ward(auth: AuthContext, draft: WardDraft) -> Ward:
    row = validate_ward_draft(auth, draft, affiliation=effective_affiliation(auth))
    if not auth.is_caregiver:
        raise PermissionDenied("Only caregivers can register wards.")
    row["caregiver_id"] = auth.user_id
    rows = await auth.supabase.insert("wards", row)
    if not rows:
        raise RemoteError("The ward was not saved.", action="insert")
    logger.info("ward created", extra={"ward_id": rows[0].get("id"), "caregiver_id": auth.user_id})
    return Ward.model_validate(rows[0])


async def update_ward(auth: AuthContext, ward_id: str, draft: WardDraft) -> Ward:
    existing = await get_ward(auth, ward_id, for_edit=True)
    row = validate_ward_draft(auth, draft, affiliation=effective_affiliation(auth, existing))
    rows = await auth.supabase.update(
        "wards",
        row,
        params={"id": f"eq.{ward_id}", "caregiver_id": f"eq.{auth.user_id}"},
    )
    if not rows:
        raise RemoteError("The ward was not saved.", action="update")
    return Ward.model_validate(rows[0])


async def delete_ward(auth: AuthContext, ward_id: str) -> None:
    """Delete a ward with its notes and their comments.

    The three deletes are separate requests; a failure part way leaves the
    rows already removed gone and the rest in place.
    """
    ward = await get_ward(auth, ward_id)
    if ward.caregiver_id != auth.user_id:
        raise PermissionDenied("You do not have permission to delete this ward.")

    notes = await auth.supabase.select(
        "notes",
        params={"select": "id", "ward_id": f"eq.{ward_id}"},
    )
    note_ids = [str(row["id"]) for row in notes]
    if note_ids:
        id_list = f"in.({','.join(note_ids)})"
        await auth.supabase.delete("comments", params={"note_id": id_list})
        await auth.supabase.delete("notes", params={"id": id_list})
    await auth.supabase.delete("wards", params={"id": f"eq.{ward_id}"})
    logger.info("ward deleted", extra={"ward_id": ward_id, "note_count": len(note_ids)})
