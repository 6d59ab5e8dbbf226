from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from ..directory import (
    GuardianListing,
    WardListing,
    create_ward,
    delete_ward,
    effective_affiliation,
    get_ward,
    refresh_guardians,
    refresh_wards,
    update_ward,
)
from ..schemas import Ward, WardDraft
from ..supabase import AuthContext, get_auth_context

router = APIRouter(prefix="/api/v1", tags=["wards"])
logger = logging.getLogger(__name__)


@router.get("/wards", response_model=WardListing)
async def list_wards_endpoint(
    selected_id: Optional[str] = Query(None, description="Currently selected ward"),
    preferred_id: Optional[str] = Query(None, description="Ward to select when coming back from an edit"),
    auth: AuthContext = Depends(get_auth_context),
) -> WardListing:
    return await refresh_wards(auth, selected_id=selected_id, preferred_id=preferred_id)


@router.get("/wards/{ward_id}", response_model=Ward)
async def get_ward_endpoint(
    ward_id: str,
    for_edit: bool = Query(False),
    auth: AuthContext = Depends(get_auth_context),
) -> Ward:
    return await get_ward(auth, ward_id, for_edit=for_edit)


@router.post("/wards", response_model=Ward)
async def create_ward_endpoint(
    payload: WardDraft,
    auth: AuthContext = Depends(get_auth_context),
) -> Ward:
    return await create_ward(auth, payload)


@router.patch("/wards/{ward_id}", response_model=Ward)
async def update_ward_endpoint(
    ward_id: str,
    payload: WardDraft,
    auth: AuthContext = Depends(get_auth_context),
) -> Ward:
    return await update_ward(auth, ward_id, payload)


@router.delete("/wards/{ward_id}")
async def delete_ward_endpoint(
    ward_id: str,
    auth: AuthContext = Depends(get_auth_context),
) -> dict:
    await delete_ward(auth, ward_id)
    return {"deleted": True}


@router.get("/guardians", response_model=GuardianListing)
async def list_guardians_endpoint(
    ward_id: Optional[str] = Query(None, description="Ward being edited, if any"),
    selected_id: Optional[str] = Query(None),
    auth: AuthContext = Depends(get_auth_context),
) -> GuardianListing:
    ward = await get_ward(auth, ward_id, for_edit=True) if ward_id else None
    return await refresh_guardians(
        auth,
        effective_affiliation(auth, ward),
        selected_id=selected_id,
        preferred_id=ward.guardian_id if ward else None,
    )
