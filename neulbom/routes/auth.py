from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from ..config import get_config
from ..errors import InputError, user_message
from ..profiles import ProfileSynchronizer
from ..schemas import Identity, Role
from ..session import SessionStore
from ..signup import Agreements, SignupForm, SignupWizard, is_valid_email
from ..supabase import (
    AuthContext,
    AuthResult,
    MemorySessionStorage,
    SupabaseAuth,
    get_auth_context,
)

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])
logger = logging.getLogger(__name__)


class SignInPayload(BaseModel):
    email: str
    password: str


class SignUpPayload(BaseModel):
    email: str
    name: str
    password: str
    confirm_password: str
    organization: str = ""
    role: Role = Role.GUARDIAN
    agree_service: bool = False
    agree_privacy: bool = False
    agree_location: bool = False


class SessionOut(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[int] = None
    user: Identity


class SignUpOut(BaseModel):
    email: str
    user_id: Optional[str] = None
    signed_in: bool = False


def get_public_auth() -> SupabaseAuth:
    """A fresh auth client per request; sessions are handed back, not kept here."""
    config = get_config()
    base_url, anon_key = config.require_supabase()
    return SupabaseAuth(
        base_url,
        anon_key,
        storage=MemorySessionStorage(),
        timeout=config.http_timeout,
    )


def get_profile_synchronizer() -> ProfileSynchronizer:
    return ProfileSynchronizer()


async def _with_store(
    auth: SupabaseAuth,
    synchronizer: ProfileSynchronizer,
    action: Callable[[SessionStore], Awaitable[Any]],
) -> Any:
    store = SessionStore(auth)
    synchronizer.attach(store)
    await store.start()
    try:
        return await action(store)
    finally:
        store.close()


def _raise_auth_error(result: AuthResult, fallback_status: int) -> None:
    if result.error is None:
        return
    status = result.error.status_code or fallback_status
    raise HTTPException(
        status_code=status if status >= 400 else fallback_status,
        detail=user_message(result.error, "Authentication failed. Please try again."),
    )


@router.post("/sign-in", response_model=SessionOut)
async def sign_in_endpoint(
    payload: SignInPayload,
    auth: SupabaseAuth = Depends(get_public_auth),
    synchronizer: ProfileSynchronizer = Depends(get_profile_synchronizer),
) -> SessionOut:
    email = payload.email.strip()
    if not is_valid_email(email):
        raise InputError("Please enter a valid email address.")
    if not payload.password:
        raise InputError("Please enter your password.")

    result = await _with_store(auth, synchronizer, lambda store: store.sign_in(email, payload.password))
    _raise_auth_error(result, 401)
    session = result.session
    if session is None:
        raise HTTPException(status_code=502, detail="Sign-in did not return a session.")
    return SessionOut(
        access_token=session.access_token,
        refresh_token=session.refresh_token,
        expires_at=session.expires_at,
        user=session.user,
    )


@router.post("/sign-up", response_model=SignUpOut)
async def sign_up_endpoint(
    payload: SignUpPayload,
    auth: SupabaseAuth = Depends(get_public_auth),
    synchronizer: ProfileSynchronizer = Depends(get_profile_synchronizer),
) -> SignUpOut:
    wizard = SignupWizard(
        form=SignupForm(
            email=payload.email,
            name=payload.name,
            password=payload.password,
            confirm_password=payload.confirm_password,
            organization=payload.organization,
            role=payload.role,
        ),
        agreements=Agreements(
            service=payload.agree_service,
            privacy=payload.agree_privacy,
            location=payload.agree_location,
        ),
    )
    wizard.validate_all()
    wizard.step = 3

    outcome = await _with_store(auth, synchronizer, wizard.submit)
    _raise_auth_error(outcome.result, 400)
    user = outcome.result.user
    logger.info("sign-up completed", extra={"user_id": user.id if user else None})
    return SignUpOut(
        email=outcome.sign_in_email or payload.email.strip(),
        user_id=user.id if user else None,
        signed_in=outcome.result.session is not None,
    )


@router.post("/sign-out")
async def sign_out_endpoint(
    context: AuthContext = Depends(get_auth_context),
    auth: SupabaseAuth = Depends(get_public_auth),
) -> dict:
    result = await auth.sign_out(context.access_token)
    if result.error:
        logger.warning("remote sign-out failed: %s", result.error.message)
    return {"signed_out": True}
