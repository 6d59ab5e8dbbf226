"""Keeps the ``users`` table row in step with the signed-in identity."""
from __future__ import annotations

import logging
from typing import Callable, Optional

from .errors import ConfigurationError, RemoteError
from .schemas import Identity, Session, UserProfile, metadata_affiliation, metadata_role
from .session import SessionStore
from .supabase import SupabaseClient, user_client

logger = logging.getLogger(__name__)

PLACEHOLDER_NAME = "Unnamed"


def derive_name(identity: Identity) -> str:
    raw_name = identity.user_metadata.get("name")
    name = raw_name.strip() if isinstance(raw_name, str) else ""
    if name:
        return name
    local_part = (identity.email or "").split("@")[0].strip()
    return local_part or PLACEHOLDER_NAME


def derive_profile(identity: Identity) -> UserProfile:
    return UserProfile(
        id=identity.id,
        email=identity.email or "",
        name=derive_name(identity),
        role=metadata_role(identity.user_metadata),
        affiliation=metadata_affiliation(identity.user_metadata),
    )


class ProfileSynchronizer:
    """Upserts the derived profile whenever the session store reports a new identity."""

    def __init__(
        self,
        client_factory: Callable[[str], SupabaseClient] = user_client,
    ) -> None:
        self._client_factory = client_factory

    async def sync(self, session: Session) -> Optional[UserProfile]:
        profile = derive_profile(session.user)
        try:
            client = self._client_factory(session.access_token)
            await client.upsert("users", profile.model_dump(mode="json"), on_conflict="id")
        except (RemoteError, ConfigurationError) as exc:
            logger.warning(
                "user profile sync failed: %s", exc.message, extra={"user_id": profile.id}
            )
            return None
        logger.info("user profile synced", extra={"user_id": profile.id, "role": profile.role.value})
        return profile

    def attach(self, store: SessionStore) -> Callable[[], None]:
        return store.subscribe(self.sync)
