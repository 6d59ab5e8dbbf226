"""Current signed-in identity, kept in step with the auth service."""
from __future__ import annotations

import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .schemas import Identity, Session
from .supabase import AuthResult, Subscription, SupabaseAuth

logger = logging.getLogger(__name__)

IdentityListener = Callable[[Session], Awaitable[Any]]


def identity_signature(identity: Optional[Identity]) -> Optional[str]:
    """Value used to decide whether the identity really changed."""
    if identity is None or not identity.id:
        return None
    return json.dumps(
        [identity.id, identity.email, identity.user_metadata],
        sort_keys=True,
        default=str,
    )


class SessionStore:
    """Holds ``session``/``loading`` and tells subscribers when the identity changes.

    ``start()`` loads any persisted session and then follows the auth client's
    state-change notifications until ``close()``. Subscribers are called once
    per distinct (id, email, metadata) value, not once per auth event, so a
    token refresh does not re-trigger them.
    """

    def __init__(self, auth: SupabaseAuth) -> None:
        self._auth = auth
        self.session: Optional[Session] = None
        self.loading = True
        self._listeners: List[IdentityListener] = []
        self._subscription: Optional[Subscription] = None
        self._alive = False
        self._signature: Optional[str] = None

    @property
    def identity(self) -> Optional[Identity]:
        return self.session.user if self.session else None

    def subscribe(self, listener: IdentityListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def start(self) -> None:
        self._alive = True
        session = await self._auth.get_session()
        if not self._alive:
            return
        await self._apply(session)
        self.loading = False
        self._subscription = self._auth.on_auth_state_change(self._on_auth_event)

    def close(self) -> None:
        self._alive = False
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        self._listeners.clear()

    async def sign_in(self, email: str, password: str) -> AuthResult:
        return await self._auth.sign_in_with_password(email, password)

    async def sign_up(
        self,
        email: str,
        password: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> AuthResult:
        return await self._auth.sign_up(email, password, metadata)

    async def sign_out(self) -> AuthResult:
        access_token = self.session.access_token if self.session else None
        return await self._auth.sign_out(access_token)

    async def _on_auth_event(self, event: str, session: Optional[Session]) -> None:
        if not self._alive:
            return
        logger.debug("auth state change", extra={"event": event})
        await self._apply(session)

    async def _apply(self, session: Optional[Session]) -> None:
        self.session = session
        signature = identity_signature(self.identity)
        if signature == self._signature:
            return
        self._signature = signature
        if session is None or signature is None:
            return
        for listener in list(self._listeners):
            try:
                await listener(session)
            except Exception:
                logger.exception("identity listener failed", extra={"user_id": session.user.id})
