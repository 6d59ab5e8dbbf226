from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional
from urllib.parse import quote
from uuid import UUID

import httpx
import jwt
from fastapi import Header, HTTPException
from jwt import PyJWKClient
from pydantic import ValidationError

from .config import get_config
from .errors import RemoteError
from .schemas import Identity, Role, Session, metadata_affiliation, metadata_role

logger = logging.getLogger(__name__)


def _supabase_config() -> tuple[str, str]:
    return get_config().require_supabase()


@lru_cache
def _jwks_url() -> str:
    base_url, _ = _supabase_config()
    return os.getenv("SUPABASE_JWKS_URL") or f"{base_url}/auth/v1/keys"


@lru_cache
def _jwks_client() -> PyJWKClient:
    return PyJWKClient(_jwks_url())


def _parse_bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing authorization token.")
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(status_code=401, detail="Invalid authorization token.")
    return parts[1]


def _parse_uuid(value: Optional[str], label: str) -> str:
    if not value:
        raise HTTPException(status_code=400, detail=f"Missing {label}.")
    try:
        return str(UUID(value))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid {label}.") from exc


def token_expiry(access_token: str) -> Optional[int]:
    """Read the ``exp`` claim without verifying the signature."""
    try:
        claims = jwt.decode(access_token, options={"verify_signature": False})
    except jwt.PyJWTError:
        return None
    exp = claims.get("exp")
    return int(exp) if exp else None


def _error_message(resp: httpx.Response) -> str:
    try:
        payload = resp.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        for key in ("message", "msg", "error_description", "error"):
            value = payload.get(key)
            if isinstance(value, str) and value.strip():
                return value
    try:
        return resp.text or "<empty response>"
    except Exception:
        return "<unable to read response>"


def _raise_supabase_error(
    resp: httpx.Response,
    action: str,
    *,
    object_label: Optional[str] = None,
) -> None:
    detail = _error_message(resp)
    label = f" ({object_label})" if object_label else ""
    logger.warning(
        "Supabase %s failed%s: status=%s, body=%s", action, label, resp.status_code, detail
    )
    raise RemoteError(detail, status_code=resp.status_code, action=action)


async def _verify_access_token(token: str) -> Dict[str, Any]:
    audience = os.getenv("SUPABASE_JWT_AUD", "authenticated")
    options = {"verify_aud": bool(audience)}
    try:
        signing_key = _jwks_client().get_signing_key_from_jwt(token)
        return jwt.decode(
            token,
            signing_key.key,
            algorithms=["RS256"],
            audience=audience if audience else None,
            options=options,
        )
    except Exception:
        pass

    secret = os.getenv("SUPABASE_JWT_SECRET")
    if secret:
        try:
            return jwt.decode(
                token,
                secret,
                algorithms=["HS256"],
                audience=audience if audience else None,
                options=options,
            )
        except Exception as exc:
            raise HTTPException(status_code=401, detail="Invalid or expired token.") from exc

    base_url, anon_key = _supabase_config()
    async with httpx.AsyncClient(timeout=10.0) as client:
        resp = await client.get(
            f"{base_url}/auth/v1/user",
            headers={
                "Authorization": f"Bearer {token}",
                "apikey": anon_key,
            },
        )
    if resp.status_code >= 400:
        raise HTTPException(status_code=401, detail="Invalid or expired token.")
    data = resp.json() if resp.content else {}
    user_id = data.get("id")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid or expired token.")
    return {
        "sub": user_id,
        "email": data.get("email"),
        "user_metadata": data.get("user_metadata") or {},
    }


@dataclass
class SupabaseClient:
    base_url: str
    anon_key: str
    access_token: str
    timeout: float = 15.0
    transport: Optional[httpx.AsyncBaseTransport] = None

    def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {
            "apikey": self.anon_key,
            "Authorization": f"Bearer {self.access_token}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }
        if extra:
            headers.update(extra)
        return headers

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                return await client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("Supabase request failed: %s %s (%s)", method, url, exc)
            raise RemoteError(f"Could not reach the server: {exc}") from exc

    async def request(
        self,
        method: str,
        table: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Any] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        url = f"{self.base_url}/rest/v1/{table}"
        return await self._send(
            method,
            url,
            params=params,
            json=json,
            headers=self._headers(headers),
        )

    async def select(self, table: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        resp = await self.request("GET", table, params=params)
        if resp.status_code >= 400:
            _raise_supabase_error(resp, "select", object_label=f"table={table}")
        return resp.json()

    async def insert(
        self,
        table: str,
        payload: Dict[str, Any],
        *,
        params: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        resp = await self.request(
            "POST",
            table,
            params=params,
            json=payload,
            headers={"Prefer": "return=representation"},
        )
        if resp.status_code >= 400:
            _raise_supabase_error(resp, "insert", object_label=f"table={table}")
        return resp.json() if resp.content else []

    async def upsert(
        self,
        table: str,
        payload: Dict[str, Any],
        *,
        on_conflict: str,
    ) -> List[Dict[str, Any]]:
        resp = await self.request(
            "POST",
            table,
            params={"on_conflict": on_conflict},
            json=payload,
            headers={
                "Prefer": "resolution=merge-duplicates,return=representation",
            },
        )
        if resp.status_code >= 400:
            _raise_supabase_error(resp, "upsert", object_label=f"table={table}")
        return resp.json() if resp.content else []

    async def update(
        self,
        table: str,
        payload: Dict[str, Any],
        params: Dict[str, Any],
    ) -> List[Dict[str, Any]]:
        resp = await self.request(
            "PATCH",
            table,
            params=params,
            json=payload,
            headers={"Prefer": "return=representation"},
        )
        if resp.status_code >= 400:
            _raise_supabase_error(resp, "update", object_label=f"table={table}")
        return resp.json() if resp.content else []

    async def delete(self, table: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        resp = await self.request(
            "DELETE",
            table,
            params=params,
            headers={"Prefer": "return=representation"},
        )
        if resp.status_code >= 400:
            _raise_supabase_error(resp, "delete", object_label=f"table={table}")
        return resp.json() if resp.content else []

    async def upload_object(
        self,
        bucket: str,
        key: str,
        content: bytes,
        content_type: str,
    ) -> str:
        url = f"{self.base_url}/storage/v1/object/{bucket}/{quote(key)}"
        resp = await self._send(
            "POST",
            url,
            content=content,
            headers=self._headers({"Content-Type": content_type, "x-upsert": "false"}),
        )
        if resp.status_code >= 400:
            _raise_supabase_error(resp, "upload", object_label=f"bucket={bucket}")
        return key

    def public_url(self, bucket: str, key: str) -> str:
        return f"{self.base_url}/storage/v1/object/public/{bucket}/{quote(key)}"


def user_client(access_token: str) -> SupabaseClient:
    """Client that talks to Supabase as the given user, so row-level security applies."""
    base_url, anon_key = _supabase_config()
    return SupabaseClient(
        base_url=base_url,
        anon_key=anon_key,
        access_token=access_token,
        timeout=get_config().http_timeout,
    )


class MemorySessionStorage:
    def __init__(self, session: Optional[Session] = None) -> None:
        self._session = session

    def load(self) -> Optional[Session]:
        return self._session

    def save(self, session: Session) -> None:
        self._session = session

    def clear(self) -> None:
        self._session = None


class FileSessionStorage:
    """Keeps the last auth session as JSON so a restart stays signed in."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def load(self) -> Optional[Session]:
        if not self.path.exists():
            return None
        try:
            return Session.model_validate(json.loads(self.path.read_text()))
        except (ValueError, ValidationError) as exc:
            logger.warning("Ignoring unreadable session file %s: %s", self.path, exc)
            return None

    def save(self, session: Session) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(session.model_dump_json())

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


@dataclass
class AuthError:
    message: str
    status_code: Optional[int] = None


def _session_from_payload(data: Dict[str, Any]) -> Optional[Session]:
    token = data.get("access_token")
    user = data.get("user")
    if not token or not isinstance(user, dict):
        return None
    expires_at = data.get("expires_at")
    if not expires_at and data.get("expires_in"):
        expires_at = int(time.time()) + int(data["expires_in"])
    if not expires_at:
        expires_at = token_expiry(token)
    return Session(
        access_token=token,
        refresh_token=data.get("refresh_token"),
        token_type=data.get("token_type") or "bearer",
        expires_at=expires_at,
        user=Identity.model_validate(user),
    )


@dataclass
class AuthResult:
    """Raw outcome of an auth call: the response payload, or an error."""

    data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[AuthError] = None

    @property
    def session(self) -> Optional[Session]:
        if self.error:
            return None
        return _session_from_payload(self.data)

    @property
    def user(self) -> Optional[Identity]:
        if self.error:
            return None
        raw = self.data.get("user") if isinstance(self.data.get("user"), dict) else self.data
        if not raw.get("id"):
            return None
        return Identity.model_validate(raw)


AuthCallback = Callable[[str, Optional[Session]], Awaitable[None]]


class Subscription:
    def __init__(self, listeners: List[AuthCallback], callback: AuthCallback) -> None:
        self._listeners = listeners
        self._callback = callback

    def unsubscribe(self) -> None:
        if self._callback in self._listeners:
            self._listeners.remove(self._callback)


class SupabaseAuth:
    """GoTrue endpoints plus local session persistence and auth-state notifications."""

    def __init__(
        self,
        base_url: str,
        anon_key: str,
        *,
        storage: Any,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.anon_key = anon_key
        self.storage = storage
        self.timeout = timeout
        self.transport = transport
        self._listeners: List[AuthCallback] = []

    def on_auth_state_change(self, callback: AuthCallback) -> Subscription:
        self._listeners.append(callback)
        return Subscription(self._listeners, callback)

    async def _emit(self, event: str, session: Optional[Session]) -> None:
        for callback in list(self._listeners):
            await callback(event, session)

    async def _post(
        self,
        path: str,
        payload: Dict[str, Any],
        *,
        params: Optional[Dict[str, str]] = None,
        access_token: Optional[str] = None,
    ) -> AuthResult:
        headers = {
            "apikey": self.anon_key,
            "Authorization": f"Bearer {access_token or self.anon_key}",
            "Content-Type": "application/json",
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                resp = await client.post(
                    f"{self.base_url}{path}",
                    params=params,
                    json=payload,
                    headers=headers,
                )
        except httpx.HTTPError as exc:
            logger.warning("Supabase auth request failed: %s (%s)", path, exc)
            return AuthResult(error=AuthError(f"Could not reach the server: {exc}"))
        if resp.status_code >= 400:
            return AuthResult(error=AuthError(_error_message(resp), resp.status_code))
        data = resp.json() if resp.content else {}
        return AuthResult(data=data if isinstance(data, dict) else {})

    async def _store(self, session: Session, event: str) -> None:
        self.storage.save(session)
        await self._emit(event, session)

    async def sign_in_with_password(self, email: str, password: str) -> AuthResult:
        result = await self._post(
            "/auth/v1/token",
            {"email": email, "password": password},
            params={"grant_type": "password"},
        )
        session = result.session
        if session:
            await self._store(session, "SIGNED_IN")
        return result

    async def sign_up(
        self,
        email: str,
        password: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> AuthResult:
        result = await self._post(
            "/auth/v1/signup",
            {"email": email, "password": password, "data": metadata or {}},
        )
        session = result.session
        if session:
            await self._store(session, "SIGNED_IN")
        return result

    async def sign_out(self, access_token: Optional[str] = None) -> AuthResult:
        """Revoke the session remotely and always drop it locally."""
        if access_token is None:
            stored = self.storage.load()
            access_token = stored.access_token if stored else None
        result = AuthResult()
        if access_token:
            result = await self._post("/auth/v1/logout", {}, access_token=access_token)
        self.storage.clear()
        await self._emit("SIGNED_OUT", None)
        return result

    async def refresh_session(self, refresh_token: str) -> AuthResult:
        result = await self._post(
            "/auth/v1/token",
            {"refresh_token": refresh_token},
            params={"grant_type": "refresh_token"},
        )
        session = result.session
        if session:
            await self._store(session, "TOKEN_REFRESHED")
        else:
            self.storage.clear()
        return result

    async def get_session(self) -> Optional[Session]:
        """Return the persisted session, refreshing it first if it has expired."""
        session = self.storage.load()
        if session is None or not session.is_expired():
            return session
        if not session.refresh_token:
            self.storage.clear()
            return None
        result = await self.refresh_session(session.refresh_token)
        if result.error:
            logger.warning("Stored session could not be refreshed: %s", result.error.message)
        return result.session


def get_auth_client(storage: Any = None) -> SupabaseAuth:
    config = get_config()
    base_url, anon_key = config.require_supabase()
    if storage is None:
        storage = FileSessionStorage(config.resolved_session_path)
    return SupabaseAuth(base_url, anon_key, storage=storage)


@dataclass
class AuthContext:
    """The acting user plus a client scoped to their token."""

    user_id: str
    user_email: Optional[str]
    access_token: str
    supabase: SupabaseClient
    role: Role = Role.GUARDIAN
    affiliation: Optional[str] = None

    @property
    def is_caregiver(self) -> bool:
        return self.role == Role.CAREGIVER

    @classmethod
    def from_session(
        cls,
        session: Session,
        supabase: Optional[SupabaseClient] = None,
    ) -> "AuthContext":
        identity = session.user
        return cls(
            user_id=identity.id,
            user_email=identity.email,
            access_token=session.access_token,
            supabase=supabase or user_client(session.access_token),
            role=identity.role,
            affiliation=identity.affiliation,
        )


async def get_auth_context(
    authorization: Optional[str] = Header(None),
) -> AuthContext:
    token = _parse_bearer_token(authorization)
    payload = await _verify_access_token(token)
    user_id = _parse_uuid(payload.get("sub"), "user_id")
    user_email = payload.get("email") if isinstance(payload, dict) else None
    metadata = payload.get("user_metadata") or {}

    return AuthContext(
        user_id=user_id,
        user_email=user_email,
        access_token=token,
        supabase=user_client(token),
        role=metadata_role(metadata),
        affiliation=metadata_affiliation(metadata),
    )
