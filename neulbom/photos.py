"""Upload photos attached to activity notes into Supabase Storage."""
from __future__ import annotations

import asyncio
import ipaddress
import logging
import mimetypes
import re
import time
from pathlib import Path
from typing import List, Optional, Sequence, Tuple
from urllib.parse import urlparse
from urllib.request import url2pathname
from uuid import uuid4

import httpx

from .errors import PhotoReadError, PhotoUploadError, RemoteError
from .supabase import SupabaseClient

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "image/jpeg"
DEFAULT_EXTENSION = "jpg"
_EXTENSION_PATTERN = re.compile(r"\.([a-zA-Z0-9]{2,4})$")


def file_extension(uri: str, content_type: Optional[str]) -> str:
    """Extension from the URI path, else one registered for the content type."""
    match = _EXTENSION_PATTERN.search(urlparse(uri).path)
    if match:
        return match.group(1).lower()
    mime = (content_type or "").split(";")[0].strip().lower()
    if not mime:
        return DEFAULT_EXTENSION
    guessed = mimetypes.guess_extension(mime)
    if guessed:
        return guessed.lstrip(".")
    subtype = mime.split("/")[-1].split("+")[0].strip()
    return subtype or DEFAULT_EXTENSION


async def _resolve_addresses(host: str) -> List[str]:
    try:
        return [str(ipaddress.ip_address(host))]
    except ValueError:
        pass
    infos = await asyncio.get_running_loop().getaddrinfo(host, None)
    return [info[4][0] for info in infos]


def _is_internal(address: str) -> bool:
    ip = ipaddress.ip_address(address.split("%")[0])
    if ip.version == 6 and ip.ipv4_mapped:
        ip = ip.ipv4_mapped
    return (
        ip.is_private
        or ip.is_loopback
        or ip.is_link_local
        or ip.is_reserved
        or ip.is_multicast
        or ip.is_unspecified
    )


def build_storage_key(
    owner_segment: str,
    extension: str,
    *,
    now: Optional[float] = None,
    token: Optional[str] = None,
) -> str:
    millis = int((time.time() if now is None else now) * 1000)
    return f"{owner_segment}/{millis}-{token or uuid4().hex[:12]}.{extension}"


class PhotoUploader:
    """Reads photos and stores them in a public bucket.

    With ``allow_local_files=False`` only http(s) URLs on public addresses are
    fetched: local paths and hosts resolving to private, loopback or
    link-local ranges are refused.
    """

    def __init__(
        self,
        supabase: SupabaseClient,
        bucket: str,
        *,
        allow_local_files: bool = True,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._supabase = supabase
        self._bucket = bucket
        self._allow_local_files = allow_local_files
        self._timeout = timeout
        self._transport = transport

    async def _check_host(self, uri: str, host: Optional[str]) -> None:
        if self._allow_local_files:
            return
        addresses = await _resolve_addresses(host) if host else []
        if not addresses or any(_is_internal(address) for address in addresses):
            logger.warning("refused photo from internal address", extra={"uri": uri})
            raise PhotoReadError(f"Unsupported photo location: {uri}")

    async def read(self, uri: str) -> Tuple[bytes, str]:
        """Return the resource bytes and its image content type."""
        parsed = urlparse(uri)
        try:
            if parsed.scheme in ("http", "https"):
                await self._check_host(uri, parsed.hostname)
                async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                    resp = await client.get(uri)
                resp.raise_for_status()
                content = resp.content
                content_type = resp.headers.get("content-type") or DEFAULT_CONTENT_TYPE
            else:
                if not self._allow_local_files or parsed.scheme not in ("", "file"):
                    raise PhotoReadError(f"Unsupported photo location: {uri}")
                path = Path(url2pathname(parsed.path)) if parsed.scheme == "file" else Path(uri)
                content = path.read_bytes()
                content_type = mimetypes.guess_type(path.name)[0] or DEFAULT_CONTENT_TYPE
        except (httpx.HTTPError, OSError) as exc:
            logger.error("could not read photo %s: %s", uri, exc)
            raise PhotoReadError("Could not load the photo. Please try again.") from exc
        content_type = content_type.split(";")[0].strip().lower()
        if not content_type.startswith("image/"):
            logger.warning("refused non-image photo", extra={"uri": uri, "content_type": content_type})
            raise PhotoReadError("Only image files can be attached.")
        return content, content_type

    async def upload(self, uri: str, owner_segment: str) -> str:
        """Upload one photo and return its public URL."""
        content, content_type = await self.read(uri)
        key = build_storage_key(owner_segment, file_extension(uri, content_type))
        try:
            await self._supabase.upload_object(self._bucket, key, content, content_type)
        except RemoteError as exc:
            raise PhotoUploadError(f"Storage rejected the photo upload: {exc.message}") from exc
        logger.info("photo uploaded", extra={"bucket": self._bucket, "key": key})
        return self._supabase.public_url(self._bucket, key)

    async def upload_all(self, uris: Sequence[str], owner_segment: str) -> List[str]:
        urls: List[str] = []
        for uri in uris:
            urls.append(await self.upload(uri, owner_segment))
        return urls
