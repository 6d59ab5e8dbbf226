"""Application configuration utilities."""
from __future__ import annotations

import json
import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, Field

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

# The mobile build exposed the same values under EXPO_PUBLIC_ names.
_ENV_KEYS = {
    "supabase_url": ("SUPABASE_URL", "EXPO_PUBLIC_SUPABASE_URL"),
    "supabase_anon_key": ("SUPABASE_ANON_KEY", "EXPO_PUBLIC_SUPABASE_ANON_KEY"),
    "openai_api_key": ("OPENAI_API_KEY", "EXPO_PUBLIC_OPENAI_API_KEY"),
    "openai_model": ("OPENAI_MODEL",),
    "storage_bucket": ("NEULBOM_STORAGE_BUCKET",),
    "session_path": ("NEULBOM_SESSION_PATH",),
}


class AppConfig(BaseModel):
    """Strongly typed configuration merged from config.json and the environment."""

    supabase_url: Optional[str] = None
    supabase_anon_key: Optional[str] = None
    openai_api_key: Optional[str] = None
    openai_model: str = Field(default="gpt-4o-mini")
    storage_bucket: str = Field(default="care-photos")
    session_path: str = Field(default="~/.neulbom/session.json")
    http_timeout: float = Field(default=15.0)

    @property
    def supabase_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_anon_key)

    @property
    def resolved_session_path(self) -> Path:
        """Return the absolute path of the persisted auth session."""
        return Path(self.session_path).expanduser().resolve()

    def require_supabase(self) -> tuple[str, str]:
        if not self.supabase_url or not self.supabase_anon_key:
            raise ConfigurationError(
                "Supabase is not configured. Set SUPABASE_URL and SUPABASE_ANON_KEY."
            )
        return self.supabase_url.rstrip("/"), self.supabase_anon_key

    def require_openai_key(self) -> str:
        if not self.openai_api_key:
            raise ConfigurationError("OpenAI API key is not configured.")
        return self.openai_api_key


def _config_path() -> Path:
    return Path(__file__).resolve().parents[1] / "config.json"


def load_config(
    path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> AppConfig:
    """Load config.json when present, then let environment variables override it."""

    config_file = path or _config_path()
    contents: Dict[str, Any] = {}
    if config_file.exists():
        contents = json.loads(config_file.read_text())

    env = os.environ if environ is None else environ
    for field_name, names in _ENV_KEYS.items():
        for name in names:
            value = env.get(name)
            if value:
                contents[field_name] = value
                break

    config = AppConfig(**contents)
    if not config.supabase_configured:
        logger.warning(
            "Supabase environment is not set; add SUPABASE_URL and SUPABASE_ANON_KEY. "
            "Every backend action will fail until then."
        )
    if not config.openai_api_key:
        logger.warning("OPENAI_API_KEY is not set; AI note polishing is disabled.")
    return config


@lru_cache
def get_config() -> AppConfig:
    return load_config()
