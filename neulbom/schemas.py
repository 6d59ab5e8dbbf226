"""Pydantic schemas shared across the client library and the API."""
from __future__ import annotations

import time
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


class Role(str, Enum):
    GUARDIAN = "guardian"
    CAREGIVER = "caregiver"


class Gender(str, Enum):
    MALE = "male"
    FEMALE = "female"


class ActivityTag(str, Enum):
    WALK = "walk"
    PLAY = "play"
    ART = "art"
    READING = "reading"
    SLEEP = "sleep"


class HealthTag(str, Enum):
    MEAL = "meal"
    STABLE = "stable"
    LOW_FEVER = "low-fever"
    COUGH = "cough"
    MEDICATION = "medication"


ACTIVITY_TAGS = [tag.value for tag in ActivityTag]
HEALTH_TAGS = [tag.value for tag in HealthTag]


def metadata_role(metadata: Optional[Dict[str, Any]]) -> Role:
    """Anything other than an explicit caregiver role is a guardian."""
    if (metadata or {}).get("role") == Role.CAREGIVER.value:
        return Role.CAREGIVER
    return Role.GUARDIAN


def metadata_affiliation(metadata: Optional[Dict[str, Any]]) -> Optional[str]:
    raw = (metadata or {}).get("affiliation")
    if isinstance(raw, str) and raw.strip():
        return raw.strip()
    return None


class Identity(BaseModel):
    """The signed-in user as issued by the identity provider."""

    id: str
    email: Optional[str] = None
    user_metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("user_metadata", mode="before")
    @classmethod
    def _default_metadata(cls, value: Any) -> Any:
        return value or {}

    @property
    def role(self) -> Role:
        return metadata_role(self.user_metadata)

    @property
    def affiliation(self) -> Optional[str]:
        return metadata_affiliation(self.user_metadata)


class Session(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "bearer"
    expires_at: Optional[int] = None
    user: Identity

    def is_expired(self, *, leeway: int = 10, now: Optional[float] = None) -> bool:
        if self.expires_at is None:
            return False
        current = time.time() if now is None else now
        return self.expires_at <= current + leeway


class UserProfile(BaseModel):
    id: str
    email: str = ""
    name: str
    role: Role
    affiliation: Optional[str] = None


class GuardianOption(BaseModel):
    id: str
    name: Optional[str] = None
    email: Optional[str] = None


class Ward(BaseModel):
    id: str
    name: str
    birth_date: Optional[str] = None
    gender: Optional[Gender] = None
    affiliation: Optional[str] = None
    guardian_id: Optional[str] = None
    caregiver_id: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> Any:
        return str(value) if value is not None else value


class WardDraft(BaseModel):
    name: str = ""
    birth_date: str = Field(default="", description="YYYY-MM-DD")
    gender: Optional[Gender] = None
    guardian_id: Optional[str] = None


class Note(BaseModel):
    id: str
    created_at: Optional[datetime] = None
    ward_id: str
    caregiver_id: Optional[str] = None
    details: Optional[str] = None
    meal: Optional[str] = None
    ai_note: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    photos: List[str] = Field(default_factory=list)

    @field_validator("id", "ward_id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> Any:
        return str(value) if value is not None else value

    @field_validator("tags", "photos", mode="before")
    @classmethod
    def _default_list(cls, value: Any) -> Any:
        return value or []


class NoteDraft(BaseModel):
    ward_id: Optional[str] = None
    text: str = Field(default="", description="Final note text, typed or AI polished")
    meal: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    photos: List[str] = Field(
        default_factory=list,
        description="Already uploaded photo URLs to keep, in display order",
    )
    new_photos: List[str] = Field(
        default_factory=list,
        description="Local photo URIs to upload on save",
    )


class CommentAuthor(BaseModel):
    id: str
    name: Optional[str] = None
    role: Optional[Role] = None


class Comment(BaseModel):
    id: str
    note_id: Optional[str] = None
    user_id: str
    text: str
    created_at: Optional[datetime] = None
    user: Optional[CommentAuthor] = None

    @field_validator("id", "note_id", mode="before")
    @classmethod
    def _stringify_id(cls, value: Any) -> Any:
        return str(value) if value is not None else value
