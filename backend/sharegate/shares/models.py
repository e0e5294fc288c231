"""Share-link domain records and Pydantic schemas."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops tzinfo) and convert aware ones."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class ShareableLink:
    """Snapshot of a stored link as returned by a repository."""

    id: int
    owner_id: str
    token: str
    title: str
    description: Optional[str]
    content: str
    content_type: str
    expires_at: Optional[datetime]
    max_views: Optional[int]
    current_views: int
    password_hash: Optional[str]
    is_active: bool
    created_at: datetime

    @property
    def has_password(self) -> bool:
        return self.password_hash is not None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at < now

    @property
    def quota_reached(self) -> bool:
        return self.max_views is not None and self.current_views >= self.max_views


@dataclass
class LinkDraft:
    """Fields for a new link. password_hash is already hashed."""

    title: Optional[str]
    content: Optional[str]
    content_type: Optional[str]
    description: Optional[str] = None
    expires_at: Optional[datetime] = None
    max_views: Optional[int] = None
    password_hash: Optional[str] = None


@dataclass(frozen=True)
class AccessRecord:
    """One granted access. Never mutated after insert."""

    link_id: int
    viewer_identity_hash: Optional[str]
    referrer: Optional[str]
    user_agent: Optional[str]
    viewed_at: datetime = field(default_factory=utcnow)
    id: Optional[int] = None


@dataclass(frozen=True)
class LinkAnalytics:
    """Access records for a link. record_count is the stored row count."""

    link: ShareableLink
    records: List[AccessRecord]
    record_count: int

    @property
    def total_views(self) -> int:
        return self.link.current_views


# Pydantic schemas for API
class LinkCreate(BaseModel):
    """Payload for creating a link. Required fields are checked by the service (400, not 422)."""

    title: Optional[str] = None
    description: Optional[str] = None
    content: Optional[str] = None
    content_type: Optional[str] = None
    expires_at: Optional[datetime] = None
    max_views: Optional[int] = Field(default=None, ge=0)
    password: Optional[str] = None


class LinkUpdate(BaseModel):
    """Partial update. Only fields present in the request body are applied; null clears."""

    title: Optional[str] = None
    description: Optional[str] = None
    expires_at: Optional[datetime] = None
    max_views: Optional[int] = Field(default=None, ge=0)
    is_active: Optional[bool] = None


class LinkResponse(BaseModel):
    """Link as returned to its owner (no password hash, no owner id)."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    token: str
    title: str
    description: Optional[str] = None
    content: str
    content_type: str
    expires_at: Optional[datetime] = None
    max_views: Optional[int] = None
    current_views: int
    is_active: bool
    has_password: bool
    created_at: datetime


class LinkEnvelope(BaseModel):
    link: LinkResponse


class LinkList(BaseModel):
    links: List[LinkResponse]


class SharedContent(BaseModel):
    """Public read response."""

    content: str
    title: str
    description: Optional[str] = None
    content_type: str


class AccessRecordResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    viewer_identity_hash: Optional[str] = None
    referrer: Optional[str] = None
    user_agent: Optional[str] = None
    viewed_at: datetime


class AnalyticsSummary(BaseModel):
    total_views: int
    record_count: int


class AnalyticsResponse(BaseModel):
    link: LinkResponse
    analytics: List[AccessRecordResponse]
    summary: AnalyticsSummary
