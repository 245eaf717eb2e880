"""
Post and social-account data models.

State machine:
  draft ⇄ scheduled → published
              │   ↑
              ↓   │ (retry)
            failed

Published posts are terminal: no further transitions or content edits.
"""

from __future__ import annotations

import datetime as dt
import uuid
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def as_utc(value: Optional[dt.datetime]) -> Optional[dt.datetime]:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone(dt.timezone.utc)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class Platform(str, Enum):
    TWITTER = "TWITTER"
    INSTAGRAM = "INSTAGRAM"
    FACEBOOK = "FACEBOOK"


class PostStatus(str, Enum):
    DRAFT = "DRAFT"            # no schedule time yet
    SCHEDULED = "SCHEDULED"    # waiting for the scheduler
    PUBLISHED = "PUBLISHED"    # live on the platform
    FAILED = "FAILED"          # scheduler gave up, see error_message


# ---------------------------------------------------------------------------
# Per-platform limits
# ---------------------------------------------------------------------------


class PlatformLimits(BaseModel):
    max_chars: int
    max_media: int


PLATFORM_LIMITS: dict[Platform, PlatformLimits] = {
    Platform.TWITTER: PlatformLimits(max_chars=280, max_media=4),
    Platform.INSTAGRAM: PlatformLimits(max_chars=2200, max_media=10),
    Platform.FACEBOOK: PlatformLimits(max_chars=63206, max_media=10),
}


def check_limits(platform: Platform, content: str, media_urls: list[str]) -> None:
    """Raise ValueError if content or media exceed the platform's limits."""
    limits = PLATFORM_LIMITS[platform]
    if len(content) > limits.max_chars:
        raise ValueError(
            f"{platform.value} posts are limited to {limits.max_chars} characters "
            f"(got {len(content)})."
        )
    if len(media_urls) > limits.max_media:
        raise ValueError(
            f"{platform.value} posts support at most {limits.max_media} media items "
            f"(got {len(media_urls)})."
        )


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class InvalidTransitionError(ValueError):
    """Raised when a post status change is not allowed by the state machine."""


class PostLockedError(InvalidTransitionError):
    """Raised when editing a post that has already been published."""


_ALLOWED: dict[PostStatus, set[PostStatus]] = {
    PostStatus.DRAFT: {PostStatus.SCHEDULED},
    PostStatus.SCHEDULED: {PostStatus.DRAFT, PostStatus.PUBLISHED, PostStatus.FAILED},
    PostStatus.FAILED: {PostStatus.SCHEDULED},
    PostStatus.PUBLISHED: set(),
}


# ---------------------------------------------------------------------------
# Social account
# ---------------------------------------------------------------------------


class SocialAccount(BaseModel):
    """One connected platform identity, owned by a user."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    platform: Platform
    platform_id: str                     # Twitter user id, IG business id, FB page id
    username: str = ""
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[dt.datetime] = None

    created_at: dt.datetime = Field(default_factory=utcnow)
    updated_at: dt.datetime = Field(default_factory=utcnow)

    @field_validator("expires_at", "created_at", "updated_at")
    @classmethod
    def _utc(cls, v: Optional[dt.datetime]) -> Optional[dt.datetime]:
        return as_utc(v)

    def public_dict(self) -> dict:
        """Serialisable view without credentials."""
        return self.model_dump(mode="json", exclude={"access_token", "refresh_token"})


# ---------------------------------------------------------------------------
# Post
# ---------------------------------------------------------------------------


class PostMetrics(BaseModel):
    """Engagement counts normalised across platforms. None means unavailable."""

    likes: Optional[int] = None
    comments: Optional[int] = None
    shares: Optional[int] = None
    impressions: Optional[int] = None
    reach: Optional[int] = None
    saves: Optional[int] = None
    updated_at: dt.datetime = Field(default_factory=utcnow)

    @field_validator("updated_at")
    @classmethod
    def _utc(cls, v: dt.datetime) -> dt.datetime:
        return as_utc(v)  # type: ignore[return-value]


class Post(BaseModel):
    """A unit of schedulable content targeting exactly one social account."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    social_account_id: str
    content: str
    media_urls: list[str] = Field(default_factory=list)
    status: PostStatus = PostStatus.DRAFT

    scheduled_at: Optional[dt.datetime] = None
    published_at: Optional[dt.datetime] = None
    platform_post_id: Optional[str] = None
    error_message: Optional[str] = None
    metrics: Optional[PostMetrics] = None

    created_at: dt.datetime = Field(default_factory=utcnow)
    updated_at: dt.datetime = Field(default_factory=utcnow)

    # Joined by the store for scheduler queries; never persisted on the post row.
    social_account: Optional[SocialAccount] = Field(default=None, exclude=True)

    @field_validator("scheduled_at", "published_at", "created_at", "updated_at")
    @classmethod
    def _utc(cls, v: Optional[dt.datetime]) -> Optional[dt.datetime]:
        return as_utc(v)

    @classmethod
    def compose(
        cls,
        account: SocialAccount,
        content: str,
        media_urls: Optional[list[str]] = None,
        scheduled_at: Optional[dt.datetime] = None,
    ) -> "Post":
        """Create a DRAFT, or a SCHEDULED post when a time is given."""
        media = list(media_urls or [])
        check_limits(account.platform, content, media)
        return cls(
            user_id=account.user_id,
            social_account_id=account.id,
            content=content,
            media_urls=media,
            status=PostStatus.SCHEDULED if scheduled_at else PostStatus.DRAFT,
            scheduled_at=scheduled_at,
            social_account=account,
        )

    @property
    def platform(self) -> Optional[Platform]:
        return self.social_account.platform if self.social_account else None

    def is_due(self, now: Optional[dt.datetime] = None) -> bool:
        """True if the post is scheduled and its time has passed."""
        now = now or utcnow()
        return (
            self.status == PostStatus.SCHEDULED
            and self.scheduled_at is not None
            and self.scheduled_at <= now
        )

    def touch(self) -> None:
        self.updated_at = utcnow()

    def transition_to(self, new_status: PostStatus) -> None:
        """Apply a state transition with validation."""
        if new_status not in _ALLOWED[self.status]:
            raise InvalidTransitionError(
                f"Invalid transition: {self.status.value} → {new_status.value}. "
                f"Allowed: {sorted(s.value for s in _ALLOWED[self.status])}"
            )
        self.status = new_status
        self.touch()

    # ------------------------------------------------------------------
    # User-driven changes
    # ------------------------------------------------------------------

    def edit(
        self,
        content: Optional[str] = None,
        media_urls: Optional[list[str]] = None,
    ) -> None:
        if self.status == PostStatus.PUBLISHED:
            raise PostLockedError("Cannot edit a published post")
        new_content = self.content if content is None else content
        new_media = self.media_urls if media_urls is None else list(media_urls)
        if self.platform is not None:
            check_limits(self.platform, new_content, new_media)
        self.content = new_content
        self.media_urls = new_media
        self.touch()

    def reschedule(self, scheduled_at: Optional[dt.datetime]) -> None:
        """Set (→ SCHEDULED) or clear (→ DRAFT) the publishing time."""
        if self.status == PostStatus.PUBLISHED:
            raise PostLockedError("Cannot edit a published post")
        if scheduled_at is None:
            if self.status == PostStatus.SCHEDULED:
                self.transition_to(PostStatus.DRAFT)
        elif self.status != PostStatus.SCHEDULED:
            self.transition_to(PostStatus.SCHEDULED)
            self.error_message = None
        self.scheduled_at = scheduled_at
        self.touch()

    def retry(self) -> None:
        """Re-queue a failed post, keeping its original (past) scheduled time."""
        if self.status != PostStatus.FAILED:
            raise InvalidTransitionError("Only failed posts can be retried")
        self.transition_to(PostStatus.SCHEDULED)
        self.error_message = None

    def to_dict(self) -> dict:
        return self.model_dump(mode="json")
