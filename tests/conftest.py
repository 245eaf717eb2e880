"""Shared test fixtures."""

from __future__ import annotations

import datetime as dt
from pathlib import Path
from typing import Callable, Optional

import pytest

from src.content.models import Platform, Post, PostStatus, SocialAccount
from src.content.storage import PostStore

NOW = dt.datetime(2026, 3, 1, 12, 0, tzinfo=dt.timezone.utc)


@pytest.fixture
def now() -> dt.datetime:
    """Fixed reference time for scheduling tests."""
    return NOW


@pytest.fixture
def store(tmp_path: Path) -> PostStore:
    """Create a fresh PostStore for each test."""
    with PostStore(tmp_path / "test_autopost.db") as s:
        yield s


@pytest.fixture
def make_account() -> Callable[..., SocialAccount]:
    def _make(
        platform: Platform = Platform.TWITTER,
        *,
        user_id: str = "user-1",
        platform_id: Optional[str] = None,
        access_token: str = "stored-token",
        refresh_token: Optional[str] = "refresh-1",
        expires_at: Optional[dt.datetime] = None,
    ) -> SocialAccount:
        return SocialAccount(
            user_id=user_id,
            platform=platform,
            platform_id=platform_id or f"{platform.value.lower()}-id",
            username="autopost",
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=expires_at,
        )

    return _make


@pytest.fixture
def make_post() -> Callable[..., Post]:
    def _make(
        account: SocialAccount,
        *,
        content: str = "Hello world",
        media_urls: Optional[list[str]] = None,
        status: PostStatus = PostStatus.SCHEDULED,
        scheduled_at: Optional[dt.datetime] = NOW - dt.timedelta(minutes=1),
        platform_post_id: Optional[str] = None,
    ) -> Post:
        return Post(
            user_id=account.user_id,
            social_account_id=account.id,
            content=content,
            media_urls=media_urls or [],
            status=status,
            scheduled_at=scheduled_at,
            platform_post_id=platform_post_id,
            social_account=account,
        )

    return _make
