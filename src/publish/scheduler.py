"""
Scheduled publishing and metrics refresh.

``run_scheduler`` is one pass over the queue: it loads every SCHEDULED post
whose ``scheduled_at`` has passed, and for each one (concurrently) obtains a
valid token, publishes through the platform client and records the outcome
with a single store update:

  success → PUBLISHED, published_at, platform_post_id
  failure → FAILED, error_message

Posts are settled independently; one failure never stops the others.
Only a failure of the initial query propagates to the caller.

``run_metrics_refresh`` re-fetches engagement for published posts whose
metrics are missing or older than the staleness window.

Both functions are driven by ``TimerDriver`` (src/publish/driver.py), the
``POST /api/schedule`` trigger and the ``publish run-due`` CLI command.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
from dataclasses import asdict, dataclass, field
from typing import TYPE_CHECKING, Optional

from src.content.models import Platform, Post, PostStatus, SocialAccount, utcnow
from src.publish.analytics import fetch_metrics
from src.publish.base import BasePublisher, PublishResult
from src.publish.facebook import FacebookClient
from src.publish.instagram import InstagramClient
from src.publish.tokens import ensure_valid_token
from src.publish.twitter import TwitterClient

if TYPE_CHECKING:
    from src.content.storage import PostStore

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass
class PostOutcome:
    post_id: str
    success: bool
    platform_post_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class SchedulerRun:
    processed: int = 0
    results: list[PostOutcome] = field(default_factory=list)

    @property
    def published(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return self.processed - self.published

    def to_dict(self) -> dict:
        return asdict(self)


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


def get_publisher(account: SocialAccount, access_token: str) -> BasePublisher:
    """Build the platform client for ``account``."""
    if account.platform == Platform.TWITTER:
        return TwitterClient(access_token)
    if account.platform == Platform.INSTAGRAM:
        return InstagramClient(access_token, account.platform_id)
    return FacebookClient(access_token, account.platform_id)


async def publish_post(account: SocialAccount, access_token: str, post: Post) -> PublishResult:
    async with get_publisher(account, access_token) as client:
        return await client.publish(post.content, post.media_urls)


def _error_text(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__


async def _process_due_post(post: Post, store: "PostStore", now: dt.datetime) -> PostOutcome:
    try:
        account = post.social_account
        if account is None:
            raise LookupError(f"Social account {post.social_account_id} not found")
        token = await ensure_valid_token(account, store)
        result = await publish_post(account, token, post)
    except Exception as exc:
        message = _error_text(exc)
        logger.warning("Post %s failed: %s", post.id, message)
        await asyncio.to_thread(
            store.update_post,
            post.id,
            {"status": PostStatus.FAILED, "error_message": message},
        )
        return PostOutcome(post_id=post.id, success=False, error=message)

    try:
        await asyncio.to_thread(
            store.update_post,
            post.id,
            {
                "status": PostStatus.PUBLISHED,
                "published_at": now,
                "platform_post_id": result.post_id,
            },
        )
    except Exception as exc:
        # Leaving the post SCHEDULED would publish it again on the next pass.
        message = f"Published as {result.post_id} but could not be recorded: {_error_text(exc)}"
        logger.error("Post %s: %s", post.id, message)
        await asyncio.to_thread(
            store.update_post,
            post.id,
            {"status": PostStatus.FAILED, "error_message": message},
        )
        return PostOutcome(
            post_id=post.id, success=False, platform_post_id=result.post_id, error=message
        )

    logger.info("Published post %s on %s → %s", post.id, account.platform.value, result.post_id)
    return PostOutcome(post_id=post.id, success=True, platform_post_id=result.post_id)


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


async def run_scheduler(store: "PostStore", *, now: Optional[dt.datetime] = None) -> SchedulerRun:
    """Publish every due post. Returns one outcome per post processed."""
    now = now or utcnow()
    due = await asyncio.to_thread(store.find_due_posts, now)
    if not due:
        logger.debug("No posts due at %s", now.isoformat())
        return SchedulerRun()

    logger.info("Publishing %d due post(s)", len(due))
    settled = await asyncio.gather(
        *(_process_due_post(post, store, now) for post in due),
        return_exceptions=True,
    )

    results: list[PostOutcome] = []
    for post, outcome in zip(due, settled):
        if isinstance(outcome, PostOutcome):
            results.append(outcome)
        else:
            # The failure update itself could not be written.
            logger.error("Could not record outcome for post %s: %s", post.id, outcome)
            results.append(PostOutcome(post_id=post.id, success=False, error=_error_text(outcome)))

    run = SchedulerRun(processed=len(due), results=results)
    logger.info("Scheduler run: %d published, %d failed", run.published, run.failed)
    return run


async def _refresh_post_metrics(post: Post, store: "PostStore") -> bool:
    try:
        account = post.social_account
        if account is None or not post.platform_post_id:
            return False
        token = await ensure_valid_token(account, store)
        metrics = await fetch_metrics(account.platform, token, post.platform_post_id)
        if metrics is None:
            return False
        await asyncio.to_thread(store.update_post, post.id, {"metrics": metrics})
        return True
    except Exception as exc:
        logger.warning("Metrics refresh failed for post %s: %s", post.id, exc)
        return False


async def run_metrics_refresh(
    store: "PostStore",
    *,
    now: Optional[dt.datetime] = None,
    staleness: Optional[dt.timedelta] = None,
) -> int:
    """Refresh stale engagement metrics. Returns the number of posts updated."""
    if staleness is None:
        from config.settings import settings

        staleness = dt.timedelta(minutes=settings.metrics_staleness_minutes)
    now = now or utcnow()

    stale = await asyncio.to_thread(store.find_stale_published, now - staleness)
    if not stale:
        return 0

    updated = await asyncio.gather(*(_refresh_post_metrics(p, store) for p in stale))
    count = sum(1 for ok in updated if ok)
    logger.info("Refreshed metrics for %d/%d post(s)", count, len(stale))
    return count
