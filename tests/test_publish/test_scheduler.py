"""
Tests for src/publish/scheduler.py — run_scheduler and run_metrics_refresh.

Platform clients and the token guard are patched; stores are either a
MagicMock (to count writes) or a real PostStore on tmp_path.
"""

from __future__ import annotations

import datetime as dt
import sqlite3
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from src.content.models import Platform, PostMetrics, PostStatus
from src.publish.base import PublishResult
from src.publish.facebook import FacebookClient
from src.publish.instagram import InstagramClient
from src.publish.scheduler import (
    SchedulerRun,
    get_publisher,
    run_metrics_refresh,
    run_scheduler,
)
from src.publish.tokens import RefreshError
from src.publish.twitter import TwitterClient, TwitterError

_TOKEN = "src.publish.scheduler.ensure_valid_token"
_PUBLISH = "src.publish.scheduler.publish_post"
_FETCH = "src.publish.scheduler.fetch_metrics"


def _mock_store(due=(), stale=()) -> MagicMock:
    store = MagicMock()
    store.find_due_posts.return_value = list(due)
    store.find_stale_published.return_value = list(stale)
    return store


# ---------------------------------------------------------------------------
# run_scheduler
# ---------------------------------------------------------------------------


class TestRunScheduler:
    @pytest.mark.asyncio
    async def test_no_due_posts(self, now) -> None:
        store = _mock_store()

        run = await run_scheduler(store, now=now)

        assert run == SchedulerRun(processed=0, results=[])
        store.find_due_posts.assert_called_once_with(now)
        store.update_post.assert_not_called()

    @pytest.mark.asyncio
    async def test_twitter_success_marks_published(self, make_account, make_post, now) -> None:
        post = make_post(make_account(), content="Hello world")
        store = _mock_store(due=[post])

        with patch(_TOKEN, new=AsyncMock(return_value="tok")), patch(
            _PUBLISH, new=AsyncMock(return_value=PublishResult("tweet-123"))
        ) as publish:
            run = await run_scheduler(store, now=now)

        assert run.processed == 1
        [outcome] = run.results
        assert outcome.success is True
        assert outcome.platform_post_id == "tweet-123"
        publish.assert_awaited_once_with(post.social_account, "tok", post)
        store.update_post.assert_called_once_with(
            post.id,
            {
                "status": PostStatus.PUBLISHED,
                "published_at": now,
                "platform_post_id": "tweet-123",
            },
        )

    @pytest.mark.asyncio
    async def test_platform_rejection_marks_failed(self, make_account, make_post, now) -> None:
        post = make_post(make_account())
        store = _mock_store(due=[post])

        with patch(_TOKEN, new=AsyncMock(return_value="tok")), patch(
            _PUBLISH, new=AsyncMock(side_effect=TwitterError("Twitter API error"))
        ):
            run = await run_scheduler(store, now=now)

        [outcome] = run.results
        assert outcome.success is False
        assert outcome.error == "Twitter API error"
        store.update_post.assert_called_once_with(
            post.id, {"status": PostStatus.FAILED, "error_message": "Twitter API error"}
        )

    @pytest.mark.asyncio
    async def test_refresh_error_fails_without_publishing(self, make_account, make_post, now) -> None:
        post = make_post(make_account())
        store = _mock_store(due=[post])
        error = RefreshError("Twitter token expired and no refresh token available")

        with patch(_TOKEN, new=AsyncMock(side_effect=error)), patch(
            _PUBLISH, new=AsyncMock()
        ) as publish:
            run = await run_scheduler(store, now=now)

        publish.assert_not_awaited()
        assert run.results[0].error == "Twitter token expired and no refresh token available"
        assert store.update_post.call_args.args[1]["status"] == PostStatus.FAILED

    @pytest.mark.asyncio
    async def test_mixed_batch_settles_every_post(self, make_account, make_post, now) -> None:
        twitter = make_account(Platform.TWITTER)
        instagram = make_account(Platform.INSTAGRAM)
        facebook = make_account(Platform.FACEBOOK)
        ok_1 = make_post(twitter)
        bad = make_post(instagram, media_urls=[])
        ok_2 = make_post(facebook)
        store = _mock_store(due=[ok_1, bad, ok_2])

        async def fake_publish(account, token, post):
            if post is bad:
                raise ValueError("Instagram requires at least one image")
            return PublishResult(f"id-{post.id}")

        with patch(_TOKEN, new=AsyncMock(return_value="tok")), patch(
            _PUBLISH, new=AsyncMock(side_effect=fake_publish)
        ):
            run = await run_scheduler(store, now=now)

        assert run.processed == 3
        assert [r.post_id for r in run.results] == [ok_1.id, bad.id, ok_2.id]
        assert [r.success for r in run.results] == [True, False, True]
        assert run.published == 2
        assert run.failed == 1
        assert store.update_post.call_count == 3

    @pytest.mark.asyncio
    async def test_missing_account_fails_post(self, make_account, make_post, now) -> None:
        post = make_post(make_account())
        post.social_account = None
        store = _mock_store(due=[post])

        with patch(_PUBLISH, new=AsyncMock()) as publish:
            run = await run_scheduler(store, now=now)

        publish.assert_not_awaited()
        assert "not found" in run.results[0].error
        store.update_post.assert_called_once()

    @pytest.mark.asyncio
    async def test_failed_write_still_reported(self, make_account, make_post, now) -> None:
        first = make_post(make_account())
        second = make_post(make_account())
        store = _mock_store(due=[first, second])

        def update(post_id, fields):
            if post_id == first.id:
                raise sqlite3.OperationalError("database is locked")

        store.update_post.side_effect = update

        with patch(_TOKEN, new=AsyncMock(return_value="tok")), patch(
            _PUBLISH, new=AsyncMock(return_value=PublishResult("t"))
        ):
            run = await run_scheduler(store, now=now)

        assert run.processed == 2
        assert run.results[0].success is False
        assert "database is locked" in run.results[0].error
        assert run.results[1].success is True

    @pytest.mark.asyncio
    async def test_unrecorded_publish_is_marked_failed(self, make_account, make_post, now) -> None:
        post = make_post(make_account())
        store = _mock_store(due=[post])
        store.update_post.side_effect = [sqlite3.OperationalError("disk I/O error"), None]

        with patch(_TOKEN, new=AsyncMock(return_value="tok")), patch(
            _PUBLISH, new=AsyncMock(return_value=PublishResult("tweet-123"))
        ):
            run = await run_scheduler(store, now=now)

        [outcome] = run.results
        assert outcome.success is False
        assert outcome.platform_post_id == "tweet-123"
        assert "disk I/O error" in outcome.error
        fields = store.update_post.call_args_list[1].args[1]
        assert fields["status"] == PostStatus.FAILED
        assert "tweet-123" in fields["error_message"]

    @pytest.mark.asyncio
    async def test_query_failure_propagates(self, now) -> None:
        store = MagicMock()
        store.find_due_posts.side_effect = sqlite3.OperationalError("no such table")

        with pytest.raises(sqlite3.OperationalError):
            await run_scheduler(store, now=now)

    @pytest.mark.asyncio
    async def test_real_store_end_to_end(self, store, make_account, make_post, now) -> None:
        account = store.upsert_account(make_account())
        due = store.create_post(make_post(account))
        later = store.create_post(make_post(account, scheduled_at=now + dt.timedelta(hours=1)))

        with patch(_TOKEN, new=AsyncMock(return_value="tok")), patch(
            _PUBLISH, new=AsyncMock(return_value=PublishResult("tweet-123"))
        ):
            run = await run_scheduler(store, now=now)

        assert run.processed == 1
        published = store.get_post(due.id)
        assert published.status == PostStatus.PUBLISHED
        assert published.platform_post_id == "tweet-123"
        assert published.published_at == now
        assert store.get_post(later.id).status == PostStatus.SCHEDULED
        # A second pass finds nothing left to do.
        assert (await run_scheduler(store, now=now)).processed == 0


class TestGetPublisher:
    @pytest.mark.parametrize(
        "platform, cls",
        [
            (Platform.TWITTER, TwitterClient),
            (Platform.INSTAGRAM, InstagramClient),
            (Platform.FACEBOOK, FacebookClient),
        ],
    )
    def test_picks_client_for_platform(self, make_account, platform, cls) -> None:
        account = make_account(platform, platform_id="TARGET")
        client = get_publisher(account, "tok")
        assert isinstance(client, cls)
        assert client.token == "tok"

    def test_meta_clients_target_platform_id(self, make_account) -> None:
        assert get_publisher(make_account(Platform.INSTAGRAM, platform_id="IG"), "t").account_id == "IG"
        assert get_publisher(make_account(Platform.FACEBOOK, platform_id="PG"), "t").page_id == "PG"


# ---------------------------------------------------------------------------
# run_metrics_refresh
# ---------------------------------------------------------------------------


class TestRunMetricsRefresh:
    @pytest.mark.asyncio
    async def test_uses_staleness_cutoff(self, now) -> None:
        store = _mock_store()

        count = await run_metrics_refresh(store, now=now)

        assert count == 0
        store.find_stale_published.assert_called_once_with(now - dt.timedelta(minutes=50))

    @pytest.mark.asyncio
    async def test_persists_bundle_and_skips_none(self, make_account, make_post, now) -> None:
        account = make_account()
        with_data = make_post(account, status=PostStatus.PUBLISHED, platform_post_id="A")
        no_data = make_post(account, status=PostStatus.PUBLISHED, platform_post_id="B")
        store = _mock_store(stale=[with_data, no_data])
        bundle = PostMetrics(likes=5)

        async def fake_fetch(platform, token, platform_post_id):
            return bundle if platform_post_id == "A" else None

        with patch(_TOKEN, new=AsyncMock(return_value="tok")), patch(
            _FETCH, new=AsyncMock(side_effect=fake_fetch)
        ):
            count = await run_metrics_refresh(store, now=now)

        assert count == 1
        store.update_post.assert_called_once_with(with_data.id, {"metrics": bundle})

    @pytest.mark.asyncio
    async def test_throwing_fetch_does_not_stop_siblings(self, make_account, make_post, now) -> None:
        account = make_account()
        broken = make_post(account, status=PostStatus.PUBLISHED, platform_post_id="A")
        fine = make_post(account, status=PostStatus.PUBLISHED, platform_post_id="B")
        store = _mock_store(stale=[broken, fine])

        async def fake_fetch(platform, token, platform_post_id):
            if platform_post_id == "A":
                raise RuntimeError("unexpected")
            return PostMetrics(likes=1)

        with patch(_TOKEN, new=AsyncMock(return_value="tok")), patch(
            _FETCH, new=AsyncMock(side_effect=fake_fetch)
        ):
            count = await run_metrics_refresh(store, now=now)

        assert count == 1
        [call] = store.update_post.call_args_list
        assert call.args[0] == fine.id
        assert "status" not in call.args[1]

    @pytest.mark.asyncio
    async def test_token_error_is_logged_not_failed(self, make_account, make_post, now) -> None:
        post = make_post(make_account(), status=PostStatus.PUBLISHED, platform_post_id="A")
        store = _mock_store(stale=[post])

        with patch(_TOKEN, new=AsyncMock(side_effect=RefreshError("expired"))), patch(
            _FETCH, new=AsyncMock()
        ) as fetch:
            count = await run_metrics_refresh(store, now=now)

        assert count == 0
        fetch.assert_not_awaited()
        store.update_post.assert_not_called()
