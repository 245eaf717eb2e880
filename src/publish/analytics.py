"""
Post performance metrics.

One fetcher per platform turns the platform's engagement payload into a
``PostMetrics`` bundle. Fetchers never raise: any failure (network, auth,
unexpected shape) is logged and reported as ``None``, which callers treat as
"no new data".

Field mapping:
  Twitter   : like_count → likes, reply_count → comments,
              retweet_count → shares, impression_count → impressions
  Facebook  : likes.summary.total_count, comments.summary.total_count,
              shares.count, insights post_impressions
  Instagram : impressions, reach, likes, comments, saves (no shares)
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from src.content.models import Platform, PostMetrics, utcnow
from src.publish.facebook import FacebookClient
from src.publish.instagram import InstagramClient
from src.publish.twitter import TwitterClient

logger = logging.getLogger(__name__)


def _int_or_none(value: Any) -> Optional[int]:
    return int(value) if isinstance(value, (int, float)) else None


# ---------------------------------------------------------------------------
# Mapping
# ---------------------------------------------------------------------------


def twitter_metrics(public_metrics: dict) -> PostMetrics:
    return PostMetrics(
        likes=_int_or_none(public_metrics.get("like_count")),
        comments=_int_or_none(public_metrics.get("reply_count")),
        shares=_int_or_none(public_metrics.get("retweet_count")),
        impressions=_int_or_none(public_metrics.get("impression_count")),
        updated_at=utcnow(),
    )


def facebook_metrics(body: dict) -> PostMetrics:
    def summary_count(key: str) -> Optional[int]:
        return _int_or_none(((body.get(key) or {}).get("summary") or {}).get("total_count"))

    impressions = None
    for item in (body.get("insights") or {}).get("data") or []:
        if item.get("name") == "post_impressions":
            values = item.get("values") or [{}]
            impressions = _int_or_none(values[0].get("value"))

    return PostMetrics(
        likes=summary_count("likes"),
        comments=summary_count("comments"),
        shares=_int_or_none((body.get("shares") or {}).get("count")),
        impressions=impressions,
        updated_at=utcnow(),
    )


def instagram_metrics(insights: dict) -> PostMetrics:
    return PostMetrics(
        likes=_int_or_none(insights.get("likes")),
        comments=_int_or_none(insights.get("comments")),
        impressions=_int_or_none(insights.get("impressions")),
        reach=_int_or_none(insights.get("reach")),
        saves=_int_or_none(insights.get("saves")),
        updated_at=utcnow(),
    )


# ---------------------------------------------------------------------------
# Fetchers
# ---------------------------------------------------------------------------


async def fetch_twitter_metrics(
    access_token: str,
    tweet_id: str,
    *,
    client: Optional[TwitterClient] = None,
) -> Optional[PostMetrics]:
    try:
        async with client or TwitterClient(access_token) as api:
            public_metrics = await api.get_tweet_metrics(tweet_id)
        if not public_metrics:
            return None
        return twitter_metrics(public_metrics)
    except Exception as exc:
        logger.warning("Twitter metrics unavailable for %s: %s", tweet_id, exc)
        return None


async def fetch_facebook_metrics(
    access_token: str,
    post_id: str,
    *,
    client: Optional[FacebookClient] = None,
) -> Optional[PostMetrics]:
    try:
        async with client or FacebookClient(access_token) as api:
            body = await api.get_post_engagement(post_id)
        return facebook_metrics(body)
    except Exception as exc:
        logger.warning("Facebook metrics unavailable for %s: %s", post_id, exc)
        return None


async def fetch_instagram_metrics(
    access_token: str,
    media_id: str,
    *,
    client: Optional[InstagramClient] = None,
) -> Optional[PostMetrics]:
    try:
        async with client or InstagramClient(access_token) as api:
            insights = await api.get_media_insights(media_id)
        return instagram_metrics(insights)
    except Exception as exc:
        logger.warning("Instagram metrics unavailable for %s: %s", media_id, exc)
        return None


_FETCHERS = {
    Platform.TWITTER: fetch_twitter_metrics,
    Platform.FACEBOOK: fetch_facebook_metrics,
    Platform.INSTAGRAM: fetch_instagram_metrics,
}


async def fetch_metrics(
    platform: Platform,
    access_token: str,
    platform_post_id: str,
) -> Optional[PostMetrics]:
    """Fetch and normalise engagement for one published post."""
    return await _FETCHERS[platform](access_token, platform_post_id)
