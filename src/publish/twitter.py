"""
X/Twitter publishing client over plain HTTP (OAuth 2.0 user tokens).

Flow (tweet with images, up to 4):
  1. GET  <media url>                               → raw bytes
  2. POST upload.twitter.com/1.1/media/upload.json  → media_id_string
  3. POST api.twitter.com/2/tweets {text, media}    → tweet id

Tokens expire (typically after 2 hours) and are renewed with
``refresh_access_token`` against ``/2/oauth2/token`` using the app's
client credentials.
"""

from __future__ import annotations

import datetime as dt
import logging
from typing import Optional

from src.content.models import Platform, utcnow
from src.publish.base import BasePublisher, PublishError, PublishResult, TokenGrant

logger = logging.getLogger(__name__)


class TwitterError(PublishError):
    """Raised when the X/Twitter API returns an error."""


class TwitterClient(BasePublisher):
    """
    Async wrapper around the X/Twitter v2 API (and v1.1 media upload).

    Usage::

        async with TwitterClient(access_token) as client:
            result = await client.publish("Hello, world!", ["https://…/img.jpg"])
    """

    platform = Platform.TWITTER
    error_cls = TwitterError

    def __init__(
        self,
        access_token: Optional[str] = None,
        *,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        api_base: Optional[str] = None,
        upload_base: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> None:
        from config.settings import settings

        super().__init__(access_token, timeout=timeout)
        self.client_id = client_id or settings.twitter_client_id
        self.client_secret = client_secret or settings.twitter_client_secret
        self.api_base = (api_base or settings.twitter_api_base).rstrip("/")
        self.upload_base = (upload_base or settings.twitter_upload_base).rstrip("/")

    @property
    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}

    # ------------------------------------------------------------------
    # Media
    # ------------------------------------------------------------------

    async def fetch_media(self, url: str) -> tuple[bytes, str]:
        """Download a media file. Returns (content, content_type)."""
        resp = await self._http.get(url, follow_redirects=True)
        if not resp.is_success:
            raise TwitterError(f"Failed to fetch media from {url}", body=resp.status_code)
        content_type = resp.headers.get("content-type", "application/octet-stream")
        return resp.content, content_type

    async def upload_media(self, url: str) -> str:
        """
        Fetch a media URL and upload it via the v1.1 media endpoint.

        Returns the media_id_string to attach to a tweet.
        """
        content, content_type = await self.fetch_media(url)
        resp = await self._http.post(
            f"{self.upload_base}/1.1/media/upload.json",
            headers=self._auth_headers,
            files={"media": ("media", content, content_type)},
        )
        body = self._check(resp, "Twitter media upload failed")
        media_id = body.get("media_id_string")
        if not media_id:
            raise TwitterError("Twitter media upload failed: no media_id_string", body=body)
        logger.info("Uploaded media %s → %s", url, media_id)
        return str(media_id)

    # ------------------------------------------------------------------
    # Tweet
    # ------------------------------------------------------------------

    async def post_tweet(self, text: str, media_ids: Optional[list[str]] = None) -> str:
        """Create a tweet, optionally with already-uploaded media. Returns its id."""
        payload: dict = {"text": text}
        if media_ids:
            payload["media"] = {"media_ids": media_ids}
        resp = await self._http.post(
            f"{self.api_base}/2/tweets",
            headers=self._auth_headers,
            json=payload,
        )
        body = self._check(resp, "Twitter publish failed")
        tweet_id = (body.get("data") or {}).get("id")
        if not tweet_id:
            raise TwitterError("Twitter publish failed: response had no tweet id", body=body)
        logger.info("Posted tweet %s", tweet_id)
        return str(tweet_id)

    async def publish(self, content: str, media_urls: list[str]) -> PublishResult:
        media_ids = [await self.upload_media(url) for url in self._cap_media(media_urls)]
        tweet_id = await self.post_tweet(content, media_ids)
        return PublishResult(
            post_id=tweet_id,
            url=f"https://twitter.com/i/web/status/{tweet_id}",
        )

    # ------------------------------------------------------------------
    # OAuth 2.0 refresh
    # ------------------------------------------------------------------

    async def refresh_access_token(self, refresh_token: str) -> TokenGrant:
        """Exchange a refresh token for a new access/refresh token pair."""
        resp = await self._http.post(
            f"{self.api_base}/2/oauth2/token",
            data={
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "client_id": self.client_id,
            },
            auth=(self.client_id, self.client_secret),
        )
        body = self._check(resp, "Twitter token refresh failed")
        if not body.get("access_token"):
            raise TwitterError("Twitter token refresh failed: no access_token", body=body)

        expires_at: Optional[dt.datetime] = None
        if body.get("expires_in") is not None:
            expires_at = utcnow() + dt.timedelta(seconds=int(body["expires_in"]))
        logger.info("Refreshed Twitter access token (expires %s)", expires_at)
        return TokenGrant(
            access_token=body["access_token"],
            refresh_token=body.get("refresh_token"),
            expires_at=expires_at,
        )

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------

    async def get_tweet_metrics(self, tweet_id: str) -> Optional[dict[str, int]]:
        """
        Fetch public metrics for a tweet.

        Returns a dict like ``{"like_count": 42, "retweet_count": 10, ...}``,
        or None when the tweet carries no public_metrics.
        """
        resp = await self._http.get(
            f"{self.api_base}/2/tweets/{tweet_id}",
            headers=self._auth_headers,
            params={"tweet.fields": "public_metrics"},
        )
        body = self._check(resp, f"Failed to fetch metrics for {tweet_id}")
        return (body.get("data") or {}).get("public_metrics")
