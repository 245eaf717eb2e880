"""
Facebook Page publishing client (Graph API).

Flow:
  text only       : POST /{page_id}/feed   {message}
  one photo       : POST /{page_id}/photos {url, caption}          → post_id | id
  several photos  : POST /{page_id}/photos {url, published=false}  per photo
                    POST /{page_id}/feed   {message, attached_media=[{media_fbid}]}

Page access tokens obtained through the OAuth flow do not expire.
"""

from __future__ import annotations

import logging
from typing import Optional

from src.content.models import Platform
from src.publish.base import BasePublisher, PublishError, PublishResult

logger = logging.getLogger(__name__)

# Fields requested when refreshing engagement counts for a Page post.
METRIC_FIELDS = (
    "likes.summary(true)",
    "comments.summary(true)",
    "shares",
    "insights.metric(post_impressions)",
)


class FacebookError(PublishError):
    """Raised when the Graph API rejects a Page publishing call."""


class FacebookClient(BasePublisher):
    """
    Async wrapper around Page feed and photo publishing.

    Usage::

        async with FacebookClient(page_token, page_id) as client:
            post_id = await client.post_text("Hello from the page")
    """

    platform = Platform.FACEBOOK
    error_cls = FacebookError

    def __init__(
        self,
        access_token: Optional[str] = None,
        page_id: Optional[str] = None,
        *,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> None:
        from config.settings import settings

        super().__init__(
            access_token,
            base_url=base_url or settings.graph_api_base,
            timeout=timeout,
        )
        self.page_id = page_id or ""

    async def _post(self, path: str, payload: dict, phase: str) -> dict:
        payload["access_token"] = self.token
        resp = await self._http.post(path, json=payload)
        return self._check(resp, phase)

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    async def post_text(self, message: str) -> str:
        body = await self._post(
            f"/{self.page_id}/feed", {"message": message}, "Facebook publish failed"
        )
        logger.info("Posted to page %s → %s", self.page_id, body["id"])
        return str(body["id"])

    async def post_photo(self, image_url: str, caption: str) -> str:
        """Publish a single photo. Returns the feed post id when Facebook gives one."""
        body = await self._post(
            f"/{self.page_id}/photos",
            {"url": image_url, "caption": caption},
            "Facebook photo post failed",
        )
        post_id = str(body.get("post_id") or body["id"])
        logger.info("Posted photo to page %s → %s", self.page_id, post_id)
        return post_id

    async def upload_unpublished_photo(self, image_url: str) -> str:
        """Upload a photo without creating a story. Returns its media_fbid."""
        body = await self._post(
            f"/{self.page_id}/photos",
            {"url": image_url, "published": False},
            "Facebook photo upload failed",
        )
        return str(body["id"])

    async def post_photos(self, image_urls: list[str], message: str) -> str:
        """Publish one feed post carrying several photos, in the given order."""
        media_fbids = [await self.upload_unpublished_photo(url) for url in image_urls]
        body = await self._post(
            f"/{self.page_id}/feed",
            {
                "message": message,
                "attached_media": [{"media_fbid": fbid} for fbid in media_fbids],
            },
            "Facebook publish failed",
        )
        logger.info(
            "Posted %d photos to page %s → %s", len(media_fbids), self.page_id, body["id"]
        )
        return str(body["id"])

    async def publish(self, content: str, media_urls: list[str]) -> PublishResult:
        media = self._cap_media(media_urls)
        if not media:
            post_id = await self.post_text(content)
        elif len(media) == 1:
            post_id = await self.post_photo(media[0], content)
        else:
            post_id = await self.post_photos(media, content)
        return PublishResult(post_id=post_id, url=f"https://www.facebook.com/{post_id}")

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------

    async def get_post_engagement(self, post_id: str) -> dict:
        """Raw engagement fields of a Page post (likes, comments, shares, insights)."""
        resp = await self._http.get(
            f"/{post_id}",
            params={"fields": ",".join(METRIC_FIELDS), "access_token": self.token},
        )
        return self._check(resp, f"Failed to fetch metrics for {post_id}")
