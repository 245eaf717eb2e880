"""
Instagram Graph API publishing client.

Docs: https://developers.facebook.com/docs/instagram-api/guides/content-publishing
Rate limits: 50 API calls/hour, 25 posts per 24-hour period

Credentials come from the connected SocialAccount: a long-lived Page token
and the Instagram Business account id (``platform_id``).

Flow (single image):
  1. POST /{user_id}/media                  → container_id
  2. GET  /{container_id}?fields=status_code until FINISHED
  3. POST /{user_id}/media_publish          → post_id

Flow (carousel — up to 10 images):
  1. For each image: POST /{user_id}/media (is_carousel_item=true) and
     wait for FINISHED                                            → child_ids
  2. POST /{user_id}/media with CAROUSEL + children=[child_ids]    → parent_id
  3. Wait for the parent to be FINISHED
  4. POST /{user_id}/media_publish with creation_id=parent_id     → post_id

Text-only posts are not supported by the API.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from src.content.models import Platform
from src.publish.base import (
    BasePublisher,
    MediaRequiredError,
    PublishError,
    PublishResult,
)

logger = logging.getLogger(__name__)

_CAROUSEL_MAX = 10


class InstagramError(PublishError):
    """Raised when the Instagram Graph API returns an error response."""


class InstagramClient(BasePublisher):
    """
    Async wrapper around the Instagram Content Publishing API.

    Usage::

        async with InstagramClient(token, account_id) as client:
            post_id = await client.post_image("https://example.com/img.jpg", "Caption")
            post_id = await client.post_carousel(
                ["https://example.com/slide1.jpg", "https://example.com/slide2.jpg"],
                caption="My carousel",
            )
    """

    platform = Platform.INSTAGRAM
    error_cls = InstagramError

    def __init__(
        self,
        access_token: Optional[str] = None,
        account_id: Optional[str] = None,
        *,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
        poll_timeout: Optional[float] = None,
    ) -> None:
        from config.settings import settings

        super().__init__(
            access_token,
            base_url=base_url or settings.graph_api_base,
            timeout=timeout,
        )
        self.account_id = account_id or ""
        self.poll_interval = (
            settings.instagram_poll_interval_seconds if poll_interval is None else poll_interval
        )
        self.poll_timeout = (
            settings.instagram_poll_timeout_seconds if poll_timeout is None else poll_timeout
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _post(self, path: str, data: dict, phase: str) -> dict:
        """POST to the Graph API and return parsed JSON, raising on error."""
        data["access_token"] = self.token
        resp = await self._http.post(path, data=data)
        return self._check(resp, phase)

    async def _get(self, path: str, params: dict, phase: str) -> dict:
        params["access_token"] = self.token
        resp = await self._http.get(path, params=params)
        return self._check(resp, phase)

    # ------------------------------------------------------------------
    # Container creation
    # ------------------------------------------------------------------

    async def create_image_container(
        self,
        image_url: str,
        caption: str = "",
        *,
        is_carousel_item: bool = False,
    ) -> str:
        """
        Create a single-image media container.

        Returns the container_id (not yet published).
        """
        payload: dict = {"image_url": image_url}
        if is_carousel_item:
            payload["is_carousel_item"] = "true"
        else:
            payload["caption"] = caption

        body = await self._post(
            f"/{self.account_id}/media", payload, "Instagram container creation failed"
        )
        container_id: str = body["id"]
        logger.info("Created image container: %s", container_id)
        return container_id

    async def create_carousel_container(
        self,
        children_ids: list[str],
        caption: str = "",
    ) -> str:
        """
        Create a carousel parent container from existing child containers.

        Returns the parent container_id.
        """
        payload = {
            "media_type": "CAROUSEL",
            "caption": caption,
            "children": ",".join(children_ids),
        }
        body = await self._post(
            f"/{self.account_id}/media", payload, "Instagram carousel creation failed"
        )
        container_id: str = body["id"]
        logger.info("Created carousel container: %s (%d children)", container_id, len(children_ids))
        return container_id

    async def get_container_status(self, container_id: str) -> str:
        body = await self._get(
            f"/{container_id}",
            {"fields": "status_code"},
            "Instagram container status check failed",
        )
        return str(body.get("status_code", ""))

    async def wait_until_ready(self, container_id: str) -> None:
        """
        Poll a container until Instagram has finished processing it.

        Raises InstagramError if the container reports ERROR or is still not
        FINISHED after ``poll_timeout`` seconds.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.poll_timeout
        while True:
            status = await self.get_container_status(container_id)
            if status == "FINISHED":
                return
            if status == "ERROR":
                raise InstagramError(
                    f"Instagram container {container_id} failed processing",
                    body={"status_code": status},
                )
            if loop.time() >= deadline:
                raise InstagramError(
                    f"Instagram container {container_id} not ready after "
                    f"{self.poll_timeout:g}s (status {status or 'unknown'})",
                    body={"status_code": status},
                )
            await asyncio.sleep(self.poll_interval)

    async def publish_container(self, container_id: str) -> str:
        """
        Publish a previously created media container.

        Returns the media_id (the published post's ID).
        """
        body = await self._post(
            f"/{self.account_id}/media_publish",
            {"creation_id": container_id},
            "Instagram publish failed",
        )
        post_id: str = body["id"]
        logger.info("Published container %s → post %s", container_id, post_id)
        return post_id

    # ------------------------------------------------------------------
    # High-level helpers
    # ------------------------------------------------------------------

    async def post_image(self, image_url: str, caption: str) -> str:
        """
        Create, await and publish a single-image post.

        Returns the post_id.
        """
        container_id = await self.create_image_container(image_url, caption)
        await self.wait_until_ready(container_id)
        return await self.publish_container(container_id)

    async def post_carousel(self, image_urls: list[str], caption: str) -> str:
        """
        Create and publish a carousel post (2–10 images).

        Children are created one after another. Returns the post_id.
        """
        if not image_urls:
            raise MediaRequiredError("Carousel requires at least one image URL.")
        if len(image_urls) > _CAROUSEL_MAX:
            raise ValueError(
                f"Instagram carousels support at most {_CAROUSEL_MAX} images "
                f"(got {len(image_urls)})."
            )

        children: list[str] = []
        for url in image_urls:
            child_id = await self.create_image_container(url, is_carousel_item=True)
            await self.wait_until_ready(child_id)
            children.append(child_id)

        parent_id = await self.create_carousel_container(children, caption)
        await self.wait_until_ready(parent_id)
        return await self.publish_container(parent_id)

    async def publish(self, content: str, media_urls: list[str]) -> PublishResult:
        if not media_urls:
            raise MediaRequiredError("Instagram requires at least one image")
        media = self._cap_media(media_urls)
        if len(media) == 1:
            post_id = await self.post_image(media[0], content)
        else:
            post_id = await self.post_carousel(media, content)
        return PublishResult(post_id=post_id)

    # ------------------------------------------------------------------
    # Insights / Analytics
    # ------------------------------------------------------------------

    async def get_media_insights(
        self,
        media_id: str,
        metrics: tuple[str, ...] = (
            "impressions",
            "reach",
            "likes",
            "comments",
            "saves",
        ),
    ) -> dict[str, Optional[int]]:
        """
        Fetch performance metrics for a published post.

        Returns a dict like ``{"impressions": 1200, "reach": 950, ...}``.
        """
        body = await self._get(
            f"/{media_id}/insights",
            {"metric": ",".join(metrics)},
            "Instagram insights fetch failed",
        )
        result: dict[str, Optional[int]] = {}
        for item in body.get("data", []):
            values = item.get("values") or [{}]
            result[item["name"]] = values[0].get("value")
        return result
