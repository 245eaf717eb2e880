"""
Shared contract for the per-platform publishing clients.

Every client wraps one ``httpx.AsyncClient`` (``self._http``), exposes
``publish(content, media_urls) -> PublishResult`` and raises a
``PublishError`` subclass when the platform rejects a call.
"""

from __future__ import annotations

import datetime as dt
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, ClassVar, Optional

import httpx

from src.content.models import PLATFORM_LIMITS, Platform

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass
class PublishResult:
    """Identity of a post that is now live on the platform."""

    post_id: str
    url: str = ""


@dataclass
class TokenGrant:
    """Credentials returned by an OAuth refresh exchange."""

    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[dt.datetime] = None


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class PublishError(Exception):
    """Raised when a platform API rejects a publishing step.

    ``body`` keeps the platform's raw error payload for diagnostics.
    """

    def __init__(self, message: str, body: Any = None) -> None:
        super().__init__(message)
        self.body = body


class MediaRequiredError(PublishError, ValueError):
    """Raised before any network call when a platform needs media and got none."""


# ---------------------------------------------------------------------------
# Base client
# ---------------------------------------------------------------------------


def _describe(body: Any) -> str:
    """Best human-readable error text from a platform response body."""
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str):
            return error
        return json.dumps(body, ensure_ascii=False)
    return str(body)


class BasePublisher(ABC):
    platform: ClassVar[Platform]
    error_cls: ClassVar[type[PublishError]] = PublishError

    def __init__(
        self,
        access_token: Optional[str] = None,
        *,
        base_url: str = "",
        timeout: Optional[float] = None,
    ) -> None:
        from config.settings import settings

        self.token = access_token or ""
        self._http = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout if timeout is not None else settings.http_timeout_seconds,
        )

    @property
    def max_media(self) -> int:
        return PLATFORM_LIMITS[self.platform].max_media

    def _cap_media(self, media_urls: list[str]) -> list[str]:
        if len(media_urls) > self.max_media:
            logger.warning(
                "%s accepts at most %d media items; dropping %d",
                self.platform.value, self.max_media, len(media_urls) - self.max_media,
            )
        return list(media_urls[: self.max_media])

    def _check(self, resp: httpx.Response, phase: str) -> dict:
        """Return the parsed JSON body, raising ``error_cls`` on a rejection.

        ``phase`` names the step that failed, e.g. "Twitter publish failed".
        """
        try:
            body = resp.json()
        except ValueError:
            body = {"error": resp.text}
        if resp.is_error or (isinstance(body, dict) and "error" in body):
            raise self.error_cls(f"{phase}: {_describe(body)}", body=body)
        return body

    @abstractmethod
    async def publish(self, content: str, media_urls: list[str]) -> PublishResult:
        """Publish ``content`` with the given media and return its platform id."""

    # ------------------------------------------------------------------
    # Context manager / cleanup
    # ------------------------------------------------------------------

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> "BasePublisher":
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()
