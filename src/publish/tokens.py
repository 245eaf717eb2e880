"""
Access-token guard.

``ensure_valid_token`` hands the scheduler a credential that is safe to use
right now. Only Twitter tokens are renewed; Instagram and Facebook Page
tokens from the connect flow do not expire and are used as stored.
"""

from __future__ import annotations

import asyncio
import datetime as dt
import logging
from typing import TYPE_CHECKING, Optional

import httpx

from src.content.models import Platform, SocialAccount, utcnow
from src.publish.base import TokenGrant
from src.publish.twitter import TwitterClient, TwitterError

if TYPE_CHECKING:
    from src.content.storage import PostStore

logger = logging.getLogger(__name__)

# Refresh when less than this much lifetime is left.
REFRESH_BUFFER = dt.timedelta(minutes=5)

NON_EXPIRING_PLATFORMS = frozenset({Platform.INSTAGRAM, Platform.FACEBOOK})


class RefreshError(Exception):
    """Raised when a credential cannot be renewed."""


async def refresh_twitter_token(refresh_token: str) -> TokenGrant:
    async with TwitterClient() as client:
        return await client.refresh_access_token(refresh_token)


async def ensure_valid_token(
    account: SocialAccount,
    store: "PostStore",
    *,
    now: Optional[dt.datetime] = None,
) -> str:
    """
    Return a usable access token for ``account``.

    Refreshes a Twitter token that is within ``REFRESH_BUFFER`` of expiry
    (or past it), persisting the new credentials with a single store write
    and updating ``account`` in place.
    """
    now = now or utcnow()
    if account.expires_at is None or account.expires_at - now > REFRESH_BUFFER:
        return account.access_token

    if account.platform in NON_EXPIRING_PLATFORMS:
        return account.access_token

    if not account.refresh_token:
        raise RefreshError("Twitter token expired and no refresh token available")

    logger.info("Refreshing Twitter token for account %s (expires %s)",
                account.id, account.expires_at.isoformat())
    try:
        grant = await refresh_twitter_token(account.refresh_token)
    except TwitterError as exc:
        raise RefreshError(str(exc)) from exc
    except (httpx.HTTPError, ValueError) as exc:
        raise RefreshError(f"Twitter token refresh failed: {exc}") from exc

    refresh_token = grant.refresh_token or account.refresh_token
    await asyncio.to_thread(
        store.update_account_tokens,
        account.id,
        grant.access_token,
        refresh_token,
        grant.expires_at,
    )
    account.access_token = grant.access_token
    account.refresh_token = refresh_token
    account.expires_at = grant.expires_at
    return grant.access_token
