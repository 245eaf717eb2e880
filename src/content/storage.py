"""
SQLite-backed persistent storage for posts and connected social accounts.

Uses sqlite-utils with two tables:

* ``accounts`` — one row per (platform, platform_id), unique.
* ``posts``    — one row per post; metrics are flattened into ``metrics_*``
  columns and ``media_urls`` is kept as a JSON list.

Datetimes are stored as ISO-8601 UTC strings, so lexical comparison in SQL
matches chronological order.

The store is synchronous. Async callers go through ``asyncio.to_thread``;
every method takes an internal lock so concurrent threads never share a
cursor mid-statement.
"""

from __future__ import annotations

import datetime as dt
import json
import logging
import sqlite3
import threading
from enum import Enum
from pathlib import Path
from typing import Any, Optional

import sqlite_utils

from src.content.models import (
    Post,
    PostMetrics,
    PostStatus,
    SocialAccount,
    as_utc,
    utcnow,
)

logger = logging.getLogger(__name__)

# DB schema version; bump when adding indexed columns
_SCHEMA_VERSION = 1

_METRIC_FIELDS = ("likes", "comments", "shares", "impressions", "reach", "saves")

# Post columns the scheduler and the API are allowed to patch by id.
_UPDATABLE_POST_FIELDS = {
    "content",
    "media_urls",
    "status",
    "scheduled_at",
    "published_at",
    "platform_post_id",
    "error_message",
    "metrics",
}


def _iso(value: Optional[dt.datetime]) -> Optional[str]:
    value = as_utc(value)
    return value.isoformat(timespec="microseconds") if value else None


def _parse(value: Optional[str]) -> Optional[dt.datetime]:
    return as_utc(dt.datetime.fromisoformat(value)) if value else None


class PostStore:
    """Persistent storage for Post and SocialAccount objects backed by SQLite."""

    POSTS = "posts"
    ACCOUNTS = "accounts"
    META_TABLE = "meta"

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(db_path), check_same_thread=False)
        self._db = sqlite_utils.Database(conn)
        self._lock = threading.RLock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema setup
    # ------------------------------------------------------------------

    def _ensure_schema(self) -> None:
        tables = self._db.table_names()
        if self.ACCOUNTS not in tables:
            self._db[self.ACCOUNTS].create(
                {
                    "id": str,
                    "user_id": str,
                    "platform": str,
                    "platform_id": str,
                    "username": str,
                    "access_token": str,
                    "refresh_token": str,
                    "expires_at": str,
                    "created_at": str,
                    "updated_at": str,
                },
                pk="id",
                not_null={"id", "user_id", "platform", "platform_id", "access_token"},
            )
            self._db[self.ACCOUNTS].create_index(["platform", "platform_id"], unique=True)
            self._db[self.ACCOUNTS].create_index(["user_id"])
            logger.debug("Created accounts table")

        if self.POSTS not in tables:
            columns: dict[str, Any] = {
                "id": str,
                "user_id": str,
                "social_account_id": str,
                "content": str,
                "media_urls": str,          # JSON list
                "status": str,
                "scheduled_at": str,
                "published_at": str,
                "platform_post_id": str,
                "error_message": str,
                "created_at": str,
                "updated_at": str,
            }
            for name in _METRIC_FIELDS:
                columns[f"metrics_{name}"] = int
            columns["metrics_updated_at"] = str
            self._db[self.POSTS].create(
                columns,
                pk="id",
                not_null={"id", "user_id", "social_account_id", "status"},
            )
            # Indexes for the scheduler queries
            self._db[self.POSTS].create_index(["status", "scheduled_at"])
            self._db[self.POSTS].create_index(["user_id"])
            self._db[self.POSTS].create_index(["social_account_id"])
            logger.debug("Created posts table")

        if self.META_TABLE not in tables:
            self._db[self.META_TABLE].insert(
                {"key": "schema_version", "value": str(_SCHEMA_VERSION)}
            )

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _account_to_row(account: SocialAccount) -> dict:
        return {
            "id": account.id,
            "user_id": account.user_id,
            "platform": account.platform.value,
            "platform_id": account.platform_id,
            "username": account.username,
            "access_token": account.access_token,
            "refresh_token": account.refresh_token,
            "expires_at": _iso(account.expires_at),
            "created_at": _iso(account.created_at),
            "updated_at": _iso(account.updated_at),
        }

    @staticmethod
    def _account_from_row(row: dict) -> SocialAccount:
        return SocialAccount(
            id=row["id"],
            user_id=row["user_id"],
            platform=row["platform"],
            platform_id=row["platform_id"],
            username=row["username"] or "",
            access_token=row["access_token"],
            refresh_token=row["refresh_token"],
            expires_at=_parse(row["expires_at"]),
            created_at=_parse(row["created_at"]),
            updated_at=_parse(row["updated_at"]),
        )

    @staticmethod
    def _metrics_columns(metrics: Optional[PostMetrics]) -> dict:
        if metrics is None:
            cols: dict[str, Any] = {f"metrics_{name}": None for name in _METRIC_FIELDS}
            cols["metrics_updated_at"] = None
            return cols
        cols = {f"metrics_{name}": getattr(metrics, name) for name in _METRIC_FIELDS}
        cols["metrics_updated_at"] = _iso(metrics.updated_at)
        return cols

    def _post_to_row(self, post: Post) -> dict:
        row = {
            "id": post.id,
            "user_id": post.user_id,
            "social_account_id": post.social_account_id,
            "content": post.content,
            "media_urls": json.dumps(post.media_urls, ensure_ascii=False),
            "status": post.status.value,
            "scheduled_at": _iso(post.scheduled_at),
            "published_at": _iso(post.published_at),
            "platform_post_id": post.platform_post_id,
            "error_message": post.error_message,
            "created_at": _iso(post.created_at),
            "updated_at": _iso(post.updated_at),
        }
        row.update(self._metrics_columns(post.metrics))
        return row

    @staticmethod
    def _post_from_row(row: dict, account: Optional[SocialAccount] = None) -> Post:
        metrics = None
        if row.get("metrics_updated_at"):
            metrics = PostMetrics(
                updated_at=_parse(row["metrics_updated_at"]),
                **{name: row.get(f"metrics_{name}") for name in _METRIC_FIELDS},
            )
        return Post(
            id=row["id"],
            user_id=row["user_id"],
            social_account_id=row["social_account_id"],
            content=row["content"] or "",
            media_urls=json.loads(row["media_urls"] or "[]"),
            status=row["status"],
            scheduled_at=_parse(row["scheduled_at"]),
            published_at=_parse(row["published_at"]),
            platform_post_id=row["platform_post_id"],
            error_message=row["error_message"],
            metrics=metrics,
            created_at=_parse(row["created_at"]),
            updated_at=_parse(row["updated_at"]),
            social_account=account,
        )

    def _with_accounts(self, rows: list[dict]) -> list[Post]:
        """Attach each post's account, sharing one object per account id."""
        accounts: dict[str, Optional[SocialAccount]] = {}
        posts = []
        for row in rows:
            account_id = row["social_account_id"]
            if account_id not in accounts:
                accounts[account_id] = self._get_account(account_id)
            posts.append(self._post_from_row(row, accounts[account_id]))
        return posts

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def _get_account(self, account_id: str) -> Optional[SocialAccount]:
        try:
            return self._account_from_row(self._db[self.ACCOUNTS].get(account_id))
        except sqlite_utils.db.NotFoundError:
            return None

    def get_account(self, account_id: str) -> Optional[SocialAccount]:
        with self._lock:
            return self._get_account(account_id)

    def upsert_account(self, account: SocialAccount) -> SocialAccount:
        """Insert an account, or refresh credentials of the existing
        (platform, platform_id) row. Returns the stored account."""
        with self._lock:
            existing = list(
                self._db[self.ACCOUNTS].rows_where(
                    "platform = ? AND platform_id = ?",
                    [account.platform.value, account.platform_id],
                    limit=1,
                )
            )
            if existing:
                stored = self._account_from_row(existing[0])
                account = account.model_copy(
                    update={"id": stored.id, "created_at": stored.created_at,
                            "updated_at": utcnow()}
                )
            self._db[self.ACCOUNTS].insert(self._account_to_row(account), replace=True)
            logger.info(
                "Stored %s account %s (@%s)",
                account.platform.value, account.id, account.username,
            )
            return account

    def list_accounts(self, user_id: Optional[str] = None) -> list[SocialAccount]:
        with self._lock:
            if user_id is None:
                rows = self._db[self.ACCOUNTS].rows_where(order_by="created_at")
            else:
                rows = self._db[self.ACCOUNTS].rows_where(
                    "user_id = ?", [user_id], order_by="created_at"
                )
            return [self._account_from_row(r) for r in rows]

    def delete_account(self, account_id: str) -> bool:
        """Disconnect an account and drop its posts. Returns True if it existed."""
        with self._lock:
            if self._get_account(account_id) is None:
                return False
            self._db[self.POSTS].delete_where("social_account_id = ?", [account_id])
            self._db[self.ACCOUNTS].delete(account_id)
            return True

    def update_account_tokens(
        self,
        account_id: str,
        access_token: str,
        refresh_token: Optional[str],
        expires_at: Optional[dt.datetime],
    ) -> None:
        """Persist a refreshed credential set in a single write."""
        with self._lock:
            self._db[self.ACCOUNTS].update(
                account_id,
                {
                    "access_token": access_token,
                    "refresh_token": refresh_token,
                    "expires_at": _iso(expires_at),
                    "updated_at": _iso(utcnow()),
                },
            )

    # ------------------------------------------------------------------
    # Posts: CRUD
    # ------------------------------------------------------------------

    def save_post(self, post: Post) -> Post:
        """Insert or replace a post."""
        with self._lock:
            self._db[self.POSTS].insert(self._post_to_row(post), replace=True)
            return post

    def create_post(self, post: Post) -> Post:
        with self._lock:
            if self._get_account(post.social_account_id) is None:
                raise ValueError(f"Unknown social account: {post.social_account_id}")
            return self.save_post(post)

    def get_post(self, post_id: str) -> Optional[Post]:
        """Return a Post (with its account attached) by id, or None if not found."""
        with self._lock:
            try:
                row = self._db[self.POSTS].get(post_id)
            except sqlite_utils.db.NotFoundError:
                return None
            return self._with_accounts([row])[0]

    def delete_post(self, post_id: str) -> bool:
        """Delete a post. Returns True if it existed."""
        with self._lock:
            try:
                self._db[self.POSTS].get(post_id)
            except sqlite_utils.db.NotFoundError:
                return False
            self._db[self.POSTS].delete(post_id)
            return True

    def update_post(self, post_id: str, fields: dict) -> None:
        """Patch selected columns of one post in a single write.

        Values may be enums, datetimes, lists or a ``PostMetrics`` bundle;
        they are converted to their column representation here.
        """
        unknown = set(fields) - _UPDATABLE_POST_FIELDS
        if unknown:
            raise ValueError(f"Cannot update post fields: {sorted(unknown)}")

        record: dict[str, Any] = {}
        for key, value in fields.items():
            if key == "metrics":
                record.update(self._metrics_columns(value))
            elif key == "media_urls":
                record[key] = json.dumps(list(value), ensure_ascii=False)
            elif isinstance(value, Enum):
                record[key] = value.value
            elif isinstance(value, dt.datetime):
                record[key] = _iso(value)
            else:
                record[key] = value
        record["updated_at"] = _iso(utcnow())

        with self._lock:
            self._db[self.POSTS].update(post_id, record)

    # ------------------------------------------------------------------
    # Posts: queries
    # ------------------------------------------------------------------

    def find_due_posts(self, now: dt.datetime) -> list[Post]:
        """SCHEDULED posts whose time has come, oldest first, accounts joined."""
        with self._lock:
            rows = list(
                self._db[self.POSTS].rows_where(
                    "status = ? AND scheduled_at IS NOT NULL AND scheduled_at <= ?",
                    [PostStatus.SCHEDULED.value, _iso(now)],
                    order_by="scheduled_at",
                )
            )
            return self._with_accounts(rows)

    def find_stale_published(self, cutoff: dt.datetime) -> list[Post]:
        """PUBLISHED posts with a platform id whose metrics are missing or
        were fetched before ``cutoff``."""
        with self._lock:
            rows = list(
                self._db[self.POSTS].rows_where(
                    "status = ? AND platform_post_id IS NOT NULL "
                    "AND (metrics_updated_at IS NULL OR metrics_updated_at < ?)",
                    [PostStatus.PUBLISHED.value, _iso(cutoff)],
                    order_by="published_at",
                )
            )
            return self._with_accounts(rows)

    def list_posts(
        self,
        user_id: Optional[str] = None,
        status: Optional[PostStatus] = None,
        limit: int = 100,
    ) -> list[Post]:
        clauses, params = [], []
        if user_id is not None:
            clauses.append("user_id = ?")
            params.append(user_id)
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)
        with self._lock:
            rows = list(
                self._db[self.POSTS].rows_where(
                    " AND ".join(clauses) or None,
                    params,
                    order_by="scheduled_at, created_at",
                    limit=limit,
                )
            )
            return self._with_accounts(rows)

    def stats(self) -> dict:
        """Return count per status."""
        result: dict = {}
        with self._lock:
            for row in self._db.execute(
                f"SELECT status, COUNT(*) as n FROM {self.POSTS} GROUP BY status"
            ).fetchall():
                result[row[0]] = row[1]
        return result

    # ------------------------------------------------------------------
    # Convenience
    # ------------------------------------------------------------------

    def close(self) -> None:
        self._db.close()

    def __enter__(self) -> "PostStore":
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

_store: Optional[PostStore] = None


def get_store() -> PostStore:
    """Return the application-wide PostStore (lazy init)."""
    global _store
    if _store is None:
        from config.settings import settings  # noqa: PLC0415

        settings.ensure_output_dirs()
        _store = PostStore(settings.database_path)
    return _store
