"""
Post routes.

Authentication happens upstream; every request names the acting
``user_id`` and only that user's posts are visible or editable.
"""

from __future__ import annotations

import datetime as dt
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from src.api.deps import store_dep
from src.content.models import Post, PostStatus
from src.content.storage import PostStore

router = APIRouter(prefix="/api/posts", tags=["posts"])


class PostCreate(BaseModel):
    user_id: str
    social_account_id: str
    content: str
    media_urls: list[str] = Field(default_factory=list)
    scheduled_at: Optional[dt.datetime] = None


class PostUpdate(BaseModel):
    user_id: str
    content: Optional[str] = None
    media_urls: Optional[list[str]] = None
    # Sending null clears the schedule; omitting the field leaves it alone.
    scheduled_at: Optional[dt.datetime] = None


class PostOwner(BaseModel):
    user_id: str


def _owned_post(store: PostStore, post_id: str, user_id: str) -> Post:
    post = store.get_post(post_id)
    if post is None or post.user_id != user_id:
        raise HTTPException(status_code=404, detail="Post not found")
    return post


@router.get("")
def list_posts(
    user_id: str,
    status: Optional[PostStatus] = None,
    store: PostStore = Depends(store_dep),
) -> list[dict]:
    return [p.to_dict() for p in store.list_posts(user_id=user_id, status=status)]


@router.post("", status_code=201)
def create_post(payload: PostCreate, store: PostStore = Depends(store_dep)) -> dict:
    account = store.get_account(payload.social_account_id)
    if account is None or account.user_id != payload.user_id:
        raise HTTPException(status_code=404, detail="Social account not found")
    try:
        post = Post.compose(
            account,
            payload.content,
            media_urls=payload.media_urls,
            scheduled_at=payload.scheduled_at,
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    store.create_post(post)
    return post.to_dict()


@router.get("/{post_id}")
def get_post(post_id: str, user_id: str, store: PostStore = Depends(store_dep)) -> dict:
    return _owned_post(store, post_id, user_id).to_dict()


@router.patch("/{post_id}")
def update_post(
    post_id: str,
    payload: PostUpdate,
    store: PostStore = Depends(store_dep),
) -> dict:
    post = _owned_post(store, post_id, payload.user_id)
    try:
        post.edit(content=payload.content, media_urls=payload.media_urls)
        if "scheduled_at" in payload.model_fields_set:
            post.reschedule(payload.scheduled_at)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    store.save_post(post)
    return post.to_dict()


@router.post("/{post_id}/retry")
def retry_post(
    post_id: str,
    payload: PostOwner,
    store: PostStore = Depends(store_dep),
) -> dict:
    post = _owned_post(store, post_id, payload.user_id)
    try:
        post.retry()
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    store.update_post(post.id, {"status": post.status, "error_message": None})
    return post.to_dict()


@router.delete("/{post_id}")
def delete_post(post_id: str, user_id: str, store: PostStore = Depends(store_dep)) -> dict:
    _owned_post(store, post_id, user_id)
    store.delete_post(post_id)
    return {"deleted": post_id}
