"""
Connected social account routes.

Accounts arrive here from the OAuth connect flows (outside this service),
which post the resulting credentials. Responses never include tokens.
"""

from __future__ import annotations

import datetime as dt
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from src.api.deps import store_dep
from src.content.models import Platform, SocialAccount
from src.content.storage import PostStore

router = APIRouter(prefix="/api/accounts", tags=["accounts"])


class AccountConnect(BaseModel):
    user_id: str
    platform: Platform
    platform_id: str
    username: str = ""
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[dt.datetime] = None


@router.get("")
def list_accounts(user_id: str, store: PostStore = Depends(store_dep)) -> list[dict]:
    return [a.public_dict() for a in store.list_accounts(user_id=user_id)]


@router.post("")
def connect_account(payload: AccountConnect, store: PostStore = Depends(store_dep)) -> dict:
    account = store.upsert_account(SocialAccount(**payload.model_dump()))
    return account.public_dict()


@router.delete("/{account_id}")
def disconnect_account(
    account_id: str,
    user_id: str,
    store: PostStore = Depends(store_dep),
) -> dict:
    account = store.get_account(account_id)
    if account is None or account.user_id != user_id:
        raise HTTPException(status_code=404, detail="Account not found")
    store.delete_account(account_id)
    return {"deleted": account_id}
