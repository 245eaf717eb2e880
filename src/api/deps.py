"""FastAPI dependencies shared by the routers."""

from __future__ import annotations

from fastapi import Request

from src.content.storage import PostStore
from src.publish.driver import TimerDriver


def store_dep(request: Request) -> PostStore:
    return request.app.state.store


def driver_dep(request: Request) -> TimerDriver:
    return request.app.state.driver
