"""
FastAPI application: scheduler trigger plus post and account routes.

``POST /api/schedule`` runs one publishing pass and returns
``{"processed": n, "results": [...]}``. When ``CRON_SECRET`` is set the
caller must send ``Authorization: Bearer <secret>``; without a secret the
trigger is open to anyone who can reach the service.
"""

from __future__ import annotations

import logging
import secrets
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import Depends, FastAPI, Header, HTTPException

from src.api import accounts, posts
from src.api.deps import driver_dep
from src.content.storage import PostStore, get_store
from src.publish.driver import TimerDriver

logger = logging.getLogger(__name__)


def create_app(
    store: Optional[PostStore] = None,
    *,
    cron_secret: Optional[str] = None,
    start_timer: bool = False,
) -> FastAPI:
    """
    Build the web app around a store and its timer driver.

    ``start_timer`` starts the recurring in-process tick for the lifetime of
    the app; leave it off when an external cron calls the trigger instead.
    """
    from config.settings import settings

    store = store or get_store()
    secret = settings.cron_secret if cron_secret is None else cron_secret
    driver = TimerDriver(store)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if not secret:
            logger.warning("CRON_SECRET is not set; POST /api/schedule is unauthenticated")
        if start_timer:
            driver.start()
        try:
            yield
        finally:
            driver.stop()

    app = FastAPI(title="autopost", lifespan=lifespan)
    app.state.store = store
    app.state.driver = driver
    app.state.cron_secret = secret

    def require_trigger_auth(authorization: Optional[str] = Header(default=None)) -> None:
        if not secret:
            return
        expected = f"Bearer {secret}"
        if authorization is None or not secrets.compare_digest(
            authorization.encode(), expected.encode()
        ):
            raise HTTPException(status_code=401, detail="Unauthorized")

    @app.post("/api/schedule", dependencies=[Depends(require_trigger_auth)])
    async def trigger_schedule(driver: TimerDriver = Depends(driver_dep)) -> dict:
        run = await driver.run_once()
        return run.to_dict()

    @app.get("/api/health")
    def health() -> dict:
        return {"status": "ok", "timer": driver.running, "posts": store.stats()}

    app.include_router(posts.router)
    app.include_router(accounts.router)
    return app
