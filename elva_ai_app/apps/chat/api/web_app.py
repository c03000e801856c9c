# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Elena Viter

# apps/chat/api/web_app.py
"""
Control-plane web app serving the quota API.
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv, find_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from elva_ai_app.apps.chat.api.quota import mount_quota_router
from elva_ai_app.apps.chat.sdk.config import get_settings
from elva_ai_app.apps.chat.sdk.infra.quota.manager import QuotaManager
from elva_ai_app.apps.utils import logging_config
from elva_ai_app.infra.redis.client import close_async_redis_clients

logger = logging.getLogger(__name__)


def create_app(quota_manager: Optional[QuotaManager] = None) -> FastAPI:
    """
    Build the app. A pre-built ``quota_manager`` is used as is (and not
    closed); otherwise one is created from settings in the lifespan.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owns_manager = quota_manager is None
        if owns_manager:
            mgr = QuotaManager()
            await mgr.init()
        else:
            mgr = quota_manager
        app.state.quota_manager = mgr
        logger.info("Quota service started")
        try:
            yield
        finally:
            if owns_manager:
                await mgr.close()
                await close_async_redis_clients()
            logger.info("Quota service stopped")

    settings = get_settings()
    app = FastAPI(title="Elva Control Plane", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/api/health")
    async def health():
        return {"status": "ok"}

    mount_quota_router(app)
    return app


if __name__ == "__main__":
    import uvicorn

    load_dotenv(find_dotenv())
    logging_config.configure_logging()
    uvicorn.run(create_app(), host="0.0.0.0", port=get_settings().PORT, log_config=None)
