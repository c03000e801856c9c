# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Elena Viter

"""
Quota api routers.
File: api/quota/__init__.py
"""
from fastapi import FastAPI

from .quota import router as quota_router


def mount_quota_router(app: FastAPI):
    """
    Mount the quota router to the FastAPI app.

    Args:
        app: Your existing FastAPI application
    """
    quota_router.state = app.state
    app.include_router(
        quota_router,
        prefix="/api",
        tags=["Quota"],
    )
    return app


# Export for convenience
__all__ = ["mount_quota_router"]
