# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Elena Viter

# apps/chat/api/resolvers.py
import logging
from typing import Optional

from fastapi import HTTPException, Request

from elva_ai_app.auth.requirements import AuthorizationError, RequireUser, User, validate_requirements

logger = logging.getLogger(__name__)


def get_current_user(request: Request) -> User:
    """
    The authenticated user, placed on ``request.state.user`` by the auth layer
    in front of this service.
    """
    user: Optional[User] = getattr(request.state, "user", None)
    try:
        validate_requirements(user, RequireUser())
    except AuthorizationError as e:
        logger.debug(f"[get_current_user] {request.url.path}: {e.message}")
        raise HTTPException(status_code=e.code, detail=e.message)
    return user
