# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Elena Viter

# apps/chat/api/quota/quota.py

"""
Quota API

REST endpoints for conversation usage quotas:
1. Admission check and conversation counting (conversation flow)
2. Usage statistics for organization members and platform admins
3. Manual quota reset (platform admin only, audited)
4. Daily threshold catch-up, triggered by the scheduler with CRON_SECRET
"""

from typing import Optional
import hmac
import logging

from fastapi import Depends, HTTPException, APIRouter, Query, Header
from fastapi.responses import JSONResponse

from elva_ai_app.apps.chat.api.resolvers import get_current_user
from elva_ai_app.apps.chat.sdk.config import get_settings
from elva_ai_app.apps.chat.sdk.infra.quota.errors import QuotaError
from elva_ai_app.auth.requirements import User, is_platform_admin

logger = logging.getLogger(__name__)

# Create router
router = APIRouter()


def _get_quota_manager(ctx):
    """Get the QuotaManager created by the app lifespan."""
    mgr = getattr(getattr(ctx, "state", None), "quota_manager", None)
    if mgr is None:
        raise HTTPException(status_code=503, detail="Quota manager not initialized")
    return mgr


def _raise_http(e: QuotaError):
    raise HTTPException(status_code=e.status_code, detail={"error": e.code, "message": str(e), **e.data})


def _check_cron_secret(secret: Optional[str], x_cron_secret: Optional[str], authorization: Optional[str]) -> None:
    expected = get_settings().CRON_SECRET
    provided = secret or x_cron_secret
    if not provided and authorization and authorization.lower().startswith("bearer "):
        provided = authorization[7:].strip()
    if not provided or not hmac.compare_digest(provided.encode(), expected.encode()):
        raise HTTPException(status_code=401, detail="Unauthorized")


# ============================================================================
# Conversation flow
# ============================================================================

@router.post("/organizations/{org_id}/quota/check")
async def check_quota(org_id: str):
    """
    Admission check before creating a conversation.

    Blocked organizations get 403 with a stable ``reason`` token
    (quota_exceeded | trial_expired) and a localized ``message``; an unknown
    organization gets 404 with reason organization_not_found.
    """
    mgr = _get_quota_manager(router)
    decision = await mgr.check(org_id)
    if decision.allowed:
        return decision.to_dict()
    status_code = 404 if decision.reason == "organization_not_found" else 403
    return JSONResponse(
        status_code=status_code,
        content={"allowed": False, "reason": decision.reason, "message": decision.message},
    )


@router.post("/organizations/{org_id}/conversations/record")
async def record_conversation(org_id: str):
    """Count one created conversation. Never fails the caller's flow."""
    mgr = _get_quota_manager(router)
    update = await mgr.record_conversation(org_id)
    return {"recorded": update is not None, "usage": update.to_dict() if update else None}


# ============================================================================
# Usage
# ============================================================================

@router.get("/organizations/{org_id}/usage")
async def get_usage(org_id: str, user: User = Depends(get_current_user)):
    mgr = _get_quota_manager(router)
    try:
        if not is_platform_admin(user, mgr.settings.PLATFORM_ADMIN_ROLE):
            if not await mgr.directory.is_member(org_id, user.id):
                raise HTTPException(status_code=403, detail="Access denied")
        stats = await mgr.usage_stats(org_id)
        return {"organization_id": org_id, "usage": stats.to_dict()}
    except HTTPException:
        raise
    except QuotaError as e:
        _raise_http(e)
    except Exception as e:
        logger.exception(f"[get_usage] Error loading usage for org={org_id}")
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/admin/organizations/{org_id}/reset-quota")
async def reset_quota(org_id: str, user: User = Depends(get_current_user)):
    """Manually reset the organization's conversation counter (platform admin)."""
    mgr = _get_quota_manager(router)
    try:
        result = await mgr.manual_reset(org_id, user)
        stats = await mgr.usage_stats(org_id)
        return {
            "success": True,
            "message": "Quota reset successfully",
            "usage": stats.to_dict(),
            "audit": result.audit.to_dict(),
        }
    except QuotaError as e:
        _raise_http(e)
    except Exception as e:
        logger.exception(f"[reset_quota] Error resetting quota for org={org_id}")
        raise HTTPException(status_code=500, detail=str(e))


# ============================================================================
# Scheduler
# ============================================================================

@router.api_route("/cron/check-quotas", methods=["GET", "POST"])
async def cron_check_quotas(
        secret: Optional[str] = Query(None),
        x_cron_secret: Optional[str] = Header(None),
        authorization: Optional[str] = Header(None),
):
    """Daily catch-up: pending cycle resets and missed threshold notifications."""
    _check_cron_secret(secret, x_cron_secret, authorization)
    mgr = _get_quota_manager(router)
    try:
        report = await mgr.run_threshold_catchup()
        return {"success": True, **report}
    except Exception as e:
        logger.exception("[cron_check_quotas] Catch-up run failed")
        raise HTTPException(status_code=500, detail=str(e))
