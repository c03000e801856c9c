# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Elena Viter

# sdk/infra/quota/resetter.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from elva_ai_app.apps.chat.sdk.infra.quota.audit import QuotaAuditLog
from elva_ai_app.apps.chat.sdk.infra.quota.cycle import utcnow
from elva_ai_app.apps.chat.sdk.infra.quota.directory import OrganizationDirectory
from elva_ai_app.apps.chat.sdk.infra.quota.errors import OrganizationNotFound, UnauthorizedReset
from elva_ai_app.apps.chat.sdk.infra.quota.models import (
    ManualResetResult,
    Organization,
    ResetAuditEntry,
    UsageMutation,
)
from elva_ai_app.apps.chat.sdk.infra.quota.plans import get_conversation_limit
from elva_ai_app.apps.chat.sdk.infra.quota.store import UsageStateStore
from elva_ai_app.auth.requirements import PLATFORM_ADMIN_ROLE, User, is_platform_admin

logger = logging.getLogger(__name__)


class CycleResetter:
    def __init__(self, store: UsageStateStore, directory: OrganizationDirectory, audit: QuotaAuditLog, *,
                 admin_role: str = PLATFORM_ADMIN_ROLE):
        self.store = store
        self.directory = directory
        self.audit = audit
        self.admin_role = admin_role

    async def _organization(self, org_id: str) -> Organization:
        org = await self.directory.get(org_id)
        if org is None:
            raise OrganizationNotFound(f"organization {org_id} not found", data={"organization_id": org_id})
        return org

    async def reset_if_stale(self, org_id: str, *, now: Optional[datetime] = None,
                             org: Optional[Organization] = None) -> UsageMutation:
        """Start the current month's cycle if the stored one is older. Idempotent."""
        org = org or await self._organization(org_id)
        mutation = await self.store.reset(
            org_id, plan_limit=get_conversation_limit(org.effective_plan), force=False, now=now,
        )
        if mutation.reset:
            logger.info(f"[reset_if_stale] New cycle for org={org_id} previous_current={mutation.previous_current} "
                        f"limit={mutation.state.limit}")
        return mutation

    async def manual_reset(self, org_id: str, actor: Optional[User], *,
                           now: Optional[datetime] = None) -> ManualResetResult:
        """
        Unconditionally zero the cycle on behalf of a platform administrator.

        The capability check runs before any read or write. The audit entry
        is written after the reset; if that write fails the error propagates.
        """
        if not is_platform_admin(actor, self.admin_role):
            actor_id = getattr(actor, "id", None)
            logger.warning(f"[manual_reset] Rejected reset of org={org_id} by actor={actor_id}")
            raise UnauthorizedReset("platform administrator role required",
                                    data={"organization_id": org_id, "actor_id": actor_id})

        now = now or utcnow()
        org = await self._organization(org_id)
        mutation = await self.store.reset(
            org_id, plan_limit=get_conversation_limit(org.effective_plan), force=True, now=now,
        )
        entry = ResetAuditEntry(
            organization_id=org_id,
            organization_name=org.name,
            actor_id=actor.id,
            previous_current=int(mutation.previous_current or 0),
            new_current=mutation.state.current,
            timestamp=now,
        )
        try:
            await self.audit.append(entry)
        except Exception:
            logger.exception(f"[manual_reset] Audit write failed for org={org_id} actor={actor.id}")
            raise
        logger.info(f"[manual_reset] org={org_id} reset by {actor.id}; previous_current={entry.previous_current}")
        return ManualResetResult(state=mutation.state, audit=entry)
