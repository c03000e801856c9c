# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Elena Viter

# sdk/infra/quota/recorder.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from elva_ai_app.apps.chat.sdk.infra.quota.directory import OrganizationDirectory
from elva_ai_app.apps.chat.sdk.infra.quota.errors import IncrementFailed, OrganizationNotFound
from elva_ai_app.apps.chat.sdk.infra.quota.models import Organization, UsageMutation, UsageUpdate
from elva_ai_app.apps.chat.sdk.infra.quota.notifier import ThresholdNotifier
from elva_ai_app.apps.chat.sdk.infra.quota.plans import get_conversation_limit
from elva_ai_app.apps.chat.sdk.infra.quota.store import UsageStateStore

logger = logging.getLogger(__name__)


class UsageRecorder:
    """
    Counts created conversations.

    Unlike the gate this fails loudly: a lost increment is under-billing, so
    infrastructure errors surface as IncrementFailed.
    """

    def __init__(self, store: UsageStateStore, directory: OrganizationDirectory, notifier: ThresholdNotifier):
        self.store = store
        self.directory = directory
        self.notifier = notifier

    async def _organization(self, org_id: str, op: str) -> Organization:
        try:
            org = await self.directory.get(org_id)
        except Exception as e:
            raise IncrementFailed(f"{op} failed for {org_id}: {e}", data={"organization_id": org_id}) from e
        if org is None:
            raise OrganizationNotFound(f"organization {org_id} not found", data={"organization_id": org_id})
        return org

    async def _after(self, org: Organization, mutation: UsageMutation, op: str) -> UsageUpdate:
        state = mutation.state
        if mutation.reset:
            logger.info(f"[{op}] Stale cycle reset for org={org.id} (previous_current={mutation.previous_current})")
        threshold = await self.notifier.maybe_notify(org, state)
        return UsageUpdate.from_state(state, notified=threshold.label if threshold else None)

    async def increment(self, org_id: str, *, now: Optional[datetime] = None) -> UsageUpdate:
        org = await self._organization(org_id, "increment")
        try:
            mutation = await self.store.increment(
                org_id, plan_limit=get_conversation_limit(org.effective_plan), now=now,
            )
        except Exception as e:
            logger.error(f"[increment] increment_failed org={org_id}: {e}")
            raise IncrementFailed(f"increment failed for {org_id}: {e}", data={"organization_id": org_id}) from e
        return await self._after(org, mutation, "increment")

    async def set_usage(self, org_id: str, value: int, *, now: Optional[datetime] = None) -> UsageUpdate:
        """Bulk correction: set ``current`` to ``value`` in the active cycle."""
        org = await self._organization(org_id, "set_usage")
        try:
            mutation = await self.store.set_current(
                org_id, value, plan_limit=get_conversation_limit(org.effective_plan), now=now,
            )
        except Exception as e:
            logger.error(f"[set_usage] increment_failed org={org_id}: {e}")
            raise IncrementFailed(f"set_usage failed for {org_id}: {e}", data={"organization_id": org_id}) from e
        return await self._after(org, mutation, "set_usage")
