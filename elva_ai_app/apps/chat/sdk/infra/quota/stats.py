# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Elena Viter

# sdk/infra/quota/stats.py
from __future__ import annotations

from datetime import datetime
from typing import Optional

from elva_ai_app.apps.chat.sdk.infra.quota.cycle import (
    days_remaining_in_cycle,
    month_start,
    next_month_start,
    utcnow,
)
from elva_ai_app.apps.chat.sdk.infra.quota.directory import OrganizationDirectory
from elva_ai_app.apps.chat.sdk.infra.quota.errors import OrganizationNotFound
from elva_ai_app.apps.chat.sdk.infra.quota.models import (
    UsageState,
    UsageStats,
    sorted_labels,
    usage_percentage,
    usage_status,
)
from elva_ai_app.apps.chat.sdk.infra.quota.plans import get_conversation_limit
from elva_ai_app.apps.chat.sdk.infra.quota.store import UsageStateStore


def build_usage_stats(state: Optional[UsageState], plan: Optional[str], *,
                      now: Optional[datetime] = None) -> UsageStats:
    """Read-only view; a missing or stale state is shown as the fresh current cycle."""
    now = now or utcnow()
    if state is None or state.is_stale(now):
        current, limit, overage, notified = 0, get_conversation_limit(plan), 0, ()
        cycle_start = month_start(now)
    else:
        current, limit, overage = state.current, state.limit, state.overage
        notified = tuple(sorted_labels(state.notified_thresholds))
        cycle_start = state.cycle_start

    pct = usage_percentage(current, limit)
    return UsageStats(
        current=current,
        limit=limit,
        percentage=int(round(pct)),
        overage=overage,
        days_remaining_in_cycle=days_remaining_in_cycle(now),
        last_reset=cycle_start,
        next_reset=next_month_start(now),
        notified_thresholds=notified,
        status=usage_status(pct),
    )


class UsageStatsView:
    def __init__(self, store: UsageStateStore, directory: OrganizationDirectory):
        self.store = store
        self.directory = directory

    async def get(self, org_id: str, *, now: Optional[datetime] = None) -> UsageStats:
        org = await self.directory.get(org_id)
        if org is None:
            raise OrganizationNotFound(f"organization {org_id} not found", data={"organization_id": org_id})
        state = await self.store.get(org_id)
        return build_usage_stats(state, org.effective_plan, now=now)
