# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Elena Viter

# sdk/infra/quota/gate.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from elva_ai_app.apps.chat.sdk.infra.quota.cycle import utcnow, as_utc
from elva_ai_app.apps.chat.sdk.infra.quota.directory import OrganizationDirectory
from elva_ai_app.apps.chat.sdk.infra.quota.errors import QuotaError, StorageUnavailable
from elva_ai_app.apps.chat.sdk.infra.quota.models import Organization, QuotaDecision, UsageState
from elva_ai_app.apps.chat.sdk.infra.quota.plans import (
    QuotaReason,
    get_conversation_limit,
    is_blocking_plan,
)
from elva_ai_app.apps.chat.sdk.infra.quota.store import UsageStateStore

logger = logging.getLogger(__name__)


def decide(org: Organization, state: Optional[UsageState], *,
           now: Optional[datetime] = None, locale: Optional[str] = None) -> QuotaDecision:
    """
    Blocking decision over an organization and its usage.

    A missing or stale state is allowed before any plan or trial check; the
    next increment starts the new cycle.
    """
    now = as_utc(now)
    if state is None or state.is_stale(now):
        return QuotaDecision.allow()

    if not is_blocking_plan(org.plan):
        return QuotaDecision.allow()

    if state.current >= state.limit:
        return QuotaDecision.block(QuotaReason.QUOTA_EXCEEDED, locale=locale)

    if org.trial_ends_at is not None and as_utc(org.trial_ends_at) < now:
        return QuotaDecision.block(QuotaReason.TRIAL_EXPIRED, locale=locale)

    return QuotaDecision.allow()


class QuotaGate:
    """
    Admission check run before a new conversation is created.

    Fails open: infrastructure errors allow the conversation and carry the
    error in the decision for operators.
    """

    def __init__(self, store: UsageStateStore, directory: OrganizationDirectory, *,
                 locale: Optional[str] = None):
        self.store = store
        self.directory = directory
        self.locale = locale

    async def check(self, org_id: str, *, now: Optional[datetime] = None) -> QuotaDecision:
        now = now or utcnow()
        try:
            org = await self.directory.get(org_id)
            if org is None:
                logger.info(f"[check] Unknown organization {org_id}")
                return QuotaDecision.block(QuotaReason.ORGANIZATION_NOT_FOUND, locale=self.locale)

            state = await self.store.get(org_id)
            if state is None:
                await self.store.ensure(
                    org_id, plan_limit=get_conversation_limit(org.effective_plan), now=now,
                )
                return QuotaDecision.allow()

            decision = decide(org, state, now=now, locale=self.locale)
            if decision.blocked:
                logger.info(f"[check] Blocked org={org_id} reason={decision.reason} "
                            f"current={state.current} limit={state.limit}")
            return decision
        except Exception as e:
            code = e.code if isinstance(e, QuotaError) else StorageUnavailable.code
            logger.exception(f"[check] Quota check failed for org={org_id}; allowing (fail-open)")
            return QuotaDecision.fail_open(str(e) or e.__class__.__name__, code=code)

    def should_block_widget(self, org: Optional[Organization], *,
                            now: Optional[datetime] = None) -> QuotaDecision:
        """Same decision over an already-loaded organization snapshot; no store access."""
        if org is None:
            return QuotaDecision.block(QuotaReason.ORGANIZATION_NOT_FOUND, locale=self.locale)
        return decide(org, org.usage, now=now, locale=self.locale)
