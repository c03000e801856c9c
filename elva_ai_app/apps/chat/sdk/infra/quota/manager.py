# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Elena Viter

# apps/chat/sdk/infra/quota/manager.py

"""
Quota Manager

Single entry point for conversation usage accounting:
1. Admission checks before a conversation is created (QuotaGate)
2. Counting created conversations (UsageRecorder + ThresholdNotifier)
3. Billing-cycle resets, lazy and administrative (CycleResetter)
4. Usage statistics, the daily catch-up run and count reconciliation

UsageState lives in Redis; organizations and the audit log in PostgreSQL.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import asyncpg
from redis.asyncio import Redis

from elva_ai_app.apps.chat.sdk.config import Settings, get_settings
from elva_ai_app.apps.chat.sdk.infra.quota.audit import PgQuotaAuditLog, QuotaAuditLog
from elva_ai_app.apps.chat.sdk.infra.quota.cycle import month_start, utcnow
from elva_ai_app.apps.chat.sdk.infra.quota.directory import OrganizationDirectory, PgOrganizationDirectory
from elva_ai_app.apps.chat.sdk.infra.quota.gate import QuotaGate
from elva_ai_app.apps.chat.sdk.infra.quota.models import (
    ManualResetResult,
    Organization,
    QuotaDecision,
    ResetAuditEntry,
    UsageMutation,
    UsageStats,
    UsageUpdate,
)
from elva_ai_app.apps.chat.sdk.infra.quota.notifier import (
    EmailQuotaTransport,
    NotificationTransport,
    ThresholdNotifier,
)
from elva_ai_app.apps.chat.sdk.infra.quota.recorder import UsageRecorder
from elva_ai_app.apps.chat.sdk.infra.quota.redis_store import RedisUsageStateStore
from elva_ai_app.apps.chat.sdk.infra.quota.resetter import CycleResetter
from elva_ai_app.apps.chat.sdk.infra.quota.stats import UsageStatsView
from elva_ai_app.apps.chat.sdk.infra.quota.store import UsageStateStore
from elva_ai_app.auth.requirements import User
from elva_ai_app.infra.redis.client import get_async_redis_client

logger = logging.getLogger(__name__)


async def create_pg_pool(settings: Settings) -> asyncpg.Pool:
    return await asyncpg.create_pool(
        host=settings.PGHOST, port=settings.PGPORT,
        user=settings.PGUSER, password=settings.PGPASSWORD, database=settings.PGDATABASE,
        ssl=settings.PGSSL,
    )


class QuotaManager:
    def __init__(
            self,
            pg_pool: Optional[asyncpg.Pool] = None,
            redis: Optional[Redis] = None,
            *,
            store: Optional[UsageStateStore] = None,
            directory: Optional[OrganizationDirectory] = None,
            audit: Optional[QuotaAuditLog] = None,
            transport: Optional[NotificationTransport] = None,
            settings: Optional[Settings] = None,
    ):
        """
        Initialize Quota Manager.

        Args:
            pg_pool: asyncpg connection pool (organizations, audit log)
            redis: Redis client (usage state)
            store / directory / audit / transport: explicit backends; override the defaults
            settings: service settings (default: get_settings())
        """
        self.settings = settings or get_settings()
        self._pg_pool = pg_pool
        self._redis = redis
        schema = self.settings.CONTROL_PLANE_SCHEMA

        self.store = store or (RedisUsageStateStore(redis) if redis is not None else None)
        self.directory = directory or PgOrganizationDirectory(pg_pool, schema=schema)
        self.audit = audit or PgQuotaAuditLog(pg_pool, schema=schema)
        self.transport = transport or EmailQuotaTransport()

        # Track if we own the pool/redis
        self._owns_pool = pg_pool is None and (directory is None or audit is None)
        self._owns_redis = redis is None and store is None

        self._wire()

    def _wire(self) -> None:
        if self.store is None:
            return
        self.notifier = ThresholdNotifier(
            self.store, self.transport, claim_ttl_sec=self.settings.QUOTA_NOTIFY_CLAIM_TTL_SEC,
        )
        self.gate = QuotaGate(self.store, self.directory, locale=self.settings.QUOTA_MESSAGE_LOCALE)
        self.recorder = UsageRecorder(self.store, self.directory, self.notifier)
        self.resetter = CycleResetter(
            self.store, self.directory, self.audit, admin_role=self.settings.PLATFORM_ADMIN_ROLE,
        )
        self.stats = UsageStatsView(self.store, self.directory)

    async def init(self, *, redis_url: Optional[str] = None, ensure_schema: bool = False):
        """Initialize connections if not provided."""
        if self._owns_redis:
            self._redis = get_async_redis_client(
                redis_url or self.settings.REDIS_URL,
                max_connections=self.settings.REDIS_MAX_CONNECTIONS,
            )
            self.store = RedisUsageStateStore(self._redis)

        if self._owns_pool and self._pg_pool is None:
            self._pg_pool = await create_pg_pool(self.settings)
        for backend in (self.directory, self.audit):
            if hasattr(backend, "set_pg_pool") and self._pg_pool is not None:
                backend.set_pg_pool(self._pg_pool)

        if ensure_schema:
            for backend in (self.directory, self.audit):
                if hasattr(backend, "ensure_schema"):
                    await backend.ensure_schema()

        self._wire()
        logger.info("[init] Quota manager initialized")

    async def close(self):
        """Close connections."""
        if self._owns_pool and self._pg_pool is not None:
            await self._pg_pool.close()
            self._pg_pool = None
        # shared Redis clients are closed by close_async_redis_clients()

    # =========================================================================
    # Conversation flow
    # =========================================================================

    async def check(self, org_id: str, *, now: Optional[datetime] = None) -> QuotaDecision:
        return await self.gate.check(org_id, now=now)

    def should_block_widget(self, org: Optional[Organization], *, now: Optional[datetime] = None) -> QuotaDecision:
        return self.gate.should_block_widget(org, now=now)

    async def increment(self, org_id: str, *, now: Optional[datetime] = None) -> UsageUpdate:
        return await self.recorder.increment(org_id, now=now)

    async def record_conversation(self, org_id: str, *, now: Optional[datetime] = None) -> Optional[UsageUpdate]:
        """Count a created conversation. Failures are logged, never surfaced to the end user."""
        try:
            return await self.recorder.increment(org_id, now=now)
        except Exception:
            logger.exception(f"[record_conversation] Failed to count conversation for org={org_id}")
            return None

    # =========================================================================
    # Cycle & stats
    # =========================================================================

    async def usage_stats(self, org_id: str, *, now: Optional[datetime] = None) -> UsageStats:
        return await self.stats.get(org_id, now=now)

    async def reset_if_stale(self, org_id: str, *, now: Optional[datetime] = None) -> UsageMutation:
        return await self.resetter.reset_if_stale(org_id, now=now)

    async def manual_reset(self, org_id: str, actor: Optional[User], *,
                           now: Optional[datetime] = None) -> ManualResetResult:
        return await self.resetter.manual_reset(org_id, actor, now=now)

    async def audit_history(self, org_id: str, *, limit: int = 50) -> List[ResetAuditEntry]:
        return await self.audit.list_for_organization(org_id, limit=limit)

    # =========================================================================
    # Jobs
    # =========================================================================

    async def run_threshold_catchup(self, *, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Daily pass over every organization with a usage state: apply any
        pending cycle reset, then run the same threshold check as a live
        increment. Per-organization failures are counted, not raised.
        """
        now = now or utcnow()
        checked, sent = 0, 0
        errors: List[Dict[str, str]] = []

        async for org_id in self.store.organization_ids():
            checked += 1
            try:
                org = await self.directory.get(org_id)
                if org is None:
                    errors.append({"organization_id": org_id, "error": "organization_not_found"})
                    continue
                mutation = await self.resetter.reset_if_stale(org_id, now=now, org=org)
                if await self.notifier.maybe_notify(org, mutation.state):
                    sent += 1
            except Exception as e:
                logger.exception(f"[run_threshold_catchup] Failed for org={org_id}")
                errors.append({"organization_id": org_id, "error": str(e)})

        logger.info(f"[run_threshold_catchup] checked={checked} sent={sent} errors={len(errors)}")
        return {
            "checked": checked,
            "notifications_sent": sent,
            "errors": errors,
            "timestamp": now.isoformat(),
        }

    async def reconcile_usage(self, org_id: str, actual_count: Optional[int] = None, *,
                              now: Optional[datetime] = None) -> Optional[UsageUpdate]:
        """
        Align ``current`` with the number of conversations actually created
        this month. Returns None when the stored count already matches.
        """
        now = now or utcnow()
        if actual_count is None:
            actual_count = await self.directory.count_conversations_since(org_id, month_start(now))
        state = await self.store.get(org_id)
        if state is not None and not state.is_stale(now) and state.current == actual_count:
            return None
        logger.info(f"[reconcile_usage] org={org_id} stored={state.current if state else None} "
                    f"actual={actual_count}")
        return await self.recorder.set_usage(org_id, actual_count, now=now)

    async def reconcile_all(self, *, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or utcnow()
        checked, updated = 0, 0
        errors: List[Dict[str, str]] = []
        for org_id in await self.directory.list_organization_ids():
            checked += 1
            try:
                if await self.reconcile_usage(org_id, now=now) is not None:
                    updated += 1
            except Exception as e:
                logger.exception(f"[reconcile_all] Failed for org={org_id}")
                errors.append({"organization_id": org_id, "error": str(e)})
        return {"checked": checked, "updated": updated, "errors": errors, "timestamp": now.isoformat()}

    # =========================================================================
    # Account deletion
    # =========================================================================

    async def delete_organization_usage(self, org_id: str) -> bool:
        """Hook for the account-deletion cascade; removes the usage state."""
        deleted = await self.store.delete(org_id)
        logger.info(f"[delete_organization_usage] org={org_id} deleted={deleted}")
        return deleted
