# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Elena Viter

# sdk/infra/quota/audit.py
from __future__ import annotations

import json
from abc import ABC, abstractmethod
from typing import List, Optional

import asyncpg

from elva_ai_app.apps.chat.sdk.infra.quota.models import ResetAuditEntry


class QuotaAuditLog(ABC):
    """Append-only record of administrative quota actions."""

    @abstractmethod
    async def append(self, entry: ResetAuditEntry) -> None:
        ...

    @abstractmethod
    async def list_for_organization(self, org_id: str, *, limit: int = 50) -> List[ResetAuditEntry]:
        ...


class PgQuotaAuditLog(QuotaAuditLog):
    def __init__(self, pg_pool: Optional[asyncpg.Pool], *, schema: str = "elva_control_plane"):
        self._pg_pool = pg_pool
        self.schema = schema

    def set_pg_pool(self, pg_pool: asyncpg.Pool) -> None:
        self._pg_pool = pg_pool

    async def ensure_schema(self):
        ddl = f"""
        CREATE SCHEMA IF NOT EXISTS {self.schema};
        CREATE TABLE IF NOT EXISTS {self.schema}.quota_audit_log (
          id BIGSERIAL PRIMARY KEY,
          action TEXT NOT NULL,
          organization_id TEXT NOT NULL,
          organization_name TEXT,
          performed_by TEXT NOT NULL,
          details JSONB NOT NULL DEFAULT '{{}}'::jsonb,
          created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        );
        CREATE INDEX IF NOT EXISTS quota_audit_log_org_idx
          ON {self.schema}.quota_audit_log (organization_id, created_at DESC)
        """
        async with self._pg_pool.acquire() as con:
            for stmt in [s.strip() for s in ddl.split(";") if s.strip()]:
                await con.execute(stmt)

    async def append(self, entry: ResetAuditEntry) -> None:
        details = {"previous_count": entry.previous_current, "new_count": entry.new_current}
        async with self._pg_pool.acquire() as con:
            await con.execute(f"""
                INSERT INTO {self.schema}.quota_audit_log
                  (action, organization_id, organization_name, performed_by, details, created_at)
                VALUES ($1, $2, $3, $4, $5::jsonb, $6)
            """, entry.action, entry.organization_id, entry.organization_name,
                entry.actor_id, json.dumps(details), entry.timestamp)

    async def list_for_organization(self, org_id: str, *, limit: int = 50) -> List[ResetAuditEntry]:
        async with self._pg_pool.acquire() as con:
            rows = await con.fetch(f"""
                SELECT action, organization_id, organization_name, performed_by, details, created_at
                FROM {self.schema}.quota_audit_log
                WHERE organization_id = $1
                ORDER BY created_at DESC
                LIMIT $2
            """, org_id, limit)
        out = []
        for r in rows:
            details = r["details"]
            if isinstance(details, str):
                details = json.loads(details)
            out.append(ResetAuditEntry(
                organization_id=r["organization_id"],
                organization_name=r["organization_name"] or "",
                actor_id=r["performed_by"],
                previous_current=int(details.get("previous_count", 0)),
                new_current=int(details.get("new_count", 0)),
                timestamp=r["created_at"],
                action=r["action"],
            ))
        return out


class InMemoryQuotaAuditLog(QuotaAuditLog):
    def __init__(self):
        self.entries: List[ResetAuditEntry] = []

    async def append(self, entry: ResetAuditEntry) -> None:
        self.entries.append(entry)

    async def list_for_organization(self, org_id: str, *, limit: int = 50) -> List[ResetAuditEntry]:
        rows = [e for e in reversed(self.entries) if e.organization_id == org_id]
        return rows[:limit]
