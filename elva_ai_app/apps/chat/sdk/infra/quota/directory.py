# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Elena Viter

# sdk/infra/quota/directory.py
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional

import asyncpg

from elva_ai_app.apps.chat.sdk.infra.quota.errors import StorageUnavailable
from elva_ai_app.apps.chat.sdk.infra.quota.models import Organization

logger = logging.getLogger(__name__)

ADMIN_TEAM_ROLES = ("owner", "admin")


class OrganizationDirectory(ABC):
    """Read access to tenant organizations, their contacts and memberships."""

    @abstractmethod
    async def get(self, org_id: str) -> Optional[Organization]:
        ...

    @abstractmethod
    async def is_member(self, org_id: str, user_id: str) -> bool:
        ...

    @abstractmethod
    async def count_conversations_since(self, org_id: str, since: datetime) -> int:
        ...

    @abstractmethod
    async def list_organization_ids(self) -> List[str]:
        ...


class PgOrganizationDirectory(OrganizationDirectory):
    """
    Organizations live in the control-plane schema:

      organizations(id, name, plan, trial_ends_at, owner_id, billing_email)
      users(id, email, name)
      team_members(organization_id, user_id, role, status)
      conversations(id, organization_id, created_at)
    """

    def __init__(self, pg_pool: Optional[asyncpg.Pool], *, schema: str = "elva_control_plane"):
        self._pg_pool = pg_pool
        self.schema = schema

    def set_pg_pool(self, pg_pool: asyncpg.Pool) -> None:
        self._pg_pool = pg_pool

    async def ensure_schema(self):
        # rely on external DDL execution; this makes sure the tables exist in dev
        ddl = f"""
        CREATE SCHEMA IF NOT EXISTS {self.schema};
        CREATE TABLE IF NOT EXISTS {self.schema}.users (
          id TEXT PRIMARY KEY,
          email TEXT,
          name TEXT,
          created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        );
        CREATE TABLE IF NOT EXISTS {self.schema}.organizations (
          id TEXT PRIMARY KEY,
          name TEXT NOT NULL DEFAULT '',
          plan TEXT NOT NULL DEFAULT 'free',
          trial_ends_at TIMESTAMPTZ,
          owner_id TEXT REFERENCES {self.schema}.users(id) ON DELETE SET NULL,
          billing_email TEXT,
          created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        );
        CREATE TABLE IF NOT EXISTS {self.schema}.team_members (
          organization_id TEXT NOT NULL REFERENCES {self.schema}.organizations(id) ON DELETE CASCADE,
          user_id TEXT NOT NULL REFERENCES {self.schema}.users(id) ON DELETE CASCADE,
          role TEXT NOT NULL DEFAULT 'member',
          status TEXT NOT NULL DEFAULT 'active',
          PRIMARY KEY (organization_id, user_id)
        );
        CREATE TABLE IF NOT EXISTS {self.schema}.conversations (
          id TEXT PRIMARY KEY,
          organization_id TEXT NOT NULL REFERENCES {self.schema}.organizations(id) ON DELETE CASCADE,
          created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        );
        CREATE INDEX IF NOT EXISTS conversations_org_created_idx
          ON {self.schema}.conversations (organization_id, created_at)
        """
        async with self._pg_pool.acquire() as con:
            for stmt in [s.strip() for s in ddl.split(";") if s.strip()]:
                await con.execute(stmt)

    async def get(self, org_id: str) -> Optional[Organization]:
        try:
            async with self._pg_pool.acquire() as con:
                row = await con.fetchrow(f"""
                    SELECT o.id, o.name, o.plan, o.trial_ends_at, o.billing_email, u.email AS owner_email
                    FROM {self.schema}.organizations o
                    LEFT JOIN {self.schema}.users u ON u.id = o.owner_id
                    WHERE o.id = $1
                """, org_id)
                if not row:
                    return None
                admins = await con.fetch(f"""
                    SELECT u.email
                    FROM {self.schema}.team_members tm
                    JOIN {self.schema}.users u ON u.id = tm.user_id
                    WHERE tm.organization_id = $1
                      AND tm.status = 'active'
                      AND tm.role = ANY($2::text[])
                      AND u.email IS NOT NULL
                """, org_id, list(ADMIN_TEAM_ROLES))
        except (asyncpg.PostgresError, OSError) as e:
            logger.error(f"[get] Failed to load organization {org_id}: {e}")
            raise StorageUnavailable(f"organization directory unavailable: {e}", data={"op": "get"}) from e

        return Organization(
            id=row["id"],
            name=row["name"] or "",
            plan=row["plan"],
            trial_ends_at=row["trial_ends_at"],
            owner_email=row["owner_email"],
            billing_email=row["billing_email"],
            admin_emails=[r["email"] for r in admins],
        )

    async def is_member(self, org_id: str, user_id: str) -> bool:
        async with self._pg_pool.acquire() as con:
            row = await con.fetchrow(f"""
                SELECT 1 FROM {self.schema}.team_members
                WHERE organization_id = $1 AND user_id = $2 AND status = 'active'
                UNION ALL
                SELECT 1 FROM {self.schema}.organizations
                WHERE id = $1 AND owner_id = $2
                LIMIT 1
            """, org_id, user_id)
        return row is not None

    async def count_conversations_since(self, org_id: str, since: datetime) -> int:
        async with self._pg_pool.acquire() as con:
            n = await con.fetchval(f"""
                SELECT COUNT(*) FROM {self.schema}.conversations
                WHERE organization_id = $1 AND created_at >= $2
            """, org_id, since)
        return int(n or 0)

    async def list_organization_ids(self) -> List[str]:
        async with self._pg_pool.acquire() as con:
            rows = await con.fetch(f"SELECT id FROM {self.schema}.organizations ORDER BY id")
        return [r["id"] for r in rows]


class InMemoryOrganizationDirectory(OrganizationDirectory):
    def __init__(self, organizations: Optional[List[Organization]] = None):
        self.organizations: Dict[str, Organization] = {o.id: o for o in (organizations or [])}
        self.members: Dict[str, set] = {}
        self.conversations: Dict[str, List[datetime]] = {}

    def add(self, org: Organization, *, members: Optional[List[str]] = None) -> Organization:
        self.organizations[org.id] = org
        if members:
            self.members.setdefault(org.id, set()).update(members)
        return org

    async def get(self, org_id: str) -> Optional[Organization]:
        return self.organizations.get(org_id)

    async def is_member(self, org_id: str, user_id: str) -> bool:
        return user_id in self.members.get(org_id, set())

    async def count_conversations_since(self, org_id: str, since: datetime) -> int:
        return sum(1 for ts in self.conversations.get(org_id, []) if ts >= since)

    async def list_organization_ids(self) -> List[str]:
        return sorted(self.organizations.keys())
