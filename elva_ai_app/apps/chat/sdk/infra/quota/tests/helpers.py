# SPDX-License-Identifier: MIT

from datetime import datetime, timezone
from typing import Optional

from elva_ai_app.apps.chat.sdk.config import Settings
from elva_ai_app.apps.chat.sdk.infra.quota.audit import InMemoryQuotaAuditLog
from elva_ai_app.apps.chat.sdk.infra.quota.directory import InMemoryOrganizationDirectory
from elva_ai_app.apps.chat.sdk.infra.quota.errors import StorageUnavailable
from elva_ai_app.apps.chat.sdk.infra.quota.manager import QuotaManager
from elva_ai_app.apps.chat.sdk.infra.quota.models import Organization
from elva_ai_app.apps.chat.sdk.infra.quota.notifier import RecordingTransport
from elva_ai_app.apps.chat.sdk.infra.quota.store import InMemoryUsageStateStore
from elva_ai_app.auth.requirements import User

MID_JAN = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)
MID_FEB = datetime(2025, 2, 10, 9, 30, tzinfo=timezone.utc)

ADMIN_ROLE = "elva:role:platform-admin"


def make_org(org_id: str = "org-1", plan: Optional[str] = "free", **kw) -> Organization:
    kw.setdefault("name", f"Org {org_id}")
    kw.setdefault("owner_email", f"owner@{org_id}.example")
    return Organization(id=org_id, plan=plan, **kw)


def admin_user(username: str = "root-admin") -> User:
    return User(username=username, email=f"{username}@elva.example", roles=[ADMIN_ROLE])


def member_user(username: str = "member-1") -> User:
    return User(username=username, email=f"{username}@elva.example", roles=["elva:role:user"])


class BrokenReadStore(InMemoryUsageStateStore):
    """Reads fail as if Redis were down; writes still work."""

    async def get(self, org_id):
        raise StorageUnavailable("usage store unavailable: connection refused")


class BrokenStore(InMemoryUsageStateStore):
    async def increment(self, org_id, **kw):
        raise StorageUnavailable("usage store unavailable: connection refused")


class FailingAuditLog(InMemoryQuotaAuditLog):
    async def append(self, entry):
        raise RuntimeError("audit table unavailable")


def make_manager(*orgs: Organization, store=None, transport=None, audit=None, members=None) -> QuotaManager:
    directory = InMemoryOrganizationDirectory()
    for org in orgs:
        directory.add(org, members=(members or {}).get(org.id))
    return QuotaManager(
        store=store or InMemoryUsageStateStore(),
        directory=directory,
        audit=audit or InMemoryQuotaAuditLog(),
        transport=transport or RecordingTransport(),
        settings=Settings(),
    )
