# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Elena Viter

# sdk/infra/quota/models.py
from __future__ import annotations

from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Optional, List, FrozenSet, Tuple, Dict, Any

from elva_ai_app.apps.chat.sdk.infra.quota.cycle import month_start, is_stale as _is_stale
from elva_ai_app.apps.chat.sdk.infra.quota.plans import (
    get_conversation_limit,
    normalize_plan,
    quota_message,
    QuotaReason,
    THRESHOLD_LABELS,
)


def usage_percentage(current: int, limit: int) -> float:
    if limit is None or limit <= 0:
        return 0.0
    return (current / limit) * 100.0


def usage_status(percentage: float) -> str:
    if percentage >= 100:
        return "exceeded"
    if percentage >= 80:
        return "warning"
    return "ok"


@dataclass(frozen=True)
class UsageState:
    """Conversation usage of one organization in its active billing cycle."""
    organization_id: str
    current: int
    limit: int
    cycle_start: datetime
    overage: int = 0
    notified_thresholds: FrozenSet[str] = frozenset()

    @property
    def percentage(self) -> float:
        return usage_percentage(self.current, self.limit)

    def is_stale(self, now: Optional[datetime] = None) -> bool:
        return _is_stale(self.cycle_start, now)

    @classmethod
    def fresh(cls, organization_id: str, plan: Optional[str], now: Optional[datetime] = None) -> "UsageState":
        return cls(
            organization_id=organization_id,
            current=0,
            limit=get_conversation_limit(normalize_plan(plan)),
            cycle_start=month_start(now),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "organization_id": self.organization_id,
            "current": self.current,
            "limit": self.limit,
            "cycle_start": self.cycle_start.isoformat(),
            "overage": self.overage,
            "notified_thresholds": sorted_labels(self.notified_thresholds),
        }


def sorted_labels(labels) -> List[str]:
    """Threshold labels in ascending order (80%, 100%, 110%)."""
    known = [l for l in reversed(THRESHOLD_LABELS) if l in labels]
    return known + sorted(l for l in labels if l not in THRESHOLD_LABELS)


@dataclass
class Organization:
    id: str
    name: str = ""
    plan: Optional[str] = None
    trial_ends_at: Optional[datetime] = None
    owner_email: Optional[str] = None
    billing_email: Optional[str] = None
    # emails of active owner/admin team members
    admin_emails: List[str] = field(default_factory=list)
    # already-loaded usage, for read-only decisions on a snapshot
    usage: Optional[UsageState] = None

    @property
    def effective_plan(self) -> str:
        return normalize_plan(self.plan)

    def recipients(self) -> List[str]:
        seen, out = set(), []
        for addr in [self.owner_email, self.billing_email, *(self.admin_emails or [])]:
            if not addr:
                continue
            addr = addr.strip()
            key = addr.lower()
            if addr and key not in seen:
                seen.add(key)
                out.append(addr)
        return out


@dataclass(frozen=True)
class UsageMutation:
    state: UsageState
    reset: bool = False
    previous_current: Optional[int] = None


@dataclass
class QuotaDecision:
    allowed: bool
    blocked: bool = False
    reason: Optional[str] = None
    message: Optional[str] = None
    # fail-open details; never shown to end users
    error: Optional[str] = None
    error_code: Optional[str] = None

    @classmethod
    def allow(cls) -> "QuotaDecision":
        return cls(allowed=True, blocked=False)

    @classmethod
    def block(cls, reason: QuotaReason, *, locale: Optional[str] = None) -> "QuotaDecision":
        reason = QuotaReason(reason)
        return cls(allowed=False, blocked=True, reason=reason.value, message=quota_message(reason, locale))

    @classmethod
    def fail_open(cls, error: str, *, code: str) -> "QuotaDecision":
        return cls(allowed=True, blocked=False, error=error, error_code=code)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class UsageUpdate:
    current: int
    limit: int
    percentage: float
    overage: int
    notified: Optional[str] = None

    @classmethod
    def from_state(cls, state: UsageState, *, notified: Optional[str] = None) -> "UsageUpdate":
        return cls(
            current=state.current,
            limit=state.limit,
            percentage=state.percentage,
            overage=state.overage,
            notified=notified,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class UsageStats:
    current: int
    limit: int
    percentage: int
    overage: int
    days_remaining_in_cycle: int
    last_reset: datetime
    next_reset: datetime
    notified_thresholds: Tuple[str, ...]
    status: str

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["last_reset"] = self.last_reset.isoformat()
        d["next_reset"] = self.next_reset.isoformat()
        d["notified_thresholds"] = list(self.notified_thresholds)
        return d


@dataclass(frozen=True)
class ResetAuditEntry:
    organization_id: str
    organization_name: str
    actor_id: str
    previous_current: int
    new_current: int
    timestamp: datetime
    action: str = "quota_reset"

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["timestamp"] = self.timestamp.isoformat()
        return d


@dataclass(frozen=True)
class ManualResetResult:
    state: UsageState
    audit: ResetAuditEntry


@dataclass(frozen=True)
class QuotaNotification:
    organization_id: str
    organization_name: str
    recipients: Tuple[str, ...]
    threshold: str
    percentage: int
    current: int
    limit: int
    plan: str

    @property
    def message_type(self) -> str:
        if self.percentage >= 100:
            return "quota_reached_free" if self.plan == "free" else "quota_reached_paid"
        return "quota_warning"
