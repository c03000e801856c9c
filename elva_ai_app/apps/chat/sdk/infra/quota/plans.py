# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Elena Viter

# sdk/infra/quota/plans.py
from __future__ import annotations

from enum import Enum
from typing import Iterable, Optional

"""
Plan catalog, notification thresholds and user-facing quota messages.
"""

class Plan(str, Enum):
    FREE = "free"
    BASIC = "basic"
    GROWTH = "growth"
    PRO = "pro"


DEFAULT_CONVERSATION_LIMIT = 100

PLAN_CONVERSATION_LIMITS = {
    Plan.FREE.value: 100,
    Plan.BASIC.value: 100,
    Plan.GROWTH.value: 300,
    Plan.PRO.value: 750,
}

PLAN_DISPLAY_NAMES = {
    Plan.FREE.value: "Gratis",
    Plan.BASIC.value: "Basis",
    Plan.GROWTH.value: "Vækst",
    Plan.PRO.value: "Pro",
}


def normalize_plan(plan: Optional[str]) -> str:
    """Organizations without a plan are on the free plan."""
    if plan is None:
        return Plan.FREE.value
    value = plan.value if isinstance(plan, Plan) else str(plan)
    value = value.strip().lower()
    return value or Plan.FREE.value


def get_conversation_limit(plan: Optional[str]) -> int:
    if plan is None:
        return DEFAULT_CONVERSATION_LIMIT
    value = plan.value if isinstance(plan, Plan) else str(plan).strip().lower()
    return PLAN_CONVERSATION_LIMITS.get(value, DEFAULT_CONVERSATION_LIMIT)


def plan_display_name(plan: Optional[str]) -> str:
    value = normalize_plan(plan)
    return PLAN_DISPLAY_NAMES.get(value, value)


def is_blocking_plan(plan: Optional[str]) -> bool:
    """Only the free plan is hard-capped; paid plans accrue overage."""
    return normalize_plan(plan) == Plan.FREE.value


class Threshold(Enum):
    OVER_110 = ("110%", 110)
    REACHED_100 = ("100%", 100)
    WARNING_80 = ("80%", 80)

    def __init__(self, label: str, percent: int):
        self.label = label
        self.percent = percent


# highest first
THRESHOLDS_DESC = sorted(Threshold, key=lambda t: t.percent, reverse=True)
THRESHOLD_LABELS = tuple(t.label for t in THRESHOLDS_DESC)


def select_threshold(percentage: float, notified: Iterable[str]) -> Optional[Threshold]:
    """
    Pick the threshold a usage level should notify, if any.

    Only the highest crossed threshold is a candidate. It is skipped when it,
    or any threshold above it, was already dispatched in this cycle: the lower
    ones are superseded once a tenant has been told about a higher level.
    """
    notified = set(notified or ())
    for t in THRESHOLDS_DESC:
        if t.percent <= percentage:
            already = {h.label for h in THRESHOLDS_DESC if h.percent >= t.percent}
            if already & notified:
                return None
            return t
    return None


class QuotaReason(str, Enum):
    QUOTA_EXCEEDED = "quota_exceeded"
    TRIAL_EXPIRED = "trial_expired"
    ORGANIZATION_NOT_FOUND = "organization_not_found"


DEFAULT_LOCALE = "da"

QUOTA_MESSAGES = {
    "da": {
        QuotaReason.QUOTA_EXCEEDED: "Månedlig kvote nået. Opgrader for at fortsætte.",
        QuotaReason.TRIAL_EXPIRED: "Gratis prøveperiode udløbet. Opgrader for at fortsætte.",
        QuotaReason.ORGANIZATION_NOT_FOUND: "Organisation ikke fundet.",
    },
    "en": {
        QuotaReason.QUOTA_EXCEEDED: "Monthly quota reached. Upgrade to continue.",
        QuotaReason.TRIAL_EXPIRED: "Free trial expired. Upgrade to continue.",
        QuotaReason.ORGANIZATION_NOT_FOUND: "Organization not found.",
    },
}


def quota_message(reason: QuotaReason, locale: Optional[str] = None) -> str:
    table = QUOTA_MESSAGES.get((locale or DEFAULT_LOCALE).lower()) or QUOTA_MESSAGES[DEFAULT_LOCALE]
    return table[QuotaReason(reason)]
