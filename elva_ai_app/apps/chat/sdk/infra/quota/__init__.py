# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Elena Viter

# sdk/infra/quota/__init__.py
"""
Conversation usage-quota accounting: plan limits, monthly cycles, admission
checks, atomic counting and one-time threshold notifications.
"""

from elva_ai_app.apps.chat.sdk.infra.quota.errors import (
    QuotaError,
    OrganizationNotFound,
    StorageUnavailable,
    IncrementFailed,
    NotificationDispatchFailed,
    UnauthorizedReset,
)
from elva_ai_app.apps.chat.sdk.infra.quota.models import (
    Organization,
    UsageState,
    QuotaDecision,
    UsageUpdate,
    UsageStats,
    ResetAuditEntry,
    QuotaNotification,
)
from elva_ai_app.apps.chat.sdk.infra.quota.plans import (
    Plan,
    Threshold,
    QuotaReason,
    get_conversation_limit,
)
from elva_ai_app.apps.chat.sdk.infra.quota.manager import QuotaManager

__all__ = [
    "QuotaError", "OrganizationNotFound", "StorageUnavailable", "IncrementFailed",
    "NotificationDispatchFailed", "UnauthorizedReset",
    "Organization", "UsageState", "QuotaDecision", "UsageUpdate", "UsageStats",
    "ResetAuditEntry", "QuotaNotification",
    "Plan", "Threshold", "QuotaReason", "get_conversation_limit",
    "QuotaManager",
]
