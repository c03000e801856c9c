# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Elena Viter

# sdk/infra/quota/notifier.py
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import List, Optional

from elva_ai_app.apps.chat.sdk.infra.quota.errors import NotificationDispatchFailed
from elva_ai_app.apps.chat.sdk.infra.quota.models import Organization, QuotaNotification, UsageState
from elva_ai_app.apps.chat.sdk.infra.quota.plans import Threshold, plan_display_name, select_threshold
from elva_ai_app.apps.chat.sdk.infra.quota.store import UsageStateStore
from elva_ai_app.infra.channel.email import send_email
from elva_ai_app.infra.namespaces import CONFIG

logger = logging.getLogger(__name__)


class NotificationTransport(ABC):
    @abstractmethod
    async def send(self, notification: QuotaNotification) -> bool:
        """Deliver one notification. Returns False (or raises) when it was not delivered."""


def render_quota_email(n: QuotaNotification) -> tuple[str, str]:
    reached = n.percentage >= 100
    if reached:
        subject = f"⚠️ Månedlig samtalekvote nået - {n.organization_name}"
        intro = f"Din organisation har nået den månedlige samtalekvote på {n.limit} samtaler."
        if n.message_type == "quota_reached_free":
            intro += " Dine widgets er nu deaktiveret indtil næste måned, eller du opgraderer din plan."
        else:
            intro += " Yderligere samtaler vil blive faktureret separat."
    else:
        subject = f"⚠️ 80% af månedlig samtalekvote brugt - {n.organization_name}"
        intro = f"Din organisation har brugt {n.percentage}% af sin månedlige samtalekvote."

    body = "\n".join([
        "Hej,",
        "",
        intro,
        "",
        f"Forbrugt: {n.current} af {n.limit} samtaler",
        f"Procent brugt: {n.percentage}%",
        f"Plan: {plan_display_name(n.plan)}",
        f"Organisation: {n.organization_name}",
        "",
        "Venlig hilsen",
        "Elva Solutions",
    ])
    return subject, body


class EmailQuotaTransport(NotificationTransport):
    """Quota notifications over the shared SMTP channel (EMAIL_* settings)."""

    async def send(self, notification: QuotaNotification) -> bool:
        subject, body = render_quota_email(notification)
        ok = await send_email(to_addrs=list(notification.recipients), subject=subject, body=body)
        if ok:
            logger.info(f"[send] Quota email '{notification.message_type}' sent to "
                        f"{len(notification.recipients)} recipient(s) for org={notification.organization_id}")
        return ok


class RecordingTransport(NotificationTransport):
    """Keeps notifications in memory. ``fail_next`` makes the next N sends fail."""

    def __init__(self, *, fail_next: int = 0):
        self.sent: List[QuotaNotification] = []
        self.attempts = 0
        self.fail_next = fail_next

    async def send(self, notification: QuotaNotification) -> bool:
        self.attempts += 1
        if self.fail_next > 0:
            self.fail_next -= 1
            return False
        self.sent.append(notification)
        return True


class ThresholdNotifier:
    """
    One-time 80% / 100% / 110% notifications per billing cycle.

    A label is claimed atomically before dispatch so concurrent increments
    cannot both send it, and recorded only after a successful send. A failed
    send releases the claim; the next increment (or the daily job) retries.
    """

    def __init__(self, store: UsageStateStore, transport: NotificationTransport, *,
                 claim_ttl_sec: int = CONFIG.QUOTA.NOTIFY_CLAIM_TTL_SEC):
        self.store = store
        self.transport = transport
        self.claim_ttl_sec = claim_ttl_sec

    def build_notification(self, org: Organization, state: UsageState, threshold: Threshold) -> QuotaNotification:
        return QuotaNotification(
            organization_id=org.id,
            organization_name=org.name or org.id,
            recipients=tuple(org.recipients()),
            threshold=threshold.label,
            percentage=int(round(state.percentage)),
            current=state.current,
            limit=state.limit,
            plan=org.effective_plan,
        )

    async def _dispatch(self, notification: QuotaNotification) -> None:
        if not notification.recipients:
            logger.warning(f"[maybe_notify] No recipients for org={notification.organization_id}; "
                           f"recording {notification.threshold} without sending")
            return
        ok = await self.transport.send(notification)
        if not ok:
            raise NotificationDispatchFailed(
                f"transport did not deliver {notification.threshold}",
                data={"organization_id": notification.organization_id, "threshold": notification.threshold},
            )

    async def maybe_notify(self, org: Organization, state: UsageState) -> Optional[Threshold]:
        """Dispatch at most one threshold notification. Never raises."""
        try:
            threshold = select_threshold(state.percentage, state.notified_thresholds)
            if threshold is None:
                return None

            claimed = await self.store.claim_threshold(
                org.id, cycle_start=state.cycle_start, label=threshold.label, ttl_sec=self.claim_ttl_sec,
            )
            if not claimed:
                logger.debug(f"[maybe_notify] {threshold.label} for org={org.id} already claimed or sent")
                return None

            notification = self.build_notification(org, state, threshold)
            try:
                await self._dispatch(notification)
            except Exception as e:
                logger.error(f"[maybe_notify] notification_dispatch_failed org={org.id} "
                             f"threshold={threshold.label}: {e}")
                await self.store.release_claim(org.id, cycle_start=state.cycle_start, label=threshold.label)
                return None

            recorded = await self.store.mark_notified(org.id, cycle_start=state.cycle_start, label=threshold.label)
            if not recorded:
                logger.warning(f"[maybe_notify] Cycle moved before {threshold.label} was recorded for org={org.id}")
            logger.info(f"[maybe_notify] Sent {threshold.label} for org={org.id} "
                        f"({state.current}/{state.limit}, {notification.percentage}%)")
            return threshold
        except Exception:
            logger.exception(f"[maybe_notify] Threshold check failed for org={org.id}")
            return None
