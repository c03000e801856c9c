# SPDX-License-Identifier: MIT

from datetime import datetime, timezone

import pytest

from elva_ai_app.apps.chat.sdk.infra.quota.cycle import month_start
from elva_ai_app.apps.chat.sdk.infra.quota.errors import OrganizationNotFound
from elva_ai_app.apps.chat.sdk.infra.quota.models import UsageState
from elva_ai_app.apps.chat.sdk.infra.quota.stats import build_usage_stats
from elva_ai_app.apps.chat.sdk.infra.quota.tests.helpers import MID_FEB, MID_JAN, make_manager, make_org


def _state(current, limit=100):
    return UsageState("org-1", current=current, limit=limit, cycle_start=month_start(MID_JAN),
                      overage=max(0, current - limit))


@pytest.mark.parametrize("current,status", [(0, "ok"), (79, "ok"), (80, "warning"), (99, "warning"),
                                            (100, "exceeded"), (180, "exceeded")])
def test_status_boundaries(current, status):
    assert build_usage_stats(_state(current), "free", now=MID_JAN).status == status


def test_percentage_is_rounded_but_status_uses_exact_value():
    stats = build_usage_stats(_state(239, 300), "growth", now=MID_JAN)
    assert stats.percentage == 80
    assert stats.status == "ok"


def test_cycle_dates():
    stats = build_usage_stats(_state(10), "free", now=MID_JAN)
    assert stats.last_reset == datetime(2025, 1, 1, tzinfo=timezone.utc)
    assert stats.next_reset == datetime(2025, 2, 1, tzinfo=timezone.utc)
    assert stats.days_remaining_in_cycle == 17


def test_zero_limit_reports_zero_percent():
    stats = build_usage_stats(_state(5, limit=0), "free", now=MID_JAN)
    assert stats.percentage == 0
    assert stats.status == "ok"


@pytest.mark.asyncio
async def test_stats_without_state_and_with_stale_state():
    mgr = make_manager(make_org("org-1", "pro"))
    empty = await mgr.usage_stats("org-1", now=MID_JAN)
    assert (empty.current, empty.limit, empty.status) == (0, 750, "ok")

    await mgr.recorder.set_usage("org-1", 700, now=MID_JAN)
    stats = await mgr.usage_stats("org-1", now=MID_JAN)
    assert stats.current == 700
    assert stats.notified_thresholds == ("80%",)

    stale = await mgr.usage_stats("org-1", now=MID_FEB)
    assert stale.current == 0
    assert stale.last_reset == month_start(MID_FEB)
    # read-only: nothing was reset in storage
    assert (await mgr.store.get("org-1")).current == 700


@pytest.mark.asyncio
async def test_stats_unknown_org():
    mgr = make_manager()
    with pytest.raises(OrganizationNotFound):
        await mgr.usage_stats("ghost", now=MID_JAN)


def test_to_dict_is_json_friendly():
    d = build_usage_stats(_state(85), "free", now=MID_JAN).to_dict()
    assert d["last_reset"] == "2025-01-01T00:00:00+00:00"
    assert d["status"] == "warning"
    assert isinstance(d["notified_thresholds"], list)
