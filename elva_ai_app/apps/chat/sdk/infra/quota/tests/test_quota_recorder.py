# SPDX-License-Identifier: MIT

import asyncio

import pytest

from elva_ai_app.apps.chat.sdk.infra.quota.cycle import month_start
from elva_ai_app.apps.chat.sdk.infra.quota.errors import IncrementFailed, OrganizationNotFound
from elva_ai_app.apps.chat.sdk.infra.quota.tests.helpers import (
    BrokenStore,
    MID_FEB,
    MID_JAN,
    make_manager,
    make_org,
)


@pytest.mark.asyncio
async def test_concurrent_increments_are_not_lost():
    mgr = make_manager(make_org("org-1", "pro"))
    await asyncio.gather(*[mgr.increment("org-1", now=MID_JAN) for _ in range(150)])
    state = await mgr.store.get("org-1")
    assert state.current == 150
    assert state.overage == 0


@pytest.mark.asyncio
async def test_increment_initializes_missing_state():
    mgr = make_manager(make_org("org-1", "growth"))
    update = await mgr.increment("org-1", now=MID_JAN)
    assert update.current == 1
    assert update.limit == 300
    assert update.percentage == pytest.approx(100 / 300)


@pytest.mark.asyncio
async def test_overage_tracks_current_minus_limit():
    mgr = make_manager(make_org("org-1", "basic"))
    await mgr.recorder.set_usage("org-1", 100, now=MID_JAN)
    update = await mgr.increment("org-1", now=MID_JAN)
    assert update.current == 101
    assert update.overage == 1


@pytest.mark.asyncio
async def test_stale_cycle_resets_inside_increment():
    mgr = make_manager(make_org("org-1", "free"))
    await mgr.recorder.set_usage("org-1", 100, now=MID_JAN)
    assert (await mgr.store.get("org-1")).notified_thresholds == frozenset({"100%"})

    update = await mgr.increment("org-1", now=MID_FEB)
    assert update.current == 1
    state = await mgr.store.get("org-1")
    assert state.cycle_start == month_start(MID_FEB)
    assert state.notified_thresholds == frozenset()


@pytest.mark.asyncio
async def test_concurrent_stale_increments_reset_once():
    mgr = make_manager(make_org("org-1", "growth"))
    await mgr.recorder.set_usage("org-1", 250, now=MID_JAN)
    await asyncio.gather(*[mgr.increment("org-1", now=MID_FEB) for _ in range(20)])
    assert (await mgr.store.get("org-1")).current == 20


@pytest.mark.asyncio
async def test_plan_change_applies_at_next_reset():
    org = make_org("org-1", "free")
    mgr = make_manager(org)
    await mgr.increment("org-1", now=MID_JAN)
    org.plan = "pro"
    assert (await mgr.increment("org-1", now=MID_JAN)).limit == 100
    assert (await mgr.increment("org-1", now=MID_FEB)).limit == 750


@pytest.mark.asyncio
async def test_storage_failure_raises_increment_failed():
    mgr = make_manager(make_org("org-1"), store=BrokenStore())
    with pytest.raises(IncrementFailed) as exc:
        await mgr.increment("org-1", now=MID_JAN)
    assert exc.value.code == "increment_failed"


@pytest.mark.asyncio
async def test_unknown_organization_raises():
    mgr = make_manager()
    with pytest.raises(OrganizationNotFound):
        await mgr.increment("ghost", now=MID_JAN)


@pytest.mark.asyncio
async def test_record_conversation_swallows_failures():
    mgr = make_manager(make_org("org-1"), store=BrokenStore())
    assert await mgr.record_conversation("org-1", now=MID_JAN) is None
    assert await mgr.record_conversation("ghost", now=MID_JAN) is None
