# SPDX-License-Identifier: MIT

import pytest

from elva_ai_app.apps.chat.sdk.infra.quota.cycle import month_start
from elva_ai_app.apps.chat.sdk.infra.quota.errors import OrganizationNotFound, UnauthorizedReset
from elva_ai_app.apps.chat.sdk.infra.quota.tests.helpers import (
    FailingAuditLog,
    MID_FEB,
    MID_JAN,
    admin_user,
    make_manager,
    make_org,
    member_user,
)


@pytest.mark.asyncio
async def test_reset_if_stale_is_idempotent():
    mgr = make_manager(make_org("org-1", "growth"))
    await mgr.recorder.set_usage("org-1", 310, now=MID_JAN)

    first = await mgr.reset_if_stale("org-1", now=MID_FEB)
    second = await mgr.reset_if_stale("org-1", now=MID_FEB)

    assert first.reset is True
    assert first.previous_current == 310
    assert second.reset is False
    for m in (first, second):
        assert m.state.current == 0
        assert m.state.overage == 0
        assert m.state.notified_thresholds == frozenset()
        assert m.state.cycle_start == month_start(MID_FEB)


@pytest.mark.asyncio
async def test_reset_if_stale_is_noop_in_current_month():
    mgr = make_manager(make_org("org-1"))
    await mgr.recorder.set_usage("org-1", 42, now=MID_JAN)
    mutation = await mgr.reset_if_stale("org-1", now=MID_JAN)
    assert not mutation.reset
    assert mutation.state.current == 42


@pytest.mark.asyncio
async def test_reset_rederives_limit_from_current_plan():
    org = make_org("org-1", "basic")
    mgr = make_manager(org)
    await mgr.increment("org-1", now=MID_JAN)
    org.plan = "growth"
    mutation = await mgr.reset_if_stale("org-1", now=MID_FEB)
    assert mutation.state.limit == 300


@pytest.mark.asyncio
async def test_manual_reset_zeroes_and_audits():
    mgr = make_manager(make_org("org-1", "free", name="Acme ApS"))
    await mgr.recorder.set_usage("org-1", 57, now=MID_JAN)

    result = await mgr.manual_reset("org-1", admin_user("ops-anna"), now=MID_JAN)

    assert result.state.current == 0
    assert result.state.overage == 0
    assert result.state.notified_thresholds == frozenset()
    assert result.audit.previous_current == 57
    assert result.audit.new_current == 0
    assert result.audit.actor_id == "ops-anna"
    assert result.audit.organization_name == "Acme ApS"
    assert result.audit.timestamp == MID_JAN
    assert result.audit.action == "quota_reset"
    assert await mgr.audit_history("org-1") == [result.audit]


@pytest.mark.asyncio
@pytest.mark.parametrize("actor", [None, "member"])
async def test_manual_reset_rejects_non_admin_without_mutation(actor):
    mgr = make_manager(make_org("org-1"))
    await mgr.recorder.set_usage("org-1", 57, now=MID_JAN)
    user = member_user() if actor == "member" else None

    with pytest.raises(UnauthorizedReset) as exc:
        await mgr.manual_reset("org-1", user, now=MID_JAN)

    assert exc.value.code == "unauthorized_reset"
    assert (await mgr.store.get("org-1")).current == 57
    assert await mgr.audit_history("org-1") == []


@pytest.mark.asyncio
async def test_manual_reset_unknown_org():
    mgr = make_manager()
    with pytest.raises(OrganizationNotFound):
        await mgr.manual_reset("ghost", admin_user(), now=MID_JAN)


@pytest.mark.asyncio
async def test_audit_failure_propagates():
    mgr = make_manager(make_org("org-1"), audit=FailingAuditLog())
    await mgr.recorder.set_usage("org-1", 12, now=MID_JAN)
    with pytest.raises(RuntimeError, match="audit table unavailable"):
        await mgr.manual_reset("org-1", admin_user(), now=MID_JAN)
