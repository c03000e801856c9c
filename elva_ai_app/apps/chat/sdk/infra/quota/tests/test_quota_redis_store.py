# SPDX-License-Identifier: MIT

import asyncio
import os
import uuid
from unittest.mock import AsyncMock

import pytest
from fakeredis.aioredis import FakeRedis
from redis.exceptions import ConnectionError as RedisConnectionError

from elva_ai_app.apps.chat.sdk.infra.quota.cycle import month_start, to_epoch
from elva_ai_app.apps.chat.sdk.infra.quota.errors import StorageUnavailable
from elva_ai_app.apps.chat.sdk.infra.quota.redis_store import (
    RedisUsageStateStore,
    _LUA_CLAIM_THRESHOLD,
    _LUA_COUNT,
    _LUA_RESET,
)
from elva_ai_app.apps.chat.sdk.infra.quota.tests.helpers import MID_FEB, MID_JAN

JAN_EPOCH = to_epoch(month_start(MID_JAN))


def _store(eval_result=None):
    r = AsyncMock()
    r.eval.return_value = eval_result
    return RedisUsageStateStore(r, namespace="test:usage"), r


@pytest.mark.asyncio
async def test_increment_runs_count_script_with_keys_and_args():
    store, r = _store([81, 100, JAN_EPOCH, 0, [b"80%"], 0, 80])
    mutation = await store.increment("org-1", plan_limit=100, now=MID_JAN)

    args = r.eval.await_args.args
    assert args[0] == _LUA_COUNT
    assert args[1] == 3
    assert args[2:5] == ("test:usage:org-1", "test:usage:org-1:notified", "test:usage:index")
    assert args[5:] == ("org-1", str(JAN_EPOCH), "100", "incr", "1")

    assert mutation.state.current == 81
    assert mutation.state.cycle_start == month_start(MID_JAN)
    assert mutation.state.notified_thresholds == frozenset({"80%"})
    assert mutation.reset is False
    assert mutation.previous_current == 80


@pytest.mark.asyncio
async def test_reset_passes_force_flag():
    store, r = _store([0, 300, to_epoch(month_start(MID_FEB)), 0, [], 1, 42])
    mutation = await store.reset("org-1", plan_limit=300, force=True, now=MID_FEB)
    args = r.eval.await_args.args
    assert args[0] == _LUA_RESET
    assert args[-1] == "1"
    assert mutation.reset is True
    assert mutation.previous_current == 42


@pytest.mark.asyncio
async def test_get_missing_state_returns_none():
    store, _ = _store(None)
    assert await store.get("org-1") is None


@pytest.mark.asyncio
async def test_claim_key_is_scoped_to_cycle():
    store, r = _store(1)
    ok = await store.claim_threshold("org-1", cycle_start=month_start(MID_JAN), label="100%", ttl_sec=300)
    assert ok is True
    args = r.eval.await_args.args
    assert args[0] == _LUA_CLAIM_THRESHOLD
    assert args[4] == f"test:usage:org-1:claim:{JAN_EPOCH}:100%"
    assert args[5:] == (str(JAN_EPOCH), "100%", "300")


@pytest.mark.asyncio
async def test_redis_errors_become_storage_unavailable():
    store, r = _store()
    r.eval.side_effect = RedisConnectionError("connection refused")
    with pytest.raises(StorageUnavailable) as exc:
        await store.increment("org-1", plan_limit=100, now=MID_JAN)
    assert exc.value.code == "storage_unavailable"
    assert exc.value.data == {"op": "increment"}


async def _exercise_store(r, ns):
    store = RedisUsageStateStore(r, namespace=ns)

    await asyncio.gather(*[store.increment("org-1", plan_limit=100, now=MID_JAN) for _ in range(120)])
    state = await store.get("org-1")
    assert state.current == 120
    assert state.overage == 20

    assert await store.claim_threshold("org-1", cycle_start=state.cycle_start, label="110%", ttl_sec=30)
    assert not await store.claim_threshold("org-1", cycle_start=state.cycle_start, label="110%", ttl_sec=30)
    assert await store.mark_notified("org-1", cycle_start=state.cycle_start, label="110%")
    assert (await store.get("org-1")).notified_thresholds == frozenset({"110%"})
    # recorded labels cannot be claimed again in the same cycle
    assert not await store.claim_threshold("org-1", cycle_start=state.cycle_start, label="110%", ttl_sec=30)

    results = await asyncio.gather(*[store.increment("org-1", plan_limit=300, now=MID_FEB) for _ in range(10)])
    assert sum(1 for m in results if m.reset) == 1
    state = await store.get("org-1")
    assert (state.current, state.limit, state.notified_thresholds) == (10, 300, frozenset())

    stale = await store.reset("org-1", plan_limit=300, now=MID_FEB)
    assert stale.reset is False
    forced = await store.reset("org-1", plan_limit=300, force=True, now=MID_FEB)
    assert forced.reset is True
    assert forced.previous_current == 10
    assert forced.state.current == 0

    assert [o async for o in store.organization_ids()] == ["org-1"]
    assert await store.delete("org-1")
    assert await store.get("org-1") is None


@pytest.mark.asyncio
async def test_scripts_against_fake_redis():
    r = FakeRedis(max_connections=1000)
    try:
        await _exercise_store(r, f"test:usage:{uuid.uuid4().hex}")
    finally:
        await r.aclose()


REDIS_URL = os.getenv("ELVA_TEST_REDIS_URL")


@pytest.mark.asyncio
@pytest.mark.skipif(not REDIS_URL, reason="ELVA_TEST_REDIS_URL not set")
async def test_against_live_redis():
    import redis.asyncio as aioredis

    r = aioredis.from_url(REDIS_URL)
    ns = f"test:usage:{uuid.uuid4().hex}"
    try:
        await _exercise_store(r, ns)
    finally:
        keys = [k async for k in r.scan_iter(match=f"{ns}:*")]
        if keys:
            await r.delete(*keys)
        await r.aclose()
