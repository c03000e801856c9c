# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Elena Viter

# sdk/infra/quota/redis_store.py
from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import AsyncIterator, Optional, List, Any

from redis.asyncio import Redis
from redis.exceptions import RedisError

from elva_ai_app.apps.chat.sdk.infra.quota.cycle import month_start, to_epoch, from_epoch
from elva_ai_app.apps.chat.sdk.infra.quota.errors import StorageUnavailable
from elva_ai_app.apps.chat.sdk.infra.quota.models import UsageState, UsageMutation
from elva_ai_app.apps.chat.sdk.infra.quota.store import UsageStateStore
from elva_ai_app.infra.namespaces import REDIS

logger = logging.getLogger(__name__)

# --------- helpers (keys) ---------
def _k(ns: str, *parts: str) -> str:
    """
    Build Redis key for conversation usage.

    Format: {namespace}:{parts}
    Example: elva:usage:conversations:org_123:notified
    """
    return ":".join([ns, *parts])

def _strs(*items) -> list[str]:
    return [str(x) for x in items]

def _s(v: Any) -> str:
    return v.decode() if isinstance(v, (bytes, bytearray)) else str(v)

# --------- Lua scripts ---------
# Shared state hash fields: current, limit, cycle_start (epoch sec), overage.
#
# Common KEYS:
#  1  state hash
#  2  notified set
#  3  index set
# Common ARGV:
#  1  org_id
#  2  cycle_start of "now" (epoch sec, month start)
#  3  plan_limit (used only on init / reset)
#
# Every script returns the state as:
#   {current, limit, cycle_start, overage, {notified...}, flag, previous_current}
_LUA_PRELUDE = r"""
local h = KEYS[1]
local n = KEYS[2]
local idx = KEYS[3]
local org = ARGV[1]
local cycle = tonumber(ARGV[2])
local plan_limit = tonumber(ARGV[3])

local function restart()
  redis.call("HSET", h, "current", 0, "limit", plan_limit, "cycle_start", cycle, "overage", 0)
  redis.call("DEL", n)
  redis.call("SADD", idx, org)
end

local function snapshot(flag, prev)
  local v = redis.call("HMGET", h, "current", "limit", "cycle_start", "overage")
  return {tonumber(v[1]), tonumber(v[2]), tonumber(v[3]), tonumber(v[4]),
          redis.call("SMEMBERS", n), flag, prev}
end

local function set_current(value)
  local limit = tonumber(redis.call("HGET", h, "limit"))
  local over = value - limit
  if over < 0 then over = 0 end
  redis.call("HSET", h, "current", value, "overage", over)
end
"""

_LUA_READ = _LUA_PRELUDE + r"""
if redis.call("EXISTS", h) == 0 then return nil end
return snapshot(0, 0)
"""

# flag = 1 when the state was created by this call
_LUA_ENSURE = _LUA_PRELUDE + r"""
if redis.call("EXISTS", h) == 0 then
  restart()
  return snapshot(1, 0)
end
return snapshot(0, 0)
"""

# ARGV:
#  4  mode ("incr" | "set")
#  5  amount (increment delta or absolute value)
# flag = 1 when a stale cycle was reset before applying the change
_LUA_COUNT = _LUA_PRELUDE + r"""
local mode = ARGV[4]
local amount = tonumber(ARGV[5])
local reset = 0
local prev = 0
local cur_cycle = tonumber(redis.call("HGET", h, "cycle_start"))
if not cur_cycle then
  restart()
elseif cur_cycle < cycle then
  prev = tonumber(redis.call("HGET", h, "current")) or 0
  restart()
  reset = 1
else
  prev = tonumber(redis.call("HGET", h, "current")) or 0
end

if mode == "incr" then
  local value = redis.call("HINCRBY", h, "current", amount)
  set_current(tonumber(value))
else
  if amount < 0 then amount = 0 end
  set_current(amount)
end
return snapshot(reset, prev)
"""

# ARGV:
#  4  force (1|0)
# flag = 1 when the cycle was restarted
_LUA_RESET = _LUA_PRELUDE + r"""
local force = tonumber(ARGV[4])
local cur_cycle = tonumber(redis.call("HGET", h, "cycle_start"))
if not cur_cycle then
  restart()
  return snapshot(force, 0)
end
local prev = tonumber(redis.call("HGET", h, "current")) or 0
if force == 1 or cur_cycle < cycle then
  restart()
  return snapshot(1, prev)
end
return snapshot(0, prev)
"""

# KEYS: 1 state hash, 2 notified set, 3 claim key
# ARGV: 1 cycle_start the caller observed, 2 label, 3 ttl sec
_LUA_CLAIM_THRESHOLD = r"""
local c = tonumber(redis.call("HGET", KEYS[1], "cycle_start"))
if (not c) or c ~= tonumber(ARGV[1]) then return 0 end
if redis.call("SISMEMBER", KEYS[2], ARGV[2]) == 1 then return 0 end
if redis.call("SET", KEYS[3], "1", "NX", "EX", tonumber(ARGV[3])) then return 1 end
return 0
"""

# KEYS: 1 state hash, 2 notified set, 3 claim key
# ARGV: 1 cycle_start the caller observed, 2 label
_LUA_MARK_NOTIFIED = r"""
redis.call("DEL", KEYS[3])
local c = tonumber(redis.call("HGET", KEYS[1], "cycle_start"))
if (not c) or c ~= tonumber(ARGV[1]) then return 0 end
redis.call("SADD", KEYS[2], ARGV[2])
return 1
"""


class RedisUsageStateStore(UsageStateStore):
    """
    Redis-backed, atomic conversation usage accounting.

    Redis Keys:
      elva:usage:conversations:{org}                              HASH current/limit/cycle_start/overage
      elva:usage:conversations:{org}:notified                     SET of threshold labels
      elva:usage:conversations:{org}:claim:{cycle_start}:{label}  dispatch claim (NX + TTL)
      elva:usage:conversations:index                              SET of org ids with a state

    Each mutation is one Lua script, so reset-then-increment and concurrent
    increments are linearizable per organization.
    """

    def __init__(self, redis: Redis, *, namespace: str = REDIS.USAGE.CONVERSATIONS_PREFIX):
        self.r = redis
        self.ns = namespace

    # --------- keys ---------
    def _state_key(self, org_id: str) -> str:
        return _k(self.ns, org_id)

    def _notified_key(self, org_id: str) -> str:
        return _k(self.ns, org_id, REDIS.USAGE.NOTIFIED_SUFFIX)

    def _index_key(self) -> str:
        return _k(self.ns, REDIS.USAGE.INDEX_SUFFIX)

    def _claim_key(self, org_id: str, cycle_start: datetime, label: str) -> str:
        return _k(self.ns, org_id, REDIS.USAGE.CLAIM_SUFFIX, str(to_epoch(cycle_start)), label)

    def _keys(self, org_id: str) -> List[str]:
        return [self._state_key(org_id), self._notified_key(org_id), self._index_key()]

    # --------- plumbing ---------
    async def _eval(self, op: str, script: str, keys: List[str], args: List[str]):
        try:
            return await self.r.eval(script, len(keys), *keys, *args)
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            logger.error(f"[{op}] Redis error for keys={keys[:1]}: {e}")
            raise StorageUnavailable(f"usage store unavailable: {e}", data={"op": op}) from e

    def _parse(self, org_id: str, raw) -> UsageState:
        current, limit, cycle, overage, notified = raw[0], raw[1], raw[2], raw[3], raw[4]
        return UsageState(
            organization_id=org_id,
            current=int(current or 0),
            limit=int(limit or 0),
            cycle_start=from_epoch(cycle or 0),
            overage=int(overage or 0),
            notified_thresholds=frozenset(_s(x) for x in (notified or [])),
        )

    def _mutation(self, org_id: str, raw) -> UsageMutation:
        return UsageMutation(
            state=self._parse(org_id, raw),
            reset=bool(int(raw[5] or 0)),
            previous_current=int(raw[6] or 0),
        )

    def _args(self, org_id: str, plan_limit: int, now: Optional[datetime], *extra) -> List[str]:
        return _strs(org_id, to_epoch(month_start(now)), int(plan_limit), *extra)

    # --------- API ---------
    async def get(self, org_id: str) -> Optional[UsageState]:
        raw = await self._eval("get", _LUA_READ, self._keys(org_id), self._args(org_id, 0, None))
        if not raw:
            return None
        return self._parse(org_id, raw)

    async def ensure(self, org_id: str, *, plan_limit: int, now: Optional[datetime] = None) -> UsageState:
        raw = await self._eval("ensure", _LUA_ENSURE, self._keys(org_id), self._args(org_id, plan_limit, now))
        if int(raw[5] or 0):
            logger.info(f"[ensure] Initialized usage state for org={org_id} limit={plan_limit}")
        return self._parse(org_id, raw)

    async def increment(self, org_id: str, *, plan_limit: int, now: Optional[datetime] = None) -> UsageMutation:
        raw = await self._eval(
            "increment", _LUA_COUNT, self._keys(org_id),
            self._args(org_id, plan_limit, now, "incr", 1),
        )
        return self._mutation(org_id, raw)

    async def set_current(self, org_id: str, value: int, *, plan_limit: int,
                          now: Optional[datetime] = None) -> UsageMutation:
        raw = await self._eval(
            "set_current", _LUA_COUNT, self._keys(org_id),
            self._args(org_id, plan_limit, now, "set", max(0, int(value))),
        )
        return self._mutation(org_id, raw)

    async def reset(self, org_id: str, *, plan_limit: int, force: bool = False,
                    now: Optional[datetime] = None) -> UsageMutation:
        raw = await self._eval(
            "reset", _LUA_RESET, self._keys(org_id),
            self._args(org_id, plan_limit, now, 1 if force else 0),
        )
        return self._mutation(org_id, raw)

    async def claim_threshold(self, org_id: str, *, cycle_start: datetime, label: str, ttl_sec: int) -> bool:
        keys = [self._state_key(org_id), self._notified_key(org_id), self._claim_key(org_id, cycle_start, label)]
        res = await self._eval("claim_threshold", _LUA_CLAIM_THRESHOLD, keys,
                               _strs(to_epoch(cycle_start), label, max(1, int(ttl_sec))))
        return bool(int(res or 0))

    async def mark_notified(self, org_id: str, *, cycle_start: datetime, label: str) -> bool:
        keys = [self._state_key(org_id), self._notified_key(org_id), self._claim_key(org_id, cycle_start, label)]
        res = await self._eval("mark_notified", _LUA_MARK_NOTIFIED, keys, _strs(to_epoch(cycle_start), label))
        return bool(int(res or 0))

    async def release_claim(self, org_id: str, *, cycle_start: datetime, label: str) -> None:
        try:
            await self.r.delete(self._claim_key(org_id, cycle_start, label))
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            # the claim expires by TTL anyway
            logger.warning(f"[release_claim] Failed to release claim org={org_id} label={label}: {e}")

    async def organization_ids(self) -> AsyncIterator[str]:
        try:
            async for member in self.r.sscan_iter(self._index_key(), count=500):
                yield _s(member)
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            raise StorageUnavailable(f"usage store unavailable: {e}", data={"op": "organization_ids"}) from e

    async def delete(self, org_id: str) -> bool:
        try:
            async with self.r.pipeline(transaction=True) as pipe:
                pipe.delete(self._state_key(org_id), self._notified_key(org_id))
                pipe.srem(self._index_key(), org_id)
                deleted, _ = await pipe.execute()
        except (RedisError, OSError, asyncio.TimeoutError) as e:
            raise StorageUnavailable(f"usage store unavailable: {e}", data={"op": "delete"}) from e
        return bool(deleted)
