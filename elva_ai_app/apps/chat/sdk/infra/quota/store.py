# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Elena Viter

# sdk/infra/quota/store.py
from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from datetime import datetime
from typing import AsyncIterator, Dict, Optional, Set, Tuple

from elva_ai_app.apps.chat.sdk.infra.quota.cycle import month_start, to_epoch, from_epoch
from elva_ai_app.apps.chat.sdk.infra.quota.models import UsageState, UsageMutation


class UsageStateStore(ABC):
    """
    Authoritative storage for per-organization UsageState.

    Every mutating method is a single atomic step per organization. Methods
    that take ``plan_limit`` use it only when the state is created or reset;
    an existing cycle keeps the limit it was started with.
    """

    @abstractmethod
    async def get(self, org_id: str) -> Optional[UsageState]:
        ...

    @abstractmethod
    async def ensure(self, org_id: str, *, plan_limit: int, now: Optional[datetime] = None) -> UsageState:
        """Create the state for the current month if missing. Never resets."""

    @abstractmethod
    async def increment(self, org_id: str, *, plan_limit: int, now: Optional[datetime] = None) -> UsageMutation:
        """Init-or-reset-if-stale, then ``current += 1``."""

    @abstractmethod
    async def set_current(self, org_id: str, value: int, *, plan_limit: int,
                          now: Optional[datetime] = None) -> UsageMutation:
        """Init-or-reset-if-stale, then ``current = value``."""

    @abstractmethod
    async def reset(self, org_id: str, *, plan_limit: int, force: bool = False,
                    now: Optional[datetime] = None) -> UsageMutation:
        """Start a new cycle when the current one is stale, or unconditionally with ``force``."""

    @abstractmethod
    async def claim_threshold(self, org_id: str, *, cycle_start: datetime, label: str, ttl_sec: int) -> bool:
        """Take the exclusive right to dispatch ``label`` for this cycle."""

    @abstractmethod
    async def mark_notified(self, org_id: str, *, cycle_start: datetime, label: str) -> bool:
        """Record ``label`` as dispatched (if the cycle has not moved) and drop the claim."""

    @abstractmethod
    async def release_claim(self, org_id: str, *, cycle_start: datetime, label: str) -> None:
        ...

    @abstractmethod
    def organization_ids(self) -> AsyncIterator[str]:
        ...

    @abstractmethod
    async def delete(self, org_id: str) -> bool:
        ...


class _Record:
    __slots__ = ("current", "limit", "cycle_start", "overage", "notified")

    def __init__(self, limit: int, cycle_start: int):
        self.current = 0
        self.limit = limit
        self.cycle_start = cycle_start
        self.overage = 0
        self.notified: Set[str] = set()

    def restart(self, limit: int, cycle_start: int) -> None:
        self.current = 0
        self.limit = limit
        self.cycle_start = cycle_start
        self.overage = 0
        self.notified = set()

    def set_current(self, value: int) -> None:
        self.current = value
        self.overage = max(0, self.current - self.limit)


class InMemoryUsageStateStore(UsageStateStore):
    """
    Process-local store for tests and single-node development.

    One asyncio.Lock serializes every operation, which gives the same
    per-organization atomicity the Redis scripts provide.
    """

    def __init__(self):
        self._records: Dict[str, _Record] = {}
        self._claims: Dict[Tuple[str, int, str], float] = {}
        self._lock = asyncio.Lock()

    def _state(self, org_id: str, rec: _Record) -> UsageState:
        return UsageState(
            organization_id=org_id,
            current=rec.current,
            limit=rec.limit,
            cycle_start=from_epoch(rec.cycle_start),
            overage=rec.overage,
            notified_thresholds=frozenset(rec.notified),
        )

    def _init_or_reset(self, org_id: str, plan_limit: int, now: Optional[datetime]) -> Tuple[_Record, bool, int]:
        cycle = to_epoch(month_start(now))
        rec = self._records.get(org_id)
        if rec is None:
            rec = _Record(plan_limit, cycle)
            self._records[org_id] = rec
            return rec, False, 0
        if rec.cycle_start < cycle:
            prev = rec.current
            rec.restart(plan_limit, cycle)
            return rec, True, prev
        return rec, False, rec.current

    async def get(self, org_id: str) -> Optional[UsageState]:
        async with self._lock:
            rec = self._records.get(org_id)
            return self._state(org_id, rec) if rec else None

    async def ensure(self, org_id: str, *, plan_limit: int, now: Optional[datetime] = None) -> UsageState:
        async with self._lock:
            rec = self._records.get(org_id)
            if rec is None:
                rec = _Record(plan_limit, to_epoch(month_start(now)))
                self._records[org_id] = rec
            return self._state(org_id, rec)

    async def increment(self, org_id: str, *, plan_limit: int, now: Optional[datetime] = None) -> UsageMutation:
        # let concurrent callers interleave before taking the lock
        await asyncio.sleep(0)
        async with self._lock:
            rec, reset, prev = self._init_or_reset(org_id, plan_limit, now)
            rec.set_current(rec.current + 1)
            return UsageMutation(state=self._state(org_id, rec), reset=reset, previous_current=prev)

    async def set_current(self, org_id: str, value: int, *, plan_limit: int,
                          now: Optional[datetime] = None) -> UsageMutation:
        await asyncio.sleep(0)
        async with self._lock:
            rec, reset, prev = self._init_or_reset(org_id, plan_limit, now)
            rec.set_current(max(0, int(value)))
            return UsageMutation(state=self._state(org_id, rec), reset=reset, previous_current=prev)

    async def reset(self, org_id: str, *, plan_limit: int, force: bool = False,
                    now: Optional[datetime] = None) -> UsageMutation:
        await asyncio.sleep(0)
        async with self._lock:
            cycle = to_epoch(month_start(now))
            rec = self._records.get(org_id)
            if rec is None:
                rec = _Record(plan_limit, cycle)
                self._records[org_id] = rec
                return UsageMutation(state=self._state(org_id, rec), reset=force, previous_current=0)
            prev = rec.current
            if force or rec.cycle_start < cycle:
                rec.restart(plan_limit, cycle)
                return UsageMutation(state=self._state(org_id, rec), reset=True, previous_current=prev)
            return UsageMutation(state=self._state(org_id, rec), reset=False, previous_current=prev)

    async def claim_threshold(self, org_id: str, *, cycle_start: datetime, label: str, ttl_sec: int) -> bool:
        async with self._lock:
            rec = self._records.get(org_id)
            cycle = to_epoch(cycle_start)
            if rec is None or rec.cycle_start != cycle or label in rec.notified:
                return False
            key = (org_id, cycle, label)
            now = time.monotonic()
            expires = self._claims.get(key)
            if expires is not None and expires > now:
                return False
            self._claims[key] = now + ttl_sec
            return True

    async def mark_notified(self, org_id: str, *, cycle_start: datetime, label: str) -> bool:
        async with self._lock:
            cycle = to_epoch(cycle_start)
            self._claims.pop((org_id, cycle, label), None)
            rec = self._records.get(org_id)
            if rec is None or rec.cycle_start != cycle:
                return False
            rec.notified.add(label)
            return True

    async def release_claim(self, org_id: str, *, cycle_start: datetime, label: str) -> None:
        async with self._lock:
            self._claims.pop((org_id, to_epoch(cycle_start), label), None)

    async def organization_ids(self) -> AsyncIterator[str]:
        async with self._lock:
            ids = list(self._records.keys())
        for org_id in ids:
            yield org_id

    async def delete(self, org_id: str) -> bool:
        async with self._lock:
            self._claims = {k: v for k, v in self._claims.items() if k[0] != org_id}
            return self._records.pop(org_id, None) is not None
