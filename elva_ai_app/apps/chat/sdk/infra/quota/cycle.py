# SPDX-License-Identifier: MIT
# Copyright (c) 2025 Elena Viter

# sdk/infra/quota/cycle.py
from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Optional

"""
Billing cycles are calendar months in UTC.
"""

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def as_utc(dt: Optional[datetime]) -> datetime:
    if dt is None:
        return utcnow()
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)

def month_start(dt: Optional[datetime] = None) -> datetime:
    dt = as_utc(dt)
    return datetime(dt.year, dt.month, 1, tzinfo=timezone.utc)

def next_month_start(dt: Optional[datetime] = None) -> datetime:
    dt = as_utc(dt)
    if dt.month == 12:
        return datetime(dt.year + 1, 1, 1, tzinfo=timezone.utc)
    return datetime(dt.year, dt.month + 1, 1, tzinfo=timezone.utc)

def to_epoch(dt: datetime) -> int:
    return int(as_utc(dt).timestamp())

def from_epoch(ts) -> datetime:
    return datetime.fromtimestamp(int(ts), tz=timezone.utc)

def is_stale(cycle_start: datetime, now: Optional[datetime] = None) -> bool:
    return as_utc(cycle_start) < month_start(now)

def days_remaining_in_cycle(now: Optional[datetime] = None) -> int:
    now = as_utc(now)
    remaining = (next_month_start(now) - now).total_seconds() / 86400.0
    return int(math.ceil(remaining))
