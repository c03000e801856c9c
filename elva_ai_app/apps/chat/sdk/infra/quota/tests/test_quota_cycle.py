# SPDX-License-Identifier: MIT

from datetime import datetime, timezone

from elva_ai_app.apps.chat.sdk.infra.quota.cycle import (
    days_remaining_in_cycle,
    from_epoch,
    is_stale,
    month_start,
    next_month_start,
    to_epoch,
)

UTC = timezone.utc


def test_month_boundaries():
    now = datetime(2025, 12, 31, 23, 59, tzinfo=UTC)
    assert month_start(now) == datetime(2025, 12, 1, tzinfo=UTC)
    assert next_month_start(now) == datetime(2026, 1, 1, tzinfo=UTC)


def test_naive_datetimes_are_utc():
    assert month_start(datetime(2025, 3, 9, 8)) == datetime(2025, 3, 1, tzinfo=UTC)


def test_days_remaining_rounds_up():
    assert days_remaining_in_cycle(datetime(2025, 1, 31, 23, 0, tzinfo=UTC)) == 1
    assert days_remaining_in_cycle(datetime(2025, 1, 1, 0, 0, tzinfo=UTC)) == 31
    assert days_remaining_in_cycle(datetime(2025, 2, 15, 12, 0, tzinfo=UTC)) == 14


def test_is_stale():
    now = datetime(2025, 2, 10, tzinfo=UTC)
    assert is_stale(datetime(2025, 1, 1, tzinfo=UTC), now)
    assert not is_stale(datetime(2025, 2, 1, tzinfo=UTC), now)


def test_epoch_roundtrip_keeps_month_start():
    start = month_start(datetime(2025, 6, 20, tzinfo=UTC))
    assert from_epoch(to_epoch(start)) == start
