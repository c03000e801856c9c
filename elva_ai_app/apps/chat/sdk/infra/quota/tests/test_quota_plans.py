# SPDX-License-Identifier: MIT

import pytest

from elva_ai_app.apps.chat.sdk.infra.quota.plans import (
    Plan,
    QuotaReason,
    Threshold,
    get_conversation_limit,
    is_blocking_plan,
    plan_display_name,
    quota_message,
    select_threshold,
)


@pytest.mark.parametrize("plan,limit", [
    ("free", 100), ("basic", 100), ("growth", 300), ("pro", 750),
    (Plan.GROWTH, 300), ("PRO", 750),
    ("enterprise", 100), ("", 100), (None, 100),
])
def test_plan_limits(plan, limit):
    assert get_conversation_limit(plan) == limit


def test_only_free_plan_blocks_and_missing_plan_is_free():
    assert is_blocking_plan("free")
    assert is_blocking_plan(None)
    assert not is_blocking_plan("basic")
    assert not is_blocking_plan("pro")


def test_display_names():
    assert plan_display_name("growth") == "Vækst"
    assert plan_display_name(None) == "Gratis"


def test_select_threshold_highest_crossed_only():
    assert select_threshold(79.9, []) is None
    assert select_threshold(80, []) is Threshold.WARNING_80
    assert select_threshold(100, ["80%"]) is Threshold.REACHED_100
    # a jump past several thresholds fires only the highest one
    assert select_threshold(120, []) is Threshold.OVER_110


def test_select_threshold_never_repeats_or_goes_back():
    assert select_threshold(85, ["80%"]) is None
    assert select_threshold(101, ["80%", "100%"]) is None
    # lower thresholds are superseded once a higher one was sent
    assert select_threshold(105, ["110%"]) is None
    assert select_threshold(115, ["80%", "100%"]) is Threshold.OVER_110


def test_messages_are_localized():
    assert quota_message(QuotaReason.QUOTA_EXCEEDED) == "Månedlig kvote nået. Opgrader for at fortsætte."
    assert quota_message("trial_expired", "en") == "Free trial expired. Upgrade to continue."
    # unknown locale falls back to Danish
    assert quota_message("trial_expired", "xx").startswith("Gratis prøveperiode")
