"""Tests for core/limits.py — the advisory limit policy."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from core.limits import (
    MAX_REPOS_PER_RADAR,
    MAX_TOTAL_REPOS,
    RadarLimits,
    can_check,
    can_uncheck,
    disabled_reason,
    is_checkbox_disabled,
    pending_delta,
    total_repo_count,
)
from core.models import PendingChanges, RadarWithCount

NOW = datetime(2026, 1, 15, tzinfo=timezone.utc)


def make_radar(radar_id: str, count: int) -> RadarWithCount:
    return RadarWithCount(
        id=radar_id,
        owner_id="user-1",
        name=f"Radar {radar_id}",
        created_at=NOW,
        updated_at=NOW,
        repo_count=count,
    )


# ── Pending deltas ─────────────────────────────────────────────────────────────


class TestPendingDelta:
    def test_no_pending_set_is_zero(self):
        assert pending_delta("a") == 0

    def test_staged_add_is_plus_one(self):
        assert pending_delta("a", PendingChanges(to_add={"a"})) == 1

    def test_staged_remove_is_minus_one(self):
        assert pending_delta("a", PendingChanges(to_remove={"a"})) == -1

    def test_unrelated_radar_is_zero(self):
        assert pending_delta("b", PendingChanges(to_add={"a"})) == 0

    def test_total_includes_deltas(self):
        radars = [make_radar("a", 3), make_radar("b", 4)]
        pending = PendingChanges(to_add={"a"}, to_remove={"b"})
        assert total_repo_count(radars) == 7
        assert total_repo_count(radars, pending) == 7
        assert total_repo_count(radars, PendingChanges(to_add={"a", "b"})) == 9


# ── Check / uncheck ────────────────────────────────────────────────────────────


class TestCanCheck:
    def test_uncheck_always_allowed(self):
        assert can_uncheck(make_radar("a", MAX_REPOS_PER_RADAR)) is True

    def test_radar_below_limit(self):
        radar = make_radar("a", MAX_REPOS_PER_RADAR - 1)
        assert can_check(radar, [radar]) is True

    def test_radar_at_limit(self):
        radar = make_radar("a", MAX_REPOS_PER_RADAR)
        assert can_check(radar, [radar]) is False

    def test_total_at_limit_blocks_radar_with_space(self):
        full = [make_radar("a", 25), make_radar("b", 25)]
        spare = make_radar("c", 0)
        assert can_check(spare, full + [spare]) is False

    def test_staged_add_counts_against_total(self):
        radars = [make_radar("a", 25), make_radar("b", 24), make_radar("c", 0)]
        pending = PendingChanges(to_add={"b"})
        assert can_check(radars[2], radars) is True
        assert can_check(radars[2], radars, pending) is False

    def test_staged_remove_frees_radar_capacity(self):
        radar = make_radar("a", MAX_REPOS_PER_RADAR)
        pending = PendingChanges(to_remove={"a"})
        assert can_check(radar, [radar], pending) is True

    def test_custom_limits(self):
        radar = make_radar("a", 2)
        assert can_check(radar, [radar], limits=RadarLimits(max_repos_per_radar=2)) is False


class TestDisabledReason:
    def test_none_when_allowed(self):
        radar = make_radar("a", 0)
        assert disabled_reason(radar, [radar]) is None

    def test_radar_limit_message(self):
        radar = make_radar("a", MAX_REPOS_PER_RADAR)
        reason = disabled_reason(radar, [radar])
        assert reason is not None
        assert str(MAX_REPOS_PER_RADAR) in reason
        assert "radar" in reason

    def test_total_limit_message(self):
        radars = [make_radar("a", 25), make_radar("b", 25), make_radar("c", 0)]
        reason = disabled_reason(radars[2], radars)
        assert reason is not None
        assert str(MAX_TOTAL_REPOS) in reason
        assert "total" in reason

    def test_radar_limit_reported_before_total(self):
        radars = [make_radar("a", 25), make_radar("b", 25)]
        assert "This radar" in disabled_reason(radars[0], radars)


class TestIsCheckboxDisabled:
    @pytest.mark.parametrize("count", [0, MAX_REPOS_PER_RADAR])
    def test_checked_box_never_disabled(self, count):
        radar = make_radar("a", count)
        assert is_checkbox_disabled(radar, True, [radar]) is False

    def test_unchecked_full_radar_disabled(self):
        radar = make_radar("a", MAX_REPOS_PER_RADAR)
        assert is_checkbox_disabled(radar, False, [radar]) is True

    def test_unchecked_radar_with_space_enabled(self):
        radar = make_radar("a", 1)
        assert is_checkbox_disabled(radar, False, [radar]) is False
