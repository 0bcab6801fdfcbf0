"""Capacity limits and the advisory limit policy.

The policy here is what the UI uses to grey out checkboxes before any
round trip. It is never authoritative: ``MembershipStore`` re-checks every
add against the database.

Three nested limits apply:

- a user owns at most ``MAX_RADARS_PER_USER`` radars
- a radar holds at most ``MAX_REPOS_PER_RADAR`` repositories
- a user's radars hold at most ``MAX_TOTAL_REPOS`` repositories in total
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Optional

from core.models import PendingChanges, RadarWithCount

MAX_RADARS_PER_USER = 5
MAX_REPOS_PER_RADAR = 25
MAX_TOTAL_REPOS = 50


@dataclass(frozen=True)
class RadarLimits:
    """The three limits as one value, so tests and config can override them."""

    max_radars_per_user: int = MAX_RADARS_PER_USER
    max_repos_per_radar: int = MAX_REPOS_PER_RADAR
    max_total_repos: int = MAX_TOTAL_REPOS


DEFAULT_LIMITS = RadarLimits()


# ── Pending deltas ─────────────────────────────────────────────────────────────


def pending_delta(radar_id: str, pending: Optional[PendingChanges] = None) -> int:
    """Return the staged count change for *radar_id*.

    Immediate mode passes no pending set, so the delta is always ``0``.
    """
    if pending is None:
        return 0
    if radar_id in pending.to_add:
        return 1
    if radar_id in pending.to_remove:
        return -1
    return 0


def total_repo_count(
    radars: Iterable[RadarWithCount],
    pending: Optional[PendingChanges] = None,
) -> int:
    """Sum of ``repo_count`` across *radars*, including staged deltas."""
    return sum(r.repo_count + pending_delta(r.id, pending) for r in radars)


# ── Policy ─────────────────────────────────────────────────────────────────────


def can_uncheck(radar: RadarWithCount) -> bool:
    """Removing is never limited."""
    return True


def can_check(
    radar: RadarWithCount,
    all_radars: Iterable[RadarWithCount],
    pending: Optional[PendingChanges] = None,
    limits: RadarLimits = DEFAULT_LIMITS,
) -> bool:
    """Return ``True`` if adding the entity to *radar* would stay within limits.

    Args:
        radar: The radar the user wants to check.
        all_radars: Every radar of the user, with live counts.
        pending: Staged changes (review mode only).
        limits: Limit values to enforce.
    """
    return disabled_reason(radar, all_radars, pending, limits) is None


def disabled_reason(
    radar: RadarWithCount,
    all_radars: Iterable[RadarWithCount],
    pending: Optional[PendingChanges] = None,
    limits: RadarLimits = DEFAULT_LIMITS,
) -> Optional[str]:
    """Return a tooltip explaining why *radar* cannot be checked, or ``None``.

    The radar-specific limit is reported ahead of the global one.
    """
    if radar.repo_count + pending_delta(radar.id, pending) >= limits.max_repos_per_radar:
        return f"This radar has reached its limit ({limits.max_repos_per_radar} repos)"
    if total_repo_count(all_radars, pending) >= limits.max_total_repos:
        return f"You've reached your total repo limit ({limits.max_total_repos})"
    return None


def is_checkbox_disabled(
    radar: RadarWithCount,
    is_checked: bool,
    all_radars: Iterable[RadarWithCount],
    pending: Optional[PendingChanges] = None,
    limits: RadarLimits = DEFAULT_LIMITS,
) -> bool:
    """A checked box can always be unchecked; an unchecked one follows ``can_check``."""
    if is_checked:
        return not can_uncheck(radar)
    return not can_check(radar, all_radars, pending, limits)
