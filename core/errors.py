"""
Error taxonomy for the membership engine.

Every failure the store, the controllers or the session can raise derives
from ``RadarError`` so that callers (the Flask adapter, the UI layer) can
catch one base class and render ``str(exc)`` directly.
"""

from __future__ import annotations

from enum import Enum


class LimitKind(str, Enum):
    """Which of the three capacity limits was hit."""

    RADARS = "radars"
    REPOS_PER_RADAR = "repos_per_radar"
    TOTAL_REPOS = "total_repos"


class RadarError(Exception):
    """Base class for all radar/membership errors."""


class ValidationError(RadarError):
    """Radar name is empty or too long."""


class LimitExceededError(RadarError):
    """An authoritative limit check failed.

    Attributes:
        kind: The limit that was hit.
        limit: The numeric value of that limit, for exact UI messages.
    """

    def __init__(self, kind: LimitKind, limit: int) -> None:
        self.kind = LimitKind(kind)
        self.limit = limit
        super().__init__(_LIMIT_MESSAGES[self.kind].format(limit=limit))


_LIMIT_MESSAGES: dict[LimitKind, str] = {
    LimitKind.RADARS: (
        "You can only have {limit} radars. "
        "Delete an existing radar to create a new one."
    ),
    LimitKind.REPOS_PER_RADAR: (
        "This radar already has {limit} repositories. Remove some to add more."
    ),
    LimitKind.TOTAL_REPOS: (
        "You've reached the limit of {limit} total repositories across all radars."
    ),
}


class DuplicateMembershipError(RadarError):
    """The repository is already in the radar."""

    def __init__(self, message: str = "This repository is already in this radar") -> None:
        super().__init__(message)


class NotFoundError(RadarError):
    """The targeted radar no longer exists."""

    def __init__(self, message: str = "Radar not found") -> None:
        super().__init__(message)


class AuthenticationError(RadarError):
    """No current user id is available."""

    def __init__(self, message: str = "Not authenticated") -> None:
        super().__init__(message)


class TransientError(RadarError):
    """Any other backend failure. The original exception is chained."""
