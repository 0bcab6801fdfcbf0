"""
Pydantic models shared across the Repo Radar core.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from pydantic import BaseModel, ConfigDict


class Radar(BaseModel):
    """A named collection of repositories owned by one user."""

    model_config = ConfigDict(frozen=True)

    id: str
    owner_id: str
    name: str
    created_at: datetime
    updated_at: datetime


class RadarWithCount(Radar):
    """A radar plus its live membership count (derived, never stored)."""

    repo_count: int = 0


class Membership(BaseModel):
    """One repository (by its GitHub id) inside one radar."""

    model_config = ConfigDict(frozen=True)

    radar_id: str
    entity_id: int
    added_at: datetime


@dataclass
class PendingChanges:
    """Staged, uncommitted toggles for a single entity (review mode).

    ``to_add`` and ``to_remove`` are kept disjoint by ``toggle``.
    """

    to_add: set[str] = field(default_factory=set)
    to_remove: set[str] = field(default_factory=set)

    def toggle(self, radar_id: str, server_checked: bool) -> None:
        """Flip the effective checked state of *radar_id*.

        Toggling back to the server state drops the id from both sets, so a
        check-then-uncheck never leaves a no-op behind.
        """
        if radar_id in self.to_add:
            self.to_add.discard(radar_id)
        elif radar_id in self.to_remove:
            self.to_remove.discard(radar_id)
        elif server_checked:
            self.to_remove.add(radar_id)
        else:
            self.to_add.add(radar_id)

    def clear(self) -> None:
        self.to_add.clear()
        self.to_remove.clear()

    def __bool__(self) -> bool:
        return bool(self.to_add or self.to_remove)
