"""Immediate-apply membership toggles.

``ToggleController`` owns the optimistic state machine for one repository:

    Unchecked ──toggle──▶ Pending ──store ok──▶ Checked
        ▲                    │
        └────store error─────┘   (and the mirror path for unchecking)

A toggle is applied to the shared ``MembershipCache`` before the store call
returns, so every surface updates at once. On failure the cache is first
put back to the exact snapshot taken when the toggle began. Either way a
background refresh then replaces optimistic values with server-computed
ones.

Closing a surface does not cancel an in-flight toggle: its outcome is still
applied to the shared cache when it resolves.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from typing import TYPE_CHECKING, Optional

from core import limits as policy
from core.cache import RADARS_KEY, MembershipCache, Source, entity_key, refresh_from_store
from core.errors import RadarError
from core.limits import DEFAULT_LIMITS, RadarLimits
from core.models import RadarWithCount

if TYPE_CHECKING:
    from core.store import MembershipStore

logger = logging.getLogger(__name__)

#: Message surfaced when a failure carries no user-presentable text.
_GENERIC_FAILURE = "Failed to update radar"


class ToggleController:
    """Apply-now toggles for one repository against the shared cache.

    Args:
        store: Authoritative backend.
        cache: The cache shared by every surface of the session.
        owner_id: The current user.
        entity_id: GitHub repository id being toggled.
        limits: Limit values used for the advisory disabled state.
    """

    def __init__(
        self,
        store: "MembershipStore",
        cache: MembershipCache,
        owner_id: str,
        entity_id: int,
        limits: RadarLimits = DEFAULT_LIMITS,
    ) -> None:
        self.store = store
        self.cache = cache
        self.owner_id = owner_id
        self.entity_id = entity_id
        self.limits = limits
        self.error: Optional[str] = None
        self._in_flight: Counter[str] = Counter()
        self._tasks: set[asyncio.Task] = set()

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    async def load(self) -> None:
        """Seed the shared cache with server state for this repository."""
        await refresh_from_store(self.cache, self.store, self.owner_id, self.entity_id)

    def open(self) -> None:
        """Surface (re)opened: drop any error left from a previous visit."""
        self.error = None

    async def drain(self) -> None:
        """Wait for every background refresh scheduled so far."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ── Reads ─────────────────────────────────────────────────────────────────

    @property
    def radars(self) -> list[RadarWithCount]:
        return self.cache.radars()

    def is_checked(self, radar_id: str) -> bool:
        return radar_id in self.cache.radar_ids_for(self.entity_id)

    def is_pending(self, radar_id: str) -> bool:
        """``True`` while the store call for *radar_id* is outstanding."""
        return self._in_flight[radar_id] > 0

    def is_checkbox_disabled(self, radar: RadarWithCount) -> bool:
        return policy.is_checkbox_disabled(
            radar, self.is_checked(radar.id), self.radars, limits=self.limits
        )

    def disabled_reason(self, radar: RadarWithCount) -> Optional[str]:
        if self.is_checked(radar.id):
            return None
        return policy.disabled_reason(radar, self.radars, limits=self.limits)

    # ── Toggle ────────────────────────────────────────────────────────────────

    async def toggle(self, radar_id: str) -> bool:
        """Flip membership of the repository in *radar_id*.

        The current cache state is read when the call starts, not when the
        controller was built, so rapid toggles see each other's effects.

        Returns:
            ``True`` if the store accepted the change, ``False`` if it was
            refused up front or failed and was rolled back (see ``error``).
        """
        self.error = None
        key = entity_key(self.entity_id)

        previous = self.cache.snapshot(RADARS_KEY, key)
        current_ids = self.cache.radar_ids_for(self.entity_id)
        current_radars = self.cache.radars()

        radar = next((r for r in current_radars if r.id == radar_id), None)
        if radar is None:
            self.error = "Radar not found"
            logger.warning("Toggle for unknown radar id=%s", radar_id)
            return False

        was_checked = radar_id in current_ids
        if not was_checked:
            reason = policy.disabled_reason(radar, current_radars, limits=self.limits)
            if reason is not None:
                self.error = reason
                logger.info("Refused add of repo=%d to radar id=%s: %s",
                            self.entity_id, radar_id, reason)
                return False

        if was_checked:
            new_ids = [i for i in current_ids if i != radar_id]
            delta = -1
        else:
            new_ids = current_ids + [radar_id]
            delta = 1
        new_radars = [
            r.model_copy(update={"repo_count": r.repo_count + delta}) if r.id == radar_id else r
            for r in current_radars
        ]
        self.cache.apply({RADARS_KEY: new_radars, key: new_ids}, Source.OPTIMISTIC)
        self.cache.hold(RADARS_KEY, key)

        self._in_flight[radar_id] += 1
        try:
            if was_checked:
                await self.store.remove_membership(radar_id, self.entity_id)
            else:
                await self.store.add_membership(radar_id, self.entity_id)
        except Exception as exc:
            self.cache.restore(previous)
            if isinstance(exc, RadarError):
                self.error = str(exc)
                logger.warning("Toggle of repo=%d in radar id=%s failed: %s",
                               self.entity_id, radar_id, exc)
            else:
                self.error = _GENERIC_FAILURE
                logger.exception("Unexpected toggle failure for repo=%d in radar id=%s",
                                 self.entity_id, radar_id)
            succeeded = False
        else:
            succeeded = True
        finally:
            self._in_flight[radar_id] -= 1
            if self._in_flight[radar_id] <= 0:
                del self._in_flight[radar_id]
            self.cache.release(RADARS_KEY, key)

        # Refreshes skipped while this call held the keys are made up here,
        # after a failure as well as a success.
        self._schedule_refresh()
        return succeeded

    # ── Background refresh ────────────────────────────────────────────────────

    def _schedule_refresh(self) -> None:
        task = asyncio.get_running_loop().create_task(self._refresh())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _refresh(self) -> None:
        try:
            await refresh_from_store(self.cache, self.store, self.owner_id, self.entity_id)
        except RadarError as exc:
            # Cached values stand until the next refresh.
            logger.warning("Background refresh for repo=%d failed: %s", self.entity_id, exc)
