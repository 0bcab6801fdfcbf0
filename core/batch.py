"""Review-then-save membership changes.

``BatchCommitCoordinator`` backs a surface where the user stages several
radar toggles for one repository and saves them together:

1. ``open()`` snapshots which radars contain the repository on the server
   and clears any staged changes.
2. ``toggle()`` only edits the ``PendingChanges`` set; nothing is sent.
3. ``commit()`` sends the *net* changes against the snapshot. Removals go
   first so that moving a repository out of one radar frees total capacity
   before the additions run. Calls within each phase run concurrently and
   each one succeeds or fails on its own.

Partial commits are kept: a successful call is folded into the snapshot and
dropped from the pending set, a failed one stays pending for retry or
``discard()``. Only the first failure's message is surfaced.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

from core import limits as policy
from core.cache import RADARS_KEY, MembershipCache, entity_key, refresh_from_store
from core.errors import RadarError
from core.limits import DEFAULT_LIMITS, RadarLimits
from core.models import PendingChanges, RadarWithCount

if TYPE_CHECKING:
    from core.store import MembershipStore

logger = logging.getLogger(__name__)

_GENERIC_FAILURE = "Failed to update radar"


@dataclass
class CommitResult:
    """Outcome of one ``commit()``; every operation is reported separately."""

    removed: list[str] = field(default_factory=list)
    added: list[str] = field(default_factory=list)
    failed: dict[str, BaseException] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return not self.failed


class BatchCommitCoordinator:
    """Staged toggles for one repository, committed on demand.

    Args:
        store: Authoritative backend.
        cache: Shared cache; supplies radar counts and is refreshed after a
            commit that changed anything.
        owner_id: The current user.
        entity_id: GitHub repository id under review.
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
        self.pending = PendingChanges()
        self.error: Optional[str] = None
        self.is_saving = False
        self._original: set[str] = set()

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    async def open(self) -> None:
        """Snapshot server membership for the repository and reset staging."""
        fetched_at = self.cache.version
        radars = await self.store.list_radars(self.owner_id)
        radar_ids = await self.store.radars_containing(self.entity_id, self.owner_id)
        self.cache.apply_server(
            {RADARS_KEY: radars, entity_key(self.entity_id): radar_ids}, fetched_at
        )
        self._original = set(radar_ids)
        self.pending.clear()
        self.error = None

    def discard(self) -> None:
        """Drop every staged change; no store calls are made."""
        self.pending.clear()
        self.error = None

    # ── Reads ─────────────────────────────────────────────────────────────────

    @property
    def radars(self) -> list[RadarWithCount]:
        return self.cache.radars()

    @property
    def original(self) -> frozenset[str]:
        """Server-known radar ids containing the repository."""
        return frozenset(self._original)

    def is_checked(self, radar_id: str) -> bool:
        if radar_id in self.pending.to_add:
            return True
        if radar_id in self.pending.to_remove:
            return False
        return radar_id in self._original

    @property
    def actual_adds(self) -> set[str]:
        return self.pending.to_add - self._original

    @property
    def actual_removes(self) -> set[str]:
        return self.pending.to_remove & self._original

    @property
    def has_changes(self) -> bool:
        return bool(self.actual_adds or self.actual_removes)

    def is_checkbox_disabled(self, radar: RadarWithCount) -> bool:
        return policy.is_checkbox_disabled(
            radar, self.is_checked(radar.id), self.radars, self.pending, self.limits
        )

    def disabled_reason(self, radar: RadarWithCount) -> Optional[str]:
        if self.is_checked(radar.id):
            return None
        return policy.disabled_reason(radar, self.radars, self.pending, self.limits)

    # ── Staging ───────────────────────────────────────────────────────────────

    def toggle(self, radar_id: str) -> bool:
        """Stage a flip of *radar_id*.

        Returns:
            ``False`` if a check-on was refused by the limit policy (the
            reason is left in ``error``), ``True`` otherwise.
        """
        self.error = None
        if not self.is_checked(radar_id):
            radar = next((r for r in self.radars if r.id == radar_id), None)
            if radar is None:
                self.error = "Radar not found"
                return False
            reason = policy.disabled_reason(radar, self.radars, self.pending, self.limits)
            if reason is not None:
                self.error = reason
                return False

        self.pending.toggle(radar_id, radar_id in self._original)
        return True

    # ── Commit ────────────────────────────────────────────────────────────────

    async def commit(self) -> CommitResult:
        """Send the net staged changes, removals before additions.

        Toggles staged while a save is running are kept for the next commit.
        A ``commit()`` issued during a save sends nothing and returns an
        empty result.
        """
        result = CommitResult()
        if self.is_saving:
            logger.info("Commit for repo=%d ignored: a save is in progress", self.entity_id)
            return result

        removes = sorted(self.actual_removes)
        adds = sorted(self.actual_adds)

        self.error = None
        if not removes and not adds:
            self.pending.clear()
            return result

        self.is_saving = True
        try:
            await self._run_phase(removes, self.store.remove_membership, result, adding=False)
            await self._run_phase(adds, self.store.add_membership, result, adding=True)
        finally:
            self.is_saving = False

        self.pending.to_add -= set(result.added)
        self.pending.to_remove -= set(result.removed)
        # Entries that now match the snapshot are no-ops.
        self.pending.to_add -= self._original
        self.pending.to_remove &= self._original
        self.error = result.error

        if result.added or result.removed:
            try:
                await refresh_from_store(self.cache, self.store, self.owner_id, self.entity_id)
            except RadarError as exc:
                logger.warning("Refresh after commit for repo=%d failed: %s", self.entity_id, exc)

        logger.info(
            "Committed repo=%d: %d removed, %d added, %d failed",
            self.entity_id, len(result.removed), len(result.added), len(result.failed),
        )
        return result

    async def _run_phase(
        self,
        radar_ids: list[str],
        operation: Callable[[str, int], Awaitable[object]],
        result: CommitResult,
        adding: bool,
    ) -> None:
        if not radar_ids:
            return
        outcomes = await asyncio.gather(
            *(operation(radar_id, self.entity_id) for radar_id in radar_ids),
            return_exceptions=True,
        )
        for radar_id, outcome in zip(radar_ids, outcomes):
            if isinstance(outcome, BaseException):
                result.failed[radar_id] = outcome
                if isinstance(outcome, RadarError):
                    message = str(outcome)
                    logger.warning("%s of repo=%d for radar id=%s failed: %s",
                                   "Add" if adding else "Remove",
                                   self.entity_id, radar_id, outcome)
                else:
                    message = _GENERIC_FAILURE
                    logger.error("Unexpected failure for radar id=%s", radar_id,
                                 exc_info=outcome)
                if result.error is None:
                    result.error = message
            elif adding:
                result.added.append(radar_id)
                self._original.add(radar_id)
            else:
                result.removed.append(radar_id)
                self._original.discard(radar_id)
