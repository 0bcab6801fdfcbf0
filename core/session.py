"""Per-user session context.

``RadarSession`` ties together the pieces a UI layer needs for one signed-in
user: the identity provider, the store, the shared ``MembershipCache`` and
session-scoped UI flags. Controllers and coordinators are created from here
so every surface shares the same cache.

Every mutating operation asks the identity provider for the current user
first and raises ``AuthenticationError`` when there is none.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Optional

from core.batch import BatchCommitCoordinator
from core.cache import RADARS_KEY, MembershipCache, Source, refresh_from_store
from core.errors import AuthenticationError, NotFoundError
from core.limits import RadarLimits
from core.models import Membership, Radar, RadarWithCount
from core.store import MembershipStore, validate_name
from core.toggle import ToggleController

logger = logging.getLogger(__name__)

#: Returns the current user's id, or ``None`` when signed out.
IdentityProvider = Callable[[], Optional[str]]


class RadarSession:
    """Session-scoped state and entry points for one user.

    Args:
        store: Authoritative backend.
        identity: Identity provider callable.
        cache: Shared cache; a fresh one is created when omitted.
    """

    def __init__(
        self,
        store: MembershipStore,
        identity: IdentityProvider,
        cache: Optional[MembershipCache] = None,
    ) -> None:
        self.store = store
        self.identity = identity
        self.cache = cache if cache is not None else MembershipCache()
        #: Set on the first user interaction; gates UI animations.
        self.has_interacted = False

    @property
    def limits(self) -> RadarLimits:
        return self.store.limits

    def mark_interacted(self) -> None:
        self.has_interacted = True

    def require_user(self) -> str:
        """Return the current user id or raise ``AuthenticationError``."""
        user_id = self.identity()
        if not user_id:
            raise AuthenticationError()
        return user_id

    # ── Radars ────────────────────────────────────────────────────────────────

    async def list_radars(self) -> list[RadarWithCount]:
        """Fetch the user's radars and publish them to the shared cache."""
        owner_id = self.require_user()
        fetched_at = self.cache.version
        radars = await self.store.list_radars(owner_id)
        self.cache.apply_server({RADARS_KEY: radars}, fetched_at)
        return radars

    async def get_radar(self, radar_id: str) -> Optional[Radar]:
        """Return the user's radar, or ``None`` if absent or owned by someone else."""
        owner_id = self.require_user()
        radar = await self.store.get_radar(radar_id)
        if radar is None or radar.owner_id != owner_id:
            return None
        return radar

    async def create_radar(self, name: str) -> Radar:
        owner_id = self.require_user()
        radar = await self.store.create_radar(owner_id, name)
        await self.list_radars()
        return radar

    async def rename_radar(self, radar_id: str, name: str) -> Radar:
        self.require_user()
        validate_name(name)
        await self._owned(radar_id)
        radar = await self.store.rename_radar(radar_id, name)
        await self.list_radars()
        return radar

    async def delete_radar(self, radar_id: str) -> None:
        """Delete a radar and drop it from every cached membership list."""
        await self._owned(radar_id)
        await self.store.delete_radar(radar_id)

        owner_id = self.require_user()
        radars = await self.store.list_radars(owner_id)
        values: dict[str, object] = {RADARS_KEY: radars}
        for key in self.cache.entity_keys():
            entry = self.cache.entry(key)
            if entry is not None and radar_id in entry.value:
                values[key] = [i for i in entry.value if i != radar_id]
        self.cache.apply(values, Source.SERVER)

    async def _owned(self, radar_id: str) -> Radar:
        radar = await self.get_radar(radar_id)
        if radar is None:
            raise NotFoundError()
        return radar

    # ── Memberships ───────────────────────────────────────────────────────────

    async def list_memberships(self, radar_id: str) -> list[Membership]:
        await self._owned(radar_id)
        return await self.store.list_memberships(radar_id)

    async def radars_containing(self, entity_id: int) -> list[str]:
        owner_id = self.require_user()
        return await self.store.radars_containing(entity_id, owner_id)

    async def all_entity_ids(self) -> set[int]:
        owner_id = self.require_user()
        return await self.store.all_entity_ids(owner_id)

    async def add_membership(self, radar_id: str, entity_id: int) -> Membership:
        """Add directly through the store, then refresh the shared cache."""
        await self._owned(radar_id)
        membership = await self.store.add_membership(radar_id, entity_id)
        await refresh_from_store(self.cache, self.store, self.require_user(), entity_id)
        return membership

    async def remove_membership(self, radar_id: str, entity_id: int) -> None:
        await self._owned(radar_id)
        await self.store.remove_membership(radar_id, entity_id)
        await refresh_from_store(self.cache, self.store, self.require_user(), entity_id)

    # ── Surfaces ──────────────────────────────────────────────────────────────

    def toggle_controller(self, entity_id: int) -> ToggleController:
        """Controller for an apply-now surface showing *entity_id*."""
        return ToggleController(
            self.store, self.cache, self.require_user(), entity_id, self.limits
        )

    def review(self, entity_id: int) -> BatchCommitCoordinator:
        """Coordinator for a review-then-save surface showing *entity_id*."""
        return BatchCommitCoordinator(
            self.store, self.cache, self.require_user(), entity_id, self.limits
        )
