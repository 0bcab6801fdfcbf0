"""Shared in-memory membership cache.

Every UI surface that shows radar membership reads from one
``MembershipCache``. Two kinds of entry live here:

* the user's radar list with counts (``radars``)
* per repository, the ids of the radars that contain it (``entity``)

Each entry is a ``CacheEntry`` tagged with where its value came from
(``server`` or ``optimistic``) and the cache version at which it was written.
Versions increase by one on every write. Toggles ``hold`` the keys they
change while their store call is outstanding and ``release`` them when it
resolves; a background refresh whose fetch began before the last optimistic
write or release of a key is not applied to that key.

The cache is mutated from the event loop only. A compound change (radar
counts and the entity's id list) goes through ``apply`` as one synchronous
step so observers never see half of it.
"""

from __future__ import annotations

import logging
from collections import Counter
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional

from core.models import RadarWithCount

if TYPE_CHECKING:
    from core.store import MembershipStore

logger = logging.getLogger(__name__)

RADARS_KEY = "radars"


def entity_key(entity_id: int) -> str:
    """Cache key for the radar ids containing *entity_id*."""
    return f"entity:{entity_id}"


class Source(str, Enum):
    """Where a cached value came from."""

    SERVER = "server"          # Read back from the store
    OPTIMISTIC = "optimistic"  # Applied locally ahead of confirmation


@dataclass(frozen=True)
class CacheEntry:
    """One cached value and its provenance."""

    value: tuple
    source: Source
    version: int

    @property
    def is_authoritative(self) -> bool:
        return self.source is Source.SERVER


#: Snapshot of selected keys; ``None`` means the key was absent.
Snapshot = dict[str, Optional[CacheEntry]]

Observer = Callable[[str, Optional[CacheEntry]], None]


class MembershipCache:
    """Versioned key/value cache with read-only observers."""

    def __init__(self) -> None:
        self._entries: dict[str, CacheEntry] = {}
        self._version = 0
        self._observers: list[Observer] = []
        self._holds: Counter[str] = Counter()
        #: Last version at which an optimistic write or a confirmation hit a key.
        self._touched: dict[str, int] = {}

    @property
    def version(self) -> int:
        return self._version

    # ── Reads ─────────────────────────────────────────────────────────────────

    def entry(self, key: str) -> Optional[CacheEntry]:
        return self._entries.get(key)

    def radars(self) -> list[RadarWithCount]:
        """Current radar list (possibly optimistic); empty if never loaded."""
        entry = self._entries.get(RADARS_KEY)
        return list(entry.value) if entry else []

    def radar_ids_for(self, entity_id: int) -> list[str]:
        """Current ids of radars containing *entity_id*; empty if unknown."""
        entry = self._entries.get(entity_key(entity_id))
        return list(entry.value) if entry else []

    def snapshot(self, *keys: str) -> Snapshot:
        """Capture the exact entries for *keys* so they can be restored later."""
        return {key: self._entries.get(key) for key in keys}

    # ── Writes ────────────────────────────────────────────────────────────────

    def apply(self, values: Mapping[str, Any], source: Source) -> int:
        """Write several keys in one step and return the new version.

        Observers are notified only after every key has been written.
        """
        self._version += 1
        written = {
            key: CacheEntry(value=tuple(value), source=source, version=self._version)
            for key, value in values.items()
        }
        self._entries.update(written)
        if source is Source.OPTIMISTIC:
            for key in written:
                self._touched[key] = self._version
        self._notify(written)
        return self._version

    def apply_server(self, values: Mapping[str, Any], fetched_at: int) -> bool:
        """Write server values, skipping keys the fetch may not reflect.

        A key is skipped while a store call for it is held open, or when an
        optimistic write or a confirmation touched it after the fetch began.

        Args:
            values: Fresh values read from the store, by key.
            fetched_at: Cache version observed when the fetch started.

        Returns:
            ``True`` if every key was written, ``False`` if any was stale.
        """
        fresh: dict[str, Any] = {}
        for key, value in values.items():
            if self._holds[key] > 0 or self._touched.get(key, 0) > fetched_at:
                logger.debug(
                    "Skipping stale refresh of %s (fetched at v%d, touched v%d)",
                    key, fetched_at, self._touched.get(key, 0),
                )
                continue
            fresh[key] = value
        if fresh:
            self.apply(fresh, Source.SERVER)
        return len(fresh) == len(values)

    def hold(self, *keys: str) -> None:
        """Mark *keys* as having a store call in flight."""
        for key in keys:
            self._holds[key] += 1

    def release(self, *keys: str) -> None:
        """End a ``hold``; refreshes fetched before this point are stale."""
        self._version += 1
        for key in keys:
            self._holds[key] -= 1
            if self._holds[key] <= 0:
                del self._holds[key]
            self._touched[key] = self._version

    def is_held(self, key: str) -> bool:
        return self._holds[key] > 0

    def restore(self, snapshot: Snapshot) -> None:
        """Put back exactly the entries captured by ``snapshot``."""
        self._version += 1
        for key, entry in snapshot.items():
            if entry is None:
                self._entries.pop(key, None)
            else:
                self._entries[key] = entry
        self._notify(snapshot)

    def entity_keys(self) -> list[str]:
        return [key for key in self._entries if key.startswith("entity:")]

    def clear(self) -> None:
        self._version += 1
        removed = {key: None for key in self._entries}
        self._entries.clear()
        self._notify(removed)

    # ── Observers ─────────────────────────────────────────────────────────────

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """Register a read-only observer; returns an unsubscribe function."""
        self._observers.append(observer)

        def unsubscribe() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return unsubscribe

    def _notify(self, changed: Mapping[str, Optional[CacheEntry]]) -> None:
        for observer in list(self._observers):
            for key, entry in changed.items():
                observer(key, entry)


async def refresh_from_store(
    cache: MembershipCache,
    store: "MembershipStore",
    owner_id: str,
    entity_id: Optional[int] = None,
) -> bool:
    """Reload the radar list (and optionally one entity) from *store*.

    Values are applied with ``apply_server`` so a refresh that raced a newer
    optimistic toggle does not clobber it.

    Returns:
        ``True`` if every fetched key was written.
    """
    fetched_at = cache.version
    values: dict[str, Any] = {RADARS_KEY: await store.list_radars(owner_id)}
    if entity_id is not None:
        values[entity_key(entity_id)] = await store.radars_containing(entity_id, owner_id)
    return cache.apply_server(values, fetched_at)
