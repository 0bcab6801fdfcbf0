"""
Shared fixtures: a MembershipStore on a temporary SQLite file.

The real radar DB is never touched.
"""

from __future__ import annotations

import asyncio

import pytest

from core.store import MembershipStore


@pytest.fixture
def store(tmp_path, monkeypatch) -> MembershipStore:
    """Point DB_PATH to a fresh temp file and initialise the schema."""
    db_file = tmp_path / "test_radar.db"
    monkeypatch.setenv("DB_PATH", str(db_file))
    store = MembershipStore()
    store.init_db()
    return store


@pytest.fixture
def fill():
    """Return a helper that adds *count* repos (ids from *start*) to a radar."""

    def _fill(store: MembershipStore, radar_id: str, count: int, start: int = 1) -> None:
        async def _run() -> None:
            for entity_id in range(start, start + count):
                await store.add_membership(radar_id, entity_id)

        asyncio.run(_run())

    return _fill
