"""
SQLite-backed membership store for Repo Radar.

This module is the only code that mutates persisted radar state, and the only
place where capacity limits are enforced authoritatively.

Schema
──────
table: radars
  id          TEXT PRIMARY KEY           (uuid4 hex)
  owner_id    TEXT NOT NULL
  name        TEXT NOT NULL              (1-50 chars, trimmed)
  created_at  TEXT NOT NULL              (ISO-8601 UTC)
  updated_at  TEXT NOT NULL              (ISO-8601 UTC)

table: memberships
  radar_id    TEXT NOT NULL  → radars.id ON DELETE CASCADE
  entity_id   INTEGER NOT NULL           (GitHub repository id)
  added_at    TEXT NOT NULL              (ISO-8601 UTC)
  UNIQUE (radar_id, entity_id)

Soft limits
───────────
``create_radar`` and ``add_membership`` count rows and then insert in two
steps. Two concurrent requests can both pass the count and overshoot a limit
by a small margin. That is accepted for UX quotas. If strict enforcement is
ever required, replace the count-then-insert with a single conditional
insert (trigger or serializable transaction) instead of tightening this code.

Every public operation is a coroutine: the blocking sqlite3 call runs in a
worker thread so the event loop keeps serving other toggles meanwhile.
"""

from __future__ import annotations

import asyncio
import logging
import os
import sqlite3
import uuid
from collections.abc import Callable
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, TypeVar

from core.errors import (
    AuthenticationError,
    DuplicateMembershipError,
    LimitExceededError,
    LimitKind,
    NotFoundError,
    RadarError,
    TransientError,
    ValidationError,
)
from core.limits import DEFAULT_LIMITS, RadarLimits
from core.models import Membership, Radar, RadarWithCount

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_DB_PATH = Path(__file__).parent.parent / "data" / "radar.db"

MAX_NAME_LENGTH = 50

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS radars (
        id         TEXT PRIMARY KEY,
        owner_id   TEXT NOT NULL,
        name       TEXT NOT NULL CHECK (LENGTH(TRIM(name)) > 0),
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_radars_owner_id ON radars(owner_id)",
    """
    CREATE TABLE IF NOT EXISTS memberships (
        radar_id  TEXT NOT NULL REFERENCES radars(id) ON DELETE CASCADE,
        entity_id INTEGER NOT NULL,
        added_at  TEXT NOT NULL,
        CONSTRAINT memberships_unique UNIQUE (radar_id, entity_id)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_memberships_entity_id ON memberships(entity_id)",
)


def _db_path() -> Path:
    """Return the database file path, honouring a DB_PATH env var if set."""
    env = os.getenv("DB_PATH")
    return Path(env) if env else DEFAULT_DB_PATH


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def validate_name(name: str) -> str:
    """Return the trimmed radar name or raise ``ValidationError``."""
    trimmed = (name or "").strip()
    if not trimmed:
        raise ValidationError("Radar name cannot be empty")
    if len(trimmed) > MAX_NAME_LENGTH:
        raise ValidationError(f"Radar name cannot exceed {MAX_NAME_LENGTH} characters")
    return trimmed


def _is_unique_violation(exc: sqlite3.IntegrityError) -> bool:
    if getattr(exc, "sqlite_errorname", "") == "SQLITE_CONSTRAINT_UNIQUE":
        return True
    return "UNIQUE constraint failed" in str(exc)


class MembershipStore:
    """Authoritative CRUD and aggregate counts for radars and memberships.

    Args:
        db_path: SQLite file to use. Defaults to ``DB_PATH`` or ``data/radar.db``.
        limits: Capacity limits enforced on write.
    """

    def __init__(
        self,
        db_path: Optional[Path | str] = None,
        limits: RadarLimits = DEFAULT_LIMITS,
    ) -> None:
        self.db_path = Path(db_path) if db_path else _db_path()
        self.limits = limits

    # ── Connection handling ───────────────────────────────────────────────────

    @contextmanager
    def _connect(self):
        """Yield a connected sqlite3.Connection, creating the file/dir if needed."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    async def _run(self, failure: str, fn: Callable[..., T], *args) -> T:
        """Run *fn* in a worker thread, translating backend errors.

        ``RadarError`` subclasses pass through untouched; any other sqlite
        failure becomes a ``TransientError`` carrying *failure* as message.
        """
        try:
            return await asyncio.to_thread(fn, *args)
        except RadarError:
            raise
        except sqlite3.Error as exc:
            logger.error("%s: %s", failure, exc)
            raise TransientError(failure) from exc

    def init_db(self) -> None:
        """Create the radar tables if they don't exist yet."""
        with self._connect() as conn:
            for statement in _SCHEMA:
                conn.execute(statement)
        logger.info("Radar DB initialised at %s", self.db_path)

    # ── Radars ────────────────────────────────────────────────────────────────

    async def list_radars(self, owner_id: str) -> list[RadarWithCount]:
        """Return the owner's radars with live repo counts, oldest first."""
        return await self._run("Failed to fetch radars", self._list_radars, owner_id)

    def _list_radars(self, owner_id: str) -> list[RadarWithCount]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT r.id, r.owner_id, r.name, r.created_at, r.updated_at, "
                "COUNT(m.entity_id) AS repo_count "
                "FROM radars r LEFT JOIN memberships m ON m.radar_id = r.id "
                "WHERE r.owner_id = ? "
                "GROUP BY r.id ORDER BY r.created_at ASC, r.rowid ASC",
                (owner_id,),
            ).fetchall()
        return [RadarWithCount.model_validate(dict(row)) for row in rows]

    async def get_radar(self, radar_id: str) -> Optional[Radar]:
        """Fetch a single radar, or ``None`` if it does not exist."""
        return await self._run("Failed to fetch radar", self._get_radar, radar_id)

    def _get_radar(self, radar_id: str) -> Optional[Radar]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT id, owner_id, name, created_at, updated_at FROM radars WHERE id = ?",
                (radar_id,),
            ).fetchone()
        return Radar.model_validate(dict(row)) if row is not None else None

    async def create_radar(self, owner_id: str, name: str) -> Radar:
        """Create a radar for *owner_id*.

        Raises:
            AuthenticationError: If *owner_id* is empty.
            ValidationError: If the trimmed name is empty or too long.
            LimitExceededError: If the owner already has the maximum radars.
        """
        if not owner_id:
            raise AuthenticationError()
        trimmed = validate_name(name)
        return await self._run("Failed to create radar", self._create_radar, owner_id, trimmed)

    def _create_radar(self, owner_id: str, name: str) -> Radar:
        max_radars = self.limits.max_radars_per_user
        with self._connect() as conn:
            (count,) = conn.execute(
                "SELECT COUNT(*) FROM radars WHERE owner_id = ?", (owner_id,)
            ).fetchone()
            if count >= max_radars:
                logger.warning("Radar limit reached for owner=%s (%d)", owner_id, count)
                raise LimitExceededError(LimitKind.RADARS, max_radars)

            now = _now()
            radar = Radar(
                id=uuid.uuid4().hex,
                owner_id=owner_id,
                name=name,
                created_at=now,
                updated_at=now,
            )
            conn.execute(
                "INSERT INTO radars (id, owner_id, name, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (radar.id, owner_id, name, now, now),
            )

        logger.info("Created radar id=%s name=%r for owner=%s", radar.id, name, owner_id)
        return radar

    async def rename_radar(self, radar_id: str, name: str) -> Radar:
        """Rename a radar in place.

        Raises:
            ValidationError: If the trimmed name is empty or too long.
            NotFoundError: If the radar does not exist.
        """
        trimmed = validate_name(name)
        return await self._run("Failed to update radar", self._rename_radar, radar_id, trimmed)

    def _rename_radar(self, radar_id: str, name: str) -> Radar:
        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE radars SET name = ?, updated_at = ? WHERE id = ?",
                (name, _now(), radar_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError()
            row = conn.execute(
                "SELECT id, owner_id, name, created_at, updated_at FROM radars WHERE id = ?",
                (radar_id,),
            ).fetchone()

        logger.info("Renamed radar id=%s to %r", radar_id, name)
        return Radar.model_validate(dict(row))

    async def delete_radar(self, radar_id: str) -> None:
        """Delete a radar; its memberships go with it (ON DELETE CASCADE)."""
        await self._run("Failed to delete radar", self._delete_radar, radar_id)

    def _delete_radar(self, radar_id: str) -> None:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM radars WHERE id = ?", (radar_id,))
        if cursor.rowcount > 0:
            logger.info("Deleted radar id=%s", radar_id)

    # ── Memberships ───────────────────────────────────────────────────────────

    async def list_memberships(self, radar_id: str) -> list[Membership]:
        """Return the memberships of one radar, most recently added first."""
        return await self._run(
            "Failed to fetch radar repos", self._list_memberships, radar_id
        )

    def _list_memberships(self, radar_id: str) -> list[Membership]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT radar_id, entity_id, added_at FROM memberships "
                "WHERE radar_id = ? ORDER BY added_at DESC, rowid DESC",
                (radar_id,),
            ).fetchall()
        return [Membership.model_validate(dict(row)) for row in rows]

    async def add_membership(self, radar_id: str, entity_id: int) -> Membership:
        """Add *entity_id* to a radar after re-checking both repo limits.

        Raises:
            NotFoundError: If the radar does not exist.
            LimitExceededError: ``repos_per_radar`` or ``total_repos``.
            DuplicateMembershipError: If the entity is already in the radar.
        """
        return await self._run(
            "Failed to add repo to radar", self._add_membership, radar_id, entity_id
        )

    def _add_membership(self, radar_id: str, entity_id: int) -> Membership:
        per_radar = self.limits.max_repos_per_radar
        total = self.limits.max_total_repos

        with self._connect() as conn:
            owner = conn.execute(
                "SELECT owner_id FROM radars WHERE id = ?", (radar_id,)
            ).fetchone()
            if owner is None:
                raise NotFoundError()

            (radar_count,) = conn.execute(
                "SELECT COUNT(*) FROM memberships WHERE radar_id = ?", (radar_id,)
            ).fetchone()
            if radar_count >= per_radar:
                logger.warning("Radar id=%s is full (%d repos)", radar_id, radar_count)
                raise LimitExceededError(LimitKind.REPOS_PER_RADAR, per_radar)

            (total_count,) = conn.execute(
                "SELECT COUNT(*) FROM memberships m "
                "JOIN radars r ON r.id = m.radar_id WHERE r.owner_id = ?",
                (owner["owner_id"],),
            ).fetchone()
            if total_count >= total:
                logger.warning(
                    "Owner=%s reached total repo limit (%d)", owner["owner_id"], total_count
                )
                raise LimitExceededError(LimitKind.TOTAL_REPOS, total)

            added_at = _now()
            try:
                conn.execute(
                    "INSERT INTO memberships (radar_id, entity_id, added_at) VALUES (?, ?, ?)",
                    (radar_id, entity_id, added_at),
                )
            except sqlite3.IntegrityError as exc:
                if _is_unique_violation(exc):
                    raise DuplicateMembershipError() from exc
                raise

        logger.info("Added repo=%d to radar id=%s", entity_id, radar_id)
        return Membership(radar_id=radar_id, entity_id=entity_id, added_at=added_at)

    async def remove_membership(self, radar_id: str, entity_id: int) -> None:
        """Remove *entity_id* from a radar. Removing a non-member is a no-op."""
        await self._run(
            "Failed to remove repo from radar", self._remove_membership, radar_id, entity_id
        )

    def _remove_membership(self, radar_id: str, entity_id: int) -> None:
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM memberships WHERE radar_id = ? AND entity_id = ?",
                (radar_id, entity_id),
            )
        if cursor.rowcount > 0:
            logger.info("Removed repo=%d from radar id=%s", entity_id, radar_id)

    async def radars_containing(
        self, entity_id: int, owner_id: Optional[str] = None
    ) -> list[str]:
        """Return the ids of the radars that contain *entity_id*.

        Args:
            entity_id: GitHub repository id.
            owner_id: Restrict the lookup to this owner's radars.
        """
        return await self._run(
            "Failed to check repo radar membership",
            self._radars_containing,
            entity_id,
            owner_id,
        )

    def _radars_containing(self, entity_id: int, owner_id: Optional[str]) -> list[str]:
        sql = (
            "SELECT m.radar_id FROM memberships m JOIN radars r ON r.id = m.radar_id "
            "WHERE m.entity_id = ?"
        )
        params: tuple = (entity_id,)
        if owner_id is not None:
            sql += " AND r.owner_id = ?"
            params = (entity_id, owner_id)
        sql += " ORDER BY r.created_at ASC, r.rowid ASC"

        with self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [row["radar_id"] for row in rows]

    async def all_entity_ids(self, owner_id: str) -> set[int]:
        """Every repository id present in any of the owner's radars."""
        return await self._run(
            "Failed to fetch radar repo IDs", self._all_entity_ids, owner_id
        )

    def _all_entity_ids(self, owner_id: str) -> set[int]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT DISTINCT m.entity_id FROM memberships m "
                "JOIN radars r ON r.id = m.radar_id WHERE r.owner_id = ?",
                (owner_id,),
            ).fetchall()
        return {int(row["entity_id"]) for row in rows}
