"""Application settings — all configuration loaded from environment variables.

Usage:
    from config.settings import Settings
    settings = Settings()
    settings.validate()   # raises ValueError on inconsistent limits
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from core.limits import (
    MAX_RADARS_PER_USER,
    MAX_REPOS_PER_RADAR,
    MAX_TOTAL_REPOS,
    RadarLimits,
)
from core.store import DEFAULT_DB_PATH


@dataclass
class Settings:
    """Centralised application configuration.

    All values are read from environment variables at instantiation time
    so that tests can override them by patching ``os.environ``.
    """

    # ── Storage ─────────────────────────────────────────────────────────────
    db_path: Path = field(
        default_factory=lambda: Path(os.environ.get("DB_PATH", str(DEFAULT_DB_PATH)))
    )

    # ── Flask ───────────────────────────────────────────────────────────────
    debug: bool = field(
        default_factory=lambda: os.environ.get("FLASK_DEBUG", "0") == "1"
    )
    port: int = field(
        default_factory=lambda: int(os.environ.get("PORT", "5001"))
    )

    # ── Limits ──────────────────────────────────────────────────────────────
    max_radars_per_user: int = field(
        default_factory=lambda: int(
            os.environ.get("MAX_RADARS_PER_USER", str(MAX_RADARS_PER_USER))
        )
    )
    max_repos_per_radar: int = field(
        default_factory=lambda: int(
            os.environ.get("MAX_REPOS_PER_RADAR", str(MAX_REPOS_PER_RADAR))
        )
    )
    #: Across all of a user's radars.
    max_total_repos: int = field(
        default_factory=lambda: int(os.environ.get("MAX_TOTAL_REPOS", str(MAX_TOTAL_REPOS)))
    )

    def limits(self) -> RadarLimits:
        return RadarLimits(
            max_radars_per_user=self.max_radars_per_user,
            max_repos_per_radar=self.max_repos_per_radar,
            max_total_repos=self.max_total_repos,
        )

    def validate(self) -> None:
        """Raise ``ValueError`` if the configured limits are inconsistent."""
        for name in ("max_radars_per_user", "max_repos_per_radar", "max_total_repos"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name.upper()} must be a positive integer.")
        if self.max_repos_per_radar > self.max_total_repos:
            raise ValueError(
                "MAX_REPOS_PER_RADAR cannot exceed MAX_TOTAL_REPOS."
            )
