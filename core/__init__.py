"""
repo-radar core package.

Modules
───────
models   — Pydantic data models (Radar, RadarWithCount, Membership) + PendingChanges
errors   — RadarError taxonomy (validation, limits, duplicates, not found, auth, transient)
limits   — capacity limits and the advisory limit policy
store    — SQLite-backed MembershipStore, the authoritative limit check
cache    — shared MembershipCache with server/optimistic tagged entries
toggle   — ToggleController: optimistic apply-now toggles with rollback
batch    — BatchCommitCoordinator: staged review-then-save commits
session  — RadarSession: identity, shared cache and surface factories
"""
