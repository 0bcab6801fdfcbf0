"""
Flask web server for Repo Radar.

A thin JSON adapter over ``core``: every rule (name validation, limits,
duplicates) lives in the store; this module only maps requests and errors.
The current user is taken from the ``X-User-Id`` header set by the
authenticating proxy in front of the app.

Routes
──────
GET    /api/radars                          List radars with repo counts
POST   /api/radars                          Create a radar  {"name": ...}
GET    /api/radars/<id>                     Fetch one radar
PATCH  /api/radars/<id>                     Rename a radar  {"name": ...}
DELETE /api/radars/<id>                     Delete a radar (and its repos)
GET    /api/radars/<id>/repos               List a radar's repos, newest first
POST   /api/radars/<id>/repos               Add a repo      {"repo_id": 123}
DELETE /api/radars/<id>/repos/<repo_id>     Remove a repo (idempotent)
GET    /api/repos/<repo_id>/radars          Radar ids containing a repo
GET    /api/repo-ids                        Every repo id in any of my radars
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from typing import Optional

from dotenv import load_dotenv
from flask import Flask, jsonify, request

# Allow running as `python web/app.py` from the project root
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from config.settings import Settings
from core.errors import (
    AuthenticationError,
    DuplicateMembershipError,
    LimitExceededError,
    NotFoundError,
    RadarError,
    TransientError,
    ValidationError,
)
from core.session import RadarSession
from core.store import MembershipStore

logger = logging.getLogger(__name__)

USER_HEADER = "X-User-Id"

_STATUS_BY_ERROR: list[tuple[type[RadarError], int]] = [
    (ValidationError, 400),
    (AuthenticationError, 401),
    (NotFoundError, 404),
    (DuplicateMembershipError, 409),
    (LimitExceededError, 409),
    (TransientError, 503),
]


def _current_user() -> Optional[str]:
    return request.headers.get(USER_HEADER) or None


def _json_body() -> dict:
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[MembershipStore] = None,
) -> Flask:
    """Build the Flask app.

    Args:
        settings: Configuration; read from the environment when omitted.
        store: Backend to use; built from *settings* when omitted.
    """
    settings = settings or Settings()
    settings.validate()
    if store is None:
        store = MembershipStore(settings.db_path, settings.limits())
    # Initialise the SQLite database on startup
    store.init_db()

    app = Flask(__name__)

    def session() -> RadarSession:
        return RadarSession(store, identity=_current_user)

    # ── Errors ─────────────────────────────────────────────────────────────

    @app.errorhandler(RadarError)
    def handle_radar_error(exc: RadarError):
        status = next(
            (code for cls, code in _STATUS_BY_ERROR if isinstance(exc, cls)), 500
        )
        payload: dict = {"error": str(exc)}
        if isinstance(exc, LimitExceededError):
            payload.update(kind=exc.kind.value, limit=exc.limit)
        if status >= 500:
            logger.error("Request to %s failed: %s", request.path, exc)
        return jsonify(payload), status

    # ── Radars ─────────────────────────────────────────────────────────────

    @app.route("/api/radars")
    def list_radars():
        radars = asyncio.run(session().list_radars())
        return jsonify([r.model_dump(mode="json") for r in radars])

    @app.route("/api/radars", methods=["POST"])
    def create_radar():
        name = str(_json_body().get("name", ""))
        radar = asyncio.run(session().create_radar(name))
        return jsonify(radar.model_dump(mode="json")), 201

    @app.route("/api/radars/<radar_id>")
    def get_radar(radar_id: str):
        radar = asyncio.run(session().get_radar(radar_id))
        if radar is None:
            return jsonify({"error": "Not found"}), 404
        return jsonify(radar.model_dump(mode="json"))

    @app.route("/api/radars/<radar_id>", methods=["PATCH"])
    def rename_radar(radar_id: str):
        name = str(_json_body().get("name", ""))
        radar = asyncio.run(session().rename_radar(radar_id, name))
        return jsonify(radar.model_dump(mode="json"))

    @app.route("/api/radars/<radar_id>", methods=["DELETE"])
    def delete_radar(radar_id: str):
        asyncio.run(session().delete_radar(radar_id))
        return jsonify({"deleted": radar_id})

    # ── Memberships ────────────────────────────────────────────────────────

    @app.route("/api/radars/<radar_id>/repos")
    def list_radar_repos(radar_id: str):
        memberships = asyncio.run(session().list_memberships(radar_id))
        return jsonify([m.model_dump(mode="json") for m in memberships])

    @app.route("/api/radars/<radar_id>/repos", methods=["POST"])
    def add_radar_repo(radar_id: str):
        repo_id = _json_body().get("repo_id")
        if not isinstance(repo_id, int) or isinstance(repo_id, bool):
            return jsonify({"error": "repo_id must be an integer"}), 400
        membership = asyncio.run(session().add_membership(radar_id, repo_id))
        return jsonify(membership.model_dump(mode="json")), 201

    @app.route("/api/radars/<radar_id>/repos/<int:repo_id>", methods=["DELETE"])
    def remove_radar_repo(radar_id: str, repo_id: int):
        asyncio.run(session().remove_membership(radar_id, repo_id))
        return jsonify({"removed": repo_id})

    @app.route("/api/repos/<int:repo_id>/radars")
    def repo_radars(repo_id: int):
        radar_ids = asyncio.run(session().radars_containing(repo_id))
        return jsonify({"repo_id": repo_id, "radar_ids": radar_ids})

    @app.route("/api/repo-ids")
    def repo_ids():
        ids = asyncio.run(session().all_entity_ids())
        return jsonify(sorted(ids))

    return app


# ── Entry point ────────────────────────────────────────────────────────────

if __name__ == "__main__":
    load_dotenv()
    logging.basicConfig(level=logging.INFO)
    settings = Settings()
    create_app(settings).run(debug=settings.debug, host="0.0.0.0", port=settings.port)
