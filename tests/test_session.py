"""Tests for core/session.py — identity gating and the shared cache."""

from __future__ import annotations

import asyncio

import pytest

from core.errors import AuthenticationError, LimitExceededError, NotFoundError, ValidationError
from core.session import RadarSession

REPO = 42


@pytest.fixture
def session(store) -> RadarSession:
    return RadarSession(store, identity=lambda: "user-1")


@pytest.fixture
def signed_out(store) -> RadarSession:
    return RadarSession(store, identity=lambda: None)


class TestAuthentication:
    def test_require_user(self, session):
        assert session.require_user() == "user-1"

    def test_signed_out_refuses_mutations(self, signed_out, store):
        with pytest.raises(AuthenticationError):
            asyncio.run(signed_out.create_radar("Frontend"))
        with pytest.raises(AuthenticationError):
            signed_out.toggle_controller(REPO)
        with pytest.raises(AuthenticationError):
            signed_out.review(REPO)
        assert asyncio.run(store.list_radars("user-1")) == []

    def test_signed_out_rename_checks_identity_before_name(self, signed_out):
        with pytest.raises(AuthenticationError):
            asyncio.run(signed_out.rename_radar("nope", "  "))

    def test_identity_read_on_every_call(self, store):
        current = {"id": "user-1"}
        session = RadarSession(store, identity=lambda: current["id"])
        asyncio.run(session.create_radar("Mine"))

        current["id"] = None
        with pytest.raises(AuthenticationError):
            asyncio.run(session.list_radars())


class TestRadarLifecycle:
    def test_create_publishes_to_cache(self, session):
        radar = asyncio.run(session.create_radar("Frontend"))
        cached = session.cache.radars()
        assert [(r.id, r.repo_count) for r in cached] == [(radar.id, 0)]

    def test_sixth_radar_leaves_list_unchanged(self, session):
        for i in range(5):
            asyncio.run(session.create_radar(f"Radar {i}"))
        before = asyncio.run(session.list_radars())

        with pytest.raises(LimitExceededError):
            asyncio.run(session.create_radar("Too many"))

        assert asyncio.run(session.list_radars()) == before

    def test_rename_validates_first(self, session):
        with pytest.raises(ValidationError):
            asyncio.run(session.rename_radar("nope", "  "))

    def test_cannot_touch_another_users_radar(self, session, store):
        theirs = asyncio.run(store.create_radar("user-2", "Theirs"))
        assert asyncio.run(session.get_radar(theirs.id)) is None
        with pytest.raises(NotFoundError):
            asyncio.run(session.rename_radar(theirs.id, "Mine now"))
        with pytest.raises(NotFoundError):
            asyncio.run(session.delete_radar(theirs.id))
        with pytest.raises(NotFoundError):
            asyncio.run(session.add_membership(theirs.id, REPO))

    def test_delete_drops_radar_from_cached_memberships(self, session):
        keep = asyncio.run(session.create_radar("Keep"))
        gone = asyncio.run(session.create_radar("Gone"))
        asyncio.run(session.add_membership(keep.id, REPO))
        asyncio.run(session.add_membership(gone.id, REPO))
        assert sorted(session.cache.radar_ids_for(REPO)) == sorted([keep.id, gone.id])

        asyncio.run(session.delete_radar(gone.id))

        assert session.cache.radar_ids_for(REPO) == [keep.id]
        assert [r.id for r in session.cache.radars()] == [keep.id]


class TestMemberships:
    def test_add_remove_and_lookups(self, session):
        radar = asyncio.run(session.create_radar("Frontend"))
        asyncio.run(session.add_membership(radar.id, REPO))

        assert asyncio.run(session.radars_containing(REPO)) == [radar.id]
        assert asyncio.run(session.all_entity_ids()) == {REPO}
        assert [m.entity_id for m in asyncio.run(session.list_memberships(radar.id))] == [REPO]

        asyncio.run(session.remove_membership(radar.id, REPO))
        asyncio.run(session.remove_membership(radar.id, REPO))
        assert asyncio.run(session.radars_containing(REPO)) == []


class TestSurfaces:
    def test_toggle_and_review_share_cache(self, session):
        radar = asyncio.run(session.create_radar("Frontend"))
        controller = session.toggle_controller(REPO)
        review = session.review(REPO)

        async def scenario():
            await controller.load()
            await controller.toggle(radar.id)
            await controller.drain()
            await review.open()

        asyncio.run(scenario())

        assert review.is_checked(radar.id)
        assert controller.cache is review.cache is session.cache

    def test_interaction_flag_is_session_scoped(self, store):
        first = RadarSession(store, identity=lambda: "user-1")
        second = RadarSession(store, identity=lambda: "user-1")
        first.mark_interacted()
        assert first.has_interacted is True
        assert second.has_interacted is False
