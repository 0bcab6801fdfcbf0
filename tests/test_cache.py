"""Tests for core/cache.py — versioned, source-tagged cache entries."""

from __future__ import annotations

from core.cache import RADARS_KEY, MembershipCache, Source, entity_key


class TestApply:
    def test_empty_cache_reads(self):
        cache = MembershipCache()
        assert cache.radars() == []
        assert cache.radar_ids_for(1) == []
        assert cache.version == 0

    def test_apply_tags_source_and_version(self):
        cache = MembershipCache()
        version = cache.apply({entity_key(1): ["a"]}, Source.OPTIMISTIC)

        entry = cache.entry(entity_key(1))
        assert entry.source is Source.OPTIMISTIC
        assert entry.version == version == 1
        assert not entry.is_authoritative
        assert cache.radar_ids_for(1) == ["a"]

    def test_compound_write_shares_one_version(self):
        cache = MembershipCache()
        cache.apply({RADARS_KEY: [], entity_key(1): ["a"]}, Source.SERVER)
        assert cache.entry(RADARS_KEY).version == cache.entry(entity_key(1)).version

    def test_observer_sees_complete_write(self):
        cache = MembershipCache()
        seen = []

        def observer(key, entry):
            # Both keys must already be written when the first is reported
            seen.append((key, cache.radar_ids_for(1), cache.entry(RADARS_KEY) is not None))

        cache.subscribe(observer)
        cache.apply({entity_key(1): ["a"], RADARS_KEY: []}, Source.OPTIMISTIC)

        assert all(ids == ["a"] and has_radars for _, ids, has_radars in seen)
        assert len(seen) == 2

    def test_unsubscribe(self):
        cache = MembershipCache()
        seen = []
        unsubscribe = cache.subscribe(lambda key, entry: seen.append(key))
        unsubscribe()
        cache.apply({entity_key(1): []}, Source.SERVER)
        assert seen == []


class TestSnapshotRestore:
    def test_restore_puts_back_exact_entries(self):
        cache = MembershipCache()
        cache.apply({entity_key(1): ["a"]}, Source.SERVER)
        snapshot = cache.snapshot(entity_key(1), RADARS_KEY)
        original = cache.entry(entity_key(1))

        cache.apply({entity_key(1): ["a", "b"], RADARS_KEY: []}, Source.OPTIMISTIC)
        cache.restore(snapshot)

        assert cache.entry(entity_key(1)) is original
        assert cache.entry(RADARS_KEY) is None

    def test_restore_bumps_version(self):
        cache = MembershipCache()
        snapshot = cache.snapshot(entity_key(1))
        cache.apply({entity_key(1): ["a"]}, Source.OPTIMISTIC)
        cache.restore(snapshot)
        assert cache.version == 2


class TestApplyServer:
    def test_overwrites_older_optimistic_value(self):
        cache = MembershipCache()
        cache.apply({entity_key(1): ["a"]}, Source.OPTIMISTIC)
        fetched_at = cache.version

        assert cache.apply_server({entity_key(1): ["a"]}, fetched_at) is True
        assert cache.entry(entity_key(1)).source is Source.SERVER

    def test_skips_newer_optimistic_value(self):
        cache = MembershipCache()
        fetched_at = cache.version
        cache.apply({entity_key(1): ["a"]}, Source.OPTIMISTIC)

        assert cache.apply_server({entity_key(1): [], RADARS_KEY: []}, fetched_at) is False
        assert cache.radar_ids_for(1) == ["a"]
        assert cache.entry(RADARS_KEY).source is Source.SERVER

    def test_server_value_always_replaces_server_value(self):
        cache = MembershipCache()
        fetched_at = cache.version
        cache.apply({entity_key(1): ["a"]}, Source.SERVER)

        assert cache.apply_server({entity_key(1): ["b"]}, fetched_at) is True
        assert cache.radar_ids_for(1) == ["b"]

    def test_entity_keys(self):
        cache = MembershipCache()
        cache.apply({RADARS_KEY: [], entity_key(1): [], entity_key(2): []}, Source.SERVER)
        assert sorted(cache.entity_keys()) == [entity_key(1), entity_key(2)]


class TestHolds:
    def test_held_key_is_not_refreshed(self):
        cache = MembershipCache()
        cache.apply({entity_key(1): ["a"]}, Source.OPTIMISTIC)
        cache.hold(entity_key(1))
        fetched_at = cache.version

        assert cache.is_held(entity_key(1))
        assert cache.apply_server({entity_key(1): []}, fetched_at) is False
        assert cache.radar_ids_for(1) == ["a"]

    def test_fetch_started_before_release_is_stale(self):
        cache = MembershipCache()
        cache.apply({entity_key(1): ["a"]}, Source.OPTIMISTIC)
        cache.hold(entity_key(1))
        fetched_at = cache.version
        cache.release(entity_key(1))

        assert not cache.is_held(entity_key(1))
        assert cache.apply_server({entity_key(1): []}, fetched_at) is False

    def test_fetch_started_after_release_applies(self):
        cache = MembershipCache()
        cache.apply({entity_key(1): ["a"]}, Source.OPTIMISTIC)
        cache.hold(entity_key(1))
        cache.release(entity_key(1))
        fetched_at = cache.version

        assert cache.apply_server({entity_key(1): ["a"]}, fetched_at) is True
        assert cache.entry(entity_key(1)).is_authoritative
