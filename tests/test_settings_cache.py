"""
Configuration cache tests - TTL, invalidation and settings cell detection.
"""

import pytest

from offer_grid.core.settings_cache import ConfigurationCache


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(store, clock):
    return ConfigurationCache(store, ttl_sec=60, clock=clock, language_cell="I1", deal_flag_cell="L1")


class TestConfigurationCache:
    """Test cached settings reads."""

    def test_defaults_when_cells_blank(self, cache):
        snapshot = cache.get()
        assert snapshot.language == "german"
        assert snapshot.deal_flag is False

    def test_reads_settings_cells(self, cache, store):
        store.set_cell(1, 9, "English")
        store.set_cell(1, 12, "Yes")

        snapshot = cache.get()

        assert snapshot.language == "english"
        assert snapshot.deal_flag is True

    def test_stale_within_ttl(self, cache, store, clock):
        """Reads inside the TTL return the cached snapshot."""
        cache.get()
        store.set_cell(1, 12, "yes")
        clock.now += 30

        assert cache.get().deal_flag is False

    def test_refreshes_after_ttl(self, cache, store, clock):
        cache.get()
        store.set_cell(1, 12, "yes")
        clock.now += 61

        assert cache.get().deal_flag is True

    def test_invalidate_forces_reload(self, cache, store):
        cache.get()
        store.set_cell(1, 12, "yes")

        cache.invalidate()

        assert cache.get().deal_flag is True

    def test_settings_cell_detection(self, cache):
        assert cache.is_settings_cell(1, 9)
        assert cache.is_settings_cell(1, 12)
        assert cache.is_deal_flag_cell(1, 12)
        assert not cache.is_deal_flag_cell(1, 9)
        assert not cache.is_settings_cell(7, 9)
