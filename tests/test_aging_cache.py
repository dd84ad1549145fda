"""Tests for core/aging_cache.py — batched rank decay and eviction."""

import logging
import threading

import pytest

from core.aging_cache import AgingCache, BifItemCache, FfmpegItemCache, MediaItemCache


@pytest.fixture()
def cache():
    # rank starts at 40, so an untouched thumbnail survives exactly two sweeps
    c = AgingCache(max_cache=39, max_tick=20)
    c.add_item(1, MediaItemCache(True))
    return c


class TestRankDecay:
    def test_add_sets_initial_rank(self, cache):
        cache.add(1, "x", b"x")
        assert cache.rank_of(1, "x") == 40

    def test_rank_drops_by_one_sweep(self, cache):
        cache.add(1, "x", b"x")         # tick 1
        cache.add(1, "y", b"y")         # tick 2
        for _ in range(18):             # ticks 3..20 -> sweep
            assert cache.try_get(1, "y") == b"y"
        assert cache.rank_of(1, "x") == 40 - 20
        assert cache.rank_of(1, "y") == 40 - 20

    def test_untouched_thumbnail_is_evicted(self, cache):
        cache.add(1, "x", b"x")
        cache.add(1, "y", b"y")
        for _ in range(18 + 20):
            cache.try_get(1, "y")
        assert cache.try_get(1, "x") is None
        assert cache.try_get(1, "y") == b"y"

    def test_access_refreshes_rank(self, cache):
        cache.add(1, "x", b"x")
        cache.add(1, "y", b"y")
        for _ in range(18):
            cache.try_get(1, "y")
        assert cache.try_get(1, "x") == b"x"        # tick 1 of next round, rank back to 40
        for _ in range(19):
            cache.try_get(1, "y")
        assert cache.rank_of(1, "x") == 20

    def test_no_sweep_before_threshold(self, cache):
        cache.add(1, "x", b"x")
        for _ in range(18):
            cache.add(1, "y", b"y")
        assert cache.rank_of(1, "x") == 40

    def test_misses_do_not_tick(self, cache):
        cache.add(1, "x", b"x")
        for _ in range(100):
            assert cache.try_get(1, "missing") is None
            assert cache.try_get(2, "x") is None
        assert cache.rank_of(1, "x") == 40

    def test_sweep_covers_every_item(self, cache):
        cache.add_item(2, MediaItemCache(True))
        cache.add(2, "z", b"z")
        for _ in range(19 + 20):
            cache.add(1, "y", b"y")
        assert cache.try_get(2, "z") is None
        assert 2 in cache


class TestItems:
    def test_add_without_item_is_ignored(self, cache, caplog):
        with caplog.at_level(logging.WARNING):
            cache.add(5, "x", b"x")
        assert cache.get_item(5) is None
        assert "not initialized" in caplog.text

    def test_items_survive_eviction(self, cache):
        cache.add(1, "x", b"x")
        for _ in range(100):
            cache.add_item(1, cache.get_item(1))
        assert cache.get_item(1).has_thumbnails

    def test_remove_item(self, cache):
        cache.add(1, "x", b"x")
        assert cache.remove_item(1)
        assert not cache.remove_item(1)
        assert cache.try_get(1, "x") is None

    def test_clear(self, cache):
        cache.add(1, "x", b"x")
        cache.clear()
        assert len(cache) == 0
        assert cache.thumbnail_count() == 0

    def test_backend_entries(self):
        bif = BifItemCache(True, bif_path="/tmp/index-sd.bif")
        assert bif.interval == 0 and bif.thumbnails == {}
        ffmpeg = FfmpegItemCache(True, file_path="/media/a.mkv", duration=60000)
        assert ffmpeg.duration == 60000
        assert BifItemCache(False).thumbnails is not BifItemCache(False).thumbnails


class TestConcurrency:
    def test_parallel_adds_and_lookups(self):
        # rank high enough that nothing is evicted while the threads run
        cache = AgingCache(max_cache=100_000, max_tick=20)
        cache.add_item(1, MediaItemCache(True))
        barrier = threading.Barrier(4, timeout=5)
        errors = []

        def _worker(worker):
            barrier.wait()
            try:
                for i in range(250):
                    key = (worker, i)
                    cache.add(1, key, b"x")
                    assert cache.try_get(1, key) == b"x"
                    cache.try_get(1, (worker, 0))
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=_worker, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)

        assert errors == []
        assert cache.thumbnail_count() == 4 * 250
        assert 1 in cache
