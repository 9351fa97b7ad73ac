"""Tests for the thread-safe metadata cache."""

from __future__ import annotations

import concurrent.futures
import threading

import pytest

from mapcore.db import cache


def test_get_or_load_populates_once() -> None:
    """Test that the loader only runs on a miss."""
    metadata_cache: cache.MetadataCache[str] = cache.MetadataCache()
    calls: list[str] = []

    def loader() -> str:
        calls.append("load")
        return "meta"

    assert metadata_cache.get_or_load("a", loader) == "meta"
    assert metadata_cache.get_or_load("a", loader) == "meta"
    assert calls == ["load"]
    assert "a" in metadata_cache
    assert len(metadata_cache) == 1


def test_loader_errors_are_not_cached() -> None:
    """Test that a failing loader leaves no entry behind."""
    metadata_cache: cache.MetadataCache[str] = cache.MetadataCache()

    def broken() -> str:
        raise OSError("disk gone")

    with pytest.raises(OSError):
        metadata_cache.get_or_load("a", broken)
    assert "a" not in metadata_cache


def test_invalidate_and_clear() -> None:
    """Test manual invalidation of one entry and of the whole cache."""
    metadata_cache: cache.MetadataCache[int] = cache.MetadataCache()
    metadata_cache.put("a", 1)
    metadata_cache.put("b", 2)

    assert metadata_cache.invalidate("a") is True
    assert metadata_cache.invalidate("a") is False
    assert metadata_cache.get("a") is None
    assert metadata_cache.get("b") == 2

    metadata_cache.clear()
    assert len(metadata_cache) == 0


def test_stats_count_hits_and_misses() -> None:
    """Test the usage counters and their string form."""
    metadata_cache: cache.MetadataCache[int] = cache.MetadataCache()
    metadata_cache.get("missing")
    metadata_cache.put("a", 1)
    metadata_cache.get("a")
    metadata_cache.get("a")

    stats = metadata_cache.stats()
    assert (stats.entries, stats.hits, stats.misses) == (1, 2, 1)
    assert str(stats) == "Cache: 1 entries (2 hits, 1 misses)"


def test_concurrent_loads_agree_on_first_value() -> None:
    """Test that concurrent loaders for one key all see the same object."""
    metadata_cache: cache.MetadataCache[object] = cache.MetadataCache()
    barrier = threading.Barrier(8)

    def load() -> object:
        barrier.wait()
        return metadata_cache.get_or_load("layer", object)

    with concurrent.futures.ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(lambda _: load(), range(8)))

    assert all(result is results[0] for result in results)
    assert len(metadata_cache) == 1


def test_concurrent_distinct_keys() -> None:
    """Test that many threads can fill and invalidate different keys."""
    metadata_cache: cache.MetadataCache[int] = cache.MetadataCache()

    def work(index: int) -> None:
        key = f"layer-{index}"
        metadata_cache.get_or_load(key, lambda: index)
        if index % 2:
            metadata_cache.invalidate(key)

    with concurrent.futures.ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(work, range(100)))

    assert len(metadata_cache) == 50
    assert metadata_cache.get("layer-4") == 4
