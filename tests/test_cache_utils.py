import threading

import pytest

from cache_utils import ContentCache, content_hash
from fakes import artifact
from pipeline_common import ArtifactTooLarge


class TestContentHash:
    def test_ignores_surrounding_whitespace(self):
        assert content_hash("plot(1)\n") == content_hash("  plot(1)")

    def test_distinct_bodies(self):
        assert content_hash("plot(1)") != content_hash("plot(2)")
        assert len(content_hash("x")) == 64


class TestContentCache:
    """Size-bounded LRU behaviour."""

    def test_evicts_least_recently_used(self):
        cache = ContentCache(max_size=100)
        cache.put("a", artifact("a", 40))
        cache.put("b", artifact("b", 40))
        assert cache.get("a") is not None
        cache.put("c", artifact("c", 40))
        assert "b" not in cache
        assert "a" in cache and "c" in cache
        assert cache.total_size == 80

    def test_total_never_exceeds_bound(self):
        cache = ContentCache(max_size=50)
        for i in range(20):
            cache.put(str(i), artifact(str(i), 7 + i % 5))
            assert cache.total_size <= 50
        assert cache.total_size == sum(e.size_bytes for e in cache.entries())

    def test_reinsert_same_key_does_not_double_count(self):
        cache = ContentCache(max_size=100)
        cache.put("a", artifact("a", 30))
        cache.put("a", artifact("a", 30))
        assert len(cache) == 1
        assert cache.total_size == 30

    def test_reinsert_refreshes_recency(self):
        cache = ContentCache(max_size=90)
        cache.put("a", artifact("a", 30))
        cache.put("b", artifact("b", 30))
        cache.put("a", artifact("a", 30))
        cache.put("c", artifact("c", 60))
        assert "b" not in cache
        assert [e.content_hash for e in cache.entries()] == ["a", "c"]

    def test_oversized_artifact_rejected_without_side_effects(self):
        cache = ContentCache(max_size=10)
        cache.put("a", artifact("a", 5))
        with pytest.raises(ArtifactTooLarge) as ei:
            cache.put("big", artifact("big", 11))
        assert ei.value.size_bytes == 11
        assert "a" in cache and "big" not in cache
        assert cache.total_size == 5

    def test_artifact_filling_cache_exactly(self):
        cache = ContentCache(max_size=10)
        cache.put("a", artifact("a", 4))
        cache.put("b", artifact("b", 10))
        assert [e.content_hash for e in cache.entries()] == ["b"]

    def test_miss_returns_none(self):
        assert ContentCache().get("nope") is None

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            ContentCache(max_size=0)

    def test_clear(self):
        cache = ContentCache(max_size=100)
        cache.put("a", artifact("a", 10))
        cache.clear()
        assert len(cache) == 0 and cache.total_size == 0

    def test_concurrent_puts_keep_accounting_consistent(self):
        cache = ContentCache(max_size=1000)

        def worker(n):
            for i in range(200):
                key = f"{n}-{i % 30}"
                cache.put(key, artifact(key, 10 + i % 7))
                cache.get(f"{(n + 1) % 4}-{i % 30}")

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert cache.total_size <= 1000
        assert cache.total_size == sum(e.size_bytes for e in cache.entries())
