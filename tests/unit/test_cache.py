"""Unit tests for response caching."""

import threading
import time

import pytest

from helmchecker.providers.cache import (
    ENTRY_OVERHEAD,
    CachedProvider,
    CacheJanitor,
    MemoryCache,
    estimate_size,
    generate_cache_key,
)
from helmchecker.providers.exceptions import (
    CacheOperationError,
    ContextCancelledError,
    ProviderUnavailableError,
)
from helmchecker.providers.models import (
    AnalysisContext,
    AnalysisType,
    HelmChartInfo,
    Request,
    RequestOptions,
    Response,
    TokenUsage,
)


def make_response(index: int, content_size: int = 69) -> Response:
    """Response whose estimated size is 200 bytes with the default content size."""
    return Response(id=f"r{index}", content="x" * content_size, provider="p")


# =============================================================================
# Cache Key Tests
# =============================================================================


class TestGenerateCacheKey:
    """Tests for cache key derivation."""

    def test_ignores_id_and_metadata(self):
        """Test that id, metadata and options do not affect the key."""
        a = Request(query="Check nginx", metadata={"trace": "1"}, id="one")
        b = Request(
            query="Check nginx",
            metadata={"trace": "2"},
            id="two",
            options=RequestOptions(use_cache=False, timeout=5),
        )
        assert generate_cache_key(a) == generate_cache_key(b)

    def test_includes_request_fields(self):
        """Test that each keyed field changes the key."""
        base = Request(query="Check nginx")
        variants = [
            Request(query="Check redis"),
            Request(query="Check nginx", type=AnalysisType.RISK_ASSESSMENT),
            Request(query="Check nginx", max_tokens=100),
            Request(query="Check nginx", temperature=0.7),
            Request(
                query="Check nginx",
                context=AnalysisContext(helm_charts=[HelmChartInfo(name="nginx", version="1.0")]),
            ),
        ]
        keys = {generate_cache_key(base)} | {generate_cache_key(v) for v in variants}
        assert len(keys) == len(variants) + 1

    def test_equal_contexts_share_key(self):
        """Test that structurally equal contexts produce the same key."""
        ctx_a = AnalysisContext(current_state={"b": 1, "a": 2})
        ctx_b = AnalysisContext(current_state={"a": 2, "b": 1})
        assert generate_cache_key(Request(query="q", context=ctx_a)) == generate_cache_key(
            Request(query="q", context=ctx_b)
        )

    def test_key_is_sha256_hex(self):
        key = generate_cache_key(Request(query="q"))
        assert len(key) == 64
        int(key, 16)


class TestEstimateSize:
    """Tests for response size estimation."""

    def test_counts_fields_and_overhead(self):
        response = Response(id="ab", content="hello", provider="p", metadata={"k": "vv"})
        assert estimate_size(response) == 2 + 5 + 1 + 3 + ENTRY_OVERHEAD

    def test_unserializable_structured_data(self):
        """Test that unserializable structured data is a cache error."""
        response = Response(id="a", content="", provider="p", structured_data=object())
        with pytest.raises(CacheOperationError):
            estimate_size(response)


# =============================================================================
# MemoryCache Tests
# =============================================================================


class TestMemoryCache:
    """Tests for MemoryCache."""

    @pytest.fixture
    def cache(self, clock):
        """Create a 1024-byte cache on a manual clock."""
        return MemoryCache(max_size=1024, clock=clock)

    def test_set_then_get(self, cache):
        """Test that a stored response comes back marked as cached."""
        response = make_response(1)
        cache.set("k", response, ttl=60)

        cached = cache.get("k")
        assert cached is not None
        assert cached.content == response.content
        assert cached.cached is True
        assert response.cached is False

    def test_get_returns_copy(self, cache):
        """Test that callers cannot mutate the stored entry."""
        cache.set("k", make_response(1), ttl=60)
        first = cache.get("k")
        first.metadata["changed"] = "yes"
        first.tokens_used.prompt_tokens = 999

        second = cache.get("k")
        assert "changed" not in second.metadata
        assert second.tokens_used.prompt_tokens == 0

    def test_structured_data_is_copied(self, cache):
        """Test that nested structured data is not shared with callers."""
        original = Response(
            id="a", content="{}", provider="p", structured_data={"charts": [{"name": "nginx"}]}
        )
        cache.set("k", original, ttl=60)
        original.structured_data["charts"].append({"name": "redis"})

        first = cache.get("k")
        first.structured_data["charts"][0]["name"] = "changed"

        second = cache.get("k")
        assert second.structured_data == {"charts": [{"name": "nginx"}]}

    def test_miss(self, cache):
        assert cache.get("missing") is None
        assert cache.stats().misses == 1

    def test_ttl_expiry(self, cache, clock):
        """Test that entries expire once their TTL has passed."""
        cache.set("k", make_response(1), ttl=10)
        clock.advance(9.9)
        assert cache.get("k") is not None

        clock.advance(0.1)
        assert cache.get("k") is None
        assert cache.count() == 0
        assert cache.size() == 0

    def test_reads_do_not_extend_ttl(self, cache, clock):
        """Test that TTL is measured from the time of set."""
        cache.set("k", make_response(1), ttl=10)
        for _ in range(5):
            clock.advance(1.9)
            assert cache.get("k") is not None
        clock.advance(1.0)
        assert cache.get("k") is None

    def test_real_clock_expiry(self):
        """Test expiry against the real monotonic clock."""
        cache = MemoryCache(max_size=1024)
        cache.set("k", make_response(1), ttl=0.05)
        assert cache.get("k") is not None
        time.sleep(0.08)
        assert cache.get("k") is None

    def test_sixth_entry_evicts_oldest(self, cache):
        """Test the 1024-byte budget with six 200-byte entries."""
        for i in range(5):
            cache.set(f"k{i}", make_response(i), ttl=60)
        assert cache.size() == 1000
        assert cache.count() == 5

        cache.set("k5", make_response(5), ttl=60)

        assert cache.get("k5") is not None
        assert cache.get("k0") is None
        assert cache.count() == 5
        assert cache.size() <= 1024
        assert cache.stats().evictions == 1

    def test_eviction_follows_access_order(self, cache):
        """Test that reading an entry protects it from eviction."""
        for i in range(5):
            cache.set(f"k{i}", make_response(i), ttl=60)

        assert cache.get("k0") is not None
        cache.set("k5", make_response(5), ttl=60)

        assert cache.get("k0") is not None
        assert cache.get("k1") is None
        assert cache.keys()[-1] == "k0"

    def test_size_never_exceeds_budget(self, cache):
        """Test that size stays bounded under many inserts of mixed sizes."""
        for i in range(50):
            cache.set(f"k{i}", make_response(i, content_size=(i * 37) % 300), ttl=60)
            assert cache.size() <= cache.max_size

    def test_overwrite_replaces_entry(self, cache):
        """Test that setting an existing key does not double count."""
        cache.set("k", make_response(1), ttl=60)
        cache.set("k", make_response(1, content_size=10), ttl=60)
        assert cache.count() == 1
        assert cache.size() == estimate_size(make_response(1, content_size=10))

    def test_oversize_entry_rejected(self, cache):
        """Test that an entry larger than the whole cache is refused."""
        cache.set("small", make_response(1), ttl=60)
        with pytest.raises(CacheOperationError):
            cache.set("big", make_response(2, content_size=2000), ttl=60)
        assert cache.get("big") is None
        assert cache.get("small") is not None

    def test_oversize_overwrite_drops_old_value(self, cache):
        """Test that a failed overwrite does not leave a stale value."""
        cache.set("k", make_response(1), ttl=60)
        with pytest.raises(CacheOperationError):
            cache.set("k", make_response(1, content_size=2000), ttl=60)
        assert cache.get("k") is None

    def test_non_positive_ttl_rejected(self, cache):
        with pytest.raises(CacheOperationError):
            cache.set("k", make_response(1), ttl=0)

    def test_invalid_max_size(self):
        with pytest.raises(CacheOperationError):
            MemoryCache(max_size=0)

    def test_delete_and_clear(self, cache):
        """Test explicit removal."""
        cache.set("a", make_response(1), ttl=60)
        cache.set("b", make_response(2), ttl=60)

        assert cache.delete("a") is True
        assert cache.delete("a") is False
        assert cache.count() == 1

        cache.clear()
        assert cache.count() == 0
        assert cache.size() == 0

    def test_cleanup_expired(self, cache, clock):
        """Test that the sweep removes only expired entries."""
        cache.set("short", make_response(1), ttl=5)
        cache.set("long", make_response(2), ttl=50)
        clock.advance(10)

        assert cache.cleanup_expired() == 1
        assert cache.keys() == ["long"]

    def test_stats(self, cache):
        """Test hit/miss accounting."""
        cache.set("k", make_response(1), ttl=60)
        cache.get("k")
        cache.get("k")
        cache.get("missing")

        stats = cache.stats()
        assert stats.hits == 2
        assert stats.misses == 1
        assert stats.hit_rate == pytest.approx(200 / 3)
        assert stats.count == 1
        assert stats.average_item_size == 200
        assert stats.max_size == 1024

    def test_concurrent_access(self):
        """Test that parallel writers keep the size accounting consistent."""
        cache = MemoryCache(max_size=4096)

        def writer(offset: int) -> None:
            for i in range(100):
                cache.set(f"{offset}-{i}", make_response(offset), ttl=60)
                cache.get(f"{offset}-{i // 2}")

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert cache.size() <= 4096
        assert cache.size() == cache.count() * 200


class TestCacheJanitor:
    """Tests for the background sweeper."""

    def test_sweeps_expired_entries(self):
        """Test that the janitor removes entries without any reads."""
        cache = MemoryCache(max_size=1024)
        cache.set("k", make_response(1), ttl=0.01)
        janitor = CacheJanitor(cache, interval=0.02)
        janitor.start()
        try:
            deadline = time.monotonic() + 2.0
            while cache.count() and time.monotonic() < deadline:
                time.sleep(0.01)
            assert cache.count() == 0
        finally:
            janitor.stop()
        assert janitor.running is False

    def test_invalid_interval(self):
        with pytest.raises(ValueError):
            CacheJanitor(MemoryCache(), interval=0)


# =============================================================================
# CachedProvider Tests
# =============================================================================


class TestCachedProvider:
    """Tests for the cache-aside decorator."""

    @pytest.fixture
    def inner(self, make_provider):
        return make_provider(name="openai")

    @pytest.fixture
    def cached(self, inner):
        return CachedProvider(inner, MemoryCache(max_size=1024 * 1024), default_ttl=60)

    def test_name(self, cached):
        assert cached.name == "openai-cached"

    @pytest.mark.asyncio
    async def test_identical_requests_hit_cache(self, inner, cached):
        """Test that two identical requests reach the backend once."""
        first = await cached.analyze(Request(query="Which charts are outdated?"))
        second = await cached.analyze(Request(query="Which charts are outdated?"))

        assert inner.calls == 1
        assert first.content == second.content == "ok"
        assert first.cached is False
        assert second.cached is True
        assert inner.get_metrics().cached_responses == 1

    @pytest.mark.asyncio
    async def test_use_cache_false_bypasses(self, inner, cached):
        """Test that opting out always reaches the backend."""
        request = Request(query="q", options=RequestOptions(use_cache=False))
        await cached.analyze(request)
        await cached.analyze(request)
        assert inner.calls == 2
        assert cached.cache.count() == 0

    @pytest.mark.asyncio
    async def test_request_ttl_overrides_default(self, inner, clock):
        """Test that options.cache_ttl sets the entry lifetime."""
        cached = CachedProvider(inner, MemoryCache(max_size=4096, clock=clock), default_ttl=3600)
        request = Request(query="q", options=RequestOptions(cache_ttl=5))

        await cached.analyze(request)
        clock.advance(6)
        await cached.analyze(request)
        assert inner.calls == 2

    @pytest.mark.asyncio
    async def test_errors_not_cached(self, make_provider):
        """Test that failures propagate and leave the cache empty."""
        inner = make_provider(outcomes=[ProviderUnavailableError("fake", "down")])
        cached = CachedProvider(inner, MemoryCache(max_size=4096))

        with pytest.raises(ProviderUnavailableError):
            await cached.analyze(Request(query="q"))
        assert cached.cache.count() == 0

        response = await cached.analyze(Request(query="q"))
        assert response.content == "ok"

    @pytest.mark.asyncio
    async def test_oversize_response_still_returned(self, make_provider):
        """Test that a cache failure never fails the request."""
        inner = make_provider(content="y" * 5000)
        cached = CachedProvider(inner, MemoryCache(max_size=1024))

        response = await cached.analyze(Request(query="q"))
        assert response.content == "y" * 5000
        assert cached.cache.count() == 0

    @pytest.mark.asyncio
    async def test_stream_bypasses_cache(self, inner, cached):
        """Test that streams always reach the backend."""
        request = Request(query="q", options=RequestOptions(stream=True))
        for _ in range(2):
            stream = await cached.analyze_stream(request)
            chunks = [chunk async for chunk in stream]
            assert chunks[-1].done
        assert inner.calls == 2
        assert cached.cache.count() == 0

    @pytest.mark.asyncio
    async def test_close_stops_janitor(self, inner):
        """Test that close stops the sweeper and closes the inner provider."""
        cache = MemoryCache()
        janitor = CacheJanitor(cache, interval=10)
        janitor.start()
        cached = CachedProvider(inner, cache, janitor=janitor)

        await cached.close()
        await cached.close()

        assert inner.closed is True
        assert janitor.running is False

    @pytest.mark.asyncio
    async def test_closed_refuses_cached_answers(self, inner, cached):
        """Test that a closed decorator stops serving even cache hits."""
        await cached.analyze(Request(query="q"))
        await cached.close()

        with pytest.raises(ContextCancelledError):
            await cached.analyze(Request(query="q"))
        with pytest.raises(ContextCancelledError):
            await cached.analyze_stream(Request(query="q"))
        assert inner.calls == 1

    @pytest.mark.asyncio
    async def test_metrics_delegate(self, inner, cached):
        assert cached.get_metrics() is inner.get_metrics()

    @pytest.mark.asyncio
    async def test_tokens_copied(self, make_provider):
        """Test that cached token usage is independent of the original."""
        response = Response(
            id="x", content="c", provider="fake", tokens_used=TokenUsage(prompt_tokens=3)
        )
        inner = make_provider(outcomes=[response])
        cached = CachedProvider(inner, MemoryCache(max_size=4096))

        await cached.analyze(Request(query="q"))
        response.tokens_used.prompt_tokens = 100
        hit = await cached.analyze(Request(query="q"))
        assert hit.tokens_used.prompt_tokens == 3
