"""
Response caching for HelmChecker providers.

MemoryCache is a bounded, in-process LRU cache with absolute TTL expiry.
CachedProvider applies it cache-aside around any Provider, and CacheJanitor
sweeps expired entries on a background thread.
"""

import copy
import dataclasses
import hashlib
import json
import logging
import threading
import time
from collections import OrderedDict
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any

from helmchecker.providers.base import Provider
from helmchecker.providers.exceptions import CacheOperationError, ContextCancelledError
from helmchecker.providers.metrics import UsageMetrics
from helmchecker.providers.models import Request, Response, StreamChunk

logger = logging.getLogger(__name__)

ENTRY_OVERHEAD = 128  # bytes per entry, approximate bookkeeping cost
DEFAULT_MAX_SIZE = 100 * 1024 * 1024
DEFAULT_TTL = 3600.0


@dataclass
class CacheEntry:
    """A stored response and its bookkeeping."""

    key: str
    response: Response
    size: int
    expires_at: float  # monotonic clock


@dataclass
class CacheStats:
    """Cache statistics."""

    hits: int = 0
    misses: int = 0
    evictions: int = 0
    size: int = 0
    count: int = 0
    max_size: int = 0

    @property
    def hit_rate(self) -> float:
        """Hits as a percentage of lookups."""
        lookups = self.hits + self.misses
        return self.hits / lookups * 100 if lookups else 0.0

    @property
    def average_item_size(self) -> float:
        return self.size / self.count if self.count else 0.0


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _canonical_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), default=_json_default)


def generate_cache_key(request: Request) -> str:
    """
    Derive the cache key for a request.

    Only the query, analysis type, max_tokens, temperature and context take
    part; the request id, metadata and options do not.

    Args:
        request: The request to key.

    Returns:
        Hex-encoded SHA-256 digest of the canonical request form.
    """
    payload = {
        "query": request.query,
        "type": request.type.value,
        "max_tokens": request.max_tokens,
        "temperature": request.temperature,
        "context": dataclasses.asdict(request.context) if request.context else None,
    }
    return hashlib.sha256(_canonical_json(payload).encode("utf-8")).hexdigest()


def estimate_size(response: Response) -> int:
    """
    Approximate the memory footprint of a response in bytes.

    Raises:
        CacheOperationError: If the structured data cannot be serialized.
    """
    size = len(response.id) + len(response.content) + len(response.provider)
    for key, value in response.metadata.items():
        size += len(key) + len(value)
    if response.structured_data is not None:
        try:
            size += len(_canonical_json(response.structured_data))
        except (TypeError, ValueError) as e:
            raise CacheOperationError("set", f"structured data is not serializable: {e}") from e
    return size + ENTRY_OVERHEAD


def _copy_response(response: Response, cached: bool) -> Response:
    return dataclasses.replace(
        response,
        tokens_used=dataclasses.replace(response.tokens_used),
        metadata=dict(response.metadata),
        structured_data=copy.deepcopy(response.structured_data),
        cached=cached,
    )


class MemoryCache:
    """
    Bounded LRU cache with absolute TTL.

    All operations are serialized under a single lock, so the cache may be
    shared between threads and event-loop tasks. Expiry is checked lazily
    on get and eagerly by cleanup_expired(); reading an entry never extends
    its lifetime.
    """

    def __init__(
        self,
        max_size: int = DEFAULT_MAX_SIZE,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the cache.

        Args:
            max_size: Byte budget for all entries together.
            clock: Monotonic time source, in seconds.
        """
        if max_size <= 0:
            raise CacheOperationError("init", f"max size must be positive, got {max_size}")
        self.max_size = max_size
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._size = 0
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._lock = threading.Lock()

    def get(self, key: str) -> Response | None:
        """
        Look up a response.

        Returns:
            A copy of the stored response with ``cached`` set, or None on a
            miss or an expired entry.
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._misses += 1
                return None

            if self._clock() >= entry.expires_at:
                self._remove(key)
                self._misses += 1
                logger.debug(f"Cache entry expired: {key[:12]}")
                return None

            self._entries.move_to_end(key)
            self._hits += 1
            return _copy_response(entry.response, cached=True)

    def set(self, key: str, response: Response, ttl: float) -> None:
        """
        Store a response for ``ttl`` seconds, evicting LRU entries to fit.

        Raises:
            CacheOperationError: If the entry alone is larger than the cache
                or cannot be sized. Nothing is stored in that case.
        """
        if ttl <= 0:
            raise CacheOperationError("set", f"ttl must be positive, got {ttl}")

        size = estimate_size(response)
        stored = _copy_response(response, cached=False)

        with self._lock:
            if key in self._entries:
                self._remove(key)

            if size > self.max_size:
                raise CacheOperationError(
                    "set", f"entry size {size} exceeds cache capacity {self.max_size}"
                )

            while self._entries and self._size + size > self.max_size:
                oldest, _ = next(iter(self._entries.items()))
                self._remove(oldest)
                self._evictions += 1
                logger.debug(f"Evicted cache entry: {oldest[:12]}")

            self._entries[key] = CacheEntry(
                key=key,
                response=stored,
                size=size,
                expires_at=self._clock() + ttl,
            )
            self._size += size

    def delete(self, key: str) -> bool:
        """Remove one entry. Returns True if it existed."""
        with self._lock:
            if key not in self._entries:
                return False
            self._remove(key)
            return True

    def clear(self) -> None:
        """Remove every entry. Hit/miss counters are kept."""
        with self._lock:
            self._entries.clear()
            self._size = 0

    def cleanup_expired(self) -> int:
        """
        Remove every expired entry.

        Returns:
            Number of entries removed.
        """
        with self._lock:
            now = self._clock()
            expired = [k for k, entry in self._entries.items() if now >= entry.expires_at]
            for key in expired:
                self._remove(key)

        if expired:
            logger.debug(f"Removed {len(expired)} expired cache entries")
        return len(expired)

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                hits=self._hits,
                misses=self._misses,
                evictions=self._evictions,
                size=self._size,
                count=len(self._entries),
                max_size=self.max_size,
            )

    def size(self) -> int:
        """Current total size in bytes."""
        with self._lock:
            return self._size

    def count(self) -> int:
        """Current number of entries."""
        with self._lock:
            return len(self._entries)

    def keys(self) -> list[str]:
        """Keys from least to most recently used."""
        with self._lock:
            return list(self._entries)

    def _remove(self, key: str) -> None:
        """Caller must hold _lock."""
        entry = self._entries.pop(key)
        self._size -= entry.size


class CacheJanitor:
    """Background thread that periodically sweeps expired cache entries."""

    def __init__(self, cache: MemoryCache, interval: float = 60.0):
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        self.cache = cache
        self.interval = interval
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(
            target=self._run, name="helmchecker-cache-janitor", daemon=True
        )
        self._thread.start()
        logger.debug(f"Cache janitor started (interval {self.interval}s)")

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self) -> None:
        while not self._stop_event.wait(self.interval):
            self.cache.cleanup_expired()


class CachedProvider(Provider):
    """
    Cache-aside decorator around a Provider.

    Requests with ``options.use_cache`` are answered from the cache when
    possible. Streamed requests always go to the wrapped provider and are
    never cached.
    """

    def __init__(
        self,
        provider: Provider,
        cache: MemoryCache,
        default_ttl: float = DEFAULT_TTL,
        janitor: CacheJanitor | None = None,
    ):
        """
        Initialize the decorator.

        Args:
            provider: The provider to wrap.
            cache: Cache to read and populate.
            default_ttl: TTL in seconds when the request sets none.
            janitor: Optional sweeper owned by this decorator; stopped on close.
        """
        self.provider = provider
        self.cache = cache
        self.default_ttl = default_ttl
        self.janitor = janitor
        self._closed = False

    @property
    def name(self) -> str:
        return f"{self.provider.name}-cached"

    async def analyze(self, request: Request) -> Response:
        if self._closed:
            raise ContextCancelledError(self.name)
        options = request.options
        if not options.use_cache or options.stream:
            return await self.provider.analyze(request)

        key = generate_cache_key(request)
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug(f"Cache hit for {self.provider.name}: {key[:12]}")
            self.provider.get_metrics().record_cache_hit(self.provider.name)
            return cached

        logger.debug(f"Cache miss for {self.provider.name}: {key[:12]}")
        response = await self.provider.analyze(request)

        ttl = options.cache_ttl if options.cache_ttl else self.default_ttl
        try:
            self.cache.set(key, response, ttl)
        except CacheOperationError as e:
            logger.warning(f"Could not cache response from {self.provider.name}: {e}")

        return response

    async def analyze_stream(self, request: Request) -> AsyncIterator[StreamChunk]:
        if self._closed:
            raise ContextCancelledError(self.name)
        return await self.provider.analyze_stream(request)

    async def validate(self) -> None:
        await self.provider.validate()

    def get_metrics(self) -> UsageMetrics:
        return self.provider.get_metrics()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self.janitor is not None:
            self.janitor.stop()
        await self.provider.close()
