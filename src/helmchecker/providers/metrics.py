"""
Usage metrics for HelmChecker providers.

Tracks request counts, token usage, cost and latency, both in aggregate and
per provider name.
"""

import copy
import logging
import threading
import time
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime

from helmchecker.providers.models import AnalysisType, TokenUsage

logger = logging.getLogger(__name__)


@dataclass
class ProviderMetrics:
    """Metrics for a single provider."""

    name: str
    requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    cached_responses: int = 0
    tokens_used: int = 0
    total_cost: float = 0.0
    average_latency: float = 0.0  # seconds
    last_used: datetime | None = None

    def add_latency(self, latency: float) -> None:
        """Fold a latency sample in; call before bumping successful_requests."""
        n = self.successful_requests
        self.average_latency = (self.average_latency * n + latency) / (n + 1)


@dataclass(frozen=True)
class MetricsSnapshot:
    """Immutable point-in-time copy of UsageMetrics."""

    total_requests: int
    successful_requests: int
    failed_requests: int
    cached_responses: int
    total_tokens_used: int
    total_cost: float
    average_latency: float
    success_rate: float
    cache_hit_rate: float
    provider_metrics: dict[str, ProviderMetrics]
    requests_by_type: dict[str, int]
    errors_by_type: dict[str, int]
    uptime: float
    last_request_time: datetime | None = None


def _rate(part: int, whole: int) -> float:
    if whole == 0:
        return 0.0
    return part / whole * 100


class UsageMetrics:
    """
    Concurrency-safe usage accumulator.

    Every mutation happens under one short-held lock; readers get copies.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._reset_locked()

    def _reset_locked(self) -> None:
        self.total_requests = 0
        self.successful_requests = 0
        self.failed_requests = 0
        self.cached_responses = 0
        self.total_tokens_used = 0
        self.total_cost = 0.0
        self.average_latency = 0.0
        self.provider_metrics: dict[str, ProviderMetrics] = {}
        self.requests_by_type: defaultdict[str, int] = defaultdict(int)
        self.errors_by_type: defaultdict[str, int] = defaultdict(int)
        self.start_time = time.monotonic()
        self.last_request_time: datetime | None = None

    def _provider(self, name: str) -> ProviderMetrics:
        """Get or create provider metrics. Caller must hold _lock."""
        pm = self.provider_metrics.get(name)
        if pm is None:
            pm = ProviderMetrics(name=name)
            self.provider_metrics[name] = pm
        return pm

    def record_success(
        self,
        provider: str,
        tokens: TokenUsage,
        latency: float | None = None,
        analysis_type: AnalysisType | str | None = None,
    ) -> None:
        """
        Record a successful attempt.

        Args:
            provider: Name of the provider that served the request.
            tokens: Token usage reported for the call.
            latency: Call duration in seconds, if measured.
            analysis_type: Analysis type of the request, for the histogram.
        """
        now = datetime.now()
        with self._lock:
            pm = self._provider(provider)
            if latency is not None:
                n = self.successful_requests
                self.average_latency = (self.average_latency * n + latency) / (n + 1)
                pm.add_latency(latency)

            self.total_requests += 1
            self.successful_requests += 1
            self.total_tokens_used += tokens.total_tokens
            self.total_cost += tokens.estimated_cost
            self.last_request_time = now

            pm.requests += 1
            pm.successful_requests += 1
            pm.tokens_used += tokens.total_tokens
            pm.total_cost += tokens.estimated_cost
            pm.last_used = now

            if analysis_type:
                self.requests_by_type[_type_label(analysis_type)] += 1

    def record_failure(
        self,
        provider: str,
        error_type: str,
        analysis_type: AnalysisType | str | None = None,
    ) -> None:
        """
        Record a failed attempt.

        Args:
            provider: Name of the provider that failed.
            error_type: Classification label (see classify_error).
            analysis_type: Analysis type of the request, for the histogram.
        """
        now = datetime.now()
        with self._lock:
            self.total_requests += 1
            self.failed_requests += 1
            self.last_request_time = now

            pm = self._provider(provider)
            pm.requests += 1
            pm.failed_requests += 1
            pm.last_used = now

            self.errors_by_type[error_type] += 1
            if analysis_type:
                self.requests_by_type[_type_label(analysis_type)] += 1

    def record_cache_hit(self, provider: str | None = None) -> None:
        """Record a response served from cache without a backend call."""
        with self._lock:
            self.cached_responses += 1
            if provider:
                self._provider(provider).cached_responses += 1

    def success_rate(self) -> float:
        """Successful requests as a percentage of all recorded requests."""
        with self._lock:
            return _rate(self.successful_requests, self.total_requests)

    def cache_hit_rate(self) -> float:
        """Cached responses as a percentage of all served lookups."""
        with self._lock:
            return _rate(self.cached_responses, self.cached_responses + self.total_requests)

    get_success_rate = success_rate
    get_cache_hit_rate = cache_hit_rate

    def get_provider_metrics(self, provider: str) -> ProviderMetrics | None:
        """Return a copy of one provider's metrics, or None if unseen."""
        with self._lock:
            pm = self.provider_metrics.get(provider)
            return copy.copy(pm) if pm else None

    def get_all_provider_metrics(self) -> dict[str, ProviderMetrics]:
        """Return copies of every provider's metrics."""
        with self._lock:
            return {name: copy.copy(pm) for name, pm in self.provider_metrics.items()}

    def merge(self, other: "UsageMetrics | None") -> None:
        """
        Fold another instance's counters into this one.

        Latency averages are combined weighted by successful request counts.
        """
        if other is None or other is self:
            return

        # Copy under the other lock first so the two locks are never nested
        with other._lock:
            theirs = {
                "total": other.total_requests,
                "success": other.successful_requests,
                "failed": other.failed_requests,
                "cached": other.cached_responses,
                "tokens": other.total_tokens_used,
                "cost": other.total_cost,
                "latency": other.average_latency,
                "providers": {n: copy.copy(pm) for n, pm in other.provider_metrics.items()},
                "by_type": dict(other.requests_by_type),
                "errors": dict(other.errors_by_type),
                "last": other.last_request_time,
            }

        with self._lock:
            self.average_latency = _weighted(
                self.average_latency, self.successful_requests, theirs["latency"], theirs["success"]
            )
            self.total_requests += theirs["total"]
            self.successful_requests += theirs["success"]
            self.failed_requests += theirs["failed"]
            self.cached_responses += theirs["cached"]
            self.total_tokens_used += theirs["tokens"]
            self.total_cost += theirs["cost"]

            for name, other_pm in theirs["providers"].items():
                pm = self._provider(name)
                pm.average_latency = _weighted(
                    pm.average_latency,
                    pm.successful_requests,
                    other_pm.average_latency,
                    other_pm.successful_requests,
                )
                pm.requests += other_pm.requests
                pm.successful_requests += other_pm.successful_requests
                pm.failed_requests += other_pm.failed_requests
                pm.cached_responses += other_pm.cached_responses
                pm.tokens_used += other_pm.tokens_used
                pm.total_cost += other_pm.total_cost
                if other_pm.last_used and (pm.last_used is None or other_pm.last_used > pm.last_used):
                    pm.last_used = other_pm.last_used

            for label, count in theirs["by_type"].items():
                self.requests_by_type[label] += count
            for label, count in theirs["errors"].items():
                self.errors_by_type[label] += count

            if theirs["last"] and (
                self.last_request_time is None or theirs["last"] > self.last_request_time
            ):
                self.last_request_time = theirs["last"]

    def reset(self) -> None:
        """Reset all counters (operator action)."""
        with self._lock:
            self._reset_locked()
        logger.debug("Usage metrics reset")

    def snapshot(self) -> MetricsSnapshot:
        """Create an immutable point-in-time copy of the metrics."""
        with self._lock:
            return MetricsSnapshot(
                total_requests=self.total_requests,
                successful_requests=self.successful_requests,
                failed_requests=self.failed_requests,
                cached_responses=self.cached_responses,
                total_tokens_used=self.total_tokens_used,
                total_cost=self.total_cost,
                average_latency=self.average_latency,
                success_rate=_rate(self.successful_requests, self.total_requests),
                cache_hit_rate=_rate(
                    self.cached_responses, self.cached_responses + self.total_requests
                ),
                provider_metrics={n: copy.copy(pm) for n, pm in self.provider_metrics.items()},
                requests_by_type=dict(self.requests_by_type),
                errors_by_type=dict(self.errors_by_type),
                uptime=time.monotonic() - self.start_time,
                last_request_time=self.last_request_time,
            )


def _type_label(analysis_type: AnalysisType | str) -> str:
    if isinstance(analysis_type, AnalysisType):
        return analysis_type.value
    return str(analysis_type)


def _weighted(avg_a: float, n_a: int, avg_b: float, n_b: int) -> float:
    if n_a + n_b == 0:
        return 0.0
    return (avg_a * n_a + avg_b * n_b) / (n_a + n_b)
