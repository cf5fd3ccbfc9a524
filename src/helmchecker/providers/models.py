"""
Provider data models for HelmChecker.

Defines the request/response values exchanged between the analysis layer
and AI providers.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class AnalysisType(str, Enum):
    """Kind of analysis requested from a provider."""

    PATTERN_DETECTION = "pattern_detection"
    COMPATIBILITY = "compatibility"
    RISK_ASSESSMENT = "risk_assessment"
    RECOMMENDATION = "recommendation"
    IMPACT = "impact"
    STRATEGY = "strategy"
    CONFLICT = "conflict"
    GENERAL = "general"


class ResponseFormat(str, Enum):
    """Desired format of the provider's answer."""

    TEXT = "text"
    JSON = "json"
    MARKDOWN = "markdown"


@dataclass
class RepositoryInfo:
    """Repository metadata."""

    owner: str
    name: str
    url: str = ""
    branch: str = ""
    commit_sha: str = ""
    last_update: datetime | None = None


@dataclass
class PatternInfo:
    """A detected GitOps pattern."""

    type: str  # "flux" | "argocd" | "kustomize" | "kubernetes"
    version: str = ""
    path: str = ""
    confidence: float = 0.0
    resources: list[str] = field(default_factory=list)


@dataclass
class HelmChartInfo:
    """Helm chart inventory entry."""

    name: str
    version: str
    app_version: str = ""
    path: str = ""
    values_files: list[str] = field(default_factory=list)
    dependencies: list[str] = field(default_factory=list)
    deprecated: bool = False
    latest_version: str = ""
    breaking_changes: list[str] = field(default_factory=list)

    @property
    def is_outdated(self) -> bool:
        """True when a newer version than the deployed one is known."""
        return bool(self.latest_version) and self.latest_version != self.version


@dataclass
class CommitInfo:
    """A Git commit."""

    sha: str
    author: str = ""
    date: datetime | None = None
    message: str = ""
    files_changed: list[str] = field(default_factory=list)


@dataclass
class AnalysisContext:
    """Context handed to a provider alongside the query."""

    repository: RepositoryInfo | None = None
    detected_patterns: list[PatternInfo] = field(default_factory=list)
    helm_charts: list[HelmChartInfo] = field(default_factory=list)
    git_history: list[CommitInfo] = field(default_factory=list)
    current_state: dict[str, Any] = field(default_factory=dict)
    target_state: dict[str, Any] = field(default_factory=dict)
    constraints: list[str] = field(default_factory=list)
    additional_context: dict[str, Any] = field(default_factory=dict)


@dataclass
class RequestOptions:
    """Per-request behaviour switches."""

    stream: bool = False
    use_cache: bool = True
    cache_ttl: float | None = None  # seconds
    retry_count: int | None = None
    retry_delay: float | None = None  # seconds
    timeout: float | None = None  # seconds
    response_format: ResponseFormat = ResponseFormat.TEXT
    include_confidence: bool = False
    additional_options: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Request:
    """Analysis request sent to a provider."""

    query: str
    type: AnalysisType = AnalysisType.GENERAL
    context: AnalysisContext | None = None
    max_tokens: int = 0  # 0 = provider default
    temperature: float = 0.0  # 0 = provider default
    options: RequestOptions = field(default_factory=RequestOptions)
    metadata: dict[str, str] = field(default_factory=dict)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)


@dataclass
class TokenUsage:
    """Token consumption of a single call."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    estimated_cost: float = 0.0  # USD

    def __post_init__(self) -> None:
        if self.total_tokens == 0:
            self.total_tokens = self.prompt_tokens + self.completion_tokens

    def add(self, other: "TokenUsage") -> None:
        """Accumulate another usage record into this one."""
        self.prompt_tokens += other.prompt_tokens
        self.completion_tokens += other.completion_tokens
        self.total_tokens += other.total_tokens
        self.estimated_cost += other.estimated_cost


@dataclass
class Response:
    """Provider answer to a Request."""

    id: str
    content: str
    provider: str
    tokens_used: TokenUsage = field(default_factory=TokenUsage)
    structured_data: Any = None
    confidence: float = 0.0
    duration: float = 0.0  # seconds
    cached: bool = False
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class StreamChunk:
    """Single chunk of a streamed response.

    A chunk with ``done`` set or ``error`` set is terminal: the producer
    emits nothing after it.
    """

    content: str = ""
    done: bool = False
    error: Exception | None = None

    @property
    def is_terminal(self) -> bool:
        return self.done or self.error is not None
