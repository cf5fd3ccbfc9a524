"""
Shared adapter for OpenAI-compatible chat-completion backends.

Handles the request path every backend has in common: request validation,
rate limiting, retry, HTTP error mapping, SSE streaming and metrics.
Subclasses supply defaults, credentials and pricing.
"""

import asyncio
import json
import logging
import time
from collections.abc import AsyncGenerator
from typing import Any

import httpx

from helmchecker.config.schema import ProviderConfig, parse_duration
from helmchecker.providers.auth import (
    BearerAuth,
    StaticTokenProvider,
    TokenError,
    TokenProvider,
)
from helmchecker.providers.base import Provider
from helmchecker.providers.cost import count_tokens, estimate_cost
from helmchecker.providers.exceptions import (
    AuthenticationFailedError,
    ContextCancelledError,
    FailureType,
    InvalidRequestError,
    InvalidResponseError,
    ProviderError,
    ProviderNotConfiguredError,
    ProviderTimeoutError,
    ProviderUnavailableError,
    QuotaExceededError,
    RateLimitExceededError,
    TokenLimitExceededError,
    classify_error,
)
from helmchecker.providers.metrics import UsageMetrics
from helmchecker.providers.models import (
    Request,
    RequestOptions,
    Response,
    ResponseFormat,
    StreamChunk,
    TokenUsage,
)
from helmchecker.providers.prompts import SYSTEM_PROMPT, build_messages
from helmchecker.providers.rate_limiter import RateLimiter
from helmchecker.providers.retry import RetryPolicy

logger = logging.getLogger(__name__)

COMPLETIONS_PATH = "/chat/completions"


def parse_retry_after(value: str | None) -> float | None:
    """Seconds from a Retry-After header, or None if absent or not numeric."""
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


class HTTPChatProvider(Provider):
    """
    Base class for chat-completion providers over HTTP.

    Subclasses set the class-level defaults and may override
    ``credential``, ``extra_headers``, ``extend_payload`` and
    ``estimate_cost``.
    """

    default_name = "chat"
    default_base_url = ""
    default_model = ""
    default_temperature = 0.3
    default_max_tokens = 4096
    default_timeout = 60.0

    def __init__(
        self,
        config: ProviderConfig,
        token_provider: TokenProvider | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize the provider.

        Args:
            config: Provider configuration.
            token_provider: Credential source; built from ``config.auth`` if None.
            transport: httpx transport override, used by tests.

        Raises:
            ProviderNotConfiguredError: If no usable credential is available.
        """
        self.config = config
        self._name = config.name or self.default_name
        self.model = str(config.setting("model", self.default_model))
        self.base_url = str(config.setting("base_url", self.default_base_url)).rstrip("/")
        self.temperature = float(config.setting("temperature", self.default_temperature))
        self.max_tokens = int(config.setting("max_tokens", self.default_max_tokens))
        self.timeout = parse_duration(config.setting("timeout", self.default_timeout))
        self.system_prompt = str(config.setting("system_prompt", SYSTEM_PROMPT))

        self.token_provider = token_provider or StaticTokenProvider(
            self.credential(config), self.validate_credential
        )
        try:
            self.token_provider.validate_token()
        except TokenError as e:
            raise ProviderNotConfiguredError(self._name, str(e)) from e

        limits = config.rate_limits
        self.rate_limiter = RateLimiter(
            requests_per_minute=limits.requests_per_minute,
            requests_per_hour=limits.requests_per_hour,
            tokens_per_minute=limits.tokens_per_minute,
            concurrent_requests=limits.concurrent_requests,
            provider=self._name,
        )
        retry = config.retry
        self.retry_policy = RetryPolicy(
            max_retries=retry.max_retries,
            initial_delay=retry.initial_delay,
            max_delay=retry.max_delay,
            multiplier=retry.multiplier,
            retryable_patterns=list(retry.retryable_errors),
        )
        self.metrics = UsageMetrics()

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            auth=BearerAuth(self.token_provider, self.extra_headers()),
            timeout=self.timeout,
            transport=transport,
        )
        self._closed = False

    # -------------------------------------------------------------------------
    # Subclass hooks
    # -------------------------------------------------------------------------

    def credential(self, config: ProviderConfig) -> str:
        """Pick the credential from the auth section."""
        return config.auth.token or config.auth.api_key

    def validate_credential(self, token: str) -> None:
        """Check the credential's format; raise TokenError if unusable."""
        if not token:
            raise TokenError("no token provided")

    def extra_headers(self) -> dict[str, str]:
        return {}

    def extend_payload(self, request: Request, payload: dict[str, Any]) -> None:
        """Add backend-specific fields to the request body."""

    def estimate_cost(self, model: str, usage: TokenUsage) -> float:
        return estimate_cost(model, usage)

    # -------------------------------------------------------------------------
    # Provider contract
    # -------------------------------------------------------------------------

    @property
    def name(self) -> str:
        return self._name

    def get_metrics(self) -> UsageMetrics:
        return self.metrics

    async def analyze(self, request: Request) -> Response:
        """
        Send a request and wait for the complete answer.

        Each attempt acquires a rate-limiter token before any network I/O;
        transient failures are retried according to the retry policy and
        ``options.timeout`` bounds the whole call.

        Raises:
            ProviderError: Classified failure (see exceptions).
        """
        self._ensure_open()
        self._validate_request(request)

        options = request.options
        timeout = options.timeout
        start = time.monotonic()
        deadline = start + timeout if timeout else None
        payload = self.build_payload(request, stream=False)
        policy = self.retry_policy.with_overrides(options)

        async def attempt() -> Response:
            async with self.rate_limiter.slot(
                tokens=payload["max_tokens"], timeout=_remaining(deadline)
            ):
                data = await self._post(payload)
            return self._build_response(request, data, time.monotonic() - start)

        def on_failure(error: BaseException) -> None:
            self.metrics.record_failure(self.name, classify_error(error).value, request.type)

        call = policy.run(attempt, provider=self.name, deadline=deadline, on_failure=on_failure)
        try:
            if timeout:
                response = await asyncio.wait_for(call, timeout)
            else:
                response = await call
        except asyncio.TimeoutError as e:
            self.metrics.record_failure(self.name, FailureType.TIMEOUT.value, request.type)
            raise ProviderTimeoutError(self.name, timeout) from e

        self.metrics.record_success(
            self.name, response.tokens_used, response.duration, request.type
        )
        logger.debug(
            f"{self.name} answered request {request.id} in {response.duration:.2f}s "
            f"({response.tokens_used.total_tokens} tokens)"
        )
        return response

    async def analyze_stream(self, request: Request) -> "ChunkStream":
        """
        Start a streamed request.

        Rate limiting and HTTP errors raise here; once the stream is
        returned, failures arrive as a terminal error chunk. The stream
        holds a concurrency slot until it ends or is closed.
        """
        self._ensure_open()
        self._validate_request(request)

        payload = self.build_payload(request, stream=True)
        try:
            await self.rate_limiter.acquire_slot(payload["max_tokens"], request.options.timeout)
        except RateLimitExceededError:
            self.metrics.record_failure(self.name, FailureType.RATE_LIMIT.value, request.type)
            raise

        http_request = self._client.build_request(
            "POST", COMPLETIONS_PATH, json=payload, headers={"Accept": "text/event-stream"}
        )
        try:
            http_response = await self._send(http_request, stream=True)
            if http_response.status_code != 200:
                body = await http_response.aread()
                await http_response.aclose()
                raise self._map_status_error(
                    http_response.status_code, body.decode("utf-8", "replace"), http_response.headers
                )
        except BaseException as e:
            self.rate_limiter.release_slot()
            if isinstance(e, ProviderError):
                self.metrics.record_failure(self.name, classify_error(e).value, request.type)
            raise

        return ChunkStream(self, http_response, request)

    async def validate(self) -> None:
        """Minimal round trip with a tiny token budget, bypassing any cache."""
        await self.analyze(
            Request(query="ping", max_tokens=10, options=RequestOptions(use_cache=False))
        )

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._client.aclose()
        logger.debug(f"Closed provider {self.name}")

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _ensure_open(self) -> None:
        if self._closed:
            raise ContextCancelledError(self.name)

    def _validate_request(self, request: Request) -> None:
        if not request.query.strip():
            raise InvalidRequestError("query", "query must not be empty", self.name)
        if request.max_tokens < 0:
            raise InvalidRequestError("max_tokens", "must be non-negative", self.name)
        if not 0 <= request.temperature <= 2:
            raise InvalidRequestError("temperature", "must be between 0 and 2", self.name)

    def build_payload(self, request: Request, stream: bool) -> dict[str, Any]:
        """Chat-completion request body."""
        payload: dict[str, Any] = {
            "model": self.model,
            "messages": build_messages(request, self.system_prompt),
            "temperature": request.temperature or self.temperature,
            "max_tokens": request.max_tokens or self.max_tokens,
            "stream": stream,
        }
        self.extend_payload(request, payload)
        return payload

    async def _send(self, http_request: httpx.Request, stream: bool = False) -> httpx.Response:
        try:
            return await self._client.send(http_request, stream=stream)
        except TokenError as e:
            raise AuthenticationFailedError(self.name, str(e)) from e
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError(self.name, self.timeout) from e
        except httpx.TransportError as e:
            raise ProviderUnavailableError(self.name, f"connection failed: {e}") from e

    async def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        http_request = self._client.build_request("POST", COMPLETIONS_PATH, json=payload)
        http_response = await self._send(http_request)
        if http_response.status_code != 200:
            raise self._map_status_error(
                http_response.status_code, http_response.text, http_response.headers
            )
        try:
            data = http_response.json()
        except ValueError as e:
            raise InvalidResponseError(self.name, f"failed to decode response: {e}") from e
        if not isinstance(data, dict):
            raise InvalidResponseError(self.name, "response body is not a JSON object")
        return data

    def _map_status_error(
        self, status: int, body: str, headers: httpx.Headers
    ) -> ProviderError:
        """Translate a non-200 HTTP response into the error taxonomy."""
        message = body.strip() or f"HTTP {status}"
        code = ""
        try:
            error = json.loads(body).get("error") or {}
            if isinstance(error, dict):
                message = error.get("message") or message
                code = str(error.get("code") or error.get("type") or "")
        except (ValueError, AttributeError):
            pass

        if status in (401, 403):
            return AuthenticationFailedError(self.name, message)
        if status == 429:
            if code == "insufficient_quota":
                return QuotaExceededError(self.name, message)
            return RateLimitExceededError(
                self.name, message, retry_after=parse_retry_after(headers.get("Retry-After"))
            )
        if status == 408:
            return ProviderTimeoutError(self.name, self.timeout)
        if status == 400 and code == "context_length_exceeded":
            return TokenLimitExceededError(provider=self.name, reason=message)
        if 400 <= status < 500:
            return InvalidRequestError("request", f"HTTP {status}: {message}", self.name)
        return ProviderUnavailableError(self.name, f"HTTP {status}: {message}", status)


    def _build_response(self, request: Request, data: dict[str, Any], duration: float) -> Response:
        choices = data.get("choices")
        if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
            raise InvalidResponseError(self.name, "response contains no choices")
        choice = choices[0]

        message = choice.get("message") or {}
        if not isinstance(message, dict):
            raise InvalidResponseError(self.name, "choice message is not a JSON object")
        content = message.get("content") or ""
        if not isinstance(content, str):
            raise InvalidResponseError(self.name, "message content is not a string")
        model = str(data.get("model") or self.model)

        usage = data.get("usage") or {}
        if not isinstance(usage, dict):
            raise InvalidResponseError(self.name, "usage is not a JSON object")
        tokens = TokenUsage(
            prompt_tokens=self._token_count(usage, "prompt_tokens"),
            completion_tokens=self._token_count(usage, "completion_tokens"),
            total_tokens=self._token_count(usage, "total_tokens"),
        )
        tokens.estimated_cost = self.estimate_cost(model, tokens)

        structured = None
        if request.options.response_format == ResponseFormat.JSON and content:
            try:
                structured = json.loads(content)
            except ValueError:
                logger.debug(f"{self.name} returned non-JSON content for a JSON request")

        return Response(
            id=request.id,
            content=content,
            provider=self.name,
            tokens_used=tokens,
            structured_data=structured,
            duration=duration,
            metadata={
                "model": model,
                "finish_reason": str(choice.get("finish_reason") or ""),
            },
        )

    def _token_count(self, usage: dict[str, Any], key: str) -> int:
        # null counts mean "not reported"
        value = usage.get(key) or 0
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise InvalidResponseError(self.name, f"usage.{key} is not a number: {value!r}")
        return int(value)

    def _parse_event(self, data: str) -> StreamChunk:
        """Turn one SSE ``data:`` payload into a chunk.

        Raises:
            InvalidResponseError: If the payload is not a chat-completion delta.
        """
        try:
            event = json.loads(data)
        except ValueError as e:
            raise InvalidResponseError(self.name, f"failed to parse chunk: {e}") from e
        if not isinstance(event, dict):
            raise InvalidResponseError(self.name, "stream event is not a JSON object")

        choices = event.get("choices") or []
        if not isinstance(choices, list):
            raise InvalidResponseError(self.name, "stream event choices is not a list")
        if not choices:
            return StreamChunk()

        choice = choices[0]
        if not isinstance(choice, dict):
            raise InvalidResponseError(self.name, "stream choice is not a JSON object")
        delta = choice.get("delta") or {}
        if not isinstance(delta, dict):
            raise InvalidResponseError(self.name, "stream delta is not a JSON object")
        content = delta.get("content") or ""
        if not isinstance(content, str):
            raise InvalidResponseError(self.name, "stream delta content is not a string")
        return StreamChunk(content=content, done=bool(choice.get("finish_reason")))


class ChunkStream:
    """
    Chunks of one streamed response, read from SSE ``data:`` lines until
    ``[DONE]``.

    Iterate with ``async for``. The stream ends after exactly one terminal
    chunk. A consumer that stops earlier, or never iterates at all, must
    ``await stream.aclose()`` so the HTTP response and the provider's
    concurrency slot are released; such a stream is recorded as cancelled.
    """

    def __init__(self, provider: HTTPChatProvider, http_response: httpx.Response, request: Request):
        self.provider = provider
        self.request = request
        self._response = http_response
        self._start = time.monotonic()
        self._parts: list[str] = []
        self._error: ProviderError | None = None
        self._finished = False
        self._released = False
        self._chunks = self._read()

    def __aiter__(self) -> "ChunkStream":
        return self

    async def __anext__(self) -> StreamChunk:
        return await self._chunks.__anext__()

    async def aclose(self) -> None:
        await self._chunks.aclose()
        await self._release()

    def _fail(self, error: ProviderError) -> StreamChunk:
        self._error = error
        return StreamChunk(error=error)

    async def _read(self) -> AsyncGenerator[StreamChunk, None]:
        provider = self.provider
        try:
            async for line in self._response.aiter_lines():
                if provider._closed:
                    yield self._fail(ContextCancelledError(provider.name))
                    return

                line = line.strip()
                if not line.startswith("data:"):
                    continue
                data = line[len("data:") :].strip()
                if data == "[DONE]":
                    break

                try:
                    chunk = provider._parse_event(data)
                except InvalidResponseError as e:
                    yield self._fail(e)
                    return

                if chunk.content:
                    self._parts.append(chunk.content)
                if chunk.done:
                    self._finished = True
                    yield chunk
                    return
                yield chunk

            self._finished = True
            yield StreamChunk(done=True)

        except httpx.HTTPError as e:
            if isinstance(e, httpx.TimeoutException):
                error: ProviderError = ProviderTimeoutError(provider.name, provider.timeout)
            else:
                error = ProviderUnavailableError(provider.name, f"stream read error: {e}")
            yield self._fail(error)

        finally:
            await self._release()

    async def _release(self) -> None:
        """Close the response, free the slot and record the outcome once."""
        if self._released:
            return
        self._released = True
        provider = self.provider
        try:
            await self._response.aclose()
        finally:
            provider.rate_limiter.release_slot()

        request_type = self.request.type
        if self._error is not None:
            provider.metrics.record_failure(
                provider.name, classify_error(self._error).value, request_type
            )
        elif not self._finished:
            logger.debug(f"Stream for request {self.request.id} closed before completion")
            provider.metrics.record_failure(
                provider.name, FailureType.CANCELLED.value, request_type
            )
        else:
            completion = count_tokens(provider.model, "".join(self._parts))
            tokens = TokenUsage(completion_tokens=completion)
            tokens.estimated_cost = provider.estimate_cost(provider.model, tokens)
            provider.metrics.record_success(
                provider.name, tokens, time.monotonic() - self._start, request_type
            )


def _remaining(deadline: float | None) -> float | None:
    if deadline is None:
        return None
    return max(0.0, deadline - time.monotonic())
