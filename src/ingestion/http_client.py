"""
HTTP infrastructure layer with failure classification, retries and budgets.

Provides:
- RetryConfig: Linear-plus-jitter backoff configuration
- RetryState: Explicit retry state machine (idle → attempting → ...)
- RequestBudget: Per-run request cap and deadline
- RateLimiter: Token bucket pacing per client
- HTTPClient: Async HTTP client returning decoded JSON

This layer separates HTTP concerns (classification, retries, backoff,
budgets) from domain logic (listing parsing) in the Reddit client.
"""

import asyncio
import logging
import random
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import httpx

from src.observability.metrics import get_metrics

logger = logging.getLogger(__name__)

# Reddit reports seconds until the rate-limit window resets in this header
RATE_LIMIT_RESET_HEADER = "x-ratelimit-reset"
DEFAULT_RESET_SECONDS = 10.0


class FailureKind(str, Enum):
    """Classification of a failed attempt."""

    RATE_LIMITED = "rate_limited"
    RETRYABLE = "retryable"
    FATAL = "fatal"


class RetryPhase(str, Enum):
    """States of a single request's retry lifecycle."""

    IDLE = "idle"
    ATTEMPTING = "attempting"
    BACKING_OFF = "backing_off"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    EXHAUSTED = "exhausted"


_ALLOWED_TRANSITIONS: dict[RetryPhase, set[RetryPhase]] = {
    RetryPhase.IDLE: {RetryPhase.ATTEMPTING, RetryPhase.FAILED},
    RetryPhase.ATTEMPTING: {
        RetryPhase.SUCCEEDED,
        RetryPhase.FAILED,
        RetryPhase.BACKING_OFF,
        RetryPhase.EXHAUSTED,
    },
    RetryPhase.BACKING_OFF: {RetryPhase.ATTEMPTING, RetryPhase.FAILED},
    RetryPhase.SUCCEEDED: set(),
    RetryPhase.FAILED: set(),
    RetryPhase.EXHAUSTED: set(),
}


@dataclass
class RetryState:
    """
    Retry lifecycle of one logical request.

    Terminal phases: SUCCEEDED, FAILED (non-retryable or budget), EXHAUSTED.
    """

    label: str
    max_attempts: int
    attempt: int = 0
    phase: RetryPhase = RetryPhase.IDLE
    history: list[RetryPhase] = field(default_factory=lambda: [RetryPhase.IDLE])
    last_failure: FailureKind | None = None

    def transition(self, phase: RetryPhase) -> None:
        """
        Move to a new phase.

        Raises:
            ValueError: If the transition is not allowed from the current phase
        """
        if phase not in _ALLOWED_TRANSITIONS[self.phase]:
            raise ValueError(
                f"{self.label}: illegal retry transition {self.phase.value} -> {phase.value}"
            )
        if phase == RetryPhase.ATTEMPTING:
            self.attempt += 1
        self.phase = phase
        self.history.append(phase)

    @property
    def is_terminal(self) -> bool:
        return not _ALLOWED_TRANSITIONS[self.phase]

    @property
    def has_attempts_left(self) -> bool:
        return self.attempt < self.max_attempts


@dataclass
class RetryConfig:
    """
    Backoff configuration for HTTP retries.

    Formula: base_delay * attempt + random(0, jitter_seconds)

    The delay grows linearly with the 1-indexed attempt number. Rate-limited
    attempts wait at least the server's reset hint, capped at
    max_rate_limit_wait.
    """

    max_attempts: int = 5
    base_delay: float = 0.8
    jitter_seconds: float = 0.3
    max_rate_limit_wait: float = 60.0

    def calculate_backoff(self, attempt: int) -> float:
        """
        Calculate backoff duration after a failed attempt.

        Args:
            attempt: The attempt that just failed (1-indexed)

        Returns:
            Backoff duration in seconds with jitter applied
        """
        delay = self.base_delay * attempt
        if self.jitter_seconds > 0:
            delay += random.uniform(0, self.jitter_seconds)
        return delay

    def rate_limit_wait(self, attempt: int, reset_seconds: float) -> float:
        """Wait before retrying a 429: never shorter than the capped reset hint."""
        hinted = min(max(reset_seconds, 0.0), self.max_rate_limit_wait)
        return max(self.calculate_backoff(attempt), hinted)

    @staticmethod
    def classify_status(status_code: int) -> FailureKind | None:
        """
        Classify an HTTP status code.

        Returns:
            None for 2xx, RATE_LIMITED for 429, RETRYABLE for 5xx,
            FATAL for anything else
        """
        if 200 <= status_code < 300:
            return None
        if status_code == 429:
            return FailureKind.RATE_LIMITED
        if status_code >= 500:
            return FailureKind.RETRYABLE
        return FailureKind.FATAL

    @staticmethod
    def classify_exception(exc: Exception) -> FailureKind:
        """
        Classify a transport-level exception.

        Retryable exceptions:
        - httpx.TimeoutException: Request timed out
        - httpx.NetworkError: Connection refused/reset, DNS failure, read error
        - httpx.RemoteProtocolError: Server dropped the connection mid-response
        """
        if isinstance(
            exc,
            (
                httpx.TimeoutException,
                httpx.NetworkError,
                httpx.RemoteProtocolError,
            ),
        ):
            return FailureKind.RETRYABLE
        return FailureKind.FATAL


class HTTPClientError(Exception):
    """Base exception for HTTP client errors, labelled with the failing call."""

    def __init__(
        self,
        message: str,
        label: str = "",
        status_code: int | None = None,
        response_body: str | None = None,
        kind: FailureKind = FailureKind.FATAL,
    ):
        super().__init__(f"{label}:{message}" if label else message)
        self.label = label
        self.status_code = status_code
        self.response_body = response_body
        self.kind = kind


class RetriesExhaustedError(HTTPClientError):
    """Raised when a retryable failure persists for every attempt."""

    pass


class RateLimitError(RetriesExhaustedError):
    """Raised when the last attempt was rate limited; carries the reset hint."""

    def __init__(
        self,
        message: str,
        label: str = "",
        reset_seconds: float = DEFAULT_RESET_SECONDS,
        **kwargs: Any,
    ):
        super().__init__(message, label=label, kind=FailureKind.RATE_LIMITED, **kwargs)
        self.reset_seconds = reset_seconds


class BudgetExhaustedError(Exception):
    """Raised before a request when the run's request budget or deadline is spent."""

    pass


class RequestBudget:
    """
    Per-run cap on HTTP attempts, with an optional wall-clock deadline.

    Shared by every client of one run. Each attempt, retries included,
    consumes one unit.
    """

    def __init__(
        self,
        max_requests: int | None = None,
        deadline_seconds: float | None = None,
    ):
        self.max_requests = max_requests
        self.used = 0
        self._deadline = (
            time.monotonic() + deadline_seconds if deadline_seconds is not None else None
        )

    @property
    def remaining(self) -> int | None:
        if self.max_requests is None:
            return None
        return max(0, self.max_requests - self.used)

    @property
    def deadline_passed(self) -> bool:
        return self._deadline is not None and time.monotonic() >= self._deadline

    @property
    def exhausted(self) -> bool:
        return self.remaining == 0 or self.deadline_passed

    def consume(self, label: str = "") -> None:
        """
        Take one request from the budget.

        Raises:
            BudgetExhaustedError: If no requests remain or the deadline passed
        """
        if self.deadline_passed:
            raise BudgetExhaustedError(f"{label}:deadline reached after {self.used} requests")
        if self.remaining == 0:
            raise BudgetExhaustedError(f"{label}:request budget of {self.max_requests} spent")
        self.used += 1


@dataclass
class RateLimiter:
    """
    Simple token bucket rate limiter.

    Allows `rate` requests per minute with burst capacity.
    """

    rate: int  # requests per minute
    _tokens: float = field(init=False)
    _last_update: float = field(init=False)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    def __post_init__(self) -> None:
        self._tokens = float(self.rate)
        self._last_update = time.monotonic()

    async def acquire(self) -> None:
        """Wait until a token is available, then consume it."""
        async with self._lock:
            now = time.monotonic()
            elapsed = now - self._last_update
            self._last_update = now

            # Refill tokens based on elapsed time
            self._tokens = min(
                float(self.rate),
                self._tokens + elapsed * (self.rate / 60.0),
            )

            if self._tokens < 1:
                wait_time = (1 - self._tokens) * 60.0 / self.rate
                logger.debug(f"Rate limited, waiting {wait_time:.2f}s")
                await asyncio.sleep(wait_time)
                self._tokens = 0
            else:
                self._tokens -= 1


def _reset_hint(response: httpx.Response) -> float:
    raw = response.headers.get(RATE_LIMIT_RESET_HEADER)
    try:
        return float(raw) if raw is not None else DEFAULT_RESET_SECONDS
    except ValueError:
        return DEFAULT_RESET_SECONDS


class HTTPClient:
    """
    Async HTTP client with failure classification and retry logic.

    Features:
    - 429 treated as a distinct rate-limited failure carrying a reset hint
    - Retry on 5xx, transport errors and undecodable 2xx bodies
    - Immediate failure on any other non-2xx status
    - Linear-plus-jitter backoff, bounded attempts
    - Optional shared RequestBudget and per-client RateLimiter
    - Context manager for proper resource cleanup

    Example:
        async with HTTPClient(RetryConfig(), budget=RequestBudget(200)) as client:
            data = await client.get(
                "https://oauth.reddit.com/r/Etsy/new",
                params={"limit": 50},
                token=access_token,
                label="reddit:/r/Etsy/new",
            )
    """

    def __init__(
        self,
        retry_config: RetryConfig | None = None,
        timeout: float = 30.0,
        budget: RequestBudget | None = None,
        rate_limiter: RateLimiter | None = None,
        user_agent: str | None = None,
    ):
        """
        Initialize HTTP client.

        Args:
            retry_config: Configuration for retry behavior. Uses defaults if None.
            timeout: Request timeout in seconds.
            budget: Shared per-run request budget.
            rate_limiter: Token bucket applied before every attempt.
            user_agent: User-Agent header sent with every request.
        """
        self.retry_config = retry_config or RetryConfig()
        self.timeout = timeout
        self.budget = budget
        self.rate_limiter = rate_limiter
        self.user_agent = user_agent
        self.last_retry_state: RetryState | None = None
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "HTTPClient":
        """Enter async context manager, create client."""
        headers = {"User-Agent": self.user_agent} if self.user_agent else None
        self._client = httpx.AsyncClient(timeout=self.timeout, headers=headers)
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Exit async context manager, close client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def get(
        self,
        url: str,
        params: dict[str, Any] | None = None,
        token: str | None = None,
        label: str | None = None,
    ) -> Any:
        """
        Perform an authenticated GET and decode the JSON body.

        Args:
            url: Request URL
            params: Query parameters
            token: OAuth bearer token
            label: Identity of the call for logs and error messages

        Returns:
            Decoded JSON payload

        Raises:
            HTTPClientError: On non-retryable status codes
            RateLimitError: When still rate limited after the last attempt
            RetriesExhaustedError: When a retryable failure persists
            BudgetExhaustedError: When the run budget is spent
        """
        headers = {"Authorization": f"bearer {token}"} if token else None
        return await self._request_with_retry(
            method="GET",
            url=url,
            label=label or f"GET {url}",
            params=params,
            headers=headers,
        )

    async def post_form(
        self,
        url: str,
        data: dict[str, str],
        auth: tuple[str, str] | None = None,
        label: str | None = None,
    ) -> Any:
        """
        Perform a form-encoded POST (OAuth token endpoint) and decode the JSON body.

        Args:
            url: Request URL
            data: Form fields
            auth: HTTP basic auth (client_id, client_secret)
            label: Identity of the call for logs and error messages
        """
        return await self._request_with_retry(
            method="POST",
            url=url,
            label=label or f"POST {url}",
            data=data,
            auth=auth,
        )

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        if method == "GET":
            return await self._client.get(url, **kwargs)
        if method == "POST":
            return await self._client.post(url, **kwargs)
        raise ValueError(f"Unsupported HTTP method: {method}")

    async def _request_with_retry(
        self,
        method: str,
        url: str,
        label: str,
        **kwargs: Any,
    ) -> Any:
        """
        Execute an HTTP request through the retry state machine.

        Only RETRYABLE and RATE_LIMITED failures are retried. A FATAL failure
        or an exhausted budget ends the request immediately.
        """
        if not self._client:
            raise RuntimeError("HTTPClient must be used as async context manager")

        cfg = self.retry_config
        metrics = get_metrics()
        state = RetryState(label=label, max_attempts=cfg.max_attempts)
        self.last_retry_state = state

        last_status: int | None = None
        last_body: str | None = None
        last_exc: Exception | None = None
        reset_seconds = DEFAULT_RESET_SECONDS

        while True:
            if self.budget is not None:
                try:
                    self.budget.consume(label)
                except BudgetExhaustedError:
                    state.transition(RetryPhase.FAILED)
                    raise

            if self.rate_limiter is not None:
                await self.rate_limiter.acquire()

            state.transition(RetryPhase.ATTEMPTING)
            kind: FailureKind | None
            started = time.monotonic()

            try:
                response = await self._send(method, url, **kwargs)
            except httpx.HTTPError as e:
                kind = cfg.classify_exception(e)
                metrics.record_http_request(kind.value)
                last_exc = e
                last_status = None
                detail = f"{type(e).__name__}: {e}"
                if kind == FailureKind.FATAL:
                    state.last_failure = kind
                    state.transition(RetryPhase.FAILED)
                    raise HTTPClientError(detail, label=label, kind=kind) from e
            else:
                kind = cfg.classify_status(response.status_code)
                last_status = response.status_code
                metrics.record_http_request(
                    kind.value if kind else "success", time.monotonic() - started
                )
                last_exc = None

                if kind is None:
                    try:
                        payload = response.json()
                    except ValueError:
                        # Proxies answer with HTML error pages under a 200
                        kind = FailureKind.RETRYABLE
                        last_body = response.text[:500]
                        detail = f"undecodable body from status {response.status_code}"
                    else:
                        state.transition(RetryPhase.SUCCEEDED)
                        return payload
                else:
                    last_body = response.text[:500]
                    detail = f"status {response.status_code}"

                if kind == FailureKind.FATAL:
                    state.last_failure = kind
                    state.transition(RetryPhase.FAILED)
                    raise HTTPClientError(
                        f"request failed with {detail}",
                        label=label,
                        status_code=response.status_code,
                        response_body=last_body,
                        kind=kind,
                    )

                if kind == FailureKind.RATE_LIMITED:
                    reset_seconds = _reset_hint(response)

            state.last_failure = kind

            if not state.has_attempts_left:
                state.transition(RetryPhase.EXHAUSTED)
                if kind == FailureKind.RATE_LIMITED:
                    raise RateLimitError(
                        f"rate limited after {state.attempt} attempts",
                        label=label,
                        reset_seconds=reset_seconds,
                        status_code=last_status,
                        response_body=last_body,
                    )
                error = RetriesExhaustedError(
                    f"{detail} after {state.attempt} attempts",
                    label=label,
                    status_code=last_status,
                    response_body=last_body,
                    kind=kind,
                )
                if last_exc is not None:
                    raise error from last_exc
                raise error

            if kind == FailureKind.RATE_LIMITED:
                wait = cfg.rate_limit_wait(state.attempt, reset_seconds)
            else:
                wait = cfg.calculate_backoff(state.attempt)

            state.transition(RetryPhase.BACKING_OFF)
            metrics.record_retry(kind.value)
            logger.warning(
                f"{label}:retry {state.attempt}/{cfg.max_attempts} in {wait:.2f}s :: "
                f"{kind.value} ({detail})"
            )
            await asyncio.sleep(wait)
