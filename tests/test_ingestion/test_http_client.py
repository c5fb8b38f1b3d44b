"""Tests for HTTP client infrastructure layer."""

import httpx
import pytest
import respx

from src.ingestion.http_client import (
    BudgetExhaustedError,
    FailureKind,
    HTTPClient,
    HTTPClientError,
    RateLimitError,
    RequestBudget,
    RetriesExhaustedError,
    RetryConfig,
    RetryPhase,
    RetryState,
)

URL = "https://oauth.reddit.com/r/Etsy/new"


def _fast_config(**overrides) -> RetryConfig:
    values = {"max_attempts": 3, "base_delay": 0.0, "jitter_seconds": 0.0}
    values.update(overrides)
    return RetryConfig(**values)


class TestRetryConfig:
    """Tests for RetryConfig."""

    def test_default_values(self):
        """Defaults: five attempts, linear base 0.8s, 0.3s jitter, 60s wait cap."""
        config = RetryConfig()

        assert config.max_attempts == 5
        assert config.base_delay == 0.8
        assert config.jitter_seconds == 0.3
        assert config.max_rate_limit_wait == 60.0

    def test_calculate_backoff_linear(self):
        """Backoff grows linearly with the attempt number."""
        config = RetryConfig(base_delay=0.8, jitter_seconds=0.0)

        assert config.calculate_backoff(1) == pytest.approx(0.8)
        assert config.calculate_backoff(2) == pytest.approx(1.6)
        assert config.calculate_backoff(3) == pytest.approx(2.4)

    def test_calculate_backoff_with_jitter(self):
        """Jitter adds between 0 and jitter_seconds."""
        config = RetryConfig(base_delay=1.0, jitter_seconds=0.3)

        for _ in range(50):
            delay = config.calculate_backoff(1)
            assert 1.0 <= delay <= 1.3

    def test_rate_limit_wait_uses_reset_hint(self):
        """A 429 waits at least the server's reset hint."""
        config = RetryConfig(base_delay=0.8, jitter_seconds=0.0)

        assert config.rate_limit_wait(1, reset_seconds=5.0) == pytest.approx(5.0)

    def test_rate_limit_wait_capped(self):
        """Huge reset hints are capped at max_rate_limit_wait."""
        config = RetryConfig(base_delay=0.8, jitter_seconds=0.0, max_rate_limit_wait=60.0)

        assert config.rate_limit_wait(1, reset_seconds=3600.0) == pytest.approx(60.0)

    def test_rate_limit_wait_never_below_backoff(self):
        """A tiny reset hint still waits the normal backoff."""
        config = RetryConfig(base_delay=2.0, jitter_seconds=0.0)

        assert config.rate_limit_wait(2, reset_seconds=0.5) == pytest.approx(4.0)

    def test_classify_status(self):
        """2xx succeeds, 429 is rate limited, 5xx retryable, rest fatal."""
        assert RetryConfig.classify_status(200) is None
        assert RetryConfig.classify_status(204) is None
        assert RetryConfig.classify_status(429) == FailureKind.RATE_LIMITED
        assert RetryConfig.classify_status(500) == FailureKind.RETRYABLE
        assert RetryConfig.classify_status(503) == FailureKind.RETRYABLE
        assert RetryConfig.classify_status(400) == FailureKind.FATAL
        assert RetryConfig.classify_status(401) == FailureKind.FATAL
        assert RetryConfig.classify_status(404) == FailureKind.FATAL

    def test_classify_exception_transport_errors(self):
        """Timeouts and network errors are retryable."""
        request = httpx.Request("GET", URL)

        assert RetryConfig.classify_exception(httpx.ReadTimeout("t", request=request)) == FailureKind.RETRYABLE
        assert RetryConfig.classify_exception(httpx.ConnectError("c", request=request)) == FailureKind.RETRYABLE
        assert RetryConfig.classify_exception(
            httpx.RemoteProtocolError("r", request=request)
        ) == FailureKind.RETRYABLE

    def test_classify_exception_other(self):
        """Anything else is fatal."""
        assert RetryConfig.classify_exception(ValueError("x")) == FailureKind.FATAL


class TestRetryState:
    """Tests for the retry state machine."""

    def test_success_path(self):
        """idle -> attempting -> succeeded."""
        state = RetryState(label="x", max_attempts=3)

        state.transition(RetryPhase.ATTEMPTING)
        state.transition(RetryPhase.SUCCEEDED)

        assert state.attempt == 1
        assert state.is_terminal
        assert state.history == [RetryPhase.IDLE, RetryPhase.ATTEMPTING, RetryPhase.SUCCEEDED]

    def test_retry_path_counts_attempts(self):
        """Each return to attempting increments the attempt counter."""
        state = RetryState(label="x", max_attempts=2)

        state.transition(RetryPhase.ATTEMPTING)
        state.transition(RetryPhase.BACKING_OFF)
        state.transition(RetryPhase.ATTEMPTING)

        assert state.attempt == 2
        assert not state.has_attempts_left

    def test_illegal_transition_raises(self):
        """Terminal phases cannot be left."""
        state = RetryState(label="reddit:r/Etsy", max_attempts=3)
        state.transition(RetryPhase.ATTEMPTING)
        state.transition(RetryPhase.SUCCEEDED)

        with pytest.raises(ValueError, match="reddit:r/Etsy"):
            state.transition(RetryPhase.ATTEMPTING)

    def test_cannot_back_off_from_idle(self):
        state = RetryState(label="x", max_attempts=3)

        with pytest.raises(ValueError):
            state.transition(RetryPhase.BACKING_OFF)


class TestRequestBudget:
    """Tests for RequestBudget."""

    def test_consume_until_exhausted(self):
        """The budget raises once max_requests were consumed."""
        budget = RequestBudget(max_requests=2)

        budget.consume()
        budget.consume()

        assert budget.used == 2
        assert budget.remaining == 0
        assert budget.exhausted
        with pytest.raises(BudgetExhaustedError):
            budget.consume("reddit:r/Etsy")

    def test_unlimited_budget(self):
        budget = RequestBudget()

        for _ in range(100):
            budget.consume()

        assert budget.remaining is None
        assert not budget.exhausted

    def test_deadline_passed(self):
        """A zero deadline is already past."""
        budget = RequestBudget(deadline_seconds=0.0)

        assert budget.deadline_passed
        with pytest.raises(BudgetExhaustedError, match="deadline"):
            budget.consume()


class TestHTTPClient:
    """Tests for HTTPClient."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_get_success(self):
        """Should return the decoded JSON body."""
        respx.get(URL).mock(return_value=httpx.Response(200, json={"kind": "Listing"}))

        async with HTTPClient(_fast_config()) as client:
            data = await client.get(URL)

        assert data == {"kind": "Listing"}
        assert client.last_retry_state.phase == RetryPhase.SUCCEEDED

    @pytest.mark.asyncio
    @respx.mock
    async def test_bearer_token_and_params(self):
        """Token is sent as a bearer Authorization header."""
        route = respx.get(URL).mock(return_value=httpx.Response(200, json={}))

        async with HTTPClient(_fast_config(), user_agent="tests/0.1") as client:
            await client.get(URL, params={"limit": 50}, token="tok-1")

        request = route.calls.last.request
        assert request.headers["Authorization"] == "bearer tok-1"
        assert request.headers["User-Agent"] == "tests/0.1"
        assert "limit=50" in str(request.url)

    @pytest.mark.asyncio
    @respx.mock
    async def test_rate_limited_then_success(self, no_sleep):
        """A 429 with a reset hint waits at least that long, then succeeds."""
        route = respx.get(URL).mock(
            side_effect=[
                httpx.Response(429, headers={"x-ratelimit-reset": "5"}, text="slow down"),
                httpx.Response(200, json={"ok": True}),
            ]
        )

        async with HTTPClient(_fast_config()) as client:
            data = await client.get(URL, label="reddit:r/Etsy")

        assert data == {"ok": True}
        assert route.call_count == 2
        waits = [call.args[0] for call in no_sleep.await_args_list]
        assert waits and waits[0] >= 5.0

    @pytest.mark.asyncio
    @respx.mock
    async def test_rate_limited_every_attempt(self, no_sleep):
        """Persistent 429 raises RateLimitError carrying the reset hint."""
        respx.get(URL).mock(
            return_value=httpx.Response(429, headers={"x-ratelimit-reset": "7"})
        )

        async with HTTPClient(_fast_config(max_attempts=2)) as client:
            with pytest.raises(RateLimitError) as exc_info:
                await client.get(URL, label="reddit:r/Etsy")

        assert exc_info.value.reset_seconds == 7.0
        assert exc_info.value.kind == FailureKind.RATE_LIMITED

    @pytest.mark.asyncio
    @respx.mock
    async def test_server_error_retried_until_exhausted(self, no_sleep):
        """5xx on every attempt raises RetriesExhaustedError after max_attempts."""
        route = respx.get(URL).mock(return_value=httpx.Response(503, text="unavailable"))

        async with HTTPClient(_fast_config(max_attempts=3)) as client:
            with pytest.raises(RetriesExhaustedError) as exc_info:
                await client.get(URL)

        assert route.call_count == 3
        assert exc_info.value.status_code == 503
        assert client.last_retry_state.phase == RetryPhase.EXHAUSTED

    @pytest.mark.asyncio
    @respx.mock
    async def test_server_error_then_success(self, no_sleep):
        respx.get(URL).mock(
            side_effect=[httpx.Response(500), httpx.Response(200, json=[1, 2])]
        )

        async with HTTPClient(_fast_config()) as client:
            data = await client.get(URL)

        assert data == [1, 2]

    @pytest.mark.asyncio
    @respx.mock
    async def test_client_error_not_retried(self, no_sleep):
        """404 fails immediately with the label in the message."""
        route = respx.get(URL).mock(return_value=httpx.Response(404, text="not found"))

        async with HTTPClient(_fast_config()) as client:
            with pytest.raises(HTTPClientError) as exc_info:
                await client.get(URL, label="reddit:r/Missing")

        assert route.call_count == 1
        assert exc_info.value.status_code == 404
        assert exc_info.value.kind == FailureKind.FATAL
        assert str(exc_info.value).startswith("reddit:r/Missing:")
        no_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    @respx.mock
    async def test_undecodable_body_retried(self, no_sleep):
        """An HTML page under a 200 is retried like a server error."""
        route = respx.get(URL).mock(
            side_effect=[
                httpx.Response(200, text="<html>maintenance</html>"),
                httpx.Response(200, json={"ok": True}),
            ]
        )

        async with HTTPClient(_fast_config()) as client:
            data = await client.get(URL)

        assert data == {"ok": True}
        assert route.call_count == 2

    @pytest.mark.asyncio
    @respx.mock
    async def test_transport_error_retried(self, no_sleep):
        respx.get(URL).mock(
            side_effect=[httpx.ConnectError("refused"), httpx.Response(200, json={})]
        )

        async with HTTPClient(_fast_config()) as client:
            assert await client.get(URL) == {}

    @pytest.mark.asyncio
    @respx.mock
    async def test_budget_counts_every_attempt(self, no_sleep):
        """Retries consume budget; an empty budget stops before sending."""
        route = respx.get(URL).mock(
            side_effect=[httpx.Response(500), httpx.Response(500), httpx.Response(200, json={})]
        )
        budget = RequestBudget(max_requests=2)

        async with HTTPClient(_fast_config(max_attempts=5), budget=budget) as client:
            with pytest.raises(BudgetExhaustedError):
                await client.get(URL)

        assert route.call_count == 2
        assert budget.used == 2
        assert client.last_retry_state.phase == RetryPhase.FAILED

    @pytest.mark.asyncio
    @respx.mock
    async def test_post_form_basic_auth(self):
        """post_form sends form fields with HTTP basic auth."""
        route = respx.post("https://www.reddit.com/api/v1/access_token").mock(
            return_value=httpx.Response(200, json={"access_token": "new", "expires_in": 3600})
        )

        async with HTTPClient(_fast_config()) as client:
            data = await client.post_form(
                "https://www.reddit.com/api/v1/access_token",
                data={"grant_type": "refresh_token", "refresh_token": "r-1"},
                auth=("id", "secret"),
            )

        assert data["access_token"] == "new"
        request = route.calls.last.request
        assert request.headers["Authorization"].startswith("Basic ")
        assert b"grant_type=refresh_token" in request.content

    @pytest.mark.asyncio
    async def test_requires_context_manager(self):
        """Using the client outside ``async with`` raises RuntimeError."""
        client = HTTPClient(_fast_config())

        with pytest.raises(RuntimeError):
            await client.get(URL)
