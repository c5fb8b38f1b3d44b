"""
Prometheus metrics for monitoring discovery runs.

Defines and exposes metrics for:
- HTTP requests and retries against the Reddit API
- Items fetched and skipped
- Phrase samples folded into the window
- Account outcomes
- Phrases ranked and persisted, run duration

Metrics are exposed via HTTP endpoint for Prometheus scraping.
"""

import logging

from prometheus_client import (
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    start_http_server,
)

from src.config.settings import get_settings

logger = logging.getLogger(__name__)

LATENCY_BUCKETS = (0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0)
RUN_DURATION_BUCKETS = (1.0, 5.0, 15.0, 30.0, 60.0, 120.0, 300.0, 600.0, 1800.0)


class MetricsCollector:
    """
    Prometheus metrics collector for the trend-discovery pipeline.

    Usage:
        metrics = get_metrics()
        metrics.record_http_request("success", 0.21)
        metrics.record_items("fetched", 50)
    """

    def __init__(self):
        self.http_requests = Counter(
            "trend_discovery_http_requests_total",
            "Reddit API request attempts",
            ["outcome"],  # success, rate_limited, retryable, fatal
        )

        self.http_latency = Histogram(
            "trend_discovery_http_request_seconds",
            "Reddit API request latency in seconds",
            buckets=LATENCY_BUCKETS,
        )

        self.retries = Counter(
            "trend_discovery_http_retries_total",
            "Retries scheduled by the HTTP client",
            ["reason"],  # rate_limited, retryable
        )

        self.items = Counter(
            "trend_discovery_items_total",
            "Source items by processing status",
            ["kind", "status"],  # status: fetched, skipped, outside_window
        )

        self.samples = Counter(
            "trend_discovery_samples_total",
            "Phrase samples offered to the aggregator",
            ["status"],  # accepted, rejected
        )

        self.accounts = Counter(
            "trend_discovery_accounts_total",
            "Accounts processed by outcome",
            ["status"],  # completed, auth_failed, failed
        )

        self.units_skipped = Counter(
            "trend_discovery_units_skipped_total",
            "Fetch units (subreddit/query pages) skipped after an error",
            ["reason"],
        )

        self.phrases_ranked = Gauge(
            "trend_discovery_phrases_ranked",
            "Phrases ranked in the last run",
        )

        self.phrases_persisted = Counter(
            "trend_discovery_phrases_persisted_total",
            "Phrase rows written by outcome",
            ["status"],  # success, error
        )

        self.budget_remaining = Gauge(
            "trend_discovery_request_budget_remaining",
            "Request budget left when the last run finished fetching",
        )

        self.run_duration = Histogram(
            "trend_discovery_run_seconds",
            "Wall-clock duration of a discovery run",
            buckets=RUN_DURATION_BUCKETS,
        )

        logger.info("Prometheus metrics initialized")

    def start_server(self, port: int | None = None) -> None:
        """
        Start Prometheus metrics HTTP server.

        Args:
            port: Port to expose metrics on (default from settings)
        """
        port = port or get_settings().metrics_port
        start_http_server(port, registry=REGISTRY)
        logger.info(f"Prometheus metrics server started on port {port}")

    # Convenience methods

    def record_http_request(self, outcome: str, latency: float | None = None) -> None:
        self.http_requests.labels(outcome=outcome).inc()
        if latency is not None:
            self.http_latency.observe(latency)

    def record_retry(self, reason: str) -> None:
        self.retries.labels(reason=reason).inc()

    def record_items(self, status: str, count: int = 1, kind: str = "post") -> None:
        """
        Record source items.

        Args:
            status: fetched, skipped or outside_window
            count: Number of items
            kind: post or comment
        """
        if count:
            self.items.labels(kind=kind, status=status).inc(count)

    def record_samples(self, accepted: int, rejected: int = 0) -> None:
        if accepted:
            self.samples.labels(status="accepted").inc(accepted)
        if rejected:
            self.samples.labels(status="rejected").inc(rejected)

    def record_account(self, status: str) -> None:
        self.accounts.labels(status=status).inc()

    def record_unit_skipped(self, reason: str) -> None:
        self.units_skipped.labels(reason=reason).inc()

    def record_persisted(self, status: str, count: int = 1) -> None:
        if count:
            self.phrases_persisted.labels(status=status).inc(count)

    def record_run(
        self,
        duration: float,
        phrases_ranked: int,
        budget_remaining: int,
    ) -> None:
        self.run_duration.observe(duration)
        self.phrases_ranked.set(phrases_ranked)
        self.budget_remaining.set(budget_remaining)


_metrics: MetricsCollector | None = None


def get_metrics() -> MetricsCollector:
    """Get global metrics collector instance."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics
