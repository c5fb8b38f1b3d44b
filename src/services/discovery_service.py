"""
Discovery service - one bounded keyword-discovery run.

Fetches recent posts (and optionally comment threads) for every configured
subreddit and search query, folds candidate phrases into a per-run windowed
aggregator, ranks them and hands the result to the trend repository.

Features:
- Per-account credentials with token refresh, or a single anon token
- Accounts processed independently (bounded concurrency), units sequential
- Unit-scoped failure handling: one bad subreddit/query/thread never aborts
  the run
- Shared request budget / deadline; exhaustion ends fetching gracefully
- Metrics and tracing
"""

import asyncio
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timezone
from typing import Any

import structlog

from src.config.settings import ConfigurationError, Settings, get_settings
from src.credentials.schemas import AuthenticationError, CredentialState
from src.credentials.store import CredentialStore
from src.discovery.aggregator import AggregationContext, PhraseSample, SourceReference
from src.discovery.config import DiscoveryConfig
from src.discovery.extractor import PhraseExtractor, is_question_like
from src.discovery.normalizer import TextNormalizer
from src.discovery.ranking import PhraseRanker, RankedPhrase
from src.discovery.signals import score_sentiment
from src.ingestion.http_client import (
    BudgetExhaustedError,
    HTTPClient,
    HTTPClientError,
    RateLimiter,
    RateLimitError,
    RequestBudget,
    RetryConfig,
)
from src.ingestion.reddit_client import RedditClient
from src.ingestion.schemas import CommentItem, SourceItem
from src.observability.metrics import get_metrics
from src.observability.tracing import get_tracer, traced
from src.storage.base import CredentialRepository, TrendRepository

logger = structlog.get_logger(__name__)

ANON_ACCOUNT_ID = "anon"
AUTH_FAILURE_STATUSES = (401, 403)


@dataclass
class RunStats:
    """Counters for one run."""

    accounts_total: int = 0
    accounts_completed: int = 0
    accounts_skipped: int = 0
    accounts_failed: int = 0
    units_completed: int = 0
    units_skipped: int = 0
    rate_limited_units: int = 0
    items_fetched: int = 0
    items_skipped: int = 0
    items_outside_window: int = 0
    comments_fetched: int = 0
    samples_accepted: int = 0
    samples_rejected: int = 0
    raw_items_saved: int = 0
    phrases_ranked: int = 0
    phrases_persisted: int = 0
    persist_errors: int = 0
    requests_used: int = 0
    budget_exhausted: bool = False


@dataclass
class DiscoveryResult:
    """Outcome of a run: the ranking plus run statistics."""

    run_at: datetime
    mode: str
    ranked: list[RankedPhrase] = field(default_factory=list)
    stats: RunStats = field(default_factory=RunStats)

    @property
    def day(self) -> date:
        return self.run_at.date()

    def to_dict(self, limit: int | None = None) -> dict[str, Any]:
        ranked = self.ranked if limit is None else self.ranked[:limit]
        return {
            "run_at": self.run_at.isoformat(),
            "mode": self.mode,
            "stats": asdict(self.stats),
            "phrases": [
                {"phrase": r.phrase, "score": round(r.score, 4), "count": r.count}
                for r in ranked
            ],
        }


class DiscoveryService:
    """
    Orchestrates one discovery run.

    Usage:
        service = DiscoveryService(trend_repository=repo, credential_repository=creds)
        result = await service.run(mode="accounts")
    """

    def __init__(
        self,
        trend_repository: TrendRepository,
        credential_repository: CredentialRepository | None = None,
        config: DiscoveryConfig | None = None,
        settings: Settings | None = None,
        now_fn: Callable[[], datetime] | None = None,
    ):
        """
        Initialize discovery service.

        Args:
            trend_repository: Sink for ranked phrases and trend scores
            credential_repository: Account credentials (accounts mode)
            config: Run parameters
            settings: Application settings
            now_fn: Clock anchoring the window; injectable for tests
        """
        self._settings = settings or get_settings()
        self._config = config or DiscoveryConfig()
        self._trends = trend_repository
        self._credentials = credential_repository
        self._now_fn = now_fn or (lambda: datetime.now(timezone.utc))

        self._normalizer = TextNormalizer()
        self._extractor = PhraseExtractor(self._config, self._normalizer)
        self._ranker = PhraseRanker(self._config)
        self._retry_config = RetryConfig(
            max_attempts=self._settings.http_max_attempts,
            base_delay=self._settings.http_backoff_base_seconds,
            jitter_seconds=self._settings.http_jitter_seconds,
            max_rate_limit_wait=self._settings.http_max_rate_limit_wait_seconds,
        )
        self._metrics = get_metrics()
        self._tracer = get_tracer(__name__)

    @property
    def config(self) -> DiscoveryConfig:
        return self._config

    def _units(self) -> list[tuple[str, str]]:
        units = [("subreddit", name) for name in self._config.subreddit_list]
        units += [("query", q) for q in self._config.query_list]
        return units

    async def _resolve_accounts(self, mode: str) -> tuple[str, list[CredentialState]]:
        """
        Select the credentials a run will use.

        Accounts mode with no stored accounts falls back to anon when a static
        token is configured.

        Raises:
            ConfigurationError: If no credentials are available at all
        """
        if mode == "accounts":
            accounts: list[CredentialState] = []
            if self._credentials is not None:
                accounts = await self._credentials.load_active_credentials()
            if accounts:
                return mode, accounts
            if not self._settings.anon_configured:
                raise ConfigurationError(
                    "No active accounts and no REDDIT_ACCESS_TOKEN to fall back on"
                )
            logger.warning("No active accounts, falling back to anon mode")
            mode = "anon"

        return mode, [
            CredentialState(
                account_id=ANON_ACCOUNT_ID,
                access_token=self._settings.reddit_access_token or "",
            )
        ]

    async def run(self, mode: str = "accounts") -> DiscoveryResult:
        """
        Execute one bounded discovery run.

        Raises:
            ConfigurationError: Before any fetch, if the run cannot start
        """
        self._settings.validate_for_run(mode)
        if not self._units():
            raise ConfigurationError("No subreddits or queries configured")

        mode, accounts = await self._resolve_accounts(mode)

        started = time.monotonic()
        run_at = self._now_fn()
        context = AggregationContext(self._config, now=run_at)
        budget = RequestBudget(self._config.request_budget, self._config.deadline_seconds)
        result = DiscoveryResult(run_at=run_at, mode=mode)
        stats = result.stats
        stats.accounts_total = len(accounts)

        logger.info(
            "Starting discovery run",
            mode=mode,
            accounts=len(accounts),
            subreddits=self._config.subreddit_list,
            queries=self._config.query_list,
            include_comments=self._config.include_comments,
            request_budget=self._config.request_budget,
        )

        with traced(
            self._tracer,
            "discovery.run",
            {"mode": mode, "accounts": len(accounts), "units": len(self._units())},
        ):
            semaphore = asyncio.Semaphore(self._config.account_concurrency)
            outcomes = await asyncio.gather(
                *(
                    self._run_account(account, context, budget, stats, semaphore)
                    for account in accounts
                ),
                return_exceptions=True,
            )
            for account, outcome in zip(accounts, outcomes):
                if isinstance(outcome, Exception):
                    stats.accounts_failed += 1
                    self._metrics.record_account("failed")
                    logger.error(
                        "Account run failed",
                        account=account.account_id,
                        error=str(outcome),
                        error_type=type(outcome).__name__,
                    )
            stats.requests_used = budget.used

            aggregates = context.aggregator.finalize()
            result.ranked = self._ranker.rank(aggregates)
            stats.phrases_ranked = len(result.ranked)

            await self._persist(result)

        self._metrics.record_run(
            time.monotonic() - started,
            stats.phrases_ranked,
            budget.remaining or 0,
        )
        logger.info("Discovery run complete", **asdict(stats))
        return result

    async def _run_account(
        self,
        account: CredentialState,
        context: AggregationContext,
        budget: RequestBudget,
        stats: RunStats,
        semaphore: asyncio.Semaphore,
    ) -> None:
        """Process every unit for one account, in order."""
        log = logger.bind(account=account.account_id)

        async with semaphore:
            if budget.exhausted:
                stats.budget_exhausted = True
                return

            with traced(self._tracer, "discovery.account", {"account": account.account_id}):
                async with HTTPClient(
                    retry_config=self._retry_config,
                    timeout=self._settings.http_timeout_seconds,
                    budget=budget,
                    rate_limiter=RateLimiter(rate=self._settings.reddit_rate_limit),
                    user_agent=self._settings.reddit_user_agent,
                ) as http:
                    client = RedditClient(
                        http,
                        settings=self._settings,
                        listing_limit=self._config.listing_limit,
                        comment_limit=self._config.comment_limit,
                    )
                    store = CredentialStore(
                        refresher=client.refresh_token if client.can_refresh else None,
                        repository=self._credentials,
                        margin_seconds=self._settings.token_refresh_margin_seconds,
                    )

                    for kind, name in self._units():
                        if budget.exhausted:
                            stats.budget_exhausted = True
                            log.info("Request budget exhausted, stopping fetches")
                            break

                        try:
                            await self._fetch_unit(client, store, account, kind, name, context, stats)
                        except BudgetExhaustedError as e:
                            stats.budget_exhausted = True
                            log.info("Request budget exhausted, stopping fetches", detail=str(e))
                            break
                        except AuthenticationError as e:
                            self._skip_account(stats, log, e.reason)
                            return
                        except RateLimitError as e:
                            stats.rate_limited_units += 1
                            self._skip_unit(stats, log, kind, name, e, reason="rate_limited")
                            await self._cool_down(e, log)
                        except HTTPClientError as e:
                            if e.status_code in AUTH_FAILURE_STATUSES:
                                self._skip_account(stats, log, f"rejected token: {e}")
                                return
                            self._skip_unit(stats, log, kind, name, e, reason=e.kind.value)
                        except Exception as e:
                            self._skip_unit(stats, log, kind, name, e, reason="unexpected")
                        else:
                            stats.units_completed += 1

        stats.accounts_completed += 1
        self._metrics.record_account("completed")

    def _skip_account(self, stats: RunStats, log: Any, reason: str) -> None:
        stats.accounts_skipped += 1
        self._metrics.record_account("auth_failed")
        log.warning("Skipping account", reason=reason)

    def _skip_unit(
        self,
        stats: RunStats,
        log: Any,
        kind: str,
        name: str,
        error: Exception,
        reason: str,
    ) -> None:
        stats.units_skipped += 1
        self._metrics.record_unit_skipped(reason)
        log.warning("Skipping fetch unit", **{kind: name}, reason=reason, error=str(error))

    async def _cool_down(self, error: RateLimitError, log: Any) -> None:
        wait = min(max(error.reset_seconds, 0.0), self._settings.http_max_rate_limit_wait_seconds)
        if wait > 0:
            log.info("Cooling down after rate limit", seconds=wait)
            await asyncio.sleep(wait)

    async def _fetch_unit(
        self,
        client: RedditClient,
        store: CredentialStore,
        account: CredentialState,
        kind: str,
        name: str,
        context: AggregationContext,
        stats: RunStats,
    ) -> None:
        """Fetch the configured number of pages for one subreddit or query."""
        with traced(self._tracer, "discovery.fetch_unit", {"unit.kind": kind, "unit.name": name}):
            after: str | None = None
            for _ in range(self._config.pages_per_source):
                token = await store.get_valid_token(account)
                if kind == "subreddit":
                    page = await client.list_items(token, subreddit=name, after=after)
                else:
                    page = await client.list_items(token, query=name, after=after)

                stats.items_fetched += len(page.items)
                stats.items_skipped += page.skipped
                self._metrics.record_items("fetched", len(page.items))
                self._metrics.record_items("skipped", page.skipped)

                for item in page.items:
                    await self._process_item(client, store, account, item, context, stats)

                after = page.after
                if not after:
                    break

    async def _process_item(
        self,
        client: RedditClient,
        store: CredentialStore,
        account: CredentialState,
        item: SourceItem,
        context: AggregationContext,
        stats: RunStats,
    ) -> None:
        """Audit one post, fold its phrases, then optionally mine its comments."""
        if self._config.save_raw_items:
            try:
                if await self._trends.save_raw_item(item):
                    stats.raw_items_saved += 1
            except Exception as e:
                logger.warning("Failed to save raw item", item=item.id, error=str(e))

        if not context.aggregator.in_window(item.created_at):
            stats.items_outside_window += 1
            self._metrics.record_items("outside_window")
            return

        reference = SourceReference(
            item_id=item.id,
            channel=item.channel,
            permalink=item.permalink,
            title=item.title,
            score=item.score,
        )
        await self._fold(
            context,
            stats,
            self._extractor.extract(item.title, item.body),
            reference=reference,
            observed_at=item.created_at,
            engagement=item.engagement_value,
            question=is_question_like(item.title, item.body),
            sentiment=score_sentiment(self._normalizer.normalize(item.text)),
        )

        if not self._config.include_comments:
            return

        try:
            token = await store.get_valid_token(account)
            comments = await client.list_comments(token, item)
        except RateLimitError as e:
            stats.rate_limited_units += 1
            logger.warning("Skipping comment thread", item=item.id, reason="rate_limited", error=str(e))
            await self._cool_down(e, logger.bind(account=account.account_id))
            return
        except HTTPClientError as e:
            if e.status_code in AUTH_FAILURE_STATUSES:
                raise
            logger.warning("Skipping comment thread", item=item.id, reason=e.kind.value, error=str(e))
            return

        stats.comments_fetched += len(comments)
        self._metrics.record_items("fetched", len(comments), kind="comment")
        for comment in comments:
            await self._process_comment(comment, item, context, stats)

    async def _process_comment(
        self,
        comment: CommentItem,
        parent: SourceItem,
        context: AggregationContext,
        stats: RunStats,
    ) -> None:
        reference = SourceReference(
            item_id=comment.id,
            channel=comment.channel,
            permalink=comment.permalink,
            title=parent.title,
            score=comment.score,
        )
        await self._fold(
            context,
            stats,
            self._extractor.extract(None, comment.body),
            reference=reference,
            observed_at=comment.created_at,
            engagement=comment.engagement_value(self._config.comment_weight),
            question=is_question_like(None, comment.body),
            sentiment=score_sentiment(self._normalizer.normalize(comment.body)),
        )

    async def _fold(
        self,
        context: AggregationContext,
        stats: RunStats,
        phrases: dict[str, bool],
        reference: SourceReference,
        observed_at: datetime,
        engagement: float,
        question: bool,
        sentiment: float,
    ) -> None:
        if not phrases:
            return
        samples = [
            PhraseSample(
                phrase=phrase,
                reference=reference,
                observed_at=observed_at,
                engagement=engagement,
                in_title=in_title,
                is_question_like=question,
                sentiment=sentiment,
            )
            for phrase, in_title in phrases.items()
        ]
        accepted = await context.fold(samples)
        rejected = len(samples) - accepted
        stats.samples_accepted += accepted
        stats.samples_rejected += rejected
        self._metrics.record_samples(accepted, rejected)

    async def _persist(self, result: DiscoveryResult) -> None:
        """Upsert every ranked phrase; one failing phrase never stops the rest."""
        stats = result.stats
        day = result.day
        for ranked in result.ranked:
            try:
                await self._trends.upsert_phrase(ranked.phrase, ranked.to_extras())
                await self._trends.upsert_daily_trend_score(ranked.phrase, ranked.score, day)
            except Exception as e:
                stats.persist_errors += 1
                self._metrics.record_persisted("error")
                logger.error("Failed to persist phrase", phrase=ranked.phrase, error=str(e))
            else:
                stats.phrases_persisted += 1
                self._metrics.record_persisted("success")
