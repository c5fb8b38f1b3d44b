"""Windowed per-phrase aggregation with recency decay and engagement weighting.

Folds phrase samples into running per-phrase statistics for a single run.
The window is a fixed trailing horizon anchored at the run's "now"; nothing
is persisted between runs.

Components:
- SourceReference: Traceability pointer back to a source item
- PhraseSample: One observation of a phrase
- PhraseAggregate: Running statistics for one phrase
- WindowedAggregator: Window gate, decay and folding
- AggregationContext: Per-run aggregator plus the lock serialising writers
"""

import asyncio
import logging
import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from types import MappingProxyType
from typing import Any

from src.config.vocabulary import INTENT_TERMS
from src.discovery.config import DiscoveryConfig

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400.0


@dataclass(frozen=True)
class SourceReference:
    """Pointer to the item a sample came from."""

    item_id: str
    channel: str
    permalink: str = ""
    title: str | None = None
    score: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.item_id,
            "subreddit": self.channel,
            "url": f"https://reddit.com{self.permalink}" if self.permalink else None,
            "title": self.title or "",
            "score": self.score,
        }


@dataclass(frozen=True)
class PhraseSample:
    """One observation of a candidate phrase."""

    phrase: str
    reference: SourceReference
    observed_at: datetime
    engagement: float
    in_title: bool = False
    is_question_like: bool = False
    sentiment: float = 0.0


@dataclass
class PhraseAggregate:
    """
    Running statistics for one phrase within the current window.

    ``count``, ``cumulative_score`` and ``intent_boost`` never decrease
    during a run.

    Attributes:
        phrase: Normalized, space-joined phrase text.
        count: Number of accepted samples.
        cumulative_score: Sum of weighted sample contributions.
        last_seen: Latest observed timestamp.
        title_hits: Samples where the phrase appeared in a title.
        intent_boost: 1.0 until a high-intent token latches it up.
        references: First few distinct source items (first-N-wins).
        sentiment_sum: Sum of per-sample lexicon polarity.
        channels: Subreddits the phrase was seen in.
    """

    phrase: str
    count: int = 0
    cumulative_score: float = 0.0
    last_seen: datetime | None = None
    title_hits: int = 0
    intent_boost: float = 1.0
    references: list[SourceReference] = field(default_factory=list)
    sentiment_sum: float = 0.0
    channels: set[str] = field(default_factory=set)

    @property
    def average_sentiment(self) -> float:
        return self.sentiment_sum / self.count if self.count else 0.0


class WindowedAggregator:
    """
    Accumulates phrase samples inside a trailing lookback window.

    Per-sample contribution:
        max(0, engagement) * title_bonus? * question_bonus? * recency_weight

    where recency_weight = exp(-ln(2) / half_life_days * age_days).

    Usage:
        aggregator = WindowedAggregator(config, now=run_started_at)
        aggregator.add_sample("custom gift ideas", 12, observed_at, True, False, ref)
        aggregates = aggregator.finalize()
    """

    def __init__(
        self,
        config: DiscoveryConfig | None = None,
        now: datetime | None = None,
        intent_terms: frozenset[str] | None = None,
    ):
        self.config = config or DiscoveryConfig()
        self.now = now or datetime.now(timezone.utc)
        if self.now.tzinfo is None:
            self.now = self.now.replace(tzinfo=timezone.utc)
        self.window_start = self.now - timedelta(days=self.config.lookback_days)
        self.intent_terms = INTENT_TERMS if intent_terms is None else intent_terms

        self._decay_rate = math.log(2) / self.config.half_life_days
        self._aggregates: dict[str, PhraseAggregate] = {}
        self._finalized = False
        self.rejected_outside_window = 0

    def __len__(self) -> int:
        return len(self._aggregates)

    def __contains__(self, phrase: object) -> bool:
        return phrase in self._aggregates

    @property
    def is_finalized(self) -> bool:
        return self._finalized

    def in_window(self, observed_at: datetime) -> bool:
        """Check whether a timestamp falls inside the lookback window."""
        return _as_utc(observed_at) >= self.window_start

    def age_days(self, observed_at: datetime) -> float:
        """Age relative to the run's now; future timestamps count as age 0."""
        delta = self.now - _as_utc(observed_at)
        return max(0.0, delta.total_seconds() / SECONDS_PER_DAY)

    def recency_weight(self, observed_at: datetime) -> float:
        """1.0 at age 0, 0.5 at one half-life."""
        return math.exp(-self._decay_rate * self.age_days(observed_at))

    def contribution(
        self,
        engagement: float,
        observed_at: datetime,
        in_title: bool,
        is_question_like: bool,
    ) -> float:
        """Weighted contribution of one sample to a phrase's cumulative score."""
        value = max(0.0, float(engagement))
        if in_title:
            value *= self.config.title_bonus
        if is_question_like:
            value *= self.config.question_bonus
        return value * self.recency_weight(observed_at)

    def add_sample(
        self,
        phrase: str,
        engagement: float,
        observed_at: datetime,
        in_title: bool,
        is_question_like: bool,
        reference: SourceReference,
        sentiment: float = 0.0,
    ) -> bool:
        """
        Fold one sample into its phrase aggregate.

        Returns:
            False if the sample fell outside the window and was discarded

        Raises:
            RuntimeError: If called after finalize()
        """
        if self._finalized:
            raise RuntimeError("Aggregator is finalized; no more samples accepted")

        if not self.in_window(observed_at):
            self.rejected_outside_window += 1
            return False

        agg = self._aggregates.get(phrase)
        if agg is None:
            agg = PhraseAggregate(phrase=phrase)
            self._aggregates[phrase] = agg

        observed_at = _as_utc(observed_at)
        agg.count += 1
        agg.cumulative_score += self.contribution(
            engagement, observed_at, in_title, is_question_like
        )
        if agg.last_seen is None or observed_at > agg.last_seen:
            agg.last_seen = observed_at
        if in_title:
            agg.title_hits += 1
        if agg.intent_boost < self.config.intent_multiplier and self._has_intent(phrase):
            agg.intent_boost = self.config.intent_multiplier
        agg.sentiment_sum += sentiment
        agg.channels.add(reference.channel)

        if len(agg.references) < self.config.max_references and not any(
            r.item_id == reference.item_id for r in agg.references
        ):
            agg.references.append(reference)

        return True

    def add(self, sample: PhraseSample) -> bool:
        """Fold a PhraseSample (see add_sample)."""
        return self.add_sample(
            sample.phrase,
            sample.engagement,
            sample.observed_at,
            sample.in_title,
            sample.is_question_like,
            sample.reference,
            sample.sentiment,
        )

    def get(self, phrase: str) -> PhraseAggregate | None:
        return self._aggregates.get(phrase)

    def finalize(self) -> Mapping[str, PhraseAggregate]:
        """
        Close the window for writing and return a read-only view.

        Idempotent; later add_sample calls raise RuntimeError.
        """
        if not self._finalized:
            self._finalized = True
            logger.info(
                f"Aggregation finalized: phrases={len(self._aggregates)}, "
                f"rejected_outside_window={self.rejected_outside_window}"
            )
        return MappingProxyType(self._aggregates)

    def _has_intent(self, phrase: str) -> bool:
        return any(token in self.intent_terms for token in phrase.split())


class AggregationContext:
    """
    Aggregation state for exactly one run.

    Constructed explicitly at run start and dropped after persistence, so
    repeated or concurrent runs never share a phrase map. Writers from
    concurrent account tasks fold under ``lock``.
    """

    def __init__(self, config: DiscoveryConfig, now: datetime | None = None):
        self.aggregator = WindowedAggregator(config, now=now)
        self.lock = asyncio.Lock()

    @property
    def now(self) -> datetime:
        return self.aggregator.now

    async def fold(self, samples: list[PhraseSample]) -> int:
        """Fold a batch of samples atomically; returns how many were accepted."""
        async with self.lock:
            return sum(1 for sample in samples if self.aggregator.add(sample))


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
