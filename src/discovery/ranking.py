"""Phrase ranking for discovered trend phrases.

Scores finalized phrase aggregates with a multiplicative model:
  score = ln(1 + count) * ln(1 + cumulative_score) * intent_boost
          * (1 + 0.05 * title_hits)

Log damping keeps a single viral post from dominating; the title factor
rewards phrases people put in headlines. Scoring is stateless and
side-effect-free.

Components:
- RankedPhrase: Scored phrase with component breakdown
- PhraseRanker: min_count filter, scoring and stable sort
"""

import logging
import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from src.discovery.aggregator import PhraseAggregate
from src.discovery.config import DiscoveryConfig
from src.discovery.signals import detect_seasonal

logger = logging.getLogger(__name__)

# ── Constants ────────────────────────────────────────────

TITLE_HIT_FACTOR = 0.05


# ── Schemas ──────────────────────────────────────────────


@dataclass
class RankedPhrase:
    """A phrase with its computed trend score.

    Attributes:
        phrase: Normalized phrase text.
        score: Composite trend score (higher = trending harder).
        aggregate: The finalized statistics the score was computed from.
        components: Breakdown of score factors for explainability.
    """

    phrase: str
    score: float
    aggregate: PhraseAggregate
    components: dict[str, float] = field(default_factory=dict)

    @property
    def count(self) -> int:
        return self.aggregate.count

    def to_extras(self) -> dict[str, Any]:
        """Metadata persisted alongside the phrase row."""
        agg = self.aggregate
        return {
            "count": agg.count,
            "cumulative_score": round(agg.cumulative_score, 4),
            "title_hits": agg.title_hits,
            "intent_boost": agg.intent_boost,
            "last_seen": agg.last_seen.isoformat() if agg.last_seen else None,
            "sentiment": round(agg.average_sentiment, 3),
            "seasonal": detect_seasonal(self.phrase),
            "channels": sorted(agg.channels),
            "references": [ref.to_dict() for ref in agg.references],
            "components": self.components,
        }


# ── Ranker ───────────────────────────────────────────────


class PhraseRanker:
    """Ranks finalized phrase aggregates by trend score.

    Phrases with ``count < min_count`` are excluded. Equal scores keep the
    aggregator's insertion order (stable sort).
    """

    def __init__(self, config: DiscoveryConfig | None = None) -> None:
        self._config = config or DiscoveryConfig()

    def score(self, aggregate: PhraseAggregate) -> float:
        """Trend score of one aggregate."""
        return self.compute_score(aggregate)[0]

    def compute_score(self, aggregate: PhraseAggregate) -> tuple[float, dict[str, float]]:
        """Compute the trend score for one aggregate.

        Returns:
            Tuple of (score, components dict).
        """
        count_component = math.log1p(aggregate.count)
        engagement_component = math.log1p(max(0.0, aggregate.cumulative_score))
        title_component = 1.0 + TITLE_HIT_FACTOR * aggregate.title_hits

        score = count_component * engagement_component * aggregate.intent_boost * title_component

        components = {
            "count_component": round(count_component, 4),
            "engagement_component": round(engagement_component, 4),
            "intent_boost": aggregate.intent_boost,
            "title_component": round(title_component, 4),
        }
        return score, components

    def rank(self, aggregates: Mapping[str, PhraseAggregate]) -> list[RankedPhrase]:
        """Filter, score and sort aggregates (descending score)."""
        ranked: list[RankedPhrase] = []
        below_min = 0

        for phrase, agg in aggregates.items():
            if agg.count < self._config.min_count:
                below_min += 1
                continue
            score, components = self.compute_score(agg)
            ranked.append(
                RankedPhrase(phrase=phrase, score=score, aggregate=agg, components=components)
            )

        ranked.sort(key=lambda r: r.score, reverse=True)
        if self._config.top_n is not None:
            ranked = ranked[: self._config.top_n]

        logger.info(
            f"Ranked {len(ranked)} phrases "
            f"({below_min} below min_count={self._config.min_count})"
        )
        return ranked
