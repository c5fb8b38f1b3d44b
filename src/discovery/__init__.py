"""
Phrase discovery pipeline.

Turns fetched social items into ranked trend phrases:
normalize -> extract n-grams -> windowed aggregation -> ranking.
"""

from src.discovery.aggregator import (
    AggregationContext,
    PhraseAggregate,
    PhraseSample,
    SourceReference,
    WindowedAggregator,
)
from src.discovery.config import DiscoveryConfig
from src.discovery.extractor import PhraseExtractor, is_question_like
from src.discovery.normalizer import TextNormalizer
from src.discovery.ranking import PhraseRanker, RankedPhrase
from src.discovery.signals import detect_seasonal, score_sentiment

__all__ = [
    "AggregationContext",
    "DiscoveryConfig",
    "PhraseAggregate",
    "PhraseExtractor",
    "PhraseRanker",
    "PhraseSample",
    "RankedPhrase",
    "SourceReference",
    "TextNormalizer",
    "WindowedAggregator",
    "detect_seasonal",
    "is_question_like",
    "score_sentiment",
]
