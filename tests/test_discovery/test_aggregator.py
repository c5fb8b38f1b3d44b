"""Tests for the windowed phrase aggregator."""

import asyncio
import math
from datetime import datetime, timedelta, timezone

import pytest

from src.discovery.aggregator import (
    AggregationContext,
    PhraseSample,
    SourceReference,
    WindowedAggregator,
)
from src.discovery.config import DiscoveryConfig

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def _ref(item_id: str = "p1", channel: str = "EtsySellers") -> SourceReference:
    return SourceReference(item_id=item_id, channel=channel, permalink=f"/r/{channel}/comments/{item_id}/")


@pytest.fixture
def config():
    return DiscoveryConfig()


@pytest.fixture
def aggregator(config):
    return WindowedAggregator(config, now=NOW)


class TestRecencyWeight:
    """Tests for exponential recency decay."""

    def test_weight_is_one_at_age_zero(self, aggregator):
        """A sample observed at now has full weight."""
        assert aggregator.recency_weight(NOW) == pytest.approx(1.0)

    def test_weight_is_half_at_half_life(self, aggregator, config):
        """One half-life halves the weight."""
        observed = NOW - timedelta(days=config.half_life_days)
        assert aggregator.recency_weight(observed) == pytest.approx(0.5)

    def test_future_sample_has_age_zero(self, aggregator):
        """Timestamps after now are clamped to age 0."""
        assert aggregator.age_days(NOW + timedelta(hours=3)) == 0.0
        assert aggregator.recency_weight(NOW + timedelta(hours=3)) == pytest.approx(1.0)

    def test_naive_timestamps_treated_as_utc(self, aggregator):
        """Naive datetimes are interpreted as UTC."""
        naive = (NOW - timedelta(days=1)).replace(tzinfo=None)
        assert aggregator.age_days(naive) == pytest.approx(1.0)


class TestAddSample:
    """Tests for WindowedAggregator.add_sample."""

    def test_sample_outside_window_rejected(self, aggregator, config):
        """Samples older than the lookback never touch an aggregate."""
        old = NOW - timedelta(days=config.lookback_days, seconds=1)

        accepted = aggregator.add_sample("custom gift ideas", 10, old, True, False, _ref())

        assert accepted is False
        assert "custom gift ideas" not in aggregator
        assert aggregator.rejected_outside_window == 1

    def test_sample_at_window_edge_accepted(self, aggregator, config):
        """A sample exactly lookback_days old is still inside."""
        edge = NOW - timedelta(days=config.lookback_days)
        assert aggregator.add_sample("custom gift ideas", 10, edge, False, False, _ref()) is True

    def test_contribution_applies_bonuses_and_decay(self, aggregator, config):
        """Title and question bonuses multiply the decayed engagement."""
        observed = NOW - timedelta(days=1)
        aggregator.add_sample("custom gift ideas", 10, observed, True, True, _ref())

        agg = aggregator.get("custom gift ideas")
        decay = math.exp(-math.log(2) / config.half_life_days * 1.0)
        expected = 10 * config.title_bonus * config.question_bonus * decay
        assert agg.cumulative_score == pytest.approx(expected)
        assert agg.count == 1
        assert agg.title_hits == 1
        assert agg.last_seen == observed

    def test_negative_engagement_clamped(self, aggregator):
        """Downvoted items still count but contribute nothing."""
        aggregator.add_sample("custom gift ideas", -15, NOW, False, False, _ref())

        agg = aggregator.get("custom gift ideas")
        assert agg.count == 1
        assert agg.cumulative_score == 0.0

    def test_count_and_score_never_decrease(self, aggregator):
        """Each accepted sample grows count and keeps cumulative_score monotonic."""
        previous_score = 0.0
        for i, engagement in enumerate([5, 0, -3, 12]):
            aggregator.add_sample("wedding svg bundle", engagement, NOW, False, False, _ref(f"p{i}"))
            agg = aggregator.get("wedding svg bundle")
            assert agg.count == i + 1
            assert agg.cumulative_score >= previous_score
            previous_score = agg.cumulative_score

    def test_last_seen_is_latest(self, aggregator):
        """last_seen keeps the maximum timestamp, regardless of arrival order."""
        newer = NOW - timedelta(hours=1)
        older = NOW - timedelta(days=2)
        aggregator.add_sample("custom mugs", 1, newer, False, False, _ref("a"))
        aggregator.add_sample("custom mugs", 1, older, False, False, _ref("b"))

        assert aggregator.get("custom mugs").last_seen == newer

    def test_intent_latch_ratchets_once(self, aggregator, config):
        """A high-intent token latches intent_boost, which never drops back."""
        aggregator.add_sample("wall art ideas", 1, NOW, False, False, _ref("a"))
        assert aggregator.get("wall art ideas").intent_boost == 1.0

        aggregator.add_sample("best custom gift", 1, NOW, False, False, _ref("b"))
        assert aggregator.get("best custom gift").intent_boost == config.intent_multiplier

        aggregator.add_sample("best custom gift", 1, NOW, False, False, _ref("c"))
        assert aggregator.get("best custom gift").intent_boost == config.intent_multiplier

    def test_references_first_five_distinct_win(self, aggregator):
        """Only the first five distinct items are kept as references."""
        for item_id in ["a", "a", "b", "c", "d", "e", "f", "g"]:
            aggregator.add_sample("custom mugs", 1, NOW, False, False, _ref(item_id))

        agg = aggregator.get("custom mugs")
        assert [r.item_id for r in agg.references] == ["a", "b", "c", "d", "e"]
        assert agg.count == 8

    def test_sentiment_and_channels_accumulate(self, aggregator):
        """Sentiment is averaged and channels collected."""
        aggregator.add_sample("custom mugs", 1, NOW, False, False, _ref("a", "Etsy"), sentiment=1.0)
        aggregator.add_sample("custom mugs", 1, NOW, False, False, _ref("b", "EtsySellers"), sentiment=0.0)

        agg = aggregator.get("custom mugs")
        assert agg.average_sentiment == pytest.approx(0.5)
        assert agg.channels == {"Etsy", "EtsySellers"}

    def test_add_phrase_sample(self, aggregator):
        """add() folds a PhraseSample."""
        sample = PhraseSample(
            phrase="custom mugs",
            reference=_ref(),
            observed_at=NOW,
            engagement=4,
            in_title=True,
        )
        assert aggregator.add(sample) is True
        assert aggregator.get("custom mugs").title_hits == 1


class TestFinalize:
    """Tests for WindowedAggregator.finalize."""

    def test_finalize_returns_read_only_view(self, aggregator):
        """The finalized mapping cannot be mutated."""
        aggregator.add_sample("custom mugs", 1, NOW, False, False, _ref())
        aggregates = aggregator.finalize()

        assert set(aggregates) == {"custom mugs"}
        with pytest.raises(TypeError):
            aggregates["other"] = None  # type: ignore[index]

    def test_add_after_finalize_raises(self, aggregator):
        """No samples are accepted once scoring has begun."""
        aggregator.finalize()
        with pytest.raises(RuntimeError):
            aggregator.add_sample("custom mugs", 1, NOW, False, False, _ref())

    def test_finalize_idempotent(self, aggregator):
        """Calling finalize twice returns equal views."""
        assert dict(aggregator.finalize()) == dict(aggregator.finalize())
        assert aggregator.is_finalized


class TestAggregationContext:
    """Tests for the per-run aggregation context."""

    def test_contexts_do_not_share_state(self, config):
        """Two runs never see each other's phrases."""
        first = AggregationContext(config, now=NOW)
        second = AggregationContext(config, now=NOW)
        first.aggregator.add_sample("custom mugs", 1, NOW, False, False, _ref())

        assert "custom mugs" in first.aggregator
        assert "custom mugs" not in second.aggregator

    @pytest.mark.asyncio
    async def test_concurrent_folds_are_serialized(self, config):
        """Concurrent folds from several tasks lose no samples."""
        context = AggregationContext(config, now=NOW)

        async def writer(prefix: str) -> int:
            total = 0
            for i in range(20):
                samples = [
                    PhraseSample(phrase="custom mugs", reference=_ref(f"{prefix}{i}"), observed_at=NOW, engagement=1),
                    PhraseSample(phrase="wedding svg bundle", reference=_ref(f"{prefix}{i}"), observed_at=NOW, engagement=2),
                ]
                total += await context.fold(samples)
                await asyncio.sleep(0)
            return total

        accepted = await asyncio.gather(writer("a"), writer("b"), writer("c"))

        assert sum(accepted) == 120
        assert context.aggregator.get("custom mugs").count == 60
        assert context.aggregator.get("wedding svg bundle").cumulative_score == pytest.approx(120.0)
