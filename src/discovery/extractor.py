"""
Candidate phrase extraction from normalized tokens.

Generates contiguous n-gram windows and keeps only those that survive the
stance filters: stop-word edge trimming, banned tokens, and the
domain-relevance requirement. The domain check is the main precision lever;
without it almost every 2-5-gram of generic text would qualify.
"""

import logging
import re

from src.config.vocabulary import BANNED_TOKENS, DOMAIN_TERMS, QUESTION_CUES, STOP_WORDS
from src.discovery.config import DiscoveryConfig
from src.discovery.normalizer import TextNormalizer

logger = logging.getLogger(__name__)

_QUESTION_CUE_PATTERN = re.compile(
    r"^\s*(?:" + "|".join(re.escape(cue) for cue in QUESTION_CUES) + r")\b",
    re.IGNORECASE,
)


def is_question_like(title: str | None, body: str | None = None) -> bool:
    """
    Check whether a post reads as a question or advice request.

    True when the title contains a question mark, or the title (or the body
    when there is no title) opens with a question/advice cue.
    """
    title = title or ""
    if "?" in title:
        return True
    lead = title if title.strip() else (body or "")
    return bool(_QUESTION_CUE_PATTERN.match(lead))


class PhraseExtractor:
    """
    N-gram phrase extractor with domain filtering.

    Two independently tokenized passes are made over each item: title only,
    then title + body. A phrase first seen in the title pass is marked
    ``in_title=True`` and keeps that status when the combined pass finds it
    again.

    Usage:
        >>> extractor = PhraseExtractor()
        >>> extractor.extract("Best custom gift ideas for mom", "")
        {'best custom': True, 'custom gift': True, ...}
    """

    def __init__(
        self,
        config: DiscoveryConfig | None = None,
        normalizer: TextNormalizer | None = None,
        domain_terms: frozenset[str] | None = None,
        stop_words: frozenset[str] | None = None,
        banned_tokens: frozenset[str] | None = None,
    ):
        self.config = config or DiscoveryConfig()
        self.normalizer = normalizer or TextNormalizer()
        self.domain_terms = DOMAIN_TERMS if domain_terms is None else domain_terms
        self.stop_words = STOP_WORDS if stop_words is None else stop_words
        self.banned_tokens = BANNED_TOKENS if banned_tokens is None else banned_tokens

    def extract(self, title: str | None, body: str | None) -> dict[str, bool]:
        """
        Extract candidate phrases from one item.

        Args:
            title: Post title (None for comments)
            body: Post self-text or comment body

        Returns:
            Mapping of phrase -> in_title, in discovery order, with at most
            ``max_phrases_per_item`` entries
        """
        phrases: dict[str, bool] = {}
        limit = self.config.max_phrases_per_item

        title_tokens = self.normalizer.normalize(title)
        combined_tokens = self.normalizer.normalize(f"{title or ''}\n{body or ''}")

        for tokens, in_title in ((title_tokens, True), (combined_tokens, False)):
            for phrase in self._candidates(tokens):
                if phrase in phrases:
                    continue
                if len(phrases) >= limit:
                    logger.debug(f"Phrase cap of {limit} reached, dropping the rest")
                    return phrases
                phrases[phrase] = in_title

        return phrases

    def _candidates(self, tokens: list[str]):
        """Yield surviving phrases for every window of length min_n..max_n."""
        min_n = self.config.min_n
        max_n = self.config.max_n
        min_chars = self.config.min_phrase_chars

        for n in range(min_n, max_n + 1):
            for start in range(len(tokens) - n + 1):
                window = self._trim(tokens[start:start + n])
                if len(window) < min_n:
                    continue
                if any(t in self.banned_tokens for t in window):
                    continue
                if not any(t in self.domain_terms for t in window):
                    continue
                phrase = " ".join(window)
                if len(phrase) < min_chars:
                    continue
                yield phrase

    def _trim(self, window: list[str]) -> list[str]:
        """Drop stop-words from both ends of a window."""
        lo, hi = 0, len(window)
        while lo < hi and window[lo] in self.stop_words:
            lo += 1
        while hi > lo and window[hi - 1] in self.stop_words:
            hi -= 1
        return window[lo:hi]
