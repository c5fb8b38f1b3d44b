"""Lexicon-based side signals attached to discovered phrases.

Both helpers are pure lookups: a polarity score from a fixed word list and a
seasonal keyword match. They enrich the persisted phrase metadata and never
influence the trend score.
"""

import re
from typing import Any

from src.config.vocabulary import (
    INTENSIFIERS,
    NEGATIVE_WORDS,
    POSITIVE_WORDS,
    SEASONAL_KEYWORDS,
)

INTENSIFIER_WEIGHT = 1.5


def score_sentiment(tokens: list[str]) -> float:
    """
    Score lexicon polarity of a token list.

    An intensifier multiplies the next polar word by 1.5.

    Returns:
        Polarity in [-1.0, 1.0]; 0.0 when no polar word is present
    """
    score = 0.0
    polar_words = 0
    intensifier = 1.0

    for token in tokens:
        if token in INTENSIFIERS:
            intensifier = INTENSIFIER_WEIGHT
            continue
        if token in POSITIVE_WORDS:
            score += intensifier
        elif token in NEGATIVE_WORDS:
            score -= intensifier
        else:
            continue
        polar_words += 1
        intensifier = 1.0

    if polar_words == 0:
        return 0.0
    return max(-1.0, min(1.0, score / polar_words))


def detect_seasonal(phrase: str) -> dict[str, Any]:
    """
    Match a phrase against seasonal keywords.

    Returns:
        ``{"seasonal": False}`` or the first matching season with its peak
        months and lead time in days
    """
    text = phrase.lower()
    for keyword, data in SEASONAL_KEYWORDS.items():
        if re.search(rf"\b{re.escape(keyword)}s?\b", text):
            return {
                "seasonal": True,
                "season": keyword,
                "lead_time_days": data["lead_time_days"],
                "months": list(data["months"]),
            }
    return {"seasonal": False}
