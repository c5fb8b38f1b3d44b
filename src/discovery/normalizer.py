"""
Text normalization for phrase discovery.

Strips structural noise from social content (URLs, HTML entities, markdown)
and tokenizes what remains into lowercase lexical words. The order of the
passes matters: URLs must be blanked before punctuation is stripped, or their
path segments leak through as plausible-looking words.
"""

import logging
import re

from src.config.vocabulary import NOISE_TOKENS

logger = logging.getLogger(__name__)

URL_PATTERN = re.compile(r"(?:https?://|www\.)\S+", re.IGNORECASE)
HTML_ENTITY_PATTERN = re.compile(r"&(?:[a-z][a-z0-9]*|#\d+|#x[0-9a-f]+);", re.IGNORECASE)
MARKDOWN_PATTERN = re.compile(r"[`*_~>|#=\[\](){}\\]")
APOSTROPHE_PATTERN = re.compile(r"['’]")
NON_WORD_PATTERN = re.compile(r"[^\w\s-]")

NUMERIC_PATTERN = re.compile(r"^\d+$")
HEX_PATTERN = re.compile(r"^(?=[a-f]*\d)[0-9a-f]{6,}$")
LETTER_DIGIT_PATTERN = re.compile(r"[a-z]\d")
TOKEN_SHAPE = re.compile(r"^[a-z][a-z-]*$")

MAX_TOKEN_LENGTH = 40


class TextNormalizer:
    """
    Rule-based cleaner and tokenizer.

    Every token returned by ``normalize`` matches ``^[a-z][a-z-]*$``.

    Usage:
        >>> TextNormalizer().normalize("Best **custom** gifts! https://x.co/a")
        ['best', 'custom', 'gifts']
    """

    def __init__(
        self,
        noise_tokens: frozenset[str] | set[str] | None = None,
        max_token_length: int = MAX_TOKEN_LENGTH,
    ):
        self.noise_tokens = frozenset(NOISE_TOKENS if noise_tokens is None else noise_tokens)
        self.max_token_length = max_token_length

    def clean(self, raw_text: str | None) -> str:
        """Apply the stripping passes, returning lowercase text."""
        if not raw_text:
            return ""

        text = URL_PATTERN.sub(" ", raw_text)
        text = HTML_ENTITY_PATTERN.sub(" ", text)
        text = MARKDOWN_PATTERN.sub(" ", text)
        # Contractions collapse ("don't" -> "dont") instead of splitting
        text = APOSTROPHE_PATTERN.sub("", text)
        text = NON_WORD_PATTERN.sub(" ", text)
        return text.lower()

    def is_valid_token(self, token: str) -> bool:
        """Check a lowercase token against the drop rules."""
        if not token or len(token) > self.max_token_length:
            return False
        if NUMERIC_PATTERN.match(token):
            return False
        if HEX_PATTERN.match(token):
            return False
        if token in self.noise_tokens:
            return False
        if LETTER_DIGIT_PATTERN.search(token):
            return False
        return bool(TOKEN_SHAPE.match(token))

    def normalize(self, raw_text: str | None) -> list[str]:
        """
        Clean and tokenize text.

        Args:
            raw_text: Unstructured post/comment text (may be None)

        Returns:
            Lexical tokens in their original order
        """
        return [t for t in self.clean(raw_text).split() if self.is_valid_token(t)]
