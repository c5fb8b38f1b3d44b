"""Run parameters for the discovery pipeline.

Uses Pydantic settings for environment-based configuration,
following the same pattern as other service configs in the project.
"""

import logging
from pathlib import Path
import yaml
from pydantic import Field, PrivateAttr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.config.settings import split_list
from src.config.vocabulary import DEFAULT_SUBREDDITS

logger = logging.getLogger(__name__)

SOURCE_FILE_KEYS = ("subreddits", "queries")


def load_source_file(path: str | Path | None) -> dict[str, list[str]]:
    """
    Read subreddit and query lists from a YAML file.

    The file holds optional top-level ``subreddits:`` and ``queries:`` lists.
    A missing file yields empty lists.

    Raises:
        ValueError: If the file is not valid YAML or the lists are malformed
    """
    sources: dict[str, list[str]] = {key: [] for key in SOURCE_FILE_KEYS}
    if not path:
        return sources

    path = Path(path)
    if not path.is_file():
        logger.debug(f"No source file at {path}")
        return sources

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        return sources
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at the top level")

    for key in SOURCE_FILE_KEYS:
        values = data.get(key) or []
        if not isinstance(values, list):
            raise ValueError(f"{path}: '{key}' must be a list")
        for value in values:
            if isinstance(value, (dict, list)) or value is None:
                raise ValueError(f"{path}: '{key}' entries must be strings")
            value = str(value).strip()
            if value and value not in sources[key]:
                sources[key].append(value)

    logger.info(
        f"Loaded {len(sources['subreddits'])} subreddits and "
        f"{len(sources['queries'])} queries from {path}"
    )
    return sources


class DiscoveryConfig(BaseSettings):
    """
    Configuration for a phrase discovery run.

    All settings can be overridden via environment variables with DISCOVERY_ prefix.
    Example: DISCOVERY_MIN_COUNT=5

    Attributes:
        min_n: Shortest n-gram window (tokens).
        max_n: Longest n-gram window (tokens).
        min_count: Minimum samples for a phrase to be ranked.
        lookback_days: Trailing window; older samples are discarded.
        half_life_days: Recency decay half-life.
        request_budget: Maximum HTTP attempts per run (all accounts).
        config_path: Optional YAML file with extra subreddits/queries lists.
    """

    model_config = SettingsConfigDict(
        env_prefix="DISCOVERY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Extraction
    min_n: int = Field(default=2, ge=1, le=10, description="Shortest n-gram window.")
    max_n: int = Field(default=5, ge=1, le=10, description="Longest n-gram window.")
    min_phrase_chars: int = Field(
        default=8,
        ge=1,
        description="Joined phrases shorter than this are discarded.",
    )
    max_phrases_per_item: int = Field(
        default=300,
        ge=1,
        description="Cap on distinct phrases produced by one source item.",
    )

    # Aggregation
    lookback_days: float = Field(default=30.0, gt=0.0)
    half_life_days: float = Field(default=30.0, gt=0.0)
    title_bonus: float = Field(
        default=1.5,
        ge=1.0,
        description="Contribution multiplier for phrases found in a title.",
    )
    question_bonus: float = Field(
        default=1.2,
        ge=1.0,
        description="Contribution multiplier for question/advice posts.",
    )
    comment_weight: float = Field(
        default=0.5,
        ge=0.0,
        description="Engagement multiplier applied to comment samples.",
    )
    intent_multiplier: float = Field(
        default=1.1,
        ge=1.0,
        le=2.0,
        description="Intent boost latched by high commercial intent terms.",
    )
    max_references: int = Field(default=5, ge=0, le=50)

    # Ranking
    min_count: int = Field(default=3, ge=1)
    top_n: int | None = Field(
        default=None,
        ge=1,
        description="Keep only the top N ranked phrases (None keeps all).",
    )

    # Fetching
    subreddits: str = Field(
        default=",".join(DEFAULT_SUBREDDITS),
        description="Comma- or newline-separated subreddit names.",
    )
    queries: str = Field(
        default="",
        description="Comma- or newline-separated search queries.",
    )
    config_path: str | None = Field(
        default="config/reddit.yml",
        description="YAML file whose subreddits/queries lists are merged with the above.",
    )
    listing_limit: int = Field(default=50, ge=1, le=100)
    pages_per_source: int = Field(default=1, ge=1, le=10)
    include_comments: bool = Field(
        default=False,
        description="Fetch comment threads (one extra request per post).",
    )
    comment_limit: int = Field(default=100, ge=1, le=500)
    request_budget: int = Field(default=200, ge=1)
    deadline_seconds: float | None = Field(default=None, gt=0.0)
    account_concurrency: int = Field(default=1, ge=1, le=16)
    save_raw_items: bool = Field(
        default=True,
        description="Hand each fetched post to the repository audit hook.",
    )

    # Output keys
    source: str = "reddit"
    market: str = "us"

    _file_sources: dict[str, list[str]] = PrivateAttr(default_factory=dict)

    @model_validator(mode="after")
    def _check_window_bounds(self) -> "DiscoveryConfig":
        if self.max_n < self.min_n:
            raise ValueError("max_n must be >= min_n")
        return self

    @model_validator(mode="after")
    def _load_source_file(self) -> "DiscoveryConfig":
        self._file_sources = load_source_file(self.config_path)
        return self

    @property
    def subreddit_list(self) -> list[str]:
        """Configured subreddits then file subreddits, stripped of any ``r/`` prefix."""
        names = []
        for name in split_list(self.subreddits) + self._file_sources.get("subreddits", []):
            if name.lower().startswith("r/"):
                name = name[2:]
            if name and name not in names:
                names.append(name)
        return names

    @property
    def query_list(self) -> list[str]:
        """Configured search queries then file queries."""
        queries = split_list(self.queries)
        for query in self._file_sources.get("queries", []):
            if query not in queries:
                queries.append(query)
        return queries
