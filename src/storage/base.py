"""
Abstract persistence boundary for the discovery pipeline.

The pipeline only knows these interfaces; implementations wrap the
in-memory store (dry runs, tests) or PostgreSQL. Every write is an
idempotent upsert so re-running the same window never duplicates rows.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Any

from src.credentials.schemas import CredentialState
from src.ingestion.schemas import SourceItem


class TrendRepository(ABC):
    """
    Sink for ranked phrases, daily trend scores and raw item audit rows.

    Keys:
        - phrase rows: (phrase, source, market)
        - daily scores: (phrase, source, day)
        - raw items: (source, kind, item id)
    """

    def __init__(self, source: str = "reddit", market: str = "us"):
        self.source = source
        self.market = market

    @abstractmethod
    async def upsert_phrase(self, phrase: str, extras: dict[str, Any]) -> None:
        """
        Insert or update a phrase row.

        Args:
            phrase: Normalized phrase text
            extras: Metadata (counts, references, sentiment, seasonality)
        """
        ...

    @abstractmethod
    async def upsert_daily_trend_score(self, phrase: str, score: float, day: date) -> None:
        """Insert or overwrite the trend score of a phrase for one day."""
        ...

    @abstractmethod
    async def save_raw_item(self, item: SourceItem) -> bool:
        """
        Store a fetched item for audit, ignoring duplicates.

        Returns:
            True if the item was new
        """
        ...


class CredentialRepository(ABC):
    """Source of account credentials and sink for refreshed tokens."""

    @abstractmethod
    async def load_active_credentials(self) -> list[CredentialState]:
        """Load credentials of every active account."""
        ...

    @abstractmethod
    async def save_refreshed_token(
        self,
        account_id: str,
        access_token: str,
        expires_at: datetime,
    ) -> None:
        """Persist a refreshed access token and its expiry."""
        ...
