"""In-memory repositories for dry runs and tests."""

import logging
from dataclasses import replace
from datetime import date, datetime
from typing import Any

from src.credentials.schemas import CredentialState
from src.ingestion.schemas import SourceItem
from src.storage.base import CredentialRepository, TrendRepository

logger = logging.getLogger(__name__)


class InMemoryTrendRepository(TrendRepository):
    """
    Dict-backed trend sink with the same keys as the SQL tables.

    Writes overwrite by key, so repeated runs leave one row per key.
    """

    def __init__(self, source: str = "reddit", market: str = "us"):
        super().__init__(source=source, market=market)
        self.phrases: dict[tuple[str, str, str], dict[str, Any]] = {}
        self.daily_scores: dict[tuple[str, str, date], float] = {}
        self.raw_items: dict[tuple[str, str, str], SourceItem] = {}

    async def upsert_phrase(self, phrase: str, extras: dict[str, Any]) -> None:
        self.phrases[(phrase, self.source, self.market)] = dict(extras)

    async def upsert_daily_trend_score(self, phrase: str, score: float, day: date) -> None:
        self.daily_scores[(phrase, self.source, day)] = score

    async def save_raw_item(self, item: SourceItem) -> bool:
        key = (self.source, item.kind, item.id)
        if key in self.raw_items:
            return False
        self.raw_items[key] = item
        return True

    def scores_for(self, day: date) -> dict[str, float]:
        """Daily scores for one day, keyed by phrase."""
        return {
            phrase: score
            for (phrase, _source, score_day), score in self.daily_scores.items()
            if score_day == day
        }


class InMemoryCredentialRepository(CredentialRepository):
    """Credential store seeded with a fixed account list."""

    def __init__(self, accounts: list[CredentialState] | None = None):
        self._accounts = {a.account_id: a for a in accounts or []}
        self.saved_tokens: list[tuple[str, str, datetime]] = []

    async def load_active_credentials(self) -> list[CredentialState]:
        # Copies, so a run mutating its state never leaks into the next load
        return [replace(a) for a in self._accounts.values()]

    async def save_refreshed_token(
        self,
        account_id: str,
        access_token: str,
        expires_at: datetime,
    ) -> None:
        self.saved_tokens.append((account_id, access_token, expires_at))
        account = self._accounts.get(account_id)
        if account is None:
            logger.warning(f"Refreshed token for unknown account {account_id}")
            return
        account.access_token = access_token
        account.expires_at = expires_at
