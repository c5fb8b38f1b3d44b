"""
PostgreSQL repositories for discovered phrases and account credentials.

Tables:
    - keywords: one row per (term, source, market) with discovery metadata
    - trend_series: one score per (term, source, recorded_on)
    - raw_sources: audit copy of fetched items, duplicates ignored
    - marketplace_accounts: OAuth credentials per connected account
"""

import json
import logging
from datetime import date, datetime
from typing import Any

from src.credentials.schemas import CredentialState
from src.ingestion.schemas import SourceItem
from src.storage.base import CredentialRepository, TrendRepository
from src.storage.database import Database

logger = logging.getLogger(__name__)

_CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS keywords (
    term             TEXT NOT NULL,
    source           TEXT NOT NULL,
    market           TEXT NOT NULL,
    is_seed          BOOLEAN NOT NULL DEFAULT FALSE,
    ingest_source    TEXT NOT NULL,
    ingest_metadata  JSONB NOT NULL DEFAULT '{}',
    created_at       TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at       TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    PRIMARY KEY (term, source, market)
);

CREATE TABLE IF NOT EXISTS trend_series (
    term         TEXT NOT NULL,
    source       TEXT NOT NULL,
    recorded_on  DATE NOT NULL,
    trend_score  DOUBLE PRECISION NOT NULL,
    extras       JSONB NOT NULL DEFAULT '{}',
    updated_at   TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    PRIMARY KEY (term, source, recorded_on)
);

CREATE INDEX IF NOT EXISTS idx_trend_series_recorded_on
    ON trend_series(source, recorded_on DESC);

CREATE TABLE IF NOT EXISTS raw_sources (
    provider     TEXT NOT NULL,
    source_type  TEXT NOT NULL,
    source_key   TEXT NOT NULL,
    status       TEXT NOT NULL DEFAULT 'processed',
    metadata     JSONB NOT NULL DEFAULT '{}',
    payload      JSONB NOT NULL DEFAULT '{}',
    created_at   TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    PRIMARY KEY (provider, source_type, source_key)
);

ALTER TABLE raw_sources ADD COLUMN IF NOT EXISTS payload JSONB NOT NULL DEFAULT '{}';

CREATE TABLE IF NOT EXISTS marketplace_accounts (
    id                TEXT PRIMARY KEY,
    provider_id       TEXT NOT NULL,
    status            TEXT NOT NULL DEFAULT 'active',
    access_token      TEXT,
    refresh_token     TEXT,
    token_expires_at  TIMESTAMPTZ,
    updated_at        TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_marketplace_accounts_provider_active
    ON marketplace_accounts(provider_id) WHERE status = 'active';
"""

_UPSERT_KEYWORD_SQL = """
INSERT INTO keywords (term, source, market, ingest_source, ingest_metadata)
VALUES ($1, $2, $3, $2, $4)
ON CONFLICT (term, source, market) DO UPDATE SET
    ingest_metadata = EXCLUDED.ingest_metadata,
    updated_at = NOW()
"""

_UPSERT_TREND_SQL = """
INSERT INTO trend_series (term, source, recorded_on, trend_score, extras)
VALUES ($1, $2, $3, $4, $5)
ON CONFLICT (term, source, recorded_on) DO UPDATE SET
    trend_score = EXCLUDED.trend_score,
    extras = EXCLUDED.extras,
    updated_at = NOW()
"""

_INSERT_RAW_SQL = """
INSERT INTO raw_sources (provider, source_type, source_key, metadata, payload)
VALUES ($1, $2, $3, $4, $5)
ON CONFLICT (provider, source_type, source_key) DO NOTHING
RETURNING source_key
"""

_SELECT_ACCOUNTS_SQL = """
SELECT id, access_token, refresh_token, token_expires_at
FROM marketplace_accounts
WHERE provider_id = $1 AND status = 'active'
ORDER BY id
"""

_UPDATE_TOKEN_SQL = """
UPDATE marketplace_accounts
SET access_token = $2, token_expires_at = $3, updated_at = NOW()
WHERE id = $1
"""


class PostgresTrendRepository(TrendRepository):
    """Trend sink backed by the keywords / trend_series / raw_sources tables."""

    def __init__(self, database: Database, source: str = "reddit", market: str = "us"):
        super().__init__(source=source, market=market)
        self._db = database

    async def create_tables(self) -> None:
        """Create all tables and indexes (idempotent)."""
        await self._db.execute(_CREATE_TABLES_SQL)
        logger.info("Trend discovery tables ensured")

    async def upsert_phrase(self, phrase: str, extras: dict[str, Any]) -> None:
        await self._db.execute(
            _UPSERT_KEYWORD_SQL,
            phrase,
            self.source,
            self.market,
            json.dumps(extras, default=str),
        )

    async def upsert_daily_trend_score(self, phrase: str, score: float, day: date) -> None:
        await self._db.execute(
            _UPSERT_TREND_SQL,
            phrase,
            self.source,
            day,
            float(score),
            json.dumps({"market": self.market}),
        )

    async def save_raw_item(self, item: SourceItem) -> bool:
        metadata = {
            "subreddit": item.channel,
            "score": item.score,
            "num_comments": item.num_comments,
            "created_utc": item.created_at.timestamp(),
            "permalink": item.permalink,
            "title": item.title,
        }
        inserted = await self._db.fetchval(
            _INSERT_RAW_SQL,
            self.source,
            item.kind,
            item.id,
            json.dumps(metadata),
            json.dumps(item.raw or item.model_dump(mode="json")),
        )
        return inserted is not None


class PostgresCredentialRepository(CredentialRepository):
    """Credentials stored in marketplace_accounts."""

    def __init__(self, database: Database, provider_id: str = "reddit"):
        self._db = database
        self._provider_id = provider_id

    async def load_active_credentials(self) -> list[CredentialState]:
        rows = await self._db.fetch(_SELECT_ACCOUNTS_SQL, self._provider_id)
        return [
            CredentialState(
                account_id=str(row["id"]),
                access_token=row["access_token"] or "",
                refresh_token=row["refresh_token"],
                expires_at=row["token_expires_at"],
            )
            for row in rows
        ]

    async def save_refreshed_token(
        self,
        account_id: str,
        access_token: str,
        expires_at: datetime,
    ) -> None:
        await self._db.execute(_UPDATE_TOKEN_SQL, account_id, access_token, expires_at)
        logger.debug(f"Persisted refreshed token for account {account_id}")
