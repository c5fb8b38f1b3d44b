"""Data ingestion module - rate-limited HTTP client, Reddit client, and schemas."""

from src.ingestion.schemas import (
    CommentItem,
    ListingPage,
    SourceItem,
    TokenGrant,
)

__all__ = [
    "SourceItem",
    "CommentItem",
    "ListingPage",
    "TokenGrant",
]
