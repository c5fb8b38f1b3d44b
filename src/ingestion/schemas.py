"""
Typed records for the source API boundary.

Reddit responses are loosely-typed JSON; every payload is converted into one
of these models before it reaches the discovery pipeline so that shape drift
surfaces as a validation error on a single item instead of a crash deep in
extraction.
"""

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _parse_created(value: Any) -> datetime:
    """Convert Reddit ``created_utc`` (epoch seconds) to an aware datetime."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"created_utc must be epoch seconds, got {value!r}")
    try:
        return datetime.fromtimestamp(float(value), tz=timezone.utc)
    except (OverflowError, OSError, ValueError) as e:
        raise ValueError(f"created_utc out of range: {value!r}") from e


class SourceItem(BaseModel):
    """
    One fetched post.

    Immutable once fetched. Engagement is normalized to a single value by
    ``engagement_value``; the pipeline never needs the raw vote breakdown.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Reddit base36 id (without t3_)")
    channel: str = Field(..., min_length=1, description="Subreddit name")
    title: str | None = Field(default=None)
    body: str = Field(default="")
    score: int = Field(default=0)
    num_comments: int = Field(default=0, ge=0)
    created_at: datetime
    permalink: str = Field(default="")
    kind: Literal["post"] = "post"
    raw: dict[str, Any] = Field(
        default_factory=dict,
        exclude=True,
        repr=False,
        description="Listing child data as returned by the API",
    )

    @field_validator("created_at", mode="before")
    @classmethod
    def parse_created_at(cls, v: Any) -> datetime:
        return _parse_created(v)

    @property
    def engagement_value(self) -> float:
        """Votes plus discussion volume; negative scores count as zero."""
        return float(max(0, self.score) + self.num_comments)

    @property
    def url(self) -> str | None:
        return f"https://reddit.com{self.permalink}" if self.permalink else None

    @property
    def text(self) -> str:
        """Title and body joined for whole-item signals."""
        return f"{self.title or ''}\n\n{self.body}".strip()

    @classmethod
    def from_reddit(cls, data: dict[str, Any]) -> "SourceItem":
        """
        Build from the ``data`` object of a ``t3`` listing child.

        Raises:
            pydantic.ValidationError: If required fields are missing or mistyped
        """
        return cls(
            id=data.get("id") or "",
            channel=data.get("subreddit") or "",
            title=data.get("title"),
            body=data.get("selftext") or "",
            score=data.get("score") or 0,
            num_comments=data.get("num_comments") or 0,
            created_at=data.get("created_utc"),
            permalink=data.get("permalink") or "",
            raw=data,
        )


class CommentItem(BaseModel):
    """One comment from a post's thread."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    parent_id: str = Field(..., min_length=1, description="Id of the post the thread belongs to")
    channel: str = Field(..., min_length=1)
    body: str = Field(default="")
    score: int = Field(default=0)
    created_at: datetime
    permalink: str = Field(default="")
    kind: Literal["comment"] = "comment"

    @field_validator("created_at", mode="before")
    @classmethod
    def parse_created_at(cls, v: Any) -> datetime:
        return _parse_created(v)

    def engagement_value(self, comment_weight: float) -> float:
        """Comment votes scaled by the run's comment weight."""
        return float(max(0, self.score)) * comment_weight

    @classmethod
    def from_reddit(cls, data: dict[str, Any], parent: SourceItem) -> "CommentItem":
        """Build from the ``data`` object of a ``t1`` child."""
        return cls(
            id=data.get("id") or "",
            parent_id=parent.id,
            channel=data.get("subreddit") or parent.channel,
            body=data.get("body") or "",
            score=data.get("score") or 0,
            created_at=data.get("created_utc"),
            permalink=data.get("permalink") or "",
        )


class ListingPage(BaseModel):
    """One page of a listing or search result."""

    items: list[SourceItem] = Field(default_factory=list)
    after: str | None = Field(default=None, description="Cursor for the next page")
    skipped: int = Field(default=0, ge=0, description="Malformed or filtered children")


class TokenGrant(BaseModel):
    """Response of the OAuth refresh-token grant."""

    access_token: str = Field(..., min_length=1)
    expires_in: int = Field(default=3600, ge=0)
