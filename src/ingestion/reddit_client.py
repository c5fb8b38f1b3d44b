"""
Reddit API client for phrase discovery.

Wraps the rate-limited HTTPClient with Reddit endpoints and converts
responses into typed records. Handles:
- Subreddit listings (/r/{sub}/new) and link search (/search)
- Comment threads (/comments/{id}), flattened
- OAuth refresh-token grant
- Skipping stickied, removed and malformed children
"""

import logging
from typing import Any

from pydantic import ValidationError

from src.config.settings import Settings, get_settings
from src.ingestion.http_client import HTTPClient
from src.ingestion.schemas import CommentItem, ListingPage, SourceItem, TokenGrant

logger = logging.getLogger(__name__)


class RedditClient:
    """
    Reddit API client for fetching posts and comments.

    One instance per account: it owns an HTTPClient whose retry state,
    rate limiter and connection pool are never shared with other accounts.

    Rate Limits:
        - 60 requests per minute (OAuth)
        - 100 posts per request
    """

    def __init__(
        self,
        http: HTTPClient,
        settings: Settings | None = None,
        listing_limit: int = 50,
        comment_limit: int = 100,
    ):
        """
        Initialize Reddit client.

        Args:
            http: Entered HTTPClient used for every call
            settings: Application settings (API base, OAuth client credentials)
            listing_limit: Posts requested per listing/search page
            comment_limit: Comments requested per thread
        """
        settings = settings or get_settings()
        self._http = http
        self._api_base = settings.reddit_api_base.rstrip("/")
        self._token_url = settings.reddit_token_url
        self._client_id = settings.reddit_client_id
        self._client_secret = settings.reddit_client_secret
        self._listing_limit = listing_limit
        self._comment_limit = comment_limit

    @property
    def can_refresh(self) -> bool:
        """Whether OAuth client credentials for the refresh grant are configured."""
        return bool(self._client_id and self._client_secret)

    async def list_items(
        self,
        token: str,
        subreddit: str | None = None,
        query: str | None = None,
        after: str | None = None,
    ) -> ListingPage:
        """
        Fetch one page of newest posts from a subreddit or a link search.

        Exactly one of ``subreddit`` and ``query`` must be given.

        Raises:
            ValueError: If neither or both sources are given
            HTTPClientError: Propagated from the HTTP layer
        """
        if (subreddit is None) == (query is None):
            raise ValueError("Pass exactly one of subreddit or query")

        params: dict[str, Any] = {"limit": self._listing_limit}
        if after:
            params["after"] = after

        if subreddit is not None:
            path = f"/r/{subreddit}/new"
            label = f"reddit:r/{subreddit}"
        else:
            path = "/search"
            params.update({"q": query, "sort": "new", "type": "link"})
            label = f"reddit:search:{query}"

        payload = await self._http.get(
            f"{self._api_base}{path}",
            params=params,
            token=token,
            label=label,
        )
        return self._parse_listing(payload, label)

    async def list_comments(self, token: str, item: SourceItem) -> list[CommentItem]:
        """
        Fetch and flatten the comment thread of a post.

        Raises:
            HTTPClientError: Propagated from the HTTP layer
        """
        label = f"reddit:comments:{item.id}"
        payload = await self._http.get(
            f"{self._api_base}/comments/{item.id}",
            params={"limit": self._comment_limit},
            token=token,
            label=label,
        )

        # Response is [post_listing, comment_listing]
        if not isinstance(payload, list) or len(payload) < 2:
            logger.warning(f"{label}: unexpected comments payload shape")
            return []

        comments: list[CommentItem] = []
        children = _children(payload[1])
        while children:
            child = children.pop(0)
            if not isinstance(child, dict) or child.get("kind") != "t1":
                continue
            data = child.get("data") or {}
            try:
                comment = CommentItem.from_reddit(data, parent=item)
            except ValidationError as e:
                logger.warning(
                    f"{label}: skipping malformed comment {data.get('id')!r}: "
                    f"{e.error_count()} validation errors"
                )
            else:
                if comment.body not in ("[deleted]", "[removed]"):
                    comments.append(comment)

            replies = data.get("replies")
            if isinstance(replies, dict):
                children.extend(_children(replies))

        logger.debug(f"Fetched {len(comments)} comments for {item.id}")
        return comments

    async def refresh_token(self, refresh_token: str) -> TokenGrant:
        """
        Exchange a refresh token for a new access token.

        Raises:
            RuntimeError: If OAuth client credentials are not configured
            HTTPClientError: On HTTP failure
            pydantic.ValidationError: If the grant response has no access token
        """
        if not self.can_refresh:
            raise RuntimeError("Reddit client credentials not configured")

        payload = await self._http.post_form(
            self._token_url,
            data={"grant_type": "refresh_token", "refresh_token": refresh_token},
            auth=(self._client_id, self._client_secret),
            label="reddit:refresh_token",
        )
        return TokenGrant.model_validate(payload)

    def _parse_listing(self, payload: Any, label: str) -> ListingPage:
        """Convert a Listing payload into typed posts, skipping bad children."""
        if not isinstance(payload, dict) or not isinstance(payload.get("data"), dict):
            logger.warning(f"{label}: unexpected listing payload shape")
            return ListingPage()

        items: list[SourceItem] = []
        skipped = 0
        for child in _children(payload):
            data = child.get("data") if isinstance(child, dict) else None
            if not isinstance(data, dict):
                skipped += 1
                continue

            # Skip stickied/pinned and removed/deleted posts
            if data.get("stickied") or data.get("removed_by_category"):
                skipped += 1
                continue

            try:
                items.append(SourceItem.from_reddit(data))
            except ValidationError as e:
                skipped += 1
                logger.warning(
                    f"{label}: skipping malformed post {data.get('id')!r}: "
                    f"{e.error_count()} validation errors"
                )

        logger.debug(f"{label}: parsed {len(items)} posts, skipped {skipped}")
        after = payload["data"].get("after")
        if after is not None and not isinstance(after, str):
            logger.warning(f"{label}: ignoring non-string cursor {after!r}")
            after = None
        return ListingPage(items=items, after=after or None, skipped=skipped)


def _children(listing: Any) -> list[Any]:
    if not isinstance(listing, dict):
        return []
    data = listing.get("data")
    if not isinstance(data, dict):
        return []
    children = data.get("children")
    return list(children) if isinstance(children, list) else []
