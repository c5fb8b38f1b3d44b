"""
Access-token lifecycle for Reddit accounts.

Hands out a token that will stay valid for at least the safety margin,
refreshing it through the OAuth refresh grant when needed. Per account the
token moves through ``valid -> refreshing -> valid | failed``.
"""

from collections import defaultdict
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import structlog

from src.credentials.schemas import AuthenticationError, CredentialState, TokenStatus
from src.ingestion.http_client import BudgetExhaustedError
from src.ingestion.schemas import TokenGrant

if TYPE_CHECKING:
    from src.storage.base import CredentialRepository

logger = structlog.get_logger(__name__)

DEFAULT_MARGIN_SECONDS = 60.0

Refresher = Callable[[str], Awaitable[TokenGrant]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CredentialStore:
    """
    Yields valid access tokens, refreshing ahead of expiry.

    State lives on the instance; the discovery service builds one store per
    account run, so no token cache is shared between accounts.

    Usage:
        store = CredentialStore(refresher=client.refresh_token, repository=repo)
        token = await store.get_valid_token(account)
    """

    def __init__(
        self,
        refresher: Refresher | None = None,
        repository: "CredentialRepository | None" = None,
        margin_seconds: float = DEFAULT_MARGIN_SECONDS,
        now_fn: Callable[[], datetime] = _utcnow,
    ):
        """
        Args:
            refresher: Coroutine exchanging a refresh token for a TokenGrant;
                None when OAuth client credentials are not configured
            repository: Where refreshed tokens are persisted
            margin_seconds: Refresh when the token expires within this window
            now_fn: Clock, injectable for tests
        """
        self._refresher = refresher
        self._repository = repository
        self._margin = margin_seconds
        self._now = now_fn
        self._history: dict[str, list[TokenStatus]] = defaultdict(list)

    def history(self, account_id: str) -> list[TokenStatus]:
        """Token status transitions recorded for an account."""
        return list(self._history.get(account_id, []))

    def status(self, account_id: str) -> TokenStatus | None:
        transitions = self._history.get(account_id)
        return transitions[-1] if transitions else None

    def _set_status(self, account_id: str, status: TokenStatus) -> None:
        transitions = self._history[account_id]
        if not transitions or transitions[-1] != status:
            transitions.append(status)

    def _fail(self, account: CredentialState, reason: str) -> AuthenticationError:
        self._set_status(account.account_id, TokenStatus.FAILED)
        logger.warning("Account token unusable", account=account.account_id, reason=reason)
        return AuthenticationError(account.account_id, reason)

    async def get_valid_token(self, account: CredentialState) -> str:
        """
        Return an access token valid for at least the safety margin.

        Updates ``account`` in place when a refresh succeeds.

        Raises:
            AuthenticationError: If no usable token can be produced
            BudgetExhaustedError: If the refresh request hit the run budget
        """
        can_refresh = bool(account.refresh_token) and self._refresher is not None

        if not account.access_token:
            if can_refresh:
                return await self._refresh(account)
            raise self._fail(account, "missing access token")

        now = self._now()
        if not account.expires_within(now, self._margin):
            self._set_status(account.account_id, TokenStatus.VALID)
            return account.access_token

        if can_refresh:
            return await self._refresh(account)

        if account.is_expired(now):
            raise self._fail(account, "token expired and cannot be refreshed")

        logger.debug(
            "Token inside refresh margin without refresh capability, using as-is",
            account=account.account_id,
            expires_at=account.expires_at.isoformat() if account.expires_at else None,
        )
        self._set_status(account.account_id, TokenStatus.VALID)
        return account.access_token

    async def _refresh(self, account: CredentialState) -> str:
        self._set_status(account.account_id, TokenStatus.REFRESHING)
        try:
            grant = await self._refresher(account.refresh_token)
        except BudgetExhaustedError:
            self._set_status(account.account_id, TokenStatus.FAILED)
            raise
        except Exception as e:
            raise self._fail(account, f"refresh failed: {e}") from e

        account.access_token = grant.access_token
        account.expires_at = self._now() + timedelta(seconds=grant.expires_in)
        self._set_status(account.account_id, TokenStatus.VALID)
        logger.info(
            "Refreshed access token",
            account=account.account_id,
            expires_at=account.expires_at.isoformat(),
        )

        if self._repository is not None:
            try:
                await self._repository.save_refreshed_token(
                    account.account_id, account.access_token, account.expires_at
                )
            except Exception as e:
                logger.warning(
                    "Failed to persist refreshed token",
                    account=account.account_id,
                    error=str(e),
                )

        return account.access_token
