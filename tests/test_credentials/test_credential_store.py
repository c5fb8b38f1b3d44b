"""Tests for the access-token lifecycle."""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from src.credentials import AuthenticationError, CredentialState, CredentialStore, TokenStatus
from src.ingestion.http_client import BudgetExhaustedError, HTTPClientError
from src.ingestion.schemas import TokenGrant
from src.storage.memory import InMemoryCredentialRepository


@pytest.fixture
def clock(run_at):
    return lambda: run_at


def _account(run_at, expires_in: float | None, refresh: str | None = "refresh-1") -> CredentialState:
    return CredentialState(
        account_id="acc-1",
        access_token="old-token",
        refresh_token=refresh,
        expires_at=run_at + timedelta(seconds=expires_in) if expires_in is not None else None,
    )


class TestCredentialState:
    """Tests for expiry checks."""

    def test_no_expiry_never_expires(self, run_at):
        account = _account(run_at, None)

        assert not account.expires_within(run_at, 3600)
        assert not account.is_expired(run_at)

    def test_expires_within_margin(self, run_at):
        account = _account(run_at, 30)

        assert account.expires_within(run_at, 60)
        assert not account.is_expired(run_at)


class TestGetValidToken:
    """Tests for CredentialStore.get_valid_token()."""

    @pytest.mark.asyncio
    async def test_valid_token_returned_without_refresh(self, run_at, clock):
        refresher = AsyncMock()
        store = CredentialStore(refresher=refresher, now_fn=clock)
        account = _account(run_at, 3600)

        token = await store.get_valid_token(account)

        assert token == "old-token"
        refresher.assert_not_awaited()
        assert store.status("acc-1") == TokenStatus.VALID

    @pytest.mark.asyncio
    async def test_refreshes_inside_margin_and_persists(self, run_at, clock):
        """A token expiring within the margin is refreshed and saved."""
        refresher = AsyncMock(return_value=TokenGrant(access_token="new-token", expires_in=3600))
        repo = InMemoryCredentialRepository([_account(run_at, 30)])
        store = CredentialStore(refresher=refresher, repository=repo, margin_seconds=60, now_fn=clock)
        account = _account(run_at, 30)

        token = await store.get_valid_token(account)

        assert token == "new-token"
        refresher.assert_awaited_once_with("refresh-1")
        assert account.access_token == "new-token"
        assert account.expires_at == run_at + timedelta(seconds=3600)
        assert repo.saved_tokens == [("acc-1", "new-token", run_at + timedelta(seconds=3600))]
        assert store.history("acc-1") == [TokenStatus.REFRESHING, TokenStatus.VALID]

    @pytest.mark.asyncio
    async def test_refresh_failure_raises_authentication_error(self, run_at, clock):
        refresher = AsyncMock(side_effect=HTTPClientError("status 400", label="reddit:refresh_token"))
        store = CredentialStore(refresher=refresher, now_fn=clock)

        with pytest.raises(AuthenticationError) as exc_info:
            await store.get_valid_token(_account(run_at, -10))

        assert exc_info.value.account_id == "acc-1"
        assert "refresh failed" in exc_info.value.reason
        assert store.history("acc-1") == [TokenStatus.REFRESHING, TokenStatus.FAILED]

    @pytest.mark.asyncio
    async def test_budget_exhaustion_propagates(self, run_at, clock):
        """Running out of budget mid-refresh is not an auth failure."""
        refresher = AsyncMock(side_effect=BudgetExhaustedError("spent"))
        store = CredentialStore(refresher=refresher, now_fn=clock)

        with pytest.raises(BudgetExhaustedError):
            await store.get_valid_token(_account(run_at, 10))

        assert store.status("acc-1") == TokenStatus.FAILED

    @pytest.mark.asyncio
    async def test_expired_without_refresh_token(self, run_at, clock):
        store = CredentialStore(refresher=AsyncMock(), now_fn=clock)

        with pytest.raises(AuthenticationError, match="cannot be refreshed"):
            await store.get_valid_token(_account(run_at, -1, refresh=None))

    @pytest.mark.asyncio
    async def test_expired_without_refresher(self, run_at, clock):
        store = CredentialStore(refresher=None, now_fn=clock)

        with pytest.raises(AuthenticationError):
            await store.get_valid_token(_account(run_at, -1))

    @pytest.mark.asyncio
    async def test_inside_margin_without_refresher_uses_current_token(self, run_at, clock):
        """Still-valid tokens are used as-is when refresh is impossible."""
        store = CredentialStore(refresher=None, now_fn=clock)

        assert await store.get_valid_token(_account(run_at, 30)) == "old-token"

    @pytest.mark.asyncio
    async def test_missing_access_token(self, run_at, clock):
        store = CredentialStore(now_fn=clock)
        account = _account(run_at, 3600)
        account.access_token = ""

        with pytest.raises(AuthenticationError, match="missing access token"):
            await store.get_valid_token(account)

    @pytest.mark.asyncio
    async def test_empty_access_token_refreshed(self, run_at, clock):
        """An account with only a refresh token gets a fresh access token."""
        refresher = AsyncMock(return_value=TokenGrant(access_token="new-token", expires_in=3600))
        store = CredentialStore(refresher=refresher, now_fn=clock)
        account = _account(run_at, -3600)
        account.access_token = ""

        token = await store.get_valid_token(account)

        assert token == "new-token"
        refresher.assert_awaited_once_with("refresh-1")
        assert account.expires_at == run_at + timedelta(seconds=3600)
        assert store.status("acc-1") == TokenStatus.VALID

    @pytest.mark.asyncio
    async def test_empty_access_token_without_refresh_token(self, run_at, clock):
        refresher = AsyncMock()
        store = CredentialStore(refresher=refresher, now_fn=clock)
        account = _account(run_at, None, refresh=None)
        account.access_token = ""

        with pytest.raises(AuthenticationError, match="missing access token"):
            await store.get_valid_token(account)
        refresher.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_persist_failure_does_not_fail_refresh(self, run_at, clock):
        refresher = AsyncMock(return_value=TokenGrant(access_token="new-token"))
        repo = AsyncMock()
        repo.save_refreshed_token.side_effect = OSError("db down")
        store = CredentialStore(refresher=refresher, repository=repo, now_fn=clock)

        assert await store.get_valid_token(_account(run_at, 0)) == "new-token"
