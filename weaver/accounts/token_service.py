"""Keeps stored provider credentials usable."""

import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, timedelta
from typing import TypeVar

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from weaver.audit import AuditLogger, ConnectionEventType
from weaver.config import get_settings
from weaver.models import ConnectedAccount
from weaver.oauth.errors import OAuthExchangeError, ReconnectRequiredError, UnauthorizedError

from .store import as_utc, update_tokens

settings = get_settings()
logger = logging.getLogger(__name__)

T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.now(UTC)


class AccountTokenService:
    """Refreshes access tokens ahead of expiry and after a provider 401.

    Every provider call for a stored account goes through ``call``, which
    gives at most one refresh-and-retry per call.
    """

    def __init__(
        self,
        db: AsyncSession,
        connector,
        refresh_margin_seconds: int | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.db = db
        self.connector = connector
        self.refresh_margin = timedelta(
            seconds=(
                refresh_margin_seconds
                if refresh_margin_seconds is not None
                else settings.TOKEN_REFRESH_MARGIN_SECONDS
            )
        )
        self.clock = clock

    def is_expired(self, account: ConnectedAccount) -> bool:
        expires_at = as_utc(account.token_expires_at)
        return expires_at is not None and expires_at <= self.clock()

    def needs_refresh(self, account: ConnectedAccount) -> bool:
        expires_at = as_utc(account.token_expires_at)
        if expires_at is None:
            return False
        return expires_at - self.refresh_margin <= self.clock()

    async def refresh(self, account: ConnectedAccount) -> ConnectedAccount:
        """Exchange the refresh token and persist both new tokens."""
        previous_refresh_token = account.refresh_token
        if not previous_refresh_token:
            raise ReconnectRequiredError(f"{account.platform} account has no refresh token")

        try:
            token_set = await self.connector.refresh_token(previous_refresh_token)
        except (OAuthExchangeError, httpx.HTTPError) as e:
            logger.warning("Token refresh failed for account %s: %s", account.id, e)
            await AuditLogger.log_event(
                self.db,
                ConnectionEventType.TOKEN_REFRESH_FAILED,
                user_id=account.user_id,
                account_id=account.id,
                platform=account.platform,
                details={"error_code": getattr(e, "error_code", None) or "network_error"},
            )
            raise ReconnectRequiredError(
                f"{self.connector.display_name} authorization expired, please reconnect"
            ) from e

        applied = await update_tokens(
            self.db, account, token_set, expected_refresh_token=previous_refresh_token
        )
        if not applied:
            # Another request rotated the tokens first; the reloaded row is current
            logger.info("Concurrent token refresh for account %s, using stored tokens", account.id)
            return account

        await AuditLogger.log_event(
            self.db,
            ConnectionEventType.TOKEN_REFRESHED,
            user_id=account.user_id,
            account_id=account.id,
            platform=account.platform,
        )
        return account

    async def ensure_fresh(self, account: ConnectedAccount) -> ConnectedAccount:
        """Refresh when the access token is inside the refresh margin."""
        if not self.needs_refresh(account):
            return account
        try:
            return await self.refresh(account)
        except ReconnectRequiredError:
            if self.is_expired(account):
                raise
            logger.warning(
                "Proactive refresh failed for account %s, using current access token",
                account.id,
            )
            return account

    async def call(
        self,
        account: ConnectedAccount,
        operation: Callable[[str], Awaitable[T]],
    ) -> T:
        """Run ``operation(access_token)`` with refresh-and-retry on 401."""
        account = await self.ensure_fresh(account)
        try:
            return await operation(account.access_token)
        except UnauthorizedError:
            logger.info("Access token rejected for account %s, refreshing", account.id)

        account = await self.refresh(account)
        try:
            return await operation(account.access_token)
        except UnauthorizedError as e:
            raise ReconnectRequiredError(
                f"{self.connector.display_name} rejected refreshed credentials, please reconnect"
            ) from e
