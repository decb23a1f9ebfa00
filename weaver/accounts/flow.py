"""OAuth callback orchestration for connecting a platform account."""

import hmac
import logging
import uuid
from dataclasses import dataclass, field
from enum import StrEnum

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from weaver.audit import AuditLogger, ConnectionEventType
from weaver.config import ConfigurationError
from weaver.oauth.errors import (
    OAuthExchangeError,
    ProviderAPIError,
    RateLimitExceeded,
    StateNotFoundError,
)
from weaver.oauth.state_store import OAuthStateRecord, OAuthStateStore
from weaver.oauth.tokens import TokenSet

from .store import upsert_connected_account

logger = logging.getLogger(__name__)

INVALID_STATE_MESSAGE = "Invalid or expired session, please try connecting again"


class CallbackStage(StrEnum):
    """Stages of one callback, in order."""

    RECEIVED = "received"
    VALIDATED = "validated"
    EXCHANGED = "exchanged"
    PROFILE_FETCHED = "profile_fetched"
    PERSISTED = "persisted"
    COMPLETED = "completed"
    ERRORED = "errored"


@dataclass
class CallbackResult:
    """Outcome of a callback, including the stages it passed through."""

    platform: str
    stages: list[CallbackStage] = field(default_factory=lambda: [CallbackStage.RECEIVED])
    account_id: uuid.UUID | None = None
    created: bool = False
    error: str | None = None
    error_code: str | None = None
    mode: str = "redirect"
    redirect_to: str | None = None

    @property
    def stage(self) -> CallbackStage:
        return self.stages[-1]

    @property
    def succeeded(self) -> bool:
        return self.stage == CallbackStage.COMPLETED

    def advance(self, stage: CallbackStage) -> None:
        self.stages.append(stage)


class CallbackFailed(Exception):
    """Internal signal that moves the flow to the errored stage."""

    def __init__(self, message: str, error_code: str | None = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code


class ConnectCallbackFlow:
    """Turns a provider callback into a persisted connected account.

    The flow is not resumable. Any failure ends in ``errored`` and the user has
    to start a new connection; authorization codes are never retried.
    """

    def __init__(
        self,
        db: AsyncSession,
        state_store: OAuthStateStore,
        connector,
        redirect_uri: str,
    ):
        self.db = db
        self.state_store = state_store
        self.connector = connector
        self.redirect_uri = redirect_uri

    async def run(
        self,
        code: str | None,
        state: str | None,
        error: str | None = None,
        error_description: str | None = None,
        browser_binding: str | None = None,
    ) -> CallbackResult:
        result = CallbackResult(platform=self.connector.platform)
        record: OAuthStateRecord | None = None
        token_set: TokenSet | None = None

        try:
            if error:
                raise CallbackFailed(error_description or error, error_code=error)
            if not code or not state:
                raise CallbackFailed("Missing authorization code or state")

            record = await self._validate(state, browser_binding)
            result.mode = record.mode
            result.redirect_to = record.redirect_to
            result.advance(CallbackStage.VALIDATED)

            token_set = await self._exchange(code, record)
            result.advance(CallbackStage.EXCHANGED)

            profile = await self._fetch_profile(token_set)
            result.advance(CallbackStage.PROFILE_FETCHED)

            account, created = await self._persist(record, profile, token_set)
            result.account_id = account.id
            result.created = created
            result.advance(CallbackStage.PERSISTED)
        except CallbackFailed as e:
            stage = result.stage
            result.error = e.message
            result.error_code = e.error_code
            result.advance(CallbackStage.ERRORED)
            logger.warning(
                "%s connection failed at %s: %s (code=%s)",
                self.connector.platform,
                stage,
                e.message,
                e.error_code,
            )
            if token_set is not None:
                await self._discard_tokens(token_set)
            await AuditLogger.log_event(
                self.db,
                ConnectionEventType.CONNECT_FAILED,
                user_id=record.user_id if record else None,
                platform=self.connector.platform,
                details={"stage": stage.value, "error_code": e.error_code},
            )
            return result

        # Already removed by take; repeated so completion never depends on it
        await self.state_store.discard(state)
        result.advance(CallbackStage.COMPLETED)

        logger.info(
            "%s account %s connected for user %s",
            self.connector.platform,
            result.account_id,
            record.user_id,
        )
        await AuditLogger.log_event(
            self.db,
            (
                ConnectionEventType.ACCOUNT_CONNECTED
                if result.created
                else ConnectionEventType.ACCOUNT_RECONNECTED
            ),
            user_id=record.user_id,
            account_id=result.account_id,
            platform=self.connector.platform,
            details={"scopes": token_set.sorted_scopes},
        )
        return result

    async def _validate(self, state: str, browser_binding: str | None) -> OAuthStateRecord:
        try:
            record = await self.state_store.take(state)
        except StateNotFoundError:
            raise CallbackFailed(INVALID_STATE_MESSAGE, error_code="invalid_state") from None

        if record.platform != self.connector.platform:
            raise CallbackFailed(INVALID_STATE_MESSAGE, error_code="platform_mismatch")
        if not browser_binding or not hmac.compare_digest(
            browser_binding.encode(), record.browser_binding.encode()
        ):
            raise CallbackFailed(INVALID_STATE_MESSAGE, error_code="browser_mismatch")
        return record

    async def _exchange(self, code: str, record: OAuthStateRecord) -> TokenSet:
        try:
            return await self.connector.exchange_code(
                code=code,
                code_verifier=record.code_verifier,
                redirect_uri=self.redirect_uri,
            )
        except OAuthExchangeError as e:
            raise CallbackFailed(e.message, error_code=e.error_code) from e
        except ConfigurationError as e:
            logger.error("Cannot exchange %s code: %s", self.connector.platform, e)
            raise CallbackFailed(
                f"{self.connector.display_name} connection is not available",
                error_code="not_configured",
            ) from e
        except httpx.HTTPError as e:
            raise CallbackFailed(
                f"Could not reach {self.connector.display_name}, please try again",
                error_code="network_error",
            ) from e

    async def _fetch_profile(self, token_set: TokenSet):
        try:
            profile = await self.connector.fetch_profile(token_set.access_token)
        except (ProviderAPIError, RateLimitExceeded, httpx.HTTPError) as e:
            raise CallbackFailed(
                f"Failed to load your {self.connector.display_name} profile",
                error_code=getattr(e, "error_code", None) or "profile_unavailable",
            ) from e

        if token_set.open_id and profile.platform_user_id != token_set.open_id:
            raise CallbackFailed(
                f"Failed to load your {self.connector.display_name} profile",
                error_code="identity_mismatch",
            )
        return profile

    async def _persist(self, record: OAuthStateRecord, profile, token_set: TokenSet):
        try:
            return await upsert_connected_account(
                self.db,
                user_id=record.user_id,
                platform=self.connector.platform,
                profile=profile,
                token_set=token_set,
            )
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("Failed to save %s account: %s", self.connector.platform, e)
            raise CallbackFailed("Failed to save connected account", error_code="db_error") from e

    async def _discard_tokens(self, token_set: TokenSet) -> None:
        try:
            await self.connector.revoke_token(token_set.access_token)
        except (OAuthExchangeError, ConfigurationError, httpx.HTTPError) as e:
            logger.warning("Failed to revoke discarded %s token: %s", self.connector.platform, e)
