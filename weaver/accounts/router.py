"""Connected account router."""

import logging
import secrets
import uuid
from datetime import UTC, datetime
from typing import Literal

import httpx
from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from weaver.audit import AuditLogger, ConnectionEventType
from weaver.auth.jwt import CurrentUser, get_current_user
from weaver.auth.rate_limit import get_rate_limit_string, limiter
from weaver.config import ConfigurationError, get_settings
from weaver.connectors import UnsupportedPlatformError, get_connector
from weaver.connectors.tiktok.client import MAX_VIDEOS_PER_REQUEST
from weaver.connectors.tiktok.schemas import AccountStats, TikTokUser, TikTokVideo, TikTokVideoPage
from weaver.db.session import get_db
from weaver.models import ConnectedAccount
from weaver.oauth.errors import OAuthExchangeError
from weaver.oauth.pkce import generate_pkce, generate_state
from weaver.oauth.state_store import OAuthStateRecord, OAuthStateStore, get_state_store

from .flow import ConnectCallbackFlow
from .metrics_cache import cache_metrics, get_cached_metrics
from .responses import error_redirect, success_notification
from .schemas import (
    ConnectedAccountResponse,
    ConnectResponse,
    DisconnectResponse,
    ProfileResponse,
    VideoQueryRequest,
)
from .store import delete_account, get_account, list_accounts
from .token_service import AccountTokenService
from .urls import build_redirect_uri, safe_redirect_path

settings = get_settings()
logger = logging.getLogger(__name__)

router = APIRouter(prefix="/accounts", tags=["accounts"])
# Registered with the provider, so it lives outside the API prefix
callback_router = APIRouter(tags=["oauth-callback"])

STATE_COOKIE_PREFIX = "oauth_state_"
PROFILE_METRIC_TYPE = "profile_stats"


def state_cookie_name(state: str) -> str:
    return f"{STATE_COOKIE_PREFIX}{state}"


def get_platform_connector(platform: str):
    """Resolve the connector for the ``platform`` path parameter."""
    try:
        return get_connector(platform)
    except UnsupportedPlatformError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


async def get_owned_account(
    account_id: uuid.UUID,
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> ConnectedAccount:
    """Load an account that belongs to the current user."""
    account = await get_account(db, account_id, current_user.id)
    if account is None:
        raise HTTPException(status_code=404, detail="Account not found")
    return account


@router.get("", response_model=list[ConnectedAccountResponse])
async def list_connected_accounts(
    current_user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """List all platform accounts connected by the current user."""
    return await list_accounts(db, current_user.id)


@router.get("/connect/{platform}", response_model=ConnectResponse)
@limiter.limit(get_rate_limit_string)
async def start_connect_account(
    request: Request,
    platform: str,
    mode: Literal["redirect", "popup"] = "redirect",
    redirect_to: str | None = None,
    redirect: bool = False,
    current_user: CurrentUser = Depends(get_current_user),
    connector=Depends(get_platform_connector),
    state_store: OAuthStateStore = Depends(get_state_store),
):
    """Start the OAuth flow to connect a platform account."""
    pkce = generate_pkce()
    state = generate_state()
    browser_binding = secrets.token_urlsafe(32)

    authorization_url = connector.get_authorize_url(
        redirect_uri=build_redirect_uri(platform),
        state=state,
        code_challenge=pkce.code_challenge,
    )

    await state_store.put(
        OAuthStateRecord(
            state=state,
            platform=platform,
            code_verifier=pkce.code_verifier,
            user_id=current_user.id,
            browser_binding=browser_binding,
            mode=mode,
            redirect_to=safe_redirect_path(redirect_to),
        ),
        ttl=settings.OAUTH_STATE_TTL,
    )
    logger.info("Started %s connection for user %s", platform, current_user.id)

    if redirect:
        response = RedirectResponse(url=authorization_url)
    else:
        response = JSONResponse(
            ConnectResponse(authorization_url=authorization_url, state=state).model_dump()
        )
    response.set_cookie(
        key=state_cookie_name(state),
        value=browser_binding,
        max_age=settings.OAUTH_STATE_TTL,
        path="/",
        httponly=True,
        secure=settings.OAUTH_COOKIE_SECURE,
        samesite="lax",
    )
    return response


@callback_router.get("/accounts/callback/{platform}", include_in_schema=False)
async def connect_callback(
    request: Request,
    platform: str,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    error_description: str | None = None,
    db: AsyncSession = Depends(get_db),
    state_store: OAuthStateStore = Depends(get_state_store),
):
    """Handle the provider redirect that finishes a connection."""
    try:
        connector = get_connector(platform)
    except UnsupportedPlatformError as e:
        logger.warning("Callback for unsupported platform %s", platform)
        response = error_redirect(str(e))
    else:
        flow = ConnectCallbackFlow(
            db=db,
            state_store=state_store,
            connector=connector,
            redirect_uri=build_redirect_uri(platform),
        )
        result = await flow.run(
            code=code,
            state=state,
            error=error,
            error_description=error_description,
            browser_binding=request.cookies.get(state_cookie_name(state)) if state else None,
        )
        if result.succeeded:
            response = success_notification(result, connector.display_name)
        else:
            response = error_redirect(result.error)

    if state:
        response.delete_cookie(
            key=state_cookie_name(state),
            path="/",
            httponly=True,
            secure=settings.OAUTH_COOKIE_SECURE,
            samesite="lax",
        )
    return response


@router.get("/{account_id}", response_model=ConnectedAccountResponse)
async def get_connected_account(account: ConnectedAccount = Depends(get_owned_account)):
    """Get one connected account."""
    return account


@router.get("/{account_id}/profile", response_model=ProfileResponse)
async def get_account_profile(
    refresh: bool = False,
    account: ConnectedAccount = Depends(get_owned_account),
    db: AsyncSession = Depends(get_db),
):
    """Get the provider profile and stats, served from cache for an hour."""
    if not refresh:
        cached = await get_cached_metrics(db, account.id, PROFILE_METRIC_TYPE)
        if cached is not None:
            return ProfileResponse(
                account_id=account.id,
                user=TikTokUser.model_validate(cached["user"]),
                stats=AccountStats.model_validate(cached["stats"]),
                cached=True,
                fetched_at=cached["fetched_at"],
            )

    connector = get_connector(account.platform)
    tokens = AccountTokenService(db, connector)

    user = await tokens.call(account, connector.client.get_user_info)
    stats = AccountStats.from_user(user)
    fetched_at = datetime.now(UTC)
    await cache_metrics(
        db,
        account.id,
        PROFILE_METRIC_TYPE,
        {
            "user": user.model_dump(mode="json"),
            "stats": stats.model_dump(mode="json"),
            "fetched_at": fetched_at.isoformat(),
        },
    )
    return ProfileResponse(account_id=account.id, user=user, stats=stats, fetched_at=fetched_at)


@router.get("/{account_id}/videos", response_model=TikTokVideoPage)
async def list_account_videos(
    cursor: int | None = None,
    max_count: int = Query(MAX_VIDEOS_PER_REQUEST, ge=1, le=MAX_VIDEOS_PER_REQUEST),
    account: ConnectedAccount = Depends(get_owned_account),
    db: AsyncSession = Depends(get_db),
):
    """List the account's videos, newest first."""
    connector = get_connector(account.platform)
    tokens = AccountTokenService(db, connector)
    return await tokens.call(
        account,
        lambda access_token: connector.client.list_videos(
            access_token, cursor=cursor, max_count=max_count
        ),
    )


@router.post("/{account_id}/videos/query", response_model=list[TikTokVideo])
async def query_account_videos(
    body: VideoQueryRequest = Body(...),
    account: ConnectedAccount = Depends(get_owned_account),
    db: AsyncSession = Depends(get_db),
):
    """Get stats for specific videos."""
    connector = get_connector(account.platform)
    tokens = AccountTokenService(db, connector)
    return await tokens.call(
        account,
        lambda access_token: connector.client.query_videos(access_token, body.video_ids),
    )


@router.delete("/{account_id}", response_model=DisconnectResponse)
async def disconnect_account(
    account: ConnectedAccount = Depends(get_owned_account),
    db: AsyncSession = Depends(get_db),
):
    """Revoke the provider grant where possible and delete the account."""
    connector = get_connector(account.platform)
    account_id, platform, user_id = account.id, account.platform, account.user_id

    revoked = False
    try:
        await connector.revoke_token(account.access_token)
        revoked = True
    except (OAuthExchangeError, ConfigurationError, httpx.HTTPError) as e:
        logger.warning("Failed to revoke %s token for account %s: %s", platform, account_id, e)
        await AuditLogger.log_event(
            db,
            ConnectionEventType.TOKEN_REVOKE_FAILED,
            user_id=user_id,
            account_id=account_id,
            platform=platform,
            details={"error_code": getattr(e, "error_code", None)},
        )

    await delete_account(db, account)
    await AuditLogger.log_event(
        db,
        ConnectionEventType.ACCOUNT_DISCONNECTED,
        user_id=user_id,
        account_id=account_id,
        platform=platform,
        details={"revoked": revoked},
    )
    return DisconnectResponse(
        message=f"{connector.display_name} account disconnected",
        account_id=account_id,
        platform=platform,
        revoked=revoked,
    )
