"""TikTok OAuth 2.0 implementation with PKCE.

See https://developers.tiktok.com/doc/login-kit-web
"""

import logging
from typing import Any
from urllib.parse import urlencode

import httpx

from weaver.config import ConfigurationError, get_settings
from weaver.oauth.errors import OAuthExchangeError
from weaver.oauth.tokens import TokenSet

settings = get_settings()
logger = logging.getLogger(__name__)

# user.info.basic: open_id, union_id
# user.info.profile: username, display name, avatar, bio
# user.info.stats: follower, following, likes and video counts
# video.list: the user's videos with engagement metrics
TIKTOK_SCOPES = [
    "user.info.basic",
    "user.info.profile",
    "user.info.stats",
    "video.list",
]


def _error_details(response: httpx.Response) -> tuple[str | None, str]:
    """Extract (error_code, message) from a provider error body."""
    try:
        payload: Any = response.json()
    except ValueError:
        return None, response.reason_phrase or f"HTTP {response.status_code}"
    if not isinstance(payload, dict):
        return None, response.reason_phrase or f"HTTP {response.status_code}"

    error = payload.get("error")
    if isinstance(error, dict):
        return error.get("code"), error.get("message") or response.reason_phrase
    return error, payload.get("error_description") or error or response.reason_phrase


def _has_error(payload: dict[str, Any]) -> bool:
    error = payload.get("error")
    if isinstance(error, dict):
        return error.get("code") not in (None, "", "ok")
    return bool(error)


class TikTokOAuth:
    """TikTok OAuth implementation with PKCE (required)."""

    PLATFORM = "tiktok"
    AUTHORIZE_URL = "https://www.tiktok.com/v2/auth/authorize/"
    TOKEN_URL = "https://open.tiktokapis.com/v2/oauth/token/"
    REVOKE_URL = "https://open.tiktokapis.com/v2/oauth/revoke/"

    @classmethod
    def get_authorize_url(
        cls,
        client_key: str,
        redirect_uri: str,
        state: str,
        code_challenge: str,
        scopes: list[str] | None = None,
    ) -> str:
        """Get the TikTok authorization URL."""
        if not client_key:
            raise ConfigurationError("TikTok client key is not configured")

        params = {
            "client_key": client_key,
            "response_type": "code",
            "scope": ",".join(scopes or TIKTOK_SCOPES),
            "redirect_uri": redirect_uri,
            "state": state,
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
        }
        return f"{cls.AUTHORIZE_URL}?{urlencode(params)}"

    @classmethod
    async def exchange_code(
        cls,
        code: str,
        code_verifier: str,
        client_key: str,
        client_secret: str,
        redirect_uri: str,
    ) -> TokenSet:
        """Exchange authorization code for tokens."""
        payload = await cls._post_token_endpoint(
            {
                "grant_type": "authorization_code",
                "code": code,
                "client_key": client_key,
                "client_secret": client_secret,
                "redirect_uri": redirect_uri,
                "code_verifier": code_verifier,
            },
            action="exchange",
        )
        return TokenSet.from_response(payload)

    @classmethod
    async def refresh_token(
        cls,
        refresh_token: str,
        client_key: str,
        client_secret: str,
    ) -> TokenSet:
        """Obtain a new access token. The refresh token may rotate."""
        payload = await cls._post_token_endpoint(
            {
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "client_key": client_key,
                "client_secret": client_secret,
            },
            action="refresh",
        )
        return TokenSet.from_response(payload)

    @classmethod
    async def revoke_token(
        cls,
        access_token: str,
        client_key: str,
        client_secret: str,
    ) -> None:
        """Revoke an access token (disconnect the account)."""
        async with httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS) as client:
            response = await client.post(
                cls.REVOKE_URL,
                data={
                    "token": access_token,
                    "client_key": client_key,
                    "client_secret": client_secret,
                },
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )

        if not response.is_success:
            error_code, message = _error_details(response)
            raise OAuthExchangeError(
                f"Failed to revoke token: {message}",
                error_code=error_code,
                status_code=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError:
            return
        if isinstance(payload, dict) and _has_error(payload):
            error_code, message = _error_details(response)
            raise OAuthExchangeError(
                f"Failed to revoke token: {message}",
                error_code=error_code,
                status_code=response.status_code,
            )

    @classmethod
    async def _post_token_endpoint(cls, data: dict[str, str], action: str) -> dict[str, Any]:
        async with httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS) as client:
            response = await client.post(
                cls.TOKEN_URL,
                data=data,
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )

        if not response.is_success:
            error_code, message = _error_details(response)
            logger.error(
                "TikTok token %s failed: status=%s error=%s message=%s",
                action,
                response.status_code,
                error_code,
                message,
            )
            raise OAuthExchangeError(
                f"Failed to {action} token: {message}",
                error_code=error_code,
                status_code=response.status_code,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise OAuthExchangeError(
                f"Failed to {action} token: response is not JSON",
                status_code=response.status_code,
            ) from e

        # TikTok reports some failures with HTTP 200 and an error envelope
        if not isinstance(payload, dict) or _has_error(payload):
            error_code, message = _error_details(response)
            logger.error(
                "TikTok token %s rejected: error=%s message=%s",
                action,
                error_code,
                message,
            )
            raise OAuthExchangeError(
                f"Failed to {action} token: {message}",
                error_code=error_code,
                status_code=response.status_code,
            )

        return payload
