"""TikTok API v2 resource client.

Every call spends one request from the per-access-token budget before any
network I/O (600 requests per minute per token on TikTok's side).
"""

import logging
from typing import Any
from urllib.parse import urlencode

import httpx
from pydantic import ValidationError

from weaver.config import get_settings
from weaver.oauth.errors import ProviderAPIError, RateLimitExceeded, UnauthorizedError
from weaver.oauth.rate_limit import TokenRateLimiter, get_token_rate_limiter, token_key

from .schemas import (
    AccountStats,
    TikTokUser,
    TikTokVideo,
    TikTokVideoPage,
    error_envelope,
)

settings = get_settings()
logger = logging.getLogger(__name__)

USER_FIELDS = [
    "open_id",
    "union_id",
    "avatar_url",
    "avatar_url_100",
    "avatar_large_url",
    "display_name",
    "username",
    "bio_description",
    "is_verified",
    "profile_deep_link",
    "follower_count",
    "following_count",
    "likes_count",
    "video_count",
]

STATS_FIELDS = [
    "open_id",
    "follower_count",
    "following_count",
    "likes_count",
    "video_count",
]

VIDEO_FIELDS = [
    "id",
    "create_time",
    "cover_image_url",
    "share_url",
    "video_description",
    "title",
    "duration",
    "height",
    "width",
    "view_count",
    "like_count",
    "comment_count",
    "share_count",
]

# API maximum for both list page size and query batch size
MAX_VIDEOS_PER_REQUEST = 20

UNAUTHORIZED_ERROR_CODES = {"access_token_invalid", "access_token_expired"}


def _invalid_response(endpoint: str, error: Exception) -> ProviderAPIError:
    logger.warning("TikTok API call %s returned an unexpected payload: %r", endpoint, error)
    return ProviderAPIError(
        "TikTok API returned an unexpected response", error_code="invalid_response"
    )


class TikTokClient:
    """Authenticated calls against the TikTok API."""

    API_BASE = "https://open.tiktokapis.com/v2"

    def __init__(self, rate_limiter: TokenRateLimiter | None = None):
        self._rate_limiter = rate_limiter or get_token_rate_limiter(
            settings.TIKTOK_RATE_LIMIT_PER_MINUTE
        )

    async def get_user_info(
        self,
        access_token: str,
        fields: list[str] | None = None,
    ) -> TikTokUser:
        """Get profile information and statistics of the token's user."""
        query = urlencode({"fields": ",".join(fields or USER_FIELDS)})
        data = await self._request("GET", f"/user/info/?{query}", access_token)
        try:
            return TikTokUser.model_validate(data["data"]["user"])
        except (KeyError, TypeError, ValidationError) as e:
            raise _invalid_response("/user/info/", e) from e

    async def get_account_stats(self, access_token: str) -> AccountStats:
        """Get only the headline counters."""
        user = await self.get_user_info(access_token, STATS_FIELDS)
        return AccountStats.from_user(user)

    async def list_videos(
        self,
        access_token: str,
        cursor: int | None = None,
        max_count: int = MAX_VIDEOS_PER_REQUEST,
        fields: list[str] | None = None,
    ) -> TikTokVideoPage:
        """List the user's videos, newest first."""
        body: dict[str, Any] = {"max_count": max(1, min(max_count, MAX_VIDEOS_PER_REQUEST))}
        if cursor:
            body["cursor"] = cursor

        query = urlencode({"fields": ",".join(fields or VIDEO_FIELDS)})
        data = await self._request("POST", f"/video/list/?{query}", access_token, json=body)
        page = data.get("data") or {}
        try:
            videos = [TikTokVideo.model_validate(v) for v in page.get("videos") or []]
        except (AttributeError, TypeError, ValidationError) as e:
            raise _invalid_response("/video/list/", e) from e
        return TikTokVideoPage(
            videos=videos,
            cursor=page.get("cursor"),
            has_more=bool(page.get("has_more")),
        )

    async def query_videos(
        self,
        access_token: str,
        video_ids: list[str],
        fields: list[str] | None = None,
    ) -> list[TikTokVideo]:
        """Fetch specific videos owned by the user."""
        if not video_ids:
            return []
        if len(video_ids) > MAX_VIDEOS_PER_REQUEST:
            raise ValueError(f"Maximum {MAX_VIDEOS_PER_REQUEST} video IDs allowed per request")

        query = urlencode({"fields": ",".join(fields or VIDEO_FIELDS)})
        data = await self._request(
            "POST",
            f"/video/query/?{query}",
            access_token,
            json={"filters": {"video_ids": video_ids}},
        )
        page = data.get("data") or {}
        try:
            return [TikTokVideo.model_validate(v) for v in page.get("videos") or []]
        except (AttributeError, TypeError, ValidationError) as e:
            raise _invalid_response("/video/query/", e) from e

    async def _request(
        self,
        method: str,
        endpoint: str,
        access_token: str,
        json: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        if not await self._rate_limiter.try_acquire(token_key(access_token)):
            raise RateLimitExceeded("Rate limit exceeded. Please wait before retrying.")

        async with httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS) as client:
            response = await client.request(
                method,
                f"{self.API_BASE}{endpoint}",
                json=json,
                headers={
                    "Authorization": f"Bearer {access_token}",
                    "Content-Type": "application/json",
                },
            )

        try:
            payload = response.json()
        except ValueError:
            payload = None

        error = error_envelope(payload)
        error_code = error.get("code") if error else None
        message = (error or {}).get("message") or f"TikTok API error: {response.reason_phrase}"

        if response.status_code == 401 or error_code in UNAUTHORIZED_ERROR_CODES:
            raise UnauthorizedError(
                message, error_code=error_code, status_code=response.status_code
            )

        if not response.is_success or error is not None or not isinstance(payload, dict):
            logger.warning(
                "TikTok API call %s %s failed: status=%s error=%s log_id=%s",
                method,
                endpoint.split("?")[0],
                response.status_code,
                error_code,
                (error or {}).get("log_id"),
            )
            raise ProviderAPIError(message, error_code=error_code, status_code=response.status_code)

        return payload
