"""Tests for the TikTok resource API client."""

import json

import httpx
import pytest

from weaver.connectors.tiktok import TikTokClient, TikTokConnector
from weaver.connectors.tiktok.client import MAX_VIDEOS_PER_REQUEST
from weaver.oauth.errors import ProviderAPIError, RateLimitExceeded, UnauthorizedError
from weaver.oauth.rate_limit import MemoryTokenRateLimiter

USER_INFO_URL = "https://open.tiktokapis.com/v2/user/info/"
VIDEO_LIST_URL = "https://open.tiktokapis.com/v2/video/list/"
VIDEO_QUERY_URL = "https://open.tiktokapis.com/v2/video/query/"

OK = {"code": "ok", "message": "", "log_id": "log"}


@pytest.fixture
def tiktok_client() -> TikTokClient:
    return TikTokClient(rate_limiter=MemoryTokenRateLimiter(limit=100))


class TestGetUserInfo:
    """Tests for /user/info/."""

    @pytest.mark.asyncio
    async def test_get_user_info_success(self, respx_mock, tiktok_client, tiktok_user_payload):
        route = respx_mock.get(USER_INFO_URL).mock(
            return_value=httpx.Response(200, json=tiktok_user_payload)
        )

        user = await tiktok_client.get_user_info("act.token")

        assert user.open_id == "tiktok-open-id-123"
        assert user.username == "testcreator"
        assert user.follower_count == 1200
        request = route.calls.last.request
        assert request.headers["authorization"] == "Bearer act.token"
        assert "follower_count" in request.url.params["fields"]

    @pytest.mark.asyncio
    async def test_profile_mapping(self, respx_mock, tiktok_user_payload):
        respx_mock.get(USER_INFO_URL).mock(
            return_value=httpx.Response(200, json=tiktok_user_payload)
        )
        connector = TikTokConnector(
            client=TikTokClient(rate_limiter=MemoryTokenRateLimiter(limit=10))
        )

        profile = await connector.fetch_profile("act.token")

        assert profile.platform_user_id == "tiktok-open-id-123"
        assert profile.username == "testcreator"
        assert profile.display_name == "Test Creator"
        assert profile.metadata["profile_deep_link"] == "https://vm.tiktok.com/testcreator"

    @pytest.mark.asyncio
    async def test_account_stats(self, respx_mock, tiktok_user_payload):
        respx_mock.get(USER_INFO_URL).mock(
            return_value=httpx.Response(200, json=tiktok_user_payload)
        )
        connector = TikTokConnector(
            client=TikTokClient(rate_limiter=MemoryTokenRateLimiter(limit=10))
        )

        stats = await connector.fetch_stats("act.token")

        assert stats.followers == 1200
        assert stats.following == 80
        assert stats.likes == 45000
        assert stats.videos == 37

    @pytest.mark.asyncio
    async def test_http_401_is_unauthorized(self, respx_mock, tiktok_client):
        respx_mock.get(USER_INFO_URL).mock(
            return_value=httpx.Response(
                401,
                json={
                    "error": {
                        "code": "access_token_invalid",
                        "message": "The access token is invalid or not found in the request.",
                        "log_id": "log",
                    }
                },
            )
        )

        with pytest.raises(UnauthorizedError) as exc_info:
            await tiktok_client.get_user_info("act.expired")

        assert exc_info.value.error_code == "access_token_invalid"
        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_invalid_token_code_under_200_is_unauthorized(self, respx_mock, tiktok_client):
        respx_mock.get(USER_INFO_URL).mock(
            return_value=httpx.Response(
                200,
                json={"error": {"code": "access_token_invalid", "message": "invalid"}},
            )
        )

        with pytest.raises(UnauthorizedError):
            await tiktok_client.get_user_info("act.expired")

    @pytest.mark.asyncio
    async def test_other_errors_are_provider_errors(self, respx_mock, tiktok_client):
        respx_mock.get(USER_INFO_URL).mock(
            return_value=httpx.Response(
                403,
                json={"error": {"code": "scope_not_authorized", "message": "missing scope"}},
            )
        )

        with pytest.raises(ProviderAPIError) as exc_info:
            await tiktok_client.get_user_info("act.token")

        assert not isinstance(exc_info.value, UnauthorizedError)
        assert exc_info.value.error_code == "scope_not_authorized"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "data",
        [{}, {"user": None}, {"user": {"display_name": "No Id"}}, None],
    )
    async def test_malformed_user_payload_is_provider_error(
        self, respx_mock, tiktok_client, data
    ):
        respx_mock.get(USER_INFO_URL).mock(
            return_value=httpx.Response(200, json={"data": data, "error": OK})
        )

        with pytest.raises(ProviderAPIError) as exc_info:
            await tiktok_client.get_user_info("act.token")

        assert exc_info.value.error_code == "invalid_response"


class TestVideos:
    """Tests for /video/list/ and /video/query/."""

    @pytest.mark.asyncio
    async def test_list_videos(self, respx_mock, tiktok_client):
        route = respx_mock.post(VIDEO_LIST_URL).mock(
            return_value=httpx.Response(
                200,
                json={
                    "data": {
                        "videos": [
                            {"id": "v1", "title": "First", "view_count": 100},
                            {"id": "v2", "title": "Second", "view_count": 250},
                        ],
                        "cursor": 1700000000000,
                        "has_more": True,
                    },
                    "error": OK,
                },
            )
        )

        page = await tiktok_client.list_videos("act.token", cursor=1710000000000, max_count=50)

        assert [v.id for v in page.videos] == ["v1", "v2"]
        assert page.cursor == 1700000000000
        assert page.has_more is True
        body = json.loads(route.calls.last.request.content)
        assert body == {"max_count": MAX_VIDEOS_PER_REQUEST, "cursor": 1710000000000}

    @pytest.mark.asyncio
    async def test_query_videos(self, respx_mock, tiktok_client):
        route = respx_mock.post(VIDEO_QUERY_URL).mock(
            return_value=httpx.Response(
                200,
                json={"data": {"videos": [{"id": "v1", "like_count": 7}]}, "error": OK},
            )
        )

        videos = await tiktok_client.query_videos("act.token", ["v1"])

        assert videos[0].like_count == 7
        body = json.loads(route.calls.last.request.content)
        assert body == {"filters": {"video_ids": ["v1"]}}

    @pytest.mark.asyncio
    async def test_malformed_video_entry_is_provider_error(self, respx_mock, tiktok_client):
        respx_mock.post(VIDEO_QUERY_URL).mock(
            return_value=httpx.Response(200, json={"data": {"videos": ["v1"]}, "error": OK})
        )

        with pytest.raises(ProviderAPIError) as exc_info:
            await tiktok_client.query_videos("act.token", ["v1"])

        assert exc_info.value.error_code == "invalid_response"

    @pytest.mark.asyncio
    async def test_query_videos_empty_list_skips_request(self, tiktok_client):
        assert await tiktok_client.query_videos("act.token", []) == []

    @pytest.mark.asyncio
    async def test_query_videos_rejects_more_than_limit(self, tiktok_client):
        with pytest.raises(ValueError):
            await tiktok_client.query_videos("act.token", [str(i) for i in range(21)])


class TestPerTokenBudget:
    """The per-token budget is enforced before any network I/O."""

    @pytest.mark.asyncio
    async def test_call_over_budget_fails_locally(self, respx_mock, tiktok_user_payload):
        budget = 5
        route = respx_mock.get(USER_INFO_URL).mock(
            return_value=httpx.Response(200, json=tiktok_user_payload)
        )
        client = TikTokClient(rate_limiter=MemoryTokenRateLimiter(limit=budget))

        for _ in range(budget):
            await client.get_user_info("act.busy-token")

        with pytest.raises(RateLimitExceeded):
            await client.get_user_info("act.busy-token")

        assert route.call_count == budget

    @pytest.mark.asyncio
    async def test_budget_is_per_token(self, respx_mock, tiktok_user_payload):
        respx_mock.get(USER_INFO_URL).mock(
            return_value=httpx.Response(200, json=tiktok_user_payload)
        )
        client = TikTokClient(rate_limiter=MemoryTokenRateLimiter(limit=1))

        await client.get_user_info("act.first")
        await client.get_user_info("act.second")
