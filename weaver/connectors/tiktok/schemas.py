"""TikTok API v2 payload models."""

from typing import Any

from pydantic import BaseModel, Field

from weaver.connectors.profile import ProviderProfile


class TikTokUser(BaseModel):
    """User object returned by /user/info/."""

    open_id: str
    union_id: str | None = None
    avatar_url: str | None = None
    avatar_url_100: str | None = None
    avatar_large_url: str | None = None
    display_name: str | None = None
    username: str | None = None
    bio_description: str | None = None
    is_verified: bool | None = None
    profile_deep_link: str | None = None
    follower_count: int | None = None
    following_count: int | None = None
    likes_count: int | None = None
    video_count: int | None = None

    def to_profile(self) -> ProviderProfile:
        return ProviderProfile(
            platform_user_id=self.open_id,
            username=self.username,
            display_name=self.display_name,
            avatar_url=self.avatar_url,
            metadata={
                "is_verified": self.is_verified,
                "profile_deep_link": self.profile_deep_link,
            },
        )


class TikTokVideo(BaseModel):
    """Video object returned by /video/list/ and /video/query/."""

    id: str
    create_time: int | None = None
    cover_image_url: str | None = None
    share_url: str | None = None
    video_description: str | None = None
    title: str | None = None
    duration: int | None = None
    height: int | None = None
    width: int | None = None
    view_count: int | None = None
    like_count: int | None = None
    comment_count: int | None = None
    share_count: int | None = None


class TikTokVideoPage(BaseModel):
    """One page of the user's videos."""

    videos: list[TikTokVideo] = Field(default_factory=list)
    cursor: int | None = None
    has_more: bool = False


class AccountStats(BaseModel):
    """Headline counters for the dashboard."""

    followers: int = 0
    following: int = 0
    likes: int = 0
    videos: int = 0

    @classmethod
    def from_user(cls, user: TikTokUser) -> "AccountStats":
        return cls(
            followers=user.follower_count or 0,
            following=user.following_count or 0,
            likes=user.likes_count or 0,
            videos=user.video_count or 0,
        )


def error_envelope(payload: Any) -> dict[str, Any] | None:
    """Return the API-level error object unless it reports success."""
    if not isinstance(payload, dict):
        return None
    error = payload.get("error")
    if isinstance(error, dict) and error.get("code") not in (None, "", "ok"):
        return error
    return None
