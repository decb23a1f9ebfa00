"""Account schemas."""

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from weaver.connectors.tiktok.client import MAX_VIDEOS_PER_REQUEST
from weaver.connectors.tiktok.schemas import AccountStats, TikTokUser


class ConnectedAccountResponse(BaseModel):
    """Connected account without credentials."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    platform: str
    platform_user_id: str
    platform_username: str | None = None
    display_name: str | None = None
    avatar_url: str | None = None
    scopes: list[str] = Field(default_factory=list)
    token_expires_at: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict, validation_alias="account_metadata")
    created_at: datetime
    updated_at: datetime


class ConnectResponse(BaseModel):
    """Authorization URL for a new connection attempt."""

    authorization_url: str
    state: str


class ProfileResponse(BaseModel):
    """Provider profile and headline stats."""

    account_id: uuid.UUID
    user: TikTokUser
    stats: AccountStats
    cached: bool = False
    fetched_at: datetime


class VideoQueryRequest(BaseModel):
    """Video ids to look up."""

    video_ids: list[str] = Field(min_length=1, max_length=MAX_VIDEOS_PER_REQUEST)


class DisconnectResponse(BaseModel):
    """Disconnect response."""

    message: str
    account_id: uuid.UUID
    platform: str
    revoked: bool
