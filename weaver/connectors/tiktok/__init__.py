from .client import TikTokClient
from .connector import TikTokConnector
from .oauth import TIKTOK_SCOPES, TikTokOAuth

__all__ = ["TIKTOK_SCOPES", "TikTokClient", "TikTokConnector", "TikTokOAuth"]
