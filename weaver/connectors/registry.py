"""Supported platforms."""

from functools import lru_cache

from weaver.connectors.tiktok import TikTokConnector

SUPPORTED_PLATFORMS = ("tiktok",)


class UnsupportedPlatformError(ValueError):
    """Raised for a platform without a connector."""

    def __init__(self, platform: str):
        super().__init__(f"Platform {platform} not supported yet")
        self.platform = platform


@lru_cache
def _tiktok_connector() -> TikTokConnector:
    return TikTokConnector()


def get_connector(platform: str) -> TikTokConnector:
    """Return the connector for ``platform``."""
    if platform == "tiktok":
        return _tiktok_connector()
    raise UnsupportedPlatformError(platform)
