from .profile import ProviderProfile
from .registry import SUPPORTED_PLATFORMS, UnsupportedPlatformError, get_connector

__all__ = [
    "SUPPORTED_PLATFORMS",
    "ProviderProfile",
    "UnsupportedPlatformError",
    "get_connector",
]
