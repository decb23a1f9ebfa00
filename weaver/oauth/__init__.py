from .errors import (
    OAuthError,
    OAuthExchangeError,
    ProviderAPIError,
    RateLimitExceeded,
    ReconnectRequiredError,
    StateNotFoundError,
    UnauthorizedError,
)
from .pkce import PKCEPair, generate_code_challenge, generate_pkce, generate_state
from .tokens import TokenSet

__all__ = [
    "OAuthError",
    "OAuthExchangeError",
    "PKCEPair",
    "ProviderAPIError",
    "RateLimitExceeded",
    "ReconnectRequiredError",
    "StateNotFoundError",
    "TokenSet",
    "UnauthorizedError",
    "generate_code_challenge",
    "generate_pkce",
    "generate_state",
]
