"""OAuth and provider API error types."""


class OAuthError(Exception):
    """Base error for the account connection flow."""


class StateNotFoundError(OAuthError):
    """Raised when an OAuth state is unknown, already used or expired."""


class OAuthExchangeError(OAuthError):
    """Raised when the provider token endpoint rejects a request."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code

    def __str__(self) -> str:
        if self.error_code:
            return f"{self.error_code}: {self.message}"
        return self.message


class ProviderAPIError(OAuthError):
    """Raised when a provider resource call fails."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code


class UnauthorizedError(ProviderAPIError):
    """Raised when the provider rejects the access token."""


class RateLimitExceeded(OAuthError):
    """Raised before a provider call when the per-token budget is spent."""


class ReconnectRequiredError(OAuthError):
    """Raised when stored credentials can no longer be recovered by refresh."""
