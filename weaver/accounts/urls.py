"""URLs shared by the connect endpoint, the callback and the notifications."""

from urllib.parse import urlencode, urlsplit

from weaver.config import get_settings

settings = get_settings()


def build_redirect_uri(platform: str) -> str:
    """OAuth redirect URI registered with the provider for ``platform``."""
    return f"{settings.API_URL.rstrip('/')}/accounts/callback/{platform}"


def frontend_origin() -> str:
    parts = urlsplit(settings.FRONTEND_URL)
    return f"{parts.scheme}://{parts.netloc}"


def frontend_url(path: str, **params: str) -> str:
    url = f"{settings.FRONTEND_URL.rstrip('/')}{path}"
    if params:
        separator = "&" if "?" in url else "?"
        url = f"{url}{separator}{urlencode(params)}"
    return url


def dashboard_url(account_id: str) -> str:
    return frontend_url("/dashboard", account=account_id, tab="metrics")


def error_url(message: str) -> str:
    return frontend_url("/", error=message)


def safe_redirect_path(redirect_to: str | None) -> str | None:
    """Accept only frontend-relative paths as post-connection targets."""
    if not redirect_to:
        return None
    if not redirect_to.startswith("/") or redirect_to.startswith("//") or "\\" in redirect_to:
        return None
    parts = urlsplit(redirect_to)
    if parts.scheme or parts.netloc:
        return None
    return redirect_to
