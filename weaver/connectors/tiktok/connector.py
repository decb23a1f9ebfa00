"""TikTok platform connector used by the account flows."""

from weaver.config import Settings, get_settings
from weaver.connectors.profile import ProviderProfile
from weaver.oauth.tokens import TokenSet

from .client import TikTokClient
from .oauth import TIKTOK_SCOPES, TikTokOAuth
from .schemas import AccountStats


class TikTokConnector:
    """Binds TikTok OAuth and API calls to the configured app credentials."""

    platform = "tiktok"
    display_name = "TikTok"

    def __init__(self, settings: Settings | None = None, client: TikTokClient | None = None):
        self._settings = settings or get_settings()
        self.client = client or TikTokClient()

    @property
    def scopes(self) -> list[str]:
        return list(TIKTOK_SCOPES)

    def credentials(self) -> tuple[str, str]:
        return self._settings.require_platform_credentials(self.platform)

    def get_authorize_url(self, redirect_uri: str, state: str, code_challenge: str) -> str:
        client_key, _ = self.credentials()
        return TikTokOAuth.get_authorize_url(
            client_key=client_key,
            redirect_uri=redirect_uri,
            state=state,
            code_challenge=code_challenge,
            scopes=self.scopes,
        )

    async def exchange_code(self, code: str, code_verifier: str, redirect_uri: str) -> TokenSet:
        client_key, client_secret = self.credentials()
        return await TikTokOAuth.exchange_code(
            code=code,
            code_verifier=code_verifier,
            client_key=client_key,
            client_secret=client_secret,
            redirect_uri=redirect_uri,
        )

    async def refresh_token(self, refresh_token: str) -> TokenSet:
        client_key, client_secret = self.credentials()
        return await TikTokOAuth.refresh_token(refresh_token, client_key, client_secret)

    async def revoke_token(self, access_token: str) -> None:
        client_key, client_secret = self.credentials()
        await TikTokOAuth.revoke_token(access_token, client_key, client_secret)

    async def fetch_profile(self, access_token: str) -> ProviderProfile:
        user = await self.client.get_user_info(access_token)
        return user.to_profile()

    async def fetch_stats(self, access_token: str) -> AccountStats:
        return await self.client.get_account_stats(access_token)
