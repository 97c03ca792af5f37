"""
Twitch API client.

Wraps the two Twitch calls the backend needs: resolving an access token to
its Helix user profile, and exchanging an OAuth authorization code for a
token without exposing the client secret to the browser.
"""

import logging
from typing import Any

import httpx

from t333watch.config import Config
from t333watch.utils.exceptions import AuthenticationError, ConfigurationError, ProviderError

logger = logging.getLogger(__name__)


class TwitchClient:
    def __init__(
        self,
        client_id: str | None = None,
        client_secret: str | None = None,
        redirect_uri: str | None = None,
        api_base_url: str | None = None,
        oauth_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self.client_id = client_id or Config.TWITCH_CLIENT_ID
        self.client_secret = client_secret or Config.TWITCH_CLIENT_SECRET
        self.redirect_uri = redirect_uri or Config.TWITCH_REDIRECT_URI
        self.api_base_url = (api_base_url or Config.TWITCH_API_BASE_URL).rstrip("/")
        self.oauth_url = oauth_url or Config.TWITCH_OAUTH_URL
        self.timeout = timeout or Config.TWITCH_TIMEOUT_SECONDS
        self._transport = transport

    def _client(self) -> httpx.Client:
        return httpx.Client(timeout=self.timeout, transport=self._transport)

    def get_user(self, access_token: str) -> dict[str, Any]:
        """
        Resolve an access token to the Twitch user it belongs to.

        Raises:
            AuthenticationError: If Twitch rejects the token or returns no user
        """
        if not self.client_id:
            raise ConfigurationError("TWITCH_CLIENT_ID is not configured")

        try:
            with self._client() as client:
                response = client.get(
                    f"{self.api_base_url}/users",
                    headers={"Client-Id": self.client_id, "Authorization": f"Bearer {access_token}"},
                )
        except httpx.RequestError as e:
            logger.error(f"Twitch user lookup failed: {e}")
            raise ProviderError("Unable to reach Twitch", status_code=502) from e

        if response.status_code != 200:
            logger.info(f"Twitch rejected access token (status {response.status_code})")
            raise AuthenticationError("Invalid token")

        users = response.json().get("data") or []
        if not users:
            raise AuthenticationError("Invalid token")
        return users[0]

    def exchange_code(self, code: str) -> dict[str, Any]:
        """
        Exchange an OAuth authorization code for an access token.

        Returns:
            Twitch token response (access_token, refresh_token, expires_in, ...)

        Raises:
            ProviderError: With the upstream status when Twitch refuses the code
        """
        if not (self.client_id and self.client_secret):
            raise ConfigurationError("Twitch OAuth credentials are not configured")

        params = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "code": code,
            "grant_type": "authorization_code",
            "redirect_uri": self.redirect_uri,
        }

        try:
            with self._client() as client:
                response = client.post(
                    self.oauth_url,
                    params=params,
                    headers={"Content-Type": "application/x-www-form-urlencoded"},
                )
        except httpx.RequestError as e:
            logger.error(f"Twitch token exchange failed: {e}")
            raise ProviderError("Unable to reach Twitch", status_code=502) from e

        if response.status_code != 200:
            logger.error(f"Twitch token exchange error (status {response.status_code}): {response.text}")
            raise ProviderError("Failed to exchange code for token", status_code=response.status_code)

        return response.json()


def get_twitch_client() -> TwitchClient:
    """FastAPI dependency for the Twitch client."""
    return TwitchClient()
