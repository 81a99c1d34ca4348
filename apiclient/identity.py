"""
apiclient.identity - Identity Provider Protocol

Defines how the retry adapter obtains a fresh bearer token after a 401, and
ships an OAuth 2.0 refresh-token implementation.

Reference:
- https://datatracker.ietf.org/doc/html/rfc6749#section-6
"""

import logging
from abc import ABC, abstractmethod
from threading import Lock

import httpx

from apiclient.errors import RefreshError

logger = logging.getLogger(__name__)


class IdentityProvider(ABC):
    """
    Abstract source of bearer tokens.

    Example:
        >>> class MyProvider(IdentityProvider):
        ...     async def refresh_token(self, force_refresh: bool = True) -> str | None: ...
    """

    @abstractmethod
    async def refresh_token(self, force_refresh: bool = True) -> str | None:
        """
        Obtain a new ID/access token.

        Args:
            force_refresh: Bypass any token cached by the provider

        Returns:
            Fresh token, or None if the provider has no signed-in user

        Raises:
            RefreshError: If the provider cannot issue a token
        """
        ...


class OAuthRefreshTokenProvider(IdentityProvider):
    """
    OAuth 2.0 ``refresh_token`` grant against a token endpoint.

    Example:
        >>> provider = OAuthRefreshTokenProvider(
        ...     token_url="https://auth.example.com/oauth/token",
        ...     client_id="mobile-app",
        ...     refresh_token="1//0eabc...",
        ... )
        >>> access_token = await provider.refresh_token()
    """

    # Default timeout for HTTP requests
    TIMEOUT = 30.0

    def __init__(
        self,
        token_url: str,
        client_id: str,
        refresh_token: str,
        client_secret: str | None = None,
        scope: str | None = None,
    ) -> None:
        self.token_url = token_url
        self.client_id = client_id
        self.client_secret = client_secret
        self.scope = scope
        self._refresh_token = refresh_token
        self._access_token: str | None = None
        self._lock = Lock()

    async def refresh_token(self, force_refresh: bool = True) -> str | None:
        """
        Exchange the refresh token for a new access token.

        Rotated refresh tokens returned by the server replace the stored one.

        Args:
            force_refresh: When False, a previously issued access token is reused

        Returns:
            New access token
        """
        with self._lock:
            cached = self._access_token
            refresh_token = self._refresh_token
        if cached and not force_refresh:
            return cached

        data = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": self.client_id,
        }
        if self.client_secret:
            data["client_secret"] = self.client_secret
        if self.scope:
            data["scope"] = self.scope

        try:
            async with httpx.AsyncClient(timeout=self.TIMEOUT) as client:
                response = await client.post(self.token_url, data=data)
        except httpx.HTTPError as e:
            logger.error(
                f"Token refresh request failed: {e}",
                extra={"token_url": self.token_url},
            )
            raise RefreshError(f"Token refresh request failed: {e}") from e

        if response.status_code != 200:
            logger.error(
                f"Token refresh failed: {response.status_code}",
                extra={"status_code": response.status_code},
            )
            raise RefreshError(
                f"Token endpoint returned {response.status_code}",
                code=response.status_code,
            )

        try:
            tokens = response.json()
        except ValueError as e:
            raise RefreshError("Token endpoint returned invalid JSON") from e

        access_token = tokens.get("access_token")
        if not access_token:
            raise RefreshError("Token endpoint response has no access_token")

        with self._lock:
            self._access_token = access_token
            # Some servers don't rotate refresh tokens; keep the original then
            self._refresh_token = tokens.get("refresh_token") or refresh_token

        logger.info(
            "OAuth token refresh successful",
            extra={
                "expires_in": tokens.get("expires_in"),
                "rotated_refresh_token": "refresh_token" in tokens,
            },
        )

        return access_token
