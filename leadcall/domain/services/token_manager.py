"""
Token Manager
Caches the Zoho CRM OAuth access token and refreshes it on demand.

Concurrency:
- At most one refresh exchange is in flight at a time. Concurrent callers
  await the same task instead of starting a second exchange (Zoho rotates
  refresh grants, so parallel exchanges can invalidate each other).
- A failed exchange clears the cache (fail-closed).
"""
import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Optional, Dict, Any

import httpx

from leadcall.core.config import ZohoSettings

logger = logging.getLogger(__name__)


class TokenRefreshError(Exception):
    """Raised when the refresh token exchange fails"""
    pass


class TokenManager:
    """
    Owns the single cached CRM access token.

    All CRM-calling collaborators must route through get_access_token()
    rather than caching a copy of the token.
    """

    MIN_BUFFER_SECONDS = 60
    DEFAULT_EXPIRES_IN = 3600
    REQUEST_TIMEOUT = 10.0

    def __init__(
        self,
        settings: ZohoSettings,
        buffer_seconds: int = 60,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        """
        Initialize token manager.

        Args:
            settings: Zoho OAuth client credentials and refresh token
            buffer_seconds: Treat tokens as expired this long before expiry (>= 60)
            http_client: Optional shared client (a new one is created per exchange otherwise)
        """
        if buffer_seconds < self.MIN_BUFFER_SECONDS:
            raise ValueError(
                f"buffer_seconds must be at least {self.MIN_BUFFER_SECONDS}, got {buffer_seconds}"
            )

        self._settings = settings
        self._buffer_seconds = buffer_seconds
        self._http_client = http_client

        self._access_token: Optional[str] = None
        self._expires_at: Optional[float] = None  # epoch seconds
        self._refresh_task: Optional[asyncio.Task] = None
        self._refresh_count = 0

    @property
    def token_url(self) -> str:
        return f"{self._settings.accounts_url.rstrip('/')}/oauth/v2/token"

    @property
    def refresh_count(self) -> int:
        """Number of refresh exchanges started (for diagnostics)."""
        return self._refresh_count

    def is_token_valid(self) -> bool:
        """Check if the cached token is usable for at least buffer_seconds more."""
        if not self._access_token or not self._expires_at:
            return False
        return (self._expires_at - time.time()) > self._buffer_seconds

    async def get_access_token(self) -> str:
        """
        Get a valid access token, refreshing if expired or missing.

        Returns:
            Access token string

        Raises:
            TokenRefreshError: If a refresh was needed and failed
        """
        if self.is_token_valid():
            logger.debug("Using cached access token")
            return self._access_token

        if self._refresh_task is not None:
            logger.debug("Token refresh in progress, waiting...")

        return await self.refresh_access_token()

    async def refresh_access_token(self) -> str:
        """
        Force a refresh exchange, or join the one already in flight.

        Raises:
            TokenRefreshError: If the exchange fails
        """
        if self._refresh_task is None:
            logger.info("Refreshing Zoho access token...")
            self._refresh_count += 1
            self._refresh_task = asyncio.create_task(self._perform_token_refresh())
            self._refresh_task.add_done_callback(self._on_refresh_done)

        # Shield so one cancelled waiter does not abort the exchange for the others
        return await asyncio.shield(self._refresh_task)

    def _on_refresh_done(self, task: asyncio.Task) -> None:
        if self._refresh_task is task:
            self._refresh_task = None
        # Mark the exception retrieved when every waiter was cancelled
        if not task.cancelled():
            task.exception()

    async def _perform_token_refresh(self) -> str:
        """Exchange the refresh token for a new access token."""
        data = {
            "refresh_token": self._settings.refresh_token or "",
            "client_id": self._settings.client_id or "",
            "client_secret": self._settings.client_secret or "",
            "grant_type": "refresh_token"
        }

        try:
            if self._http_client is not None:
                response = await self._post_token_request(self._http_client, data)
            else:
                async with httpx.AsyncClient(timeout=self.REQUEST_TIMEOUT) as client:
                    response = await self._post_token_request(client, data)

            if response.status_code != 200:
                raise TokenRefreshError(
                    f"Token refresh failed: HTTP {response.status_code} {self._error_from(response)}"
                )

            token_data = response.json()
            access_token = token_data.get("access_token")

            if not access_token:
                raise TokenRefreshError(
                    f"Token refresh failed: {token_data.get('error') or 'No access_token received from Zoho'}"
                )

            expires_in = token_data.get("expires_in") or self.DEFAULT_EXPIRES_IN
            self._access_token = access_token
            self._expires_at = time.time() + int(expires_in)

            logger.info(f"Access token refreshed successfully (expires in {expires_in} seconds)")
            return access_token

        except TokenRefreshError as e:
            logger.error(f"Failed to refresh access token: {e}")
            self._clear()
            raise
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Failed to refresh access token: {e}")
            self._clear()
            raise TokenRefreshError(f"Token refresh failed: {e}") from e

    async def _post_token_request(self, client: httpx.AsyncClient, data: Dict[str, str]) -> httpx.Response:
        logger.debug(f"Token refresh request to: {self.token_url}")
        return await client.post(
            self.token_url,
            data=data,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            timeout=self.REQUEST_TIMEOUT
        )

    @staticmethod
    def _error_from(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text
        return body.get("error") or body.get("message") or response.text

    def _clear(self) -> None:
        self._access_token = None
        self._expires_at = None

    def clear_token(self) -> None:
        """Drop the cached token; the next get_access_token() refreshes."""
        logger.info("Clearing cached access token")
        self._clear()

    def get_token_info(self) -> Dict[str, Any]:
        """Token state for health checks (never includes the token itself)."""
        expires_at = None
        time_until_expiry = 0
        if self._expires_at:
            expires_at = datetime.fromtimestamp(self._expires_at, tz=timezone.utc).isoformat()
            time_until_expiry = max(0, int(self._expires_at - time.time()))

        return {
            "has_token": self._access_token is not None,
            "is_valid": self.is_token_valid(),
            "expires_at": expires_at,
            "time_until_expiry": time_until_expiry,
            "refreshing": self._refresh_task is not None,
        }
