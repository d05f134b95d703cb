"""
SFMC access-token cache.

Holds a single cached access token for the process and performs the OAuth 2.0
client-credentials exchange when the cached token is absent or expired.

Performance notes:
- A valid cached token is returned with no network call, so repeated saves
  cost one token exchange per token lifetime instead of one per save.
- The cached expiry is ``expires_in`` minus a safety margin (60s by default)
  so a token is never sent in its last moments of validity, where clock skew
  or in-flight latency could get it rejected upstream.
- Refreshes are serialized with an asyncio.Lock and the slot is re-checked
  once the lock is held, so concurrent misses in one process share a single
  exchange. Separate processes each keep their own cache.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

import httpx

from de_relay.config import RelaySettings
from de_relay.errors import AuthError, ConfigError

logger = logging.getLogger(__name__)


def _now_millis() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class CachedToken:
    """Token string and its local expiry, always written together."""

    token: str
    expires_at_ms: int

    def is_valid(self, now_ms: int) -> bool:
        return now_ms < self.expires_at_ms


class TokenCache:
    """
    Process-wide owner of the single cached SFMC access token.

    Construct once per process and pass by reference to the relay. Tests
    substitute ``clock`` (epoch milliseconds) and the httpx client's transport.
    """

    def __init__(
        self,
        settings: RelaySettings,
        http_client: httpx.AsyncClient,
        clock: Callable[[], int] = _now_millis,
    ):
        self._settings = settings
        self._http = http_client
        self._clock = clock
        self._cached: Optional[CachedToken] = None
        self._refresh_lock = asyncio.Lock()

    @property
    def cached(self) -> Optional[CachedToken]:
        return self._cached

    def invalidate(self) -> None:
        """Drop the cached token so the next get_token() re-authenticates."""
        self._cached = None

    def _valid_cached_token(self) -> Optional[str]:
        cached = self._cached
        if cached is not None and cached.is_valid(self._clock()):
            return cached.token
        return None

    async def get_token(self) -> str:
        """
        Return a usable access token, authenticating only on a cache miss.

        Returns:
            The bearer token string.

        Raises:
            ConfigError: client id, secret or subdomain is not configured.
                Raised before any network call.
            AuthError: the token exchange failed (non-2xx response, network
                failure or unusable response body). Nothing is cached.
        """
        missing = self._settings.missing_required()
        if missing:
            raise ConfigError(missing)

        token = self._valid_cached_token()
        if token is not None:
            logger.debug("Using cached SFMC token")
            return token

        async with self._refresh_lock:
            # Another request may have refreshed while we waited for the lock
            token = self._valid_cached_token()
            if token is not None:
                logger.debug("Using SFMC token refreshed by a concurrent request")
                return token
            return await self._authenticate()

    async def _authenticate(self) -> str:
        """Run the client-credentials exchange and store the result."""
        settings = self._settings
        body = {
            "grant_type": "client_credentials",
            "client_id": settings.client_id,
            "client_secret": settings.client_secret,
        }
        if settings.account_id:
            body["account_id"] = settings.account_id

        logger.info("Requesting new SFMC token from %s", settings.auth_url)

        try:
            response = await self._http.post(
                settings.auth_url,
                json=body,
                timeout=settings.request_timeout,
            )
        except httpx.HTTPError as exc:
            logger.error(f"SFMC token request failed: {exc!r}")
            raise AuthError(f"SFMC Auth failed: {exc}") from exc

        if not response.is_success:
            logger.error("SFMC Auth failed with HTTP %s", response.status_code)
            raise AuthError(
                f"SFMC Auth failed: {response.status_code} - {response.text}",
                status=response.status_code,
                body=response.text,
            )

        try:
            data = response.json()
            access_token = data["access_token"]
            expires_in = int(data["expires_in"])
        except (ValueError, KeyError, TypeError) as exc:
            logger.error("SFMC Auth response did not contain a usable token")
            raise AuthError(
                "SFMC Auth failed: response missing access_token or expires_in",
                status=response.status_code,
                body=response.text,
            ) from exc

        if not access_token:
            raise AuthError(
                "SFMC Auth failed: empty access_token",
                status=response.status_code,
                body=response.text,
            )

        expires_at_ms = self._clock() + (expires_in - settings.token_safety_margin) * 1000
        self._cached = CachedToken(token=access_token, expires_at_ms=expires_at_ms)

        logger.info("SFMC token acquired successfully (expires_in=%ss)", expires_in)
        return access_token
