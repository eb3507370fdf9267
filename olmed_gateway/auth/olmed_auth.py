"""Login, refresh and logout flows against the Olmed ERP auth endpoints.

The OlmedAuthClient feeds the shared TokenStore. Token freshness is
checked against a threshold (5 minutes by default):

- fresh: the stored token is returned without any network call
- near expiry or expired: POST /erp-api/auth/refresh with the current
  token, falling back to a full login if that fails
- absent: full login

Only one refresh or login runs at a time. Callers that waited for the
lock re-check freshness, so a burst of job executions triggers a single
network round trip. None of these flows raise on HTTP or transport
failures; they return an AuthResult with ``success=False``.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Optional, Tuple

import httpx

from olmed_gateway.auth.token_store import TokenFreshness, TokenInfo, TokenStore
from olmed_gateway.clock import utcnow
from olmed_gateway.config import OlmedConfig

logger = logging.getLogger(__name__)

_AUTH_HEADERS = {
    "accept": "application/json",
    "X-CSRF-TOKEN": "",
}


@dataclass
class AuthResult:
    """Outcome of a login, refresh or logout call.

    Attributes:
        success: Whether the operation succeeded
        token: Bearer token, when one is available
        expires_at: Token expiry
        expires_in: Token lifetime in seconds as reported by the server
        message: Human-readable description
        status_code: HTTP status of the last call, 0 if none was made
    """

    success: bool
    token: Optional[str] = None
    expires_at: Optional[datetime] = None
    expires_in: Optional[int] = None
    message: str = ""
    status_code: int = 0

    @classmethod
    def from_token(cls, info: TokenInfo, message: str, expires_in: Optional[int] = None) -> "AuthResult":
        return cls(
            success=True,
            token=info.token,
            expires_at=info.expires_at,
            expires_in=expires_in,
            message=message,
        )


class OlmedAuthClient:
    """Manages the shared Olmed bearer token.

    Example:
        store = TokenStore()
        async with httpx.AsyncClient() as client:
            auth = OlmedAuthClient(client, store, config.olmed)
            result = await auth.refresh_if_needed()
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        token_store: TokenStore,
        config: Optional[OlmedConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize the auth client.

        Args:
            http_client: Shared HTTP client
            token_store: Store receiving issued tokens
            config: Olmed connection settings
            clock: Time source
        """
        self._client = http_client
        self._store = token_store
        self._config = config or OlmedConfig()
        self._clock = clock
        self._lock = asyncio.Lock()

    @property
    def provider_key(self) -> str:
        return self._config.provider_key

    @property
    def token_store(self) -> TokenStore:
        return self._store

    async def login(self) -> AuthResult:
        """Exchange username and password for a new token."""
        async with self._lock:
            return await self._login()

    async def refresh(self) -> AuthResult:
        """Force a refresh of the stored token.

        Falls back to a full login if the refresh endpoint rejects the
        token. Fails without network I/O when no token was ever stored.
        """
        async with self._lock:
            info = self._store.peek(self.provider_key)
            if info is None:
                return AuthResult(success=False, message="No token to refresh, log in first")

            result = await self._try_refresh(info.token)
            if result.success:
                return result

            logger.info("Token refresh failed, falling back to full login")
            return await self._login()

    async def refresh_if_needed(self) -> AuthResult:
        """Return a usable token, refreshing or logging in only when required."""
        async with self._lock:
            now = self._clock()
            freshness = self._store.freshness(
                self.provider_key,
                self._config.refresh_threshold_seconds,
                now,
            )

            if freshness is TokenFreshness.FRESH:
                info = self._store.peek(self.provider_key)
                return AuthResult.from_token(info, "Token is still valid")

            if freshness in (TokenFreshness.NEAR_EXPIRY, TokenFreshness.EXPIRED):
                logger.info(f"Token {freshness.value.replace('_', ' ')}, attempting refresh")
                info = self._store.peek(self.provider_key)
                result = await self._try_refresh(info.token)
                if result.success:
                    return result

            logger.info("Token refresh failed or no token stored, performing full login")
            return await self._login()

    async def logout(self) -> AuthResult:
        """Log out from the ERP.

        The local token is removed whatever the remote call returns.
        """
        async with self._lock:
            info = self._store.get(self.provider_key)
            if info is None:
                logger.info("No active Olmed token, skipping logout")
                return AuthResult(success=True, message="No active token to log out")

            logger.info(f"Logging out from Olmed API: {self._config.logout_url}")
            try:
                response = await self._client.post(
                    self._config.logout_url,
                    headers={**_AUTH_HEADERS, "Authorization": f"Bearer {info.token}"},
                    content=b"",
                    timeout=self._config.request_timeout,
                )
            except httpx.HTTPError as e:
                logger.error(f"Error during Olmed logout: {e}")
                return AuthResult(success=False, message=str(e))
            finally:
                self._store.remove(self.provider_key)

            if response.is_success:
                logger.info("Logged out from Olmed API")
                return AuthResult(success=True, message="Logged out", status_code=response.status_code)

            logger.warning(f"Olmed logout failed: {response.status_code} - {response.text}")
            return AuthResult(
                success=False,
                message=f"Logout failed: {response.status_code} - {response.text}",
                status_code=response.status_code,
            )

    def shared_token(self) -> AuthResult:
        """Snapshot of the stored token, without any network call."""
        info = self._store.get(self.provider_key)
        if info is None:
            return AuthResult(success=False, message="No valid token")
        return AuthResult.from_token(info, "Token is valid")

    async def ensure_token(self) -> Optional[str]:
        """Refresh if needed, then return the valid stored token, if any."""
        result = await self.refresh_if_needed()
        if not result.success:
            logger.warning(f"Could not obtain Olmed token: {result.message}")
        info = self._store.get(self.provider_key)
        return info.token if info else None

    async def _login(self) -> AuthResult:
        if not self._config.has_credentials:
            logger.error("Olmed credentials are not configured")
            return AuthResult(success=False, message="Olmed credentials are not configured")

        logger.info(f"Logging in to Olmed API: {self._config.login_url}")
        try:
            response = await self._client.post(
                self._config.login_url,
                params={"username": self._config.username, "password": self._config.password},
                headers=_AUTH_HEADERS,
                content=b"",
                timeout=self._config.request_timeout,
            )
        except httpx.HTTPError as e:
            logger.error(f"Error during Olmed login: {e}")
            return AuthResult(success=False, message=str(e))

        if not response.is_success:
            logger.warning(f"Olmed login failed: {response.status_code} - {response.text}")
            return AuthResult(
                success=False,
                message=f"Login failed: {response.status_code} - {response.text}",
                status_code=response.status_code,
            )

        parsed = self._parse_token_response(response)
        if parsed is None:
            logger.error("Olmed login returned an invalid response")
            return AuthResult(
                success=False,
                message="Invalid login response",
                status_code=response.status_code,
            )

        info, expires_in = parsed
        self._store.set(self.provider_key, info)
        logger.info(f"Logged in to Olmed API, token expires at {info.expires_at.isoformat()}")
        result = AuthResult.from_token(info, "Logged in", expires_in)
        result.status_code = response.status_code
        return result

    async def _try_refresh(self, current_token: str) -> AuthResult:
        logger.info(f"Refreshing Olmed token: {self._config.refresh_url}")
        try:
            response = await self._client.post(
                self._config.refresh_url,
                headers={**_AUTH_HEADERS, "Authorization": f"Bearer {current_token}"},
                content=b"",
                timeout=self._config.request_timeout,
            )
        except httpx.HTTPError as e:
            logger.error(f"Error during Olmed token refresh: {e}")
            return AuthResult(success=False, message=str(e))

        if response.is_success:
            parsed = self._parse_token_response(response)
            if parsed is not None:
                info, expires_in = parsed
                self._store.set(self.provider_key, info)
                logger.info(f"Olmed token refreshed, expires at {info.expires_at.isoformat()}")
                result = AuthResult.from_token(info, "Token refreshed", expires_in)
                result.status_code = response.status_code
                return result

        logger.warning(f"Olmed token refresh failed: {response.status_code} - {response.text}")
        return AuthResult(
            success=False,
            message=f"Refresh failed: {response.status_code}",
            status_code=response.status_code,
        )

    def _parse_token_response(self, response: httpx.Response) -> Optional[Tuple[TokenInfo, int]]:
        """Extract the token and its lifetime from an auth response.

        Accepts ``access_token`` or ``token`` and ``expires_in`` or
        ``expiresIn``; a missing or invalid lifetime uses the configured
        default. A lifetime too large to represent makes the response invalid.
        """
        try:
            data: Any = response.json()
        except ValueError:
            return None
        if not isinstance(data, dict):
            return None

        token = data.get("access_token") or data.get("token")
        if not token or not isinstance(token, str):
            return None

        raw_expires_in = data.get("expires_in", data.get("expiresIn"))
        try:
            expires_in = int(raw_expires_in)
        except (TypeError, ValueError, OverflowError):
            expires_in = self._config.default_expires_in
        if expires_in <= 0:
            expires_in = self._config.default_expires_in

        try:
            info = TokenInfo.issue(token, expires_in, self._clock())
        except (OverflowError, ValueError):
            logger.warning(f"Olmed token lifetime out of range: {expires_in}")
            return None
        return info, expires_in
