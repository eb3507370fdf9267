"""Shared bearer-token cache.

The TokenStore owns the current credential for each provider key. Job
executions read snapshots concurrently; login and refresh replace the
whole TokenInfo in one step. It is constructed once by the daemon and
passed to everything that needs it.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Dict, Optional

from olmed_gateway.clock import ensure_utc, utcnow

logger = logging.getLogger(__name__)

DEFAULT_PROVIDER_KEY = "olmed"


class TokenFreshness(Enum):
    """How close a stored token is to expiry."""

    FRESH = "fresh"
    NEAR_EXPIRY = "near_expiry"
    EXPIRED = "expired"
    ABSENT = "absent"


@dataclass(frozen=True)
class TokenInfo:
    """An issued bearer token.

    Attributes:
        token: The bearer token value
        expires_at: When the token stops being valid
        created_at: When the token was issued
    """

    token: str
    expires_at: datetime
    created_at: datetime

    def __post_init__(self) -> None:
        object.__setattr__(self, "expires_at", ensure_utc(self.expires_at))
        object.__setattr__(self, "created_at", ensure_utc(self.created_at))
        if not self.token:
            raise ValueError("Token value must not be empty")
        if self.expires_at <= self.created_at:
            raise ValueError(
                f"Token expiry {self.expires_at.isoformat()} must be after "
                f"creation {self.created_at.isoformat()}"
            )

    @classmethod
    def issue(cls, token: str, expires_in: int, now: Optional[datetime] = None) -> "TokenInfo":
        """Create a token valid for ``expires_in`` seconds from ``now``."""
        created_at = ensure_utc(now or utcnow())
        return cls(
            token=token,
            expires_at=created_at + timedelta(seconds=expires_in),
            created_at=created_at,
        )

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        return self.expires_at > ensure_utc(now or utcnow())

    def expires_within(self, seconds: float, now: Optional[datetime] = None) -> bool:
        """Whether the token expires within ``seconds`` of ``now``."""
        return self.expires_at <= ensure_utc(now or utcnow()) + timedelta(seconds=seconds)

    def remaining_seconds(self, now: Optional[datetime] = None) -> float:
        remaining = (self.expires_at - ensure_utc(now or utcnow())).total_seconds()
        return max(remaining, 0.0)


class TokenStore:
    """Thread-safe token cache keyed by provider.

    Example:
        store = TokenStore()
        store.set("olmed", TokenInfo.issue("abc", 3600))
        info = store.get("olmed")  # None once expired
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        """Initialize the store.

        Args:
            clock: Time source used for expiry checks
        """
        self._tokens: Dict[str, TokenInfo] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def get(self, provider_key: str = DEFAULT_PROVIDER_KEY) -> Optional[TokenInfo]:
        """Get a valid token.

        Expired entries are evicted and reported as absent.

        Args:
            provider_key: Provider the token belongs to

        Returns:
            The token, or None if absent or expired
        """
        now = self._clock()
        with self._lock:
            info = self._tokens.get(provider_key)
            if info is None:
                return None
            if not info.is_valid(now):
                del self._tokens[provider_key]
                logger.debug(f"Evicted expired token for provider '{provider_key}'")
                return None
            return info

    def peek(self, provider_key: str = DEFAULT_PROVIDER_KEY) -> Optional[TokenInfo]:
        """Get the stored token even if it has expired.

        Used by the refresh flow, which needs the old token as credential.
        """
        with self._lock:
            return self._tokens.get(provider_key)

    def set(self, provider_key: str, info: TokenInfo) -> None:
        with self._lock:
            self._tokens[provider_key] = info
        logger.debug(
            f"Stored token for provider '{provider_key}', "
            f"expires at {info.expires_at.isoformat()}"
        )

    def remove(self, provider_key: str = DEFAULT_PROVIDER_KEY) -> bool:
        """Remove the token for a provider.

        Returns:
            True if a token was stored
        """
        with self._lock:
            removed = self._tokens.pop(provider_key, None) is not None
        if removed:
            logger.debug(f"Removed token for provider '{provider_key}'")
        return removed

    def has_valid(self, provider_key: str = DEFAULT_PROVIDER_KEY) -> bool:
        return self.get(provider_key) is not None

    def freshness(
        self,
        provider_key: str = DEFAULT_PROVIDER_KEY,
        threshold_seconds: float = 300,
        now: Optional[datetime] = None,
    ) -> TokenFreshness:
        """Classify the stored token against a refresh threshold.

        Args:
            provider_key: Provider the token belongs to
            threshold_seconds: Tokens expiring within this window are near expiry
            now: Current time (defaults to the store clock)

        Returns:
            Freshness of the stored token
        """
        now = ensure_utc(now or self._clock())
        info = self.peek(provider_key)
        if info is None:
            return TokenFreshness.ABSENT
        if not info.is_valid(now):
            return TokenFreshness.EXPIRED
        if info.expires_within(threshold_seconds, now):
            return TokenFreshness.NEAR_EXPIRY
        return TokenFreshness.FRESH
