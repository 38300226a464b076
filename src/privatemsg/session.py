"""Session context: cached password and key cache for one signed-in account."""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from .storage import DEFAULT_TTL, KeyCache

logger = logging.getLogger(__name__)


class Session:
    """
    Per-client session state.

    Holds the password confirmed at login and the conversation key cache.
    Nothing here is ever written to durable storage; end() drops both.
    """

    def __init__(
        self,
        key_cache_ttl: timedelta = DEFAULT_TTL,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._password: Optional[str] = None
        self.key_cache = KeyCache(ttl=key_cache_ttl, clock=clock)

    @property
    def is_active(self) -> bool:
        """Whether a password is cached."""
        return self._password is not None

    @property
    def password(self) -> Optional[str]:
        return self._password

    def start(self, password: str) -> None:
        """Cache a verified password for subsequent operations."""
        self._password = password
        logger.debug("Session started")

    def end(self) -> None:
        """Drop the cached password and all cached keys."""
        self._password = None
        self.key_cache.clear()
        logger.debug("Session ended, password and key cache cleared")

    def resolve_password(self, password: Optional[str] = None) -> Optional[str]:
        """Return the explicit password if given, else the session password."""
        return password if password is not None else self._password

    def __repr__(self) -> str:
        state = "active" if self.is_active else "inactive"
        return f"Session({state}, cached_keys={len(self.key_cache)})"
