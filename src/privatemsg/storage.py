"""Conversation key cache with TTL expiration."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from .addressing import normalize_address

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _CacheEntry:
    """Entry in the key cache with expiration. Never updated in place."""
    key: bytes
    expires_at: datetime


# Default TTL: 1 hour
DEFAULT_TTL = timedelta(hours=1)


class KeyCache:
    """
    In-memory cache of recovered conversation keys, keyed by conversation id.

    Plaintext keys held here can be dropped at any time; they are always
    recoverable from the ledger by an authorized identity.
    """

    def __init__(
        self,
        ttl: timedelta = DEFAULT_TTL,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        """Creates a new key cache with the given TTL (default: 1 hour)."""
        self._cache: dict[str, _CacheEntry] = {}
        self._ttl = ttl
        self._clock = clock

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    def store(self, conversation_id: str, key: bytes) -> None:
        """Store a key for a conversation, replacing any previous entry."""
        conversation_id = normalize_address(conversation_id)
        self._cache[conversation_id] = _CacheEntry(
            key=bytes(key),
            expires_at=self._clock() + self._ttl,
        )
        logger.debug("Cached key for conversation %s", conversation_id)

    def retrieve(self, conversation_id: str) -> Optional[bytes]:
        """Retrieve the key for a conversation (returns None if missing or expired)."""
        conversation_id = normalize_address(conversation_id)
        entry = self._cache.get(conversation_id)
        if entry is None:
            return None

        if entry.expires_at <= self._clock():
            del self._cache[conversation_id]
            logger.debug("Cached key for conversation %s expired", conversation_id)
            return None

        return bytes(entry.key)

    def __contains__(self, conversation_id: str) -> bool:
        return self.retrieve(conversation_id) is not None

    def __len__(self) -> int:
        return len(self._cache)

    def invalidate(self, conversation_id: str) -> None:
        """Invalidate the cached key for a conversation."""
        self._cache.pop(normalize_address(conversation_id), None)

    def clear(self) -> None:
        """Clear all cached keys."""
        self._cache.clear()

    def prune_expired(self) -> None:
        """Remove all expired entries."""
        now = self._clock()
        expired = [cid for cid, entry in self._cache.items() if entry.expires_at <= now]
        for cid in expired:
            del self._cache[cid]
