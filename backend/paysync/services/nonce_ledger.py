"""
Nonce Ledger

Remembers (key label, nonce) pairs accepted within the freshness window so a
signed request cannot be replayed. Expired entries are dropped lazily on every
has()/mark() call, so memory is bounded by one window of traffic.

Entries live in process memory: replay protection is per instance. A
horizontally scaled deployment needs a shared TTL store behind the same
has/mark interface.
"""
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional, Tuple


def utc_now() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


class NonceLedger:
    """In-memory ledger of recently seen nonces, keyed by API key label."""

    def __init__(
        self,
        window: timedelta,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.window = window
        self._clock = clock or utc_now
        self._entries: Dict[Tuple[str, str], datetime] = {}
        self._lock = threading.Lock()

    def has(self, key_label: str, nonce: str) -> bool:
        """Check whether this nonce was already accepted for the key."""
        with self._lock:
            self._evict_expired()
            return (key_label, nonce) in self._entries

    def mark(self, key_label: str, nonce: str) -> None:
        """Record a nonce as seen now."""
        with self._lock:
            self._evict_expired()
            self._entries[(key_label, nonce)] = self._clock()

    def reset(self) -> None:
        """Forget every entry."""
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _evict_expired(self) -> None:
        threshold = self._clock() - self.window
        expired = [key for key, first_seen in self._entries.items() if first_seen < threshold]
        for key in expired:
            del self._entries[key]
