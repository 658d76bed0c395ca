"""
Pending authorization store for the relying party.

Between redirecting the browser to the authorization server and receiving
the callback, the RP keeps the PKCE code_verifier and the nonce keyed by
the state value. Entries are single-use and expire after a TTL.

The store is process-scoped: one instance is created with the RP app and
shared by all request handlers. Running several RP instances behind a load
balancer requires replacing it with a shared cache.
"""

import asyncio
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PendingAuthorization:
    state: str
    code_verifier: str
    nonce: Optional[str] = None
    silent: bool = False
    created_at: float = field(default_factory=time.monotonic)


class PendingAuthorizationStore:
    """Lock-protected map of state -> PendingAuthorization with TTL eviction."""

    def __init__(
        self,
        ttl_seconds: float = 600,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, PendingAuthorization] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _is_expired(self, entry: PendingAuthorization, now: float) -> bool:
        return now - entry.created_at > self.ttl_seconds

    def put(
        self,
        state: str,
        code_verifier: str,
        nonce: Optional[str] = None,
        silent: bool = False,
    ) -> PendingAuthorization:
        entry = PendingAuthorization(
            state=state,
            code_verifier=code_verifier,
            nonce=nonce,
            silent=silent,
            created_at=self._clock(),
        )
        with self._lock:
            if state in self._entries:
                raise KeyError("Pending authorization already exists for this state")
            self._entries[state] = entry
        return entry

    def pop(self, state: Optional[str]) -> Optional[PendingAuthorization]:
        """Remove and return the entry for state. Expired entries count as missing."""
        if not state:
            return None
        with self._lock:
            entry = self._entries.pop(state, None)
        if entry is None or self._is_expired(entry, self._clock()):
            return None
        return entry

    def sweep(self) -> int:
        """Drop expired entries. Returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [
                state
                for state, entry in self._entries.items()
                if self._is_expired(entry, now)
            ]
            for state in expired:
                del self._entries[state]
        if expired:
            logger.debug("Swept %d expired pending authorizations", len(expired))
        return len(expired)


async def run_sweeper(store: PendingAuthorizationStore, interval_seconds: float) -> None:
    """Periodically sweep the store until the task is cancelled."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            store.sweep()
        except Exception:
            logger.exception("Pending authorization sweep failed")
