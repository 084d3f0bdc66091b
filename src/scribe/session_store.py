"""
Process-wide session transcript store.

Maps a session token to the ordered list of transcript texts received for it.
Entries are only ever appended; whole sessions may be dropped by an
EvictionPolicy, which by default drops nothing.
"""

import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from .logger import get_logger

logger = get_logger(__name__)


@dataclass
class SessionRecord:
    """Transcript entries for one session plus bookkeeping for eviction."""
    entries: List[str] = field(default_factory=list)
    created_at: float = 0.0
    updated_at: float = 0.0


class EvictionPolicy:
    """Decides which sessions to drop. The base policy keeps everything."""

    def select(self, sessions: Dict[str, SessionRecord], now: float) -> Iterable[str]:
        return ()


class IdleTimeoutPolicy(EvictionPolicy):
    """Drops sessions that have not received an entry for ``max_idle_seconds``."""

    def __init__(self, max_idle_seconds: float):
        if max_idle_seconds <= 0:
            raise ValueError("max_idle_seconds must be positive")
        self.max_idle_seconds = max_idle_seconds

    def select(self, sessions: Dict[str, SessionRecord], now: float) -> Iterable[str]:
        cutoff = now - self.max_idle_seconds
        return [token for token, record in sessions.items() if record.updated_at < cutoff]


class SessionStore:
    """Thread-safe mapping of session token -> append-only transcript."""

    def __init__(self, eviction_policy: Optional[EvictionPolicy] = None,
                 clock: Callable[[], float] = time.monotonic):
        self._sessions: Dict[str, SessionRecord] = {}
        self._lock = threading.Lock()
        self._clock = clock
        self.eviction_policy = eviction_policy or EvictionPolicy()

    def append(self, token: str, text: str) -> int:
        """Append one entry, creating the session if needed.

        Returns:
            The session's entry count after the append
        """
        with self._lock:
            now = self._clock()
            record = self._sessions.get(token)
            if record is None:
                record = SessionRecord(created_at=now, updated_at=now)
                self._sessions[token] = record
                logger.debug(f"Created session {token}")
            record.entries.append(text)
            record.updated_at = now
            count = len(record.entries)
            self._evict_locked(now, keep=token)
        return count

    def read(self, token: Optional[str]) -> Tuple[str, ...]:
        """Snapshot of a session's entries; empty for unknown tokens."""
        if not token:
            return ()
        with self._lock:
            record = self._sessions.get(token)
            return tuple(record.entries) if record else ()

    def evict(self) -> List[str]:
        """Apply the eviction policy now. Returns the dropped tokens."""
        with self._lock:
            return self._evict_locked(self._clock())

    def _evict_locked(self, now: float, keep: Optional[str] = None) -> List[str]:
        dropped = [token for token in self.eviction_policy.select(self._sessions, now)
                   if token != keep and token in self._sessions]
        for token in dropped:
            del self._sessions[token]
        if dropped:
            logger.info(f"Evicted {len(dropped)} idle session(s)")
        return dropped

    def session_ids(self) -> List[str]:
        with self._lock:
            return list(self._sessions)

    def __contains__(self, token: str) -> bool:
        with self._lock:
            return token in self._sessions

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
