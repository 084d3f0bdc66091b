"""
Client-side recording session: token, source, fallback flag and the live
transcript buffer shown to the user.
"""

import random
import string
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Tuple

FAILURE_MARKER = "[Chunk Transcription Failed]"
NO_TRANSCRIPT_PLACEHOLDER = "[No transcript returned]"

_TOKEN_ALPHABET = string.ascii_lowercase + string.digits


class SourceType(str, Enum):
    """Where audio comes from."""
    MIC = "mic"
    TAB = "tab"   # system/tab loopback device


def new_session_token() -> str:
    """Opaque session token: epoch millis plus 8 random base36 characters."""
    suffix = "".join(random.choices(_TOKEN_ALPHABET, k=8))
    return f"{int(time.time() * 1000)}-{suffix}"


class TranscriptBuffer:
    """Append-only, thread-safe list of transcript entries for display."""

    def __init__(self):
        self._entries: List[str] = []
        self._lock = threading.Lock()

    def append(self, text: str) -> int:
        with self._lock:
            self._entries.append(text)
            return len(self._entries)

    def snapshot(self) -> Tuple[str, ...]:
        with self._lock:
            return tuple(self._entries)

    @property
    def failures(self) -> int:
        with self._lock:
            return sum(1 for entry in self._entries if entry == FAILURE_MARKER)

    def text(self) -> str:
        return " ".join(entry for entry in self.snapshot() if entry != FAILURE_MARKER)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


@dataclass
class RecordingSession:
    """State of one recording attempt. A fallback restart gets a new session."""
    token: str
    source: SourceType
    fallback_attempted: bool = False
    fallback_reason: str = ""
    transcript: TranscriptBuffer = field(default_factory=TranscriptBuffer)
    error: str = ""
    progress: str = ""

    @classmethod
    def create(cls, source: SourceType, fallback_attempted: bool = False,
               fallback_reason: str = "") -> "RecordingSession":
        return cls(
            token=new_session_token(),
            source=SourceType(source),
            fallback_attempted=fallback_attempted,
            fallback_reason=fallback_reason,
        )
