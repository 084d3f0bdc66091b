"""
Scribe Recorder

Captures microphone or tab (system loopback) audio in fixed-length chunks and
feeds them to the upload pipeline, falling back from tab to mic once.
"""

from .session import (
    FAILURE_MARKER,
    NO_TRANSCRIPT_PLACEHOLDER,
    RecordingSession,
    SourceType,
    TranscriptBuffer,
    new_session_token,
)
from .capture import AudioSource, AudioStream, SliceRecorder, encode_chunk
from .machine import (
    ChunkRecorder,
    FallbackController,
    RecorderEvent,
    RecorderState,
    TRANSITIONS,
)

__all__ = [
    # Session
    "FAILURE_MARKER",
    "NO_TRANSCRIPT_PLACEHOLDER",
    "RecordingSession",
    "SourceType",
    "TranscriptBuffer",
    "new_session_token",
    # Capture
    "AudioSource",
    "AudioStream",
    "SliceRecorder",
    "encode_chunk",
    # State machine
    "ChunkRecorder",
    "FallbackController",
    "RecorderEvent",
    "RecorderState",
    "TRANSITIONS",
]
