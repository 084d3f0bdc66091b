"""Exception hierarchy for Scribe capture, upload, ingest and summarization."""

from typing import Any


class ScribeError(Exception):
    """Base exception for all Scribe errors.

    Attributes:
        status_code: HTTP status code to use when this error reaches a request boundary.
        context: Extra key-value pairs describing the failure.
    """

    status_code: int = 500

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.context = context


# --- Client side ---

class CaptureAcquisitionError(ScribeError):
    """Device or permission failure while opening an audio source."""


class NoAudioTrackError(CaptureAcquisitionError):
    """The tab/loopback source opened but exposes no audio input channels."""


class RecorderInitError(ScribeError):
    """The slice recorder could not be constructed or started.

    ``stage`` is ``"init"`` for construction failures and ``"start"`` for
    failures when the first slice begins.
    """

    def __init__(self, message: str, stage: str = "init", **context: Any) -> None:
        super().__init__(message, **context)
        self.stage = stage


class ChunkUploadError(ScribeError):
    """Network failure or non-success HTTP status while uploading a chunk."""


# --- Server side ---

class TranscodeError(ScribeError):
    """ffmpeg could not convert a chunk to canonical WAV."""


class TranscriptionError(ScribeError):
    """The transcription capability failed for a chunk."""


class EmptyTranscriptError(ScribeError):
    """Summarization was requested for a session without transcript entries."""

    status_code = 400


class SummarizationError(ScribeError):
    """The summarizer backend failed."""
