"""
Scribe Client

HTTP client for the Scribe server and the chunk upload pipeline the recorder
uses. Point it at a remote server with the SCRIBE_SERVER_URL environment
variable:
    export SCRIBE_SERVER_URL=http://100.x.x.x:3001
"""

import os
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple
from urllib.parse import urlparse

import requests

from .errors import ChunkUploadError
from .logger import get_logger
from .recorder.capture import CHUNK_FILENAME, CHUNK_MIME_TYPE
from .recorder.session import FAILURE_MARKER, NO_TRANSCRIPT_PLACEHOLDER, RecordingSession

logger = get_logger(__name__)

DEFAULT_SERVER_URL = "http://localhost:3001"

MIN_CHUNK_BYTES = 2048
MAX_RETRIES = 2
RETRY_DELAY = 1.0  # seconds

SKIPPED_MESSAGE = "Skipped empty audio chunk."
SENDING_MESSAGE = "Sending for transcription..."
UPLOAD_ERROR_PREFIX = "Chunk upload/API error: "


def _validate_server_url(url: str) -> str:
    """Validate server URL has valid scheme and netloc.

    Returns:
        The validated URL (stripped of trailing slash)

    Raises:
        ValueError: If URL is malformed
    """
    parsed = urlparse(url)

    if parsed.scheme not in ("http", "https"):
        raise ValueError(
            f"Invalid SCRIBE_SERVER_URL: must start with http:// or https:// (got '{url}')"
        )

    if not parsed.netloc or not parsed.hostname:
        raise ValueError(
            f"Invalid SCRIBE_SERVER_URL: missing host (got '{url}')"
        )

    return url.rstrip("/")


class ScribeClient:
    """Client for the Scribe transcription server."""

    def __init__(self, server_url: Optional[str] = None, timeout: float = 60.0,
                 api_token: Optional[str] = None, session: Optional[requests.Session] = None):
        self.server_url = _validate_server_url(
            server_url or os.environ.get("SCRIBE_SERVER_URL") or DEFAULT_SERVER_URL
        )
        self.timeout = timeout  # Read timeout
        self.connect_timeout = 5.0  # Connection timeout (fail fast if server unreachable)
        self.api_token = api_token or os.environ.get("SCRIBE_API_TOKEN")
        self.http = session or requests.Session()

    def _get_headers(self) -> Dict[str, str]:
        """Get headers for requests, including API token if configured."""
        headers = {}
        if self.api_token:
            headers["X-API-Token"] = self.api_token
        return headers

    def post_chunk(self, chunk: bytes, session_token: str) -> str:
        """
        Upload one audio chunk for transcription.

        Returns:
            The transcript text for this chunk (may be empty)

        Raises:
            ChunkUploadError: On a network failure or any non-200 response
        """
        try:
            response = self.http.post(
                f"{self.server_url}/upload-chunk",
                files={"audio": (CHUNK_FILENAME, chunk, CHUNK_MIME_TYPE)},
                data={"sessionId": session_token},
                timeout=(self.connect_timeout, self.timeout),  # (connect, read) timeouts
                headers=self._get_headers()
            )
        except requests.RequestException as e:
            raise ChunkUploadError(f"Network error ({type(e).__name__}: {e})") from e

        if not response.ok:
            raise ChunkUploadError(f"Network error (status {response.status_code})",
                                   status=response.status_code)
        try:
            data = response.json()
        except ValueError as e:
            raise ChunkUploadError(f"Invalid response body: {e}") from e
        if not isinstance(data, dict):
            raise ChunkUploadError(f"Invalid response body: expected an object, got {type(data).__name__}")
        return data.get("transcript") or ""

    def summarize(self, session_token: str) -> Tuple[str, bool]:
        """
        Ask the server to summarize a session.

        Returns:
            Tuple of (summary or error text, success boolean)
        """
        try:
            response = self.http.post(
                f"{self.server_url}/summarize",
                json={"sessionId": session_token},
                timeout=(self.connect_timeout, self.timeout),
                headers=self._get_headers()
            )
        except requests.RequestException as e:
            logger.warning(f"Summary request failed: {e}")
            return f"Connection error: {e}", False

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.status_code == 200:
            return data.get("summary", ""), True
        if response.status_code == 400:
            # Empty session: the server explains in the summary field
            return data.get("summary", ""), False
        if response.status_code == 401:
            return "Authentication failed: invalid or missing API token", False
        return data.get("error") or f"Server error: {response.status_code}", False

    def get_transcript(self, session_token: str) -> List[str]:
        """Get the entries the server has stored for a session."""
        try:
            response = self.http.get(
                f"{self.server_url}/transcript/{session_token}",
                timeout=(self.connect_timeout, self.timeout),
                headers=self._get_headers()
            )
            if response.status_code == 200:
                return response.json().get("entries", [])
        except requests.RequestException as e:
            logger.warning(f"Transcript request failed: {e}")
        return []

    def get_status(self) -> dict:
        """Get server status."""
        try:
            response = self.http.get(f"{self.server_url}/status", timeout=2.0,
                                     headers=self._get_headers())
            if response.status_code == 200:
                return response.json()
        except requests.RequestException:
            pass
        return {"status": "unavailable"}

    def is_server_available(self) -> bool:
        return self.get_status().get("status") == "running"


class UploadStatus(str, Enum):
    SUCCEEDED = "succeeded"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class UploadOutcome:
    status: UploadStatus
    attempts: int = 0
    text: str = ""
    error: str = ""


class UploadPipeline:
    """
    Sends one chunk to the server, retrying failed attempts, and records the
    result in the session's transcript buffer.

    Retries happen inside ``upload()``, so when it returns the chunk has fully
    settled: the caller can arm the next slice.
    """

    def __init__(self, client: ScribeClient, min_chunk_bytes: int = MIN_CHUNK_BYTES,
                 max_retries: int = MAX_RETRIES, retry_delay: float = RETRY_DELAY,
                 on_progress: Optional[Callable[[RecordingSession, str], None]] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.client = client
        self.min_chunk_bytes = min_chunk_bytes
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.on_progress = on_progress
        self._sleep = sleep

    def _progress(self, session: RecordingSession, message: str):
        session.progress = message
        if self.on_progress:
            self.on_progress(session, message)

    def upload(self, chunk: bytes, session: RecordingSession, attempt: int = 0) -> UploadOutcome:
        """
        Upload ``chunk`` for ``session``.

        Args:
            chunk: Encoded audio bytes of one slice
            session: Session the chunk belongs to (results land here even if
                the recorder has since moved on)
            attempt: Attempts already spent on this chunk
        """
        if len(chunk) < self.min_chunk_bytes:
            logger.debug(f"[{session.token}] skipping {len(chunk)}-byte chunk")
            self._progress(session, SKIPPED_MESSAGE)
            return UploadOutcome(UploadStatus.SKIPPED)

        last_error = None
        while True:
            if attempt == 0:
                self._progress(session, SENDING_MESSAGE)
            else:
                self._progress(session, f"Retrying upload... ({attempt})")
            try:
                text = self.client.post_chunk(chunk, session.token)
            except ChunkUploadError as e:
                last_error = e
                logger.warning(f"[{session.token}] upload attempt {attempt + 1}/{self.max_retries + 1} failed: {e}")
                if attempt >= self.max_retries:
                    break
                attempt += 1
                self._sleep(self.retry_delay)
                continue

            session.transcript.append(text or NO_TRANSCRIPT_PLACEHOLDER)
            self._progress(session, "")
            logger.info(f"[{session.token}] chunk transcribed ({len(text)} chars)")
            return UploadOutcome(UploadStatus.SUCCEEDED, attempts=attempt + 1, text=text)

        # Retries exhausted: keep the gap visible in the transcript
        session.transcript.append(FAILURE_MARKER)
        session.error = f"{UPLOAD_ERROR_PREFIX}{last_error}"
        self._progress(session, "")
        return UploadOutcome(UploadStatus.FAILED, attempts=attempt + 1, error=str(last_error))
