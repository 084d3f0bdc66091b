"""
Server-side chunk ingest: raw chunk -> canonical WAV -> transcript -> session.
"""

import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Protocol, Tuple, Union

from .errors import TranscodeError
from .logger import get_logger
from .session_store import SessionStore
from .transcode import transcode_to_wav

logger = get_logger(__name__)

DEFAULT_TMP_DIR = Path(tempfile.gettempdir()) / "scribe-chunks"


class Transcriber(Protocol):
    def transcribe_wav(self, wav_bytes: bytes) -> str:
        ...


@contextmanager
def scoped_chunk_files(tmp_dir: Union[str, Path]) -> Iterator[Tuple[Path, Path]]:
    """
    Reserve a uniquely named raw/WAV file pair for one request.

    Both files are removed on exit, whether or not the body raised.
    """
    tmp_dir = Path(tmp_dir)
    tmp_dir.mkdir(parents=True, exist_ok=True)
    fd, raw_name = tempfile.mkstemp(prefix="chunk-", suffix=".audio", dir=tmp_dir)
    os.close(fd)
    raw_path = Path(raw_name)
    wav_path = raw_path.with_name(raw_path.name + ".wav")
    try:
        yield raw_path, wav_path
    finally:
        for path in (raw_path, wav_path):
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                logger.warning(f"Could not remove temp file {path}: {e}")


class ChunkIngest:
    """Turns uploaded chunks into transcript entries."""

    def __init__(self, store: SessionStore, transcriber: Transcriber,
                 tmp_dir: Optional[Union[str, Path]] = None, ffmpeg: Optional[str] = None):
        self.store = store
        self.transcriber = transcriber
        self.tmp_dir = Path(tmp_dir) if tmp_dir else DEFAULT_TMP_DIR
        self.ffmpeg = ffmpeg

    def ingest(self, raw_bytes: bytes, session_token: Optional[str] = None) -> str:
        """
        Transcode, transcribe and record one chunk.

        Args:
            raw_bytes: Compressed audio exactly as uploaded
            session_token: Session to append to; the text is only returned when absent

        Returns:
            The extracted transcript text (may be empty)

        Raises:
            TranscodeError: If the chunk can't be converted to canonical WAV
            TranscriptionError: If the transcription call fails
        """
        if not raw_bytes:
            raise TranscodeError("Empty audio upload")

        with scoped_chunk_files(self.tmp_dir) as (raw_path, wav_path):
            raw_path.write_bytes(raw_bytes)
            info = transcode_to_wav(raw_path, wav_path, ffmpeg=self.ffmpeg)
            logger.debug(f"Transcoded {len(raw_bytes)} bytes -> {info.duration_seconds:.1f}s canonical WAV")
            text = self.transcriber.transcribe_wav(wav_path.read_bytes())

        if session_token:
            count = self.store.append(session_token, text)
            logger.info(f"Session {session_token}: entry {count} ({len(text)} chars)")
        return text
