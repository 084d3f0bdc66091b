"""
Chunk transcoding to the canonical transcription format.

Canonical form: mono, 16 kHz, 16-bit signed little-endian PCM in a WAV
container. Conversion is delegated to the ffmpeg binary.
"""

import os
import subprocess
import sys
import wave
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from .errors import TranscodeError

CANONICAL_SAMPLE_RATE = 16000
CANONICAL_CHANNELS = 1
CANONICAL_SAMPLE_WIDTH = 2  # bytes, pcm_s16le

PathLike = Union[str, Path]


@dataclass
class WavInfo:
    """Header facts of a WAV file."""
    channels: int
    sample_rate: int
    sample_width: int
    frames: int

    @property
    def duration_seconds(self) -> float:
        return self.frames / self.sample_rate if self.sample_rate else 0.0

    @property
    def is_canonical(self) -> bool:
        return (self.channels == CANONICAL_CHANNELS
                and self.sample_rate == CANONICAL_SAMPLE_RATE
                and self.sample_width == CANONICAL_SAMPLE_WIDTH)


def find_ffmpeg() -> str:
    """Find ffmpeg executable on the system."""
    candidates = []
    env_path = os.environ.get("FFMPEG_PATH")
    if env_path:
        candidates.append(env_path)
    candidates.append("ffmpeg")
    # macOS: Homebrew locations are often missing from PATH for GUI-launched processes
    if sys.platform == "darwin":
        candidates.extend(["/opt/homebrew/bin/ffmpeg", "/usr/local/bin/ffmpeg"])

    for path in candidates:
        try:
            subprocess.run([path, "-version"], capture_output=True, check=True)
            return path
        except (subprocess.CalledProcessError, FileNotFoundError, PermissionError):
            continue
    raise TranscodeError(
        "ffmpeg not found. Install it (apt install ffmpeg / brew install ffmpeg) "
        "or set FFMPEG_PATH"
    )


def build_transcode_command(ffmpeg: str, src: PathLike, dst: PathLike) -> list:
    """ffmpeg arguments converting ``src`` to canonical WAV at ``dst``."""
    return [
        ffmpeg, '-y', '-hide_banner', '-loglevel', 'error',
        '-i', str(src),
        '-ac', str(CANONICAL_CHANNELS),      # Mono
        '-ar', str(CANONICAL_SAMPLE_RATE),   # 16kHz sample rate
        '-acodec', 'pcm_s16le',              # 16-bit little-endian PCM
        '-f', 'wav',
        str(dst),
    ]


def read_wav_info(path: PathLike) -> WavInfo:
    """Read channel count, rate, width and length from a WAV header."""
    with wave.open(str(path), 'rb') as wf:
        return WavInfo(
            channels=wf.getnchannels(),
            sample_rate=wf.getframerate(),
            sample_width=wf.getsampwidth(),
            frames=wf.getnframes(),
        )


def transcode_to_wav(src: PathLike, dst: PathLike, ffmpeg: Optional[str] = None) -> WavInfo:
    """
    Convert any ffmpeg-readable audio file to canonical WAV.

    Args:
        src: Input file (e.g. an OGG or WebM chunk)
        dst: Output WAV path, overwritten if present
        ffmpeg: ffmpeg executable; discovered when not given

    Returns:
        Header info of the written WAV

    Raises:
        TranscodeError: If ffmpeg is missing, fails, or writes a non-canonical file
    """
    ffmpeg = ffmpeg or find_ffmpeg()
    cmd = build_transcode_command(ffmpeg, src, dst)
    try:
        result = subprocess.run(cmd, capture_output=True, text=True)
    except (FileNotFoundError, PermissionError) as e:
        raise TranscodeError(f"Could not run ffmpeg: {e}", ffmpeg=ffmpeg) from e

    if result.returncode != 0:
        raise TranscodeError(f"ffmpeg failed: {result.stderr.strip()}", returncode=result.returncode)

    try:
        info = read_wav_info(dst)
    except (wave.Error, EOFError, FileNotFoundError) as e:
        raise TranscodeError(f"ffmpeg produced an unreadable WAV: {e}") from e

    if not info.is_canonical:
        raise TranscodeError(
            f"ffmpeg produced {info.channels}ch/{info.sample_rate}Hz/{info.sample_width * 8}-bit "
            "audio instead of mono/16kHz/16-bit"
        )
    return info
