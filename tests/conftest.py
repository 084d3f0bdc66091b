"""
Pytest fixtures for Scribe tests.
"""

import sys
import tempfile
from pathlib import Path

import numpy as np
import pytest

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def store():
    """Fresh session store with the default (keep everything) policy."""
    from scribe.session_store import SessionStore
    return SessionStore()


@pytest.fixture
def tone_blocks():
    """Two seconds of a 440Hz stereo tone at 48kHz, as int16 capture blocks."""
    rate = 48000
    t = np.arange(rate * 2) / rate
    mono = (np.sin(2 * np.pi * 440 * t) * 8000).astype(np.int16)
    stereo = np.stack([mono, mono], axis=1)
    return [stereo[i:i + 1024] for i in range(0, len(stereo), 1024)], rate


@pytest.fixture
def ogg_chunk(tone_blocks):
    """An encoded chunk exactly like the recorder uploads."""
    from scribe.recorder.capture import encode_chunk
    blocks, rate = tone_blocks
    return encode_chunk(blocks, rate)


class FakeTranscriber:
    """Stands in for GeminiClient.transcribe_wav."""

    def __init__(self, text="hello world", error=None):
        self.text = text
        self.error = error
        self.calls = []

    def transcribe_wav(self, wav_bytes):
        self.calls.append(wav_bytes)
        if self.error:
            raise self.error
        return self.text


@pytest.fixture
def fake_transcriber():
    return FakeTranscriber()


@pytest.fixture(autouse=True)
def reset_config():
    """Each test sees the packaged defaults, not a stray ./config.yaml."""
    from scribe.config import ConfigManager
    ConfigManager.reset()
    ConfigManager.initialize(config_path="")
    yield
    ConfigManager.reset()
