"""
Gemini client used for chunk transcription and (by default) summarization.

Also defines ``extract_text``, the single place that knows how to pull the
answer text out of a generation response.
"""

import os
from collections.abc import Mapping
from typing import Any, Optional

from .errors import TranscriptionError
from .logger import get_logger

logger = get_logger(__name__)

DEFAULT_MODEL = "gemini-2.5-flash"
TRANSCRIBE_INSTRUCTION = "Transcribe audio to text."
WAV_MIME_TYPE = "audio/wav"


def _field(obj: Any, name: str) -> Any:
    """Read ``name`` from a mapping or an attribute object; None when absent."""
    if obj is None:
        return None
    if isinstance(obj, Mapping):
        return obj.get(name)
    return getattr(obj, name, None)


def _first(items: Any) -> Any:
    if not items:
        return None
    try:
        return items[0]
    except (IndexError, KeyError, TypeError):
        return None


def extract_text(response: Any) -> str:
    """
    Pull the answer text out of a generation response.

    Precedence:
        1. ``response.text``
        2. ``response.candidates[0].content.parts[0].text``
        3. ``""``

    Works for SDK response objects and for plain dicts of the same shape.
    """
    text = _field(response, "text")
    if text:
        return text

    candidate = _first(_field(response, "candidates"))
    part = _first(_field(_field(candidate, "content"), "parts"))
    return _field(part, "text") or ""


def build_audio_contents(wav_bytes: bytes, instruction: str = TRANSCRIBE_INSTRUCTION) -> list:
    """Request contents for one WAV clip plus the transcription instruction.

    The SDK sends inline bytes base64-encoded with their MIME type.
    """
    return [
        {
            "role": "user",
            "parts": [
                {"inline_data": {"mime_type": WAV_MIME_TYPE, "data": wav_bytes}},
                {"text": instruction},
            ],
        }
    ]


def build_text_contents(prompt: str) -> list:
    return [{"role": "user", "parts": [{"text": prompt}]}]


class GeminiClient:
    """Thin wrapper over ``google.genai`` for the two calls Scribe makes."""

    def __init__(self, api_key: Optional[str] = None, model: str = DEFAULT_MODEL,
                 instruction: str = TRANSCRIBE_INSTRUCTION, client: Any = None):
        """
        Initialize Gemini client.

        Args:
            api_key: Gemini API key (defaults to GEMINI_API_KEY, then GOOGLE_API_KEY)
            model: Model name for all calls
            instruction: Text sent with every audio clip
            client: Pre-built ``genai.Client`` (mainly for tests)
        """
        self.model = model
        self.instruction = instruction
        if client is not None:
            self.client = client
            return

        self.api_key = api_key or os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY")
        if not self.api_key:
            raise ValueError("GEMINI_API_KEY not found in environment or provided")

        from google import genai
        self.client = genai.Client(api_key=self.api_key)

    def generate(self, contents: list, model: Optional[str] = None) -> str:
        """Run one generation call and return its extracted text."""
        response = self.client.models.generate_content(
            model=model or self.model,
            contents=contents,
        )
        return extract_text(response)

    def transcribe_wav(self, wav_bytes: bytes) -> str:
        """
        Transcribe one canonical WAV clip.

        Raises:
            TranscriptionError: If the API call fails
        """
        try:
            text = self.generate(build_audio_contents(wav_bytes, self.instruction))
        except Exception as e:
            raise TranscriptionError(f"Gemini transcription failed: {e}", model=self.model) from e
        logger.debug(f"Transcribed {len(wav_bytes)} WAV bytes -> {len(text)} chars")
        return text
