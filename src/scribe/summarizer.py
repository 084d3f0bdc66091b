"""
Transcript summarization.

SummarizationService reads a session's transcript from the store and hands it
to a SummarizerClient backend. Backends:
- gemini (default) - google-genai
- anthropic        - Claude via the anthropic SDK
"""

import os
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Type

from .errors import EmptyTranscriptError, SummarizationError
from .gemini import GeminiClient, build_text_contents
from .logger import get_logger
from .session_store import SessionStore

logger = get_logger(__name__)

NO_TRANSCRIPT_MESSAGE = "No transcript available for this session."

SUMMARY_PROMPT = """You are an expert multilingual transcript summarizer.

Summarize the following audio transcript. Produce concise bullet points covering the most important ideas, events, arguments, steps, explanations, or actions, whatever is relevant for this context.

- Do NOT assume this is a formal meeting; handle voice notes, podcasts, interviews, lectures, chats, etc.
- If text is in more than one language (e.g. Hindi + English + Hinglish), preserve language-mixing in the summary too.
- If code, commands, or technical instructions are present, summarize their essence.
- Provide 1-3 lines at the top with the topic or main gist (if you can infer).
- If there are clear next steps, tasks, or conclusions, highlight them as separate bullet points.

Here is the full transcript, possibly in multiple languages:
{transcript}
"""


def build_prompt(transcript: str) -> str:
    return SUMMARY_PROMPT.format(transcript=transcript)


def join_entries(entries) -> str:
    """Join transcript entries in stored order with single spaces."""
    return " ".join(entries)


class SummarizerClient(ABC):
    """Base class for summarizer backends."""

    BACKEND_ID: str = "base"
    INITIAL_RETRY_DELAY = 2.0  # seconds

    def __init__(self, max_attempts: int = 1):
        self.max_attempts = max(1, max_attempts)

    @abstractmethod
    def _generate(self, prompt: str) -> str:
        """Send one prompt to the backend and return the summary text."""

    def summarize(self, transcript: str) -> str:
        """
        Generate a summary of ``transcript``.

        Raises:
            SummarizationError: If every attempt fails
        """
        prompt = build_prompt(transcript)

        last_error = None
        for attempt in range(self.max_attempts):
            if attempt > 0:
                delay = self.INITIAL_RETRY_DELAY * (2 ** (attempt - 1))
                logger.info(f"Retrying summary in {delay:.0f}s ({attempt}/{self.max_attempts - 1})")
                time.sleep(delay)
            try:
                return self._generate(prompt)
            except Exception as e:
                last_error = e
                logger.warning(f"{self.BACKEND_ID} summary attempt {attempt + 1} failed: {e}")

        raise SummarizationError(
            f"Summarization failed after {self.max_attempts} attempt(s): {last_error}",
            backend=self.BACKEND_ID,
        ) from last_error


# Registry of backends (populated by register_backend)
_backend_registry: Dict[str, Type[SummarizerClient]] = {}


def register_backend(backend_class: Type[SummarizerClient]) -> Type[SummarizerClient]:
    """Register a summarizer backend class. Use as a decorator."""
    _backend_registry[backend_class.BACKEND_ID] = backend_class
    return backend_class


@register_backend
class GeminiSummarizer(SummarizerClient):
    """Summaries from Gemini, sharing the transcription client."""

    BACKEND_ID = "gemini"

    def __init__(self, gemini: Optional[GeminiClient] = None, model: Optional[str] = None,
                 max_attempts: int = 1):
        super().__init__(max_attempts)
        self.gemini = gemini or GeminiClient()
        self.model = model

    def _generate(self, prompt: str) -> str:
        return self.gemini.generate(build_text_contents(prompt), model=self.model)


@register_backend
class ClaudeSummarizer(SummarizerClient):
    """Summaries from Anthropic's Claude API."""

    BACKEND_ID = "anthropic"
    MODEL = "claude-sonnet-4-5-20250929"

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None,
                 max_attempts: int = 1, client: Any = None):
        """
        Args:
            api_key: Anthropic API key (defaults to ANTHROPIC_API_KEY env var)
            model: Claude model name
            client: Pre-built ``anthropic.Anthropic`` (mainly for tests)
        """
        super().__init__(max_attempts)
        self.model = model or self.MODEL
        if client is not None:
            self.client = client
            return

        self.api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
        if not self.api_key:
            raise ValueError("ANTHROPIC_API_KEY not found in environment or provided")

        import anthropic
        self.client = anthropic.Anthropic(api_key=self.api_key)

    def _generate(self, prompt: str) -> str:
        response = self.client.messages.create(
            model=self.model,
            max_tokens=4096,
            temperature=0.0,  # Deterministic for consistency
            messages=[{"role": "user", "content": prompt}],
        )
        # First text block wins; tool-use or empty responses yield ""
        for block in response.content or []:
            text = getattr(block, "text", None)
            if text:
                return text
        return ""


def create_summarizer(backend_id: str, **kwargs) -> SummarizerClient:
    """
    Create a summarizer backend by id.

    Raises:
        ValueError: If the backend id is unknown
    """
    if backend_id not in _backend_registry:
        raise ValueError(f"Unknown summarizer backend '{backend_id}'. Available: {list(_backend_registry)}")
    return _backend_registry[backend_id](**kwargs)


class SummarizationService:
    """Summarizes the accumulated transcript of a session."""

    def __init__(self, store: SessionStore, summarizer: SummarizerClient):
        self.store = store
        self.summarizer = summarizer

    def summarize(self, session_token: Optional[str]) -> str:
        """
        Summarize everything stored for ``session_token``.

        Raises:
            EmptyTranscriptError: If the session is unknown or has no entries
            SummarizationError: If the backend fails; the transcript is left as is
        """
        entries = self.store.read(session_token)
        if not entries:
            raise EmptyTranscriptError(NO_TRANSCRIPT_MESSAGE, session=session_token)

        transcript = join_entries(entries)
        logger.info(f"Summarizing session {session_token}: {len(entries)} entries, {len(transcript)} chars")
        return self.summarizer.summarize(transcript)
