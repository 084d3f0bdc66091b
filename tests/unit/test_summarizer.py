"""
Tests for transcript summarization.
"""

from pathlib import Path
from types import SimpleNamespace
import sys

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent.parent / "src"))

from scribe import summarizer as summarizer_module
from scribe.errors import EmptyTranscriptError, SummarizationError
from scribe.summarizer import (
    NO_TRANSCRIPT_MESSAGE,
    ClaudeSummarizer,
    GeminiSummarizer,
    SummarizationService,
    SummarizerClient,
    build_prompt,
    create_summarizer,
    join_entries,
)


class RecordingSummarizer(SummarizerClient):
    """Backend that records prompts and replays scripted results."""

    BACKEND_ID = "recording"

    def __init__(self, results=("summary",), max_attempts=1):
        super().__init__(max_attempts)
        self.results = list(results)
        self.prompts = []

    def _generate(self, prompt):
        self.prompts.append(prompt)
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result


@pytest.fixture(autouse=True)
def no_backoff(monkeypatch):
    monkeypatch.setattr(summarizer_module.time, "sleep", lambda s: None)


class TestJoin:

    def test_single_space_join_keeps_inner_whitespace(self):
        assert join_entries(["hello ", "world"]) == "hello  world"

    def test_prompt_embeds_transcript(self):
        prompt = build_prompt("hello  world")
        assert prompt.rstrip().endswith("hello  world")
        assert "multilingual" in prompt


class TestSummarizationService:

    def test_empty_session_makes_no_external_call(self, store):
        backend = RecordingSummarizer()
        service = SummarizationService(store, backend)

        with pytest.raises(EmptyTranscriptError) as exc_info:
            service.summarize("unknown")

        assert str(exc_info.value) == NO_TRANSCRIPT_MESSAGE
        assert exc_info.value.status_code == 400
        assert backend.prompts == []

    def test_missing_token_is_empty(self, store):
        backend = RecordingSummarizer()
        with pytest.raises(EmptyTranscriptError):
            SummarizationService(store, backend).summarize(None)
        assert backend.prompts == []

    def test_summarizes_joined_entries(self, store):
        store.append("s1", "hello ")
        store.append("s1", "world")
        backend = RecordingSummarizer(results=["- greeting"])

        summary = SummarizationService(store, backend).summarize("s1")

        assert summary == "- greeting"
        assert backend.prompts == [build_prompt("hello  world")]

    def test_backend_failure_leaves_session_untouched(self, store):
        store.append("s1", "hello")
        backend = RecordingSummarizer(results=[RuntimeError("overloaded")])

        with pytest.raises(SummarizationError):
            SummarizationService(store, backend).summarize("s1")

        assert store.read("s1") == ("hello",)


class TestRetries:

    def test_single_attempt_by_default(self):
        backend = RecordingSummarizer(results=[RuntimeError("x"), "late"])
        with pytest.raises(SummarizationError):
            backend.summarize("text")
        assert len(backend.prompts) == 1

    def test_retries_up_to_max_attempts(self):
        backend = RecordingSummarizer(results=[RuntimeError("x"), RuntimeError("y"), "ok"],
                                      max_attempts=3)
        assert backend.summarize("text") == "ok"
        assert len(backend.prompts) == 3


class TestBackends:

    def test_gemini_backend_uses_shared_client(self):
        calls = []

        class FakeGemini:
            def generate(self, contents, model=None):
                calls.append((contents, model))
                return "gemini summary"

        backend = GeminiSummarizer(gemini=FakeGemini(), model="gemini-x")
        assert backend.summarize("hello") == "gemini summary"
        contents, model = calls[0]
        assert model == "gemini-x"
        assert contents[0]["parts"][0]["text"] == build_prompt("hello")

    def test_claude_backend_returns_first_text_block(self):
        created = []

        class FakeMessages:
            def create(self, **kwargs):
                created.append(kwargs)
                return SimpleNamespace(content=[SimpleNamespace(text="claude summary")])

        backend = ClaudeSummarizer(client=SimpleNamespace(messages=FakeMessages()))
        assert backend.summarize("hello") == "claude summary"
        assert created[0]["model"] == ClaudeSummarizer.MODEL
        assert created[0]["messages"][0]["content"] == build_prompt("hello")

    def test_factory_rejects_unknown_backend(self):
        with pytest.raises(ValueError, match="Unknown summarizer backend"):
            create_summarizer("nope")

    def test_factory_builds_registered_backend(self):
        backend = create_summarizer("anthropic", client=object(), max_attempts=2)
        assert isinstance(backend, ClaudeSummarizer)
        assert backend.max_attempts == 2
