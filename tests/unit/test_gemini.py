"""
Tests for Gemini response handling and the transcription call.
"""

from pathlib import Path
from types import SimpleNamespace
import sys

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent.parent / "src"))

from scribe.errors import TranscriptionError
from scribe.gemini import (
    GeminiClient,
    TRANSCRIBE_INSTRUCTION,
    build_audio_contents,
    extract_text,
)


def _response(text=None, candidates=None):
    return SimpleNamespace(text=text, candidates=candidates)


def _candidate(*part_texts):
    parts = [SimpleNamespace(text=t) for t in part_texts]
    return SimpleNamespace(content=SimpleNamespace(parts=parts))


class TestExtractText:
    """Text precedence: .text, then first part of first candidate, then ''."""

    def test_top_level_text_wins(self):
        response = _response("direct", [_candidate("nested")])
        assert extract_text(response) == "direct"

    def test_falls_back_to_first_candidate_part(self):
        response = _response(None, [_candidate("nested", "second"), _candidate("other")])
        assert extract_text(response) == "nested"

    def test_empty_text_falls_through(self):
        assert extract_text(_response("", [_candidate("nested")])) == "nested"

    def test_nothing_usable_is_empty_string(self):
        assert extract_text(_response(None, None)) == ""
        assert extract_text(_response(None, [])) == ""
        assert extract_text(_response(None, [SimpleNamespace(content=None)])) == ""
        assert extract_text(None) == ""

    def test_works_on_plain_dicts(self):
        response = {"candidates": [{"content": {"parts": [{"text": "from dict"}]}}]}
        assert extract_text(response) == "from dict"

    def test_part_without_text(self):
        response = {"candidates": [{"content": {"parts": [{"inline_data": {}}]}}]}
        assert extract_text(response) == ""


class TestAudioContents:

    def test_wav_is_sent_inline_with_instruction(self):
        contents = build_audio_contents(b"RIFF....")
        parts = contents[0]["parts"]
        assert parts[0]["inline_data"] == {"mime_type": "audio/wav", "data": b"RIFF...."}
        assert parts[1]["text"] == TRANSCRIBE_INSTRUCTION == "Transcribe audio to text."


class FakeModels:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    def generate_content(self, model, contents):
        self.calls.append((model, contents))
        if self.error:
            raise self.error
        return self.response


class TestGeminiClient:

    def test_transcribe_wav_uses_model_and_extracts(self):
        models = FakeModels(response=_response(None, [_candidate("hi there")]))
        client = GeminiClient(model="gemini-test", client=SimpleNamespace(models=models))

        assert client.transcribe_wav(b"wav") == "hi there"
        model, contents = models.calls[0]
        assert model == "gemini-test"
        assert contents[0]["parts"][0]["inline_data"]["data"] == b"wav"

    def test_api_failure_becomes_transcription_error(self):
        models = FakeModels(error=RuntimeError("quota"))
        client = GeminiClient(client=SimpleNamespace(models=models))

        with pytest.raises(TranscriptionError, match="quota"):
            client.transcribe_wav(b"wav")

    def test_missing_api_key(self, monkeypatch):
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
        with pytest.raises(ValueError, match="GEMINI_API_KEY"):
            GeminiClient()
