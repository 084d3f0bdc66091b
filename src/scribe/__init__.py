"""
Scribe - chunked live transcription and summaries.

Server side: ``scribe.server`` (FastAPI). Client side: ``scribe.recorder``
and ``scribe.upload_client``.
"""

__version__ = "1.0.0"


# Lazy imports so the recorder does not load the server stack and vice versa
def __getattr__(name):
    if name == "SessionStore":
        from .session_store import SessionStore
        return SessionStore
    elif name == "ChunkIngest":
        from .ingest import ChunkIngest
        return ChunkIngest
    elif name == "SummarizationService":
        from .summarizer import SummarizationService
        return SummarizationService
    elif name == "ScribeClient":
        from .upload_client import ScribeClient
        return ScribeClient
    elif name == "UploadPipeline":
        from .upload_client import UploadPipeline
        return UploadPipeline
    elif name == "ChunkRecorder":
        from .recorder import ChunkRecorder
        return ChunkRecorder
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

__all__ = [
    "SessionStore",
    "ChunkIngest",
    "SummarizationService",
    "ScribeClient",
    "UploadPipeline",
    "ChunkRecorder",
]
