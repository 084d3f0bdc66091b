"""
Scribe Transcription Server

Accepts audio chunks from recorder clients, transcribes them into a
per-session transcript, and summarizes a session's transcript on demand.

Run with: scribe serve
Or: python -m scribe.server
"""

import os
import threading
from contextlib import asynccontextmanager
from typing import List, Optional

import uvicorn
from fastapi import FastAPI, File, Form, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from starlette.middleware.base import BaseHTTPMiddleware

from .config import ConfigManager
from .errors import EmptyTranscriptError, TranscodeError
from .gemini import DEFAULT_MODEL, TRANSCRIBE_INSTRUCTION, GeminiClient
from .ingest import ChunkIngest
from .logger import get_logger, log_exception
from .session_store import IdleTimeoutPolicy, SessionStore
from .summarizer import NO_TRANSCRIPT_MESSAGE, SummarizationService, create_summarizer
from .transcode import find_ffmpeg

logger = get_logger(__name__)

INGEST_FAILED_MESSAGE = "Failed to process/transcribe chunk."
SUMMARIZE_FAILED_MESSAGE = "Failed to summarize transcript."


# API Token Authentication Middleware
class APITokenMiddleware(BaseHTTPMiddleware):
    """Middleware to check API token if SCRIBE_API_TOKEN is set."""

    # Endpoints that don't require authentication
    PUBLIC_ENDPOINTS = {"/health", "/status", "/docs", "/openapi.json"}

    async def dispatch(self, request: Request, call_next):
        api_token = os.environ.get("SCRIBE_API_TOKEN")

        # If no token configured, allow all requests
        if not api_token:
            return await call_next(request)

        # CORS preflight carries no custom headers
        if request.method == "OPTIONS" or request.url.path in self.PUBLIC_ENDPOINTS:
            return await call_next(request)

        provided_token = request.headers.get("X-API-Token")
        if not provided_token or provided_token != api_token:
            return JSONResponse(
                status_code=401,
                content={"detail": "Invalid or missing API token"}
            )

        return await call_next(request)


class ChunkResponse(BaseModel):
    """Response body for a transcribed chunk."""
    transcript: str


class SummarizeRequest(BaseModel):
    """Request body for summarization."""
    model_config = ConfigDict(populate_by_name=True)

    session_id: Optional[str] = Field(default=None, alias="sessionId")


class SummaryResponse(BaseModel):
    summary: str


class TranscriptResponse(BaseModel):
    """A session's stored transcript entries, in arrival order."""
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId")
    entries: List[str]


class ServerStatus(BaseModel):
    """Server status response."""
    status: str
    transcription_model: str
    summarizer_backend: str
    ffmpeg_available: bool
    sessions: int
    busy: bool = False  # True if any chunk/summary requests are active
    active_requests: int = 0


# Process-wide services (built lazily from config, replaceable via configure())
_store: Optional[SessionStore] = None
_ingest: Optional[ChunkIngest] = None
_summarization: Optional[SummarizationService] = None
_services_lock = threading.Lock()

# Request tracking for busy detection
_active_requests = 0
_active_requests_lock = threading.Lock()


def _increment_requests():
    """Increment active request counter."""
    global _active_requests
    with _active_requests_lock:
        _active_requests += 1


def _decrement_requests():
    """Decrement active request counter."""
    global _active_requests
    with _active_requests_lock:
        _active_requests = max(0, _active_requests - 1)


def get_active_requests() -> int:
    """Get current number of active requests."""
    with _active_requests_lock:
        return _active_requests


def configure(store: Optional[SessionStore] = None, ingest: Optional[ChunkIngest] = None,
              summarization: Optional[SummarizationService] = None):
    """Install services explicitly instead of building them from config."""
    global _store, _ingest, _summarization
    with _services_lock:
        _store = store
        _ingest = ingest
        _summarization = summarization


def get_store() -> SessionStore:
    """Get the session store, creating it if necessary."""
    global _store
    with _services_lock:
        if _store is None:
            max_idle = ConfigManager.get_config_value('sessions', 'max_idle_seconds')
            policy = IdleTimeoutPolicy(max_idle) if max_idle else None
            _store = SessionStore(eviction_policy=policy)
        return _store


def get_ingest() -> ChunkIngest:
    """Get the chunk ingest pipeline, creating it if necessary."""
    global _ingest
    store = get_store()
    with _services_lock:
        if _ingest is None:
            section = ConfigManager.get_config_section('transcription')
            gemini = GeminiClient(model=section.get('model') or DEFAULT_MODEL,
                                  instruction=section.get('instruction') or TRANSCRIBE_INSTRUCTION)
            _ingest = ChunkIngest(
                store,
                gemini,
                tmp_dir=ConfigManager.get_config_value('server', 'tmp_dir'),
            )
        return _ingest


def get_summarization() -> SummarizationService:
    """Get the summarization service, creating it if necessary."""
    global _summarization
    store = get_store()
    with _services_lock:
        if _summarization is None:
            section = ConfigManager.get_config_section('summarization')
            backend = section.get('backend') or "gemini"
            max_attempts = section.get('max_attempts') or 1
            summarizer = create_summarizer(backend, model=section.get(f'{backend}_model'),
                                           max_attempts=max_attempts)
            _summarization = SummarizationService(store, summarizer)
        return _summarization


def _ffmpeg_available() -> bool:
    try:
        find_ffmpeg()
        return True
    except TranscodeError:
        return False


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Report configuration problems at startup instead of on the first chunk."""
    if not _ffmpeg_available():
        logger.warning("ffmpeg not found - /upload-chunk will fail until it is installed")
    if not (os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY")) and _ingest is None:
        logger.warning("GEMINI_API_KEY is not set - transcription requests will fail")
    yield
    logger.info("Shutting down...")


app = FastAPI(
    title="Scribe Transcription Server",
    description="Chunked audio transcription and session summaries",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(APITokenMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=ConfigManager.get_config_value('server', 'cors_origins') or ["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health():
    """Simple health check endpoint."""
    return {"status": "ok"}


@app.get("/status", response_model=ServerStatus)
def status():
    """Check server status and configuration."""
    active = get_active_requests()
    return ServerStatus(
        status="running",
        transcription_model=ConfigManager.get_config_value('transcription', 'model') or "",
        summarizer_backend=ConfigManager.get_config_value('summarization', 'backend') or "",
        ffmpeg_available=_ffmpeg_available(),
        sessions=len(get_store()),
        busy=active > 0,
        active_requests=active
    )


@app.post("/upload-chunk", response_model=ChunkResponse)
def upload_chunk(audio: Optional[UploadFile] = File(None),
                 session_id: Optional[str] = Form(None, alias="sessionId")):
    """
    Transcribe one audio chunk and append it to the session's transcript.

    The chunk may be any container ffmpeg can read (OGG, WebM, ...).
    """
    _increment_requests()
    try:
        if audio is None:
            raise ValueError("request has no audio file")
        raw = audio.file.read()
        transcript = get_ingest().ingest(raw, session_id or None)
        return ChunkResponse(transcript=transcript)
    except Exception as e:
        log_exception(e, f"in /upload-chunk (session={session_id})")
        return JSONResponse(status_code=500, content={"error": INGEST_FAILED_MESSAGE})
    finally:
        _decrement_requests()


@app.post("/summarize", response_model=SummaryResponse)
def summarize(request: Optional[SummarizeRequest] = None):
    """Summarize everything transcribed so far for a session."""
    request = request or SummarizeRequest()
    _increment_requests()
    try:
        summary = get_summarization().summarize(request.session_id)
        return SummaryResponse(summary=summary)
    except EmptyTranscriptError as e:
        return JSONResponse(status_code=e.status_code, content={"summary": NO_TRANSCRIPT_MESSAGE})
    except Exception as e:
        log_exception(e, f"in /summarize (session={request.session_id})")
        return JSONResponse(status_code=500, content={"error": SUMMARIZE_FAILED_MESSAGE})
    finally:
        _decrement_requests()


@app.get("/transcript/{session_id}", response_model=TranscriptResponse, response_model_by_alias=True)
def transcript(session_id: str):
    """Return a session's stored entries (empty for unknown sessions)."""
    return TranscriptResponse(session_id=session_id, entries=list(get_store().read(session_id)))


def run_server(host: Optional[str] = None, port: Optional[int] = None):
    """Run the server."""
    host = host or ConfigManager.get_config_value('server', 'host') or "0.0.0.0"
    port = port or ConfigManager.get_config_value('server', 'port') or 3001
    logger.info(f"Starting on http://{host}:{port}")
    uvicorn.run(app, host=host, port=port, log_level="warning")


if __name__ == "__main__":
    from .cli import main
    main(["serve"])
