"""
Chunked capture control loop.

ChunkRecorder is a finite-state machine driven by events on a single control
thread. Slice threads and upload threads never touch recorder state; they
post events back to the control queue.

    IDLE -> ACQUIRING -> RECORDING <-> PAUSED -> STOPPED
                 \\            |
                  +--> FALLING_BACK (tab failed, restart on mic)

At most one chunk is in flight per session: the next slice is armed only
after the previous chunk's upload (retries included) has settled.
"""

import queue
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Tuple

from ..errors import CaptureAcquisitionError, NoAudioTrackError, RecorderInitError
from ..logger import get_logger, log_exception
from .capture import AudioSource, AudioStream, SliceRecorder
from .session import FAILURE_MARKER, RecordingSession, SourceType

logger = get_logger(__name__)

DEFAULT_CHUNK_MS = 20000

FALLBACK_REASONS = {
    "no_audio": "No audio detected in tab. Switched to mic.",
    "capture": "Tab permission or capture failed. Switched to mic.",
    "recorder_init": "Could not initialize tab recording. Switched to mic.",
    "recorder_start": "Tab recording could not be started. Switched to mic.",
}


class RecorderState(str, Enum):
    IDLE = "idle"
    ACQUIRING = "acquiring"
    RECORDING = "recording"
    PAUSED = "paused"
    FALLING_BACK = "falling_back"
    STOPPED = "stopped"


class RecorderEvent(str, Enum):
    START = "start"
    STREAM_READY = "stream_ready"
    CAPTURE_FAILED = "capture_failed"
    RECORDER_FAILED = "recorder_failed"
    SLICE_READY = "slice_ready"
    SLICE_FAILED = "slice_failed"
    UPLOAD_SETTLED = "upload_settled"
    PAUSE = "pause"
    RESUME = "resume"
    STOP = "stop"


# Events produced on behalf of a session; dropped when the session is no longer current
SESSION_EVENTS = frozenset({
    RecorderEvent.STREAM_READY,
    RecorderEvent.CAPTURE_FAILED,
    RecorderEvent.RECORDER_FAILED,
    RecorderEvent.SLICE_READY,
    RecorderEvent.SLICE_FAILED,
    RecorderEvent.UPLOAD_SETTLED,
})


@dataclass
class Event:
    kind: RecorderEvent
    token: Optional[str] = None
    payload: Any = None


@dataclass
class StartRequest:
    source: SourceType
    fallback_attempted: bool = False
    reason: str = ""


class Transition(NamedTuple):
    """One row of the transition table.

    ``target`` None keeps the current state. ``action`` and ``guard`` name
    ChunkRecorder methods taking the event.
    """
    target: Optional[RecorderState]
    action: Optional[str]
    guard: Optional[str] = None


_S = RecorderState
_E = RecorderEvent

_USER_START = [Transition(_S.ACQUIRING, "_begin_session", "_is_user_start")]
_CAPTURE_FAILURE = [
    Transition(_S.FALLING_BACK, "_fall_back", "_can_fall_back"),
    Transition(_S.STOPPED, "_fail"),
]

TRANSITIONS: Dict[Tuple[RecorderState, RecorderEvent], List[Transition]] = {
    (_S.IDLE, _E.START): _USER_START,
    (_S.STOPPED, _E.START): _USER_START,
    (_S.FALLING_BACK, _E.START): [Transition(_S.ACQUIRING, "_begin_session")],

    (_S.ACQUIRING, _E.STREAM_READY): [Transition(_S.RECORDING, "_arm_slice")],
    (_S.ACQUIRING, _E.CAPTURE_FAILED): _CAPTURE_FAILURE,
    (_S.RECORDING, _E.RECORDER_FAILED): _CAPTURE_FAILURE,

    (_S.RECORDING, _E.SLICE_READY): [Transition(None, "_upload_slice")],
    (_S.PAUSED, _E.SLICE_READY): [Transition(None, "_upload_slice")],
    (_S.STOPPED, _E.SLICE_READY): [Transition(None, "_upload_slice")],

    (_S.RECORDING, _E.SLICE_FAILED): [Transition(_S.STOPPED, "_fail")],
    (_S.PAUSED, _E.SLICE_FAILED): [Transition(None, "_drop_slice")],
    (_S.STOPPED, _E.SLICE_FAILED): [Transition(None, "_drop_slice")],

    (_S.RECORDING, _E.UPLOAD_SETTLED): [Transition(None, "_settle_and_arm")],
    (_S.PAUSED, _E.UPLOAD_SETTLED): [Transition(None, "_settle")],
    (_S.STOPPED, _E.UPLOAD_SETTLED): [Transition(None, "_settle")],

    (_S.RECORDING, _E.PAUSE): [Transition(_S.PAUSED, "_cut_slice")],
    (_S.PAUSED, _E.RESUME): [Transition(_S.RECORDING, "_arm_slice")],

    (_S.ACQUIRING, _E.STOP): [Transition(_S.STOPPED, "_release")],
    (_S.RECORDING, _E.STOP): [Transition(_S.STOPPED, "_release")],
    (_S.PAUSED, _E.STOP): [Transition(_S.STOPPED, "_release")],
    (_S.FALLING_BACK, _E.STOP): [Transition(_S.STOPPED, "_release")],
}


class FallbackController:
    """Demotes a failed tab recording to the microphone, once per recording."""

    def can_fall_back(self, session: Optional[RecordingSession]) -> bool:
        return (session is not None
                and session.source == SourceType.TAB
                and not session.fallback_attempted)

    @staticmethod
    def reason_key(error: Exception) -> str:
        if isinstance(error, NoAudioTrackError):
            return "no_audio"
        if isinstance(error, RecorderInitError):
            return "recorder_start" if error.stage == "start" else "recorder_init"
        return "capture"

    def reason_for(self, error: Exception) -> str:
        return FALLBACK_REASONS[self.reason_key(error)]


class ChunkRecorder:
    """
    Records fixed-length chunks and feeds them to an UploadPipeline.

    Public methods only post events; all state changes happen on the
    control thread.

    Args:
        pipeline: Object with ``upload(chunk, session)``
        audio_source: Object with ``open(source) -> AudioStream``
        chunk_ms: Slice length in milliseconds
        source: Initial source type
        recorder_factory: Callable building a SliceRecorder
        on_status: Called with (session, message) for user-visible status
        on_transcript: Called with (session, entries) after each upload settles
    """

    def __init__(self, pipeline, audio_source: Optional[AudioSource] = None,
                 chunk_ms: int = DEFAULT_CHUNK_MS, source: SourceType = SourceType.MIC,
                 recorder_factory: Callable[..., SliceRecorder] = SliceRecorder,
                 on_status: Optional[Callable[[RecordingSession, str], None]] = None,
                 on_transcript: Optional[Callable[[RecordingSession, tuple], None]] = None,
                 fallback: Optional[FallbackController] = None):
        self.pipeline = pipeline
        self.audio_source = audio_source or AudioSource()
        self.chunk_seconds = chunk_ms / 1000.0
        self.source = SourceType(source)
        self.recorder_factory = recorder_factory
        self.on_status = on_status
        self.on_transcript = on_transcript
        self.fallback = fallback or FallbackController()

        self._state = RecorderState.IDLE
        self._state_changed = threading.Condition()
        self._session: Optional[RecordingSession] = None
        self._stream: Optional[AudioStream] = None
        self._slice: Optional[SliceRecorder] = None
        self._uploading = False

        self._events: queue.Queue = queue.Queue()
        self._thread = threading.Thread(target=self._run, name="scribe-recorder", daemon=True)
        self._thread.start()

    # --- Public API ---

    @property
    def state(self) -> RecorderState:
        return self._state

    @property
    def session(self) -> Optional[RecordingSession]:
        return self._session

    def start(self, source: Optional[SourceType] = None):
        """Start a new recording. A previous session is dropped, not resumed."""
        self._post(Event(RecorderEvent.START, payload=StartRequest(SourceType(source or self.source))))

    def pause(self):
        self._post(Event(RecorderEvent.PAUSE))

    def resume(self):
        self._post(Event(RecorderEvent.RESUME))

    def stop(self):
        self._post(Event(RecorderEvent.STOP))

    def wait_for_state(self, *states: RecorderState, timeout: Optional[float] = None) -> bool:
        """Block until the recorder is in one of ``states``. Returns False on timeout."""
        with self._state_changed:
            return self._state_changed.wait_for(lambda: self._state in states, timeout=timeout)

    def wait_until_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until no slice is recording and no upload is in flight."""
        with self._state_changed:
            return self._state_changed.wait_for(
                lambda: self._slice is None and not self._uploading, timeout=timeout)

    def close(self, timeout: float = 5.0):
        """Stop recording and end the control thread."""
        self.stop()
        self._events.put(None)
        self._thread.join(timeout=timeout)

    # --- Control loop ---

    def _post(self, event: Event):
        self._events.put(event)

    def _run(self):
        while True:
            event = self._events.get()
            if event is None:
                break
            try:
                self._dispatch(event)
            except Exception as e:
                log_exception(e, f"handling {event.kind.value} in state {self._state.value}")

    def _dispatch(self, event: Event):
        if event.kind in SESSION_EVENTS:
            current = self._session.token if self._session else None
            if event.token != current:
                logger.debug(f"Dropping stale {event.kind.value} for session {event.token}")
                return

        routes = TRANSITIONS.get((self._state, event.kind))
        if not routes:
            logger.debug(f"Ignoring {event.kind.value} in state {self._state.value}")
            return

        for transition in routes:
            if transition.guard and not getattr(self, transition.guard)(event):
                continue
            if transition.target is not None:
                self._set_state(transition.target)
            if transition.action:
                getattr(self, transition.action)(event)
            return

        logger.debug(f"No transition for {event.kind.value} in state {self._state.value}")

    def _set_state(self, state: RecorderState):
        with self._state_changed:
            if state != self._state:
                logger.debug(f"{self._state.value} -> {state.value}")
            self._state = state
            self._state_changed.notify_all()

    def _wake(self):
        with self._state_changed:
            self._state_changed.notify_all()

    def _notify(self, message: str, session: Optional[RecordingSession] = None):
        session = session or self._session
        logger.info(message)
        if self.on_status and session is not None:
            self.on_status(session, message)

    # --- Guards ---

    def _is_user_start(self, event: Event) -> bool:
        return not event.payload.fallback_attempted

    def _can_fall_back(self, event: Event) -> bool:
        return self.fallback.can_fall_back(self._session)

    # --- Actions ---

    def _begin_session(self, event: Event):
        request: StartRequest = event.payload
        session = RecordingSession.create(request.source, request.fallback_attempted, request.reason)
        self._session = session
        self._slice = None
        self._uploading = False
        self._stream = None

        if request.reason:
            self._notify(request.reason, session)
        self._notify(f"Recording from {session.source.value} (session {session.token})", session)

        try:
            stream = self.audio_source.open(session.source)
            if stream.audio_track_count == 0:
                stream.close()
                raise NoAudioTrackError("Selected source has no audio tracks")
        except CaptureAcquisitionError as e:
            self._post(Event(RecorderEvent.CAPTURE_FAILED, session.token, e))
            return
        except Exception as e:
            log_exception(e, f"opening {session.source.value} capture")
            error = CaptureAcquisitionError(f"Could not open {session.source.value} capture: {e}")
            self._post(Event(RecorderEvent.CAPTURE_FAILED, session.token, error))
            return

        self._stream = stream
        self._post(Event(RecorderEvent.STREAM_READY, session.token))

    def _arm_slice(self, event: Event):
        if self._slice is not None or self._uploading:
            # The current chunk re-arms when its upload settles
            return

        token = self._session.token
        try:
            recorder = self.recorder_factory(
                self._stream,
                self.chunk_seconds,
                on_complete=lambda data: self._post(Event(RecorderEvent.SLICE_READY, token, data)),
                on_error=lambda exc: self._post(Event(RecorderEvent.SLICE_FAILED, token, exc)),
            )
        except RecorderInitError as e:
            self._post(Event(RecorderEvent.RECORDER_FAILED, token, e))
            return
        except Exception as e:
            log_exception(e, "building slice recorder")
            error = RecorderInitError(f"Could not initialize recorder: {e}", stage="init")
            self._post(Event(RecorderEvent.RECORDER_FAILED, token, error))
            return

        try:
            recorder.start()
        except RecorderInitError as e:
            e.stage = "start"
            self._post(Event(RecorderEvent.RECORDER_FAILED, token, e))
            return
        except Exception as e:
            log_exception(e, "starting slice recorder")
            error = RecorderInitError(f"Could not start recorder: {e}", stage="start")
            self._post(Event(RecorderEvent.RECORDER_FAILED, token, error))
            return
        self._slice = recorder

    def _cut_slice(self, event: Event):
        if self._slice is not None:
            self._slice.stop()
        self._notify("Paused")

    def _upload_slice(self, event: Event):
        self._slice = None
        self._uploading = True
        session = self._session
        worker = threading.Thread(
            target=self._run_upload,
            args=(event.payload, session),
            name="scribe-upload",
            daemon=True,
        )
        worker.start()

    def _run_upload(self, data: bytes, session: RecordingSession):
        """Worker thread: upload one chunk, then report settlement."""
        outcome = None
        try:
            outcome = self.pipeline.upload(data, session)
        except Exception as e:
            log_exception(e, f"uploading chunk for session {session.token}")
            session.transcript.append(FAILURE_MARKER)
            session.error = f"Chunk upload/API error: {e}"
        finally:
            self._post(Event(RecorderEvent.UPLOAD_SETTLED, session.token, outcome))

    def _settle(self, event: Event):
        self._uploading = False
        self._wake()
        session = self._session
        if self.on_transcript:
            self.on_transcript(session, session.transcript.snapshot())
        outcome = event.payload
        if outcome is None or outcome.error:
            self._notify(session.error, session)

    def _settle_and_arm(self, event: Event):
        self._settle(event)
        self._arm_slice(event)

    def _drop_slice(self, event: Event):
        self._slice = None
        self._wake()
        logger.warning(f"Discarding slice that failed after pause/stop: {event.payload}")

    def _close_capture(self):
        if self._slice is not None:
            self._slice.stop()
        if self._stream is not None:
            self._stream.close()
            self._stream = None

    def _release(self, event: Event):
        # The running slice still delivers its bytes and gets uploaded
        self._close_capture()
        self._notify("Stopped")

    def _fall_back(self, event: Event):
        reason = self.fallback.reason_for(event.payload)
        logger.warning(f"Tab capture failed ({event.payload}); falling back to mic")
        self._close_capture()
        self._slice = None
        self._wake()
        self.source = SourceType.MIC
        self._post(Event(RecorderEvent.START, payload=StartRequest(SourceType.MIC, True, reason)))

    def _fail(self, event: Event):
        error = event.payload
        self._close_capture()
        self._slice = None
        self._wake()
        session = self._session
        session.error = f"Recording failed: {error}"
        logger.error(f"Session {session.token} stopped: {error}")
        self._notify(session.error, session)
