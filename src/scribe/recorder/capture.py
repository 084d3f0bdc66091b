"""
Audio capture for the recorder.

Microphone: the default input device.
Tab: a system-audio loopback input (BlackHole on macOS, "Monitor of ..." on
PulseAudio/PipeWire, "Stereo Mix" on Windows, or a configured device name).

SliceRecorder records one bounded slice from an open stream and encodes it
to a compressed container, like a browser MediaRecorder would.
"""

import io
import queue
import threading
import time
from typing import Callable, List, Optional

import numpy as np
import soundfile as sf

from ..errors import CaptureAcquisitionError, NoAudioTrackError, RecorderInitError
from ..logger import get_logger
from .session import SourceType

logger = get_logger(__name__)

# Substrings (lowercase) of device names that capture system output
LOOPBACK_HINTS = ("blackhole", "monitor of", "stereo mix", "loopback", "what u hear", "soundflower")

CHUNK_CONTAINER = "OGG"
CHUNK_SUBTYPE = "VORBIS"
CHUNK_FILENAME = "chunk.ogg"
CHUNK_MIME_TYPE = "audio/ogg"


def _load_sounddevice():
    """Import sounddevice; a missing PortAudio library is an acquisition failure."""
    try:
        import sounddevice as sd
    except OSError as e:
        raise CaptureAcquisitionError(f"Audio backend unavailable: {e}") from e
    return sd


class AudioStream:
    """An open input stream that queues int16 blocks of shape (frames, channels)."""

    def __init__(self, source: SourceType, device_name: str, sample_rate: int, channels: int):
        self.source = source
        self.device_name = device_name
        self.sample_rate = sample_rate
        self.channels = channels
        self.queue: queue.Queue = queue.Queue()
        self._stream = None
        self._closed = False

    @property
    def audio_track_count(self) -> int:
        """Input channels the device exposes; 0 means there is nothing to record."""
        return self.channels

    @property
    def closed(self) -> bool:
        return self._closed

    def _callback(self, indata, frames, time_info, status):
        """sounddevice callback - runs on the PortAudio thread."""
        if status:
            logger.debug(f"[{self.source.value}] stream status: {status}")
        if not self._closed:
            self.queue.put(indata.copy())

    def attach(self, stream) -> None:
        self._stream = stream

    def clear(self) -> None:
        """Drop audio captured while no slice was recording."""
        while True:
            try:
                self.queue.get_nowait()
            except queue.Empty:
                break

    def read(self, timeout: float = 0.1) -> Optional[np.ndarray]:
        """Get queued audio, waiting up to ``timeout`` for the first block."""
        chunks = []
        try:
            chunks.append(self.queue.get(timeout=timeout))
        except queue.Empty:
            return None

        # Then drain any additional items without blocking
        while True:
            try:
                chunks.append(self.queue.get_nowait())
            except queue.Empty:
                break
        return np.concatenate(chunks)

    def close(self) -> None:
        """Stop and release the device. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        if self._stream is not None:
            try:
                self._stream.stop()
                self._stream.close()
            except Exception as e:
                logger.warning(f"[{self.source.value}] error closing stream: {e}")
            self._stream = None
        logger.info(f"[{self.source.value}] capture released ({self.device_name})")


class AudioSource:
    """Opens microphone or loopback streams with sounddevice."""

    def __init__(self, sample_rate: int = 48000, block_size: int = 1024,
                 loopback_device: Optional[str] = None):
        self.sample_rate = sample_rate
        self.block_size = block_size
        self.loopback_device = loopback_device

    def open(self, source: SourceType) -> AudioStream:
        """
        Acquire a started stream for ``source``.

        Raises:
            CaptureAcquisitionError: No usable device, or the device refused to open
            NoAudioTrackError: The tab device exists but has no input channels
        """
        sd = _load_sounddevice()
        source = SourceType(source)

        if source == SourceType.MIC:
            device = self._find_default_mic(sd)
        else:
            device = self._find_loopback_device(sd)
        if device is None:
            what = "microphone" if source == SourceType.MIC else "tab/system audio device"
            raise CaptureAcquisitionError(f"No {what} found")

        max_channels = int(device.get('max_input_channels', 0))
        if max_channels <= 0:
            raise NoAudioTrackError(f"Device '{device['name']}' has no audio input channels",
                                    device=device['name'])

        if source == SourceType.MIC:
            rate, channels = self.sample_rate, 1
        else:
            # Loopback devices only open at their native rate; keep stereo at most
            rate, channels = int(device['default_samplerate']), min(max_channels, 2)

        stream = AudioStream(source, device['name'], rate, channels)
        try:
            input_stream = sd.InputStream(
                device=device.get('index'),
                samplerate=rate,
                channels=channels,
                dtype='int16',
                blocksize=self.block_size,
                callback=stream._callback,
            )
            input_stream.start()
        except (sd.PortAudioError, ValueError) as e:
            raise CaptureAcquisitionError(f"Could not open '{device['name']}': {e}",
                                          device=device['name']) from e
        stream.attach(input_stream)
        logger.info(f"[{source.value}] capturing from '{device['name']}' ({rate}Hz, {channels}ch)")
        return stream

    def _find_default_mic(self, sd) -> Optional[dict]:
        """Find the default microphone device."""
        try:
            device = dict(sd.query_devices(kind='input'))
        except (sd.PortAudioError, ValueError) as e:
            logger.warning(f"Error finding default mic: {e}")
            return None
        device['index'] = None  # let PortAudio use its default input
        return device

    def _find_loopback_device(self, sd) -> Optional[dict]:
        """Find a loopback device for system audio capture."""
        try:
            devices = sd.query_devices()
        except sd.PortAudioError as e:
            logger.warning(f"Error listing audio devices: {e}")
            return None

        hints = (self.loopback_device.lower(),) if self.loopback_device else LOOPBACK_HINTS
        for i, dev in enumerate(devices):
            name = dev['name'].lower()
            if any(hint in name for hint in hints):
                device = dict(dev)
                device['index'] = i
                return device

        logger.warning("No loopback device found. Install BlackHole (macOS), "
                       "enable 'Stereo Mix' (Windows) or set client.loopback_device")
        return None


def encode_chunk(blocks: List[np.ndarray], sample_rate: int,
                 container: str = CHUNK_CONTAINER, subtype: str = CHUNK_SUBTYPE) -> bytes:
    """Encode int16 blocks into one compressed chunk; b"" when there is no audio."""
    if not blocks:
        return b""
    audio = np.concatenate(blocks)
    if audio.size == 0:
        return b""
    buf = io.BytesIO()
    sf.write(buf, audio, sample_rate, format=container, subtype=subtype)
    return buf.getvalue()


class SliceRecorder:
    """Records one slice of at most ``duration`` seconds on a worker thread.

    ``on_complete(chunk_bytes)`` fires when the slice ends (timer or stop());
    ``on_error(exc)`` fires instead if recording or encoding fails.
    """

    def __init__(self, stream: AudioStream, duration: float,
                 on_complete: Callable[[bytes], None],
                 on_error: Callable[[Exception], None]):
        if stream.closed:
            raise RecorderInitError("Audio stream is already closed", stage="init")
        if stream.audio_track_count <= 0:
            raise RecorderInitError("Audio stream has no channels", stage="init")
        if not sf.check_format(CHUNK_CONTAINER, CHUNK_SUBTYPE):
            raise RecorderInitError(f"libsndfile cannot write {CHUNK_CONTAINER}/{CHUNK_SUBTYPE}", stage="init")

        self.stream = stream
        self.duration = duration
        self.on_complete = on_complete
        self.on_error = on_error
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        self.stream.clear()
        try:
            self._thread = threading.Thread(target=self._run, name="scribe-slice", daemon=True)
            self._thread.start()
        except RuntimeError as e:
            raise RecorderInitError(f"Could not start slice thread: {e}", stage="start") from e

    def stop(self) -> None:
        """End the slice early; its audio is still delivered."""
        self._stop_event.set()

    def _run(self) -> None:
        deadline = time.monotonic() + self.duration
        blocks: List[np.ndarray] = []
        try:
            while not self._stop_event.is_set():
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                block = self.stream.read(timeout=min(0.1, remaining))
                if block is not None:
                    blocks.append(block)

            # Pick up whatever the callback queued before the stop
            block = self.stream.read(timeout=0)
            if block is not None:
                blocks.append(block)

            data = encode_chunk(blocks, self.stream.sample_rate)
        except Exception as e:
            self.on_error(e)
            return
        self.on_complete(data)
