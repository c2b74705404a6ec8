"""
Microphone capture with live Whisper transcription.

Capture is best-effort: a denied permission or busy device leaves the
session in text-only mode and is never raised to the caller.
"""
import asyncio
import logging
import os
import threading
import time
import uuid
from typing import Callable, List, Optional, Protocol

import numpy as np

from interview.events import CaptureResult, EventKind, EventSink, OperationResult, SessionEvent
from models.errors import CaptureUnavailableError
from models.schemas import ErrorKind
from utils.config import CaptureConfig, config

logger = logging.getLogger(__name__)

# ================================================================
# Whisper Model (GPU STT)
# ================================================================

# Lazy loading of Whisper model to avoid startup delay
_whisper_model = None


def get_whisper_model():
    """Lazy load the Whisper model."""
    global _whisper_model
    if _whisper_model is None:
        from faster_whisper import WhisperModel
        _whisper_model = WhisperModel(
            config.capture.model_path,
            device=config.capture.device,
            compute_type=config.capture.compute_type
        )
    return _whisper_model


class CaptureBackend(Protocol):
    async def request_permission(self) -> bool:
        """True if an input device may be used."""

    async def start(self, on_partial: Callable[[str], None]) -> None:
        """Begin recording; `on_partial` receives each live transcription."""

    async def stop(self) -> CaptureResult:
        """End recording and return the final text and recording path."""


class WhisperMicrophoneBackend:
    """
    Records the default input device with sounddevice and transcribes the
    growing buffer with faster-whisper every `partial_interval` seconds.
    """

    def __init__(self, settings: Optional[CaptureConfig] = None):
        self.settings = settings or config.capture
        self._stream = None
        self._frames: List[np.ndarray] = []
        self._lock = threading.Lock()
        self._partial_task: Optional[asyncio.Task] = None

    async def request_permission(self) -> bool:
        try:
            import sounddevice as sd
            device = sd.query_devices(kind="input")
        except Exception as e:
            logger.warning(f"No usable input device: {e}")
            return False
        return int(device.get("max_input_channels", 0)) > 0

    def _callback(self, indata, frames, time_info, status):
        # Runs on the PortAudio thread
        if status:
            logger.debug(f"Input stream status: {status}")
        with self._lock:
            self._frames.append(indata.copy())

    def _snapshot_audio(self) -> np.ndarray:
        with self._lock:
            if not self._frames:
                return np.zeros(0, dtype=np.float32)
            audio = np.concatenate(self._frames, axis=0)
        if audio.ndim > 1:
            audio = audio.mean(axis=1)
        return audio.astype(np.float32)

    def _transcribe(self, audio: np.ndarray) -> str:
        if audio.size == 0:
            return ""
        whisper = get_whisper_model()
        segments, _ = whisper.transcribe(audio, language=self.settings.language)
        return " ".join([s.text for s in segments]).strip()

    def _recording_path(self) -> str:
        return os.path.join(
            self.settings.recordings_dir,
            f"answer_{time.strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:12]}.wav",
        )

    def _save_recording(self, audio: np.ndarray) -> str:
        import soundfile as sf

        os.makedirs(self.settings.recordings_dir, exist_ok=True)
        path = self._recording_path()
        sf.write(path, audio, self.settings.sample_rate)
        return os.path.abspath(path)

    async def start(self, on_partial: Callable[[str], None]) -> None:
        import sounddevice as sd

        with self._lock:
            self._frames = []
        try:
            self._stream = sd.InputStream(
                samplerate=self.settings.sample_rate,
                channels=self.settings.channels,
                dtype="float32",
                callback=self._callback,
            )
            self._stream.start()
        except sd.PortAudioError as e:
            self._stream = None
            raise CaptureUnavailableError(f"Input device busy or unavailable: {e}") from e
        self._partial_task = asyncio.get_running_loop().create_task(self._stream_partials(on_partial))

    async def _stream_partials(self, on_partial: Callable[[str], None]):
        loop = asyncio.get_running_loop()
        while True:
            await asyncio.sleep(self.settings.partial_interval)
            try:
                text = await loop.run_in_executor(None, self._transcribe, self._snapshot_audio())
            except Exception as e:
                logger.warning(f"Live transcription stopped: {e}")
                return
            if text:
                on_partial(text)

    async def stop(self) -> CaptureResult:
        if self._partial_task is not None:
            self._partial_task.cancel()
            try:
                await self._partial_task
            except asyncio.CancelledError:
                pass
            self._partial_task = None

        if self._stream is not None:
            self._stream.stop()
            self._stream.close()
            self._stream = None

        audio = self._snapshot_audio()
        with self._lock:
            self._frames = []
        if audio.size == 0:
            return CaptureResult()

        loop = asyncio.get_running_loop()
        audio_uri = None
        try:
            audio_uri = await loop.run_in_executor(None, self._save_recording, audio)
        except OSError as e:
            logger.warning(f"Could not save recording: {e}")

        text = ""
        try:
            text = await loop.run_in_executor(None, self._transcribe, audio)
        except Exception as e:
            logger.warning(f"Final transcription failed: {e}")

        return CaptureResult(text=text, audio_uri=audio_uri)


class SpeechCaptureController:
    """
    Owns the single capture session for the orchestrator.

    `start()` while active returns the running session; `stop()` while idle
    returns an empty result. Neither ever raises.
    """

    def __init__(self, backend: Optional[CaptureBackend] = None):
        self.backend = backend or WhisperMicrophoneBackend()
        self._sink: Optional[EventSink] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._active = False
        self.generation = 0

    def init(self, sink: EventSink):
        self._sink = sink

    @property
    def active(self) -> bool:
        return self._active

    async def start(self) -> OperationResult:
        if self._active:
            return OperationResult.success("already active")

        self._loop = asyncio.get_running_loop()
        try:
            granted = await self.backend.request_permission()
        except Exception as e:
            logger.warning(f"Microphone permission request failed: {e}")
            granted = False
        if not granted:
            logger.warning("Microphone unavailable, continuing with typed answers only")
            return OperationResult.failure(ErrorKind.CAPTURE_UNAVAILABLE, "Microphone permission denied")

        self.generation += 1
        generation = self.generation
        try:
            await self.backend.start(lambda text: self._on_partial(generation, text))
        except CaptureUnavailableError as e:
            logger.warning(f"Capture unavailable: {e.message}")
            return OperationResult.failure(e.kind, e.message)
        except Exception as e:
            logger.warning(f"Could not start capture: {e}")
            return OperationResult.failure(ErrorKind.CAPTURE_UNAVAILABLE, str(e))

        self._active = True
        logger.info(f"Capture started (generation {generation})")
        return OperationResult.success()

    def _on_partial(self, generation: int, text: str):
        # May be called from a driver thread
        if self._sink is None or self._loop is None:
            return
        event = SessionEvent(EventKind.CAPTURE_PARTIAL, payload={"text": text}, generation=generation)
        self._loop.call_soon_threadsafe(self._sink, event)

    async def stop(self) -> CaptureResult:
        if not self._active:
            return CaptureResult()
        self._active = False
        try:
            result = await self.backend.stop()
        except Exception as e:
            logger.warning(f"Capture stop failed, answer text kept as typed: {e}")
            return CaptureResult()
        logger.info(f"Capture stopped (generation {self.generation})")
        return result or CaptureResult()

    async def teardown(self):
        await self.stop()
        self._sink = None
