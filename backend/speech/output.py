"""
Narration of interview questions via text-to-speech.

The controller owns at most one narration at a time. Output is advisory:
synthesis or playback failures are reported as events, never raised.
"""
import asyncio
import logging
import os
import tempfile
from typing import Optional, Protocol

from interview.events import EventKind, EventSink, SessionEvent
from models.errors import PlaybackFailureError
from utils.config import config

logger = logging.getLogger(__name__)


class SpeechEngine(Protocol):
    async def play(self, text: str) -> None:
        """Synthesize and play `text`, returning when playback ends."""

    def stop(self) -> None:
        """Halt playback immediately. Safe when idle."""


class Pyttsx3Engine:
    """
    Offline TTS: pyttsx3 renders to a wav file, sounddevice plays it.

    Playback goes through sounddevice so it can be cut off with sd.stop()
    from the event loop thread while the executor waits on it.
    """

    def __init__(
        self,
        rate: Optional[int] = None,
        volume: Optional[float] = None,
        language: Optional[str] = None,
    ):
        self.rate = rate or config.speech.rate
        self.volume = volume if volume is not None else config.speech.volume
        self.language = language or config.speech.language
        self._engine = None

    def _get_engine(self):
        """Lazy load the pyttsx3 driver."""
        if self._engine is None:
            import pyttsx3
            self._engine = pyttsx3.init()
            self._engine.setProperty("rate", self.rate)
            self._engine.setProperty("volume", self.volume)
            voice_id = self._find_voice(self._engine.getProperty("voices"))
            if voice_id:
                self._engine.setProperty("voice", voice_id)
        return self._engine

    def _find_voice(self, voices) -> Optional[str]:
        """First installed voice matching the configured language, e.g. "en-US" or "en"."""
        wanted = self.language.lower().replace("_", "-")
        prefix = wanted.split("-")[0]
        for voice in voices or []:
            langs = [
                (lang.decode("utf-8", "ignore") if isinstance(lang, bytes) else str(lang)).lower()
                for lang in (getattr(voice, "languages", None) or [])
            ]
            # espeak reports languages as bytes with a priority prefix, e.g. b"\x05en-us"
            langs = [lang.lstrip("\x05").replace("_", "-") for lang in langs]
            if wanted in langs or any(lang.split("-")[0] == prefix for lang in langs):
                return voice.id
        logger.debug(f"No installed voice for {self.language}, using the default voice")
        return None

    def _synthesize(self, text: str) -> str:
        fd, path = tempfile.mkstemp(suffix=".wav", prefix="narration_")
        os.close(fd)
        engine = self._get_engine()
        engine.save_to_file(text, path)
        engine.runAndWait()
        return path

    async def play(self, text: str) -> None:
        import sounddevice as sd
        import soundfile as sf

        loop = asyncio.get_running_loop()
        path = await loop.run_in_executor(None, self._synthesize, text)
        try:
            try:
                data, sample_rate = sf.read(path, dtype="float32")
            except sf.LibsndfileError as e:
                raise PlaybackFailureError(f"Synthesizer produced no audio: {e}") from e
            try:
                sd.play(data, sample_rate)
            except sd.PortAudioError as e:
                raise PlaybackFailureError(f"Output device unavailable: {e}") from e
            await loop.run_in_executor(None, sd.wait)
        finally:
            try:
                os.unlink(path)
            except OSError:
                logger.debug(f"Could not remove narration file {path}")

    def stop(self) -> None:
        try:
            import sounddevice as sd
            sd.stop()
        except (ImportError, OSError) as e:
            logger.debug(f"sounddevice unavailable on stop: {e}")


class SpeechOutputController:
    """
    Plays narration for the current question.

    `speak()` always stops the previous narration before starting the new one,
    so audio from two questions never overlaps.
    """

    def __init__(self, engine: Optional[SpeechEngine] = None, delay: Optional[float] = None):
        self.engine = engine or Pyttsx3Engine()
        self.delay = config.speech.narration_delay if delay is None else delay
        self._sink: Optional[EventSink] = None
        self._task: Optional[asyncio.Task] = None
        self.generation = 0

    def init(self, sink: EventSink):
        self._sink = sink

    @property
    def playing(self) -> bool:
        return self._task is not None and not self._task.done()

    def speak(self, text: str) -> int:
        """Cancel any narration in flight, then narrate `text`. Returns the generation."""
        if self._sink is None:
            raise RuntimeError("SpeechOutputController.init() must be called before speak()")
        self.stop()
        self.generation += 1
        self._task = asyncio.get_running_loop().create_task(self._run(self.generation, text))
        return self.generation

    async def _run(self, generation: int, text: str):
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            await self.engine.play(text)
        except asyncio.CancelledError:
            self._post(EventKind.NARRATION_STOPPED, generation)
            raise
        except Exception as e:
            logger.warning(f"Narration failed: {e}")
            self._post(EventKind.NARRATION_ERROR, generation, message=str(e))
        else:
            self._post(EventKind.NARRATION_DONE, generation)

    def _post(self, kind: EventKind, generation: int, **payload):
        if self._sink is not None:
            self._sink(SessionEvent(kind, payload=payload, generation=generation))

    def stop(self):
        """Stop narration. Always safe, including when idle."""
        if self.playing:
            self._task.cancel()
        self._task = None
        try:
            self.engine.stop()
        except Exception as e:
            logger.warning(f"Speech engine stop failed: {e}")

    def teardown(self):
        self.stop()
        self._sink = None
