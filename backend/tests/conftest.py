"""
Shared fixtures: fake timer, narration, capture and grading services that
the tests drive by hand.
"""
import asyncio
import threading
from types import SimpleNamespace

import pytest

from interview.events import CaptureResult, EventKind, OperationResult, SessionEvent
from interview.state import InterviewStateMachine
from models.errors import ApiError
from models.schemas import ErrorKind
from utils.config import SessionConfig

QUESTIONS = [
    "Tell me about a time you fixed a production outage.",
    "How would you find duplicates in a large list?",
    "Why do you want to work here?",
]


class FakeTimer:
    """Countdown that only moves when the test calls tick()."""

    def __init__(self):
        self.sink = None
        self.generation = 0
        self.remaining = 0
        self.armed = False
        self.arm_calls = []
        self.stop_calls = 0

    def init(self, sink):
        self.sink = sink

    def arm(self, duration_seconds):
        self.stop()
        self.generation += 1
        self.remaining = duration_seconds
        self.armed = True
        self.arm_calls.append(duration_seconds)
        return self.generation

    def stop(self):
        if self.armed:
            self.stop_calls += 1
        self.armed = False

    def tick(self, seconds=1):
        for _ in range(seconds):
            if not self.armed:
                return
            self.remaining -= 1
            self.sink(SessionEvent(
                EventKind.TIMER_TICK,
                payload={"seconds_left": self.remaining},
                generation=self.generation,
            ))
            if self.remaining == 0:
                self.armed = False
                self.sink(SessionEvent(EventKind.TIMER_EXPIRED, generation=self.generation))

    def teardown(self):
        self.stop()
        self.sink = None


class FakeSpeechOutput:
    """Narration that plays until the test calls finish() or fail()."""

    def __init__(self):
        self.sink = None
        self.generation = 0
        self.playing = False
        self.spoken = []
        self.stop_calls = 0

    def init(self, sink):
        self.sink = sink

    def speak(self, text):
        self.stop()
        self.generation += 1
        self.playing = True
        self.spoken.append(text)
        return self.generation

    def stop(self):
        if self.playing:
            self.stop_calls += 1
        self.playing = False

    def finish(self):
        if self.playing:
            self.playing = False
            self.sink(SessionEvent(EventKind.NARRATION_DONE, generation=self.generation))

    def fail(self, message="audio device lost"):
        if self.playing:
            self.playing = False
            self.sink(SessionEvent(
                EventKind.NARRATION_ERROR,
                payload={"message": message},
                generation=self.generation,
            ))

    def teardown(self):
        self.stop()
        self.sink = None


class FakeCapture:
    """Capture controller with scripted permission and final result."""

    def __init__(self, granted=True, final_text="", audio_uri=None):
        self.granted = granted
        self.final_text = final_text
        self.audio_uri = audio_uri
        self.sink = None
        self.active = False
        self.generation = 0
        self.start_calls = 0
        self.stop_calls = 0

    def init(self, sink):
        self.sink = sink

    async def start(self):
        self.start_calls += 1
        if self.active:
            return OperationResult.success("already active")
        if not self.granted:
            return OperationResult.failure(ErrorKind.CAPTURE_UNAVAILABLE, "Microphone permission denied")
        self.generation += 1
        self.active = True
        return OperationResult.success()

    def partial(self, text, generation=None):
        self.sink(SessionEvent(
            EventKind.CAPTURE_PARTIAL,
            payload={"text": text},
            generation=self.generation if generation is None else generation,
        ))

    async def stop(self):
        if not self.active:
            return CaptureResult()
        self.active = False
        self.stop_calls += 1
        return CaptureResult(text=self.final_text, audio_uri=self.audio_uri)

    async def teardown(self):
        await self.stop()
        self.sink = None


class FakeGrader:
    """Grading client; fails the first `failures` calls with a network error."""

    def __init__(self, response=None, failures=0):
        self.response = response if response is not None else {
            "overall": {"score": 82.4, "summary": "Clear and structured."},
            "items": [{"score": 80}, {"score": 85}, {"score": 82}],
        }
        self.failures = failures
        self.calls = []

    def grade(self, transcript):
        self.calls.append(transcript)
        if self.failures > 0:
            self.failures -= 1
            raise ApiError("Can't reach server (/grade): Connection refused")
        return self.response


class BlockingGrader(FakeGrader):
    """Grader whose call blocks its worker thread until `release` is set."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.started = threading.Event()
        self.release = threading.Event()

    def grade(self, transcript):
        self.started.set()
        self.release.wait(timeout=5)
        return super().grade(transcript)


class BlockingCapture(FakeCapture):
    """Capture whose stop() waits until the test sets `release`."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.stopping = asyncio.Event()
        self.release = asyncio.Event()

    async def stop(self):
        if self.active:
            self.stopping.set()
            await self.release.wait()
        return await super().stop()

    async def teardown(self):
        self.release.set()
        await super().teardown()


@pytest.fixture
def payload():
    return {
        "questions": list(QUESTIONS),
        "timerSec": 90,
        "role": "Backend Engineer",
        "level": "Junior",
        "mode": "Technical",
        "topics": ["algorithms"],
    }


@pytest.fixture
def fakes():
    return SimpleNamespace(
        timer=FakeTimer(),
        output=FakeSpeechOutput(),
        capture=FakeCapture(),
        grader=FakeGrader(),
    )


def build_session(fakes, payload, **overrides) -> InterviewStateMachine:
    settings = SessionConfig(**{
        "auto_advance_on_expiry": False,
        "auto_start_after_narration": False,
        **overrides,
    })
    return InterviewStateMachine(
        payload,
        timer=fakes.timer,
        speech_output=fakes.output,
        speech_capture=fakes.capture,
        api_client=fakes.grader,
        settings=settings,
    )


@pytest.fixture
async def make_session(fakes):
    sessions = []

    async def _make(payload, **overrides):
        session = build_session(fakes, payload, **overrides)
        await session.open()
        sessions.append(session)
        return session

    yield _make

    for session in sessions:
        await session.close()
