"""
Interview session state machine.
Sequences questions, the countdown timer, narration and speech capture so
that at most one of each is active, and assembles the transcript at the end.

All events (user actions, timer ticks, narration and capture results) go
through a single queue and are handled one at a time, in arrival order.
"""
import asyncio
import logging
import uuid
from typing import Any, Dict, Optional, Union

from interview.events import EventKind, EventLog, SessionEvent
from interview.grading import GradeValidator
from interview.ledger import AnswerLedger, TranscriptAssembler
from interview.states import SessionStates
from interview.timer import CountdownTimer
from llm.client import api_client as default_api_client
from models.errors import (
    ActionRejectedError,
    ApiError,
    IllegalTransitionError,
    InterviewError,
    InvalidPayloadError,
    SessionClosedError,
    SubmissionFailedError,
)
from models.schemas import (
    ErrorKind,
    GradeReport,
    SessionError,
    SessionSetup,
    SessionSnapshot,
    SessionState,
    Transcript,
)
from speech.capture import SpeechCaptureController
from speech.output import SpeechOutputController
from utils.config import SessionConfig, config

logger = logging.getLogger(__name__)

S = SessionState

TIMES_UP = "Time's up"
SETUP_ROUTE = "/setup"


class InterviewStateMachine:
    """
    Manages the state of one timed interview session.

    The timer, speech output, speech capture and grading client are injected
    so they can be replaced with fakes; each gets `init()` on open and is torn
    down on close.
    """

    def __init__(
        self,
        payload: Union[str, bytes, Dict[str, Any], None],
        timer: Optional[CountdownTimer] = None,
        speech_output: Optional[SpeechOutputController] = None,
        speech_capture: Optional[SpeechCaptureController] = None,
        api_client=None,
        settings: Optional[SessionConfig] = None,
        session_id: Optional[str] = None,
    ):
        """
        Initialize a new interview session.

        Args:
            payload: Setup payload from the question generation step
            timer: Countdown timer service
            speech_output: Narration service
            speech_capture: Microphone / transcription service
            api_client: Grading client exposing `grade(transcript)`
            settings: Session flow configuration
            session_id: Optional existing session ID
        """
        self.session_id = session_id or f"session-{uuid.uuid4().hex[:12]}"
        self.settings = settings or config.session
        self._payload = payload

        # Collaborators
        self.timer = timer or CountdownTimer()
        self.speech_output = speech_output or SpeechOutputController()
        self.speech_capture = speech_capture or SpeechCaptureController()
        self.api_client = api_client or default_api_client

        # Session
        self.state = S.LOADING
        self.setup: Optional[SessionSetup] = None
        self.ledger: Optional[AnswerLedger] = None
        self.current_index = 0

        # Current question
        self.seconds_left = 0
        self.draft_answer = ""
        self.muted = False
        self.notification: Optional[str] = None
        self._elapsed = 0  # time used on this question before the running segment
        self._segment_elapsed = 0
        self._audio_uri: Optional[str] = None

        # Generations whose events are still accepted
        self._timer_generation: Optional[int] = None
        self._narration_generation: Optional[int] = None
        self._capture_generation: Optional[int] = None

        # Outcome
        self.transcript: Optional[Transcript] = None
        self.result: Optional[GradeReport] = None
        self.error: Optional[SessionError] = None

        self.events = EventLog()
        self._queue: Optional[asyncio.Queue] = None
        self._worker: Optional[asyncio.Task] = None
        self._inflight: Optional[asyncio.Future] = None
        self._closed = False

        self._handlers = {
            EventKind.LOAD: self._on_load,
            EventKind.START: self._on_start,
            EventKind.PAUSE: self._on_pause,
            EventKind.RESET: self._on_reset,
            EventKind.NEXT: self._on_next,
            EventKind.PREV: self._on_prev,
            EventKind.FINISH: self._on_finish,
            EventKind.EDIT_ANSWER: self._on_edit_answer,
            EventKind.SPEAK_AGAIN: self._on_speak_again,
            EventKind.TOGGLE_MUTE: self._on_toggle_mute,
            EventKind.RETRY_SUBMIT: self._on_retry_submit,
            EventKind.TIMER_TICK: self._on_timer_tick,
            EventKind.TIMER_EXPIRED: self._on_timer_expired,
            EventKind.NARRATION_DONE: self._on_narration_finished,
            EventKind.NARRATION_STOPPED: self._on_narration_finished,
            EventKind.NARRATION_ERROR: self._on_narration_finished,
            EventKind.CAPTURE_PARTIAL: self._on_capture_partial,
        }

    # ========================================
    # Derived values
    # ========================================

    @property
    def total(self) -> int:
        return len(self.setup.questions) if self.setup else 0

    @property
    def duration(self) -> int:
        return self.setup.timer_sec if self.setup else self.settings.default_timer_sec

    @property
    def question(self) -> Optional[str]:
        if not self.setup:
            return None
        return self.setup.questions[self.current_index]

    @property
    def elapsed_seconds(self) -> int:
        return min(self.duration, self._elapsed + self._segment_elapsed)

    # ========================================
    # Lifecycle
    # ========================================

    async def open(self) -> SessionSnapshot:
        """Start the event loop for this session and validate the payload."""
        if self._worker is not None:
            raise RuntimeError("Session already opened")

        self._queue = asyncio.Queue()
        self.timer.init(self.post)
        self.speech_output.init(self.post)
        self.speech_capture.init(self.post)
        self._worker = asyncio.get_running_loop().create_task(self._run())
        return await self._submit(EventKind.LOAD)

    async def close(self):
        """Stop everything and release the timer, synthesizer and microphone."""
        if self._closed:
            return
        self._closed = True
        pending = [self._inflight] if self._inflight is not None else []

        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass

        if self._queue is not None:
            while not self._queue.empty():
                _, future = self._queue.get_nowait()
                if future is not None:
                    pending.append(future)
        for future in pending:
            if not future.done():
                future.set_exception(SessionClosedError(f"Session {self.session_id} was closed"))

        self.timer.teardown()
        self.speech_output.teardown()
        await self.speech_capture.teardown()
        self._timer_generation = self._narration_generation = self._capture_generation = None
        self.events.record("teardown", self.current_index)
        logger.info(f"[{self.session_id}] Session closed in state {self.state.value}")

    def post(self, event: SessionEvent):
        """Queue an event from a service. Dropped once the session is closed."""
        if self._closed or self._queue is None:
            return
        self._queue.put_nowait((event, None))

    async def drain(self):
        """Wait until every queued event has been handled."""
        if self._queue is not None:
            await self._queue.join()

    # ========================================
    # User actions
    # ========================================

    async def start(self) -> SessionSnapshot:
        return await self._submit(EventKind.START)

    async def pause(self) -> SessionSnapshot:
        return await self._submit(EventKind.PAUSE)

    async def reset(self) -> SessionSnapshot:
        return await self._submit(EventKind.RESET)

    async def next(self) -> SessionSnapshot:
        return await self._submit(EventKind.NEXT)

    async def prev(self) -> SessionSnapshot:
        return await self._submit(EventKind.PREV)

    async def finish(self) -> SessionSnapshot:
        return await self._submit(EventKind.FINISH)

    async def edit_answer(self, text: str) -> SessionSnapshot:
        return await self._submit(EventKind.EDIT_ANSWER, text=text or "")

    async def speak_again(self) -> SessionSnapshot:
        return await self._submit(EventKind.SPEAK_AGAIN)

    async def toggle_mute(self) -> SessionSnapshot:
        return await self._submit(EventKind.TOGGLE_MUTE)

    async def retry_submit(self) -> SessionSnapshot:
        return await self._submit(EventKind.RETRY_SUBMIT)

    async def _submit(self, kind: EventKind, **payload) -> SessionSnapshot:
        if self._closed or self._queue is None:
            raise SessionClosedError("Session is not open")
        future = asyncio.get_running_loop().create_future()
        self._queue.put_nowait((SessionEvent(kind, payload=payload), future))
        return await future

    # ========================================
    # Event loop
    # ========================================

    async def _run(self):
        while True:
            event, future = await self._queue.get()
            self._inflight = future
            try:
                await self._dispatch(event)
            except Exception as exc:
                if future is not None and not future.done():
                    future.set_exception(exc)
                else:
                    logger.exception(f"[{self.session_id}] Failed to handle {event.kind.value}")
            else:
                if future is not None and not future.done():
                    future.set_result(self.snapshot())
            finally:
                self._inflight = None
                self._queue.task_done()

    async def _dispatch(self, event: SessionEvent):
        if event.is_user_action or event.kind == EventKind.LOAD:
            if not SessionStates.allows(event.kind, self.state):
                self.events.record(
                    "action_rejected", self.current_index,
                    action=event.kind.value, state=self.state.value,
                )
                raise ActionRejectedError(event.kind.value, self.state)
            logger.info(f"[{self.session_id}] {event.kind.value} (state={self.state.value}, q={self.current_index})")
        await self._handlers[event.kind](event)

    def _transition(self, target: SessionState):
        if target == self.state:
            return
        if not SessionStates.can_transition(self.state, target):
            raise IllegalTransitionError(self.state, target)
        logger.info(f"[{self.session_id}] {self.state.value} -> {target.value}")
        self.events.record("transition", self.current_index, source=self.state.value, target=target.value)
        self.state = target

    def _fail(self, error: InterviewError, redirect: Optional[str] = None):
        self.error = SessionError(
            kind=error.kind,
            message=error.message or str(error),
            recoverable=error.recoverable,
            redirect=redirect,
        )
        logger.error(f"[{self.session_id}] {error.kind.value}: {self.error.message}")
        self._transition(S.ERROR)

    # ========================================
    # Resource control
    # ========================================

    def _narrate(self):
        self._narration_generation = self.speech_output.speak(self.question)
        self.events.record("narration_started", self.current_index, generation=self._narration_generation)
        self._transition(S.PRESENTING)

    def _stop_narration(self):
        was_playing = self._narration_generation is not None
        self.speech_output.stop()
        self._narration_generation = None
        if was_playing:
            self.events.record("narration_stopped", self.current_index)

    async def _arm(self):
        self._stop_narration()
        self._elapsed = self.elapsed_seconds
        self._segment_elapsed = 0
        self.seconds_left = self.duration
        self.notification = None

        self._timer_generation = self.timer.arm(self.duration)
        self.events.record("timer_armed", self.current_index, generation=self._timer_generation, duration=self.duration)
        self._transition(S.ARMED)

        result = await self.speech_capture.start()
        if result.ok:
            self._capture_generation = self.speech_capture.generation
            self.events.record("capture_started", self.current_index, generation=self._capture_generation)
        else:
            # Typed answers still work without a microphone
            self._capture_generation = None
            self.events.record("capture_unavailable", self.current_index, message=result.message)

    async def _halt(self):
        """Stop the timer, then the capture, keeping the time used so far."""
        if self._timer_generation is not None:
            self.timer.stop()
            self.events.record("timer_stopped", self.current_index, generation=self._timer_generation)
            self._timer_generation = None
        self._elapsed = self.elapsed_seconds
        self._segment_elapsed = 0

        if self._capture_generation is not None or self.speech_capture.active:
            result = await self.speech_capture.stop()
            self.events.record(
                "capture_stopped", self.current_index,
                generation=self._capture_generation, has_audio=result.audio_uri is not None,
            )
            self._capture_generation = None
            if result.text:
                self.draft_answer = result.text
            if result.audio_uri:
                self._audio_uri = result.audio_uri

    # ========================================
    # Question flow
    # ========================================

    async def _enter_question(self, index: int):
        self.current_index = index
        self.ledger.focus(index)

        record = self.ledger.get(index)
        self.draft_answer = record.text if record else ""
        self._elapsed = record.elapsed_seconds if record else 0
        self._audio_uri = record.audio_uri if record else None
        self._segment_elapsed = 0
        self.seconds_left = self.duration
        self.notification = None
        self.events.record("question_entered", index)

        if self.muted:
            self._transition(S.READY)
            if self.settings.auto_start_after_narration:
                await self._arm()
        else:
            self._narrate()

    async def _leave_question(self):
        """Stop everything for the current question and finalize its answer."""
        self._stop_narration()
        await self._halt()
        self._transition(S.ADVANCING)
        record = self.ledger.record_answer(
            self.current_index,
            self.draft_answer.strip(),
            audio_uri=self._audio_uri,
            elapsed_seconds=self.elapsed_seconds,
        )
        self.events.record("answer_finalized", self.current_index, elapsed=record.elapsed_seconds)

    async def _advance(self):
        is_last = self.current_index >= self.total - 1
        await self._leave_question()
        if is_last:
            await self._begin_submission()
        else:
            await self._enter_question(self.current_index + 1)

    async def _begin_submission(self):
        self.transcript = TranscriptAssembler.assemble(self.setup, self.ledger)
        self.events.record("transcript_assembled", self.current_index, items=len(self.transcript.items))
        await self._send_transcript()

    async def _send_transcript(self):
        self._transition(S.SUBMITTING)
        self.error = None
        try:
            raw = await asyncio.to_thread(self.api_client.grade, self.transcript)
            report = GradeValidator.validate(raw)
        except (ApiError, SubmissionFailedError) as e:
            message = e.message or str(e)
        except Exception as e:
            # Session must leave SUBMITTING whatever the grader did
            logger.exception(f"[{self.session_id}] Unexpected grading failure")
            message = f"Unexpected grading failure: {e}"
        else:
            self.result = report
            self.events.record("submission_succeeded", self.current_index, overall_score=report.overall_score)
            self._transition(S.COMPLETED)
            return

        self.events.record("submission_failed", self.current_index, message=message)
        self._fail(SubmissionFailedError(message))

    # ========================================
    # Handlers
    # ========================================

    async def _on_load(self, event: SessionEvent):
        try:
            self.setup = SessionSetup.from_payload(self._payload)
        except ValueError as e:
            self._fail(InvalidPayloadError(f"Missing data. Go back and generate questions. ({e})"), redirect=SETUP_ROUTE)
            return

        self.ledger = AnswerLedger(self.setup.questions, self.setup.timer_sec)
        self.events.record("loaded", question_count=self.total, duration=self.duration)
        self._transition(S.READY)
        await self._enter_question(0)

    async def _on_start(self, event: SessionEvent):
        await self._arm()

    async def _on_pause(self, event: SessionEvent):
        await self._halt()
        self._transition(S.PAUSED)

    async def _on_reset(self, event: SessionEvent):
        if self.state == S.ARMED:
            await self._halt()
            self._transition(S.PAUSED)
        elif self.state == S.PRESENTING:
            self._stop_narration()
            self._transition(S.READY)

        self._elapsed = 0
        self._segment_elapsed = 0
        self.seconds_left = self.duration
        self.notification = None
        self.events.record("timer_reset", self.current_index)

    async def _on_next(self, event: SessionEvent):
        await self._advance()

    async def _on_prev(self, event: SessionEvent):
        if self.current_index == 0:
            raise ActionRejectedError(event.kind.value, self.state, "already at the first question")
        await self._leave_question()
        await self._enter_question(self.current_index - 1)

    async def _on_finish(self, event: SessionEvent):
        await self._leave_question()
        await self._begin_submission()

    async def _on_edit_answer(self, event: SessionEvent):
        self.draft_answer = event.payload.get("text", "")

    async def _on_speak_again(self, event: SessionEvent):
        self._narrate()

    async def _on_toggle_mute(self, event: SessionEvent):
        self.muted = not self.muted
        self.events.record("muted" if self.muted else "unmuted", self.current_index)
        if self.muted and self.state == S.PRESENTING:
            self._stop_narration()
            self._transition(S.READY)

    async def _on_retry_submit(self, event: SessionEvent):
        if self.transcript is None or self.error is None or self.error.kind != ErrorKind.SUBMISSION_FAILED:
            raise ActionRejectedError(event.kind.value, self.state, "nothing to resubmit")
        logger.info(f"[{self.session_id}] Retrying submission")
        await self._send_transcript()

    async def _on_timer_tick(self, event: SessionEvent):
        if event.generation != self._timer_generation or self.state != S.ARMED:
            return
        self.seconds_left = event.payload.get("seconds_left", 0)
        self._segment_elapsed = self.duration - self.seconds_left

    async def _on_timer_expired(self, event: SessionEvent):
        if event.generation != self._timer_generation or self.state != S.ARMED:
            self.events.record("expiry_ignored", self.current_index, generation=event.generation)
            return

        self.seconds_left = 0
        self._segment_elapsed = self.duration
        await self._halt()
        self._transition(S.PAUSED)
        self.notification = TIMES_UP
        self.events.record("timer_expired", self.current_index)
        logger.info(f"[{self.session_id}] Time's up on question {self.current_index}")

        if self.settings.auto_advance_on_expiry:
            await self._advance()

    async def _on_narration_finished(self, event: SessionEvent):
        if event.generation != self._narration_generation:
            return
        self._narration_generation = None

        if event.kind == EventKind.NARRATION_ERROR:
            logger.warning(f"[{self.session_id}] {ErrorKind.PLAYBACK_FAILURE.value}: {event.payload.get('message', '')}")
            self.events.record("playback_failure", self.current_index, message=event.payload.get("message", ""))
        else:
            self.events.record(event.kind.value, self.current_index)

        if self.state == S.PRESENTING:
            self._transition(S.READY)
            if event.kind == EventKind.NARRATION_DONE and self.settings.auto_start_after_narration:
                await self._arm()

    async def _on_capture_partial(self, event: SessionEvent):
        if event.generation != self._capture_generation or not self.speech_capture.active:
            return
        # Latest recognition replaces the draft
        self.draft_answer = event.payload.get("text", "")

    # ========================================
    # Observation
    # ========================================

    def snapshot(self) -> SessionSnapshot:
        """Read-only view of the session for the host."""
        return SessionSnapshot(
            session_id=self.session_id,
            state=self.state,
            current_index=self.current_index,
            total=self.total,
            question=self.question,
            timer_sec=self.duration,
            seconds_left=self.seconds_left,
            elapsed_seconds=self.elapsed_seconds,
            running=self.state == S.ARMED,
            paused=self.state == S.PAUSED,
            narrating=self._narration_generation is not None,
            muted=self.muted,
            draft_answer=self.draft_answer,
            capture_active=self.speech_capture.active,
            has_recording=self._audio_uri is not None,
            notification=self.notification,
            error=self.error,
            allowed_actions=SessionStates.get_allowed_actions(self.state),
        )

    def get_status(self) -> Dict[str, Any]:
        """Compact status for the debug endpoint."""
        return {
            "session_id": self.session_id,
            "state": self.state.value,
            "question": f"{self.current_index + 1} / {self.total}" if self.total else None,
            "answered": len(self.ledger) if self.ledger else 0,
            "transcript_ready": self.transcript is not None,
            "result": GradeValidator.summarize(self.result) if self.result else None,
            "events": len(self.events),
        }
