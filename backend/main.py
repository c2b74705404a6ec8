"""
Mock Interview Session - FastAPI Backend

Runs timed, narrated mock-interview sessions:
- Questions generated by the remote question service
- Narration through text-to-speech
- Answers captured by microphone (Whisper STT) or typed
- Transcript handed to the remote grader

One session at a time, kept in memory for its lifetime only.
"""
import sys
import os
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import Body, FastAPI, HTTPException
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from utils.config import config
from models.errors import ActionRejectedError, ApiError, SessionClosedError
from models.schemas import (
    EditAnswerRequest,
    ErrorKind,
    GenerateQuestionsRequest,
    SessionSnapshot,
    SessionState,
)
from interview.state import InterviewStateMachine
from interview.grading import GradeValidator
from llm.client import api_client

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# ================================================================
# FastAPI App Initialization
# ================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await clear_session()


app = FastAPI(
    title="Mock Interview Session API",
    description="Timed, narrated mock-interview sessions with speech capture",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ================================================================
# Session Management
# ================================================================

# Global interview session (single session for now)
_current_session: Optional[InterviewStateMachine] = None


def get_current_session() -> InterviewStateMachine:
    """Get the current interview session."""
    if _current_session is None:
        raise HTTPException(
            status_code=400,
            detail="No active interview session. Please start an interview first."
        )
    return _current_session


async def create_new_session(payload: Any) -> InterviewStateMachine:
    """Close any running session and open a new one from a setup payload."""
    global _current_session
    await clear_session()
    _current_session = InterviewStateMachine(payload)
    await _current_session.open()
    return _current_session


async def clear_session():
    """Tear down the current session."""
    global _current_session
    if _current_session is not None:
        await _current_session.close()
    _current_session = None


async def _run_action(action, *args) -> Dict[str, Any]:
    """Run a session action and map rejections to HTTP errors."""
    session = get_current_session()
    try:
        snapshot: SessionSnapshot = await asyncio.wait_for(
            action(*args), timeout=config.session.action_timeout
        )
    except ActionRejectedError as e:
        raise HTTPException(
            status_code=409,
            detail={"message": e.message, "state": e.state.value}
        )
    except SessionClosedError as e:
        raise HTTPException(
            status_code=409,
            detail={"message": str(e), "state": "closed"}
        )
    except asyncio.TimeoutError:
        raise HTTPException(
            status_code=504,
            detail=f"Session {session.session_id} did not process the action in time"
        )
    return snapshot.model_dump(mode="json")


# ================================================================
# API Endpoints
# ================================================================

@app.get("/")
async def root():
    """Health check endpoint."""
    return {
        "status": "running",
        "version": "1.0.0",
        "service": "Mock Interview Session",
        "active_session": _current_session.session_id if _current_session else None,
    }


@app.post("/questions/generate")
async def generate_questions(request: GenerateQuestionsRequest):
    """
    Ask the question service for a question list.

    Returns:
        A setup payload ready for POST /session
    """
    setup = request.model_dump(by_alias=True, exclude_none=True)
    try:
        questions = await run_in_threadpool(api_client.generate_questions, setup)
    except ApiError as e:
        raise HTTPException(status_code=502, detail=e.message)

    return {
        **{k: v for k, v in setup.items() if k != "questionCount"},
        "questions": questions,
        "timerSec": request.timer_sec or config.session.default_timer_sec,
    }


@app.post("/session")
async def start_session(payload: Any = Body(...)):
    """
    Load a session from a setup payload and present the first question.

    Args:
        payload: Setup object, JSON string or URL-encoded JSON string

    Returns:
        Session snapshot, or 422 with a redirect to setup
    """
    session = await create_new_session(payload)
    snapshot = session.snapshot()

    if snapshot.state == SessionState.ERROR and snapshot.error.kind == ErrorKind.INVALID_PAYLOAD:
        await clear_session()
        raise HTTPException(
            status_code=422,
            detail={
                "message": snapshot.error.message,
                "redirect": snapshot.error.redirect,
            }
        )

    return snapshot.model_dump(mode="json")


@app.get("/session")
async def get_session():
    """Current session snapshot."""
    return get_current_session().snapshot().model_dump(mode="json")


@app.post("/session/start")
async def start_answer():
    return await _run_action(get_current_session().start)


@app.post("/session/pause")
async def pause_answer():
    return await _run_action(get_current_session().pause)


@app.post("/session/reset")
async def reset_timer():
    return await _run_action(get_current_session().reset)


@app.post("/session/next")
async def next_question():
    return await _run_action(get_current_session().next)


@app.post("/session/prev")
async def previous_question():
    return await _run_action(get_current_session().prev)


@app.post("/session/finish")
async def finish_session():
    """Finalize the current answer and submit the transcript."""
    return await _run_action(get_current_session().finish)


@app.post("/session/speak-again")
async def speak_again():
    return await _run_action(get_current_session().speak_again)


@app.post("/session/toggle-mute")
async def toggle_mute():
    return await _run_action(get_current_session().toggle_mute)


@app.post("/session/retry-submit")
async def retry_submit():
    """Resubmit the already assembled transcript after a grading failure."""
    return await _run_action(get_current_session().retry_submit)


@app.put("/session/answer")
async def edit_answer(request: EditAnswerRequest):
    """Replace the draft answer for the current question."""
    return await _run_action(get_current_session().edit_answer, request.text)


@app.get("/session/transcript")
async def get_transcript():
    """Transcript as submitted to the grader."""
    session = get_current_session()
    if session.transcript is None:
        raise HTTPException(
            status_code=400,
            detail="Transcript not assembled yet. Finish the interview first."
        )
    return session.transcript.model_dump(mode="json")


@app.get("/session/result")
async def get_result():
    """Grading result once the session has completed."""
    session = get_current_session()
    if session.result is None:
        raise HTTPException(
            status_code=400,
            detail="No grading result available yet."
        )
    return {
        **GradeValidator.summarize(session.result),
        "items": session.result.items,
        "transcript": session.transcript.model_dump(mode="json") if session.transcript else None,
    }


@app.delete("/session")
async def end_session():
    """End and discard the current session."""
    await clear_session()
    return {"status": "Session cleared"}


@app.get("/debug/events")
async def debug_events():
    """
    Debug endpoint with the session's event log.

    Returns:
        Status summary and ordered event log
    """
    session = get_current_session()
    return {
        **session.get_status(),
        "event_log": session.events.to_list(),
    }


# ================================================================
# Main Entry Point
# ================================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
