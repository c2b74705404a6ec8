"""
Pydantic models shared by the session orchestrator and the HTTP layer.
"""
import json
from enum import Enum
from typing import Any, Dict, List, Optional, Union
from urllib.parse import unquote

from pydantic import BaseModel, ConfigDict, Field, field_validator

from utils.config import config

# Sent to the grader in place of an answer that was never given
NO_ANSWER = "(no answer)"


class SessionState(str, Enum):
    LOADING = "loading"
    READY = "ready"
    PRESENTING = "presenting"
    ARMED = "armed"
    PAUSED = "paused"
    ADVANCING = "advancing"
    SUBMITTING = "submitting"
    COMPLETED = "completed"
    ERROR = "error"


class ErrorKind(str, Enum):
    INVALID_PAYLOAD = "invalid_payload"
    CAPTURE_UNAVAILABLE = "capture_unavailable"
    PLAYBACK_FAILURE = "playback_failure"
    SUBMISSION_FAILED = "submission_failed"


class SessionSetup(BaseModel):
    """
    Session configuration handed over by the setup / question generation step.
    Read-only for the lifetime of a session.
    """
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    questions: List[str]
    timer_sec: int = Field(default_factory=lambda: config.session.default_timer_sec, alias="timerSec")

    # Free-form metadata forwarded to the grader
    role: Optional[str] = None
    major: Optional[str] = None
    company: Optional[str] = None
    mode: Optional[str] = None
    level: Optional[str] = None
    topics: List[str] = []
    tags: Dict[str, Any] = {}

    @field_validator("questions", mode="before")
    @classmethod
    def _clean_questions(cls, value):
        if not isinstance(value, list):
            raise ValueError("questions must be a list")
        if any(q is not None and not isinstance(q, str) for q in value):
            raise ValueError("questions must be strings")
        cleaned = [q.strip() for q in value if q and q.strip()]
        if not cleaned:
            raise ValueError("questions must contain at least one question")
        return cleaned

    @field_validator("timer_sec", mode="before")
    @classmethod
    def _clean_timer(cls, value):
        if value in (None, "", 0, "0"):
            return config.session.default_timer_sec
        try:
            seconds = int(float(value))
        except (TypeError, ValueError, OverflowError) as exc:
            raise ValueError(f"timerSec is not a number: {value!r}") from exc
        if seconds <= 0:
            raise ValueError("timerSec must be positive")
        return seconds

    @classmethod
    def from_payload(cls, payload: Union[str, bytes, Dict[str, Any], None]) -> "SessionSetup":
        """
        Parse a setup payload given as a dict, a JSON string or a URL-encoded
        JSON string. Raises ValueError on anything unusable.
        """
        if isinstance(payload, bytes):
            payload = payload.decode("utf-8")
        if isinstance(payload, str):
            raw = payload.strip()
            if not raw:
                raise ValueError("empty payload")
            try:
                payload = json.loads(raw)
            except json.JSONDecodeError:
                try:
                    payload = json.loads(unquote(raw))
                except json.JSONDecodeError as exc:
                    raise ValueError(f"payload is not JSON: {exc}") from exc
        if not isinstance(payload, dict):
            raise ValueError("payload must be an object")
        return cls.model_validate(payload)

    @property
    def metadata_tags(self) -> Dict[str, Any]:
        tags = {
            "role": self.role,
            "major": self.major,
            "company": self.company,
            "mode": self.mode,
            "level": self.level,
            "topics": list(self.topics),
        }
        tags.update(self.tags)
        return tags


class AnswerRecord(BaseModel):
    """What the candidate answered for one question and how long it took."""
    question_text: str
    text: str = ""
    audio_uri: Optional[str] = None
    elapsed_seconds: int = Field(default=0, ge=0)


class TranscriptItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    question: str
    answer: str
    elapsed_seconds: int
    audio_uri: Optional[str] = None


class SessionMetadata(BaseModel):
    model_config = ConfigDict(frozen=True)

    timer_sec: int
    question_count: int
    tags: Dict[str, Any] = {}


class Transcript(BaseModel):
    """Finalized question/answer dataset handed to the grader."""
    model_config = ConfigDict(frozen=True)

    session_metadata: SessionMetadata
    items: List[TranscriptItem]

    def to_grading_payload(self) -> Dict[str, Any]:
        """Body sent to the grading endpoint."""
        return {
            "setup": dict(self.session_metadata.tags),
            "timerSec": self.session_metadata.timer_sec,
            "items": [
                {
                    "question": item.question,
                    "answer": item.answer,
                    "durationSec": item.elapsed_seconds,
                    "audioUri": item.audio_uri,
                }
                for item in self.items
            ],
        }


class GradeReport(BaseModel):
    """Grader response after shape validation. Scores are not interpreted here."""
    overall_score: int
    summary: str
    items: List[Dict[str, Any]] = []
    raw: Dict[str, Any] = {}


class SessionError(BaseModel):
    kind: ErrorKind
    message: str
    recoverable: bool = True
    redirect: Optional[str] = None


class SessionSnapshot(BaseModel):
    """Read-only view of a session for the presentation layer."""
    session_id: str
    state: SessionState
    current_index: int
    total: int
    question: Optional[str] = None
    timer_sec: int
    seconds_left: int
    elapsed_seconds: int
    running: bool
    paused: bool
    narrating: bool
    muted: bool
    draft_answer: str
    capture_active: bool
    has_recording: bool
    notification: Optional[str] = None
    error: Optional[SessionError] = None
    allowed_actions: List[str] = []


# ================================================================
# Request bodies
# ================================================================

class EditAnswerRequest(BaseModel):
    text: str = ""


class GenerateQuestionsRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    role: Optional[str] = None
    major: Optional[str] = None
    company: Optional[str] = None
    mode: Optional[str] = None
    level: Optional[str] = None
    topics: List[str] = []
    question_count: Optional[int] = Field(default=None, alias="questionCount")
    timer_sec: Optional[int] = Field(default=None, alias="timerSec")
