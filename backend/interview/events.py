"""
Events delivered into the session state machine, and the log of side effects
it performs in response.
"""
import itertools
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from models.schemas import ErrorKind


class EventKind(str, Enum):
    # User actions
    LOAD = "load"
    START = "start"
    PAUSE = "pause"
    RESET = "reset"
    NEXT = "next"
    PREV = "prev"
    FINISH = "finish"
    EDIT_ANSWER = "edit_answer"
    SPEAK_AGAIN = "speak_again"
    TOGGLE_MUTE = "toggle_mute"
    RETRY_SUBMIT = "retry_submit"

    # Produced by the timer, speech output and speech capture services
    TIMER_TICK = "timer_tick"
    TIMER_EXPIRED = "timer_expired"
    NARRATION_DONE = "narration_done"
    NARRATION_STOPPED = "narration_stopped"
    NARRATION_ERROR = "narration_error"
    CAPTURE_PARTIAL = "capture_partial"


USER_ACTIONS = frozenset({
    EventKind.START,
    EventKind.PAUSE,
    EventKind.RESET,
    EventKind.NEXT,
    EventKind.PREV,
    EventKind.FINISH,
    EventKind.EDIT_ANSWER,
    EventKind.SPEAK_AGAIN,
    EventKind.TOGGLE_MUTE,
    EventKind.RETRY_SUBMIT,
})

_sequence = itertools.count(1)


@dataclass
class SessionEvent:
    """
    A single event for the state machine.

    `generation` identifies the timer arm / narration / capture run that
    produced the event so late events from a stopped run can be dropped.
    """
    kind: EventKind
    payload: Dict[str, Any] = field(default_factory=dict)
    generation: Optional[int] = None
    seq: int = field(default_factory=lambda: next(_sequence))

    @property
    def is_user_action(self) -> bool:
        return self.kind in USER_ACTIONS


# Services post events through a sink; it must only be called on the event loop thread
EventSink = Callable[[SessionEvent], None]


@dataclass
class OperationResult:
    """Outcome of a best-effort side effect. Failures are observed, never raised."""
    ok: bool
    error_kind: Optional[ErrorKind] = None
    message: str = ""

    @classmethod
    def success(cls, message: str = "") -> "OperationResult":
        return cls(ok=True, message=message)

    @classmethod
    def failure(cls, kind: ErrorKind, message: str) -> "OperationResult":
        return cls(ok=False, error_kind=kind, message=message)


@dataclass
class CaptureResult:
    """Final recognized text and recording handle from a stopped capture."""
    text: str = ""
    audio_uri: Optional[str] = None


@dataclass
class LogEntry:
    seq: int
    name: str
    index: Optional[int]
    detail: Dict[str, Any]
    timestamp: float


class EventLog:
    """
    Append-only record of what the orchestrator did, in order.
    Used by tests to check ordering and exposed on the debug endpoint.
    """

    def __init__(self, max_entries: int = 5000):
        self.max_entries = max_entries
        self._entries: List[LogEntry] = []
        self._counter = itertools.count(1)

    def record(self, name: str, index: Optional[int] = None, **detail) -> LogEntry:
        entry = LogEntry(
            seq=next(self._counter),
            name=name,
            index=index,
            detail=detail,
            timestamp=time.time(),
        )
        self._entries.append(entry)
        if len(self._entries) > self.max_entries:
            del self._entries[: len(self._entries) - self.max_entries]
        return entry

    def names(self) -> List[str]:
        return [e.name for e in self._entries]

    def find(self, name: str, index: Optional[int] = None) -> List[LogEntry]:
        return [
            e for e in self._entries
            if e.name == name and (index is None or e.index == index)
        ]

    def position(self, name: str, index: Optional[int] = None) -> int:
        """Position of the first matching entry, -1 if absent."""
        for i, e in enumerate(self._entries):
            if e.name == name and (index is None or e.index == index):
                return i
        return -1

    def to_list(self) -> List[Dict[str, Any]]:
        return [
            {"seq": e.seq, "name": e.name, "index": e.index, "detail": e.detail}
            for e in self._entries
        ]

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self):
        return iter(self._entries)
